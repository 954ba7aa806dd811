"""Extract text and probability data from the backend's response shapes.

The backend speaks several dialects of the OpenAI protocol. Each known shape
is tried in a fixed order and the first one that carries a value wins:

Stream chunks
    1. ``choices[0].delta.content``      chat completion chunk
    2. ``delta``                         Responses-style text delta event
    3. ``choices[0].text``               legacy completion chunk
    4. ``choices[0].logprobs.content``   probability-annotated tokens only

Non-streaming documents
    1. ``output[type=message].content[type=output_text].text``
    2. ``text``
    3. ``choices[0].message.content``
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

LOGGER = logging.getLogger(__name__)


def _first_choice(payload: Dict[str, Any]) -> Dict[str, Any]:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def _logprob_tokens(container: Any) -> Optional[List[Any]]:
    if isinstance(container, dict):
        content = container.get("content")
        if isinstance(content, list) and content:
            return content
    return None


def extract_stream_probabilities(payload: Dict[str, Any]) -> Optional[List[Any]]:
    """Return per-token probability data carried by a stream chunk, if any."""
    choice = _first_choice(payload)
    delta = choice.get("delta") if isinstance(choice.get("delta"), dict) else {}
    return (
        _logprob_tokens(choice.get("logprobs"))
        or _logprob_tokens(delta.get("logprobs"))
        or _logprob_tokens(payload.get("logprobs"))
    )


def extract_stream_delta(payload: Dict[str, Any]) -> Optional[str]:
    """Return the text delta of a stream chunk, or None when no shape matches."""
    choice = _first_choice(payload)
    delta = choice.get("delta")
    if isinstance(delta, dict) and isinstance(delta.get("content"), str):
        return delta["content"]
    if isinstance(payload.get("delta"), str):
        return payload["delta"]
    if isinstance(choice.get("text"), str):
        return choice["text"]
    tokens = _logprob_tokens(choice.get("logprobs"))
    if tokens:
        return "".join(str(token.get("token", "")) for token in tokens if isinstance(token, dict))
    return None


def extract_output(document: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """Return ``(text, probability_tokens)`` from a non-streaming response."""
    text = ""
    tokens: List[Any] = []
    for item in document.get("output") or []:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            if isinstance(content, dict) and content.get("type") == "output_text":
                text += content.get("text") or ""
                if isinstance(content.get("logprobs"), list):
                    tokens.extend(content["logprobs"])

    if not text and isinstance(document.get("text"), str):
        text = document["text"]

    if not text:
        choice = _first_choice(document)
        message = choice.get("message") if isinstance(choice.get("message"), dict) else {}
        if message.get("content"):
            text = message["content"]
            tokens = _logprob_tokens(choice.get("logprobs")) or tokens

    return text, tokens


def extract_usage(document: Dict[str, Any]) -> Dict[str, Optional[int]]:
    """Return token usage if present, accepting both naming schemes."""
    usage = document.get("usage") or {}
    details = usage.get("input_tokens_details") or {}
    return {
        "input_tokens": usage.get("input_tokens", usage.get("prompt_tokens")),
        "output_tokens": usage.get("output_tokens", usage.get("completion_tokens")),
        "cached_tokens": details.get("cached_tokens"),
    }


def serialize_response(response: Any) -> Dict[str, Any]:
    """Convert an SDK response object into a plain dictionary."""
    if isinstance(response, dict):
        return response
    if hasattr(response, "model_dump"):
        return response.model_dump()
    if hasattr(response, "to_dict"):
        return response.to_dict()
    raise TypeError(f"Unsupported response type: {type(response).__name__}")
