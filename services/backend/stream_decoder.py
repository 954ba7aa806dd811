"""Incremental decoder for the backend's server-sent event stream."""

import codecs
import json
import logging
from typing import List, Optional, Union

from models.chat_models import StreamEvent
from services.backend.response_parser import extract_stream_delta, extract_stream_probabilities
from services.chat.errors import StreamDecodeError

LOGGER = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
DEFAULT_BUFFER_LIMIT = 1024 * 1024


class StreamDecoder:
    """Turn raw stream reads into :class:`StreamEvent` values.

    Events are separated by a blank line and carry one or more ``data:``
    lines whose payloads are joined with newlines. Bytes that do not yet form
    a complete event stay buffered and are prefixed onto the next read, so
    chunk boundaries can fall anywhere, including inside a UTF-8 sequence.

    The retained fragment is capped at ``buffer_limit`` characters; a stream
    that exceeds it without closing an event raises :class:`StreamDecodeError`.
    """

    def __init__(self, buffer_limit: int = DEFAULT_BUFFER_LIMIT) -> None:
        if buffer_limit <= 0:
            raise ValueError("buffer_limit must be positive.")
        self.buffer_limit = buffer_limit
        self.finished = False
        self.malformed_events = 0
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        """Text retained from an incomplete trailing event."""
        return self._buffer

    def feed(self, chunk: Union[bytes, str]) -> List[StreamEvent]:
        """Consume one physical read and return the events it completed."""
        if self.finished:
            return []

        text = self._utf8.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        self._buffer = (self._buffer + text).replace("\r\n", "\n")

        *blocks, self._buffer = self._buffer.split("\n\n")
        if len(self._buffer) > self.buffer_limit:
            raise StreamDecodeError(
                f"Incomplete stream event exceeded {self.buffer_limit} characters without a delimiter."
            )

        events: List[StreamEvent] = []
        for block in blocks:
            payload = self._payload(block)
            if payload is None:
                continue
            if payload == DONE_SENTINEL:
                self.finished = True
                self._buffer = ""
                events.append(StreamEvent(terminal=True))
                break
            event = self._decode(payload)
            if event is not None:
                events.append(event)
        return events

    @staticmethod
    def _payload(block: str) -> Optional[str]:
        lines = [line[5:] for line in block.split("\n") if line.startswith("data:")]
        if not lines:
            return None
        return "\n".join(line[1:] if line.startswith(" ") else line for line in lines)

    def _decode(self, payload: str) -> Optional[StreamEvent]:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self.malformed_events += 1
            LOGGER.warning("Skipping malformed stream event: %.200s", payload)
            return None
        if not isinstance(data, dict):
            return None

        delta = extract_stream_delta(data)
        probabilities = extract_stream_probabilities(data)
        if not delta and not probabilities:
            return None
        return StreamEvent(delta_text=delta or "", probability_info=probabilities)
