"""Network adapter for an OpenAI-compatible model server.

All backend I/O goes through :class:`BackendTransport`. Library failures are
translated into the engine's error taxonomy here so the session logic never
has to know which HTTP stack raised them.
"""

import logging
import re
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from services.backend.response_parser import serialize_response
from services.chat.errors import (
    BackendResponseError,
    BackendUnreachableError,
    DiscoveryError,
    ModelLoadError,
    StreamError,
)

LOGGER = logging.getLogger(__name__)

MANAGEMENT_MODELS_PATH = "/api/v1/models"
MANAGEMENT_LOAD_PATH = "/api/v1/models/load"


def trim_trailing_slashes(raw: str) -> str:
    return re.sub(r"/+$", "", str(raw or ""))


def management_root(base_url: str) -> str:
    """Return the server root for management calls (base URL minus ``/v1``)."""
    return re.sub(r"/v1$", "", trim_trailing_slashes(base_url))


def _status_detail(exc: openai.APIStatusError) -> str:
    try:
        return exc.response.text
    except Exception:  # pylint: disable=broad-exception-caught
        return str(exc)


class BackendTransport:
    """Issue catalog, load and generation requests against one server."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        client: Optional[AsyncOpenAI] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = trim_trailing_slashes(base_url)
        self.api_key = api_key
        # Recovery is always user-initiated: no SDK retries and no client timeout.
        self.client = client or AsyncOpenAI(base_url=self.base_url, api_key=api_key, max_retries=0, timeout=None)
        self.http = http_client or httpx.AsyncClient(
            base_url=management_root(self.base_url),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(None, connect=10.0),
        )

    @asynccontextmanager
    async def stream_chat(self, body: Dict[str, Any]) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open a streaming chat completion and yield its raw byte iterator.

        Raises:
            BackendUnreachableError: If the server cannot be reached.
            BackendResponseError: If the server rejects the request.
        """
        async with AsyncExitStack() as stack:
            try:
                response = await stack.enter_async_context(
                    self.client.chat.completions.with_streaming_response.create(**body)
                )
            except openai.APIConnectionError as exc:
                LOGGER.error("Chat completion request could not connect: %s", exc)
                raise BackendUnreachableError() from exc
            except openai.APIStatusError as exc:
                raise BackendResponseError(exc.status_code, _status_detail(exc)) from exc
            yield self._iter_bytes(response)

    @staticmethod
    async def _iter_bytes(response: Any) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.iter_bytes():
                yield chunk
        except (httpx.HTTPError, openai.APIError) as exc:
            raise StreamError(f"Stream interrupted: {exc}") from exc

    async def create_response(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Call the non-streaming Responses endpoint and return the JSON document."""
        params = dict(body)
        extra_body = {}
        if "top_logprobs" in params:
            extra_body["top_logprobs"] = params.pop("top_logprobs")
        try:
            response = await self.client.responses.create(**params, extra_body=extra_body or None)
        except openai.APIConnectionError as exc:
            LOGGER.error("Responses request could not connect: %s", exc)
            raise BackendUnreachableError() from exc
        except openai.APIStatusError as exc:
            raise BackendResponseError(exc.status_code, _status_detail(exc)) from exc
        return serialize_response(response)

    async def list_model_ids(self) -> List[str]:
        """Return ids from the minimal ``/models`` listing."""
        try:
            page = await self.client.models.list()
        except openai.APIConnectionError as exc:
            raise BackendUnreachableError() from exc
        except openai.APIStatusError as exc:
            raise DiscoveryError(f"Model listing failed with status {exc.status_code}.") from exc
        return [model.id for model in page.data]

    async def fetch_management_catalog(self) -> Optional[List[Dict[str, Any]]]:
        """Return raw entries from the management endpoint, or None if it is unavailable."""
        try:
            response = await self.http.get(MANAGEMENT_MODELS_PATH)
        except httpx.HTTPError as exc:
            LOGGER.debug("Management catalog unavailable: %s", exc)
            return None
        if response.status_code >= 400:
            LOGGER.debug("Management catalog returned %s", response.status_code)
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        entries = data.get("models") or data.get("data") or []
        return [entry for entry in entries if isinstance(entry, dict)]

    async def load_model(self, model_id: str) -> None:
        """Ask the server to load ``model_id``; raise :class:`ModelLoadError` on failure."""
        try:
            response = await self.http.post(MANAGEMENT_LOAD_PATH, json={"model": model_id})
        except httpx.HTTPError as exc:
            raise ModelLoadError(f"Load failed: {exc}") from exc
        if response.status_code >= 400:
            raise ModelLoadError(f"Load failed: {response.status_code} {response.text}".rstrip())

    async def aclose(self) -> None:
        await self.http.aclose()
        await self.client.close()
