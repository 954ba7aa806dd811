"""
Shared fixtures and fakes for the chat engine test suite.

The backend is never contacted: `FakeTransport` stands in for
`BackendTransport` and replays scripted byte chunks per model.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from models.chat_models import Message
from services.backend.catalog import ModelDirectory
from services.chat.conversation_store import InMemoryConversationStore

# A script item that blocks until the reading task is cancelled.
HANG = object()


def sse(*payloads: Any, done: bool = True) -> bytes:
    """Encode payloads as event-stream blocks, optionally followed by [DONE]."""
    blocks = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        blocks.append(f"data: {data}\n\n")
    if done:
        blocks.append("data: [DONE]\n\n")
    return "".join(blocks).encode("utf-8")


def chat_chunk(text: str) -> Dict[str, Any]:
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


def catalog_entry(model_id: str, loaded: bool = True, **extra: Any) -> Dict[str, Any]:
    entry = {"key": model_id, "type": "llm", "loaded_instances": [{"id": model_id}] if loaded else []}
    entry.update(extra)
    return entry


class FakeTransport:
    """Scripted replacement for `BackendTransport`.

    Attributes:
        scripts: model id -> list of byte chunks, exceptions to raise, or HANG.
        open_errors: model id -> exception raised when the stream is opened.
    """

    def __init__(
        self,
        scripts: Optional[Dict[str, List[Any]]] = None,
        *,
        catalog: Optional[List[Dict[str, Any]]] = None,
        model_ids: Optional[List[str]] = None,
        response_document: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.scripts = scripts or {}
        self.open_errors: Dict[str, BaseException] = {}
        self.catalog = catalog
        self.model_ids = model_ids or []
        self.catalog_error: Optional[BaseException] = None
        self.load_error: Optional[BaseException] = None
        self.response_document = response_document or {}
        self.stream_bodies: List[Dict[str, Any]] = []
        self.response_bodies: List[Dict[str, Any]] = []
        self.load_calls: List[str] = []
        self.closed = False

    @asynccontextmanager
    async def stream_chat(self, body: Dict[str, Any]):
        self.stream_bodies.append(body)
        model_id = body["model"]
        if model_id in self.open_errors:
            raise self.open_errors[model_id]
        yield self._chunks(list(self.scripts.get(model_id, [])))

    @staticmethod
    async def _chunks(script: List[Any]):
        for item in script:
            await asyncio.sleep(0)
            if item is HANG:
                await asyncio.Event().wait()
            if isinstance(item, BaseException):
                raise item
            yield item

    async def create_response(self, body: Dict[str, Any]) -> Dict[str, Any]:
        self.response_bodies.append(body)
        if body["model"] in self.open_errors:
            raise self.open_errors[body["model"]]
        return self.response_document

    async def list_model_ids(self) -> List[str]:
        if self.catalog_error is not None:
            raise self.catalog_error
        return list(self.model_ids)

    async def fetch_management_catalog(self) -> Optional[List[Dict[str, Any]]]:
        if self.catalog_error is not None:
            raise self.catalog_error
        return self.catalog

    async def load_model(self, model_id: str) -> None:
        self.load_calls.append(model_id)
        if self.load_error is not None:
            raise self.load_error
        for entry in self.catalog or []:
            if entry.get("key") == model_id:
                entry["loaded_instances"] = [{"id": model_id}]

    async def aclose(self) -> None:
        self.closed = True


def make_conversation(count: int, first_role: str = "user") -> List[Message]:
    """Alternating turns named turn1..turnN."""
    roles = ("user", "assistant") if first_role == "user" else ("assistant", "user")
    return [Message(role=roles[i % 2], text=f"turn{i + 1}") for i in range(count)]


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def transport():
    return FakeTransport(
        catalog=[catalog_entry("a"), catalog_entry("b"), catalog_entry("c", loaded=False)],
    )


@pytest.fixture
def directory(transport):
    return ModelDirectory(transport, fallback_models=())


@pytest_asyncio.fixture
async def discovered(directory):
    await directory.discover(preferred="a")
    return directory
