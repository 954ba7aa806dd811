"""Tests for the session context object used by the outer surfaces."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import HANG, chat_chunk, make_conversation, sse
from models.chat_models import Attachment, Message, SessionState
from models.preferences import ChatPreferences
from services.chat.chat_context import ChatContext
from services.chat.errors import BackendUnreachableError, ModelValidationError, SessionBusyError, StreamError
from services.chat.prompts import help_instruction

CID = "conv-ctx"


@pytest.fixture
def context(discovered, transport, store):
    return ChatContext(transport, discovered, store, window=6)


class TestSend:
    @pytest.mark.asyncio
    async def test_send_message_commits(self, context, transport, store):
        transport.scripts = {"a": [sse(chat_chunk("Hi there"))]}
        handle = await context.send_message(CID, "hello")
        assert handle.state is SessionState.DONE
        assert await store.load(CID) == [Message("user", "hello"), Message("assistant", "Hi there")]
        assert not context.is_busy(CID)

    @pytest.mark.asyncio
    async def test_request_uses_context_window_and_instruction(self, context, transport, store):
        await store.save(CID, make_conversation(10))
        transport.scripts = {"a": [sse(chat_chunk("ok"))]}
        context.preferences = ChatPreferences(system_prompt="BASE", response_style="concise", temperature=0.1)

        await context.send_message(CID, "new question")

        body = transport.stream_bodies[0]
        assert body["temperature"] == 0.1
        assert body["messages"][0]["role"] == "system"
        assert body["messages"][0]["content"].startswith("BASE")
        assert "[Response style]" in body["messages"][0]["content"]
        # system + 5 history entries + the new turn
        assert len(body["messages"]) == 7
        assert body["messages"][-1] == {"role": "user", "content": "new question"}

    @pytest.mark.asyncio
    async def test_help_mode_replaces_instruction(self, context):
        context.preferences = ChatPreferences(help_mode=True)
        assert context.instruction() == help_instruction()

    @pytest.mark.asyncio
    async def test_file_attachment_is_injected(self, context, transport, store):
        transport.scripts = {"a": [sse(chat_chunk("read it"))]}
        await context.send_message(CID, "summarize", [Attachment(kind="file", name="notes.txt", data="line one")])
        sent = transport.stream_bodies[0]["messages"][-1]["content"]
        assert "Attached file: notes.txt" in sent
        assert "line one" in sent
        assert "line one" in (await store.load(CID))[0].text

    @pytest.mark.asyncio
    async def test_image_to_non_vision_model_warns(self, context, transport, caplog):
        transport.scripts = {"a": [sse(chat_chunk("?"))]}
        image = Attachment(kind="image", name="cat.png", data="data:image/png;base64,AAAA")
        await context.send_message(CID, "what is it", [image])
        assert "may not support vision" in caplog.text
        assert isinstance(transport.stream_bodies[0]["messages"][-1]["content"], list)

    @pytest.mark.asyncio
    async def test_empty_message_is_rejected(self, context):
        with pytest.raises(ValueError):
            await context.send_message(CID, "   ")

    @pytest.mark.asyncio
    async def test_unknown_selection_blocks_submission(self, context, transport, store):
        context.directory.selection = "gone"
        with pytest.raises(ModelValidationError):
            await context.send_message(CID, "hello")
        assert transport.stream_bodies == []
        assert await store.load(CID) == []


class TestExclusivity:
    @pytest.mark.asyncio
    async def test_second_session_is_refused_while_one_runs(self, context, transport):
        transport.scripts = {"a": [HANG]}
        task = asyncio.create_task(context.send_message(CID, "first"))
        while not context.is_busy(CID):
            await asyncio.sleep(0)

        with pytest.raises(SessionBusyError):
            await context.send_message(CID, "second")

        assert context.stop(CID)
        handle = await task
        assert handle.state is SessionState.CANCELLED
        assert not context.is_busy(CID)

    def test_stop_when_idle(self, context):
        assert context.stop(CID) is False

    @pytest.mark.asyncio
    async def test_other_conversations_are_independent(self, context, transport):
        transport.scripts = {"a": [sse(chat_chunk("x"))]}
        async with context.exclusive(CID):
            handle = await context.send_message("other", "hi")
        assert handle.state is SessionState.DONE


class TestRegenerateAndCompare:
    @pytest.mark.asyncio
    async def test_regenerate_replaces_last_answer(self, context, transport, store):
        await store.save(CID, [Message("user", "q"), Message("assistant", "old")])
        transport.scripts = {"a": [sse(chat_chunk("new"))]}

        await context.regenerate(CID)

        assert await store.load(CID) == [Message("user", "q"), Message("assistant", "new")]
        assert transport.stream_bodies[0]["messages"][-1] == {"role": "user", "content": "q"}

    @pytest.mark.asyncio
    async def test_regenerate_context_excludes_replaced_exchange(self, context, transport, store):
        await store.save(CID, make_conversation(4))
        transport.scripts = {"a": [sse(chat_chunk("again"))]}

        await context.regenerate(CID)

        sent = transport.stream_bodies[0]["messages"]
        assert [m["content"] for m in sent[1:]] == ["turn1", "turn2", "turn3"]

    @pytest.mark.asyncio
    async def test_failed_regenerate_keeps_stored_history(self, context, transport, store):
        original = [Message("user", "q1"), Message("assistant", "a1")]
        await store.save(CID, original)
        transport.scripts = {"a": [sse(chat_chunk("part"), done=False), StreamError("connection reset")]}

        handle = await context.regenerate(CID)

        assert handle.state is SessionState.FAILED
        assert await store.load(CID) == original
        assert context.failed_turn(CID) is None

    @pytest.mark.asyncio
    async def test_regenerate_after_failed_send_resends_that_turn(self, context, transport, store):
        await store.save(CID, [Message("user", "q1"), Message("assistant", "a1")])
        transport.scripts = {"a": [sse(chat_chunk("part"), done=False), StreamError("connection reset")]}

        failed = await context.send_message(CID, "q2")
        assert failed.state is SessionState.FAILED
        assert context.failed_turn(CID) == Message("user", "q2")

        transport.scripts = {"a": [sse(chat_chunk("a2"))]}
        handle = await context.regenerate(CID)

        assert handle.state is SessionState.DONE
        assert transport.stream_bodies[-1]["messages"][-1] == {"role": "user", "content": "q2"}
        assert [m.text for m in await store.load(CID)] == ["q1", "a1", "q2", "a2"]
        assert context.failed_turn(CID) is None

    @pytest.mark.asyncio
    async def test_failed_turn_survives_a_second_failure(self, context, transport, store):
        transport.open_errors["a"] = BackendUnreachableError()
        await context.send_message(CID, "q1")
        await context.regenerate(CID)

        assert context.failed_turn(CID) == Message("user", "q1")
        assert await store.load(CID) == []
        assert [b["messages"][-1]["content"] for b in transport.stream_bodies] == ["q1", "q1"]

    @pytest.mark.asyncio
    async def test_forget_failed_turn_falls_back_to_stored_history(self, context, transport, store):
        await store.save(CID, [Message("user", "q1"), Message("assistant", "a1")])
        transport.open_errors["a"] = BackendUnreachableError()
        await context.send_message(CID, "q2")
        del transport.open_errors["a"]

        context.forget_failed_turn(CID)
        transport.scripts = {"a": [sse(chat_chunk("a1-new"))]}
        await context.regenerate(CID)

        assert [m.text for m in await store.load(CID)] == ["q1", "a1-new"]

    @pytest.mark.asyncio
    async def test_compare_defaults_secondary(self, context, transport, store):
        transport.scripts = {"a": [sse(chat_chunk("A"))], "b": [sse(chat_chunk("B"))]}
        result = await context.compare_message(CID, "q")
        assert result.secondary.model_id == "b"
        assert (await store.load(CID))[-1].text == "A"

    @pytest.mark.asyncio
    async def test_failed_compare_primary_is_kept_for_regenerate(self, context, transport, store):
        transport.open_errors["a"] = BackendUnreachableError()
        transport.scripts = {"b": [sse(chat_chunk("B"))]}

        result = await context.compare_message(CID, "q")

        assert result.primary.state is SessionState.FAILED
        assert context.failed_turn(CID) == Message("user", "q")
        assert await store.load(CID) == []

    def test_default_secondary(self, context):
        assert context.default_secondary("a") == "b"
        assert context.default_secondary("b") == "a"


class TestSelectionPersistence:
    @pytest.mark.asyncio
    async def test_select_model_saves_preference(self, discovered, transport, store):
        settings = AsyncMock()
        context = ChatContext(transport, discovered, store, settings=settings)

        await context.select_model("b")

        assert context.preferences.model == "b"
        saved = settings.save_preferences.await_args.args[0]
        assert saved.model == "b"

    @pytest.mark.asyncio
    async def test_discover_prefers_persisted_model(self, directory, transport, store):
        context = ChatContext(transport, directory, store, preferences=ChatPreferences(model="b"))
        assert await context.discover() == "b"
