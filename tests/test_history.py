"""Tests for user-initiated history edits."""

import json

import pytest

from conftest import make_conversation
from models.chat_models import Message
from services.chat import history
from services.chat.errors import HistoryError

CID = "conv-history"


class TestEditAndRegenerate:
    @pytest.mark.asyncio
    async def test_edit_truncates_before_user_turn(self, store):
        await store.save(CID, make_conversation(6))
        target, remaining = await history.edit_from(store, CID, 2)
        assert target == Message("user", "turn3")
        assert [m.text for m in remaining] == ["turn1", "turn2"]
        assert await store.load(CID) == remaining

    @pytest.mark.asyncio
    async def test_edit_rejects_assistant_turn(self, store):
        await store.save(CID, make_conversation(4))
        with pytest.raises(HistoryError):
            await history.edit_from(store, CID, 1)
        assert len(await store.load(CID)) == 4

    @pytest.mark.asyncio
    async def test_edit_rejects_bad_index(self, store):
        with pytest.raises(HistoryError):
            await history.edit_from(store, CID, 0)

    @pytest.mark.asyncio
    async def test_prepare_regenerate_splits_without_saving(self, store):
        await store.save(CID, make_conversation(4))
        user, remaining = history.prepare_regenerate(await store.load(CID))
        assert user == Message("user", "turn3")
        assert [m.text for m in remaining] == ["turn1", "turn2"]
        assert len(await store.load(CID)) == 4

    def test_prepare_regenerate_does_not_mutate_input(self):
        messages = make_conversation(4)
        history.prepare_regenerate(messages)
        assert len(messages) == 4

    @pytest.mark.parametrize("messages", [[], [Message("assistant", "hello")]])
    def test_prepare_regenerate_needs_a_user_turn(self, messages):
        with pytest.raises(HistoryError):
            history.prepare_regenerate(messages)


class TestDeleteClearExport:
    @pytest.mark.asyncio
    async def test_delete_message(self, store):
        await store.save(CID, make_conversation(3))
        remaining = await history.delete_message(store, CID, 1)
        assert [m.text for m in remaining] == ["turn1", "turn3"]
        with pytest.raises(HistoryError):
            await history.delete_message(store, CID, 5)

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await store.save(CID, make_conversation(3))
        await history.clear(store, CID)
        assert await store.load(CID) == []

    @pytest.mark.asyncio
    async def test_export_shape(self, store):
        await store.save(CID, [Message("user", "look", image="data:image/png;base64,AA"), Message("assistant", "ok")])
        exported = await history.export_history(store, CID)
        assert exported == [
            {"role": "user", "content": "look", "imageData": "data:image/png;base64,AA"},
            {"role": "assistant", "content": "ok"},
        ]


class TestImport:
    def test_parse_valid_json_text(self):
        raw = json.dumps([{"role": "system", "content": "s"}, {"role": "user", "content": "u", "imageData": "x"}])
        messages = history.parse_import(raw)
        assert messages == [Message("system", "s"), Message("user", "u", image="x")]

    @pytest.mark.parametrize(
        "payload",
        [
            "not json",
            {"role": "user", "content": "x"},
            [1],
            [{"role": "tool", "content": "x"}],
            [{"role": "user"}],
            [{"role": "user", "content": "x", "imageData": 5}],
        ],
    )
    def test_parse_rejects_invalid(self, payload):
        with pytest.raises(HistoryError):
            history.parse_import(payload)

    def test_size_cap(self):
        with pytest.raises(HistoryError, match="too large"):
            history.parse_import("[" + " " * (history.MAX_IMPORT_BYTES + 1) + "]")

    @pytest.mark.asyncio
    async def test_import_replaces_history(self, store):
        await store.save(CID, make_conversation(5))
        imported = await history.import_history(store, CID, [{"role": "user", "content": "fresh"}])
        assert await store.load(CID) == imported == [Message("user", "fresh")]
