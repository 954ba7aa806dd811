"""Tests for the bounded request context."""

import pytest

from conftest import make_conversation
from models.chat_models import Message
from services.chat.context_builder import build_context

S = "composed instruction"


def _texts(context):
    return [entry["content"] for entry in context[1:]]


class TestBuildContext:
    def test_ten_turns_window_six(self):
        # turn10 is the latest user turn, so nothing is dropped from the tail.
        conversation = make_conversation(10, first_role="assistant")
        context = build_context(conversation, S, window=6)
        assert context[0] == {"role": "system", "content": S}
        assert _texts(context) == ["turn6", "turn7", "turn8", "turn9", "turn10"]

    def test_trailing_assistant_is_dropped(self):
        conversation = make_conversation(4)
        context = build_context(conversation, S, window=6)
        assert [e["role"] for e in context] == ["system", "user", "assistant", "user"]
        assert _texts(context) == ["turn1", "turn2", "turn3"]

    def test_empty_conversation(self):
        assert build_context([], S) == [{"role": "system", "content": S}]

    def test_repeated_roles_are_skipped(self):
        conversation = [
            Message("user", "u1"),
            Message("user", "u1-again"),
            Message("assistant", "a1"),
            Message("assistant", "a1-again"),
            Message("user", "u2"),
        ]
        context = build_context(conversation, S)
        assert _texts(context) == ["u1", "a1", "u2"]

    def test_stored_system_entries_are_ignored(self):
        conversation = [Message("system", "old prompt"), Message("user", "hi")]
        context = build_context(conversation, S)
        assert context == [{"role": "system", "content": S}, {"role": "user", "content": "hi"}]

    def test_user_image_becomes_multi_part(self):
        conversation = [Message("user", "what is this?", image="data:image/png;base64,AAAA")]
        entry = build_context(conversation, S)[1]
        assert entry["content"] == [
            {"type": "text", "text": "what is this?"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}},
        ]

    def test_history_is_not_modified(self):
        conversation = make_conversation(12)
        snapshot = list(conversation)
        build_context(conversation, S, window=3)
        assert conversation == snapshot

    def test_window_must_be_positive(self):
        with pytest.raises(ValueError):
            build_context([], S, window=0)

    @pytest.mark.parametrize("window", [1, 2, 3, 6, 20])
    @pytest.mark.parametrize("length", [0, 1, 5, 10, 25])
    @pytest.mark.parametrize("first_role", ["user", "assistant"])
    def test_structural_properties(self, window, length, first_role):
        conversation = make_conversation(length, first_role=first_role)
        context = build_context(conversation, S, window=window)

        roles = [entry["role"] for entry in context]
        assert roles[0] == "system"
        assert roles.count("system") == 1
        assert all(a != b for a, b in zip(roles, roles[1:]))
        assert len(context) - 1 <= window - 1
        if len(context) > 1:
            assert roles[-1] == "user"

        # Kept entries are the most recent ones, in order.
        expected = [m.text for m in conversation]
        if conversation and conversation[-1].role == "assistant":
            expected = expected[:-1]
        expected = expected[max(0, len(expected) - (window - 1)):] if window > 1 else []
        assert _texts(context) == expected
