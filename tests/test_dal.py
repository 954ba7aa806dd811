"""Tests for the SQLite bootstrap and data access layers."""

import pytest

from dal.conversation_dal import ConversationDAL
from dal.settings_dal import PREFERENCES_KEY, SettingsDAL
from models.chat_models import Message
from models.preferences import ChatPreferences
from services.chat.conversation_store import ConversationStore, append_exchange
from utils.database_init import AsyncDatabaseInitializer


@pytest.fixture
def db(tmp_path):
    return AsyncDatabaseInitializer(tmp_path / "data")


class TestInitializer:
    def test_creates_directory(self, tmp_path):
        initializer = AsyncDatabaseInitializer(tmp_path / "nested" / "dir")
        assert initializer.db_dir.is_dir()
        assert initializer.db_path.name == "chat.db"

    def test_rejects_file_path(self, tmp_path):
        target = tmp_path / "file.txt"
        target.write_text("x")
        with pytest.raises(RuntimeError):
            AsyncDatabaseInitializer(target)

    @pytest.mark.asyncio
    async def test_existing_data_survives_restart(self, tmp_path):
        first = ConversationDAL(AsyncDatabaseInitializer(tmp_path))
        await first.save("c1", [Message("user", "persist me")])

        second = ConversationDAL(AsyncDatabaseInitializer(tmp_path))
        assert await second.load("c1") == [Message("user", "persist me")]


class TestConversationDAL:
    @pytest.mark.asyncio
    async def test_satisfies_store_contract(self, db):
        assert isinstance(ConversationDAL(db), ConversationStore)

    @pytest.mark.asyncio
    async def test_unknown_conversation_is_empty(self, db):
        assert await ConversationDAL(db).load("missing") == []

    @pytest.mark.asyncio
    async def test_save_overwrites(self, db):
        dal = ConversationDAL(db)
        await dal.save("c1", [Message("user", "one")])
        await dal.save("c1", [Message("user", "one"), Message("assistant", "two")])
        assert [m.text for m in await dal.load("c1")] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_image_and_unicode_round_trip(self, db):
        dal = ConversationDAL(db)
        messages = [Message("user", "これは何？", image="data:image/png;base64,AAAA"), Message("assistant", "猫です")]
        await dal.save("c1", messages)
        assert await dal.load("c1") == messages

    @pytest.mark.asyncio
    async def test_append_exchange(self, db):
        dal = ConversationDAL(db)
        await append_exchange(dal, "c1", Message("user", "q"), "a")
        await append_exchange(dal, "c1", Message("user", "q2"), "a2")
        assert [m.role for m in await dal.load("c1")] == ["user", "assistant", "user", "assistant"]

    @pytest.mark.asyncio
    async def test_delete(self, db):
        dal = ConversationDAL(db)
        await dal.save("c1", [Message("user", "x")])
        assert await dal.delete("c1") is True
        assert await dal.delete("c1") is False


class TestSettingsDAL:
    @pytest.mark.asyncio
    async def test_defaults_when_missing(self, db):
        assert await SettingsDAL(db).load_preferences() == ChatPreferences()

    @pytest.mark.asyncio
    async def test_round_trip(self, db):
        settings = SettingsDAL(db)
        prefs = ChatPreferences(model="b", temperature=0.3, response_style="detailed", deep_dive=True)
        await settings.save_preferences(prefs)
        assert await settings.load_preferences() == prefs

    @pytest.mark.asyncio
    async def test_invalid_stored_json_falls_back(self, db):
        settings = SettingsDAL(db)
        await settings.put(PREFERENCES_KEY, "{not json")
        assert await settings.load_preferences() == ChatPreferences()

        await settings.put(PREFERENCES_KEY, '{"response_style": "shouty"}')
        assert await settings.load_preferences() == ChatPreferences()
