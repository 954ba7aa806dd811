"""Async Data Access Layer for the SETTING table."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from models.preferences import ChatPreferences
from utils.database_init import AsyncDatabaseInitializer

LOGGER = logging.getLogger(__name__)

PREFERENCES_KEY = "chat_preferences"


class SettingsDAL:
    """Key/value settings, with typed access to the chat preferences."""

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def get(self, key: str) -> Optional[str]:
        async with self._db.connection() as conn:
            cur = await conn.execute("SELECT value FROM SETTING WHERE key = ?", (key,))
            row = await cur.fetchone()
            return row[0] if row else None

    async def put(self, key: str, value: str) -> None:
        async with self._db.connection() as conn:
            await conn.execute(
                "INSERT INTO SETTING (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
            await conn.commit()

    async def load_preferences(self) -> ChatPreferences:
        """Return stored preferences, or defaults when missing or invalid."""
        raw = await self.get(PREFERENCES_KEY)
        if not raw:
            return ChatPreferences()
        try:
            return ChatPreferences.model_validate_json(raw)
        except ValidationError as exc:
            LOGGER.warning("Stored preferences are invalid; using defaults: %s", exc)
            return ChatPreferences()

    async def save_preferences(self, preferences: ChatPreferences) -> None:
        await self.put(PREFERENCES_KEY, preferences.model_dump_json())
