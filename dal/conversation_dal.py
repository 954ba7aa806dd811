"""Async Data Access Layer for the CONVERSATION table.

Implements the `ConversationStore` contract on top of
`utils.database_init.AsyncDatabaseInitializer`: one JSON array of messages
per conversation id.
"""

from __future__ import annotations

import json
import logging
import time
from typing import List, Sequence

from models.chat_models import Message
from utils.database_init import AsyncDatabaseInitializer

LOGGER = logging.getLogger(__name__)


class ConversationDAL:
    """Data access layer for stored conversations.

    The constructor accepts an `AsyncDatabaseInitializer` (or any object
    exposing an async `connection()` context manager that yields an
    `aiosqlite.Connection`).
    """

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def load(self, conversation_id: str) -> List[Message]:
        """Return the ordered messages of a conversation (empty when unknown)."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "SELECT messages FROM CONVERSATION WHERE id = ?",
                (conversation_id,),
            )
            row = await cur.fetchone()

        if not row or not row[0]:
            return []
        try:
            raw = json.loads(row[0])
        except ValueError:
            LOGGER.error("Stored history for %s is not valid JSON; treating it as empty", conversation_id)
            return []
        return [Message.from_dict(item) for item in raw if isinstance(item, dict) and item.get("role")]

    async def save(self, conversation_id: str, messages: Sequence[Message]) -> None:
        """Replace the stored array in a single statement."""
        payload = json.dumps([message.to_dict() for message in messages], ensure_ascii=False)
        async with self._db.connection() as conn:
            await conn.execute(
                """
                INSERT INTO CONVERSATION (id, messages, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET messages = excluded.messages, updated_at = excluded.updated_at
                """,
                (conversation_id, payload, int(time.time())),
            )
            await conn.commit()

    async def delete(self, conversation_id: str) -> bool:
        """Delete a conversation row. Returns True if a row was deleted."""
        async with self._db.connection() as conn:
            cur = await conn.execute("DELETE FROM CONVERSATION WHERE id = ?", (conversation_id,))
            await conn.commit()
            return cur.rowcount > 0
