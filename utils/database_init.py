import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

LOGGER = logging.getLogger(__name__)

DB_FILENAME = "chat.db"


class AsyncDatabaseInitializer:
    """
    Manage the async SQLite database holding conversations and settings.

    - The database file is located at: <database_dir>/chat.db
    - A RuntimeError is raised if the directory is invalid (a file, or it
      cannot be created).
    - On the first call to `ensure_database()` for a given instance the
      CONVERSATION and SETTING tables are created if missing. Existing data
      is kept across restarts.
    - Subsequent calls to `ensure_database()` on the same instance are no-ops,
      so it is safe for `connection()` to call it.
    """

    def __init__(self, database_dir: Path | str) -> None:
        db_dir = Path(database_dir).expanduser()

        # If the path exists but is not a directory, that's a configuration error.
        if db_dir.exists() and not db_dir.is_dir():
            raise RuntimeError(
                f"DATABASE_DIR={str(database_dir)!r} points to a file, not a directory "
                f"({db_dir}). Please set DATABASE_DIR to a directory path."
            )

        try:
            db_dir.mkdir(parents=True, exist_ok=True)
        except Exception as exc:
            raise RuntimeError(
                f"Failed to create or access database directory at {db_dir}"
            ) from exc

        self.db_dir = db_dir
        self.db_path = self.db_dir / DB_FILENAME
        self._initialized = False

    async def ensure_database(self) -> None:
        """
        Ensure the SQLite database and its tables exist at `self.db_path`.

        Subsequent calls on the same instance are no-ops.
        """
        if self._initialized:
            return

        max_attempts = 3
        for attempt in range(1, max_attempts + 1):
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    await db.execute(
                        """
                        CREATE TABLE IF NOT EXISTS CONVERSATION (
                            id TEXT PRIMARY KEY,
                            messages TEXT NOT NULL,
                            updated_at INTEGER
                        )
                        """
                    )
                    await db.execute(
                        """
                        CREATE TABLE IF NOT EXISTS SETTING (
                            key TEXT PRIMARY KEY,
                            value TEXT
                        )
                        """
                    )
                    await db.commit()
                break
            except FileNotFoundError:
                # On some platforms a transient missing file error may occur; retry a few times.
                if attempt >= max_attempts:
                    raise
                await asyncio.sleep(0.1 * attempt)

        LOGGER.info("Database ready at %s", self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Async context manager yielding an `aiosqlite.Connection`.

        The tables are created on first use via `ensure_database()`.
        """
        await self.ensure_database()
        conn = await aiosqlite.connect(self.db_path)
        try:
            yield conn
        finally:
            await conn.close()
