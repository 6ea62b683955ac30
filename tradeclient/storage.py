"""Durable selection store — remembers the active account across restarts."""

from pathlib import Path

import aiosqlite
from loguru import logger

from tradeclient.config import settings

REGULAR_KEY = "selectedAccountId"
CHALLENGE_KEY = "selectedChallengeAccountId"


class SelectionStore:
    """Small key/value table. At most one of the two selection keys is set."""

    def __init__(self, db_path: str | None = None):
        self.db_path = db_path or settings.store_path
        self._db: aiosqlite.Connection | None = None

    async def connect(self):
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute(
            "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )
        await self._db.commit()
        logger.info(f"Selection store opened: {self.db_path}")

    async def disconnect(self):
        if self._db:
            await self._db.close()
            self._db = None

    async def get(self, key: str) -> str | None:
        cursor = await self._db.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row else None

    async def set(self, key: str, value: str):
        await self._upsert(key, value)
        await self._db.commit()

    async def _upsert(self, key: str, value: str):
        await self._db.execute(
            "INSERT INTO kv (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    # --- Selection ---

    async def _write_selection(self, key: str | None, value: str | None, drop: tuple[str, ...]):
        """Set one selection key and delete the others in a single transaction."""
        try:
            if key:
                await self._upsert(key, value)
            for other in drop:
                await self._db.execute("DELETE FROM kv WHERE key = ?", (other,))
            await self._db.commit()
        except aiosqlite.Error as e:
            logger.error(f"Selection write failed, rolled back: {e}")
            await self._db.rollback()
            raise

    async def select_regular(self, account_id: str):
        await self._write_selection(REGULAR_KEY, account_id, (CHALLENGE_KEY,))

    async def select_challenge(self, account_id: str):
        await self._write_selection(CHALLENGE_KEY, account_id, (REGULAR_KEY,))

    async def clear(self):
        await self._write_selection(None, None, (REGULAR_KEY, CHALLENGE_KEY))

    async def load_selection(self) -> tuple[str | None, str | None]:
        """(regular id, challenge id) as last persisted."""
        return await self.get(REGULAR_KEY), await self.get(CHALLENGE_KEY)
