import time
from typing import Optional

import aiosqlite


class LedgerRepo:
    """Processed-event ledger and the processor's last committed height."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def is_processed(self, block_height: int, event_index: int) -> bool:
        async with self._db.execute(
            "SELECT 1 FROM processed_events WHERE block_height = ? AND event_index = ?",
            (block_height, event_index),
        ) as cursor:
            row = await cursor.fetchone()
        return row is not None

    async def record(self, block_height: int, event_index: int, kind: str, outcome: str = "applied"):
        await self._db.execute(
            "INSERT INTO processed_events (block_height, event_index, kind, outcome, processed_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (block_height, event_index, kind, outcome, time.time()),
        )

    async def count_skipped(self) -> int:
        async with self._db.execute(
            "SELECT COUNT(*) FROM processed_events WHERE outcome = 'skipped'"
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def get_last_height(self) -> Optional[int]:
        async with self._db.execute(
            "SELECT last_height FROM processor_status WHERE id = 1"
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def set_last_height(self, height: int):
        """Advance the committed height. A re-delivered older block leaves it in place."""
        await self._db.execute(
            "INSERT INTO processor_status (id, last_height, updated_at) VALUES (1, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET last_height = MAX(last_height, excluded.last_height), "
            "updated_at = excluded.updated_at",
            (height, time.time()),
        )
