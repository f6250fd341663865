import sqlite3
from typing import List, Optional

import aiosqlite

from indexer.errors import DuplicateEntityError

_COLUMNS = "id, round_index, timestamp, started_at, ended_at, collators_count, total"


def _row_to_round(row) -> dict:
    return {
        "id": row[0],
        "index": row[1],
        "timestamp": row[2],
        "started_at": row[3],
        "ended_at": row[4],
        "collators_count": row[5],
        "total": int(row[6]),
    }


class RoundRepo:
    """Rounds table. Rows are immutable apart from ``ended_at``."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def insert(
        self,
        index: int,
        timestamp: int,
        started_at: int,
        collators_count: int,
        total: int,
    ) -> dict:
        round_id = str(index)
        try:
            await self._db.execute(
                f"INSERT INTO rounds ({_COLUMNS}) VALUES (?, ?, ?, ?, NULL, ?, ?)",
                (round_id, index, timestamp, started_at, collators_count, str(total)),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateEntityError("rounds", round_id) from e
            raise
        return {
            "id": round_id,
            "index": index,
            "timestamp": timestamp,
            "started_at": started_at,
            "ended_at": None,
            "collators_count": collators_count,
            "total": total,
        }

    async def get(self, index: int) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM rounds WHERE round_index = ?", (index,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_round(row) if row else None

    async def get_current(self) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM rounds ORDER BY round_index DESC LIMIT 1"
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_round(row) if row else None

    async def set_ended(self, index: int, ended_at: int):
        await self._db.execute(
            "UPDATE rounds SET ended_at = ? WHERE round_index = ? AND ended_at IS NULL",
            (ended_at, index),
        )

    async def list_recent(self, limit: Optional[int] = None, offset: int = 0) -> List[dict]:
        query = f"SELECT {_COLUMNS} FROM rounds ORDER BY round_index DESC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params = (limit, offset)
        results = []
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append(_row_to_round(row))
        return results

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM rounds") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
