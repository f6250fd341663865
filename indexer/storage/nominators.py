import sqlite3
from typing import List, Optional

import aiosqlite

from indexer.errors import DuplicateEntityError

_COLUMNS = "id, round_id, account, bond"


def nominator_snapshot_id(round_index: int, account: str) -> str:
    return f"{round_index}-{account}"


def _row_to_snapshot(row) -> dict:
    return {
        "id": row[0],
        "round_id": row[1],
        "account": row[2],
        "bond": int(row[3]),
    }


class NominatorSnapshotRepo:
    """Per-round nominator snapshots."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def insert(self, snapshot: dict) -> dict:
        await self.insert_batch([snapshot])
        return snapshot

    async def insert_batch(self, snapshots: List[dict]):
        if not snapshots:
            return
        try:
            await self._db.executemany(
                f"INSERT INTO nominator_snapshots ({_COLUMNS}) VALUES (?, ?, ?, ?)",
                [(s["id"], s["round_id"], s["account"], str(s["bond"])) for s in snapshots],
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateEntityError(
                    "nominator_snapshots", ",".join(s["id"] for s in snapshots)
                ) from e
            raise

    async def get(self, round_index: int, account: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM nominator_snapshots WHERE id = ?",
            (nominator_snapshot_id(round_index, account),),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_snapshot(row) if row else None

    async def list_for_round(self, round_index: int) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM nominator_snapshots WHERE round_id = ? ORDER BY account",
            (str(round_index),),
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_snapshot(row))
        return results


class NominatorRepo:
    """Cross-round nominator identities."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def get(self, account: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT id FROM nominators WHERE id = ?", (account,)
        ) as cursor:
            row = await cursor.fetchone()
        return {"id": row[0]} if row else None

    async def get_or_create(self, account: str) -> dict:
        await self._db.execute(
            "INSERT OR IGNORE INTO nominators (id) VALUES (?)", (account,)
        )
        return {"id": account}

    async def ensure_many(self, accounts: List[str]):
        await self._db.executemany(
            "INSERT OR IGNORE INTO nominators (id) VALUES (?)",
            [(a,) for a in accounts],
        )

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM nominators") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
