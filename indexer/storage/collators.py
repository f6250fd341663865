import sqlite3
from typing import List, Optional

import aiosqlite

from indexer.errors import DuplicateEntityError

_COLUMNS = "id, round_id, account, self_bond, total_bond, reward_amount, apr"


def collator_snapshot_id(round_index: int, account: str) -> str:
    return f"{round_index}-{account}"


def _row_to_snapshot(row) -> dict:
    return {
        "id": row[0],
        "round_id": row[1],
        "account": row[2],
        "self_bond": int(row[3]),
        "total_bond": int(row[4]),
        "reward_amount": int(row[5]) if row[5] is not None else None,
        "apr": row[6],
    }


def _snapshot_params(snapshot: dict) -> tuple:
    reward = snapshot.get("reward_amount")
    return (
        snapshot["id"],
        snapshot["round_id"],
        snapshot["account"],
        str(snapshot["self_bond"]),
        str(snapshot["total_bond"]),
        str(reward) if reward is not None else None,
        snapshot.get("apr"),
    )


class CollatorSnapshotRepo:
    """Per-round collator snapshots."""

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
                f"INSERT INTO collator_snapshots ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                [_snapshot_params(s) for s in snapshots],
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateEntityError(
                    "collator_snapshots", ",".join(s["id"] for s in snapshots)
                ) from e
            raise

    async def get(self, round_index: int, account: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM collator_snapshots WHERE id = ?",
            (collator_snapshot_id(round_index, account),),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_snapshot(row) if row else None

    async def save_reward(self, snapshot: dict):
        reward = snapshot.get("reward_amount")
        await self._db.execute(
            "UPDATE collator_snapshots SET reward_amount = ?, apr = ? WHERE id = ?",
            (str(reward) if reward is not None else None, snapshot.get("apr"), snapshot["id"]),
        )

    async def list_for_round(self, round_index: int) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM collator_snapshots WHERE round_id = ? ORDER BY account",
            (str(round_index),),
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_snapshot(row))
        return results

    async def list_for_account(self, account: str, limit: Optional[int] = None) -> List[dict]:
        query = (f"SELECT {_COLUMNS} FROM collator_snapshots WHERE account = ? "
                 "ORDER BY CAST(round_id AS INTEGER) DESC")
        params: tuple = (account,)
        if limit is not None:
            query += " LIMIT ?"
            params = (account, limit)
        results = []
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append(_row_to_snapshot(row))
        return results


class CollatorRepo:
    """Cross-round collator identities carrying the rolling ``apr24h``."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def get(self, account: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT id, apr24h FROM collators WHERE id = ?", (account,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return {"id": row[0], "apr24h": row[1]}

    async def get_or_create(self, account: str) -> dict:
        await self._db.execute(
            "INSERT OR IGNORE INTO collators (id, apr24h) VALUES (?, 0.0)", (account,)
        )
        return await self.get(account)

    async def ensure_many(self, accounts: List[str]):
        await self._db.executemany(
            "INSERT OR IGNORE INTO collators (id, apr24h) VALUES (?, 0.0)",
            [(a,) for a in accounts],
        )

    async def set_apr24h(self, account: str, apr24h: float):
        await self._db.execute(
            "UPDATE collators SET apr24h = ? WHERE id = ?", (apr24h, account)
        )

    async def list_all(self) -> List[dict]:
        results = []
        async with self._db.execute(
            "SELECT id, apr24h FROM collators ORDER BY apr24h DESC, id"
        ) as cursor:
            async for row in cursor:
                results.append({"id": row[0], "apr24h": row[1]})
        return results
