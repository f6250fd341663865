import sqlite3
from typing import List, Optional

import aiosqlite

from indexer.errors import DuplicateEntityError

_COLUMNS = "id, round_id, collator_snapshot_id, nominator_snapshot_id, amount"


def delegation_id(round_index: int, collator: str, nominator: str) -> str:
    return f"{round_index}-{collator}-{nominator}"


def _row_to_delegation(row) -> dict:
    return {
        "id": row[0],
        "round_id": row[1],
        "collator_snapshot_id": row[2],
        "nominator_snapshot_id": row[3],
        "amount": int(row[4]),
    }


def _params(d: dict) -> tuple:
    return (
        d["id"],
        d["round_id"],
        d["collator_snapshot_id"],
        d["nominator_snapshot_id"],
        str(d["amount"]),
    )


class DelegationRepo:
    """Per-round nominator -> collator bonded amounts."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def insert(self, delegation: dict) -> dict:
        await self.insert_batch([delegation])
        return delegation

    async def insert_batch(self, delegations: List[dict]):
        if not delegations:
            return
        try:
            await self._db.executemany(
                f"INSERT INTO delegations ({_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                [_params(d) for d in delegations],
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateEntityError(
                    "delegations", ",".join(d["id"] for d in delegations)
                ) from e
            raise

    async def get(self, round_index: int, collator: str, nominator: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM delegations WHERE id = ?",
            (delegation_id(round_index, collator, nominator),),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_delegation(row) if row else None

    async def save(self, delegation: dict):
        await self._db.execute(
            "UPDATE delegations SET round_id = ?, collator_snapshot_id = ?, "
            "nominator_snapshot_id = ?, amount = ? WHERE id = ?",
            (
                delegation["round_id"],
                delegation["collator_snapshot_id"],
                delegation["nominator_snapshot_id"],
                str(delegation["amount"]),
                delegation["id"],
            ),
        )

    async def list_for_collator(self, round_index: int, collator: str) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM delegations WHERE collator_snapshot_id = ? ORDER BY id",
            (f"{round_index}-{collator}",),
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_delegation(row))
        return results

    async def count(self, round_index: Optional[int] = None) -> int:
        if round_index is not None:
            async with self._db.execute(
                "SELECT COUNT(*) FROM delegations WHERE round_id = ?", (str(round_index),)
            ) as cursor:
                row = await cursor.fetchone()
        else:
            async with self._db.execute("SELECT COUNT(*) FROM delegations") as cursor:
                row = await cursor.fetchone()
        return row[0] if row else 0
