import sqlite3
from typing import List, Optional

import aiosqlite

from indexer.errors import DuplicateEntityError

HISTORY_KINDS = ("Delegated", "BondIncreased", "BondDecreased", "Revoked", "Rewarded")

_COLUMNS = "id, block_height, timestamp, kind, round_id, collator_id, nominator_id, amount"


def _row_to_event(row) -> dict:
    return {
        "id": row[0],
        "block_height": row[1],
        "timestamp": row[2],
        "kind": row[3],
        "round_id": row[4],
        "collator_id": row[5],
        "nominator_id": row[6],
        "amount": int(row[7]),
    }


class HistoryRepo:
    """Insert + read queries for the append-only history log."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def insert(self, event: dict) -> dict:
        try:
            await self._db.execute(
                f"INSERT INTO history_events ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    event["id"],
                    event["block_height"],
                    event["timestamp"],
                    event["kind"],
                    event["round_id"],
                    event.get("collator_id"),
                    event.get("nominator_id"),
                    str(event["amount"]),
                ),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateEntityError("history_events", event["id"]) from e
            raise
        return event

    async def get(self, event_id: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM history_events WHERE id = ?", (event_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_event(row) if row else None

    async def list(
        self,
        account: Optional[str] = None,
        kind: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[dict]:
        query = f"SELECT {_COLUMNS} FROM history_events"
        clauses = []
        params: tuple = ()
        if account:
            clauses.append("(collator_id = ? OR nominator_id = ?)")
            params += (account, account)
        if kind:
            clauses.append("kind = ?")
            params += (kind,)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY block_height DESC, id"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params += (limit, offset)
        results = []
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append(_row_to_event(row))
        return results

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM history_events") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
