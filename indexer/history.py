"""
history.py - Append-only audit log of state-affecting staking events.
"""

import logging
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from indexer.context import EventContext
    from indexer.storage import HistoryRepo

logger = logging.getLogger("history")

DELEGATED = "Delegated"
BOND_INCREASED = "BondIncreased"
BOND_DECREASED = "BondDecreased"
REVOKED = "Revoked"
REWARDED = "Rewarded"


def history_id(
    round_index: int,
    collator: Optional[str],
    nominator: Optional[str],
    kind: str,
    block_timestamp: int,
    event_index: int,
) -> str:
    """Deterministic id; the event index keeps same-kind events in one block apart."""
    participants = "-".join(p for p in (collator, nominator) if p)
    return f"{round_index}-{participants}-{kind}-{block_timestamp}-{event_index}"


class HistoryLogWriter:
    """Builds history records and inserts them. Never updates."""

    def __init__(self, history_repo: "HistoryRepo"):
        self._history = history_repo

    async def append(
        self,
        ctx: "EventContext",
        kind: str,
        amount: int,
        collator: Optional[str] = None,
        nominator: Optional[str] = None,
    ) -> dict:
        record = {
            "id": history_id(
                ctx.cursor.index, collator, nominator, kind, ctx.block_timestamp, ctx.event_index,
            ),
            "block_height": ctx.block_height,
            "timestamp": ctx.block_timestamp,
            "kind": kind,
            "round_id": ctx.cursor.id,
            "collator_id": collator,
            "nominator_id": nominator,
            "amount": amount,
        }
        await self._history.insert(record)
        logger.debug("History %s", record["id"])
        return record
