"""Per-event values threaded from the processor into each handler."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RoundCursor:
    """The current round, re-derived from storage for every event."""
    index: int
    id: str
    started_at: int

    @classmethod
    def from_round(cls, round_row: Optional[dict]) -> Optional["RoundCursor"]:
        if round_row is None:
            return None
        return cls(index=round_row["index"], id=round_row["id"], started_at=round_row["started_at"])


@dataclass(frozen=True)
class EventContext:
    block_height: int
    block_timestamp: int  # ms since epoch
    event_index: int
    kind: str
    cursor: Optional[RoundCursor] = None

    @property
    def previous_height(self) -> int:
        return max(self.block_height - 1, 0)
