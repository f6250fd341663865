"""Pydantic models for the block stream and the query API."""

from typing import Any, List, Optional

from pydantic import BaseModel, Field, model_validator


class RawEvent(BaseModel):
    kind: str
    version: str
    payload: Any = None
    index: Optional[int] = Field(default=None, ge=0)


class Block(BaseModel):
    height: int = Field(ge=0)
    timestamp: int  # ms since epoch
    events: List[RawEvent] = []

    @model_validator(mode="after")
    def _number_events(self):
        taken = set()
        for event in self.events:
            if event.index is None:
                continue
            if event.index in taken:
                raise ValueError(f"duplicate event index {event.index} in block {self.height}")
            taken.add(event.index)
        # Events without an explicit index take their position in the block,
        # or the next index no explicit event claimed
        for position, event in enumerate(self.events):
            if event.index is not None:
                continue
            index = position
            while index in taken:
                index += 1
            event.index = index
            taken.add(index)
        return self


class StatusResponse(BaseModel):
    last_height: Optional[int] = None
    current_round: Optional[int] = None
    rounds: int = 0
    history_events: int = 0
    skipped_events: int = 0
