"""
processor.py - Staking event processor.

Routes decoded events to the snapshot builder, the bonding engine and the
reward aggregator, and owns the transaction boundaries:

 - one SQLite transaction per block; ``processor_status.last_height`` is
   written inside it, so after a crash processing resumes from the last
   fully committed block
 - one savepoint per event; a MissingReferenceError rolls the event back
   and the event is recorded as skipped
 - delta-based events (bonding, rewards) are checked against the
   processed-event ledger keyed by (block height, event index) and applied
   at most once. NewRound events are not: a replayed round change fails on
   the Round insert.

The current round is read from storage for every event and passed to the
handler as a RoundCursor.
"""

import logging
from typing import TYPE_CHECKING, Iterable, List, Optional

from indexer import events
from indexer.bonding import IncrementalUpdateEngine
from indexer.context import EventContext, RoundCursor
from indexer.errors import IndexerError, MissingReferenceError
from indexer.history import HistoryLogWriter
from indexer.rewards import RewardAggregator
from indexer.snapshot import RoundSnapshotBuilder
from indexer.source import DEFAULT_BATCH_SIZE, batched

if TYPE_CHECKING:
    from indexer.chain_state import ChainStateReader
    from indexer.models import Block, RawEvent
    from indexer.storage import StorageManager

logger = logging.getLogger("processor")

APPLIED = "applied"
SKIPPED = "skipped"
REPLAYED = "replayed"
IGNORED = "ignored"


class StakingProcessor:
    """Single-writer projection of staking events into the round model."""

    def __init__(self, storage: "StorageManager", chain: "ChainStateReader"):
        self.storage = storage
        self.history = HistoryLogWriter(storage.history)
        self.snapshots = RoundSnapshotBuilder(storage, chain)
        self.bonding = IncrementalUpdateEngine(storage, chain, self.history)
        self.rewards = RewardAggregator(storage, self.history)
        self._handlers = {
            events.NEW_ROUND: self.snapshots.handle_new_round,
            events.DELEGATION: self.bonding.handle_delegation,
            events.DELEGATION_INCREASED: self.bonding.handle_increase,
            events.DELEGATION_DECREASED: self.bonding.handle_decrease,
            events.DELEGATION_REVOKED: self.bonding.handle_revoke,
            events.REWARDED: self.rewards.handle_rewarded,
        }

    async def last_committed_height(self) -> Optional[int]:
        return await self.storage.ledger.get_last_height()

    async def run(self, blocks: Iterable["Block"], batch_size: int = DEFAULT_BATCH_SIZE) -> dict:
        totals = _empty_stats()
        for batch in batched(blocks, batch_size):
            stats = await self.process_batch(batch)
            for key, value in stats.items():
                totals[key] += value
            logger.info(
                "Batch committed up to block %d (applied=%d skipped=%d replayed=%d)",
                batch[-1].height, stats[APPLIED], stats[SKIPPED], stats[REPLAYED],
            )
        return totals

    async def process_batch(self, blocks: List["Block"]) -> dict:
        stats = _empty_stats()
        for block in blocks:
            block_stats = await self.process_block(block)
            for key, value in block_stats.items():
                stats[key] += value
        return stats

    async def process_block(self, block: "Block") -> dict:
        stats = _empty_stats()
        try:
            async with self.storage.transaction():
                for event in block.events:
                    outcome = await self._process_event(block, event)
                    stats[outcome] += 1
                await self.storage.ledger.set_last_height(block.height)
        except IndexerError:
            logger.exception("Halting: block %d rolled back", block.height)
            raise
        return stats

    async def _process_event(self, block: "Block", event: "RawEvent") -> str:
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.debug("Unhandled event %s at block %d", event.kind, block.height)
            return IGNORED

        data = events.decode(event.kind, event.version, event.payload)

        ledgered = event.kind != events.NEW_ROUND
        if ledgered and await self.storage.ledger.is_processed(block.height, event.index):
            logger.info("Event %d/%d (%s) already processed", block.height, event.index, event.kind)
            return REPLAYED

        cursor = RoundCursor.from_round(await self.storage.rounds.get_current())
        ctx = EventContext(
            block_height=block.height,
            block_timestamp=block.timestamp,
            event_index=event.index,
            kind=event.kind,
            cursor=cursor,
        )
        try:
            async with self.storage.savepoint():
                await handler(ctx, data)
            outcome = APPLIED
        except MissingReferenceError as e:
            logger.warning("Skipping %s at %d/%d: %s", event.kind, block.height, event.index, e)
            outcome = SKIPPED

        if ledgered:
            await self.storage.ledger.record(block.height, event.index, event.kind, outcome)
        return outcome


def _empty_stats() -> dict:
    return {APPLIED: 0, SKIPPED: 0, REPLAYED: 0, IGNORED: 0}
