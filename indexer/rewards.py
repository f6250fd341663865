"""
rewards.py - Reward aggregator.

For a collator rewarded in the current round:

    apr    = reward * APR_SCALE / total_bond        (left unset when total_bond == 0)
    apr24h = (APR_WINDOW * apr24h - prior_apr + apr) / APR_WINDOW

``prior_apr`` is the collator's apr APR_WINDOW rounds back; during a
collator's first rounds the lookup falls back to 3 then 2 rounds back, and
with no prior snapshot at all the average is seeded with the current apr.
An unset apr counts as 0 inside the moving sum.

APR_SCALE = 100_000 expresses apr as the per-round reward rate in units of
1e-5 of the bonded amount (thousandths of a percent). An apr of 1500.0
means the round paid 1.5% of total_bond.

Rewards to accounts without a collator snapshot are nominator payouts: they
are logged to history with no rate tracking.
"""

import logging
from typing import TYPE_CHECKING, Optional

from indexer import history
from indexer.errors import MissingReferenceError

if TYPE_CHECKING:
    from indexer.context import EventContext
    from indexer.events import RewardedData
    from indexer.history import HistoryLogWriter
    from indexer.storage import StorageManager

logger = logging.getLogger("rewards")

APR_SCALE = 100_000
APR_WINDOW = 4            # rounds (4 x 6h = 24h)
PRIOR_ROUND_OFFSETS = (4, 3, 2)


def compute_apr(reward: int, total_bond: int) -> Optional[float]:
    if total_bond <= 0:
        return None
    return reward * APR_SCALE / total_bond


def rolling_apr(previous_avg: float, prior_apr: Optional[float], current_apr: Optional[float]) -> float:
    return (APR_WINDOW * previous_avg - (prior_apr or 0.0) + (current_apr or 0.0)) / APR_WINDOW


class RewardAggregator:
    """Applies Rewarded events to snapshots and the rolling APR."""

    def __init__(self, storage: "StorageManager", history_writer: "HistoryLogWriter"):
        self.storage = storage
        self.history = history_writer

    async def handle_rewarded(self, ctx: "EventContext", data: "RewardedData") -> dict:
        if ctx.cursor is None:
            raise MissingReferenceError(f"Reward at block {ctx.block_height} precedes the first round")

        snapshot = await self.storage.collator_snapshots.get(ctx.cursor.index, data.account)
        if snapshot is None:
            await self.storage.nominators.get_or_create(data.account)
            await self.history.append(ctx, history.REWARDED, data.rewards, nominator=data.account)
            logger.debug("Round %d: nominator %s rewarded %d", ctx.cursor.index, data.account, data.rewards)
            return {"account": data.account, "role": "nominator", "rewards": data.rewards}

        snapshot["reward_amount"] = data.rewards
        snapshot["apr"] = compute_apr(data.rewards, snapshot["total_bond"])
        if snapshot["apr"] is None:
            logger.warning(
                "Round %d: collator %s has zero total bond, apr not computed",
                ctx.cursor.index, data.account,
            )
        await self.storage.collator_snapshots.save_reward(snapshot)

        collator = await self.storage.collators.get_or_create(data.account)
        prior = await self._find_prior_snapshot(ctx.cursor.index, data.account)
        if prior is not None:
            apr24h = rolling_apr(collator["apr24h"], prior["apr"], snapshot["apr"])
        else:
            apr24h = snapshot["apr"] or 0.0
        await self.storage.collators.set_apr24h(data.account, apr24h)

        await self.history.append(ctx, history.REWARDED, data.rewards, collator=data.account)
        logger.info(
            "Round %d: collator %s rewarded %d apr=%s apr24h=%.4f",
            ctx.cursor.index, data.account, data.rewards, snapshot["apr"], apr24h,
        )
        return {
            "account": data.account,
            "role": "collator",
            "rewards": data.rewards,
            "apr": snapshot["apr"],
            "apr24h": apr24h,
        }

    async def _find_prior_snapshot(self, round_index: int, account: str) -> Optional[dict]:
        for offset in PRIOR_ROUND_OFFSETS:
            prior_index = round_index - offset
            if prior_index < 0:
                continue
            prior = await self.storage.collator_snapshots.get(prior_index, account)
            if prior is not None:
                return prior
        return None
