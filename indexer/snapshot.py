"""
snapshot.py - Round snapshot builder.

On every NewRound event:
 - inserts the Round row (a replayed event fails here with DuplicateEntityError)
 - closes the previous round (ended_at = height - 1)
 - reads the selected collator set and each collator's self bond and
   delegations as of the block *preceding* the event, so state changed by
   the round change itself does not leak into the opening snapshot
 - writes one CollatorSnapshot per collator, one NominatorSnapshot per
   distinct nominator and one Delegation per (collator, nominator) pair

totalBond of every collator snapshot equals its self bond plus the sum of
the delegation rows written for it.
"""

import logging
from typing import TYPE_CHECKING, Dict, List

from indexer.errors import RoundOrderError
from indexer.storage import collator_snapshot_id, delegation_id, nominator_snapshot_id

if TYPE_CHECKING:
    from indexer.chain_state import CandidateData, ChainStateReader
    from indexer.context import EventContext
    from indexer.events import NewRoundData
    from indexer.storage import StorageManager

logger = logging.getLogger("snapshot")


def build_collator_snapshot(round_index: int, round_id: str, data: "CandidateData") -> dict:
    return {
        "id": collator_snapshot_id(round_index, data.account),
        "round_id": round_id,
        "account": data.account,
        "self_bond": data.self_bond,
        "total_bond": data.total_bond,
        "reward_amount": None,
        "apr": None,
    }


class RoundSnapshotBuilder:
    """Materializes the full per-round staking snapshot."""

    def __init__(self, storage: "StorageManager", chain: "ChainStateReader"):
        self.storage = storage
        self.chain = chain

    async def handle_new_round(self, ctx: "EventContext", data: "NewRoundData") -> dict:
        previous = ctx.cursor
        if previous is not None and data.round < previous.index:
            raise RoundOrderError(
                f"Round {data.round} at block {ctx.block_height} does not follow round {previous.index}"
            )

        round_row = await self.storage.rounds.insert(
            index=data.round,
            timestamp=ctx.block_timestamp,
            started_at=ctx.block_height,
            collators_count=data.selected_collators_number,
            total=data.total_balance,
        )
        if previous is not None:
            await self.storage.rounds.set_ended(previous.index, ctx.block_height - 1)

        summary = {"round": data.round, "collators": 0, "nominators": 0, "delegations": 0}
        height = ctx.previous_height

        collator_ids = self.chain.selected_candidates(height)
        if not collator_ids:
            logger.warning("Round %d: no selected candidates at block %d", data.round, height)
            return summary

        collators_data = self.chain.candidate_bond_and_delegations(height, collator_ids)
        if collators_data is None:
            logger.warning("Round %d: no candidate read path resolved at block %d", data.round, height)
            return summary

        snapshots: Dict[str, dict] = {}
        # (collator, nominator) -> amount
        pairs: Dict[tuple, int] = {}
        for collator in collators_data:
            if collator is None or collator.account in snapshots:
                continue
            for d in collator.delegations:
                key = (collator.account, d.nominator)
                pairs[key] = pairs.get(key, 0) + d.amount
            snapshots[collator.account] = build_collator_snapshot(data.round, round_row["id"], collator)

        nominator_ids: List[str] = list(dict.fromkeys(n for _, n in pairs))
        nominator_snapshots = self._build_nominator_snapshots(
            data.round, round_row["id"], height, nominator_ids, pairs,
        )

        delegations = [
            {
                "id": delegation_id(data.round, collator, nominator),
                "round_id": round_row["id"],
                "collator_snapshot_id": snapshots[collator]["id"],
                "nominator_snapshot_id": nominator_snapshots[nominator]["id"],
                "amount": amount,
            }
            for (collator, nominator), amount in pairs.items()
        ]

        await self.storage.collators.ensure_many(list(snapshots))
        await self.storage.nominators.ensure_many(nominator_ids)
        await self.storage.collator_snapshots.insert_batch(list(snapshots.values()))
        await self.storage.nominator_snapshots.insert_batch(list(nominator_snapshots.values()))
        await self.storage.delegations.insert_batch(delegations)

        summary.update(
            collators=len(snapshots), nominators=len(nominator_snapshots), delegations=len(delegations),
        )
        logger.info(
            "Round %d snapshot at block %d: collators=%d nominators=%d delegations=%d",
            data.round, ctx.block_height, summary["collators"], summary["nominators"], summary["delegations"],
        )
        return summary

    def _build_nominator_snapshots(
        self, round_index: int, round_id: str, height: int, nominator_ids: List[str], pairs: Dict[tuple, int],
    ) -> Dict[str, dict]:
        if not nominator_ids:
            return {}
        bonds = self.chain.nominator_bond(height, nominator_ids)
        if bonds is None:
            logger.warning("Round %d: no nominator read path resolved at block %d", round_index, height)
            bonds = [None] * len(nominator_ids)

        result: Dict[str, dict] = {}
        for account, data in zip(nominator_ids, bonds):
            if data is not None:
                bond = data.bond
            else:
                # Keep the delegation rows: fall back to what this snapshot saw bonded
                bond = sum(amount for (_, n), amount in pairs.items() if n == account)
                logger.warning("Round %d: nominator %s has no state, bond=%d from delegations",
                               round_index, account, bond)
            result[account] = {
                "id": nominator_snapshot_id(round_index, account),
                "round_id": round_id,
                "account": account,
                "bond": bond,
            }
        return result
