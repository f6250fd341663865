"""
bonding.py - Incremental update engine for delegation bonding events.

Applies Delegation / DelegationIncreased / DelegationDecreased /
DelegationRevoked to the current round's snapshot. Rows the event needs but
the round snapshot never produced are backfilled from chain state
(resolve-or-create):

 - NominatorSnapshot / CollatorSnapshot: read at the event's block height
 - Delegation for a delta event: read at the preceding block, so the delta
   is applied on top of the pre-event amount

A backfill read that comes back empty raises MissingReferenceError and the
processor skips the event. Decreases and revokes never take an amount
below zero.
"""

import logging
from typing import TYPE_CHECKING, Tuple

from indexer import history
from indexer.errors import MissingReferenceError
from indexer.snapshot import build_collator_snapshot
from indexer.storage import delegation_id, nominator_snapshot_id

if TYPE_CHECKING:
    from indexer.chain_state import ChainStateReader
    from indexer.context import EventContext
    from indexer.events import BondChangeData, DelegationData, RevokedData
    from indexer.history import HistoryLogWriter
    from indexer.storage import StorageManager

logger = logging.getLogger("bonding")


class IncrementalUpdateEngine:
    """Mutates the current round's delegations as bonding events arrive."""

    def __init__(
        self,
        storage: "StorageManager",
        chain: "ChainStateReader",
        history_writer: "HistoryLogWriter",
    ):
        self.storage = storage
        self.chain = chain
        self.history = history_writer

    # -------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------

    async def handle_delegation(self, ctx: "EventContext", data: "DelegationData") -> dict:
        collator_snap, nominator_snap = await self._resolve_snapshots(ctx, data.candidate, data.delegator)
        delegation = await self.storage.delegations.get(ctx.cursor.index, data.candidate, data.delegator)
        if delegation is None:
            delegation = {
                "id": delegation_id(ctx.cursor.index, data.candidate, data.delegator),
                "round_id": ctx.cursor.id,
                "collator_snapshot_id": collator_snap["id"],
                "nominator_snapshot_id": nominator_snap["id"],
                "amount": data.locked_amount,
            }
            await self.storage.delegations.insert(delegation)
        else:
            await self._repair_references(delegation, collator_snap, nominator_snap)
            delegation["amount"] = data.locked_amount
            await self.storage.delegations.save(delegation)

        await self.history.append(
            ctx, history.DELEGATED, data.locked_amount,
            collator=data.candidate, nominator=data.delegator,
        )
        logger.info(
            "Round %d: %s delegated %d to %s",
            ctx.cursor.index, data.delegator, data.locked_amount, data.candidate,
        )
        return delegation

    async def handle_increase(self, ctx: "EventContext", data: "BondChangeData") -> dict:
        delegation = await self._apply_delta(ctx, data.candidate, data.delegator, data.amount)
        await self.history.append(
            ctx, history.BOND_INCREASED, data.amount,
            collator=data.candidate, nominator=data.delegator,
        )
        return delegation

    async def handle_decrease(self, ctx: "EventContext", data: "BondChangeData") -> dict:
        delegation = await self._apply_delta(ctx, data.candidate, data.delegator, -data.amount)
        await self.history.append(
            ctx, history.BOND_DECREASED, data.amount,
            collator=data.candidate, nominator=data.delegator,
        )
        return delegation

    async def handle_revoke(self, ctx: "EventContext", data: "RevokedData") -> dict:
        delegation = await self._apply_delta(ctx, data.candidate, data.delegator, -data.unstaked_amount)
        await self.history.append(
            ctx, history.REVOKED, data.unstaked_amount,
            collator=data.candidate, nominator=data.delegator,
        )
        return delegation

    # -------------------------------------------------------------------
    # Resolve-or-create
    # -------------------------------------------------------------------

    async def _resolve_snapshots(
        self, ctx: "EventContext", collator: str, nominator: str
    ) -> Tuple[dict, dict]:
        if ctx.cursor is None:
            raise MissingReferenceError(f"{ctx.kind} at block {ctx.block_height} precedes the first round")
        nominator_snap = await self._resolve_nominator_snapshot(ctx, nominator)
        collator_snap = await self._resolve_collator_snapshot(ctx, collator)
        return collator_snap, nominator_snap

    async def _resolve_nominator_snapshot(self, ctx: "EventContext", account: str) -> dict:
        snapshot = await self.storage.nominator_snapshots.get(ctx.cursor.index, account)
        if snapshot is None:
            bonds = self.chain.nominator_bond(ctx.block_height, [account])
            if not bonds or bonds[0] is None:
                raise MissingReferenceError(
                    f"Nominator {account} has no state at block {ctx.block_height}"
                )
            snapshot = {
                "id": nominator_snapshot_id(ctx.cursor.index, account),
                "round_id": ctx.cursor.id,
                "account": account,
                "bond": bonds[0].bond,
            }
            await self.storage.nominator_snapshots.insert(snapshot)
            logger.info("Round %d: backfilled nominator snapshot %s", ctx.cursor.index, account)
        await self.storage.nominators.get_or_create(account)
        return snapshot

    async def _resolve_collator_snapshot(self, ctx: "EventContext", account: str) -> dict:
        snapshot = await self.storage.collator_snapshots.get(ctx.cursor.index, account)
        if snapshot is None:
            candidates = self.chain.candidate_bond_and_delegations(ctx.block_height, [account])
            if not candidates or candidates[0] is None:
                raise MissingReferenceError(
                    f"Collator {account} has no candidate state at block {ctx.block_height}"
                )
            snapshot = build_collator_snapshot(ctx.cursor.index, ctx.cursor.id, candidates[0])
            await self.storage.collator_snapshots.insert(snapshot)
            logger.info("Round %d: backfilled collator snapshot %s", ctx.cursor.index, account)
        await self.storage.collators.get_or_create(account)
        return snapshot

    async def _backfill_delegation(
        self, ctx: "EventContext", collator_snap: dict, nominator_snap: dict
    ) -> dict:
        collator, nominator = collator_snap["account"], nominator_snap["account"]
        candidates = self.chain.candidate_bond_and_delegations(ctx.previous_height, [collator])
        if not candidates or candidates[0] is None:
            raise MissingReferenceError(
                f"Collator {collator} has no candidate state at block {ctx.previous_height}"
            )
        amounts = [d.amount for d in candidates[0].delegations if d.nominator == nominator]
        if not amounts:
            raise MissingReferenceError(
                f"No delegation {nominator} -> {collator} at block {ctx.previous_height}"
            )
        delegation = {
            "id": delegation_id(ctx.cursor.index, collator, nominator),
            "round_id": ctx.cursor.id,
            "collator_snapshot_id": collator_snap["id"],
            "nominator_snapshot_id": nominator_snap["id"],
            "amount": sum(amounts),
        }
        await self.storage.delegations.insert(delegation)
        logger.info("Round %d: backfilled delegation %s", ctx.cursor.index, delegation["id"])
        return delegation

    async def _repair_references(self, delegation: dict, collator_snap: dict, nominator_snap: dict):
        if delegation["round_id"] is not None:
            return
        round_index = int(delegation["id"].split("-", 1)[0])
        round_row = await self.storage.rounds.get(round_index)
        if round_row is None:
            raise MissingReferenceError(f"Delegation {delegation['id']} names unknown round {round_index}")
        logger.warning("Delegation %s had no round reference, re-linked", delegation["id"])
        delegation["round_id"] = round_row["id"]
        delegation["collator_snapshot_id"] = collator_snap["id"]
        delegation["nominator_snapshot_id"] = nominator_snap["id"]

    async def _apply_delta(self, ctx: "EventContext", collator: str, nominator: str, delta: int) -> dict:
        collator_snap, nominator_snap = await self._resolve_snapshots(ctx, collator, nominator)
        delegation = await self.storage.delegations.get(ctx.cursor.index, collator, nominator)
        if delegation is None:
            delegation = await self._backfill_delegation(ctx, collator_snap, nominator_snap)
        await self._repair_references(delegation, collator_snap, nominator_snap)

        amount = delegation["amount"] + delta
        if amount < 0:
            logger.warning(
                "Delegation %s would go negative (%d %+d), clamped to 0",
                delegation["id"], delegation["amount"], delta,
            )
            amount = 0
        delegation["amount"] = amount
        await self.storage.delegations.save(delegation)
        logger.info(
            "Round %d: delegation %s -> %s now %d (%+d)",
            ctx.cursor.index, nominator, collator, amount, delta,
        )
        return delegation
