"""
test_processor.py - End-to-end tests for StakingProcessor.

Feeds blocks through the processor against in-memory SQLite and the chain
simulator. Covers the bonding lifecycle, resolve-or-create backfills,
reward APR over several rounds, replay idempotency and crash atomicity.
"""

import pytest

from indexer.errors import DuplicateEntityError, RoundOrderError, UnsupportedVersionError
from indexer.models import Block
from indexer.processor import StakingProcessor
from indexer.storage import StorageManager

pytestmark = pytest.mark.asyncio

A = "0x" + "aa" * 20
B = "0x" + "bb" * 20
X = "0x" + "11" * 20
Y = "0x" + "22" * 20


def _block(ev, height, *events):
    return Block.model_validate(ev.block(height, *events))


async def _open_round_5(processor, chain, ev):
    """Round 5 at block 100: collator A (self 100) backed by X with 50."""
    chain.set_selected(99, [A])
    chain.set_candidate(99, A, self_bond=100, delegations={X: 50})
    chain.set_nominator(99, X, 50)
    return await processor.process_block(_block(ev, 100, ev.new_round(5, 100, total=150)))


# ── Bonding ─────────────────────────────────────────────────────────────────

class TestBonding:
    async def test_increase_applies_delta(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)

        stats = await processor.process_block(_block(ev, 101, ev.increased(X, A, 20)))

        assert stats["applied"] == 1
        assert (await storage.delegations.get(5, A, X))["amount"] == 70
        [entry] = await storage.history.list(kind="BondIncreased")
        assert entry["collator_id"] == A
        assert entry["nominator_id"] == X
        assert entry["amount"] == 20
        assert entry["round_id"] == "5"

    async def test_decrease_clamps_at_zero(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)

        await processor.process_block(_block(ev, 101, ev.decreased(X, A, 80)))
        assert (await storage.delegations.get(5, A, X))["amount"] == 0

        await processor.process_block(_block(ev, 102, ev.revoked(X, A, 10)))
        assert (await storage.delegations.get(5, A, X))["amount"] == 0
        assert await storage.history.count() == 2

    async def test_revoke(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)

        await processor.process_block(_block(ev, 101, ev.revoked(X, A, 50)))

        assert (await storage.delegations.get(5, A, X))["amount"] == 0
        [entry] = await storage.history.list(kind="Revoked")
        assert entry["amount"] == 50

    async def test_delegation_overwrites_existing_amount(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)

        await processor.process_block(_block(ev, 101, ev.delegation(X, A, 80)))

        assert (await storage.delegations.get(5, A, X))["amount"] == 80
        assert len(await storage.history.list(kind="Delegated")) == 1

    async def test_new_delegation_backfills_snapshots(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        chain.set_nominator(101, Y, 30)
        chain.set_candidate(101, B, self_bond=500, delegations={Y: 30})

        await processor.process_block(_block(ev, 101, ev.delegation(Y, B, 30)))

        assert (await storage.nominator_snapshots.get(5, Y))["bond"] == 30
        collator_snap = await storage.collator_snapshots.get(5, B)
        assert collator_snap["total_bond"] == 530
        assert await storage.collators.get(B) is not None
        delegation = await storage.delegations.get(5, B, Y)
        assert delegation["amount"] == 30
        assert delegation["collator_snapshot_id"] == collator_snap["id"]

    async def test_delta_backfills_delegation_from_previous_block(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        chain.set_candidate(100, B, self_bond=500, delegations={X: 40})
        chain.set_candidate(101, B, self_bond=500, delegations={X: 45})

        await processor.process_block(_block(ev, 101, ev.increased(X, B, 5)))

        assert (await storage.delegations.get(5, B, X))["amount"] == 45

    async def test_missing_chain_state_skips_event(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)

        stats = await processor.process_block(_block(ev, 101, ev.increased(Y, A, 20)))

        assert stats == {"applied": 0, "skipped": 1, "replayed": 0, "ignored": 0}
        assert await storage.nominator_snapshots.get(5, Y) is None
        assert await storage.history.count() == 0
        assert await storage.ledger.count_skipped() == 1
        assert await storage.ledger.get_last_height() == 101

    async def test_skipped_event_does_not_undo_its_neighbours(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)

        stats = await processor.process_block(_block(
            ev, 101, ev.increased(X, A, 20), ev.increased(Y, A, 20), ev.increased(X, A, 5),
        ))

        assert stats["applied"] == 2
        assert stats["skipped"] == 1
        assert (await storage.delegations.get(5, A, X))["amount"] == 75

    async def test_unlinked_delegation_is_repaired(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        chain.set_nominator(99, Y, 10)
        async with storage.transaction():
            await storage.nominator_snapshots.insert(
                {"id": f"5-{Y}", "round_id": "5", "account": Y, "bond": 10},
            )
            await storage.delegations.insert({
                "id": f"5-{A}-{Y}", "round_id": None,
                "collator_snapshot_id": None, "nominator_snapshot_id": None, "amount": 10,
            })

        await processor.process_block(_block(ev, 101, ev.increased(Y, A, 5)))

        delegation = await storage.delegations.get(5, A, Y)
        assert delegation["round_id"] == "5"
        assert delegation["collator_snapshot_id"] == f"5-{A}"
        assert delegation["nominator_snapshot_id"] == f"5-{Y}"
        assert delegation["amount"] == 15

    async def test_same_kind_twice_in_one_block(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)

        await processor.process_block(_block(ev, 101, ev.increased(X, A, 1), ev.increased(X, A, 2)))

        assert len(await storage.history.list(kind="BondIncreased")) == 2
        assert (await storage.delegations.get(5, A, X))["amount"] == 53

    async def test_event_before_first_round_is_skipped(self, processor, storage, ev):
        stats = await processor.process_block(_block(ev, 50, ev.increased(X, A, 1)))
        assert stats["skipped"] == 1

    async def test_unknown_event_kind_ignored(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        stats = await processor.process_block(_block(
            ev, 101, {"kind": "Balances.Transfer", "version": "v1300", "payload": {}},
        ))
        assert stats["ignored"] == 1


# ── Rewards ─────────────────────────────────────────────────────────────────

class TestRewards:
    async def test_apr_uses_snapshot_total_bond(self, processor, storage, chain, ev):
        chain.set_selected(99, [A])
        chain.set_candidate(99, A, self_bond=20, delegations={X: 50})
        chain.set_nominator(99, X, 50)
        await processor.process_block(_block(ev, 100, ev.new_round(5, 100)))

        await processor.process_block(_block(ev, 101, ev.rewarded(A, 1000)))

        assert (await storage.collator_snapshots.get(5, A))["apr"] == 1000 * 100000 / 70

    async def test_positional_reward_layout(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        await processor.process_block(_block(ev, 101, ev.rewarded(A, 300, version="v900")))
        assert (await storage.collator_snapshots.get(5, A))["reward_amount"] == 300

    async def test_rolling_apr_over_five_rounds(self, processor, storage, chain, ev):
        # total_bond == APR_SCALE, so each round's apr equals its reward
        chain.set_selected(99, [A])
        chain.set_candidate(99, A, self_bond=100_000)

        apr24h = []
        for index, reward in zip(range(1, 6), (10, 20, 30, 40, 50)):
            await processor.process_block(_block(ev, index * 100, ev.new_round(index, index * 100)))
            await processor.process_block(_block(ev, index * 100 + 1, ev.rewarded(A, reward)))
            apr24h.append((await storage.collators.get(A))["apr24h"])

        # r1, r2: no snapshot 4/3/2 rounds back, seeded with the round's apr
        # r3: round 1 via the 2-back fallback -> (4*20 - 10 + 30) / 4
        # r4: round 1 via the 3-back fallback -> (4*25 - 10 + 40) / 4
        # r5: round 1 is 4 back              -> (4*32.5 - 10 + 50) / 4
        assert apr24h == [10.0, 20.0, 25.0, 32.5, 42.5]
        assert [s["apr"] for s in await storage.collator_snapshots.list_for_account(A)] == \
            [50.0, 40.0, 30.0, 20.0, 10.0]

    async def test_nominator_reward(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        await processor.process_block(_block(ev, 101, ev.rewarded(Y, 7)))

        [entry] = await storage.history.list(account=Y)
        assert entry["kind"] == "Rewarded"
        assert await storage.nominators.get(Y) is not None


# ── Rounds ──────────────────────────────────────────────────────────────────

class TestRounds:
    async def test_round_change_closes_previous(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        await processor.process_block(_block(ev, 200, ev.new_round(6, 200)))

        assert (await storage.rounds.get(5))["ended_at"] == 199
        # Round 6 re-reads the unchanged chain state
        assert (await storage.delegations.get(6, A, X))["amount"] == 50

    async def test_deltas_do_not_touch_older_rounds(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        await processor.process_block(_block(ev, 200, ev.new_round(6, 200)))
        await processor.process_block(_block(ev, 201, ev.increased(X, A, 20)))

        assert (await storage.delegations.get(5, A, X))["amount"] == 50
        assert (await storage.delegations.get(6, A, X))["amount"] == 70

    async def test_lower_round_index_is_fatal(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        with pytest.raises(RoundOrderError):
            await processor.process_block(_block(ev, 200, ev.new_round(4, 200)))
        assert await storage.ledger.get_last_height() == 100


# ── Replay and crash safety ─────────────────────────────────────────────────

class TestReplay:
    async def test_replayed_delta_applied_once(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        block = _block(ev, 101, ev.increased(X, A, 20))

        await processor.process_block(block)
        stats = await processor.process_block(block)

        assert stats["replayed"] == 1
        assert (await storage.delegations.get(5, A, X))["amount"] == 70
        assert await storage.history.count() == 1

    async def test_replayed_round_fails(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        with pytest.raises(DuplicateEntityError):
            await _open_round_5(processor, chain, ev)
        assert await storage.rounds.count() == 1
        assert await storage.delegations.count() == 1

    async def test_replay_after_restart(self, tmp_path, reader, chain, ev):
        path = str(tmp_path / "staking.db")
        first = StorageManager(path)
        await first.initialize()
        await _open_round_5(StakingProcessor(first, reader), chain, ev)
        await StakingProcessor(first, reader).process_block(_block(ev, 101, ev.increased(X, A, 20)))
        await first.close()

        second = StorageManager(path)
        await second.initialize()
        processor = StakingProcessor(second, reader)
        assert await processor.last_committed_height() == 101
        stats = await processor.process_block(_block(ev, 101, ev.increased(X, A, 20)))
        amount = (await second.delegations.get(5, A, X))["amount"]
        await second.close()

        assert stats["replayed"] == 1
        assert amount == 70

    async def test_unsupported_version_rolls_back_block(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)

        with pytest.raises(UnsupportedVersionError):
            await processor.process_block(_block(
                ev, 101, ev.increased(X, A, 20), ev.rewarded(A, 1, version="v2000"),
            ))

        assert (await storage.delegations.get(5, A, X))["amount"] == 50
        assert await storage.history.count() == 0
        assert not await storage.ledger.is_processed(101, 0)
        assert await storage.ledger.get_last_height() == 100

        # Redelivered with a known layout, the block applies in full
        await processor.process_block(_block(ev, 101, ev.increased(X, A, 20), ev.rewarded(A, 1)))
        assert (await storage.delegations.get(5, A, X))["amount"] == 70
        assert await storage.ledger.get_last_height() == 101

    async def test_mixed_explicit_and_positional_indexes(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        increase = dict(ev.increased(X, A, 20), index=1)

        stats = await processor.process_block(_block(ev, 101, increase, ev.decreased(X, A, 5)))

        assert stats["applied"] == 2
        assert stats["replayed"] == 0
        assert (await storage.delegations.get(5, A, X))["amount"] == 65

    async def test_redelivered_block_keeps_committed_height(self, processor, storage, chain, ev):
        await _open_round_5(processor, chain, ev)
        await processor.process_block(_block(ev, 101, ev.increased(X, A, 20)))
        await processor.process_block(_block(ev, 102, ev.decreased(X, A, 5)))

        stats = await processor.process_block(_block(ev, 101, ev.increased(X, A, 20)))

        assert stats["replayed"] == 1
        assert await processor.last_committed_height() == 102
        assert (await storage.delegations.get(5, A, X))["amount"] == 65

    async def test_run_batches(self, processor, storage, chain, ev):
        chain.set_selected(99, [A])
        chain.set_candidate(99, A, self_bond=100, delegations={X: 50})
        chain.set_nominator(99, X, 50)
        blocks = [
            _block(ev, 100, ev.new_round(5, 100)),
            _block(ev, 101, ev.increased(X, A, 10)),
            _block(ev, 102),
            _block(ev, 103, ev.decreased(X, A, 5), ev.rewarded(A, 3)),
        ]

        totals = await processor.run(blocks, batch_size=3)

        assert totals == {"applied": 4, "skipped": 0, "replayed": 0, "ignored": 0}
        assert await processor.last_committed_height() == 103
        assert (await storage.delegations.get(5, A, X))["amount"] == 55
