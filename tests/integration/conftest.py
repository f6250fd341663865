"""Shared fixtures for the staking indexer integration tests."""

import pytest
import pytest_asyncio

from indexer.chain_simulator import ChainSimulator
from indexer.chain_state import ChainStateReader
from indexer.processor import StakingProcessor
from indexer.storage import StorageManager


# ── Constants ───────────────────────────────────────────────────────────────

BLOCK_TIME_MS = 12_000
GENESIS_MS = 1_655_236_778_000


# ── Event factories (v1300 named layout) ────────────────────────────────────

class EventFactory:
    """Builds block dicts the way the JSON-lines source delivers them."""

    @staticmethod
    def block(height: int, *events: dict) -> dict:
        return {
            "height": height,
            "timestamp": GENESIS_MS + height * BLOCK_TIME_MS,
            "events": list(events),
        }

    @staticmethod
    def new_round(index: int, starting_block: int, collators: int = 1, total: int = 0) -> dict:
        return {
            "kind": "ParachainStaking.NewRound",
            "version": "v1300",
            "payload": {
                "startingBlock": starting_block,
                "round": index,
                "selectedCollatorsNumber": collators,
                "totalBalance": total,
            },
        }

    @staticmethod
    def delegation(delegator: str, candidate: str, amount: int) -> dict:
        return {
            "kind": "ParachainStaking.Delegation",
            "version": "v1300",
            "payload": {
                "delegator": delegator,
                "lockedAmount": amount,
                "candidate": candidate,
                "delegatorPosition": {"__kind": "AddedToTop", "newTotal": amount},
            },
        }

    @staticmethod
    def increased(delegator: str, candidate: str, amount: int) -> dict:
        return {
            "kind": "ParachainStaking.DelegationIncreased",
            "version": "v1300",
            "payload": {"delegator": delegator, "candidate": candidate, "amount": amount, "inTop": True},
        }

    @staticmethod
    def decreased(delegator: str, candidate: str, amount: int) -> dict:
        return {
            "kind": "ParachainStaking.DelegationDecreased",
            "version": "v1300",
            "payload": {"delegator": delegator, "candidate": candidate, "amount": amount, "inTop": True},
        }

    @staticmethod
    def revoked(delegator: str, candidate: str, amount: int) -> dict:
        return {
            "kind": "ParachainStaking.DelegationRevoked",
            "version": "v1300",
            "payload": {"delegator": delegator, "candidate": candidate, "unstakedAmount": amount},
        }

    @staticmethod
    def rewarded(account: str, rewards: int, version: str = "v1300") -> dict:
        payload = {"account": account, "rewards": rewards} if version == "v1300" else [account, rewards]
        return {"kind": "ParachainStaking.Rewarded", "version": version, "payload": payload}


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def ev():
    return EventFactory()


@pytest.fixture
def chain():
    return ChainSimulator()


@pytest.fixture
def reader(chain):
    return ChainStateReader(chain)


@pytest_asyncio.fixture
async def storage():
    sm = StorageManager(":memory:")
    await sm.initialize()
    yield sm
    await sm.close()


@pytest_asyncio.fixture
async def processor(storage, reader):
    return StakingProcessor(storage, reader)
