"""Shared fixtures for the staking indexer unit tests."""

import pytest
import pytest_asyncio

from indexer.chain_simulator import ChainSimulator
from indexer.chain_state import ChainStateReader
from indexer.storage import StorageManager


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
