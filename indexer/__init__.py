"""
Staking Round Indexer

Projects parachain-staking events into per-round collator, nominator and
delegation snapshots, with per-round reward APR and a rolling 24h average.
Includes SQLite storage, a chain-state reader, a chain simulator and a
read-only REST API.
"""

__version__ = "0.1.0"

__all__ = [
    "bonding",
    "chain_simulator",
    "chain_state",
    "events",
    "history",
    "processor",
    "rewards",
    "server",
    "snapshot",
    "source",
    "storage",
]
