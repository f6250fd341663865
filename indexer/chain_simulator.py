"""
chain_simulator.py - In-memory parachain-staking chain state.

Implements the ``ChainSource`` boundary for offline replays and tests.
Storage writes are recorded per (item, key) with the block height they
take effect at; a query at height H sees the latest write at or below H.
A storage item that has never been written at or below H does not exist
for that height, which is how runtime layout upgrades are modelled:
older heights carry ``CollatorState2``/``NominatorState2``, newer ones
``CandidateInfo``/``DelegatorState``.

Fixture format (JSON)::

    {"storage": [
        {"height": 10, "item": "SelectedCandidates", "value": ["0x..."]},
        {"height": 10, "item": "CandidateInfo", "key": "0x...", "value": {"bond": "100"}},
        ...
    ]}

Usage:
    chain = ChainSimulator()
    chain.set_selected(10, [collator])
    chain.set_candidate(10, collator, self_bond=100, delegations={nominator: 50})
    reader = ChainStateReader(chain)
"""

import bisect
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from indexer.events import encode_account

logger = logging.getLogger("chain")

CANDIDATE_LAYOUTS = ("CandidateInfo", "CandidateState", "CollatorState2")
NOMINATOR_LAYOUTS = ("DelegatorState", "NominatorState2")

_UNKEYED = ""


class ChainSimulator:
    """Height-indexed in-memory storage for the parachain-staking pallet."""

    def __init__(self):
        # (item, key) -> sorted heights and matching values
        self._heights: Dict[Tuple[str, str], List[int]] = {}
        self._values: Dict[Tuple[str, str], List[Any]] = {}
        # item -> first height it was written at
        self._first_seen: Dict[str, int] = {}

    # -------------------------------------------------------------------
    # Raw storage
    # -------------------------------------------------------------------

    def set_storage(self, height: int, item: str, value: Any, key: Optional[str] = None):
        slot = (item, key if key is not None else _UNKEYED)
        heights = self._heights.setdefault(slot, [])
        values = self._values.setdefault(slot, [])
        pos = bisect.bisect_right(heights, height)
        if pos and heights[pos - 1] == height:
            values[pos - 1] = value
        else:
            heights.insert(pos, height)
            values.insert(pos, value)
        first = self._first_seen.get(item)
        if first is None or height < first:
            self._first_seen[item] = height

    def remove_storage(self, height: int, item: str, key: Optional[str] = None):
        self.set_storage(height, item, None, key)

    def _value_at(self, height: int, item: str, key: str) -> Any:
        slot = (item, key)
        heights = self._heights.get(slot)
        if not heights:
            return None
        pos = bisect.bisect_right(heights, height)
        if pos == 0:
            return None
        return self._values[slot][pos - 1]

    def query_storage(
        self, height: int, item: str, keys: Optional[Sequence[str]] = None
    ) -> Optional[list]:
        first = self._first_seen.get(item)
        if first is None or first > height:
            return None
        if keys is None:
            return self._value_at(height, item, _UNKEYED)
        return [self._value_at(height, item, k) for k in keys]

    # -------------------------------------------------------------------
    # Staking helpers
    # -------------------------------------------------------------------

    def set_selected(self, height: int, accounts: List[str]):
        self.set_storage(height, "SelectedCandidates", [encode_account(a) for a in accounts])

    def set_candidate(
        self,
        height: int,
        account: str,
        self_bond: int,
        delegations: Optional[Dict[str, int]] = None,
        layout: str = "CandidateInfo",
        top_size: int = 300,
    ):
        """Write a candidate's bond and delegation set in one of the known layouts."""
        if layout not in CANDIDATE_LAYOUTS:
            raise ValueError(f"Unknown candidate layout: {layout}")
        account = encode_account(account)
        bonds = [
            {"owner": encode_account(n), "amount": amount}
            for n, amount in sorted((delegations or {}).items(), key=lambda kv: -kv[1])
        ]
        top, bottom = bonds[:top_size], bonds[top_size:]
        if layout == "CandidateInfo":
            self.set_storage(height, "CandidateInfo", {"bond": self_bond, "delegation_count": len(bonds)}, account)
            self.set_storage(height, "TopDelegations", {"delegations": top}, account)
            self.set_storage(height, "BottomDelegations", {"delegations": bottom}, account)
        elif layout == "CandidateState":
            self.set_storage(height, "CandidateState", {
                "id": account, "bond": self_bond,
                "top_delegations": top, "bottom_delegations": bottom,
            }, account)
        else:
            self.set_storage(height, "CollatorState2", {
                "id": account, "bond": self_bond,
                "top_nominators": top, "bottom_nominators": bottom,
            }, account)

    def set_nominator(self, height: int, account: str, total: int, layout: str = "DelegatorState"):
        if layout not in NOMINATOR_LAYOUTS:
            raise ValueError(f"Unknown nominator layout: {layout}")
        account = encode_account(account)
        self.set_storage(height, layout, {"id": account, "total": total}, account)

    # -------------------------------------------------------------------
    # Fixtures
    # -------------------------------------------------------------------

    @classmethod
    def from_fixture(cls, data: dict) -> "ChainSimulator":
        chain = cls()
        for entry in data.get("storage", []):
            key = entry.get("key")
            chain.set_storage(
                int(entry["height"]), entry["item"], entry.get("value"),
                encode_account(key) if key is not None else None,
            )
        logger.info(
            "Chain simulator loaded %d storage writes (%d items)",
            len(data.get("storage", [])), len(chain._first_seen),
        )
        return chain

    @classmethod
    def load(cls, path: str) -> "ChainSimulator":
        with Path(path).open() as f:
            return cls.from_fixture(json.load(f))
