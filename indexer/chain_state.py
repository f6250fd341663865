"""
chain_state.py - Point-in-time reads of parachain-staking storage.

The reader sits on top of a ``ChainSource``: anything that can answer
``query_storage(height, item, keys)`` with decoded storage values. A source
returns ``None`` for a storage item the runtime at ``height`` does not have,
and a list with ``None`` holes for keys that have no entry.

Candidate and nominator reads try a fixed list of read paths, newest
runtime layout first, and use the first path whose storage item resolves.

Reads are synchronous and block the event loop while they run. The CLI
starts the query API only after indexing has finished.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Sequence

from indexer.events import encode_account

logger = logging.getLogger("chain")


class ChainSource(Protocol):
    def query_storage(
        self, height: int, item: str, keys: Optional[Sequence[str]] = None
    ) -> Optional[list]:
        ...


@dataclass
class DelegationEntry:
    nominator: str
    amount: int


@dataclass
class CandidateData:
    account: str
    self_bond: int
    delegations: List[DelegationEntry] = field(default_factory=list)

    @property
    def total_bond(self) -> int:
        return self.self_bond + sum(d.amount for d in self.delegations)


@dataclass
class NominatorData:
    account: str
    bond: int


def _bonds(raw: Optional[list]) -> List[DelegationEntry]:
    return [DelegationEntry(encode_account(b["owner"]), int(b["amount"])) for b in raw or []]


# ---------------------------------------------------------------------------
# Candidate read paths (newest first)
# ---------------------------------------------------------------------------


def _read_candidate_info(source: ChainSource, height: int, accounts: List[str]):
    info = source.query_storage(height, "CandidateInfo", accounts)
    if info is None:
        return None
    top = source.query_storage(height, "TopDelegations", accounts) or [None] * len(accounts)
    bottom = source.query_storage(height, "BottomDelegations", accounts) or [None] * len(accounts)
    results: List[Optional[CandidateData]] = []
    for account, meta, top_d, bottom_d in zip(accounts, info, top, bottom):
        if meta is None:
            results.append(None)
            continue
        delegations = []
        if top_d and top_d.get("delegations"):
            delegations = _bonds(top_d["delegations"]) + _bonds((bottom_d or {}).get("delegations"))
        results.append(CandidateData(account, int(meta["bond"]), delegations))
    return results


def _read_candidate_state(source: ChainSource, height: int, accounts: List[str]):
    states = source.query_storage(height, "CandidateState", accounts)
    if states is None:
        return None
    return [
        CandidateData(
            encode_account(s["id"]),
            int(s["bond"]),
            _bonds(s.get("top_delegations")) + _bonds(s.get("bottom_delegations")),
        ) if s else None
        for s in states
    ]


def _read_collator_state2(source: ChainSource, height: int, accounts: List[str]):
    states = source.query_storage(height, "CollatorState2", accounts)
    if states is None:
        return None
    return [
        CandidateData(
            encode_account(s["id"]),
            int(s["bond"]),
            _bonds(s.get("top_nominators")) + _bonds(s.get("bottom_nominators")),
        ) if s else None
        for s in states
    ]


CANDIDATE_READ_PATHS: List[Callable] = [
    _read_candidate_info,
    _read_candidate_state,
    _read_collator_state2,
]


# ---------------------------------------------------------------------------
# Nominator read paths (newest first)
# ---------------------------------------------------------------------------


def _read_delegator_state(source: ChainSource, height: int, accounts: List[str]):
    states = source.query_storage(height, "DelegatorState", accounts)
    if states is None:
        return None
    return [NominatorData(a, int(s["total"])) if s else None for a, s in zip(accounts, states)]


def _read_nominator_state2(source: ChainSource, height: int, accounts: List[str]):
    states = source.query_storage(height, "NominatorState2", accounts)
    if states is None:
        return None
    return [NominatorData(a, int(s["total"])) if s else None for a, s in zip(accounts, states)]


NOMINATOR_READ_PATHS: List[Callable] = [
    _read_delegator_state,
    _read_nominator_state2,
]


class ChainStateReader:
    """Synchronous point-in-time queries against chain state."""

    def __init__(self, source: ChainSource):
        self._source = source

    def selected_candidates(self, height: int) -> Optional[List[str]]:
        raw = self._source.query_storage(height, "SelectedCandidates")
        if raw is None:
            return None
        return [encode_account(a) for a in raw]

    def candidate_bond_and_delegations(
        self, height: int, accounts: List[str]
    ) -> Optional[List[Optional[CandidateData]]]:
        """Per-account candidate data aligned with ``accounts``, or None if no path resolves."""
        for read_path in CANDIDATE_READ_PATHS:
            result = read_path(self._source, height, accounts)
            if result is not None:
                logger.debug("Candidate data at %d via %s", height, read_path.__name__)
                return result
        return None

    def nominator_bond(
        self, height: int, accounts: List[str]
    ) -> Optional[List[Optional[NominatorData]]]:
        for read_path in NOMINATOR_READ_PATHS:
            result = read_path(self._source, height, accounts)
            if result is not None:
                return result
        return None
