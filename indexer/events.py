"""
events.py - Versioned event decoder.

Each parachain-staking event kind has an ordered, append-only list of
``(version, decode_fn)`` pairs, oldest first. Older runtimes emit positional
tuples, v1300 onward emits named fields. Every decoder returns the same
normalised dataclass for its kind, so handlers never see a version tag.

A runtime upgrade that changes an event's layout adds a new entry to the
matching list; existing entries are never edited.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple, Union

from indexer.errors import UnsupportedVersionError

NEW_ROUND = "ParachainStaking.NewRound"
DELEGATION = "ParachainStaking.Delegation"
DELEGATION_INCREASED = "ParachainStaking.DelegationIncreased"
DELEGATION_DECREASED = "ParachainStaking.DelegationDecreased"
DELEGATION_REVOKED = "ParachainStaking.DelegationRevoked"
REWARDED = "ParachainStaking.Rewarded"

ACCOUNT_BYTES = 20


def encode_account(value: Union[str, bytes, bytearray, List[int]]) -> str:
    """Normalise an AccountId20 (raw bytes, byte list or hex) to lowercase 0x-hex."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, list):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else value
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            raise ValueError(f"Account is not valid hex: {value!r}")
    else:
        raise TypeError(f"Unsupported account type: {type(value).__name__}")
    if len(raw) != ACCOUNT_BYTES:
        raise ValueError(f"Account must be {ACCOUNT_BYTES} bytes, got {len(raw)}")
    return "0x" + raw.hex()


def _amount(value: Any) -> int:
    # Amounts arrive as ints, or as decimal/hex strings from JSON sources
    if isinstance(value, bool):
        raise TypeError("Amount cannot be a bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    raise TypeError(f"Unsupported amount type: {type(value).__name__}")


# ---------------------------------------------------------------------------
# Normalised event shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NewRoundData:
    starting_block: int
    round: int
    selected_collators_number: int
    total_balance: int


@dataclass(frozen=True)
class DelegationData:
    delegator: str
    candidate: str
    locked_amount: int


@dataclass(frozen=True)
class BondChangeData:
    """DelegationIncreased / DelegationDecreased."""
    delegator: str
    candidate: str
    amount: int
    in_top: bool


@dataclass(frozen=True)
class RevokedData:
    delegator: str
    candidate: str
    unstaked_amount: int


@dataclass(frozen=True)
class RewardedData:
    account: str
    rewards: int


# ---------------------------------------------------------------------------
# Per-version decode functions
# ---------------------------------------------------------------------------


def _new_round_positional(p) -> NewRoundData:
    starting_block, round_index, selected, total = p
    return NewRoundData(int(starting_block), int(round_index), int(selected), _amount(total))


def _new_round_v1300(p) -> NewRoundData:
    return NewRoundData(
        int(p["startingBlock"]), int(p["round"]),
        int(p["selectedCollatorsNumber"]), _amount(p["totalBalance"]),
    )


def _delegation_v1001(p) -> DelegationData:
    delegator, locked_amount, candidate, _position = p
    return DelegationData(encode_account(delegator), encode_account(candidate), _amount(locked_amount))


def _delegation_v1300(p) -> DelegationData:
    return DelegationData(
        encode_account(p["delegator"]), encode_account(p["candidate"]), _amount(p["lockedAmount"]),
    )


def _bond_change_v1001(p) -> BondChangeData:
    delegator, candidate, amount, in_top = p
    return BondChangeData(encode_account(delegator), encode_account(candidate), _amount(amount), bool(in_top))


def _bond_change_v1300(p) -> BondChangeData:
    return BondChangeData(
        encode_account(p["delegator"]), encode_account(p["candidate"]),
        _amount(p["amount"]), bool(p["inTop"]),
    )


def _revoked_v1001(p) -> RevokedData:
    delegator, candidate, unstaked = p
    return RevokedData(encode_account(delegator), encode_account(candidate), _amount(unstaked))


def _revoked_v1300(p) -> RevokedData:
    return RevokedData(
        encode_account(p["delegator"]), encode_account(p["candidate"]), _amount(p["unstakedAmount"]),
    )


def _rewarded_positional(p) -> RewardedData:
    account, rewards = p
    return RewardedData(encode_account(account), _amount(rewards))


def _rewarded_v1300(p) -> RewardedData:
    return RewardedData(encode_account(p["account"]), _amount(p["rewards"]))


Decoder = Callable[[Any], Any]

# Oldest to newest. Append only.
DECODERS: Dict[str, List[Tuple[str, Decoder]]] = {
    NEW_ROUND: [
        ("v900", _new_round_positional),
        ("v1001", _new_round_positional),
        ("v1300", _new_round_v1300),
    ],
    DELEGATION: [
        ("v1001", _delegation_v1001),
        ("v1300", _delegation_v1300),
    ],
    DELEGATION_INCREASED: [
        ("v1001", _bond_change_v1001),
        ("v1300", _bond_change_v1300),
    ],
    DELEGATION_DECREASED: [
        ("v1001", _bond_change_v1001),
        ("v1300", _bond_change_v1300),
    ],
    DELEGATION_REVOKED: [
        ("v1001", _revoked_v1001),
        ("v1300", _revoked_v1300),
    ],
    REWARDED: [
        ("v900", _rewarded_positional),
        ("v1001", _rewarded_positional),
        ("v1300", _rewarded_v1300),
    ],
}


def is_known_kind(kind: str) -> bool:
    return kind in DECODERS


def decode(kind: str, version: str, payload: Any):
    """Decode ``payload`` of ``kind`` emitted under runtime ``version``."""
    for known_version, fn in DECODERS.get(kind, []):
        if known_version == version:
            return fn(payload)
    raise UnsupportedVersionError(kind, version)
