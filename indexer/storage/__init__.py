from ._schema import SCHEMA_VERSION, SCHEMA_SQL
from .rounds import RoundRepo
from .collators import CollatorRepo, CollatorSnapshotRepo, collator_snapshot_id
from .nominators import NominatorRepo, NominatorSnapshotRepo, nominator_snapshot_id
from .delegations import DelegationRepo, delegation_id
from .history import HISTORY_KINDS, HistoryRepo
from .ledger import LedgerRepo
from .manager import StorageManager

__all__ = [
    "SCHEMA_VERSION",
    "SCHEMA_SQL",
    "HISTORY_KINDS",
    "RoundRepo",
    "CollatorRepo",
    "CollatorSnapshotRepo",
    "NominatorRepo",
    "NominatorSnapshotRepo",
    "DelegationRepo",
    "HistoryRepo",
    "LedgerRepo",
    "StorageManager",
    "collator_snapshot_id",
    "nominator_snapshot_id",
    "delegation_id",
]
