import logging
from contextlib import asynccontextmanager
from typing import Optional

try:
    import aiosqlite
except ImportError:
    raise ImportError(
        "aiosqlite is required for the storage layer. "
        "Install with: pip install aiosqlite"
    )

from ._migrate import run_migrations
from .collators import CollatorRepo, CollatorSnapshotRepo
from .delegations import DelegationRepo
from .history import HistoryRepo
from .ledger import LedgerRepo
from .nominators import NominatorRepo, NominatorSnapshotRepo
from .rounds import RoundRepo

logger = logging.getLogger("storage")


class StorageManager:
    """Top-level manager: opens the database, runs migrations, exposes repos.

    Repositories never commit on their own. Callers group writes with
    :meth:`transaction` (one per block) and :meth:`savepoint` (one per event).
    """

    def __init__(self, db_path: str = "staking.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self._savepoint_seq = 0
        self.rounds: Optional[RoundRepo] = None
        self.collator_snapshots: Optional[CollatorSnapshotRepo] = None
        self.collators: Optional[CollatorRepo] = None
        self.nominator_snapshots: Optional[NominatorSnapshotRepo] = None
        self.nominators: Optional[NominatorRepo] = None
        self.delegations: Optional[DelegationRepo] = None
        self.history: Optional[HistoryRepo] = None
        self.ledger: Optional[LedgerRepo] = None

    async def initialize(self):
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await run_migrations(self._db, logger)

        self.rounds = RoundRepo(self._db)
        self.collator_snapshots = CollatorSnapshotRepo(self._db)
        self.collators = CollatorRepo(self._db)
        self.nominator_snapshots = NominatorSnapshotRepo(self._db)
        self.nominators = NominatorRepo(self._db)
        self.delegations = DelegationRepo(self._db)
        self.history = HistoryRepo(self._db)
        self.ledger = LedgerRepo(self._db)

        logger.info("Storage initialized: %s", self.db_path)

    @asynccontextmanager
    async def transaction(self):
        """Run the enclosed writes atomically; nested use degrades to a savepoint."""
        if self._db.in_transaction:
            async with self.savepoint():
                yield
            return
        await self._db.execute("BEGIN IMMEDIATE")
        try:
            yield
        except BaseException:
            await self._db.rollback()
            raise
        await self._db.commit()

    @asynccontextmanager
    async def savepoint(self):
        """Undo the enclosed writes on error without ending the outer transaction."""
        self._savepoint_seq += 1
        name = f"sp_{self._savepoint_seq}"
        await self._db.execute(f"SAVEPOINT {name}")
        try:
            yield
        except BaseException:
            await self._db.execute(f"ROLLBACK TO SAVEPOINT {name}")
            await self._db.execute(f"RELEASE SAVEPOINT {name}")
            raise
        await self._db.execute(f"RELEASE SAVEPOINT {name}")

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Storage closed")
