"""Exception types raised by the staking indexer."""


class IndexerError(Exception):
    pass


class UnsupportedVersionError(IndexerError):
    """No known decoder matches the event's schema version. Fatal."""

    def __init__(self, kind: str, version: str):
        super().__init__(f"Unsupported version {version!r} for event {kind}")
        self.kind = kind
        self.version = version


class MissingReferenceError(IndexerError):
    """Chain state needed to backfill a row is absent. The event is skipped."""


class DuplicateEntityError(IndexerError):
    """An insert collided with an existing id. Fatal."""

    def __init__(self, table: str, entity_id: str):
        super().__init__(f"Duplicate {table} id {entity_id!r}")
        self.table = table
        self.entity_id = entity_id


class RoundOrderError(IndexerError):
    """A round-change event does not advance the current round index. Fatal."""
