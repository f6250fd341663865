SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied_at REAL NOT NULL
);

-- Rounds: one row per round-change event
CREATE TABLE IF NOT EXISTS rounds (
    id              TEXT PRIMARY KEY,
    round_index     INTEGER NOT NULL UNIQUE,
    timestamp       INTEGER NOT NULL,
    started_at      INTEGER NOT NULL,
    ended_at        INTEGER,
    collators_count INTEGER NOT NULL DEFAULT 0,
    total           TEXT NOT NULL DEFAULT '0'
);

-- Collator snapshots: one row per collator per round
CREATE TABLE IF NOT EXISTS collator_snapshots (
    id            TEXT PRIMARY KEY,
    round_id      TEXT,
    account       TEXT NOT NULL,
    self_bond     TEXT NOT NULL DEFAULT '0',
    total_bond    TEXT NOT NULL DEFAULT '0',
    reward_amount TEXT,
    apr           REAL,
    FOREIGN KEY (round_id) REFERENCES rounds(id)
);

-- Nominator snapshots: one row per nominator per round
CREATE TABLE IF NOT EXISTS nominator_snapshots (
    id       TEXT PRIMARY KEY,
    round_id TEXT NOT NULL,
    account  TEXT NOT NULL,
    bond     TEXT NOT NULL DEFAULT '0',
    FOREIGN KEY (round_id) REFERENCES rounds(id)
);

-- Delegations: bonded amount nominator -> collator within a round
CREATE TABLE IF NOT EXISTS delegations (
    id                    TEXT PRIMARY KEY,
    round_id              TEXT,
    collator_snapshot_id  TEXT,
    nominator_snapshot_id TEXT,
    amount                TEXT NOT NULL DEFAULT '0',
    FOREIGN KEY (round_id) REFERENCES rounds(id),
    FOREIGN KEY (collator_snapshot_id) REFERENCES collator_snapshots(id),
    FOREIGN KEY (nominator_snapshot_id) REFERENCES nominator_snapshots(id)
);

-- Long-lived identities
CREATE TABLE IF NOT EXISTS collators (
    id     TEXT PRIMARY KEY,
    apr24h REAL NOT NULL DEFAULT 0.0
);

CREATE TABLE IF NOT EXISTS nominators (
    id TEXT PRIMARY KEY
);

-- History: append-only audit trail
CREATE TABLE IF NOT EXISTS history_events (
    id           TEXT PRIMARY KEY,
    block_height INTEGER NOT NULL,
    timestamp    INTEGER NOT NULL,
    kind         TEXT NOT NULL CHECK (kind IN ('Delegated', 'BondIncreased', 'BondDecreased', 'Revoked', 'Rewarded')),
    round_id     TEXT NOT NULL,
    collator_id  TEXT,
    nominator_id TEXT,
    amount       TEXT NOT NULL,
    FOREIGN KEY (round_id) REFERENCES rounds(id),
    FOREIGN KEY (collator_id) REFERENCES collators(id),
    FOREIGN KEY (nominator_id) REFERENCES nominators(id)
);

-- Replay ledger for delta-based events
CREATE TABLE IF NOT EXISTS processed_events (
    block_height INTEGER NOT NULL,
    event_index  INTEGER NOT NULL,
    kind         TEXT NOT NULL,
    outcome      TEXT NOT NULL DEFAULT 'applied' CHECK (outcome IN ('applied', 'skipped')),
    processed_at REAL NOT NULL,
    PRIMARY KEY (block_height, event_index)
);

-- Single-row processor cursor
CREATE TABLE IF NOT EXISTS processor_status (
    id          INTEGER PRIMARY KEY CHECK (id = 1),
    last_height INTEGER NOT NULL,
    updated_at  REAL NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_collator_snapshots_round ON collator_snapshots(round_id);
CREATE INDEX IF NOT EXISTS idx_collator_snapshots_account ON collator_snapshots(account);
CREATE INDEX IF NOT EXISTS idx_nominator_snapshots_round ON nominator_snapshots(round_id);
CREATE INDEX IF NOT EXISTS idx_nominator_snapshots_account ON nominator_snapshots(account);
CREATE INDEX IF NOT EXISTS idx_delegations_round ON delegations(round_id);
CREATE INDEX IF NOT EXISTS idx_delegations_collator ON delegations(collator_snapshot_id);
CREATE INDEX IF NOT EXISTS idx_delegations_nominator ON delegations(nominator_snapshot_id);
CREATE INDEX IF NOT EXISTS idx_history_round ON history_events(round_id);
CREATE INDEX IF NOT EXISTS idx_history_collator ON history_events(collator_id);
CREATE INDEX IF NOT EXISTS idx_history_nominator ON history_events(nominator_id);
"""
