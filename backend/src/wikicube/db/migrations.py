"""Database migrations and schema management."""

import logging
import sqlite3

from wikicube.db.connection import Database

logger = logging.getLogger(__name__)

# Schema version for tracking migrations
SCHEMA_VERSION = 2

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Analysis units (one per analyzed repository)
-- status walks pending -> fetching_tree -> identifying_features ->
-- generating_pages -> embedding -> done, or ends in error
CREATE TABLE IF NOT EXISTS units (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner TEXT NOT NULL,
    name TEXT NOT NULL,
    default_branch TEXT NOT NULL DEFAULT 'main',
    description TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    status_message TEXT,
    overview TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(owner, name)
);

-- Generated topic pages
-- entry_points and citations are JSON arrays
CREATE TABLE IF NOT EXISTS topics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    unit_id INTEGER NOT NULL REFERENCES units(id) ON DELETE CASCADE,
    slug TEXT NOT NULL,
    title TEXT NOT NULL,
    summary TEXT NOT NULL DEFAULT '',
    markdown TEXT NOT NULL DEFAULT '',
    entry_points TEXT NOT NULL DEFAULT '[]',
    citations TEXT NOT NULL DEFAULT '[]',
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_topics_unit ON topics(unit_id, sort_order);

-- Embedded passages; vectors live in the ChromaDB collection under the same id
CREATE TABLE IF NOT EXISTS passages (
    id TEXT PRIMARY KEY,
    unit_id INTEGER NOT NULL REFERENCES units(id) ON DELETE CASCADE,
    topic_id INTEGER REFERENCES topics(id) ON DELETE CASCADE,
    source_type TEXT NOT NULL,  -- 'document' or 'code'
    source_file TEXT,
    content TEXT NOT NULL,
    token_count INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_passages_unit ON passages(unit_id);

-- Chat transcripts, one row per message
CREATE TABLE IF NOT EXISTS chat_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    unit_id INTEGER NOT NULL REFERENCES units(id) ON DELETE CASCADE,
    session_id TEXT NOT NULL,
    role TEXT NOT NULL,  -- 'user' or 'assistant'
    content TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_chat_session ON chat_messages(unit_id, session_id, id);
"""


def run_migrations(db: Database) -> None:
    """Run database migrations to set up or upgrade schema.

    Args:
        db: Database connection to run migrations on.
    """
    try:
        result = db.execute(
            "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
        ).fetchone()
        current_version = result[0] if result else 0
    except sqlite3.OperationalError:
        # Table doesn't exist yet
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        return

    # Version 2 migration: status_message added to units
    if current_version == 1:
        columns = {row["name"] for row in db.execute("PRAGMA table_info(units)").fetchall()}
        if "status_message" not in columns:
            db.execute("ALTER TABLE units ADD COLUMN status_message TEXT")
            db.commit()

    # executescript auto-commits, so the version insert is handled separately
    db.executescript(SCHEMA_SQL)
    db.execute("INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    db.commit()
    logger.info(f"Database schema migrated from version {current_version} to {SCHEMA_VERSION}")
