"""SQLite connection management and schema migrations for the audit store."""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS decisions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    hostname TEXT NOT NULL,
    outcome TEXT NOT NULL,
    reason TEXT NOT NULL,
    matched_pattern TEXT NOT NULL DEFAULT '',
    error TEXT NOT NULL DEFAULT '',
    policy_name TEXT NOT NULL DEFAULT '',
    timestamp REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_decisions_timestamp
    ON decisions(timestamp);
CREATE INDEX IF NOT EXISTS idx_decisions_outcome
    ON decisions(outcome);
"""


async def get_db(db_path: str | Path) -> aiosqlite.Connection:
    """Open (or create) the audit database and run migrations."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    db = await aiosqlite.connect(str(db_path))
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")

    await _migrate(db)
    return db


async def _migrate(db: aiosqlite.Connection) -> None:
    cursor = await db.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
    )
    row = await cursor.fetchone()

    if row is None:
        await db.executescript(SCHEMA_SQL)
        await db.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        await db.commit()
        logger.info("Database initialized at schema version %d", SCHEMA_VERSION)
        return

    cursor = await db.execute("SELECT version FROM schema_version")
    row = await cursor.fetchone()
    current = row[0] if row else 0

    if current > SCHEMA_VERSION:
        logger.warning(
            "Database schema version %d is newer than supported (%d)",
            current,
            SCHEMA_VERSION,
        )
    elif current < SCHEMA_VERSION:
        logger.info(
            "Migrating database from version %d to %d", current, SCHEMA_VERSION
        )
        # Re-running the schema creates anything missing from older layouts
        await db.executescript(SCHEMA_SQL)
        await db.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
        await db.commit()
