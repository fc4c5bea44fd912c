"""SQLite schema and initialization for the mapping store.

One table:
- mailbox_mappings: the approved canonical-key -> provider-item mapping per
  (user, provider), with a version bumped on every successful save

Usage:
    from inboxmap.db.models import init_database

    await init_database("data/inboxmap.db")
"""

import stat
from pathlib import Path

import aiosqlite

from inboxmap.core.errors import DatabaseError
from inboxmap.core.logging import get_logger

logger = get_logger(__name__)

# Schema version for migrations (increment when schema changes)
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- MUST be set before creating tables. Persists across connections.
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS mailbox_mappings (
    user_id TEXT NOT NULL,
    provider TEXT NOT NULL CHECK (provider IN ('gmail', 'o365')),
    client_id TEXT,                         -- Optional caller correlation id (UUID)
    mapping TEXT NOT NULL,                  -- JSON: canonical key -> MappingReference
    version INTEGER NOT NULL DEFAULT 1 CHECK (version >= 1),
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    PRIMARY KEY (user_id, provider)
);

CREATE INDEX IF NOT EXISTS idx_mailbox_mappings_client_id ON mailbox_mappings(client_id);
"""

REQUIRED_TABLES = ("mailbox_mappings",)


async def init_database(db_path: str | Path) -> None:
    """Create the database file, enable WAL mode and create tables.

    Raises:
        DatabaseError: If initialization fails
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(db_path) as db:
            await db.executescript(SCHEMA_SQL)
            await db.commit()

            cursor = await db.execute("PRAGMA journal_mode")
            mode = await cursor.fetchone()
            if mode and mode[0].lower() != "wal":
                logger.warning(
                    "WAL mode not enabled",
                    requested="wal",
                    actual=mode[0],
                    db_path=str(db_path),
                )

        # Mappings reveal mailbox structure: owner read/write only
        db_path.chmod(stat.S_IRUSR | stat.S_IWUSR)

        logger.info("Database initialized", db_path=str(db_path), schema_version=SCHEMA_VERSION)

    except aiosqlite.Error as e:
        logger.error("Database initialization failed", db_path=str(db_path), error=str(e))
        raise DatabaseError(
            f"Failed to initialize database at {db_path}: {e}. "
            "Check that the directory is writable and the database file is not corrupted."
        ) from e


async def verify_schema(db_path: str | Path) -> bool:
    """Check that every required table exists."""
    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            existing_tables = {row[0] for row in await cursor.fetchall()}
    except aiosqlite.Error as e:
        logger.error("Schema verification failed", db_path=str(db_path), error=str(e))
        return False

    missing = set(REQUIRED_TABLES) - existing_tables
    if missing:
        logger.warning("Missing database tables", missing=sorted(missing), db_path=str(db_path))
        return False
    return True
