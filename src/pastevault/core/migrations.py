"""
Forward-only schema migrations.

The applied version lives in SQLite's `PRAGMA user_version`. Each step runs
in its own transaction together with its version bump, so a crash between
steps leaves the store at a well-defined earlier version.
"""

import sqlite3
import time
from dataclasses import dataclass
from typing import Callable, List

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    apply: Callable[[sqlite3.Connection], None]


def _create_pastes(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS pastes (
            id INTEGER PRIMARY KEY,
            data BLOB NOT NULL,
            expires_at REAL,
            burn_after_reading INTEGER NOT NULL DEFAULT 0
        )
        """
    )


def _add_created_at(conn: sqlite3.Connection) -> None:
    conn.execute("ALTER TABLE pastes ADD COLUMN created_at REAL")
    conn.execute(
        "UPDATE pastes SET created_at = ? WHERE created_at IS NULL",
        (time.time(),),
    )


def _add_owner_token(conn: sqlite3.Connection) -> None:
    conn.execute("ALTER TABLE pastes ADD COLUMN owner_token TEXT")


def _add_encryption(conn: sqlite3.Connection) -> None:
    conn.execute("ALTER TABLE pastes ADD COLUMN nonce BLOB")
    conn.execute("ALTER TABLE pastes ADD COLUMN encrypted INTEGER NOT NULL DEFAULT 0")


def _add_descriptive_metadata(conn: sqlite3.Connection) -> None:
    conn.execute("ALTER TABLE pastes ADD COLUMN title TEXT")
    conn.execute("ALTER TABLE pastes ADD COLUMN extension TEXT")


def _index_expires_at(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_pastes_expires_at ON pastes (expires_at)"
    )


MIGRATIONS: List[Migration] = [
    Migration(1, "create pastes table", _create_pastes),
    Migration(2, "add created_at", _add_created_at),
    Migration(3, "add owner_token", _add_owner_token),
    Migration(4, "add nonce and encrypted flag", _add_encryption),
    Migration(5, "add title and extension", _add_descriptive_metadata),
    Migration(6, "index expires_at", _index_expires_at),
]

LATEST_VERSION = MIGRATIONS[-1].version


def current_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def migrate(
    conn: sqlite3.Connection,
    migrations: List[Migration] = MIGRATIONS,
) -> int:
    """
    Apply every migration newer than the recorded version, in order.

    `conn` must be in autocommit mode (isolation_level=None); transactions
    are managed explicitly here. Returns the version the store ends at.
    """
    version = current_version(conn)

    for migration in sorted(migrations, key=lambda m: m.version):
        if migration.version <= version:
            continue

        conn.execute("BEGIN IMMEDIATE")
        try:
            migration.apply(conn)
            # PRAGMA does not accept bound parameters
            conn.execute(f"PRAGMA user_version = {int(migration.version)}")
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

        version = migration.version
        logger.info(
            "Applied schema migration",
            version=migration.version,
            description=migration.description,
        )

    return version
