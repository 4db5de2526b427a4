"""
Tests for the forward-only migration ladder.
"""

import sqlite3
from typing import Iterator

import pytest

from pastevault.core.migrations import (
    LATEST_VERSION,
    MIGRATIONS,
    Migration,
    current_version,
    migrate,
)


@pytest.fixture
def conn() -> Iterator[sqlite3.Connection]:
    connection = sqlite3.connect(":memory:", isolation_level=None)
    yield connection
    connection.close()


def columns(conn: sqlite3.Connection) -> set:
    return {row[1] for row in conn.execute("PRAGMA table_info(pastes)")}


class TestMigrate:

    def test_versions_are_strictly_increasing(self) -> None:
        versions = [m.version for m in MIGRATIONS]
        assert versions == sorted(set(versions))
        assert versions[0] == 1

    def test_fresh_database(self, conn: sqlite3.Connection) -> None:
        assert migrate(conn) == LATEST_VERSION
        assert current_version(conn) == LATEST_VERSION
        assert columns(conn) == {
            "id", "data", "expires_at", "burn_after_reading", "created_at",
            "owner_token", "nonce", "encrypted", "title", "extension",
        }

    def test_rerun_is_noop(self, conn: sqlite3.Connection) -> None:
        migrate(conn)
        assert migrate(conn) == LATEST_VERSION

    def test_upgrade_keeps_and_backfills_rows(self, conn: sqlite3.Connection) -> None:
        migrate(conn, MIGRATIONS[:1])
        conn.execute("INSERT INTO pastes (id, data) VALUES (1, x'00')")

        migrate(conn)

        row = conn.execute(
            "SELECT data, created_at, encrypted, nonce FROM pastes WHERE id = 1"
        ).fetchone()
        assert row[0] == b"\x00"
        assert row[1] is not None
        assert row[2] == 0
        assert row[3] is None

    def test_failed_step_rolls_back(self, conn: sqlite3.Connection) -> None:
        def broken(c: sqlite3.Connection) -> None:
            c.execute("CREATE TABLE half_done (x INTEGER)")
            raise RuntimeError("boom")

        ladder = MIGRATIONS[:2] + [Migration(3, "broken", broken)]

        with pytest.raises(RuntimeError):
            migrate(conn, ladder)

        assert current_version(conn) == 2
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert "half_done" not in tables

    def test_expiry_index_exists(self, conn: sqlite3.Connection) -> None:
        migrate(conn)
        indexes = {row[1] for row in conn.execute("PRAGMA index_list(pastes)")}
        assert "idx_pastes_expires_at" in indexes
