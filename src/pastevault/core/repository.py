"""
SQLite-backed paste storage.

All methods are synchronous and meant to run on the blocking executor. A
single connection is shared behind a re-entrant lock; every write is one
`BEGIN IMMEDIATE` transaction, so callers only ever observe whole writes.
"""

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional

import structlog

from ..config import StorageSettings
from .exceptions import (
    BadInputError,
    ForbiddenError,
    IdSpaceExhaustedError,
    NotFoundError,
    StorageError,
)
from .ids import IdAllocator, encode_id
from .migrations import current_version, migrate

logger = structlog.get_logger(__name__)

_COLUMNS = (
    "id, data, nonce, encrypted, created_at, expires_at, "
    "burn_after_reading, owner_token, title, extension"
)


@dataclass(frozen=True)
class PasteRecord:
    """A stored paste exactly as it sits in the database."""

    id: int
    data: bytes
    nonce: Optional[bytes]
    encrypted: bool
    created_at: float
    expires_at: Optional[float]
    burn_after_reading: bool
    owner_token: Optional[str]
    title: Optional[str]
    extension: Optional[str]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PasteRecord":
        return cls(
            id=row["id"],
            data=bytes(row["data"]),
            nonce=bytes(row["nonce"]) if row["nonce"] is not None else None,
            encrypted=bool(row["encrypted"]),
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            burn_after_reading=bool(row["burn_after_reading"]),
            owner_token=row["owner_token"],
            title=row["title"],
            extension=row["extension"],
        )


@dataclass(frozen=True)
class NewPaste:
    """A fully prepared paste waiting for an id."""

    data: bytes
    created_at: float
    nonce: Optional[bytes] = None
    encrypted: bool = False
    expires_at: Optional[float] = None
    burn_after_reading: bool = False
    owner_token: Optional[str] = None
    title: Optional[str] = None
    extension: Optional[str] = None


class PasteRepository:
    """Durable paste store with atomic burn-consume and batched purging."""

    def __init__(self, settings: StorageSettings, allocator: Optional[IdAllocator] = None) -> None:
        self.settings = settings
        self.allocator = allocator or IdAllocator(settings.max_insert_retries)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def open(self) -> int:
        """Connect and migrate. Returns the resulting schema version."""
        with self._lock:
            if self._conn is not None:
                return current_version(self._conn)

            path = self.settings.database_path
            if path is not None:
                Path(path).parent.mkdir(parents=True, exist_ok=True)

            try:
                conn = sqlite3.connect(
                    str(path) if path is not None else ":memory:",
                    timeout=self.settings.busy_timeout_seconds,
                    check_same_thread=False,
                    isolation_level=None,
                )
                conn.row_factory = sqlite3.Row
                if path is not None:
                    conn.execute("PRAGMA journal_mode=WAL")
                version = migrate(conn)
            except sqlite3.Error as e:
                raise StorageError("Failed to open paste store", details={"reason": str(e)}) from e

            self._conn = conn
            logger.info(
                "Paste store opened",
                path=str(path) if path is not None else ":memory:",
                schema_version=version,
            )
            return version

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("Paste store closed")

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Paste store is not open")
        return self._conn

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._require_conn()
            try:
                yield conn
            except sqlite3.Error as e:
                raise StorageError("Storage read failed", details={"reason": str(e)}) from e

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._require_conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except BaseException as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                if isinstance(e, sqlite3.Error):
                    raise StorageError("Storage write failed", details={"reason": str(e)}) from e
                raise

    @property
    def schema_version(self) -> int:
        with self._reading() as conn:
            return current_version(conn)

    def count(self) -> int:
        with self._reading() as conn:
            return conn.execute("SELECT COUNT(*) FROM pastes").fetchone()[0]

    def insert(self, paste: NewPaste) -> int:
        """
        Persist a paste under a fresh random id and return that id.

        A colliding id is simply redrawn, up to the configured retry limit.
        """
        if paste.expires_at is not None and paste.expires_at <= paste.created_at:
            raise BadInputError("expires_at must lie in the future")

        attempts = 0
        for candidate in self.allocator.candidates():
            attempts += 1
            with self._transaction() as conn:
                cursor = conn.execute(
                    f"""
                    INSERT INTO pastes ({_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO NOTHING
                    """,
                    (
                        candidate,
                        paste.data,
                        paste.nonce,
                        int(paste.encrypted),
                        paste.created_at,
                        paste.expires_at,
                        int(paste.burn_after_reading),
                        paste.owner_token,
                        paste.title,
                        paste.extension,
                    ),
                )
                inserted = cursor.rowcount == 1

            if inserted:
                return candidate

            logger.warning("Paste id collision, retrying", id=encode_id(candidate), attempt=attempts)

        raise IdSpaceExhaustedError(attempts)

    def fetch(self, paste_id: int) -> PasteRecord:
        with self._reading() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM pastes WHERE id = ?", (paste_id,)
            ).fetchone()

        if row is None:
            raise NotFoundError()
        return PasteRecord.from_row(row)

    def delete(
        self,
        paste_id: int,
        authorize: Callable[[Optional[str]], bool],
        on_deleted: Optional[Callable[[int], None]] = None,
    ) -> None:
        """
        Delete a paste if `authorize` accepts its stored owner token digest.

        `on_deleted` runs right after the commit, on this thread, so it fires
        even when the awaiting caller has already been cancelled.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT owner_token FROM pastes WHERE id = ?", (paste_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError()

            if not authorize(row["owner_token"]):
                raise ForbiddenError("Owner token does not match")

            conn.execute("DELETE FROM pastes WHERE id = ?", (paste_id,))

        if on_deleted:
            on_deleted(paste_id)

    def delete_expired(
        self,
        paste_id: int,
        now: float,
        on_deleted: Optional[Callable[[int], None]] = None,
    ) -> bool:
        """Delete one paste only if it is expired at `now`."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM pastes WHERE id = ? AND expires_at IS NOT NULL AND expires_at < ?",
                (paste_id, now),
            )
            deleted = cursor.rowcount == 1

        if deleted and on_deleted:
            on_deleted(paste_id)
        return deleted

    def consume_if_burn(
        self,
        paste_id: int,
        on_consumed: Optional[Callable[[int], None]] = None,
    ) -> PasteRecord:
        """
        Atomically read and delete a burn-after-reading paste.

        Of any number of concurrent callers for the same id exactly one gets
        the record; the rest get NotFoundError. Pastes without the burn flag
        are returned untouched. `on_consumed` runs after a burn commits.
        """
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM pastes WHERE id = ?", (paste_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError()

            record = PasteRecord.from_row(row)
            if record.burn_after_reading:
                conn.execute("DELETE FROM pastes WHERE id = ?", (paste_id,))

        if record.burn_after_reading and on_consumed:
            on_consumed(paste_id)
        return record

    def purge_expired(
        self,
        now: float,
        on_purged: Optional[Callable[[List[int]], None]] = None,
    ) -> int:
        """
        Delete every paste with `expires_at < now`.

        Works in batches of `purge_batch_size`, each its own transaction, and
        releases the lock in between so readers and writers can interleave.
        `on_purged` receives the ids of each batch after it is committed.
        """
        batch_size = self.settings.purge_batch_size
        total = 0

        while True:
            with self._transaction() as conn:
                rows = conn.execute(
                    """
                    DELETE FROM pastes WHERE id IN (
                        SELECT id FROM pastes
                        WHERE expires_at IS NOT NULL AND expires_at < ?
                        LIMIT ?
                    )
                    RETURNING id
                    """,
                    (now, batch_size),
                ).fetchall()

            ids = [row["id"] for row in rows]
            total += len(ids)
            if ids and on_purged:
                on_purged(ids)

            if len(ids) < batch_size:
                break

        return total
