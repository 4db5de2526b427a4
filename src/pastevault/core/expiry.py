"""
Expiration enforcement.

Expired pastes are removed two ways: lazily, when a read finds one, and
eagerly, by a background sweeper that purges on a fixed interval.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from .exceptions import NotFoundError
from .ids import encode_id
from .repository import PasteRecord

logger = structlog.get_logger(__name__)


def is_expired(record: PasteRecord, now: float) -> bool:
    """A paste is expired once its expiry lies strictly before `now`."""
    return record.expires_at is not None and record.expires_at < now


class ExpiryEnforcer:
    """
    Lazy expiry on read.

    `delete_expired` removes the row from storage; whatever must follow a
    deletion (dropping rendered output, counting it) belongs to the storage
    callback so it runs even if the reader has gone away.
    """

    def __init__(self, delete_expired: Callable[[int, float], Awaitable[bool]]) -> None:
        self._delete_expired = delete_expired

    async def check(self, record: PasteRecord, now: float) -> PasteRecord:
        """Return `record` if it is live, otherwise delete it and raise NotFoundError."""
        if not is_expired(record, now):
            return record

        if await self._delete_expired(record.id, now):
            logger.info("Deleted expired paste on read", id=encode_id(record.id))
        raise NotFoundError()


class ExpirySweeper:
    """
    Background task that purges expired pastes on an interval.

    A failing cycle is logged and the next one runs as scheduled. An interval
    of zero disables the sweeper; lazy expiry stays active regardless.
    """

    def __init__(
        self,
        purge: Callable[[], Awaitable[int]],
        interval_seconds: float = 60,
        on_cycle: Optional[Callable[[bool], None]] = None,
    ):
        self.interval = interval_seconds
        self._purge = purge
        self._on_cycle = on_cycle
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False

    @property
    def enabled(self) -> bool:
        return self.interval > 0

    async def start(self) -> None:
        """Start the sweeper loop."""
        if self._running:
            return

        if not self.enabled:
            logger.info("Expiry sweeper disabled")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_sweep_loop())

        logger.info("Expiry sweeper started", interval_seconds=self.interval)

    async def stop(self) -> None:
        """Stop the sweeper loop."""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Expiry sweeper stopped")

    async def run_once(self) -> bool:
        """Run a single purge cycle. Returns whether it succeeded."""
        try:
            purged = await self._purge()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Purge cycle failed", error=str(e), exc_info=True)
            success = False
        else:
            if purged > 0:
                logger.info("Purge cycle completed", purged=purged)
            success = True

        if self._on_cycle:
            self._on_cycle(success)
        return success

    async def _run_sweep_loop(self) -> None:
        """Main sweep loop."""
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.run_once()
            except asyncio.CancelledError:
                break

    def is_healthy(self) -> bool:
        return self._running and self._task is not None and not self._task.done()
