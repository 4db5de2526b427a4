"""
Paste service: the operations the engine exposes to a request layer.

Ties the id allocator, crypto engine, codec, repository, expiry handling and
render cache together. Everything blocking runs on the BlockingExecutor and
every public call is bounded by the configured request timeout.
"""

import asyncio
import time
from typing import Awaitable, Callable, List, Optional, TypeVar, Union

import structlog
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..log import configure_logging
from ..models.paste import (
    CreatePasteRequest,
    CreatedPaste,
    PasteContent,
    PasteMetadata,
    to_datetime,
)
from .blocking import BlockingExecutor
from .cache import RenderCache
from .compression import Codec
from .crypto import CryptoEngine, OwnerTokens
from .exceptions import (
    BadInputError,
    DecryptionError,
    ForbiddenError,
    NotFoundError,
    PasswordRequiredError,
    PasteVaultError,
    RequestTimeoutError,
)
from .expiry import ExpiryEnforcer, ExpirySweeper
from .highlight import Highlighter, RenderFormat, RenderOptions, Theme
from .ids import InvalidIdError, decode_id, display_path, encode_id
from .metrics import MetricsCollector
from .repository import NewPaste, PasteRecord, PasteRepository

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_READ_OUTCOMES = {"not_found", "password_required", "forbidden", "request_timeout"}


class PasteService:
    """
    Create, read, delete, purge and render pastes.

    Use `start()`/`stop()` or `async with` around the service's lifetime.
    """

    def __init__(
        self,
        settings: Settings,
        metrics: Optional[MetricsCollector] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.settings = settings
        self.metrics = metrics or MetricsCollector()
        self.clock = clock or time.time

        self.executor = BlockingExecutor(settings.worker_threads)
        self.repository = PasteRepository(settings.storage)
        self.codec = Codec()
        self.crypto = CryptoEngine(settings.crypto, on_derive=self.metrics.record_kdf)
        self.owner_tokens = OwnerTokens(settings.crypto.signing_key)
        self.cache = RenderCache(settings.cache.capacity, self.metrics)
        self.highlighter = Highlighter()
        self.expiry = ExpiryEnforcer(self._delete_expired)
        self.sweeper = ExpirySweeper(
            self.purge,
            settings.storage.purge_interval_seconds,
            on_cycle=self.metrics.record_purge_cycle,
        )
        self._started = False

    async def start(self) -> None:
        """Open storage, apply migrations and start the purge sweeper."""
        if self._started:
            return

        await self.executor.run(self.repository.open)
        await self.sweeper.start()
        self._started = True

        logger.info("Paste service started")

    async def stop(self) -> None:
        if not self._started:
            return

        await self.sweeper.stop()
        await self.executor.run(self.repository.close)
        # Workers may still be finishing timed-out calls
        await asyncio.to_thread(self.executor.shutdown)
        self._started = False

        logger.info("Paste service stopped")

    async def __aenter__(self) -> "PasteService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # Public operations

    async def create(
        self,
        text: Union[str, bytes],
        extension: Optional[str] = None,
        title: Optional[str] = None,
        expires_in_seconds: Optional[int] = None,
        burn_after_reading: bool = False,
        password: Optional[str] = None,
    ) -> CreatedPaste:
        try:
            request = CreatePasteRequest(
                text=text,
                extension=extension,
                title=title,
                expires_in_seconds=expires_in_seconds,
                burn_after_reading=burn_after_reading,
                password=password,
            )
        except ValidationError as e:
            raise BadInputError(
                "Invalid paste request",
                details={"errors": e.errors(include_url=False, include_input=False)},
            ) from None

        return await self.create_from_request(request)

    async def create_from_request(self, request: CreatePasteRequest) -> CreatedPaste:
        return await self._bounded(self._create(request))

    async def fetch_raw(self, paste_id: str, password: Optional[str] = None) -> PasteContent:
        """
        Return the stored content of a paste.

        Burn-after-reading pastes are destroyed by the first successful call;
        every other caller, concurrent or later, gets NotFoundError.
        """
        try:
            content = await self._bounded(self._fetch_raw(paste_id, password))
        except PasteVaultError as e:
            self.metrics.record_read(e.error_code if e.error_code in _READ_OUTCOMES else "error")
            raise

        self.metrics.record_read("ok")
        return content

    async def fetch_metadata(self, paste_id: str) -> PasteMetadata:
        """Describe a paste without decrypting or consuming it."""
        return await self._bounded(self._fetch_metadata(paste_id))

    async def delete(self, paste_id: str, owner_token: str) -> None:
        await self._bounded(self._delete(paste_id, owner_token))

    async def purge(self) -> int:
        """
        Delete every paste that expired before now.

        Meant for the sweeper, so it is not bounded by the request timeout.
        """
        now = self.clock()
        return await self.executor.run(self.repository.purge_expired, now, self._on_purged)

    async def render_formatted(
        self,
        paste_id: str,
        theme: Union[Theme, str] = Theme.DEFAULT,
        format: Union[RenderFormat, str] = RenderFormat.HTML,
        password: Optional[str] = None,
    ) -> str:
        """
        Return highlighted output for a paste.

        Plain pastes are served from the render cache; encrypted and
        burn-after-reading pastes are rendered on every call and never cached.
        """
        try:
            options = RenderOptions(theme=Theme(theme), format=RenderFormat(format))
        except ValueError as e:
            raise BadInputError(str(e)) from None

        return await self._bounded(self._render(paste_id, options, password))

    # Operation bodies

    async def _create(self, request: CreatePasteRequest) -> CreatedPaste:
        content = request.content
        self._check_limits(request, content)

        now = self.clock()
        expires_at = None
        if request.expires_in_seconds is not None:
            expires_at = now + request.expires_in_seconds

        token, digest = self.owner_tokens.issue()
        data, nonce = await self.executor.run(self._encode, content, request.password)

        paste_id = await self.executor.run(
            self.repository.insert,
            NewPaste(
                data=data,
                nonce=nonce,
                encrypted=nonce is not None,
                created_at=now,
                expires_at=expires_at,
                burn_after_reading=request.burn_after_reading,
                owner_token=digest,
                title=request.title,
                extension=request.extension,
            ),
        )

        self.metrics.record_created(nonce is not None, request.burn_after_reading, len(content))
        logger.info(
            "Paste created",
            id=encode_id(paste_id),
            size_bytes=len(content),
            encrypted=nonce is not None,
            burn_after_reading=request.burn_after_reading,
            expires_in_seconds=request.expires_in_seconds,
        )

        return CreatedPaste(
            id=encode_id(paste_id),
            display_path=display_path(paste_id, request.extension),
            owner_token=token,
            expires_at=to_datetime(expires_at),
        )

    async def _fetch_raw(self, paste_id: str, password: Optional[str]) -> PasteContent:
        record = await self._load(self._parse_id(paste_id))
        content = await self._read(record, password)

        return PasteContent(
            content=content,
            extension=record.extension,
            title=record.title,
            burned=record.burn_after_reading,
        )

    async def _fetch_metadata(self, paste_id: str) -> PasteMetadata:
        record = await self._load(self._parse_id(paste_id))

        return PasteMetadata(
            id=encode_id(record.id),
            display_path=display_path(record.id, record.extension),
            title=record.title,
            extension=record.extension,
            encrypted=record.encrypted,
            burn_after_reading=record.burn_after_reading,
            created_at=to_datetime(record.created_at),
            expires_at=to_datetime(record.expires_at),
        )

    async def _delete(self, paste_id: str, owner_token: str) -> None:
        pid = self._parse_id(paste_id)
        await self._load(pid)

        if not owner_token:
            raise ForbiddenError("Owner token required")

        await self.executor.run(
            self.repository.delete,
            pid,
            lambda stored: self.owner_tokens.verify(owner_token, stored),
            self._on_owner_deleted,
        )

        logger.info("Paste deleted by owner", id=paste_id)

    async def _render(self, paste_id: str, options: RenderOptions, password: Optional[str]) -> str:
        pid = self._parse_id(paste_id)
        record = await self._load(pid)

        if record.encrypted or record.burn_after_reading:
            content = await self._read(record, password)
            return await self._highlight(content, record.extension, options)

        async def compute() -> str:
            content = await self.executor.run(self._decode, record, None)
            return await self._highlight(content, record.extension, options)

        return await self.cache.get_or_compute(pid, options, compute)

    # Helpers

    async def _bounded(self, operation: Awaitable[T]) -> T:
        timeout = self.settings.limits.request_timeout_seconds
        if not timeout:
            return await operation

        try:
            return await asyncio.wait_for(operation, timeout)
        except asyncio.TimeoutError:
            logger.warning("Operation timed out", timeout_seconds=timeout)
            raise RequestTimeoutError(timeout_seconds=timeout) from None

    def _parse_id(self, paste_id: str) -> int:
        try:
            return decode_id(paste_id)
        except InvalidIdError:
            raise NotFoundError() from None

    def _check_limits(self, request: CreatePasteRequest, content: bytes) -> None:
        limits = self.settings.limits

        if len(content) > limits.max_body_size:
            raise BadInputError(
                "Paste exceeds maximum size",
                details={"size_bytes": len(content), "max_size_bytes": limits.max_body_size},
            )

        if request.title and len(request.title) > limits.max_title_length:
            raise BadInputError("Title too long", details={"max_length": limits.max_title_length})

        if request.extension and len(request.extension) > limits.max_extension_length:
            raise BadInputError(
                "Extension too long",
                details={"max_length": limits.max_extension_length},
            )

        if (
            request.expires_in_seconds is not None
            and request.expires_in_seconds > limits.max_expiration_seconds
        ):
            raise BadInputError(
                "Expiration too far in the future",
                details={"max_expiration_seconds": limits.max_expiration_seconds},
            )

    async def _load(self, pid: int) -> PasteRecord:
        """Fetch a record and apply lazy expiry."""
        record = await self.executor.run(self.repository.fetch, pid)
        return await self.expiry.check(record, self.clock())

    async def _read(self, record: PasteRecord, password: Optional[str]) -> bytes:
        """
        Decode a record's content, consuming it if it burns after reading.

        The password is checked before the consume, so a wrong password never
        destroys a burn-after-reading paste.
        """
        content = await self.executor.run(self._decode, record, password)

        if record.burn_after_reading:
            await self.executor.run(self.repository.consume_if_burn, record.id, self._on_burned)
            logger.info("Burn-after-reading paste consumed", id=encode_id(record.id))

        return content

    def _encode(self, content: bytes, password: Optional[str]):
        """Compress, then encrypt when a password is given. Returns (data, nonce)."""
        compressed = self.codec.compress(content)
        if not password:
            return compressed, None
        return self.crypto.seal(compressed, password)

    def _decode(self, record: PasteRecord, password: Optional[str]) -> bytes:
        if not record.encrypted:
            return self.codec.decompress(record.data)

        if not password:
            raise PasswordRequiredError()

        if record.nonce is None:
            raise ForbiddenError()

        try:
            compressed = self.crypto.open(record.data, record.nonce, password)
        except DecryptionError:
            raise ForbiddenError() from None
        return self.codec.decompress(compressed)

    async def _highlight(self, content: bytes, extension: Optional[str], options: RenderOptions) -> str:
        text = content.decode("utf-8", errors="replace")
        return await self.executor.run(self.highlighter.render, text, extension, options)

    async def _delete_expired(self, pid: int, now: float) -> bool:
        return await self.executor.run(self.repository.delete_expired, pid, now, self._on_expired)

    # Deletion callbacks run on the storage thread right after the commit

    def _on_owner_deleted(self, pid: int) -> None:
        self.cache.invalidate(pid)
        self.metrics.record_deletion("owner")

    def _on_burned(self, pid: int) -> None:
        self.cache.invalidate(pid)
        self.metrics.record_deletion("burn")

    def _on_expired(self, pid: int) -> None:
        self.cache.invalidate(pid)
        self.metrics.record_deletion("expired")

    def _on_purged(self, ids: List[int]) -> None:
        self.cache.invalidate_many(ids)
        self.metrics.record_purged(ids)


def create_service(
    settings: Optional[Settings] = None,
    metrics: Optional[MetricsCollector] = None,
    clock: Optional[Callable[[], float]] = None,
) -> PasteService:
    """Build a service from settings, configuring logging on the way."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    return PasteService(settings, metrics=metrics, clock=clock)


# Global service instance
_paste_service: Optional[PasteService] = None


def get_paste_service() -> PasteService:
    """Get or create global paste service instance."""
    global _paste_service

    if _paste_service is None:
        _paste_service = create_service()

    return _paste_service
