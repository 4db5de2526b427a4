"""
Custom exceptions for the paste engine.

Every error carries the HTTP status code and error code an outer request
layer should answer with, so callers can map errors by kind without
inspecting messages.
"""

from typing import Any, Dict, Optional


class PasteVaultError(Exception):
    """Base exception for the paste engine."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(PasteVaultError):
    """Raised for unknown, expired or already burned pastes."""

    def __init__(self, message: str = "Paste not found") -> None:
        super().__init__(
            message=message,
            status_code=404,
            error_code="not_found",
        )


class ForbiddenError(PasteVaultError):
    """Raised on a wrong password or a wrong owner token."""

    def __init__(self, message: str = "Not allowed") -> None:
        super().__init__(
            message=message,
            status_code=403,
            error_code="forbidden",
        )


class PasswordRequiredError(PasteVaultError):
    """Raised when an encrypted paste is read without a password."""

    def __init__(self, message: str = "Password required") -> None:
        super().__init__(
            message=message,
            status_code=401,
            error_code="password_required",
        )


class BadInputError(PasteVaultError):
    """Raised when request validation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="bad_input",
            details=details,
        )


class RequestTimeoutError(PasteVaultError):
    """Raised when an operation exceeds the configured request timeout."""

    def __init__(self, message: str = "Request timed out", timeout_seconds: Optional[float] = None) -> None:
        details = {}
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds

        super().__init__(
            message=message,
            status_code=408,
            error_code="request_timeout",
            details=details,
        )


class InternalError(PasteVaultError):
    """Raised on storage, codec or allocation failures."""

    def __init__(self, message: str = "Internal error", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="internal_error",
            details=details,
        )


class StorageError(InternalError):
    """Raised when the underlying database fails."""


class CompressionError(InternalError):
    """Raised when a stored payload cannot be decompressed."""


class IdSpaceExhaustedError(InternalError):
    """Raised when no free identifier was found within the retry limit."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            message="Failed to allocate a unique paste id",
            details={"attempts": attempts},
        )


class DecryptionError(PasteVaultError):
    """
    Raised by the crypto engine when authenticated decryption fails.

    Wrong key, wrong nonce and tampered ciphertext all end up here.
    """

    def __init__(self, message: str = "Failed to decrypt") -> None:
        super().__init__(
            message=message,
            status_code=403,
            error_code="decryption_failed",
        )
