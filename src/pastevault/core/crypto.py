"""
Password-based authenticated encryption and owner tokens.

Keys are derived with Argon2id from the paste password and the server-wide
salt; payloads are sealed with ChaCha20-Poly1305 under a fresh random nonce.
Passwords and derived keys are never stored or logged.
"""

import hashlib
import hmac
import os
import secrets
import time
from typing import Callable, Optional, Tuple

import structlog
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from ..config import CryptoSettings
from .exceptions import DecryptionError

logger = structlog.get_logger(__name__)

KEY_LEN = 32
NONCE_LEN = 12


class CryptoEngine:
    """Derives keys and performs AEAD encryption for paste payloads."""

    def __init__(
        self,
        settings: CryptoSettings,
        on_derive: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._salt = settings.password_salt.encode("utf-8")
        self._time_cost = settings.argon2_time_cost
        self._memory_cost = settings.argon2_memory_cost_kib
        self._parallelism = settings.argon2_parallelism
        self._on_derive = on_derive

    def derive_key(self, password: str) -> bytes:
        """
        Derive a 32-byte key from a password.

        Memory-hard and deliberately slow; always call it from the blocking
        executor, never on the event loop.
        """
        started = time.perf_counter()
        key = hash_secret_raw(
            secret=password.encode("utf-8"),
            salt=self._salt,
            time_cost=self._time_cost,
            memory_cost=self._memory_cost,
            parallelism=self._parallelism,
            hash_len=KEY_LEN,
            type=Type.ID,
        )
        if self._on_derive:
            self._on_derive(time.perf_counter() - started)
        return key

    def encrypt(self, plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
        """Encrypt under a fresh nonce. Returns (ciphertext, nonce)."""
        nonce = os.urandom(NONCE_LEN)
        ciphertext = ChaCha20Poly1305(key).encrypt(nonce, plaintext, None)
        return ciphertext, nonce

    def decrypt(self, ciphertext: bytes, nonce: bytes, key: bytes) -> bytes:
        """Decrypt and authenticate, raising DecryptionError on any mismatch."""
        if len(nonce) != NONCE_LEN:
            raise DecryptionError("Malformed nonce")

        try:
            return ChaCha20Poly1305(key).decrypt(nonce, ciphertext, None)
        except InvalidTag:
            raise DecryptionError() from None

    def seal(self, plaintext: bytes, password: str) -> Tuple[bytes, bytes]:
        """Derive the key for `password` and encrypt in one step."""
        return self.encrypt(plaintext, self.derive_key(password))

    def open(self, ciphertext: bytes, nonce: bytes, password: str) -> bytes:
        return self.decrypt(ciphertext, nonce, self.derive_key(password))


class OwnerTokens:
    """
    Issues and checks the tokens that authorize paste deletion.

    Only an HMAC-SHA256 digest of each token is persisted, keyed with the
    configured signing key, so a leaked database does not leak credentials.
    """

    def __init__(self, signing_key: str) -> None:
        self._key = signing_key.encode("utf-8")

    def issue(self) -> Tuple[str, str]:
        """Return (token, digest). Hand the token to the caller, store the digest."""
        token = secrets.token_urlsafe(32)
        return token, self.digest(token)

    def digest(self, token: str) -> str:
        return hmac.new(self._key, token.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify(self, token: str, stored_digest: Optional[str]) -> bool:
        if not token or not stored_digest:
            return False
        return hmac.compare_digest(self.digest(token), stored_digest)
