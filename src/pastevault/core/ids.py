"""
Paste identifier allocation.

Identifiers are 64 random bits drawn from the OS CSPRNG. Internally they are
stored as signed 64-bit integers (the SQLite INTEGER range), externally they
are rendered as fixed-width base62 strings.
"""

import secrets
import string
from typing import Iterator, Optional

BASE62_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
ID_LENGTH = 11  # 62**11 > 2**64

_ID_BITS = 64
_UNSIGNED_RANGE = 1 << _ID_BITS
_SIGNED_MAX = (1 << (_ID_BITS - 1)) - 1
_DECODE_TABLE = {char: index for index, char in enumerate(BASE62_ALPHABET)}


class InvalidIdError(ValueError):
    """Raised when a string is not a well-formed paste identifier."""


def encode_id(paste_id: int) -> str:
    """Render a signed 64-bit id as a fixed-width base62 string."""
    if not -_SIGNED_MAX - 1 <= paste_id <= _SIGNED_MAX:
        raise InvalidIdError(f"id out of range: {paste_id}")

    n = paste_id % _UNSIGNED_RANGE
    chars = []
    for _ in range(ID_LENGTH):
        n, rem = divmod(n, 62)
        chars.append(BASE62_ALPHABET[rem])
    return "".join(reversed(chars))


def decode_id(value: str) -> int:
    """Parse an external id back into its signed 64-bit form."""
    if not isinstance(value, str) or len(value) != ID_LENGTH:
        raise InvalidIdError("wrong size")

    n = 0
    for char in value:
        try:
            n = n * 62 + _DECODE_TABLE[char]
        except KeyError:
            raise InvalidIdError("illegal characters") from None

    if n >= _UNSIGNED_RANGE:
        raise InvalidIdError("id out of range")

    return n - _UNSIGNED_RANGE if n > _SIGNED_MAX else n


def display_path(paste_id: int, extension: Optional[str] = None) -> str:
    """URL path under which a paste is shown, carrying its extension if any."""
    if extension:
        return f"/{encode_id(paste_id)}.{extension}"
    return f"/{encode_id(paste_id)}"


class IdAllocator:
    """
    Draws unguessable paste ids.

    Values never depend on creation order or time; uniqueness against the
    store is settled by the repository, which asks for a fresh candidate
    each time an insert collides.
    """

    def __init__(self, max_attempts: int = 10) -> None:
        self.max_attempts = max_attempts

    def draw(self) -> int:
        """Return a uniformly random signed 64-bit id."""
        n = secrets.randbits(_ID_BITS)
        return n - _UNSIGNED_RANGE if n > _SIGNED_MAX else n

    def candidates(self) -> Iterator[int]:
        """Yield at most `max_attempts` fresh ids."""
        for _ in range(self.max_attempts):
            yield self.draw()
