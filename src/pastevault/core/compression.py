"""
Zstandard compression for stored payloads.

Every payload goes through here, encrypted or not: plaintext is compressed
before it is encrypted, and decompressed after it is decrypted.
"""

import zstandard

from .exceptions import CompressionError

DEFAULT_LEVEL = 3


class Codec:
    """
    Stateless wrapper around zstandard frames.

    zstandard compressor objects are not safe to share between threads, so a
    fresh one is built per call.
    """

    def __init__(self, level: int = DEFAULT_LEVEL) -> None:
        self.level = level

    def compress(self, data: bytes) -> bytes:
        cctx = zstandard.ZstdCompressor(level=self.level, write_content_size=True)
        return cctx.compress(data)

    def decompress(self, data: bytes) -> bytes:
        """Decompress a frame, raising CompressionError on corrupt input."""
        dctx = zstandard.ZstdDecompressor()
        try:
            return dctx.decompress(data)
        except zstandard.ZstdError as e:
            raise CompressionError(
                "Stored payload is corrupt",
                details={"reason": str(e)},
            ) from e
