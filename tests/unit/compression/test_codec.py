"""
Tests for the Zstandard codec.
"""

import os

import pytest

from pastevault.core.compression import Codec
from pastevault.core.exceptions import CompressionError, InternalError


class TestCodec:

    def test_compresses_repetitive_data(self) -> None:
        codec = Codec()
        data = b"hello world\n" * 1000
        compressed = codec.compress(data)
        assert len(compressed) < len(data)
        assert codec.decompress(compressed) == data

    def test_empty_payload(self) -> None:
        codec = Codec()
        assert codec.decompress(codec.compress(b"")) == b""

    def test_incompressible_payload(self) -> None:
        codec = Codec()
        data = os.urandom(4096)
        assert codec.decompress(codec.compress(data)) == data

    def test_corrupt_input_raises_compression_error(self) -> None:
        codec = Codec()
        with pytest.raises(CompressionError) as exc_info:
            codec.decompress(b"definitely not a zstd frame")
        assert isinstance(exc_info.value, InternalError)
        assert exc_info.value.status_code == 500

    def test_truncated_frame_raises_compression_error(self) -> None:
        codec = Codec()
        compressed = codec.compress(b"some content " * 100)
        with pytest.raises(CompressionError):
            codec.decompress(compressed[: len(compressed) // 2])
