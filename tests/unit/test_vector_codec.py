"""Unit tests for the float32 embedding codec."""

from __future__ import annotations

import struct

import pytest

from src.utils.errors import EmbeddingCodecError
from src.utils.vector_codec import decode_vector, encode_vector, to_float32


class TestEncodeVector:
    def test_four_bytes_per_dimension(self) -> None:
        assert len(encode_vector([0.1] * 1536)) == 1536 * 4

    def test_little_endian_layout(self) -> None:
        assert encode_vector([1.0]) == struct.pack("<f", 1.0) == b"\x00\x00\x80\x3f"

    def test_empty_vector(self) -> None:
        assert encode_vector([]) == b""
        assert decode_vector(b"") == []

    def test_unencodable_value(self) -> None:
        with pytest.raises(EmbeddingCodecError):
            encode_vector([1e300])


class TestDecodeVector:
    def test_float32_values_survive_exactly(self) -> None:
        vector = to_float32([0.1, -0.25, 3.14159, 1e-7])
        assert decode_vector(encode_vector(vector)) == vector

    def test_rejects_partial_float(self) -> None:
        with pytest.raises(EmbeddingCodecError):
            decode_vector(b"\x00\x00\x80\x3f\x00")

    def test_to_float32_rounds(self) -> None:
        rounded = to_float32([0.1])[0]
        assert rounded != 0.1
        assert rounded == pytest.approx(0.1, rel=1e-7)
