"""Float32 vector codec -- the on-disk embedding format.

Vectors are packed as contiguous little-endian IEEE-754 float32 values
with ``struct``; a vector of *n* dimensions occupies ``4 * n`` bytes.
Decoding a blob written by :func:`encode_vector` returns exactly the
float32 values that went in.
"""

from __future__ import annotations

import struct
from typing import Sequence

from src.utils.errors import EmbeddingCodecError

_FLOAT32_SIZE = 4


def encode_vector(vector: Sequence[float]) -> bytes:
    """Pack *vector* as contiguous little-endian float32 values."""
    try:
        return struct.pack(f"<{len(vector)}f", *vector)
    except (struct.error, OverflowError) as exc:
        raise EmbeddingCodecError(message=f"Cannot encode vector: {exc}") from exc


def decode_vector(blob: bytes) -> list[float]:
    """Unpack a float32 blob written by :func:`encode_vector`.

    Raises
    ------
    EmbeddingCodecError
        If the blob length is not a multiple of four bytes.
    """
    if len(blob) % _FLOAT32_SIZE:
        raise EmbeddingCodecError(
            message=f"Embedding blob of {len(blob)} bytes is not a whole number of float32 values"
        )
    return list(struct.unpack(f"<{len(blob) // _FLOAT32_SIZE}f", blob))


def to_float32(vector: Sequence[float]) -> list[float]:
    """Round every component to the nearest float32 value."""
    return decode_vector(encode_vector(vector))
