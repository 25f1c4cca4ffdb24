"""Placeholder embedding function and the binary vector codec.

The default embedder is a bag-of-characters hash: each character's code point
(scaled by 1/255) is accumulated into slot ``i % dim`` and the result is
L2-normalised. It has no semantic meaning; it only gives the vector channel a
deterministic, fixed-dimension signal. ``create_embedder`` swaps it out.
"""

from __future__ import annotations

import logging
import struct
from typing import Callable

from ..token_counter import load_callable

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 64


def embed_text(text: str, dim: int = DEFAULT_DIMENSION) -> list[float]:
    vector = [0.0] * dim
    for i, ch in enumerate(text):
        vector[i % dim] += ord(ch) / 255
    return normalize(vector)


def normalize(vector: list[float]) -> list[float]:
    magnitude = sum(v * v for v in vector) ** 0.5
    if magnitude == 0:
        return vector
    return [v / magnitude for v in vector]


def pack_vector(vec: list[float]) -> bytes:
    return struct.pack(f"<{len(vec)}f", *vec)


def unpack_vector(blob: bytes | None) -> list[float]:
    """Decode a float32 blob. Corrupted or missing data decodes to ``[]``."""
    if not isinstance(blob, (bytes, bytearray, memoryview)):
        logger.debug("Embedding blob has unexpected type %s", type(blob).__name__)
        return []
    data = bytes(blob)
    if not data or len(data) % 4 != 0:
        logger.debug("Embedding blob has invalid length %d", len(data))
        return []
    return list(struct.unpack(f"<{len(data) // 4}f", data))


def create_embedder(mode: str = "hash", dim: int = DEFAULT_DIMENSION) -> Callable[[str], list[float]]:
    """Factory for embedding functions.

    Modes:
        "hash" - deterministic bag-of-characters placeholder
        "callable:module.path:func" - custom ``func(text) -> list[float]``
    """
    if mode == "hash":
        return lambda text: embed_text(text, dim)
    if mode.startswith("callable:"):
        return load_callable(mode)
    raise ValueError(f"Unknown embedding type: {mode}")
