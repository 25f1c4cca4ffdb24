"""Shared math utilities."""

from __future__ import annotations


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity over the overlapping prefix of two vectors."""
    size = min(len(a), len(b))
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for i in range(size):
        dot += a[i] * b[i]
        norm_a += a[i] * a[i]
        norm_b += b[i] * b[i]
    if norm_a == 0 or norm_b == 0:
        return 0.0
    sim = dot / (norm_a ** 0.5 * norm_b ** 0.5)
    # Float rounding can push self-similarity a hair past 1.
    return max(-1.0, min(1.0, sim))
