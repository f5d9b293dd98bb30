"""Shared utility functions for agent memory.

Vector math and clock helpers used by providers, the repository and the
store, kept in one place so every component agrees on them.
"""

import math
from datetime import datetime, timezone

from .errors import DimensionMismatch


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def normalize_embedding(embedding: list[float]) -> list[float]:
    """Normalize embedding to unit length for consistent similarity math.

    Args:
        embedding: Vector of floats representing an embedding.

    Returns:
        Normalized embedding with unit length (L2 norm = 1).
        Returns the original embedding if it has zero magnitude.
    """
    norm = math.sqrt(sum(x * x for x in embedding))
    if norm == 0:
        return embedding
    return [x / norm for x in embedding]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Calculate cosine similarity between two vectors.

    Uses the formula: cos(θ) = (a · b) / (||a|| * ||b||)

    Returns:
        Similarity between -1.0 and 1.0. Zero-magnitude vectors score 0.0.

    Raises:
        DimensionMismatch: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise DimensionMismatch(f"Vector dimensions don't match: {len(a)} vs {len(b)}")

    dot_product = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    # Clamp float drift so callers can rely on the [-1, 1] range
    return max(-1.0, min(1.0, dot_product / (norm_a * norm_b)))
