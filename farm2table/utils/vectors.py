# =============================================
# File: farm2table/utils/vectors.py
# Purpose: Vector math for embedding similarity
# =============================================
from __future__ import annotations

import math
from typing import Sequence

from .errors import DimensionMismatch


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity in [-1, 1].

    Raises DimensionMismatch when the vectors differ in length.
    A zero-magnitude vector scores 0.0 so degenerate embeddings sort last.
    """
    if len(a) != len(b):
        raise DimensionMismatch(f"Vectors must have the same length ({len(a)} != {len(b)})")

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0 or norm_b == 0:
        return 0.0

    sim = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # clamp tiny float artifacts (e.g. 1.0000000000000002)
    return max(-1.0, min(1.0, sim))
