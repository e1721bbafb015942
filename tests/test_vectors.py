# tests/test_vectors.py
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import pytest

from farm2table.utils.errors import DimensionMismatch
from farm2table.utils.vectors import cosine_similarity


def test_self_similarity_is_one():
    v = [0.3, -1.2, 4.0, 0.0]
    assert cosine_similarity(v, v) == pytest.approx(1.0)


def test_opposite_vector_is_minus_one():
    v = [1.0, 2.0, 3.0]
    assert cosine_similarity(v, [-x for x in v]) == pytest.approx(-1.0)


def test_symmetric():
    a, b = [1.0, 0.5, -2.0], [0.2, 3.0, 1.0]
    assert cosine_similarity(a, b) == cosine_similarity(b, a)


def test_zero_magnitude_returns_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([1.0, 2.0], [0.0, 0.0]) == 0.0


def test_dimension_mismatch_raises():
    with pytest.raises(DimensionMismatch):
        cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


def test_result_is_bounded():
    # nearly parallel vectors must not drift above 1.0
    s = cosine_similarity([1e-8, 1.0], [1e-8, 1.0000001])
    assert -1.0 <= s <= 1.0
