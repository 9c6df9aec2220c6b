"""
Similarity Tests

Cosine similarity, clamping, and the deterministic tie-break used when
picking a canonical chunk.
"""

from datetime import timedelta
from uuid import UUID

import numpy as np
import pytest

from second_brain.domain.similarity import best_match, cosine_scores, cosine_similarity

from .conftest import START, make_canonical


class TestCosineSimilarity:
    def test_known_value(self):
        assert cosine_similarity([3.0, 4.0], [4.0, 3.0]) == pytest.approx(0.96)

    def test_identical_and_opposite(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_result_stays_in_range(self):
        score = cosine_similarity([1e-8, 1e-8], [1e-8, 1e-8])
        assert -1.0 <= score <= 1.0

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


class TestCosineScores:
    def test_scores_each_candidate(self):
        scores = cosine_scores([1.0, 0.0], [[1.0, 0.0], [0.0, 1.0], [-1.0, 0.0]])
        assert np.allclose(scores, [1.0, 0.0, -1.0])

    def test_empty_candidates(self):
        assert cosine_scores([1.0, 0.0], []).shape == (0,)

    def test_mismatched_candidate_dimensions(self):
        with pytest.raises(ValueError):
            cosine_scores([1.0, 0.0], [[1.0, 0.0, 0.0]])


class TestBestMatch:
    def test_no_candidates(self):
        assert best_match([1.0, 0.0], []) is None

    def test_picks_highest_score(self):
        near = make_canonical([1.0, 0.1], START)
        far = make_canonical([0.0, 1.0], START - timedelta(days=1))
        match = best_match([1.0, 0.0], [far, near])
        assert match is not None
        assert match.canonical.id == near.id

    def test_tie_goes_to_oldest(self):
        newer = make_canonical([1.0, 0.0], START)
        older = make_canonical([2.0, 0.0], START - timedelta(hours=1))
        match = best_match([1.0, 0.0], [newer, older])
        assert match.canonical.id == older.id
        assert match.score == pytest.approx(1.0)

    def test_tie_with_same_age_goes_to_smallest_id(self):
        first = make_canonical([1.0, 0.0], START)
        second = make_canonical([1.0, 0.0], START)
        first.id = UUID("00000000-0000-4000-8000-000000000001")
        second.id = UUID("00000000-0000-4000-8000-000000000002")
        match = best_match([1.0, 0.0], [second, first])
        assert match.canonical.id == first.id

    def test_scores_within_epsilon_tie(self):
        older = make_canonical([1.0, 1e-6], START - timedelta(hours=1))
        newer = make_canonical([1.0, 0.0], START)
        match = best_match([1.0, 0.0], [newer, older], epsilon=1e-6)
        assert match.canonical.id == older.id
