"""
SM-2 Scheduling Tests

Covers the ease factor update, the 1/6/EF×I interval ladder, resets on
failed recalls and the grade validation.
"""

import pytest

from second_brain.core.errors import InvalidInputError
from second_brain.domain.sm2 import calculate_sm2, round_half_up, validate_quality


def next_ease(ease_factor: float, quality: int) -> float:
    """EF' = max(1.3, EF + (0.1 - (5 - q)(0.08 + (5 - q) * 0.02)))"""
    miss = 5 - quality
    return max(1.3, ease_factor + (0.1 - miss * (0.08 + miss * 0.02)))


class TestSuccessfulReviews:
    def test_three_perfect_reviews_from_fresh_state(self):
        """Intervals go 1, 6, then I×EF' with EF' following the ease formula."""
        ease = next_ease(2.5, 5)
        first = calculate_sm2(5, interval=1, ease_factor=2.5, review_count=0)
        assert first.interval_days == 1
        assert first.ease_factor == pytest.approx(ease)
        assert first.review_count == 1

        ease = next_ease(ease, 5)
        second = calculate_sm2(5, first.interval_days, first.ease_factor, first.review_count)
        assert second.interval_days == 6
        assert second.ease_factor == pytest.approx(ease)
        assert second.review_count == 2

        ease = next_ease(ease, 5)
        third = calculate_sm2(5, second.interval_days, second.ease_factor, second.review_count)
        assert third.interval_days == round_half_up(6 * ease)
        assert third.interval_days == 17
        assert third.ease_factor == pytest.approx(ease)
        assert third.review_count == 3

    @pytest.mark.parametrize("quality", [3, 4, 5])
    def test_steady_growth_follows_the_formula(self, quality):
        interval, ease, count = 1, 2.5, 0
        for _ in range(6):
            result = calculate_sm2(quality, interval, ease, count)
            ease = next_ease(ease, quality)
            assert result.ease_factor == pytest.approx(ease)
            if result.review_count >= 3:
                assert result.interval_days == round_half_up(interval * ease)
            interval, ease, count = result.interval_days, result.ease_factor, result.review_count

    def test_grade_four_leaves_ease_unchanged(self):
        result = calculate_sm2(4, interval=1, ease_factor=2.5, review_count=0)
        assert result.ease_factor == pytest.approx(2.5)

    def test_grade_three_lowers_ease(self):
        result = calculate_sm2(3, interval=1, ease_factor=2.5, review_count=0)
        assert result.ease_factor == pytest.approx(2.36)
        assert result.review_count == 1

    def test_interval_uses_updated_ease_factor(self):
        """With q=3 EF drops to 2.36 before it multiplies the interval."""
        result = calculate_sm2(3, interval=10, ease_factor=2.5, review_count=2)
        # 10 × 2.36 = 23.6, the old EF would have given 25
        assert result.interval_days == 24

    def test_strength_is_count_times_ease(self):
        result = calculate_sm2(5, interval=6, ease_factor=2.7, review_count=2)
        assert result.strength == pytest.approx(3 * 2.8)


class TestFailedReviews:
    @pytest.mark.parametrize("quality", [0, 1, 2])
    def test_failed_recall_resets_progress(self, quality):
        result = calculate_sm2(quality, interval=17, ease_factor=2.8, review_count=3)
        assert result.interval_days == 1
        assert result.review_count == 0
        assert result.strength == 0

    def test_failed_recall_still_updates_ease(self):
        result = calculate_sm2(2, interval=17, ease_factor=2.8, review_count=3)
        assert result.ease_factor == pytest.approx(2.48)

    def test_ease_factor_never_drops_below_floor(self):
        result = calculate_sm2(0, interval=1, ease_factor=1.3, review_count=0)
        assert result.ease_factor == pytest.approx(1.3)

        repeated = result
        for _ in range(5):
            repeated = calculate_sm2(0, repeated.interval_days, repeated.ease_factor, repeated.review_count)
        assert repeated.ease_factor >= 1.3

    def test_recovery_after_reset_restarts_ladder(self):
        reset = calculate_sm2(1, interval=40, ease_factor=2.5, review_count=5)
        again = calculate_sm2(5, reset.interval_days, reset.ease_factor, reset.review_count)
        assert again.review_count == 1
        assert again.interval_days == 1


class TestRounding:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(2.5, 3), (12.5, 13), (16.8, 17), (16.4, 16), (0.5, 1)],
    )
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected


class TestQualityValidation:
    @pytest.mark.parametrize("quality", [0, 3, 5])
    def test_accepts_integer_grades(self, quality):
        assert validate_quality(quality) == quality

    @pytest.mark.parametrize("quality", [-1, 6, 3.0, 2.5, "4", None, True])
    def test_rejects_everything_else(self, quality):
        with pytest.raises(InvalidInputError) as exc:
            validate_quality(quality)
        assert exc.value.details.operation == "validate_quality"

    def test_calculate_rejects_bad_grade(self):
        with pytest.raises(InvalidInputError):
            calculate_sm2(7, interval=1, ease_factor=2.5, review_count=0)
