"""SuperMemo-2 scheduling.

Pure functions only; persistence and clocks live in the recall scheduler.
"""

import math
from dataclasses import dataclass

from second_brain.core.base import ValidationErrorDetails
from second_brain.core.constants import (
    SM2_FIRST_INTERVAL_DAYS,
    SM2_MAX_QUALITY,
    SM2_MIN_EASE_FACTOR,
    SM2_MIN_QUALITY,
    SM2_PASSING_QUALITY,
    SM2_SECOND_INTERVAL_DAYS,
)
from second_brain.core.errors import InvalidInputError


@dataclass(frozen=True)
class SM2Result:
    interval_days: int
    ease_factor: float
    review_count: int

    @property
    def strength(self) -> float:
        """Read-only retention indicator, zero right after a failed recall."""
        return self.review_count * self.ease_factor


def round_half_up(value: float) -> int:
    # round() is banker's rounding; intervals round .5 up
    return math.floor(value + 0.5)


def validate_quality(quality: object) -> int:
    """Return the quality if it is an integer grade in [0, 5]."""
    if isinstance(quality, bool) or not isinstance(quality, int) or not SM2_MIN_QUALITY <= quality <= SM2_MAX_QUALITY:
        raise InvalidInputError(
            f"Quality must be an integer between {SM2_MIN_QUALITY} and {SM2_MAX_QUALITY}",
            details=ValidationErrorDetails(
                source="sm2",
                operation="validate_quality",
                field="quality",
                actual_value=repr(quality),
                expected_type="int",
                constraint=f"{SM2_MIN_QUALITY} <= quality <= {SM2_MAX_QUALITY}",
            ),
        )
    return quality


def calculate_sm2(quality: int, interval: int, ease_factor: float, review_count: int) -> SM2Result:
    """Compute the next scheduling state after a review.

    Args:
        quality: Recall grade, 0 (blackout) to 5 (perfect)
        interval: Current interval in days
        ease_factor: Current ease factor
        review_count: Consecutive successful reviews so far

    Returns:
        The new interval, ease factor and consecutive success count
    """
    quality = validate_quality(quality)

    miss = SM2_MAX_QUALITY - quality
    new_ease = max(SM2_MIN_EASE_FACTOR, ease_factor + (0.1 - miss * (0.08 + miss * 0.02)))

    if quality < SM2_PASSING_QUALITY:
        return SM2Result(interval_days=SM2_FIRST_INTERVAL_DAYS, ease_factor=new_ease, review_count=0)

    new_count = review_count + 1
    if new_count == 1:
        new_interval = SM2_FIRST_INTERVAL_DAYS
    elif new_count == 2:
        new_interval = SM2_SECOND_INTERVAL_DAYS
    else:
        new_interval = max(1, round_half_up(interval * new_ease))

    return SM2Result(interval_days=new_interval, ease_factor=new_ease, review_count=new_count)
