"""Map an accuracy percentage to an approximate "played like" rating.

Calibrated reference points (Chess.com approximate):
  50% -> ~700, 65% -> ~1000, 75% -> ~1300, 85% -> ~1700,
  90% -> ~2000, 95% -> ~2500, 98% -> ~2800
"""

from __future__ import annotations

import math

MIN_RATING = 200
MAX_RATING = 2900
_STEP = 25


def accuracy_to_rating(accuracy: float) -> int:
    """Performance rating in [200, 2900], rounded to the nearest 25."""
    clamped = max(1.0, min(99.5, accuracy))
    raw = 590 * math.log(clamped / (100 - clamped)) + 700
    bounded = max(MIN_RATING, min(MAX_RATING, raw))
    return int(math.floor(bounded / _STEP + 0.5)) * _STEP
