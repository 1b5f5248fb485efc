"""Per-side accuracy with Lichess-style volatility weighting.

Moves in contested stretches (high win% variance over a sliding window)
count more than moves in positions that were already decided.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from game_review.classify import own_win_percent, win_percent_loss
from game_review.models import MoveAnalysis

_WINDOW = 5
_MIN_WEIGHT = 0.5
_MAX_WEIGHT = 12.0
_WEIGHTED_SHARE = 0.6
_HARMONIC_SHARE = 0.4


def move_accuracy(loss: float) -> float:
    """Accuracy (0-100) of a single move from its win-percent loss."""
    if loss <= 0:
        return 100.0
    raw = 103.1668100711649 * math.exp(-0.04354415386753951 * loss) - 3.166924740191411
    return max(0.0, min(100.0, raw))


def _stddev(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def volatility_weights(win_percents: Sequence[float]) -> list[float]:
    """Weight each move by the spread of win% in a centred window."""
    half = _WINDOW // 2
    weights = []
    for i in range(len(win_percents)):
        window = win_percents[max(0, i - half):i + half + 1]
        weights.append(max(_MIN_WEIGHT, min(_MAX_WEIGHT, _stddev(window))))
    return weights


def _harmonic_mean(values: Sequence[float]) -> float:
    positives = [v for v in values if v > 0]
    if not positives:
        return 0.0
    return len(positives) / sum(1 / v for v in positives)


def calculate_accuracy(moves: Sequence[MoveAnalysis]) -> float:
    """Blend of volatility-weighted and harmonic mean move accuracy.

    Args:
        moves: One side's moves only, in game order.

    Returns:
        Accuracy in [0, 100], rounded to one decimal. 100 for no moves.
    """
    if not moves:
        return 100.0

    win_percents = [own_win_percent(m.eval_before, m.side) for m in moves]
    accuracies = [
        move_accuracy(win_percent_loss(m.eval_before, m.eval_after, m.side))
        for m in moves
    ]
    weights = volatility_weights(win_percents)

    total_weight = sum(weights)
    weighted_mean = (
        sum(a * w for a, w in zip(accuracies, weights)) / total_weight
        if total_weight > 0
        else 0.0
    )

    blended = weighted_mean * _WEIGHTED_SHARE + _harmonic_mean(accuracies) * _HARMONIC_SHARE
    return round(max(0.0, min(100.0, blended)), 1)
