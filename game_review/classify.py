"""Win-probability conversion and move classification.

Classifying on win-percent loss instead of raw centipawns keeps the tiers
context-aware: dropping 80cp at +500 barely moves the needle, while the
same drop in an equal position is an inaccuracy.
"""

from __future__ import annotations

import math

from game_review.models import MoveClassification, Side

# Logistic constant calibrated by Lichess on real game data.
WIN_PERCENT_MULTIPLIER = -0.00368208

_CP_CLAMP = 10_000

# Move classification thresholds (win% loss -> classification)
_CLASSIFICATION_THRESHOLDS = [
    (2.0, MoveClassification.GREAT),
    (5.0, MoveClassification.GOOD),
    (10.0, MoveClassification.INACCURACY),
    (20.0, MoveClassification.MISTAKE),
]


def win_percent(cp: float) -> float:
    """White's win probability (0-100) for a White-perspective eval."""
    clamped = max(-_CP_CLAMP, min(_CP_CLAMP, cp))
    winning_chances = 2 / (1 + math.exp(WIN_PERCENT_MULTIPLIER * clamped)) - 1
    return 50 + 50 * winning_chances


def own_win_percent(cp: float, side: Side) -> float:
    """Win probability from the point of view of ``side``."""
    white = win_percent(cp)
    return white if side is Side.WHITE else 100 - white


def win_percent_loss(eval_before: float, eval_after: float, side: Side) -> float:
    """Win probability the mover gave away; never negative."""
    return max(0.0, own_win_percent(eval_before, side) - own_win_percent(eval_after, side))


def classify_move(loss: float, is_best: bool) -> MoveClassification:
    """Classify a move from its win-percent loss.

    Args:
        loss: Win-percent loss for the side that moved.
        is_best: Whether the played move is the engine's top choice.

    Returns:
        BEST for the engine's move regardless of loss, otherwise the first
        tier whose threshold covers the loss, BLUNDER beyond all of them.
    """
    if is_best:
        return MoveClassification.BEST
    for threshold, label in _CLASSIFICATION_THRESHOLDS:
        if loss <= threshold:
            return label
    return MoveClassification.BLUNDER
