"""Typed progress events streamed out of an analysis run.

A run yields any number of ProgressEvents followed by exactly one
CompleteEvent or ErrorEvent. Events are frozen so they are safe to pass
across task boundaries.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from game_review.models import GameAnalysis


@dataclass(frozen=True)
class ProgressEvent:
    current: int
    total: int

    def to_dict(self) -> dict:
        return {"type": "progress", "current": self.current, "total": self.total}


@dataclass(frozen=True)
class CompleteEvent:
    analysis: GameAnalysis

    def to_dict(self) -> dict:
        return {"type": "complete", "analysis": self.analysis.to_dict()}


@dataclass(frozen=True)
class ErrorEvent:
    error: str

    def to_dict(self) -> dict:
        return {"type": "error", "error": self.error}


AnalysisEvent = ProgressEvent | CompleteEvent | ErrorEvent


def is_terminal(event: AnalysisEvent) -> bool:
    return isinstance(event, (CompleteEvent, ErrorEvent))


def encode_sse(event: AnalysisEvent) -> str:
    """Render an event as a Server-Sent Events data frame."""
    return f"data: {json.dumps(event.to_dict())}\n\n"
