"""Shared data models for game review.

EngineEvaluation is what the engine client hands out; MoveAnalysis and
GameAnalysis are the per-run results handed to persistence and display.
The to_dict() methods produce the camelCase wire shape the display
layer consumes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import chess


class Side(str, Enum):
    WHITE = "white"
    BLACK = "black"

    @classmethod
    def from_color(cls, color: chess.Color) -> Side:
        return cls.WHITE if color == chess.WHITE else cls.BLACK

    @property
    def short(self) -> str:
        return "w" if self is Side.WHITE else "b"


class MoveClassification(str, Enum):
    """Quality tier of a played move.

    BRILLIANT and BOOK are reserved; the classifier never produces them.
    """

    BEST = "best"
    GREAT = "great"
    GOOD = "good"
    INACCURACY = "inaccuracy"
    MISTAKE = "mistake"
    BLUNDER = "blunder"
    BRILLIANT = "brilliant"
    BOOK = "book"


@dataclass(frozen=True)
class PlayedMove:
    """One legality-checked ply supplied by the game collaborator."""

    from_square: str
    to_square: str
    side: Side
    san: str
    promotion: str | None = None

    @property
    def uci(self) -> str:
        return self.from_square + self.to_square + (self.promotion or "")


@dataclass(frozen=True)
class TopLine:
    moves: tuple[str, ...]
    eval_cp: int

    def to_dict(self) -> dict:
        return {"moves": list(self.moves), "eval": self.eval_cp}


@dataclass(frozen=True)
class EngineEvaluation:
    """Result of one engine search.

    eval_cp is from White's perspective. Mates are folded into eval_cp as
    +/-100000 minus the distance so they outrank any material score;
    mate keeps the signed distance (positive: White mates).
    best_move is None when the position has no legal move.
    """

    eval_cp: int
    best_move: str | None
    pv: tuple[str, ...] = ()
    depth: int = 0
    mate: int | None = None
    top_lines: tuple[TopLine, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.best_move is None

    def to_dict(self) -> dict:
        return {
            "eval": self.eval_cp,
            "bestMove": self.best_move or "",
            "pv": list(self.pv),
            "depth": self.depth,
            "mate": self.mate,
        }


@dataclass(frozen=True)
class MoveAnalysis:
    move_number: int
    side: Side
    san: str
    uci: str
    eval_before: int
    eval_after: int
    best_move: str
    best_move_san: str
    classification: MoveClassification
    top_lines: tuple[TopLine, ...] = ()

    def to_dict(self) -> dict:
        return {
            "moveNumber": self.move_number,
            "color": self.side.short,
            "san": self.san,
            "uci": self.uci,
            "evalBefore": self.eval_before,
            "evalAfter": self.eval_after,
            "bestMove": self.best_move,
            "bestMoveSan": self.best_move_san,
            "classification": self.classification.value,
            "topLines": [line.to_dict() for line in self.top_lines],
        }


@dataclass(frozen=True)
class GameAnalysis:
    moves: tuple[MoveAnalysis, ...]
    white_accuracy: float
    black_accuracy: float
    white_rating: int
    black_rating: int

    def to_dict(self) -> dict:
        return {
            "moves": [m.to_dict() for m in self.moves],
            "whiteAccuracy": self.white_accuracy,
            "blackAccuracy": self.black_accuracy,
            "whiteRating": self.white_rating,
            "blackRating": self.black_rating,
        }


@dataclass(frozen=True)
class AnalysisRequest:
    """A queued game: opaque id plus its move sequence."""

    game_id: str
    moves: tuple[PlayedMove, ...]
    starting_fen: str = field(default=chess.STARTING_FEN)
