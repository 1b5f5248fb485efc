"""Replay a game through the engine, one evaluation per position.

Each position's post-move evaluation is reused as the next ply's
pre-move evaluation, so an N-ply game costs N+1 searches instead of 2N.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Protocol

import chess

from game_review.models import EngineEvaluation, PlayedMove
from game_review.uci import NO_MOVE

logger = logging.getLogger(__name__)


class Evaluator(Protocol):
    async def evaluate(self, fen: str, depth: int | None = None) -> EngineEvaluation: ...


@dataclass(frozen=True)
class PlyEvaluation:
    """Engine view of one played ply."""

    index: int
    move: PlayedMove
    fen_before: str
    before: EngineEvaluation
    after: EngineEvaluation
    best_move_san: str

    @property
    def is_best(self) -> bool:
        return self.before.best_move is not None and self.move.uci == self.before.best_move


def uci_to_san(fen: str, uci: str | None) -> str:
    """Convert a UCI move to SAN in the position given by ``fen``.

    Returns an empty string for no move and the raw token when the move
    cannot be played in that position.
    """
    if not uci or uci == NO_MOVE:
        return ""
    try:
        board = chess.Board(fen)
        move = chess.Move.from_uci(uci)
    except ValueError:
        return uci
    if not board.is_legal(move):
        return uci
    return board.san(move)


async def replay_game(
    evaluator: Evaluator,
    moves: Sequence[PlayedMove],
    *,
    depth: int,
    starting_fen: str = chess.STARTING_FEN,
) -> AsyncIterator[PlyEvaluation]:
    """Yield a PlyEvaluation per move, awaiting each search in turn.

    The fold carries one accumulator, the evaluation of the current
    position, from ply to ply.

    Raises:
        ValueError: If a move cannot be played on the replica board.
    """
    board = chess.Board(starting_fen)
    last = await evaluator.evaluate(board.fen(), depth)

    for index, move in enumerate(moves):
        fen_before = board.fen()
        board.push_uci(move.uci)
        after = await evaluator.evaluate(board.fen(), depth)
        yield PlyEvaluation(
            index=index,
            move=move,
            fen_before=fen_before,
            before=last,
            after=after,
            best_move_san=uci_to_san(fen_before, last.best_move),
        )
        last = after
    logger.debug("Replayed %d plies with %d evaluations", len(moves), len(moves) + 1)
