"""Adapt PGN text into the played-move sequence the pipeline consumes."""

from __future__ import annotations

import io

import chess
import chess.pgn

from game_review.models import PlayedMove, Side


def moves_from_board(board: chess.Board, moves: list[chess.Move]) -> list[PlayedMove]:
    """Describe ``moves`` played in order from ``board`` (left untouched)."""
    replay = board.copy()
    played: list[PlayedMove] = []
    for move in moves:
        promotion = chess.piece_symbol(move.promotion) if move.promotion else None
        played.append(PlayedMove(
            from_square=chess.square_name(move.from_square),
            to_square=chess.square_name(move.to_square),
            side=Side.from_color(replay.turn),
            san=replay.san(move),
            promotion=promotion,
        ))
        replay.push(move)
    return played


def read_game_moves(pgn_text: str) -> tuple[str, list[PlayedMove]]:
    """Parse the first game in ``pgn_text``.

    Returns:
        Tuple of (starting FEN, played moves of the mainline).

    Raises:
        ValueError: If no game can be read or the mainline has illegal moves.
    """
    game = chess.pgn.read_game(io.StringIO(pgn_text))
    if game is None:
        raise ValueError("No game found in PGN")
    if game.errors:
        raise ValueError(f"Invalid PGN: {game.errors[0]}")

    board = game.board()
    return board.fen(), moves_from_board(board, list(game.mainline_moves()))
