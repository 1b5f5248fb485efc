"""Shared test fixtures with dual-mode support (scripted vs real Stockfish).

Usage:
    pytest tests/                  # Fast, scripted engine (no Stockfish)
    pytest tests/ --e2e            # Also run tests against real Stockfish

Fixtures:
    fast_settings      - AnalysisSettings with sub-second timeouts.
    scripted_client    - Builds EngineClients talking to a ScriptedEngine.
    enable_validation  - Sets GAME_REVIEW_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import os

import chess
import pytest

from game_review.config import AnalysisSettings
from game_review.engine import EngineClient
from game_review.transport import ChannelTransport


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no mocks).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="needs --e2e and a Stockfish binary")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


# ---------------------------------------------------------------------------
# Scripted engine
# ---------------------------------------------------------------------------


class ScriptedEngine:
    """UCI responder for a ChannelTransport.

    Replies to go commands from a list of (eval_cp, best_move) pairs
    given from White's perspective, converting them to the side-to-move
    scores a real engine reports. Once the list runs out it answers with
    the first legal move and a level score.

    Args:
        replies: Scripted answers, consumed one per search.
        depth: Depth reported in info lines.
        hold_after: Number of searches to answer before going silent
            (None answers every search).
        answer_stop: Whether a held search sends bestmove on stop.
        answer_handshake: Whether uci and isready are answered.

    Setting ``mute`` makes later searches produce no output at all, so a
    test can post the engine's lines itself.
    """

    def __init__(self, replies=(), depth=12, hold_after=None, answer_stop=True,
                 answer_handshake=True):
        self.replies = list(replies)
        self.depth = depth
        self.hold_after = hold_after
        self.answer_stop = answer_stop
        self.answer_handshake = answer_handshake
        self.mute = False
        self.searched_fens: list[str] = []
        self._board = chess.Board()
        self._held_bestmove: str | None = None

    def __call__(self, command: str) -> list[str]:
        if command == "uci":
            return ["id name Scripted", "uciok"] if self.answer_handshake else []
        if command == "isready":
            return ["readyok"] if self.answer_handshake else []
        if command.startswith("position"):
            self._board = _board_from_position(command)
            return []
        if command.startswith("go"):
            return self._search()
        if command == "stop" and self._held_bestmove is not None:
            best = self._held_bestmove
            self._held_bestmove = None
            return [f"bestmove {best}"] if self.answer_stop else []
        return []

    def _search(self) -> list[str]:
        self.searched_fens.append(self._board.fen())
        if self.mute:
            return []
        if self.replies:
            eval_cp, best = self.replies.pop(0)
        else:
            legal = list(self._board.legal_moves)
            eval_cp, best = 0, legal[0].uci() if legal else "(none)"

        raw = eval_cp if self._board.turn == chess.WHITE else -eval_cp
        info = f"info depth {self.depth} seldepth {self.depth + 4} multipv 1 score cp {raw} nodes 1000"
        if best != "(none)":
            info += f" pv {best}"

        held = self.hold_after is not None and len(self.searched_fens) > self.hold_after
        if held:
            self._held_bestmove = best
            return [info]
        return [info, f"bestmove {best}"]


def _board_from_position(command: str) -> chess.Board:
    body = command[len("position "):]
    moves: list[str] = []
    if " moves " in body:
        body, move_text = body.split(" moves ", 1)
        moves = move_text.split()
    board = chess.Board() if body == "startpos" else chess.Board(body[len("fen "):])
    for move in moves:
        board.push_uci(move)
    return board


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fast_settings():
    return AnalysisSettings(
        handshake_timeout=1.0,
        evaluate_timeout=1.0,
        cold_start_timeout=1.0,
        clock_buffer=0.2,
        clock_cap=1.0,
        stop_grace=0.05,
    )


@pytest.fixture()
def scripted_client(fast_settings):
    """Return a builder: scripted_client(engine) -> (EngineClient, ChannelTransport)."""

    def build(engine: ScriptedEngine | None = None, settings=None):
        transport = ChannelTransport(engine or ScriptedEngine())
        client = EngineClient(transport, settings=settings or fast_settings)
        return client, transport

    return build


@pytest.fixture()
def scripted_engine():
    """Expose the ScriptedEngine class to test modules."""
    return ScriptedEngine


# ---------------------------------------------------------------------------
# Schema validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation():
    """Set GAME_REVIEW_VALIDATE=1 for the test session.

    Restores the original env var value after the test.
    """
    original = os.environ.get("GAME_REVIEW_VALIDATE")
    os.environ["GAME_REVIEW_VALIDATE"] = "1"
    yield
    if original is None:
        os.environ.pop("GAME_REVIEW_VALIDATE", None)
    else:
        os.environ["GAME_REVIEW_VALIDATE"] = original
