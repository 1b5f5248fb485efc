"""MCP server for chess game review.

Exposes the Stockfish analysis pipeline to an agent via FastMCP.
Whole-game analyses can run inline (with progress reported over the MCP
context) or through a FIFO queue that shares one engine slot. Finished
analyses are written to data/analyses/<game_id>.json.
"""

# No `from __future__ import annotations` here: FastMCP inspects the
# Context annotation at registration time.

import json
import logging
import os
import re
import sys
import uuid
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

import chess
from mcp.server.fastmcp import Context, FastMCP

from game_review.analysis_queue import AnalysisQueue
from game_review.engine import EngineClient
from game_review.errors import AnalysisError, EngineError
from game_review.events import AnalysisEvent, CompleteEvent, ProgressEvent
from game_review.models import AnalysisRequest, GameAnalysis
from game_review.orchestrator import run_analysis
from game_review.replay import uci_to_san
from game_review.pgn import read_game_moves

from response_schemas import (  # noqa: E402
    minify_evaluation,
    minify_game_analysis,
)

logger = logging.getLogger(__name__)

mcp = FastMCP("game-review")

_DATA_DIR = _PROJECT_ROOT / "data"
_ANALYSES_DIR = _DATA_DIR / "analyses"

# Caller-supplied ids become file names under _ANALYSES_DIR
_GAME_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# Created on first use so it binds to the server's event loop
_queue: AnalysisQueue | None = None


def _engine_factory() -> EngineClient:
    """Build a fresh engine client for one analysis run."""
    return EngineClient()


def _get_queue() -> AnalysisQueue:
    global _queue
    if _queue is None:
        _queue = AnalysisQueue(
            engine_factory=lambda: _engine_factory(),
            on_event=_on_queue_event,
        )
    return _queue


def _invalid_game_id(game_id: str) -> dict | None:
    """Return an error response when game_id is not a safe identifier."""
    if _GAME_ID_RE.fullmatch(game_id):
        return None
    return {
        "error": "Invalid game_id: use 1-64 letters, digits, '-' or '_'",
    }


def _analysis_path(game_id: str, suffix: str = ".json") -> Path:
    if not _GAME_ID_RE.fullmatch(game_id):
        raise ValueError(f"Invalid game_id: {game_id!r}")
    return _ANALYSES_DIR / f"{game_id}{suffix}"


def _save_analysis(game_id: str, analysis: GameAnalysis) -> Path:
    """Write an analysis to data/analyses/<game_id>.json atomically.

    Uses temp file + os.replace() for atomic write.

    Args:
        game_id: Identifier of the analysed game.
        analysis: Finished analysis.

    Returns:
        Path of the written file.
    """
    _ANALYSES_DIR.mkdir(parents=True, exist_ok=True)
    target = _analysis_path(game_id)
    tmp = _analysis_path(game_id, ".tmp")
    tmp.write_text(
        json.dumps(analysis.to_dict(), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    os.replace(tmp, target)
    return target


def _load_analysis(game_id: str) -> dict | None:
    path = _analysis_path(game_id)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None


async def _on_queue_event(game_id: str, event: AnalysisEvent) -> None:
    if isinstance(event, CompleteEvent):
        _save_analysis(game_id, event.analysis)


# ---------------------------------------------------------------------------
# Position tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def evaluate_position(fen: str, depth: int = 18, multipv: int = 1) -> dict:
    """Evaluate a single position with Stockfish.

    Args:
        fen: FEN of the position.
        depth: Search depth (default 18).
        multipv: Number of principal variations (default 1).

    Returns:
        Evaluation dict (White's perspective) with best move and lines.
    """
    try:
        board = chess.Board(fen)
    except ValueError as exc:
        return {"error": f"Invalid FEN: {exc}"}
    if not board.is_valid():
        return {"error": f"Invalid FEN position: {fen}"}

    try:
        async with _engine_factory() as engine:
            result = await engine.evaluate(board.fen(), depth=depth, multipv=multipv)
    except EngineError as exc:
        return {"error": f"Engine failure: {exc}"}

    return minify_evaluation({
        "fen": board.fen(),
        "depth": result.depth,
        "eval": result.eval_cp,
        "mate": result.mate,
        "best_move_san": uci_to_san(board.fen(), result.best_move),
        "lines": [line.to_dict() for line in result.top_lines],
    })


# ---------------------------------------------------------------------------
# Game analysis tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def analyze_game(
    pgn: str,
    ctx: Context,
    depth: int | None = None,
    game_id: str | None = None,
) -> dict:
    """Analyse a whole game now, reporting progress per ply.

    Args:
        pgn: PGN text of the game.
        depth: Search depth per position (default from settings).
        game_id: Identifier for the stored result (generated if omitted).

    Returns:
        Minified game analysis with accuracies, ratings and key moments.
    """
    try:
        starting_fen, moves = read_game_moves(pgn)
    except ValueError as exc:
        return {"error": str(exc)}

    game_id = game_id or str(uuid.uuid4())
    invalid = _invalid_game_id(game_id)
    if invalid is not None:
        return invalid

    async def report(event: AnalysisEvent) -> None:
        if isinstance(event, ProgressEvent) and ctx is not None:
            await ctx.report_progress(event.current, event.total)

    try:
        analysis = await run_analysis(
            moves,
            starting_fen=starting_fen,
            depth=depth,
            engine_factory=_engine_factory,
            on_event=report,
        )
    except AnalysisError as exc:
        return {"error": f"Analysis failed: {exc}"}

    _save_analysis(game_id, analysis)
    return minify_game_analysis(analysis.to_dict(), game_id=game_id)


@mcp.tool()
async def enqueue_analysis(pgn: str, game_id: str | None = None) -> dict:
    """Queue a game for background analysis.

    Games run one at a time in arrival order. The first game to start
    while none is selected becomes the selected game.

    Args:
        pgn: PGN text of the game.
        game_id: Identifier for the game (generated if omitted).

    Returns:
        Dict with game_id and queue position.
    """
    try:
        starting_fen, moves = read_game_moves(pgn)
    except ValueError as exc:
        return {"error": str(exc)}

    game_id = game_id or str(uuid.uuid4())
    invalid = _invalid_game_id(game_id)
    if invalid is not None:
        return invalid
    queue = _get_queue()
    try:
        position = queue.enqueue(AnalysisRequest(
            game_id=game_id,
            moves=tuple(moves),
            starting_fen=starting_fen,
        ))
    except ValueError as exc:
        return {"error": str(exc)}
    queue.start()
    return {"game_id": game_id, "position": position}


@mcp.tool()
def analysis_status(game_id: str) -> dict:
    """Get the queue status of a game and its analysis once complete.

    Args:
        game_id: Identifier passed to or returned by enqueue_analysis.

    Returns:
        Dict with status, plus the minified analysis or error message.
    """
    invalid = _invalid_game_id(game_id)
    if invalid is not None:
        return invalid

    queue = _get_queue()
    status = queue.status(game_id)

    if status is None:
        stored = _load_analysis(game_id)
        if stored is None:
            return {"error": f"Game not found: {game_id}"}
        return {
            "game_id": game_id,
            "status": "complete",
            "analysis": minify_game_analysis(stored, game_id=game_id),
        }

    response = {"game_id": game_id, "status": status.value}
    result = queue.result(game_id)
    if result is not None:
        response["analysis"] = minify_game_analysis(result.to_dict(), game_id=game_id)
    error = queue.error(game_id)
    if error is not None:
        response["error_message"] = error
    return response


@mcp.tool()
def queue_status() -> dict:
    """Show the running game, waiting games and the selected game.

    Returns:
        Dict with active, pending and selected game ids.
    """
    queue = _get_queue()
    return {
        "active": queue.active_id,
        "pending": queue.pending_ids,
        "selected": queue.selected_id,
    }


@mcp.tool()
def select_game(game_id: str) -> dict:
    """Choose which analysed game is displayed.

    Args:
        game_id: Identifier of a queued or stored game.

    Returns:
        Updated queue status.
    """
    invalid = _invalid_game_id(game_id)
    if invalid is not None:
        return invalid

    queue = _get_queue()
    if queue.status(game_id) is None and _load_analysis(game_id) is None:
        return {"error": f"Game not found: {game_id}"}
    queue.select(game_id)
    return queue_status()


if __name__ == "__main__":
    mcp.run()
