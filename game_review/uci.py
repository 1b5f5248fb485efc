"""UCI protocol helpers shared by every transport.

Builds outgoing command strings and parses engine output into an
EngineEvaluation. Typical output we care about:

    info depth 18 seldepth 24 multipv 1 score cp 35 nodes 123456 ... pv e2e4 e7e5
    info depth 18 ... score mate 3 ... pv ...
    bestmove e2e4 ponder e7e5
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from game_review.errors import EngineProtocolError
from game_review.models import EngineEvaluation, TopLine

logger = logging.getLogger(__name__)

MATE_SCORE = 100_000
NO_MOVE = "(none)"

_INT_FIELD = r"\b{}\s+(-?\d+)\b"
_SCORE_RE = re.compile(r"\bscore\s+(cp|mate)\s+(\S+)")
_PV_RE = re.compile(r"\bpv\s+(.+)$")


@dataclass(frozen=True)
class InfoLine:
    """Fields of one `info ... score ...` line, side-to-move relative."""

    depth: int
    eval_cp: int
    mate: int | None
    multipv: int
    pv: tuple[str, ...]


def mate_to_cp(mate: int) -> int:
    """Map a mate distance to a sentinel score that beats any material eval."""
    return MATE_SCORE - mate if mate > 0 else -MATE_SCORE - mate


def _extract_int(line: str, key: str) -> int | None:
    match = re.search(_INT_FIELD.format(key), line)
    return int(match.group(1)) if match else None


def parse_info_line(line: str) -> InfoLine | None:
    """Parse an info line carrying a score.

    Returns:
        InfoLine, or None for lines that carry no score (currmove, string...).

    Raises:
        EngineProtocolError: If the line has a score but no usable depth
            or score value.
    """
    if not line.startswith("info") or " score " not in f" {line} ":
        return None

    score = _SCORE_RE.search(line)
    if score is None:
        raise EngineProtocolError(f"Unreadable score in line: {line!r}")
    kind, raw_value = score.groups()
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise EngineProtocolError(f"Non-integer score in line: {line!r}") from exc

    depth = _extract_int(line, "depth")
    if depth is None:
        raise EngineProtocolError(f"Score without depth in line: {line!r}")

    if kind == "mate":
        mate: int | None = value
        eval_cp = mate_to_cp(value)
    else:
        mate = None
        eval_cp = value

    pv_match = _PV_RE.search(line)
    pv = tuple(pv_match.group(1).split()) if pv_match else ()

    return InfoLine(
        depth=depth,
        eval_cp=eval_cp,
        mate=mate,
        multipv=_extract_int(line, "multipv") or 1,
        pv=pv,
    )


def parse_bestmove(line: str) -> str | None:
    """Return the move token of a bestmove line, None for `(none)`."""
    parts = line.split()
    if len(parts) < 2 or parts[0] != "bestmove":
        return None
    move = parts[1]
    return None if move == NO_MOVE else move


def _to_white(info_cp: int, mate: int | None, white_to_move: bool) -> tuple[int, int | None]:
    if white_to_move:
        return info_cp, mate
    return -info_cp, (-mate if mate is not None else None)


def parse_evaluation(lines: Iterable[str], *, white_to_move: bool = True) -> EngineEvaluation:
    """Fold collected engine output into a single evaluation.

    Only replaces the running best when a line reports a depth at least as
    deep as anything seen, so late shallow output never wins. Malformed
    lines are logged and skipped; the last valid values are kept.

    Args:
        lines: All lines collected up to (and including) bestmove.
        white_to_move: Side to move in the searched position; UCI scores
            are relative to it and are converted to White's view.

    Returns:
        EngineEvaluation. Missing data falls back to eval 0, empty pv and
        best_move None.
    """
    best: InfoLine | None = None
    secondary: dict[int, InfoLine] = {}
    best_move: str | None = None

    for line in lines:
        if line.startswith("bestmove"):
            best_move = parse_bestmove(line)
            break
        try:
            info = parse_info_line(line)
        except EngineProtocolError as exc:
            logger.warning("Skipping malformed engine output: %s", exc)
            continue
        if info is None:
            continue
        if info.multipv == 1:
            if best is None or info.depth >= best.depth:
                best = info
        else:
            seen = secondary.get(info.multipv)
            if seen is None or info.depth >= seen.depth:
                secondary[info.multipv] = info

    if best is None:
        return EngineEvaluation(eval_cp=0, best_move=best_move)

    eval_cp, mate = _to_white(best.eval_cp, best.mate, white_to_move)
    top_lines = [TopLine(moves=best.pv, eval_cp=eval_cp)] if best.pv else []
    for rank in sorted(secondary):
        info = secondary[rank]
        if info.depth < best.depth or not info.pv:
            continue
        line_cp, _ = _to_white(info.eval_cp, info.mate, white_to_move)
        top_lines.append(TopLine(moves=info.pv, eval_cp=line_cp))

    return EngineEvaluation(
        eval_cp=eval_cp,
        best_move=best_move,
        pv=best.pv,
        depth=best.depth,
        mate=mate,
        top_lines=tuple(top_lines),
    )


def white_to_move_in(fen: str) -> bool:
    """Read the active colour field of a FEN."""
    parts = fen.split()
    return len(parts) < 2 or parts[1] != "b"


# ---------------------------------------------------------------------------
# Command builders
# ---------------------------------------------------------------------------


def setoption_command(name: str, value: object) -> str:
    return f"setoption name {name} value {value}"


def position_command(fen: str | None = None, moves: Sequence[str] = ()) -> str:
    """Build a `position` command from a FEN or the start position."""
    base = f"position fen {fen}" if fen is not None else "position startpos"
    if moves:
        return f"{base} moves {' '.join(moves)}"
    return base


def go_depth_command(depth: int) -> str:
    return f"go depth {depth}"


def go_movetime_command(movetime_ms: int) -> str:
    return f"go movetime {movetime_ms}"


def go_clock_command(wtime: int, btime: int, winc: int = 0, binc: int = 0) -> str:
    return f"go wtime {wtime} btime {btime} winc {winc} binc {binc}"
