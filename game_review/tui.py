"""Terminal game review for a PGN file.

Runs the analysis with a live Rich progress bar, then prints the move
table and an accuracy summary. --json prints the wire-format analysis
instead.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table
from rich.text import Text

from game_review.config import load_settings
from game_review.events import CompleteEvent, ErrorEvent, ProgressEvent
from game_review.models import GameAnalysis, MoveAnalysis, MoveClassification, PlayedMove, Side
from game_review.orchestrator import AnalysisRun
from game_review.pgn import read_game_moves

_CLASSIFICATION_STYLES = {
    MoveClassification.BEST: "bold green",
    MoveClassification.GREAT: "green",
    MoveClassification.GOOD: "cyan",
    MoveClassification.INACCURACY: "yellow",
    MoveClassification.MISTAKE: "dark_orange",
    MoveClassification.BLUNDER: "bold red",
    MoveClassification.BRILLIANT: "magenta",
    MoveClassification.BOOK: "dim",
}

_SUMMARY_COUNTS = (
    ("inaccuracy", "Inaccuracies"),
    ("mistake", "Mistakes"),
    ("blunder", "Blunders"),
)


def _format_eval(cp: int) -> str:
    if abs(cp) >= 50_000:
        distance = 100_000 - abs(cp)
        return f"#{distance}" if cp > 0 else f"#-{distance}"
    return f"{cp / 100.0:+.2f}"


def _classification_text(move: MoveAnalysis) -> Text:
    label = move.classification.value
    return Text(label, style=_CLASSIFICATION_STYLES.get(move.classification, ""))


def render_move_table(analysis: GameAnalysis) -> Table:
    """Render one row per ply with evals and the engine's preference.

    Args:
        analysis: Finished game analysis.

    Returns:
        Rich Table.
    """
    table = Table(title="Moves", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Move")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    table.add_column("Best")
    table.add_column("Class")

    for move in analysis.moves:
        number = f"{move.move_number}." if move.side is Side.WHITE else f"{move.move_number}..."
        best = "" if move.classification is MoveClassification.BEST else move.best_move_san
        table.add_row(
            number,
            move.san,
            _format_eval(move.eval_before),
            _format_eval(move.eval_after),
            best,
            _classification_text(move),
        )
    return table


def render_summary(analysis: GameAnalysis) -> Panel:
    """Render accuracy, rating and classification counts per side."""
    parts: list[str] = []
    for side, accuracy, rating in (
        ("white", analysis.white_accuracy, analysis.white_rating),
        ("black", analysis.black_accuracy, analysis.black_rating),
    ):
        counts: dict[str, int] = {}
        for move in analysis.moves:
            if move.side.value == side:
                key = move.classification.value
                counts[key] = counts.get(key, 0) + 1
        parts.append(f"[bold]{side.title()}[/bold]")
        parts.append(f"  Accuracy: {accuracy:.1f}%")
        parts.append(f"  Played like: {rating}")
        for label, heading in _SUMMARY_COUNTS:
            parts.append(f"  {heading}: {counts.get(label, 0)}")
        parts.append("")

    return Panel("\n".join(parts).rstrip(), title="Summary", border_style="green")


async def _analyze_with_progress(
    console: Console,
    moves: list[PlayedMove],
    starting_fen: str,
    depth: int,
) -> GameAnalysis:
    """Run the analysis, drawing a progress bar from the event stream.

    Raises:
        RuntimeError: If the run ends with an error event.
    """
    run = AnalysisRun(moves, depth=depth, starting_fen=starting_fen)
    with Progress(
        TextColumn("[bold blue]Analysing"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("analysis", total=max(1, len(moves)))
        async for event in run.events():
            if isinstance(event, ProgressEvent):
                progress.update(task, completed=event.current)
            elif isinstance(event, CompleteEvent):
                return event.analysis
            elif isinstance(event, ErrorEvent):
                raise RuntimeError(event.error)
    raise RuntimeError("Analysis ended without a result")


def main() -> None:
    """CLI entry point for tui.py."""
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Review a chess game with Stockfish")
    parser.add_argument("pgn", type=Path, help="PGN file to review")
    parser.add_argument(
        "--depth", type=int, default=settings.depth,
        help=f"Search depth per position (default: {settings.depth})",
    )
    parser.add_argument("--json", action="store_true", help="Print analysis as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log engine traffic")
    args = parser.parse_args()

    console = Console(stderr=args.json)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    try:
        starting_fen, moves = read_game_moves(args.pgn.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        console.print(f"[red]Could not read {args.pgn}: {exc}[/red]")
        sys.exit(1)

    try:
        analysis = asyncio.run(
            _analyze_with_progress(console, moves, starting_fen, args.depth)
        )
    except RuntimeError as exc:
        console.print(f"[red]Analysis failed: {exc}[/red]")
        sys.exit(1)

    if args.json:
        print(json.dumps(analysis.to_dict(), indent=2))
        return

    console.print(render_move_table(analysis))
    console.print(render_summary(analysis))


if __name__ == "__main__":
    main()
