"""Full-game analysis: replay, classify, score, and stream progress.

An AnalysisRun owns one engine for its lifetime. It produces events on
an asyncio channel that a single consumer drains, in process or over a
server-push stream:

    run = AnalysisRun(moves)
    async for event in run.events():
        ...

The engine is created right before the replay and shut down right after
it, whether the run completes, fails or is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import aclosing
from typing import Protocol

import chess

from game_review.accuracy import calculate_accuracy
from game_review.classify import classify_move, win_percent_loss
from game_review.config import AnalysisSettings, load_settings
from game_review.engine import EngineClient
from game_review.errors import AnalysisError
from game_review.events import (
    AnalysisEvent,
    CompleteEvent,
    ErrorEvent,
    ProgressEvent,
    is_terminal,
)
from game_review.models import EngineEvaluation, GameAnalysis, MoveAnalysis, PlayedMove, Side
from game_review.rating import accuracy_to_rating
from game_review.replay import PlyEvaluation, replay_game

logger = logging.getLogger(__name__)


class Engine(Protocol):
    async def init(self) -> None: ...

    async def evaluate(self, fen: str, depth: int | None = None) -> EngineEvaluation: ...

    def stop(self) -> None: ...

    async def quit(self) -> None: ...


EngineFactory = Callable[[], Engine]
EventObserver = Callable[[AnalysisEvent], Awaitable[None]]


def analyze_ply(ply: PlyEvaluation) -> MoveAnalysis:
    """Turn the engine's view of one ply into a classified MoveAnalysis."""
    move = ply.move
    loss = win_percent_loss(ply.before.eval_cp, ply.after.eval_cp, move.side)
    return MoveAnalysis(
        move_number=chess.Board(ply.fen_before).fullmove_number,
        side=move.side,
        san=move.san,
        uci=move.uci,
        eval_before=ply.before.eval_cp,
        eval_after=ply.after.eval_cp,
        best_move=ply.before.best_move or "",
        best_move_san=ply.best_move_san,
        classification=classify_move(loss, ply.is_best),
        top_lines=ply.before.top_lines,
    )


def build_game_analysis(moves: Sequence[MoveAnalysis]) -> GameAnalysis:
    """Aggregate classified moves into per-side accuracy and rating."""
    white_accuracy = calculate_accuracy([m for m in moves if m.side is Side.WHITE])
    black_accuracy = calculate_accuracy([m for m in moves if m.side is Side.BLACK])
    return GameAnalysis(
        moves=tuple(moves),
        white_accuracy=white_accuracy,
        black_accuracy=black_accuracy,
        white_rating=accuracy_to_rating(white_accuracy),
        black_rating=accuracy_to_rating(black_accuracy),
    )


class AnalysisRun:
    """One game analysis with a single-producer, single-consumer event channel."""

    def __init__(
        self,
        moves: Sequence[PlayedMove],
        *,
        depth: int | None = None,
        starting_fen: str = chess.STARTING_FEN,
        engine_factory: EngineFactory | None = None,
        settings: AnalysisSettings | None = None,
    ) -> None:
        self._settings = settings or load_settings()
        self._moves = tuple(moves)
        self._depth = depth or self._settings.depth
        self._starting_fen = starting_fen
        self._engine_factory = engine_factory or self._default_engine
        self._events: asyncio.Queue[AnalysisEvent] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._engine: Engine | None = None
        self._finished = False

    @property
    def total(self) -> int:
        return len(self._moves)

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def start(self) -> None:
        """Launch the producer. Idempotent."""
        if self._task is None:
            self._task = asyncio.create_task(self._produce())
            self._task.add_done_callback(self._on_done)

    def cancel(self) -> None:
        """Stop the active search and cancel the run."""
        if self._engine is not None:
            self._engine.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def events(self) -> AsyncIterator[AnalysisEvent]:
        """Yield events up to and including the terminal one.

        Leaving the iteration early cancels the run and shuts the engine
        down rather than letting it idle.
        """
        self.start()
        try:
            while True:
                event = await self._events.get()
                yield event
                if is_terminal(event):
                    return
        finally:
            if self._task is not None and not self._task.done():
                logger.info("Event consumer went away; cancelling analysis")
                self.cancel()
                await asyncio.gather(self._task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------------

    def _default_engine(self) -> EngineClient:
        return EngineClient(settings=self._settings)

    def _emit(self, event: AnalysisEvent) -> None:
        if self._finished:
            return
        self._finished = is_terminal(event)
        self._events.put_nowait(event)

    def _on_done(self, task: asyncio.Task) -> None:
        # Cancellation skips _produce's handlers; close the stream here.
        if not self._finished:
            self._emit(ErrorEvent("Analysis cancelled"))

    async def _produce(self) -> None:
        try:
            analysis = await self._run()
        except Exception as exc:
            logger.exception("Analysis failed")
            self._emit(ErrorEvent(str(exc) or type(exc).__name__))
        else:
            self._emit(CompleteEvent(analysis))

    async def _run(self) -> GameAnalysis:
        if not self._moves:
            return build_game_analysis(())

        logger.info("Analysing %d plies at depth %d", self.total, self._depth)
        engine = self._engine_factory()
        self._engine = engine
        try:
            await engine.init()
            analysed: list[MoveAnalysis] = []
            async for ply in replay_game(
                engine,
                self._moves,
                depth=self._depth,
                starting_fen=self._starting_fen,
            ):
                analysed.append(analyze_ply(ply))
                self._emit(ProgressEvent(current=len(analysed), total=self.total))
            return build_game_analysis(analysed)
        finally:
            self._engine = None
            await engine.quit()


async def analyze_game(
    moves: Sequence[PlayedMove],
    **options,
) -> AsyncIterator[AnalysisEvent]:
    """Stream the events of a fresh AnalysisRun.

    Keyword options are passed to AnalysisRun.
    """
    run = AnalysisRun(moves, **options)
    events = run.events()
    try:
        async for event in events:
            yield event
    finally:
        await events.aclose()


async def run_analysis(
    moves: Sequence[PlayedMove],
    *,
    on_event: EventObserver | None = None,
    **options,
) -> GameAnalysis:
    """Run an analysis to completion.

    Args:
        moves: Played moves of the game.
        on_event: Awaited with every event, terminal ones included.
        **options: Passed to AnalysisRun.

    Returns:
        The finished GameAnalysis.

    Raises:
        AnalysisError: If the run ends with an error event.
    """
    result: GameAnalysis | None = None
    async with aclosing(analyze_game(moves, **options)) as events:
        async for event in events:
            if on_event is not None:
                await on_event(event)
            if isinstance(event, ErrorEvent):
                raise AnalysisError(event.error)
            if isinstance(event, CompleteEvent):
                result = event.analysis
    if result is None:
        raise AnalysisError("Analysis ended without a result")
    return result
