"""FIFO queue of game analyses sharing one engine slot.

Requests run strictly in arrival order, one at a time. The first request
to start while no game is selected becomes the selected (displayed)
game. A failed request is recorded and the queue moves on.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from enum import Enum

from game_review.config import AnalysisSettings, load_settings
from game_review.errors import AnalysisError
from game_review.events import AnalysisEvent
from game_review.models import AnalysisRequest, GameAnalysis
from game_review.orchestrator import EngineFactory, run_analysis

logger = logging.getLogger(__name__)

QueueObserver = Callable[[str, AnalysisEvent], Awaitable[None]]


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class AnalysisQueue:
    """Serializes game analyses against a single engine capacity unit."""

    def __init__(
        self,
        *,
        depth: int | None = None,
        engine_factory: EngineFactory | None = None,
        settings: AnalysisSettings | None = None,
        on_event: QueueObserver | None = None,
    ) -> None:
        """Create an idle queue.

        Args:
            depth: Search depth for every game. Defaults to settings.
            engine_factory: Builds a fresh engine per game.
            settings: Pipeline settings.
            on_event: Awaited with (game_id, event) for every event of
                every run.
        """
        self._settings = settings or load_settings()
        self._depth = depth or self._settings.depth
        self._engine_factory = engine_factory
        self._on_event = on_event
        self._requests: asyncio.Queue[AnalysisRequest] = asyncio.Queue()
        self._pending: deque[str] = deque()
        self._status: dict[str, AnalysisStatus] = {}
        self._results: dict[str, GameAnalysis] = {}
        self._errors: dict[str, str] = {}
        self._active: str | None = None
        self._selected: str | None = None
        self._worker: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)

    @property
    def active_id(self) -> str | None:
        return self._active

    @property
    def selected_id(self) -> str | None:
        return self._selected

    def status(self, game_id: str) -> AnalysisStatus | None:
        return self._status.get(game_id)

    def result(self, game_id: str) -> GameAnalysis | None:
        return self._results.get(game_id)

    def error(self, game_id: str) -> str | None:
        return self._errors.get(game_id)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def enqueue(self, request: AnalysisRequest) -> int:
        """Append a request.

        Returns:
            1-based position among waiting requests.

        Raises:
            ValueError: If the game is already waiting or running.
        """
        current = self._status.get(request.game_id)
        if current in (AnalysisStatus.PENDING, AnalysisStatus.RUNNING):
            raise ValueError(f"Game already queued: {request.game_id}")

        self._status[request.game_id] = AnalysisStatus.PENDING
        self._errors.pop(request.game_id, None)
        self._results.pop(request.game_id, None)
        self._pending.append(request.game_id)
        self._requests.put_nowait(request)
        logger.info("Queued %s (position %d)", request.game_id, len(self._pending))
        return len(self._pending)

    def select(self, game_id: str | None) -> None:
        """Change (or clear) the displayed game."""
        self._selected = game_id

    def start(self) -> None:
        """Start the worker if it is not running."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._work())

    async def join(self) -> None:
        """Wait until every queued request has been processed."""
        await self._requests.join()

    async def close(self) -> None:
        """Stop the worker, cancelling the active run."""
        if self._worker is None:
            return
        self._worker.cancel()
        await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _work(self) -> None:
        while True:
            request = await self._requests.get()
            try:
                await self._process(request)
            finally:
                self._requests.task_done()

    async def _process(self, request: AnalysisRequest) -> None:
        game_id = request.game_id
        self._pending.popleft()
        self._active = game_id
        self._status[game_id] = AnalysisStatus.RUNNING
        if self._selected is None:
            self._selected = game_id

        async def forward(event: AnalysisEvent) -> None:
            if self._on_event is not None:
                await self._on_event(game_id, event)

        try:
            analysis = await run_analysis(
                request.moves,
                starting_fen=request.starting_fen,
                depth=self._depth,
                engine_factory=self._engine_factory,
                settings=self._settings,
                on_event=forward,
            )
        except asyncio.CancelledError:
            self._fail(game_id, "Analysis cancelled")
            raise
        except AnalysisError as exc:
            logger.warning("Analysis of %s failed: %s", game_id, exc)
            self._fail(game_id, str(exc))
        except Exception as exc:
            logger.exception("Analysis of %s crashed", game_id)
            self._fail(game_id, str(exc) or type(exc).__name__)
        else:
            self._status[game_id] = AnalysisStatus.COMPLETE
            self._results[game_id] = analysis
            logger.info("Analysis of %s complete", game_id)
        finally:
            self._active = None

    def _fail(self, game_id: str, message: str) -> None:
        self._status[game_id] = AnalysisStatus.FAILED
        self._errors[game_id] = message
