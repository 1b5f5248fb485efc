"""UCI engine client for game review.

Drives one Stockfish instance through a LineTransport. Provides:
- Handshake with bounded wait (uci/uciok, isready/readyok)
- Depth, movetime and clock-managed searches
- Cooperative stop that still resolves the pending search
- Unconditional, idempotent shutdown
- CLI for quick position evaluation
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import sys
from collections.abc import Sequence
from enum import Enum
from pathlib import Path

from game_review.config import AnalysisSettings, load_settings
from game_review.errors import (
    EngineError,
    EngineInitError,
    EngineStateError,
    EngineTerminatedError,
    EngineTimeoutError,
)
from game_review.models import EngineEvaluation
from game_review.transport import LineTransport, ProcessTransport
from game_review.uci import (
    go_clock_command,
    go_depth_command,
    go_movetime_command,
    parse_evaluation,
    position_command,
    setoption_command,
    white_to_move_in,
)

logger = logging.getLogger(__name__)

# Stockfish search paths in priority order
_STOCKFISH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/bin/stockfish",
    "/usr/games/stockfish",
]

# Marker pushed into the line queue by stop()
_STOP = object()


def find_stockfish() -> str:
    """Auto-detect Stockfish binary path.

    Checks known install paths, then falls back to PATH lookup.

    Returns:
        Path to Stockfish binary.

    Raises:
        FileNotFoundError: If Stockfish is not found anywhere.
    """
    for path_str in _STOCKFISH_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("stockfish")
    if which_result is not None:
        return which_result

    raise FileNotFoundError(
        "Stockfish not found. Install it or set GAME_REVIEW_STOCKFISH_PATH."
    )


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    HANDSHAKING = "handshaking"
    READY = "ready"
    BUSY = "busy"
    TERMINATED = "terminated"


class EngineClient:
    """One engine instance behind the UCI protocol.

    Only one command sequence may be outstanding at a time. Use as an
    async context manager to guarantee the engine is shut down.
    """

    def __init__(
        self,
        transport: LineTransport | None = None,
        *,
        settings: AnalysisSettings | None = None,
        stockfish_path: str | None = None,
    ) -> None:
        """Create an unstarted client.

        Args:
            transport: Line transport to the engine. Defaults to a
                ProcessTransport on the Stockfish binary.
            settings: Timeouts and engine options. Defaults to the
                environment-derived settings.
            stockfish_path: Explicit binary path, overriding settings and
                auto-detection. Ignored when a transport is given.
        """
        self._settings = settings or load_settings()
        self._transport = transport
        self._stockfish_path = stockfish_path or self._settings.stockfish_path
        self._state = EngineState.UNINITIALIZED
        self._lines: asyncio.Queue = asyncio.Queue()
        self._pump_task: asyncio.Task | None = None
        self._has_searched = False
        # bestmove lines still owed by searches that were stopped
        self._stale_bestmoves = 0

    @property
    def state(self) -> EngineState:
        return self._state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Start the engine and complete the UCI handshake.

        Raises:
            EngineInitError: If the engine cannot be started or does not
                answer within the handshake timeout. The client is
                terminated afterwards.
        """
        self._require(EngineState.UNINITIALIZED)
        self._state = EngineState.HANDSHAKING
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.handshake_timeout

        try:
            if self._transport is None:
                self._transport = ProcessTransport(self._stockfish_path or find_stockfish())
            await self._transport.start()
            self._pump_task = asyncio.create_task(self._pump())

            self._send("uci")
            await self._collect_until("uciok", deadline)
            self._send(setoption_command("Threads", self._settings.threads))
            self._send(setoption_command("Hash", self._settings.hash_mb))
            self._send("isready")
            await self._collect_until("readyok", deadline)
        except (OSError, EngineError) as exc:
            await self.quit()
            raise EngineInitError(f"Failed to initialise engine: {exc}") from exc

        if self._state is not EngineState.HANDSHAKING:
            raise EngineInitError("Engine was shut down during the handshake")
        self._state = EngineState.READY
        logger.info("Engine ready")

    async def quit(self) -> None:
        """Terminate the engine. Safe in any state; never raises."""
        if self._state is EngineState.TERMINATED:
            return
        self._state = EngineState.TERMINATED

        transport = self._transport
        if transport is not None:
            try:
                transport.write("quit")
            except (OSError, RuntimeError) as exc:
                logger.debug("Could not send quit: %s", exc)
            await transport.close()

        if self._pump_task is not None:
            self._pump_task.cancel()
            await asyncio.gather(self._pump_task, return_exceptions=True)
            self._pump_task = None
        logger.debug("Engine terminated")

    async def __aenter__(self) -> EngineClient:
        await self.init()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.quit()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def set_option(self, name: str, value: object) -> None:
        """Send a UCI option. No acknowledgement is awaited."""
        self._require(EngineState.READY)
        self._send(setoption_command(name, value))

    async def evaluate(
        self,
        fen: str,
        depth: int | None = None,
        multipv: int = 1,
    ) -> EngineEvaluation:
        """Depth-limited evaluation of a FEN position.

        Args:
            fen: Position to search.
            depth: Search depth. Defaults to the configured depth.
            multipv: Number of principal variations to report.

        Returns:
            EngineEvaluation with the score from White's perspective.

        Raises:
            EngineTimeoutError: If bestmove does not arrive in time.
        """
        commands = [
            setoption_command("MultiPV", multipv),
            position_command(fen=fen),
            go_depth_command(depth or self._settings.depth),
        ]
        return await self._search(
            commands,
            white_to_move=white_to_move_in(fen),
            timeout=self._search_timeout(),
        )

    async def evaluate_from_moves(
        self,
        moves: Sequence[str],
        depth: int | None = None,
        movetime_ms: int | None = None,
    ) -> EngineEvaluation:
        """Evaluate the position reached from the start position by UCI moves.

        Reusing `position startpos moves ...` keeps the engine's hash
        table warm during live play.
        """
        if movetime_ms is not None:
            go = go_movetime_command(movetime_ms)
        else:
            go = go_depth_command(depth or self._settings.depth)
        commands = [
            setoption_command("MultiPV", 1),
            position_command(moves=moves),
            go,
        ]
        return await self._search(
            commands,
            white_to_move=len(moves) % 2 == 0,
            timeout=self._search_timeout(),
        )

    async def evaluate_with_clock(
        self,
        moves: Sequence[str],
        white_time_ms: float,
        black_time_ms: float,
        white_inc_ms: float = 0,
        black_inc_ms: float = 0,
    ) -> EngineEvaluation:
        """Search using the engine's own time management.

        The wait is bounded by the mover's remaining time plus a buffer,
        capped at an absolute limit.
        """
        wtime = max(1, round(white_time_ms))
        btime = max(1, round(black_time_ms))
        white_to_move = len(moves) % 2 == 0
        mover_ms = wtime if white_to_move else btime
        timeout = min(
            mover_ms / 1000 + self._settings.clock_buffer,
            self._settings.clock_cap,
        )
        commands = [
            setoption_command("MultiPV", 1),
            position_command(moves=moves),
            go_clock_command(wtime, btime, round(white_inc_ms), round(black_inc_ms)),
        ]
        return await self._search(commands, white_to_move=white_to_move, timeout=timeout)

    def stop(self) -> None:
        """Ask the running search to finish now.

        The pending evaluate call resolves with the last reported
        evaluation. Does nothing when no search is running. A bestmove
        that arrives after the stop grace period is discarded by the next
        search instead of answering it.
        """
        if self._state is not EngineState.BUSY:
            return
        self._send("stop")
        self._lines.put_nowait(_STOP)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, state: EngineState) -> None:
        if self._state is not state:
            raise EngineStateError(
                f"Engine is {self._state.value}, expected {state.value}"
            )

    def _send(self, command: str) -> None:
        logger.debug("> %s", command)
        if self._transport is not None:
            self._transport.write(command)

    def _search_timeout(self) -> float:
        if self._has_searched:
            return self._settings.evaluate_timeout
        return self._settings.cold_start_timeout

    def _drain(self) -> None:
        while not self._lines.empty():
            stale = self._lines.get_nowait()
            if stale is None:
                # Keep the end-of-output marker for the next reader.
                self._lines.put_nowait(None)
                return
            if (
                isinstance(stale, str)
                and stale.startswith("bestmove")
                and self._stale_bestmoves
            ):
                self._stale_bestmoves -= 1

    async def _search(
        self,
        commands: Sequence[str],
        *,
        white_to_move: bool,
        timeout: float,
    ) -> EngineEvaluation:
        self._require(EngineState.READY)
        self._state = EngineState.BUSY
        self._drain()
        deadline = asyncio.get_running_loop().time() + timeout

        try:
            for command in commands:
                self._send(command)
            lines = await self._collect_until("bestmove", deadline, stoppable=True)
        except (EngineTimeoutError, EngineTerminatedError) as exc:
            logger.error("Search failed: %s", exc)
            await self.quit()
            raise

        self._has_searched = True
        self._state = EngineState.READY
        return parse_evaluation(lines, white_to_move=white_to_move)

    async def _collect_until(
        self,
        token: str,
        deadline: float,
        *,
        stoppable: bool = False,
    ) -> list[str]:
        """Collect output lines until one starts with ``token``.

        Returns:
            All lines collected, including the terminal one. After stop()
            the wait shrinks to the stop grace period and whatever has
            arrived by then is returned.
        """
        loop = asyncio.get_running_loop()
        collected: list[str] = []
        stopping = False

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                if stopping:
                    logger.info("No %s after stop; using last reported evaluation", token)
                    self._stale_bestmoves += 1
                    return collected
                raise EngineTimeoutError(
                    f'Timed out waiting for "{token}" from engine'
                )
            try:
                async with asyncio.timeout(remaining):
                    item = await self._lines.get()
            except TimeoutError:
                continue

            if item is _STOP:
                if stoppable and not stopping:
                    stopping = True
                    deadline = min(deadline, loop.time() + self._settings.stop_grace)
                continue
            if item is None:
                self._lines.put_nowait(None)
                raise EngineTerminatedError(
                    f'Engine exited while waiting for "{token}"'
                )

            if stoppable and self._stale_bestmoves and item.startswith("bestmove"):
                # Late answer to a stopped search, along with its output
                logger.debug("Discarding stale %s", item)
                self._stale_bestmoves -= 1
                collected.clear()
                continue

            collected.append(item)
            if item.startswith(token):
                return collected

    async def _pump(self) -> None:
        """Move transport output into the line queue."""
        try:
            async for line in self._transport.lines():
                logger.debug("< %s", line)
                self._lines.put_nowait(line)
        except (OSError, ValueError) as exc:
            logger.warning("Engine output stream failed: %s", exc)
        finally:
            self._lines.put_nowait(None)


# ---------------------------------------------------------------------------
# CLI interface
# ---------------------------------------------------------------------------


async def _cli_analyze(fen: str, depth: int, multipv: int) -> None:
    """Evaluate a FEN position and print the engine's lines."""
    async with EngineClient() as engine:
        result = await engine.evaluate(fen, depth=depth, multipv=multipv)

    print(f"Position: {fen}")
    print(f"Depth: {result.depth}")
    score_str = (
        f"Mate in {result.mate}"
        if result.mate is not None
        else f"{result.eval_cp / 100.0:+.2f}"
    )
    print(f"Eval (White): {score_str}")
    print(f"Best move: {result.best_move or '(none)'}")
    for i, line in enumerate(result.top_lines, 1):
        print(f"  Line {i}: {line.eval_cp / 100.0:+.2f}  {' '.join(line.moves[:6])}")


def main() -> None:
    """CLI entry point for engine.py."""
    parser = argparse.ArgumentParser(
        description="UCI engine client - evaluate a position"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    analyze_parser = subparsers.add_parser("analyze", help="Evaluate a FEN position")
    analyze_parser.add_argument("fen", type=str, help="FEN string to analyze")
    analyze_parser.add_argument("--depth", type=int, default=18, help="Search depth")
    analyze_parser.add_argument("--multipv", type=int, default=3, help="Lines to show")

    args = parser.parse_args()

    if args.command == "analyze":
        try:
            asyncio.run(_cli_analyze(args.fen, args.depth, args.multipv))
        except EngineError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
