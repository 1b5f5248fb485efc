"""Line transports between the engine client and an engine.

Both transports expose the same surface: write() a command, iterate
lines() for output. ProcessTransport talks to a native binary over
stdin/stdout; ChannelTransport is an in-process message channel, the
shape a worker-hosted engine (or a scripted test engine) uses.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Sequence

logger = logging.getLogger(__name__)

_CLOSE_TIMEOUT = 2.0


class LineTransport(abc.ABC):
    """Bidirectional line-oriented channel to an engine."""

    @abc.abstractmethod
    async def start(self) -> None:
        """Open the channel. Raises OSError if the engine cannot start."""

    @abc.abstractmethod
    def write(self, command: str) -> None:
        """Send one command line. Never blocks."""

    @abc.abstractmethod
    def lines(self) -> AsyncIterator[str]:
        """Yield non-empty output lines until the engine goes away."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Tear the channel down. Must not raise."""


class ProcessTransport(LineTransport):
    """Engine binary driven through pipes."""

    def __init__(self, path: str, args: Sequence[str] = ()) -> None:
        self._path = path
        self._args = list(args)
        self._process: asyncio.subprocess.Process | None = None

    async def start(self) -> None:
        self._process = await asyncio.create_subprocess_exec(
            self._path,
            *self._args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        logger.debug("Started engine %s (pid %s)", self._path, self._process.pid)

    def write(self, command: str) -> None:
        process = self._process
        if process is None or process.stdin is None or process.stdin.is_closing():
            return
        process.stdin.write((command + "\n").encode("utf-8"))

    async def lines(self) -> AsyncIterator[str]:
        process = self._process
        if process is None or process.stdout is None:
            return
        async for raw in process.stdout:
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                yield line

    async def close(self) -> None:
        process = self._process
        self._process = None
        if process is None:
            return
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        try:
            await asyncio.wait_for(process.wait(), _CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Engine process %s did not exit after kill", process.pid)


Responder = Callable[[str], Iterable[str]]


class ChannelTransport(LineTransport):
    """In-process message channel.

    Every written command is handed to ``responder``; the lines it returns
    are queued as engine output. The engine side can also push output at
    any time with post(), which is how long searches and delayed replies
    are modelled.
    """

    def __init__(self, responder: Responder | None = None) -> None:
        self._responder = responder
        self._outbox: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False
        self.sent: list[str] = []

    async def start(self) -> None:
        self._closed = False

    def write(self, command: str) -> None:
        if self._closed:
            return
        self.sent.append(command)
        if self._responder is not None:
            for line in self._responder(command):
                self.post(line)

    def post(self, line: str) -> None:
        """Deliver one line of engine output to the reader."""
        if not self._closed:
            self._outbox.put_nowait(line)

    async def lines(self) -> AsyncIterator[str]:
        while True:
            line = await self._outbox.get()
            if line is None:
                return
            line = line.strip()
            if line:
                yield line

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._outbox.put_nowait(None)
