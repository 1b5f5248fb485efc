"""Error taxonomy for the engine client and the analysis pipeline."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for failures talking to the evaluation engine."""


class EngineInitError(EngineError):
    """The engine process failed to start or complete the UCI handshake."""


class EngineTimeoutError(EngineError):
    """No terminal response arrived within the allowed time."""


class EngineProtocolError(EngineError):
    """A line from the engine could not be parsed."""


class EngineStateError(EngineError):
    """A command was issued in a lifecycle state that does not allow it."""


class EngineTerminatedError(EngineError):
    """The engine exited while a command was outstanding."""


class AnalysisError(Exception):
    """A game analysis run ended with an error event."""
