"""Exception hierarchy for the request engine.

HTTP failures are not exceptions here; they arrive as ``Outcome`` values.
These exceptions signal misuse of the engine itself.
"""

from __future__ import annotations


class LockstepError(Exception):
    """Base exception for all engine errors."""

    pass


class EngineNotRunningError(LockstepError):
    """Raised when work is submitted to an engine that is not started."""

    pass


class InvalidDesiredSetError(LockstepError, ValueError):
    """Raised when a desired request set cannot be reconciled.

    Every entry needs a tracker id, and no tracker id may appear twice.
    """

    pass


class TransportClosedError(LockstepError):
    """Raised when a transport is used after it was closed."""

    pass
