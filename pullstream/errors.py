"""
Error hierarchy for pullstream.

Producer faults raised by user code (mappers, predicates, fetch functions,
coroutine bodies) are never wrapped: they propagate unchanged to the caller
of the advance that triggered them. The classes here cover the conditions
the runtime itself detects.
"""

from typing import Any


class StreamError(Exception):
    """Base class for all errors raised by the runtime."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message


class ProtocolViolation(StreamError):
    """The caller broke the cursor protocol. Always a bug, never data."""


class CoroutineStateError(ProtocolViolation):
    """Resuming a coroutine that is completed, faulted or closed."""

    def __init__(self, message: str, *, state: Any = None, **context: Any):
        super().__init__(message, state=state, **context)
        self.state = state


class ConcurrentAdvanceError(ProtocolViolation):
    """A second advance was issued while one is still in progress."""


class SingleShotError(ProtocolViolation):
    """A single-shot sequence was asked for a second cursor."""


class PageFormatError(StreamError):
    """A paginated fetch returned something that is not a page."""


def attach_suppressed(primary: BaseException, secondary: BaseException) -> None:
    """Record ``secondary`` on ``primary`` as a suppressed cleanup fault."""
    suppressed = getattr(primary, "suppressed", None)
    if suppressed is None:
        suppressed = []
        primary.suppressed = suppressed
    suppressed.append(secondary)
