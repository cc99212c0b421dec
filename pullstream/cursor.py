"""
Cursor protocol: the minimal "produce next element or signal completion"
contract every pipeline stage implements.

A cursor is stateful and owned by exactly one consumer. Calling
``advance()`` is the only way to make progress; inspecting ``state`` has no
effect on the producer.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Iterable, TypeVar, Union

from pullstream.errors import ConcurrentAdvanceError, attach_suppressed

T = TypeVar("T")

logger = logging.getLogger("pullstream.cursor")


@dataclass(frozen=True)
class Produced(Generic[T]):
    """A value is available."""
    value: T

    def __bool__(self) -> bool:
        return True


class Exhausted:
    """No more values will ever be produced. Use the ``EXHAUSTED`` singleton."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "EXHAUSTED"


EXHAUSTED = Exhausted()

Outcome = Union[Produced[T], Exhausted]


class CursorState(str, Enum):
    """Lifecycle of an operator or source cursor."""
    READY = "ready"
    RUNNING = "running"
    EXHAUSTED = "exhausted"
    FAULTED = "faulted"
    CLOSED = "closed"


class Cursor(ABC, Generic[T]):
    """
    Base class for synchronous cursors.

    Subclasses implement ``_step()`` (produce one outcome) and, when they own
    upstream cursors, ``_release()`` (close them). The base class enforces the
    protocol:

    - after the first ``EXHAUSTED`` every call returns ``EXHAUSTED``;
    - a fault propagates once, then the cursor is ``FAULTED`` and behaves as
      exhausted; owned upstream cursors are closed on the way out;
    - a re-entrant ``advance()`` raises ``ConcurrentAdvanceError``;
    - ``close()`` is idempotent and closes owned upstream cursors.
    """

    def __init__(self):
        self._state = CursorState.READY

    @property
    def state(self):
        return self._state

    def advance(self) -> Outcome:
        if self._state is CursorState.RUNNING:
            raise ConcurrentAdvanceError(
                "advance() called while another advance is in progress",
                cursor=type(self).__name__,
            )
        if self._state is not CursorState.READY:
            return EXHAUSTED

        self._state = CursorState.RUNNING
        try:
            outcome = self._step()
        except BaseException as fault:
            if self._state is CursorState.RUNNING:
                self._state = CursorState.FAULTED
                self._release_after_fault(fault)
            raise

        if self._state is CursorState.RUNNING:
            self._state = CursorState.READY if outcome else CursorState.EXHAUSTED
        return outcome

    def close(self) -> None:
        if self._state is CursorState.CLOSED:
            return
        if self._state is CursorState.RUNNING:
            raise ConcurrentAdvanceError(
                "close() called while an advance is in progress",
                cursor=type(self).__name__,
            )
        self._state = CursorState.CLOSED
        self._release()

    @abstractmethod
    def _step(self) -> Outcome:
        ...

    def _release(self) -> None:
        """Close owned upstream cursors. Sources own nothing."""

    def _release_after_fault(self, fault: BaseException) -> None:
        try:
            self._release()
        except Exception as cleanup_fault:
            logger.warning(
                f"Cleanup fault while unwinding {type(self).__name__}: {cleanup_fault!r}"
            )
            attach_suppressed(fault, cleanup_fault)

    # --------- Python iterator protocol ----------
    def __iter__(self):
        return self

    def __next__(self) -> T:
        outcome = self.advance()
        if not outcome:
            raise StopIteration
        return outcome.value

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} state={self.state.value}>"


def close_all(cursors: Iterable[Any]) -> None:
    """
    Close every cursor in order, even if some cleanup fails.

    The first cleanup fault is raised once all cursors had their chance;
    later faults are attached to it as ``suppressed`` and logged.
    """
    first_fault = None
    for cursor in cursors:
        try:
            cursor.close()
        except Exception as fault:
            if first_fault is None:
                first_fault = fault
            else:
                logger.warning(f"Suppressed cleanup fault from {cursor!r}: {fault!r}")
                attach_suppressed(first_fault, fault)
    if first_fault is not None:
        raise first_fault
