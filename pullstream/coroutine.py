"""
Coroutine engine.

``Coroutine`` puts an explicit state machine around a native generator:

    NOT_STARTED --resume()--> RUNNING --yield--> SUSPENDED
    SUSPENDED --resume(value)--> RUNNING
    SUSPENDED --throw(fault)--> RUNNING (fault raised at the yield)
    RUNNING --return--> COMPLETED
    RUNNING --uncaught fault--> FAULTED
    SUSPENDED --close()--> RUNNING (cleanup only) --> CLOSED

A coroutine is a cursor and is single-shot: once started it cannot be
restarted. Wrap a generator *factory* with ``from_coroutine`` to get a
restartable sequence.
"""

import inspect
import logging
from enum import Enum
from typing import Any, Generator, Optional, TypeVar

from pullstream.cursor import EXHAUSTED, Cursor, Outcome, Produced
from pullstream.errors import (
    ConcurrentAdvanceError,
    CoroutineStateError,
    ProtocolViolation,
)

T = TypeVar("T")

logger = logging.getLogger("pullstream.coroutine")


class CoroutineState(str, Enum):
    NOT_STARTED = "not_started"
    SUSPENDED = "suspended"
    RUNNING = "running"
    COMPLETED = "completed"
    FAULTED = "faulted"
    CLOSED = "closed"


TERMINAL_STATES = frozenset(
    {CoroutineState.COMPLETED, CoroutineState.FAULTED, CoroutineState.CLOSED}
)


class Coroutine(Cursor[T]):
    """Suspendable computation driven by ``resume``/``throw``/``close``."""

    def __init__(self, generator: Generator[T, Any, Any], name: Optional[str] = None):
        if not inspect.isgenerator(generator):
            raise TypeError(
                f"Coroutine needs a generator object, got {type(generator).__name__}"
            )
        super().__init__()
        self._gen = generator
        self._state = CoroutineState.NOT_STARTED
        self.name = name or generator.__name__
        self.return_value: Any = None

    @property
    def state(self) -> CoroutineState:
        return self._state

    # --------- engine operations ----------
    def resume(self, value: Any = None) -> Outcome:
        """
        Run until the next yield, return or fault.

        ``value`` becomes the result of the paused yield expression. On the
        very first resume there is no paused yield, so ``value`` is ignored.
        """
        self._ensure_resumable("resume")
        if self._state is CoroutineState.NOT_STARTED:
            value = None
        return self._run(self._gen.send, value)

    def throw(self, fault: BaseException) -> Outcome:
        """Raise ``fault`` at the current suspension point."""
        self._ensure_resumable("throw into")
        return self._run(self._gen.throw, fault)

    def close(self) -> CoroutineState:
        """
        Terminate early, running pending cleanup blocks exactly once.

        A fault raised by a cleanup block propagates to the caller; the
        coroutine is ``CLOSED`` either way. Closing a coroutine that never
        started marks it ``CLOSED`` without running any of its body.
        """
        if self._state is CoroutineState.RUNNING:
            raise ConcurrentAdvanceError(
                "close() called while the coroutine is running", coroutine=self.name
            )
        if self._state is CoroutineState.NOT_STARTED:
            self._gen.close()
            self._state = CoroutineState.CLOSED
            logger.debug(f"Coroutine {self.name} closed before starting")
            return self._state
        if self._state in TERMINAL_STATES:
            return self._state

        self._state = CoroutineState.RUNNING
        try:
            self._gen.throw(GeneratorExit())
        except (GeneratorExit, StopIteration):
            pass
        else:
            raise ProtocolViolation(
                "coroutine yielded a value while running its cleanup",
                coroutine=self.name,
            )
        finally:
            self._state = CoroutineState.CLOSED
            logger.debug(f"Coroutine {self.name} closed")
        return self._state

    # --------- cursor view ----------
    def advance(self) -> Outcome:
        if self._state is CoroutineState.COMPLETED:
            return EXHAUSTED
        return self.resume()

    def _step(self) -> Outcome:
        return self.resume()

    # --------- helpers ----------
    def _ensure_resumable(self, operation: str) -> None:
        if self._state is CoroutineState.RUNNING:
            raise ConcurrentAdvanceError(
                f"cannot {operation} a coroutine that is already running",
                coroutine=self.name,
            )
        if self._state in TERMINAL_STATES:
            raise CoroutineStateError(
                f"cannot {operation} a {self._state.value} coroutine",
                state=self._state,
                coroutine=self.name,
            )

    def _run(self, step, argument) -> Outcome:
        self._state = CoroutineState.RUNNING
        try:
            value = step(argument)
        except StopIteration as stop:
            self._state = CoroutineState.COMPLETED
            self.return_value = stop.value
            logger.debug(f"Coroutine {self.name} completed")
            return EXHAUSTED
        except BaseException as fault:
            self._state = CoroutineState.FAULTED
            logger.debug(f"Coroutine {self.name} faulted: {fault!r}")
            raise
        self._state = CoroutineState.SUSPENDED
        return Produced(value)
