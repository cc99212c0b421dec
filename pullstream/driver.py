"""
Consumption loops.

Every function accepts a sequence (a fresh cursor is created and owned by
the call) or an existing cursor (manual stepping; the caller keeps
ownership). Faults propagate immediately; nothing collected so far is
returned when one occurs. When a fault leaves a call that owns its cursor,
the cursor is closed first so pending cleanup runs.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, List, Optional, Tuple, TypeVar, Union

from pullstream.async_engine import AsyncCursor, AsyncSequence, maybe_await
from pullstream.cursor import Cursor, Produced
from pullstream.errors import attach_suppressed
from pullstream.sequence import Sequence

T = TypeVar("T")

_MISSING = object()

logger = logging.getLogger("pullstream.driver")


@dataclass
class Drained(Generic[T]):
    """
    Result of ``drain_until``.

    ``values`` holds everything produced up to and including the match.
    ``cursor`` is left paused, not closed: resume it or close it yourself.
    """
    values: List[T] = field(default_factory=list)
    match: Optional[Produced] = None
    cursor: Any = None

    @property
    def found(self) -> bool:
        return self.match is not None


def _open(source: Union[Sequence[T], Cursor[T]]) -> Tuple[Cursor[T], bool]:
    """Return the cursor to drive and whether this call owns it."""
    if isinstance(source, Cursor):
        return source, False
    if isinstance(source, Sequence):
        return source.new_cursor(), True
    raise TypeError(f"expected a Sequence or Cursor, got {type(source).__name__}")


def _open_async(source) -> Tuple[AsyncCursor, bool]:
    if isinstance(source, AsyncCursor):
        return source, False
    if isinstance(source, AsyncSequence):
        return source.new_cursor(), True
    raise TypeError(
        f"expected an AsyncSequence or AsyncCursor, got {type(source).__name__}"
    )


def _close_after_fault(cursor: Cursor, fault: BaseException) -> None:
    try:
        cursor.close()
    except Exception as cleanup_fault:
        logger.warning(f"Cleanup fault while closing {cursor!r}: {cleanup_fault!r}")
        attach_suppressed(fault, cleanup_fault)


async def _aclose_after_fault(cursor: AsyncCursor, fault: BaseException) -> None:
    try:
        await cursor.aclose()
    except Exception as cleanup_fault:
        logger.warning(f"Cleanup fault while closing {cursor!r}: {cleanup_fault!r}")
        attach_suppressed(fault, cleanup_fault)


# ---------- synchronous ----------

def _drain(cursor: Cursor[T]) -> List[T]:
    values = []
    while True:
        outcome = cursor.advance()
        if not outcome:
            return values
        values.append(outcome.value)


def drain_all(source: Union[Sequence[T], Cursor[T]]) -> List[T]:
    """Advance until exhausted and collect every value in order."""
    cursor, owned = _open(source)
    try:
        return _drain(cursor)
    except BaseException as fault:
        if owned:
            _close_after_fault(cursor, fault)
        raise


def _drain_until(cursor: Cursor[T], predicate: Callable[[T], bool]) -> Drained[T]:
    drained = Drained(cursor=cursor)
    while True:
        outcome = cursor.advance()
        if not outcome:
            return drained
        drained.values.append(outcome.value)
        if predicate(outcome.value):
            drained.match = outcome
            return drained


def drain_until(source: Union[Sequence[T], Cursor[T]], predicate: Callable[[T], bool]) -> Drained[T]:
    """
    Advance until ``predicate(value)`` holds, then stop without advancing
    again. The cursor is returned paused inside the result.
    """
    cursor, owned = _open(source)
    try:
        return _drain_until(cursor, predicate)
    except BaseException as fault:
        if owned:
            _close_after_fault(cursor, fault)
        raise


def for_each(source: Union[Sequence[T], Cursor[T]], fn: Callable[[T], Any]) -> None:
    """Eager full consumption for side effects."""
    cursor, owned = _open(source)
    try:
        while True:
            outcome = cursor.advance()
            if not outcome:
                return
            fn(outcome.value)
    except BaseException as fault:
        if owned:
            _close_after_fault(cursor, fault)
        raise


# ---------- reductions ----------

def reduce(source, fn: Callable[[Any, T], Any], initial: Any = _MISSING) -> Any:
    """Fold values left to right, like functools.reduce."""
    cursor, owned = _open(source)
    try:
        accumulator = initial
        if accumulator is _MISSING:
            outcome = cursor.advance()
            if not outcome:
                raise TypeError("reduce() of empty sequence with no initial value")
            accumulator = outcome.value
        while True:
            outcome = cursor.advance()
            if not outcome:
                return accumulator
            accumulator = fn(accumulator, outcome.value)
    except BaseException as fault:
        if owned:
            _close_after_fault(cursor, fault)
        raise


def count(source) -> int:
    total = 0
    cursor, owned = _open(source)
    try:
        while cursor.advance():
            total += 1
    except BaseException as fault:
        if owned:
            _close_after_fault(cursor, fault)
        raise
    return total


def find(source, pred: Callable[[T], bool], default: Any = None) -> Any:
    """First value satisfying ``pred``; a cursor owned by this call is closed afterwards."""
    cursor, owned = _open(source)
    try:
        drained = _drain_until(cursor, pred)
    except BaseException as fault:
        if owned:
            _close_after_fault(cursor, fault)
        raise
    if owned:
        cursor.close()
    if drained.found:
        return drained.match.value
    return default


def first(source, default: Any = None) -> Any:
    return find(source, lambda _: True, default)


# ---------- asynchronous ----------

async def drain_all_async(source) -> list:
    """Await each advance before issuing the next; collect in order."""
    cursor, owned = _open_async(source)
    values = []
    try:
        while True:
            outcome = await cursor.advance()
            if not outcome:
                return values
            values.append(outcome.value)
    except BaseException as fault:
        if owned:
            await _aclose_after_fault(cursor, fault)
        raise


async def drain_until_async(source, predicate) -> Drained:
    """``predicate`` may be a plain or an async callable."""
    cursor, owned = _open_async(source)
    drained = Drained(cursor=cursor)
    try:
        while True:
            outcome = await cursor.advance()
            if not outcome:
                return drained
            drained.values.append(outcome.value)
            if await maybe_await(predicate(outcome.value)):
                drained.match = outcome
                return drained
    except BaseException as fault:
        if owned:
            await _aclose_after_fault(cursor, fault)
        raise


async def for_each_async(source, fn) -> None:
    cursor, owned = _open_async(source)
    try:
        while True:
            outcome = await cursor.advance()
            if not outcome:
                return
            await maybe_await(fn(outcome.value))
    except BaseException as fault:
        if owned:
            await _aclose_after_fault(cursor, fault)
        raise
