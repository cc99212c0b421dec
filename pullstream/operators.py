"""
Composition operators.

Each operator is an immutable stage record that is itself a sequence.
Building a stage pulls nothing; its cursor wraps the upstream cursor and
pulls one element at a time. Operators never swallow producer faults.

The module-level functions dispatch on the upstream: a synchronous
``Sequence`` yields a synchronous stage, an ``AsyncSequence`` the async
counterpart from ``pullstream.async_engine``.
"""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from pullstream import async_engine
from pullstream.cursor import EXHAUSTED, Cursor, Outcome, Produced, close_all
from pullstream.sequence import Sequence, check_count, cursor_for, is_nested

T = TypeVar("T")
U = TypeVar("U")


# ---------- cursors ----------

class MapCursor(Cursor[U]):
    def __init__(self, upstream: Cursor[T], fn: Callable[[T], U]):
        super().__init__()
        self._upstream = upstream
        self._fn = fn

    def _step(self) -> Outcome:
        outcome = self._upstream.advance()
        if not outcome:
            return EXHAUSTED
        return Produced(self._fn(outcome.value))

    def _release(self) -> None:
        self._upstream.close()


class FilterCursor(Cursor[T]):
    # Unbounded skipping: a rarely-true predicate over an endless upstream
    # may never return.
    def __init__(self, upstream: Cursor[T], pred: Callable[[T], bool]):
        super().__init__()
        self._upstream = upstream
        self._pred = pred

    def _step(self) -> Outcome:
        while True:
            outcome = self._upstream.advance()
            if not outcome:
                return EXHAUSTED
            if self._pred(outcome.value):
                return outcome

    def _release(self) -> None:
        self._upstream.close()


class TakeCursor(Cursor[T]):
    """
    Emits at most ``n`` elements. The call after the last one returns
    ``EXHAUSTED`` without pulling upstream and closes the upstream cursor, so
    a coroutine source runs its cleanup even though it had more to give.
    """

    def __init__(self, upstream: Cursor[T], n: int):
        super().__init__()
        self._upstream = upstream
        self._remaining = n

    def _step(self) -> Outcome:
        if self._remaining <= 0:
            self._upstream.close()
            return EXHAUSTED
        outcome = self._upstream.advance()
        if not outcome:
            return EXHAUSTED
        self._remaining -= 1
        return outcome

    def _release(self) -> None:
        self._upstream.close()


class SkipCursor(Cursor[T]):
    def __init__(self, upstream: Cursor[T], n: int):
        super().__init__()
        self._upstream = upstream
        self._to_skip = n

    def _step(self) -> Outcome:
        while self._to_skip > 0:
            self._to_skip -= 1
            if not self._upstream.advance():
                return EXHAUSTED
        return self._upstream.advance()

    def _release(self) -> None:
        self._upstream.close()


class BatchCursor(Cursor[tuple]):
    def __init__(self, upstream: Cursor[T], size: int):
        super().__init__()
        self._upstream = upstream
        self._size = size

    def _step(self) -> Outcome:
        bucket: List[Any] = []
        while len(bucket) < self._size:
            outcome = self._upstream.advance()
            if not outcome:
                break
            bucket.append(outcome.value)
        if not bucket:
            return EXHAUSTED
        return Produced(tuple(bucket))

    def _release(self) -> None:
        self._upstream.close()


class FlattenCursor(Cursor[Any]):
    """
    Depth-first, left-to-right flattening. The innermost open cursor is
    drained fully before the next element of its parent is pulled.
    """

    def __init__(self, upstream: Cursor[Any], depth: Optional[int]):
        super().__init__()
        self._upstream = upstream
        self._depth = depth
        self._stack: List[Tuple[Cursor[Any], int]] = [(upstream, 0)]

    def _step(self) -> Outcome:
        while self._stack:
            cursor, level = self._stack[-1]
            outcome = cursor.advance()
            if not outcome:
                self._stack.pop()
                continue
            value = outcome.value
            if (self._depth is None or level < self._depth) and is_nested(value):
                self._stack.append((cursor_for(value), level + 1))
                continue
            return outcome
        return EXHAUSTED

    def _release(self) -> None:
        cursors = [cursor for cursor, _ in reversed(self._stack)]
        if not any(cursor is self._upstream for cursor in cursors):
            cursors.append(self._upstream)
        self._stack = []
        close_all(cursors)


# ---------- stage records ----------

@dataclass(frozen=True)
class Mapped(Sequence[U]):
    upstream: Sequence[T]
    fn: Callable[[T], U]

    def new_cursor(self) -> Cursor[U]:
        return MapCursor(self.upstream.new_cursor(), self.fn)


@dataclass(frozen=True)
class Filtered(Sequence[T]):
    upstream: Sequence[T]
    pred: Callable[[T], bool]

    def new_cursor(self) -> Cursor[T]:
        return FilterCursor(self.upstream.new_cursor(), self.pred)


@dataclass(frozen=True)
class Taken(Sequence[T]):
    upstream: Sequence[T]
    n: int

    def __post_init__(self):
        check_count("take count", self.n)

    def new_cursor(self) -> Cursor[T]:
        return TakeCursor(self.upstream.new_cursor(), self.n)


@dataclass(frozen=True)
class Skipped(Sequence[T]):
    upstream: Sequence[T]
    n: int

    def __post_init__(self):
        check_count("skip count", self.n)

    def new_cursor(self) -> Cursor[T]:
        return SkipCursor(self.upstream.new_cursor(), self.n)


@dataclass(frozen=True)
class Batched(Sequence[tuple]):
    upstream: Sequence[Any]
    size: int

    def __post_init__(self):
        check_count("batch size", self.size, minimum=1)

    def new_cursor(self) -> Cursor[tuple]:
        return BatchCursor(self.upstream.new_cursor(), self.size)


@dataclass(frozen=True)
class Flattened(Sequence[Any]):
    upstream: Sequence[Any]
    depth: Optional[int] = None

    def __post_init__(self):
        if self.depth is not None:
            check_count("flatten depth", self.depth)

    def new_cursor(self) -> Cursor[Any]:
        return FlattenCursor(self.upstream.new_cursor(), self.depth)


# ---------- operators API ----------

def _check_source(seq: Any) -> None:
    if not isinstance(seq, (Sequence, async_engine.AsyncSequence)):
        raise TypeError(
            f"expected a Sequence or AsyncSequence, got {type(seq).__name__}"
        )


def map(seq, fn):
    _check_source(seq)
    if isinstance(seq, async_engine.AsyncSequence):
        return async_engine.AsyncMapped(seq, fn)
    return Mapped(seq, fn)


def filter(seq, pred):
    _check_source(seq)
    if isinstance(seq, async_engine.AsyncSequence):
        return async_engine.AsyncFiltered(seq, pred)
    return Filtered(seq, pred)


def take(seq, n: int):
    _check_source(seq)
    if isinstance(seq, async_engine.AsyncSequence):
        return async_engine.AsyncTaken(seq, n)
    return Taken(seq, n)


def skip(seq, n: int):
    _check_source(seq)
    if isinstance(seq, async_engine.AsyncSequence):
        return async_engine.AsyncSkipped(seq, n)
    return Skipped(seq, n)


def batch(seq, size: int):
    _check_source(seq)
    if isinstance(seq, async_engine.AsyncSequence):
        return async_engine.AsyncBatched(seq, size)
    return Batched(seq, size)


def chunk(seq, size: int):
    """Alias for batch()."""
    return batch(seq, size)


def page(seq, page_number: int, page_size: int):
    """One page of results, 1-indexed: ``skip((n - 1) * size).take(size)``."""
    check_count("page number", page_number, minimum=1)
    check_count("page size", page_size, minimum=1)
    return take(skip(seq, (page_number - 1) * page_size), page_size)


def flatten(seq, depth: Optional[int] = None):
    _check_source(seq)
    if isinstance(seq, async_engine.AsyncSequence):
        return async_engine.AsyncFlattened(seq, depth)
    return Flattened(seq, depth)
