"""
Sequence protocol and source constructors.

A sequence is a factory of cursors. Restartable sequences hand out
independent cursors; each drain re-reads the data from the start.
Single-shot sequences are documented as such and refuse a second cursor.
"""

import inspect
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Generator, Generic, Iterable, Iterator, Optional, TypeVar

from pullstream.coroutine import Coroutine
from pullstream.cursor import EXHAUSTED, Cursor, Outcome, Produced
from pullstream.errors import SingleShotError

T = TypeVar("T")
U = TypeVar("U")

_MISSING = object()

ATOMIC_TYPES = (str, bytes, bytearray, Mapping)


class Sequence(ABC, Generic[T]):
    """
    A lazy sequence. Chainable like a collection, but nothing runs until a
    cursor is driven.
    """

    single_shot = False

    @abstractmethod
    def new_cursor(self) -> Cursor[T]:
        ...

    def __iter__(self) -> Cursor[T]:
        return self.new_cursor()

    # --------- chainable operators (lazy) ----------
    def map(self, fn: Callable[[T], U]) -> "Sequence[U]":
        from pullstream.operators import Mapped
        return Mapped(self, fn)

    def filter(self, pred: Callable[[T], bool]) -> "Sequence[T]":
        from pullstream.operators import Filtered
        return Filtered(self, pred)

    def take(self, n: int) -> "Sequence[T]":
        from pullstream.operators import Taken
        return Taken(self, n)

    def skip(self, n: int) -> "Sequence[T]":
        from pullstream.operators import Skipped
        return Skipped(self, n)

    def batch(self, size: int) -> "Sequence[tuple]":
        from pullstream.operators import Batched
        return Batched(self, size)

    def chunk(self, size: int) -> "Sequence[tuple]":
        """Alias for batch()."""
        return self.batch(size)

    def page(self, page_number: int, page_size: int) -> "Sequence[T]":
        from pullstream.operators import page
        return page(self, page_number, page_size)

    def flatten(self, depth: Optional[int] = None) -> "Sequence[Any]":
        from pullstream.operators import Flattened
        return Flattened(self, depth)

    # --------- forcing evaluation ----------
    def to_list(self) -> list:
        from pullstream.driver import drain_all
        return drain_all(self)

    def for_each(self, fn: Callable[[T], Any]) -> None:
        from pullstream.driver import for_each
        for_each(self, fn)

    def first(self, default: Any = None) -> Any:
        from pullstream.driver import first
        return first(self, default)

    def find(self, pred: Callable[[T], bool], default: Any = None) -> Any:
        from pullstream.driver import find
        return find(self, pred, default)

    def count(self) -> int:
        from pullstream.driver import count
        return count(self)

    def reduce(self, fn: Callable[[Any, T], Any], initial: Any = _MISSING) -> Any:
        from pullstream.driver import reduce
        if initial is _MISSING:
            return reduce(self, fn)
        return reduce(self, fn, initial)


# ---------- source cursors ----------

class IteratorCursor(Cursor[T]):
    """Cursor over a plain Python iterator."""

    def __init__(self, iterator: Iterator[T]):
        super().__init__()
        self._iterator = iterator

    def _step(self) -> Outcome:
        try:
            return Produced(next(self._iterator))
        except StopIteration:
            return EXHAUSTED


class RangeCursor(Cursor[int]):
    def __init__(self, start: int, end: Optional[int], step: int):
        super().__init__()
        self._next = start
        self._end = end
        self._step_by = step

    def _step(self) -> Outcome:
        value = self._next
        if self._end is not None:
            if self._step_by > 0 and value > self._end:
                return EXHAUSTED
            if self._step_by < 0 and value < self._end:
                return EXHAUSTED
        self._next = value + self._step_by
        return Produced(value)


# ---------- source sequences ----------

@dataclass(frozen=True)
class Range(Sequence[int]):
    """Integers from ``start`` to ``end`` inclusive; ``end=None`` never ends."""
    start: int
    end: Optional[int] = None
    step: int = 1

    def __post_init__(self):
        if self.step == 0:
            raise ValueError("Range step must not be zero")

    def new_cursor(self) -> Cursor[int]:
        return RangeCursor(self.start, self.end, self.step)


@dataclass(frozen=True)
class FromCollection(Sequence[T]):
    """Restartable: every cursor calls ``iter(items)`` afresh."""
    items: Iterable[T]

    def __post_init__(self):
        if not isinstance(self.items, Iterable):
            raise TypeError(f"{type(self.items).__name__} is not iterable")
        if iter(self.items) is self.items:
            raise TypeError(
                "from_collection() needs a re-iterable collection; "
                "use from_iterator() for one-shot iterators"
            )

    def new_cursor(self) -> Cursor[T]:
        return IteratorCursor(iter(self.items))


@dataclass(frozen=True)
class FromCoroutine(Sequence[T]):
    """Restartable as long as ``factory`` returns a fresh generator per call."""
    factory: Callable[[], Generator[T, Any, Any]]

    def __post_init__(self):
        if inspect.isgenerator(self.factory):
            raise TypeError(
                "from_coroutine() needs a generator factory, not a generator; "
                "use from_iterator() to wrap a single generator"
            )
        if not callable(self.factory):
            raise TypeError(f"{type(self.factory).__name__} is not callable")

    def new_cursor(self) -> Coroutine[T]:
        return Coroutine(self.factory())


class FromIterator(Sequence[T]):
    """
    Single-shot sequence over an existing iterator or generator.

    The first ``new_cursor()`` takes ownership of the iterator; a second call
    raises ``SingleShotError``. Generators are driven by the coroutine engine,
    so closing the cursor runs their cleanup.
    """

    single_shot = True

    def __init__(self, iterator: Iterator[T]):
        if not isinstance(iterator, Iterator):
            raise TypeError(f"{type(iterator).__name__} is not an iterator")
        self._iterator = iterator
        self._claimed = False

    def new_cursor(self) -> Cursor[T]:
        if self._claimed:
            raise SingleShotError("single-shot sequence already has a cursor")
        self._claimed = True
        if inspect.isgenerator(self._iterator):
            return Coroutine(self._iterator)
        return IteratorCursor(self._iterator)


# ---------- construction API ----------

def from_range(start: int, end: Optional[int] = None, step: int = 1) -> Range:
    return Range(start, end, step)


def from_collection(items: Iterable[T]) -> FromCollection[T]:
    return FromCollection(items)


def from_coroutine(factory: Callable[[], Generator[T, Any, Any]]) -> FromCoroutine[T]:
    return FromCoroutine(factory)


def from_iterator(iterator: Iterator[T]) -> FromIterator[T]:
    return FromIterator(iterator)


# ---------- helpers shared by the operator stages ----------

def check_count(name: str, n: Any, minimum: int = 0) -> int:
    if isinstance(n, bool) or not isinstance(n, int):
        raise TypeError(f"{name} must be an int, got {type(n).__name__}")
    if n < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {n}")
    return n


def is_nested(value: Any) -> bool:
    """Whether flatten descends into ``value``. Strings and mappings are atoms."""
    if isinstance(value, ATOMIC_TYPES):
        return False
    return isinstance(value, (Sequence, Cursor, Iterable))


def cursor_for(value: Any) -> Cursor:
    if isinstance(value, Sequence):
        return value.new_cursor()
    if isinstance(value, Cursor):
        return value
    if inspect.isgenerator(value):
        return Coroutine(value)
    return IteratorCursor(iter(value))
