"""
Async cursor protocol and async coroutine engine.

Same contract as the synchronous layer, except ``advance()`` is awaited.
Pacing is entirely in the consumer's hands: nothing is requested until the
consumer awaits ``advance()``, and a second ``advance()`` while one is still
pending is a protocol violation.

``from_async_paginated_fetch`` turns a ``fetch_page(token)`` coroutine
function into a lazy stream of items that fetches one page at a time, only
when the previous page's items are used up.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import (
    Any,
    AsyncGenerator,
    Awaitable,
    Callable,
    Generic,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from pullstream.coroutine import TERMINAL_STATES, CoroutineState
from pullstream.cursor import (
    EXHAUSTED,
    Cursor,
    CursorState,
    Outcome,
    Produced,
)
from pullstream.errors import (
    ConcurrentAdvanceError,
    CoroutineStateError,
    ProtocolViolation,
    attach_suppressed,
)
from pullstream.models import Page, PaginationSettings
from pullstream.sequence import ATOMIC_TYPES, Sequence, check_count, cursor_for, is_nested

T = TypeVar("T")
U = TypeVar("U")

logger = logging.getLogger("pullstream.async")

FetchPage = Callable[[Any], Awaitable[Any]]


async def _settle(step: Awaitable[Any]) -> Any:
    return await step


async def maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class AsyncCursor(ABC, Generic[T]):
    """
    Base class for asynchronous cursors; mirrors ``Cursor``.

    If the task awaiting ``advance()`` is cancelled, the cursor is marked
    ``CLOSED`` and its upstream cursors are closed before the cancellation
    propagates.
    """

    def __init__(self):
        self._state = CursorState.READY

    @property
    def state(self):
        return self._state

    async def advance(self) -> Outcome:
        if self._state is CursorState.RUNNING:
            raise ConcurrentAdvanceError(
                "advance() awaited while a previous advance is still pending",
                cursor=type(self).__name__,
            )
        if self._state is not CursorState.READY:
            return EXHAUSTED

        self._state = CursorState.RUNNING
        try:
            outcome = await self._astep()
        except asyncio.CancelledError:
            if self._state is CursorState.RUNNING:
                self._state = CursorState.CLOSED
                await self._release()
            raise
        except BaseException as fault:
            if self._state is CursorState.RUNNING:
                self._state = CursorState.FAULTED
                await self._release_after_fault(fault)
            raise

        if self._state is CursorState.RUNNING:
            self._state = CursorState.READY if outcome else CursorState.EXHAUSTED
        return outcome

    async def aclose(self) -> None:
        if self._state is CursorState.CLOSED:
            return
        if self._state is CursorState.RUNNING:
            raise ConcurrentAdvanceError(
                "aclose() called while an advance is pending",
                cursor=type(self).__name__,
            )
        self._state = CursorState.CLOSED
        await self._release()

    @abstractmethod
    async def _astep(self) -> Outcome:
        ...

    async def _release(self) -> None:
        """Close owned upstream cursors."""

    async def _release_after_fault(self, fault: BaseException) -> None:
        try:
            await self._release()
        except Exception as cleanup_fault:
            logger.warning(
                f"Cleanup fault while unwinding {type(self).__name__}: {cleanup_fault!r}"
            )
            attach_suppressed(fault, cleanup_fault)

    def __aiter__(self):
        return self

    async def __anext__(self) -> T:
        outcome = await self.advance()
        if not outcome:
            raise StopAsyncIteration
        return outcome.value

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} state={self.state.value}>"


async def aclose_all(cursors) -> None:
    """Async counterpart of ``close_all``: first fault wins, the rest are suppressed."""
    first_fault = None
    for cursor in cursors:
        try:
            if isinstance(cursor, Cursor):
                cursor.close()
            else:
                await cursor.aclose()
        except Exception as fault:
            if first_fault is None:
                first_fault = fault
            else:
                logger.warning(f"Suppressed cleanup fault from {cursor!r}: {fault!r}")
                attach_suppressed(first_fault, fault)
    if first_fault is not None:
        raise first_fault


def _consume_outcome(task: "asyncio.Future") -> None:
    # Late settlement of an abandoned step: read it so it is never reported.
    if not task.cancelled():
        fault = task.exception()
        if fault is not None and not isinstance(fault, StopAsyncIteration):
            logger.debug(f"Discarded late fault from a closed coroutine: {fault!r}")


class AsyncCoroutine(AsyncCursor[T]):
    """
    State machine around a native async generator, with the same lifecycle
    as ``Coroutine``.

    Each step runs as its own task, so the coroutine can be closed while a
    step is still awaiting external I/O: the coroutine becomes ``CLOSED``
    at once, the pending step is cancelled (its cleanup runs exactly once),
    and whatever the step eventually settles with is discarded.
    """

    def __init__(self, agen: AsyncGenerator[T, Any], name: Optional[str] = None):
        if not inspect.isasyncgen(agen):
            raise TypeError(
                f"AsyncCoroutine needs an async generator, got {type(agen).__name__}"
            )
        super().__init__()
        self._agen = agen
        self._state = CoroutineState.NOT_STARTED
        self._inflight: Optional[asyncio.Future] = None
        self._cleanup_task: Optional[asyncio.Future] = None
        self.name = name or agen.__name__

    @property
    def state(self) -> CoroutineState:
        return self._state

    async def resume(self, value: Any = None) -> Outcome:
        self._ensure_resumable("resume")
        if self._state is CoroutineState.NOT_STARTED:
            value = None
        return await self._run(self._agen.asend(value))

    async def throw(self, fault: BaseException) -> Outcome:
        self._ensure_resumable("throw into")
        return await self._run(self._agen.athrow(fault))

    async def advance(self) -> Outcome:
        if self._state is CoroutineState.COMPLETED:
            return EXHAUSTED
        return await self.resume()

    async def _astep(self) -> Outcome:
        return await self.resume()

    async def aclose(self) -> CoroutineState:
        if self._state is CoroutineState.NOT_STARTED:
            await self._agen.aclose()
            self._state = CoroutineState.CLOSED
            logger.debug(f"Async coroutine {self.name} closed before starting")
            return self._state

        if self._state is CoroutineState.RUNNING:
            task = self._inflight
            if task is None or task is asyncio.current_task():
                raise ConcurrentAdvanceError(
                    "aclose() called from inside the running coroutine",
                    coroutine=self.name,
                )
            self._state = CoroutineState.CLOSED
            task.cancel()
            await asyncio.wait({task})
            logger.debug(f"Async coroutine {self.name} closed while a step was in flight")
            await self._finish_cleanup()
            if not task.cancelled():
                fault = task.exception()
                if fault is not None and not isinstance(fault, StopAsyncIteration):
                    raise fault
            return self._state

        if self._state in TERMINAL_STATES:
            return self._state

        self._state = CoroutineState.RUNNING
        try:
            await self._agen.athrow(GeneratorExit())
        except (GeneratorExit, StopAsyncIteration):
            pass
        else:
            raise ProtocolViolation(
                "async coroutine yielded a value while running its cleanup",
                coroutine=self.name,
            )
        finally:
            self._state = CoroutineState.CLOSED
            logger.debug(f"Async coroutine {self.name} closed")
        return self._state

    # --------- helpers ----------
    def _ensure_resumable(self, operation: str) -> None:
        if self._state is CoroutineState.RUNNING:
            raise ConcurrentAdvanceError(
                f"cannot {operation} an async coroutine with a step in flight",
                coroutine=self.name,
            )
        if self._state in TERMINAL_STATES:
            raise CoroutineStateError(
                f"cannot {operation} a {self._state.value} async coroutine",
                state=self._state,
                coroutine=self.name,
            )

    async def _run(self, step) -> Outcome:
        self._state = CoroutineState.RUNNING
        task = asyncio.ensure_future(_settle(step))
        self._inflight = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            self._abandon(task)
            raise
        finally:
            self._inflight = None

        if self._state is CoroutineState.CLOSED:
            _consume_outcome(task)
            return EXHAUSTED

        try:
            value = task.result()
        except StopAsyncIteration:
            self._state = CoroutineState.COMPLETED
            logger.debug(f"Async coroutine {self.name} completed")
            return EXHAUSTED
        except BaseException as fault:
            self._state = CoroutineState.FAULTED
            logger.debug(f"Async coroutine {self.name} faulted: {fault!r}")
            raise
        self._state = CoroutineState.SUSPENDED
        return Produced(value)

    def _abandon(self, task: "asyncio.Future") -> None:
        """The consumer was cancelled mid-step: close without waiting."""
        if self._state is CoroutineState.CLOSED:
            return
        self._state = CoroutineState.CLOSED
        task.cancel()
        task.add_done_callback(self._after_abandon)
        logger.debug(f"Async coroutine {self.name} abandoned by a cancelled consumer")

    def _after_abandon(self, task: "asyncio.Future") -> None:
        _consume_outcome(task)
        if self._agen.ag_frame is not None and not self._agen.ag_running:
            # The step never got to run, or settled before the cancel landed.
            self._cleanup_task = asyncio.ensure_future(self._agen.aclose())
            self._cleanup_task.add_done_callback(self._after_cleanup)

    def _after_cleanup(self, task: "asyncio.Future") -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.warning(
                f"Cleanup fault in abandoned async coroutine {self.name}: {task.exception()!r}"
            )

    async def _finish_cleanup(self) -> None:
        if self._agen.ag_frame is not None and not self._agen.ag_running:
            await self._agen.aclose()


# ---------- async sequences ----------

class AsyncSequence(ABC, Generic[T]):
    """Async factory of cursors, chainable like ``Sequence``."""

    single_shot = False

    @abstractmethod
    def new_cursor(self) -> AsyncCursor[T]:
        ...

    def __aiter__(self) -> AsyncCursor[T]:
        return self.new_cursor()

    def map(self, fn) -> "AsyncSequence":
        return AsyncMapped(self, fn)

    def filter(self, pred) -> "AsyncSequence":
        return AsyncFiltered(self, pred)

    def take(self, n: int) -> "AsyncSequence":
        return AsyncTaken(self, n)

    def skip(self, n: int) -> "AsyncSequence":
        return AsyncSkipped(self, n)

    def batch(self, size: int) -> "AsyncSequence":
        return AsyncBatched(self, size)

    def chunk(self, size: int) -> "AsyncSequence":
        """Alias for batch()."""
        return self.batch(size)

    def flatten(self, depth: Optional[int] = None) -> "AsyncSequence":
        return AsyncFlattened(self, depth)

    async def to_list(self) -> list:
        from pullstream.driver import drain_all_async
        return await drain_all_async(self)


class LiftedCursor(AsyncCursor[T]):
    def __init__(self, upstream: Cursor[T]):
        super().__init__()
        self._upstream = upstream

    async def _astep(self) -> Outcome:
        return self._upstream.advance()

    async def _release(self) -> None:
        self._upstream.close()


@dataclass(frozen=True)
class Lifted(AsyncSequence[T]):
    """A synchronous sequence seen through the async protocol."""
    upstream: Sequence[T]

    def new_cursor(self) -> AsyncCursor[T]:
        return LiftedCursor(self.upstream.new_cursor())


@dataclass(frozen=True)
class FromAsyncCoroutine(AsyncSequence[T]):
    factory: Callable[[], AsyncGenerator[T, Any]]

    def __post_init__(self):
        if inspect.isasyncgen(self.factory):
            raise TypeError(
                "from_async_coroutine() needs an async generator factory, "
                "not an async generator"
            )
        if not callable(self.factory):
            raise TypeError(f"{type(self.factory).__name__} is not callable")

    def new_cursor(self) -> AsyncCoroutine[T]:
        return AsyncCoroutine(self.factory())


async def paginate(fetch_page: FetchPage, settings: PaginationSettings) -> AsyncGenerator[Any, None]:
    """
    Yield items page by page. One page is buffered at a time; the next page
    is fetched only once the buffer is empty and the page had a next token.
    """
    token = settings.start_token
    pages_fetched = 0
    while True:
        request = fetch_page(token)
        if settings.fetch_timeout_seconds is not None:
            raw = await asyncio.wait_for(request, settings.fetch_timeout_seconds)
        else:
            raw = await request
        page = Page.coerce(raw)
        pages_fetched += 1
        logger.debug(
            f"Fetched page {pages_fetched} (token={token!r}): "
            f"{len(page.items)} items, next_token={page.next_token!r}"
        )

        for item in page.items:
            yield item

        if page.next_token is None:
            return
        if settings.max_pages is not None and pages_fetched >= settings.max_pages:
            logger.debug(f"Stopping after max_pages={settings.max_pages}")
            return
        token = page.next_token


class AsyncPaginated(AsyncSequence[Any]):
    """
    Lazy stream over a paginated source. Restartable: each cursor starts
    again from ``settings.start_token`` and fetches its own pages.
    """

    def __init__(self, fetch_page: FetchPage, settings: Optional[PaginationSettings] = None):
        if not callable(fetch_page):
            raise TypeError(f"{type(fetch_page).__name__} is not callable")
        self.fetch_page = fetch_page
        self.settings = settings or PaginationSettings()

    def new_cursor(self) -> AsyncCoroutine[Any]:
        return AsyncCoroutine(paginate(self.fetch_page, self.settings), name="paginate")


# ---------- async operator cursors ----------

class AsyncMapCursor(AsyncCursor[U]):
    def __init__(self, upstream: AsyncCursor[T], fn):
        super().__init__()
        self._upstream = upstream
        self._fn = fn

    async def _astep(self) -> Outcome:
        outcome = await self._upstream.advance()
        if not outcome:
            return EXHAUSTED
        return Produced(await maybe_await(self._fn(outcome.value)))

    async def _release(self) -> None:
        await self._upstream.aclose()


class AsyncFilterCursor(AsyncCursor[T]):
    def __init__(self, upstream: AsyncCursor[T], pred):
        super().__init__()
        self._upstream = upstream
        self._pred = pred

    async def _astep(self) -> Outcome:
        while True:
            outcome = await self._upstream.advance()
            if not outcome:
                return EXHAUSTED
            if await maybe_await(self._pred(outcome.value)):
                return outcome

    async def _release(self) -> None:
        await self._upstream.aclose()


class AsyncTakeCursor(AsyncCursor[T]):
    def __init__(self, upstream: AsyncCursor[T], n: int):
        super().__init__()
        self._upstream = upstream
        self._remaining = n

    async def _astep(self) -> Outcome:
        if self._remaining <= 0:
            await self._upstream.aclose()
            return EXHAUSTED
        outcome = await self._upstream.advance()
        if not outcome:
            return EXHAUSTED
        self._remaining -= 1
        return outcome

    async def _release(self) -> None:
        await self._upstream.aclose()


class AsyncSkipCursor(AsyncCursor[T]):
    def __init__(self, upstream: AsyncCursor[T], n: int):
        super().__init__()
        self._upstream = upstream
        self._to_skip = n

    async def _astep(self) -> Outcome:
        while self._to_skip > 0:
            self._to_skip -= 1
            if not await self._upstream.advance():
                return EXHAUSTED
        return await self._upstream.advance()

    async def _release(self) -> None:
        await self._upstream.aclose()


class AsyncBatchCursor(AsyncCursor[tuple]):
    def __init__(self, upstream: AsyncCursor[Any], size: int):
        super().__init__()
        self._upstream = upstream
        self._size = size

    async def _astep(self) -> Outcome:
        bucket: List[Any] = []
        while len(bucket) < self._size:
            outcome = await self._upstream.advance()
            if not outcome:
                break
            bucket.append(outcome.value)
        if not bucket:
            return EXHAUSTED
        return Produced(tuple(bucket))

    async def _release(self) -> None:
        await self._upstream.aclose()


def _is_nested_async(value: Any) -> bool:
    if isinstance(value, ATOMIC_TYPES):
        return False
    return isinstance(value, (AsyncSequence, AsyncCursor)) or is_nested(value)


def _async_cursor_for(value: Any) -> AsyncCursor:
    if isinstance(value, AsyncSequence):
        return value.new_cursor()
    if isinstance(value, AsyncCursor):
        return value
    if inspect.isasyncgen(value):
        return AsyncCoroutine(value)
    return LiftedCursor(cursor_for(value))


class AsyncFlattenCursor(AsyncCursor[Any]):
    def __init__(self, upstream: AsyncCursor[Any], depth: Optional[int]):
        super().__init__()
        self._upstream = upstream
        self._depth = depth
        self._stack: List[Tuple[AsyncCursor[Any], int]] = [(upstream, 0)]

    async def _astep(self) -> Outcome:
        while self._stack:
            cursor, level = self._stack[-1]
            outcome = await cursor.advance()
            if not outcome:
                self._stack.pop()
                continue
            value = outcome.value
            if (self._depth is None or level < self._depth) and _is_nested_async(value):
                self._stack.append((_async_cursor_for(value), level + 1))
                continue
            return outcome
        return EXHAUSTED

    async def _release(self) -> None:
        cursors = [cursor for cursor, _ in reversed(self._stack)]
        if not any(cursor is self._upstream for cursor in cursors):
            cursors.append(self._upstream)
        self._stack = []
        await aclose_all(cursors)


# ---------- async stage records ----------

@dataclass(frozen=True)
class AsyncMapped(AsyncSequence[U]):
    upstream: AsyncSequence[T]
    fn: Callable[[T], Any]

    def new_cursor(self) -> AsyncCursor[U]:
        return AsyncMapCursor(self.upstream.new_cursor(), self.fn)


@dataclass(frozen=True)
class AsyncFiltered(AsyncSequence[T]):
    upstream: AsyncSequence[T]
    pred: Callable[[T], Any]

    def new_cursor(self) -> AsyncCursor[T]:
        return AsyncFilterCursor(self.upstream.new_cursor(), self.pred)


@dataclass(frozen=True)
class AsyncTaken(AsyncSequence[T]):
    upstream: AsyncSequence[T]
    n: int

    def __post_init__(self):
        check_count("take count", self.n)

    def new_cursor(self) -> AsyncCursor[T]:
        return AsyncTakeCursor(self.upstream.new_cursor(), self.n)


@dataclass(frozen=True)
class AsyncSkipped(AsyncSequence[T]):
    upstream: AsyncSequence[T]
    n: int

    def __post_init__(self):
        check_count("skip count", self.n)

    def new_cursor(self) -> AsyncCursor[T]:
        return AsyncSkipCursor(self.upstream.new_cursor(), self.n)


@dataclass(frozen=True)
class AsyncBatched(AsyncSequence[tuple]):
    upstream: AsyncSequence[Any]
    size: int

    def __post_init__(self):
        check_count("batch size", self.size, minimum=1)

    def new_cursor(self) -> AsyncCursor[tuple]:
        return AsyncBatchCursor(self.upstream.new_cursor(), self.size)


@dataclass(frozen=True)
class AsyncFlattened(AsyncSequence[Any]):
    upstream: AsyncSequence[Any]
    depth: Optional[int] = None

    def __post_init__(self):
        if self.depth is not None:
            check_count("flatten depth", self.depth)

    def new_cursor(self) -> AsyncCursor[Any]:
        return AsyncFlattenCursor(self.upstream.new_cursor(), self.depth)


# ---------- construction API ----------

def to_async(seq: Sequence[T]) -> Lifted[T]:
    if not isinstance(seq, Sequence):
        raise TypeError(f"expected a Sequence, got {type(seq).__name__}")
    return Lifted(seq)


def from_async_coroutine(factory: Callable[[], AsyncGenerator[T, Any]]) -> FromAsyncCoroutine[T]:
    return FromAsyncCoroutine(factory)


def from_async_paginated_fetch(
    fetch_page: FetchPage, settings: Optional[PaginationSettings] = None
) -> AsyncPaginated:
    return AsyncPaginated(fetch_page, settings)
