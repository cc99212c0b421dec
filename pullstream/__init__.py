"""
pullstream: lazy sequences and pull-driven streaming pipelines.

    >>> from pullstream import from_range
    >>> from_range(1, 10).filter(lambda x: x % 2 == 0).map(lambda x: x * 10).to_list()
    [20, 40, 60, 80, 100]
"""

from pullstream.async_engine import (
    AsyncCoroutine,
    AsyncCursor,
    AsyncPaginated,
    AsyncSequence,
    from_async_coroutine,
    from_async_paginated_fetch,
    to_async,
)
from pullstream.coroutine import Coroutine, CoroutineState
from pullstream.cursor import EXHAUSTED, Cursor, CursorState, Exhausted, Produced, close_all
from pullstream.driver import (
    Drained,
    count,
    drain_all,
    drain_all_async,
    drain_until,
    drain_until_async,
    find,
    first,
    for_each,
    for_each_async,
    reduce,
)
from pullstream.errors import (
    ConcurrentAdvanceError,
    CoroutineStateError,
    PageFormatError,
    ProtocolViolation,
    SingleShotError,
    StreamError,
)
from pullstream.models import Page, PaginationSettings
from pullstream.operators import batch, chunk, filter, flatten, map, page, skip, take
from pullstream.sequence import (
    Sequence,
    from_collection,
    from_coroutine,
    from_iterator,
    from_range,
)

__version__ = "0.1.0"
