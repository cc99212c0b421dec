"""
Driver tests: eager drains, early exit and reductions
"""

import asyncio

import pytest

from pullstream import (
    CursorState,
    count,
    drain_all,
    drain_all_async,
    drain_until,
    drain_until_async,
    find,
    first,
    for_each,
    for_each_async,
    from_async_coroutine,
    from_async_paginated_fetch,
    from_collection,
    from_coroutine,
    from_range,
    reduce,
    to_async,
)


class TestDrainAll:
    """Collect everything, in order"""

    def test_scenario(self):
        seq = from_range(1, 10).filter(lambda x: x % 2 == 0).map(lambda x: x * 10)
        assert drain_all(seq) == [20, 40, 60, 80, 100]
        assert seq.to_list() == [20, 40, 60, 80, 100]

    def test_empty(self):
        assert drain_all(from_collection([])) == []

    def test_fault_propagates_without_partial_result(self):
        def body():
            yield 1
            raise OSError("disk gone")

        with pytest.raises(OSError, match="disk gone"):
            drain_all(from_coroutine(body))

    def test_rejects_non_sequences(self):
        with pytest.raises(TypeError):
            drain_all([1, 2, 3])


class TestDrainUntil:
    """Stops at the first match and leaves the cursor paused"""

    def test_stops_without_advancing_past_the_match(self, cleanup_log, counting_source):
        drained = drain_until(from_coroutine(counting_source), lambda x: x == 3)

        assert drained.found
        assert drained.match.value == 3
        assert drained.values == [0, 1, 2, 3]
        assert counting_source.pulls == [0, 1, 2, 3], "nothing after the match may be pulled"
        assert cleanup_log == [], "the cursor is paused, not closed"

        assert drained.cursor.advance().value == 4
        drained.cursor.close()
        assert cleanup_log == ["numbers"]

    def test_no_match(self):
        drained = drain_until(from_range(1, 3), lambda x: x > 5)
        assert not drained.found
        assert drained.values == [1, 2, 3]

    def test_manual_stepping_then_drain(self):
        cursor = from_range(1, 5).new_cursor()
        cursor.advance()
        assert drain_until(cursor, lambda x: x == 3).values == [2, 3]
        assert drain_all(cursor) == [4, 5]


class TestForEach:
    def test_side_effects_in_order(self):
        seen = []
        for_each(from_range(1, 4), seen.append)
        assert seen == [1, 2, 3, 4]

    def test_chained_form(self):
        seen = []
        from_collection("abc").for_each(seen.append)
        assert seen == ["a", "b", "c"]


class TestReductions:
    """reduce / count / first / find"""

    def test_reduce(self):
        assert reduce(from_range(1, 4), lambda a, b: a + b) == 10
        assert from_range(1, 4).reduce(lambda a, b: a * b, 10) == 240

    def test_reduce_empty(self):
        assert reduce(from_collection([]), lambda a, b: a + b, 0) == 0
        with pytest.raises(TypeError):
            reduce(from_collection([]), lambda a, b: a + b)

    def test_count(self):
        assert count(from_range(1, 10).filter(lambda x: x % 3 == 0)) == 3
        assert from_collection([]).count() == 0

    def test_first_and_find_close_their_own_cursor(self, cleanup_log, counting_source):
        seq = from_coroutine(counting_source)
        assert first(seq) == 0
        assert cleanup_log == ["numbers"]

        assert find(seq, lambda x: x > 2) == 3
        assert cleanup_log == ["numbers", "numbers"]

    def test_find_leaves_a_borrowed_cursor_open(self):
        cursor = from_range(1, 10).new_cursor()
        assert find(cursor, lambda x: x % 4 == 0) == 4
        assert cursor.state is CursorState.READY
        assert cursor.advance().value == 5

    def test_defaults(self):
        assert first(from_collection([]), default="none") == "none"
        assert from_range(1, 3).find(lambda x: x > 3, default=-1) == -1


class TestAsyncDrivers:
    """Never more than one advance in flight"""

    @pytest.mark.asyncio
    async def test_drain_all_async(self, six_item_pages):
        assert await drain_all_async(from_async_paginated_fetch(six_item_pages)) == list(range(6))
        assert six_item_pages.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_drain_until_async_with_async_predicate(self, six_item_pages):
        async def is_three(x):
            await asyncio.sleep(0)
            return x == 3

        drained = await drain_until_async(from_async_paginated_fetch(six_item_pages), is_three)
        assert drained.values == [0, 1, 2, 3]
        assert six_item_pages.fetch_count == 2
        await drained.cursor.aclose()

    @pytest.mark.asyncio
    async def test_for_each_async(self):
        seen = []

        async def record(x):
            seen.append(x)

        await for_each_async(to_async(from_range(1, 3)), record)
        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_async_drivers_reject_sync_sequences(self):
        with pytest.raises(TypeError):
            await drain_all_async(from_range(1, 3))


def boom(*args):
    raise ValueError("consumer failed")


class TestCleanupOnConsumerFault:
    """A raising callback closes the cursor the driver created"""

    @pytest.mark.parametrize("consume", [
        lambda seq: for_each(seq, boom),
        lambda seq: reduce(seq, boom),
        lambda seq: find(seq, boom),
        lambda seq: drain_until(seq, boom),
    ])
    def test_owned_cursor_is_closed(self, cleanup_log, counting_source, consume):
        with pytest.raises(ValueError, match="consumer failed"):
            consume(from_coroutine(counting_source))
        assert cleanup_log == ["numbers"], "generator cleanup must run before the fault escapes"

    def test_borrowed_cursor_is_left_alone(self, cleanup_log, counting_source):
        cursor = from_coroutine(counting_source).new_cursor()
        with pytest.raises(ValueError):
            for_each(cursor, boom)
        assert cleanup_log == []

        assert cursor.advance().value == 1
        cursor.close()
        assert cleanup_log == ["numbers"]

    def test_cleanup_fault_is_suppressed_onto_the_consumer_fault(self):
        def body():
            try:
                yield 1
            finally:
                raise RuntimeError("cleanup failed")

        with pytest.raises(ValueError) as exc_info:
            for_each(from_coroutine(body), boom)
        assert [str(e) for e in exc_info.value.suppressed] == ["cleanup failed"]

    @pytest.mark.asyncio
    async def test_async_owned_cursor_is_closed(self):
        log = []

        async def numbers():
            try:
                i = 0
                while True:
                    yield i
                    i += 1
            finally:
                log.append("cleanup")

        with pytest.raises(ValueError):
            await for_each_async(from_async_coroutine(numbers), boom)
        assert log == ["cleanup"]

        async def failing_predicate(x):
            raise ValueError("consumer failed")

        with pytest.raises(ValueError):
            await drain_until_async(from_async_coroutine(numbers), failing_predicate)
        assert log == ["cleanup", "cleanup"]
