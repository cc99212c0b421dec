"""
Coroutine engine tests: lifecycle, value injection, fault channel and the
cleanup contract of close().
"""

import pytest

from pullstream import (
    EXHAUSTED,
    ConcurrentAdvanceError,
    Coroutine,
    CoroutineState,
    CoroutineStateError,
    Produced,
    ProtocolViolation,
)


def echo():
    """Yields back whatever is injected, prefixed with the step number"""
    first = yield "ready"
    second = yield f"got {first}"
    return f"done with {second}"


class TestLifecycle:
    """NotStarted -> Suspended -> Completed"""

    def test_states_through_a_full_run(self):
        co = Coroutine(echo())
        assert co.state is CoroutineState.NOT_STARTED

        assert co.resume() == Produced("ready")
        assert co.state is CoroutineState.SUSPENDED

        assert co.resume("A") == Produced("got A")
        assert co.resume("B") is EXHAUSTED
        assert co.state is CoroutineState.COMPLETED
        assert co.return_value == "done with B"

    def test_requires_a_generator(self):
        with pytest.raises(TypeError):
            Coroutine([1, 2, 3])

    def test_resume_after_completion_is_a_protocol_violation(self):
        co = Coroutine(x for x in [1])
        co.resume()
        co.resume()
        with pytest.raises(CoroutineStateError) as exc_info:
            co.resume()
        assert exc_info.value.state is CoroutineState.COMPLETED

    def test_advance_after_completion_stays_exhausted(self):
        co = Coroutine(x for x in [1])
        assert co.advance() == Produced(1)
        assert co.advance() is EXHAUSTED
        assert co.advance() is EXHAUSTED

    def test_reentrant_resume_faults_the_coroutine(self):
        holder = {}

        def body():
            yield holder["co"].resume()

        co = Coroutine(body())
        holder["co"] = co
        with pytest.raises(ConcurrentAdvanceError):
            co.resume()
        assert co.state is CoroutineState.FAULTED


class TestInjection:
    """Values passed to resume() become the result of the paused yield"""

    def test_injected_values_reach_their_yield_expressions(self):
        observed = []

        def two_yields():
            observed.append((yield 1))
            observed.append((yield 2))

        co = Coroutine(two_yields())
        co.resume("ignored")
        co.resume("A")
        co.resume("B")
        assert observed == ["A", "B"]

    def test_first_resume_ignores_the_injected_value(self):
        co = Coroutine(echo())
        assert co.resume("too early") == Produced("ready")
        assert co.resume("A") == Produced("got A")


class TestFaultChannel:
    """throw() raises at the suspension point"""

    def test_handled_fault_lets_the_body_continue(self):
        def resilient():
            try:
                yield 1
            except ValueError as e:
                yield f"recovered from {e}"
            yield 3

        co = Coroutine(resilient())
        co.resume()
        assert co.throw(ValueError("boom")) == Produced("recovered from boom")
        assert co.resume() == Produced(3)

    def test_unhandled_fault_propagates_and_faults(self):
        co = Coroutine(echo())
        co.resume()
        with pytest.raises(KeyError):
            co.throw(KeyError("missing"))
        assert co.state is CoroutineState.FAULTED

        with pytest.raises(CoroutineStateError):
            co.resume()
        with pytest.raises(CoroutineStateError):
            co.advance()

    def test_fault_raised_by_the_body(self):
        def broken():
            yield 1
            raise RuntimeError("producer failed")

        co = Coroutine(broken())
        co.advance()
        with pytest.raises(RuntimeError, match="producer failed"):
            co.advance()
        assert co.state is CoroutineState.FAULTED


class TestClose:
    """close() runs pending cleanup blocks exactly once"""

    def test_close_runs_nested_cleanup_innermost_first(self):
        log = []

        def nested():
            try:
                try:
                    yield 1
                    yield 2
                finally:
                    log.append("inner")
            finally:
                log.append("outer")

        co = Coroutine(nested())
        co.resume()
        assert co.close() is CoroutineState.CLOSED
        assert log == ["inner", "outer"]

        assert co.close() is CoroutineState.CLOSED
        assert log == ["inner", "outer"], "a second close must not rerun cleanup"

    def test_close_before_start_runs_nothing(self):
        log = []

        def body():
            log.append("started")
            yield 1

        co = Coroutine(body())
        assert co.close() is CoroutineState.CLOSED
        assert log == []
        with pytest.raises(CoroutineStateError):
            co.resume()

    def test_close_on_terminal_states_is_a_no_op(self):
        co = Coroutine(x for x in [])
        co.resume()
        assert co.state is CoroutineState.COMPLETED
        assert co.close() is CoroutineState.COMPLETED

    def test_closed_coroutine_cannot_be_advanced(self):
        co = Coroutine(x for x in [1, 2])
        co.advance()
        co.close()
        with pytest.raises(CoroutineStateError):
            co.advance()

    def test_cleanup_fault_propagates_to_close_caller(self):
        def faulty_cleanup():
            try:
                yield 1
            finally:
                raise ValueError("cleanup failed")

        co = Coroutine(faulty_cleanup())
        co.resume()
        with pytest.raises(ValueError, match="cleanup failed"):
            co.close()
        assert co.state is CoroutineState.CLOSED

    def test_yielding_during_cleanup_is_a_protocol_violation(self):
        def stubborn():
            try:
                yield 1
            finally:
                yield 2

        co = Coroutine(stubborn())
        co.resume()
        with pytest.raises(ProtocolViolation):
            co.close()
        assert co.state is CoroutineState.CLOSED
