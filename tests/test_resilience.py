import asyncio
import sqlite3

import pytest

from engines.backoff import BackoffPolicy
from engines.errors import (
    ConstraintViolation,
    ErrorKind,
    NotFound,
    StoreTimeout,
    StoreUnavailable,
    UnknownStoreError,
    classify_error,
)
from engines.resilience import MISSING, ResilienceConfig, ResilientExecutor


class _Op:
    """Operation double that replays scripted behaviours per call."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        step = self.steps[min(self.calls, len(self.steps)) - 1]
        if step == "hang":
            await asyncio.sleep(5)
        if isinstance(step, BaseException):
            raise step
        return step


def _executor(sleep):
    return ResilientExecutor(BackoffPolicy(base=1.0), sleep=sleep)


def test_success_on_first_attempt(recorded_sleeps):
    op = _Op("ok")
    outcome = asyncio.run(_executor(recorded_sleeps).execute_with_outcome(op, ResilienceConfig()))
    assert outcome.value == "ok"
    assert outcome.degraded is False
    assert outcome.attempts == 1
    assert recorded_sleeps.delays == []


def test_timeouts_exhaust_retries_then_use_fallback(recorded_sleeps):
    op = _Op("hang")
    config = ResilienceConfig(max_retries=3, per_attempt_timeout=0.02, fallback=["mock"])
    outcome = asyncio.run(_executor(recorded_sleeps).execute_with_outcome(op, config, name="list_courses"))
    assert op.calls == 3
    assert outcome.value == ["mock"]
    assert outcome.degraded is True
    assert outcome.error_kind is ErrorKind.TIMEOUT
    assert outcome.errors == [ErrorKind.TIMEOUT] * 3
    assert recorded_sleeps.delays == [1.0, 2.0]


def test_timeouts_without_fallback_raise_timeout(recorded_sleeps):
    op = _Op("hang")
    config = ResilienceConfig(max_retries=2, per_attempt_timeout=0.02)
    with pytest.raises(StoreTimeout):
        asyncio.run(_executor(recorded_sleeps).execute(op, config))
    assert op.calls == 2
    assert recorded_sleeps.delays == [1.0]


def test_recovers_on_second_attempt_without_third(recorded_sleeps):
    op = _Op(StoreUnavailable("down"), "ok", "never")
    config = ResilienceConfig(max_retries=3, fallback="fallback")
    outcome = asyncio.run(_executor(recorded_sleeps).execute_with_outcome(op, config))
    assert outcome.value == "ok"
    assert outcome.degraded is False
    assert outcome.attempts == 2
    assert op.calls == 2
    assert recorded_sleeps.delays == [1.0]


@pytest.mark.parametrize("error", [ConstraintViolation("dup"), NotFound("gone")])
def test_terminal_errors_propagate_even_with_fallback(recorded_sleeps, error):
    op = _Op(error)
    config = ResilienceConfig(max_retries=3, fallback="fallback")
    with pytest.raises(type(error)):
        asyncio.run(_executor(recorded_sleeps).execute(op, config))
    assert op.calls == 1
    assert recorded_sleeps.delays == []


def test_sqlite_integrity_error_is_terminal(recorded_sleeps):
    op = _Op(sqlite3.IntegrityError("UNIQUE constraint failed: users.email"))
    with pytest.raises(ConstraintViolation) as excinfo:
        asyncio.run(_executor(recorded_sleeps).execute(op, ResilienceConfig(max_retries=3)))
    assert op.calls == 1
    assert isinstance(excinfo.value.__cause__, sqlite3.IntegrityError)


def test_unknown_errors_retried_once(recorded_sleeps):
    op = _Op(RuntimeError("boom"))
    config = ResilienceConfig(max_retries=5, fallback="fallback")
    outcome = asyncio.run(_executor(recorded_sleeps).execute_with_outcome(op, config))
    assert op.calls == 2
    assert outcome.degraded is True
    assert outcome.error_kind is ErrorKind.UNKNOWN


def test_unknown_errors_without_fallback_raise(recorded_sleeps):
    op = _Op(RuntimeError("boom"))
    with pytest.raises(UnknownStoreError):
        asyncio.run(_executor(recorded_sleeps).execute(op, ResilienceConfig(max_retries=5)))
    assert op.calls == 2


def test_none_is_a_valid_fallback(recorded_sleeps):
    op = _Op(StoreUnavailable("down"))
    config = ResilienceConfig(max_retries=2, fallback=None)
    outcome = asyncio.run(_executor(recorded_sleeps).execute_with_outcome(op, config))
    assert outcome.value is None
    assert outcome.degraded is True


def test_config_validation():
    assert ResilienceConfig().fallback is MISSING
    assert ResilienceConfig().has_fallback is False
    with pytest.raises(ValueError):
        ResilienceConfig(max_retries=0)
    with pytest.raises(ValueError):
        ResilienceConfig(per_attempt_timeout=0)


def test_classify_error_by_type():
    assert classify_error(asyncio.TimeoutError()) is ErrorKind.TIMEOUT
    assert classify_error(sqlite3.IntegrityError("x")) is ErrorKind.CONSTRAINT_VIOLATION
    assert classify_error(sqlite3.OperationalError("locked")) is ErrorKind.STORE_UNAVAILABLE
    assert classify_error(ConnectionRefusedError()) is ErrorKind.STORE_UNAVAILABLE
    assert classify_error(NotFound("x")) is ErrorKind.NOT_FOUND
    assert classify_error(KeyError("x")) is ErrorKind.UNKNOWN
    assert ErrorKind.TIMEOUT.retryable and not ErrorKind.NOT_FOUND.retryable


def test_caller_cancellation_propagates(recorded_sleeps):
    async def _run():
        started = asyncio.Event()

        async def op():
            started.set()
            await asyncio.sleep(10)

        config = ResilienceConfig(max_retries=3, per_attempt_timeout=5.0, fallback="fallback")
        task = asyncio.create_task(_executor(recorded_sleeps).execute(op, config))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_run())
    assert recorded_sleeps.delays == []


def test_loop_without_attempts_raises_instead_of_returning(recorded_sleeps):
    config = ResilienceConfig(max_retries=1, fallback="fallback")
    # Bypasses validation to reach the no-attempt branch.
    object.__setattr__(config, "max_retries", 0)
    op = _Op("ok")
    with pytest.raises(RuntimeError, match="made no attempts"):
        asyncio.run(_executor(recorded_sleeps).execute(op, config, name="list_courses"))
    assert op.calls == 0
