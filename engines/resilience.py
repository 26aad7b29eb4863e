"""Retry, timeout and fallback handling for calls into the backing store.

Every store access in the application goes through :class:`ResilientExecutor`.
An operation is a zero-argument callable returning an awaitable; synchronous
store functions are adapted with ``functools.partial(asyncio.to_thread, fn, ...)``.

Per attempt the operation races ``per_attempt_timeout``. A timed-out attempt
is cancelled and abandoned; work already handed to a worker thread may still
finish, so operations must be safe to abandon (idempotent reads, or writes
guarded by uniqueness constraints).
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from engines.backoff import BackoffPolicy
from engines.errors import ErrorKind, StoreError, StoreTimeout, as_store_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[Any]]


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()
"""Sentinel meaning "no fallback"; ``None`` is a valid fallback value."""

# Unknown failures get exactly one retry before they are surfaced.
_UNKNOWN_ATTEMPT_LIMIT = 2


@dataclass(frozen=True)
class ResilienceConfig(Generic[T]):
    max_retries: int = 2
    per_attempt_timeout: float = 10.0
    fallback: Any = MISSING

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.per_attempt_timeout <= 0:
            raise ValueError("per_attempt_timeout must be positive")

    @property
    def has_fallback(self) -> bool:
        return self.fallback is not MISSING


@dataclass
class Outcome(Generic[T]):
    """Result of a resilient call, including whether it was degraded."""

    value: T
    degraded: bool = False
    attempts: int = 0
    error_kind: Optional[ErrorKind] = None
    errors: list = field(default_factory=list)


def _json_log(event: str, payload: Dict[str, Any]) -> None:
    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        message = json.dumps(
            {"event": event, "error": "serialization_failed", "payload_repr": repr(payload)},
            sort_keys=True,
        )
    logger.warning(message)


class ResilientExecutor:
    """Run store operations with bounded retries and tiered fallback."""

    def __init__(
        self,
        backoff: Optional[BackoffPolicy] = None,
        *,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.backoff = backoff or BackoffPolicy()
        self._sleep = sleep or asyncio.sleep

    async def execute(self, op: Operation[T], config: ResilienceConfig[T], *, name: str = "store_op") -> T:
        """Return the first successful result of ``op`` or the configured fallback.

        Raises the last :class:`StoreError` when retries are exhausted and no
        fallback is configured, and raises constraint violations and
        not-found errors immediately.
        """

        outcome = await self.execute_with_outcome(op, config, name=name)
        return outcome.value

    async def execute_with_outcome(
        self,
        op: Operation[T],
        config: ResilienceConfig[T],
        *,
        name: str = "store_op",
    ) -> Outcome[T]:
        last_error: Optional[StoreError] = None
        errors: list[ErrorKind] = []
        unknown_failures = 0
        attempt = 0

        for attempt in range(1, config.max_retries + 1):
            start = perf_counter()
            try:
                value = await asyncio.wait_for(op(), timeout=config.per_attempt_timeout)
            except asyncio.TimeoutError:
                error = StoreTimeout(f"{name} timed out after {config.per_attempt_timeout:.3f}s")
            except Exception as exc:
                error = as_store_error(exc)
            else:
                if attempt > 1:
                    logger.info("%s succeeded on attempt %d/%d", name, attempt, config.max_retries)
                return Outcome(value=value, attempts=attempt, errors=errors)

            latency_ms = int((perf_counter() - start) * 1000)
            last_error = error
            errors.append(error.kind)
            logger.warning(
                "%s attempt %d/%d failed after %d ms (%s): %s",
                name,
                attempt,
                config.max_retries,
                latency_ms,
                error.kind.value,
                error,
            )

            if error.kind.terminal:
                raise error

            if error.kind is ErrorKind.UNKNOWN:
                unknown_failures += 1
                if unknown_failures >= _UNKNOWN_ATTEMPT_LIMIT:
                    break

            if attempt < config.max_retries:
                await self._sleep(self.backoff.delay(attempt))

        if last_error is None:
            raise RuntimeError(f"{name} made no attempts")
        if config.has_fallback:
            _json_log(
                "degraded_response",
                {
                    "operation": name,
                    "attempts": attempt,
                    "error_kind": last_error.kind.value,
                    "error": str(last_error),
                },
            )
            return Outcome(
                value=config.fallback,
                degraded=True,
                attempts=attempt,
                error_kind=last_error.kind,
                errors=errors,
            )
        raise last_error
