"""Health-gated, retrying access to the blocking store from async handlers."""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import logging
from typing import Any, Awaitable, Callable, Optional

from engines.errors import ErrorKind, StoreUnavailable
from engines.health import HealthGate
from engines.resilience import MISSING, Outcome, ResilienceConfig, ResilientExecutor

logger = logging.getLogger(__name__)


def store_operation(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Callable[[], Awaitable[Any]]:
    """Adapt a blocking store call into a zero-argument async operation."""

    return functools.partial(asyncio.to_thread, fn, *args, **kwargs)


class GuardedStore:
    """Route store calls through the health gate and the resilient executor.

    When the gate reports the store down, calls with a fallback return it
    immediately (degraded) and calls without one raise ``StoreUnavailable``
    without touching the store.
    """

    def __init__(
        self,
        executor: ResilientExecutor,
        gate: HealthGate,
        *,
        read_policy: ResilienceConfig,
        write_policy: ResilienceConfig,
    ) -> None:
        self.executor = executor
        self.gate = gate
        self.read_policy = read_policy
        self.write_policy = write_policy

    async def read(
        self,
        fn: Callable[..., Any],
        *args: Any,
        fallback: Any = MISSING,
        name: Optional[str] = None,
        check_health: bool = True,
    ) -> Outcome:
        return await self._run(self.read_policy, fn, args, fallback, name, check_health)

    async def write(
        self,
        fn: Callable[..., Any],
        *args: Any,
        fallback: Any = MISSING,
        name: Optional[str] = None,
        check_health: bool = True,
    ) -> Outcome:
        return await self._run(self.write_policy, fn, args, fallback, name, check_health)

    async def _run(
        self,
        policy: ResilienceConfig,
        fn: Callable[..., Any],
        args: tuple,
        fallback: Any,
        name: Optional[str],
        check_health: bool,
    ) -> Outcome:
        op_name = name or getattr(fn, "__name__", "store_op")
        if check_health:
            status = await self.gate.check()
            if not status.healthy:
                if fallback is MISSING:
                    raise StoreUnavailable(f"{op_name} skipped: store unhealthy ({status.error})")
                logger.warning("%s served from fallback: store unhealthy", op_name)
                return Outcome(
                    value=fallback,
                    degraded=True,
                    attempts=0,
                    error_kind=ErrorKind.STORE_UNAVAILABLE,
                )
        config = dataclasses.replace(policy, fallback=fallback)
        return await self.executor.execute_with_outcome(store_operation(fn, *args), config, name=op_name)
