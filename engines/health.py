"""Pre-flight liveness probe for the backing store."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from time import perf_counter
from typing import Awaitable, Callable

from schemas import HealthStatus

logger = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[object]]

DEFAULT_HEALTH_TIMEOUT = 5.0


async def check_health(probe: Probe, timeout: float = DEFAULT_HEALTH_TIMEOUT) -> HealthStatus:
    """Run ``probe`` once under ``timeout`` and report the store's health.

    Any exception or a probe that outlives ``timeout`` yields
    ``healthy=False``; only cancellation of the calling task propagates.
    """

    checked_at = datetime.now(timezone.utc)
    start = perf_counter()
    error: str | None = None
    try:
        await asyncio.wait_for(probe(), timeout=timeout)
    except asyncio.TimeoutError:
        error = f"probe timed out after {timeout:.3f}s"
    except Exception as exc:
        error = f"{exc.__class__.__name__}: {exc}"
    latency = perf_counter() - start

    if error is not None:
        logger.warning("Store health check failed in %d ms: %s", int(latency * 1000), error)
        return HealthStatus(healthy=False, checked_at=checked_at, latency=latency, error=error)

    logger.debug("Store health check passed in %d ms", int(latency * 1000))
    return HealthStatus(healthy=True, checked_at=checked_at, latency=latency)


class HealthGate:
    """Bind a probe and timeout so call sites can ask ``await gate.check()``."""

    def __init__(self, probe: Probe, timeout: float = DEFAULT_HEALTH_TIMEOUT) -> None:
        if timeout <= 0:
            raise ValueError("health timeout must be positive")
        self.probe = probe
        self.timeout = timeout

    async def check(self) -> HealthStatus:
        return await check_health(self.probe, self.timeout)

    async def is_healthy(self) -> bool:
        status = await self.check()
        return status.healthy
