"""Exponential backoff schedule used between store retries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class BackoffPolicy:
    """Map an attempt number to the wait before the next attempt.

    ``delay(attempt) == base * 2 ** (attempt - 1)``. There is no upper cap;
    callers bound the total wait through ``max_retries``.
    """

    base: float = 1.0

    def __post_init__(self) -> None:
        if self.base < 0:
            raise ValueError("base delay cannot be negative")

    def delay(self, attempt: int) -> float:
        """Return the wait in seconds after failed ``attempt`` (1-based)."""

        if attempt < 1:
            raise ValueError(f"attempt must be >= 1 (got {attempt})")
        return self.base * (2 ** (attempt - 1))

    def schedule(self, max_retries: int) -> List[float]:
        """Return the waits taken between ``max_retries`` attempts."""

        return [self.delay(attempt) for attempt in range(1, max(0, max_retries))]
