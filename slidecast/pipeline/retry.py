from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

log = logging.getLogger(__name__)


def linear_backoff(step: float) -> Callable[[int], float]:
    """Delay of ``step * attempt`` seconds after the given failed attempt."""

    def _delay(attempt: int) -> float:
        return max(0.0, step * attempt)

    return _delay


def _always(_: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    backoff: Callable[[int], float] = field(default=linear_backoff(1.0))
    retryable: Callable[[BaseException], bool] = field(default=_always)

    @classmethod
    def linear(
        cls,
        retries: int,
        step: float,
        retryable: Callable[[BaseException], bool] = _always,
    ) -> "RetryPolicy":
        """One initial attempt plus ``retries`` more, spaced linearly."""
        return cls(max_attempts=max(1, retries + 1), backoff=linear_backoff(step), retryable=retryable)

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not self.retryable(exc):
                    raise
                delay = self.backoff(attempt)
                log.info(
                    "%s failed, retrying",
                    label,
                    extra={"attempt": attempt, "max_attempts": self.max_attempts, "delay": delay, "error": str(exc)},
                )
                await sleep(delay)
