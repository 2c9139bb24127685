"""
Abstract base classes for quota strategies.

This module defines the contract that all counting algorithms must follow.
Using the Strategy Pattern lets the boundary layer switch between the
fixed-window counter and the sliding-window log without changing the
request-handling code.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from tollgate.core.backends.base import AtomicStore
from tollgate.core.errors import StoreTimeout


@dataclass(frozen=True)
class QuotaResult:
    """
    Immutable decision returned by a quota check.

    Attributes:
        allowed: Whether the request should proceed.
        count: Requests recorded for the identifier in the current window,
            including this one (rejected attempts are counted too).
        limit: Maximum number of requests allowed in the window.
        window_seconds: Duration of the window in seconds.

    Example headers this maps to:
        X-RateLimit-Limit: {limit}
        X-RateLimit-Remaining: {remaining}
    """

    allowed: bool
    count: int
    limit: int
    window_seconds: int

    @property
    def remaining(self) -> int:
        """Requests left in the current window, never negative."""
        return max(0, self.limit - self.count)


class QuotaStrategy(ABC):
    """
    Abstract base class for quota-accounting algorithms.

    Subclasses provide the key layout and the store transaction; the base
    class owns argument checking, the deadline and the decision itself, so
    every algorithm answers ``allowed = count <= limit`` the same way.

    A strategy keeps no counts between calls. Any number of tasks may call
    ``check`` concurrently; all serialization happens inside the store.
    """

    #: Short algorithm name used in logs and the health endpoint
    name: str = ""

    def __init__(self, backend: AtomicStore, clock: Callable[[], float] = time.time):
        self.backend = backend
        self._clock = clock

    @abstractmethod
    def key_for(self, identifier: str) -> str:
        """Quota Key holding this algorithm's record for identifier."""

    @abstractmethod
    async def _record(self, key: str, window_seconds: int, now: float) -> int:
        """Record one request atomically and return the window's count."""

    async def check(
        self,
        identifier: str,
        limit: int,
        window_seconds: int,
        *,
        timeout: float | None = None,
    ) -> QuotaResult:
        """
        Record a request for identifier and decide whether it may proceed.

        Args:
            identifier: Who is being counted, e.g. "10.0.0.1".
            limit: Maximum number of requests allowed within the window.
            window_seconds: Duration of the time window in seconds.
            timeout: Deadline in seconds for the store round trip.

        Returns:
            QuotaResult with the decision and the current count.

        Raises:
            ValueError: If limit or window_seconds is not positive.
            StoreTimeout: If the deadline elapsed.
            StoreUnavailable: If the store could not be reached.
            TransactionFailed: If the store transaction failed.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        key = self.key_for(identifier)
        now = self._clock()

        try:
            count = await asyncio.wait_for(
                self._record(key, window_seconds, now),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise StoreTimeout(
                f"{self.name} check exceeded {timeout}s", identifier=identifier
            ) from exc

        return QuotaResult(
            allowed=count <= limit,
            count=count,
            limit=limit,
            window_seconds=window_seconds,
        )

    async def reset(self, identifier: str) -> None:
        """
        Forget every request recorded for identifier by this algorithm.

        Args:
            identifier: The identifier to reset. No error if unknown.
        """
        await self.backend.delete(self.key_for(identifier))
