"""
In-memory atomic store for testing and development.

This backend keeps counters and sorted sets in Python dictionaries and runs
every transaction under one asyncio.Lock, so it honours the same isolation
contract as Redis inside a single process:

- Transactions never interleave, whatever the number of concurrent tasks
- TTLs are evaluated against an injectable clock
- An optional latency is awaited before taking the lock, which shuffles
  the order concurrent callers reach the store

WARNING: Not suitable for production!
- No persistence (data lost on restart)
- No distribution (one process only)

Use RedisBackend for production deployments.
"""

import asyncio
import random
import time
from bisect import insort
from typing import Any, Callable, Sequence

from tollgate.core.backends.base import AtomicStore, Transaction


def _parse_bound(bound: float | str) -> tuple[float, bool]:
    """
    Parse a Redis score bound.

    Returns:
        (value, exclusive)
    """
    if isinstance(bound, str):
        if bound.startswith("("):
            return float(bound[1:]), True
        return float(bound), False
    return float(bound), False


class InMemoryBackend(AtomicStore):
    """
    In-memory implementation of AtomicStore.

    Example:
        >>> clock = FakeClock()
        >>> backend = InMemoryBackend(clock=clock)
        >>> strategy = FixedWindowStrategy(backend, clock=clock)
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        latency: float = 0.0,
    ) -> None:
        """
        Args:
            clock: Time source returning UNIX seconds.
            latency: Upper bound, in seconds, of a random delay awaited
                before each transaction.
        """
        self._clock = clock
        self._latency = latency
        self._lock = asyncio.Lock()

        # Counters: key -> int
        self._counters: dict[str, int] = {}

        # Sorted sets: key -> sorted list of (score, member)
        self._sorted_sets: dict[str, list[tuple[float, str]]] = {}

        # Expiration times: key -> unix timestamp when key expires
        self._expiry: dict[str, float] = {}

        self.transactions_run = 0

    def _is_expired(self, key: str) -> bool:
        if key in self._expiry:
            return self._clock() >= self._expiry[key]
        return False

    def _cleanup_if_expired(self, key: str) -> None:
        if self._is_expired(key):
            self._drop(key)

    def _drop(self, key: str) -> None:
        self._counters.pop(key, None)
        self._sorted_sets.pop(key, None)
        self._expiry.pop(key, None)

    # =========================================================================
    # Keyspace primitives (called only while the lock is held)
    # =========================================================================

    def incr(self, key: str) -> int:
        self._cleanup_if_expired(key)
        value = self._counters.get(key, 0) + 1
        self._counters[key] = value
        return value

    def expire(self, key: str, seconds: int) -> None:
        # Like Redis, EXPIRE on a missing key is a no-op
        self._cleanup_if_expired(key)
        if key in self._counters or key in self._sorted_sets:
            self._expiry[key] = self._clock() + seconds

    def zadd(self, key: str, score: float, member: str) -> None:
        self._cleanup_if_expired(key)
        entries = self._sorted_sets.setdefault(key, [])

        # Re-adding a member updates its score
        for index, (_, existing) in enumerate(entries):
            if existing == member:
                del entries[index]
                break

        insort(entries, (float(score), member))

    def zremrangebyscore(
        self,
        key: str,
        min_score: float | str,
        max_score: float | str,
    ) -> int:
        self._cleanup_if_expired(key)
        entries = self._sorted_sets.get(key)
        if not entries:
            return 0

        low, low_exclusive = _parse_bound(min_score)
        high, high_exclusive = _parse_bound(max_score)

        def in_range(score: float) -> bool:
            above = score > low if low_exclusive else score >= low
            below = score < high if high_exclusive else score <= high
            return above and below

        kept = [(score, member) for score, member in entries if not in_range(score)]
        removed = len(entries) - len(kept)

        if kept:
            self._sorted_sets[key] = kept
        else:
            # Redis deletes a sorted set once it is empty
            self._drop(key)
        return removed

    def zcard(self, key: str) -> int:
        self._cleanup_if_expired(key)
        return len(self._sorted_sets.get(key, []))

    # =========================================================================
    # AtomicStore interface
    # =========================================================================

    async def execute(
        self,
        transaction: Transaction,
        keys: Sequence[str],
        args: Sequence[Any],
    ) -> Any:
        if self._latency:
            await asyncio.sleep(random.uniform(0, self._latency))

        async with self._lock:
            self.transactions_run += 1
            return transaction.apply(self, keys, args)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._drop(key)

    async def ping(self) -> bool:
        return True

    # =========================================================================
    # Utility Methods (not part of interface, useful for testing)
    # =========================================================================

    def clear(self) -> None:
        """Clear all stored data."""
        self._counters.clear()
        self._sorted_sets.clear()
        self._expiry.clear()

    def keys(self) -> list[str]:
        """Get all non-expired keys."""
        all_keys = set(self._counters) | set(self._sorted_sets)
        return sorted(k for k in all_keys if not self._is_expired(k))

    def ttl(self, key: str) -> float | None:
        """Seconds left before key expires, None if it has no expiry."""
        if key not in self._expiry or self._is_expired(key):
            return None
        return self._expiry[key] - self._clock()

    def members(self, key: str) -> list[str]:
        """Members of a sorted set, ordered by score."""
        if self._is_expired(key):
            return []
        return [member for _, member in self._sorted_sets.get(key, [])]
