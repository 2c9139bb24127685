"""
Abstract base class for atomic counter stores.

A quota strategy never talks to storage command by command. It hands the
store a Transaction: a short sequence of read/increment/expire operations
that the store must run as one indivisible unit, with no other transaction
on the same key interleaving. This is the only guarantee the strategies
rely on, so every backend is judged by how it provides it:

- RedisBackend runs the Lua body of the transaction as a script (Redis
  executes scripts atomically), or, with scripting disabled, the
  optimistic body inside a WATCH/MULTI/EXEC retry loop.
- InMemoryBackend runs the Python body under a single lock.

Keeping the transaction bodies next to the algorithm that owns them (see
the strategies package) means a strategy can be exercised against the
in-memory double without a network store.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, Sequence


class Keyspace(Protocol):
    """
    Redis-like primitives the in-process transaction bodies operate on.

    Bounds accepted by zremrangebyscore follow Redis syntax: a number is
    inclusive, a "(" prefix makes it exclusive, "-inf"/"+inf" are open.
    """

    def incr(self, key: str) -> int: ...

    def expire(self, key: str, seconds: int) -> None: ...

    def zadd(self, key: str, score: float, member: str) -> None: ...

    def zremrangebyscore(self, key: str, min_score: float | str, max_score: float | str) -> int: ...

    def zcard(self, key: str) -> int: ...


@dataclass(frozen=True)
class Transaction:
    """
    One atomic unit of work, expressed once per kind of store.

    Attributes:
        name: Stable name, used for script caching and logs.
        script: Lua body for stores with server-side scripting.
        apply: Python body run against a Keyspace while the store
            holds its transaction lock.
        optimistic: Coroutine run inside a WATCH-ed Redis pipeline. It
            performs its reads, calls ``pipe.multi()``, queues its writes
            and returns the result; the store commits and retries.

    All three bodies receive ``(keys, args)`` exactly as passed to
    ``AtomicStore.execute`` and must return the same value.
    """

    name: str
    script: str
    apply: Callable[[Keyspace, Sequence[str], Sequence[Any]], Any]
    optimistic: Callable[[Any, Sequence[str], Sequence[Any]], Awaitable[Any]]


class AtomicStore(ABC):
    """
    Contract for the shared store that owns every quota record.

    Implementations must translate their own failures into the typed
    errors of ``tollgate.core.errors``: StoreUnavailable when the store
    cannot be reached, TransactionFailed when a transaction errors.
    """

    @abstractmethod
    async def execute(
        self,
        transaction: Transaction,
        keys: Sequence[str],
        args: Sequence[Any],
    ) -> Any:
        """
        Run a transaction atomically.

        Args:
            transaction: The unit of work to run.
            keys: Keys the transaction touches.
            args: Positional arguments for the transaction bodies.

        Returns:
            Whatever the transaction returns.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a key. No error if it doesn't exist."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the store answers, raise StoreUnavailable otherwise."""

    async def close(self) -> None:
        """Release connections held by the store."""
