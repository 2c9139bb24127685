import asyncio
import random
from typing import Any, Sequence

import structlog
from redis.asyncio import Redis, from_url
from redis.commands.core import AsyncScript
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, WatchError
from redis.exceptions import TimeoutError as RedisTimeoutError

from tollgate.core.backends.base import AtomicStore, Transaction
from tollgate.core.errors import StoreUnavailable, TransactionFailed

logger = structlog.get_logger(__name__)


class RedisBackend(AtomicStore):
    """
    Production store backed by Redis.

    With scripting enabled (the default) each transaction is sent as a Lua
    script, which Redis runs without interleaving any other command. With
    scripting disabled, the transaction runs as a compare-and-swap loop:
    WATCH the keys, read, MULTI/EXEC the writes, and start over after a
    short random pause when a concurrent writer touched a watched key.

    The loop is meant to end at the caller's deadline. ``max_attempts`` is
    only a safety limit for callers without one; reaching it raises
    TransactionFailed.
    """

    def __init__(
        self,
        redis: Redis,
        scripting: bool = True,
        max_attempts: int = 1000,
        retry_backoff: float = 0.002,
    ):
        self._redis = redis
        self._scripting = scripting
        self._max_attempts = max_attempts
        self._retry_backoff = retry_backoff
        self._scripts: dict[str, AsyncScript] = {}

    @classmethod
    def from_url(
        cls,
        url: str,
        timeout: float | None = None,
        scripting: bool = True,
        max_attempts: int = 1000,
    ) -> "RedisBackend":
        client = from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, scripting=scripting, max_attempts=max_attempts)

    def _script(self, transaction: Transaction) -> AsyncScript:
        # register_script hashes the body once; EVALSHA falls back to EVAL
        script = self._scripts.get(transaction.name)
        if script is None:
            script = self._redis.register_script(transaction.script)
            self._scripts[transaction.name] = script
        return script

    async def _run_optimistic(
        self,
        transaction: Transaction,
        keys: Sequence[str],
        args: Sequence[Any],
    ) -> Any:
        for attempt in range(1, self._max_attempts + 1):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(*keys)
                    result = await transaction.optimistic(pipe, keys, args)
                    await pipe.execute()
                    return result
                except WatchError:
                    logger.debug(
                        "optimistic_retry",
                        transaction=transaction.name,
                        attempt=attempt,
                    )
            # Spread out writers that collided on the same key
            if self._retry_backoff:
                await asyncio.sleep(random.uniform(0, self._retry_backoff))

        raise TransactionFailed(
            f"{transaction.name}: gave up after {self._max_attempts} conflicting attempts"
        )

    async def execute(
        self,
        transaction: Transaction,
        keys: Sequence[str],
        args: Sequence[Any],
    ) -> Any:
        try:
            if self._scripting:
                return await self._script(transaction)(keys=list(keys), args=list(args))
            return await self._run_optimistic(transaction, keys, args)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StoreUnavailable(f"{transaction.name}: {exc}") from exc
        except RedisError as exc:
            raise TransactionFailed(f"{transaction.name}: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StoreUnavailable(str(exc)) from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as exc:
            raise StoreUnavailable(f"redis ping failed: {exc}") from exc

    async def close(self) -> None:
        await self._redis.aclose()
