from typing import Any, Sequence

from tollgate.core.backends.base import Keyspace, Transaction
from tollgate.core.strategies.base import QuotaStrategy


def _apply(keyspace: Keyspace, keys: Sequence[str], args: Sequence[Any]) -> int:
    key = keys[0]
    count = keyspace.incr(key)
    if count == 1:
        keyspace.expire(key, int(args[0]))
    return count


async def _optimistic(pipe: Any, keys: Sequence[str], args: Sequence[Any]) -> int:
    key = keys[0]
    current = await pipe.get(key)
    count = int(current) + 1 if current is not None else 1

    pipe.multi()
    pipe.incr(key)
    if count == 1:
        pipe.expire(key, int(args[0]))
    return count


FIXED_WINDOW = Transaction(
    name="fixed_window",
    script="""
    local key = KEYS[1]
    local window = tonumber(ARGV[1])

    local count = redis.call("INCR", key)

    -- First request of a new window starts its clock
    if count == 1 then
        redis.call("EXPIRE", key, window)
    end

    return count
    """,
    apply=_apply,
    optimistic=_optimistic,
)


class FixedWindowStrategy(QuotaStrategy):
    """
    Fixed Window Counter algorithm.

    One integer per identifier, created at 1 with a TTL of one window and
    incremented until the store expires it. O(1) time and memory.

    Requests over the limit are still counted, so a client retrying a
    rejected burst cannot reset or dodge its window.

    Known weakness: each window admits up to ``limit`` requests, so a
    burst straddling the boundary of two windows can get ``2 * limit``
    requests through in a short interval. Use SlidingWindowStrategy when
    that matters.
    """

    name = "fixed"

    def key_for(self, identifier: str) -> str:
        return f"rate:fixed:{identifier}"

    async def _record(self, key: str, window_seconds: int, now: float) -> int:
        count = await self.backend.execute(FIXED_WINDOW, keys=[key], args=[window_seconds])
        return int(count)
