import uuid
from typing import Any, Sequence

from tollgate.core.backends.base import Keyspace, Transaction
from tollgate.core.strategies.base import QuotaStrategy


def _apply(keyspace: Keyspace, keys: Sequence[str], args: Sequence[Any]) -> int:
    key = keys[0]
    now_ms, cutoff, ttl, member = args

    keyspace.zremrangebyscore(key, "-inf", f"({cutoff}")
    keyspace.zadd(key, float(now_ms), str(member))
    count = keyspace.zcard(key)
    keyspace.expire(key, int(ttl))
    return count


async def _optimistic(pipe: Any, keys: Sequence[str], args: Sequence[Any]) -> int:
    key = keys[0]
    now_ms, cutoff, ttl, member = args

    # Entries that survive the prune, read under WATCH
    kept = await pipe.zcount(key, cutoff, "+inf")

    pipe.multi()
    pipe.zremrangebyscore(key, "-inf", f"({cutoff}")
    pipe.zadd(key, {member: now_ms})
    pipe.expire(key, int(ttl))
    return int(kept) + 1


SLIDING_WINDOW = Transaction(
    name="sliding_window",
    # LUA SCRIPT LOGIC:
    # 1. Remove entries strictly older than the cutoff (now - window)
    # 2. Log this request, rejected or not
    # 3. Count what is left, this request included
    # 4. Refresh the TTL so an idle key removes itself
    script="""
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local cutoff = ARGV[2]
    local ttl = tonumber(ARGV[3])
    local member = ARGV[4]

    redis.call("ZREMRANGEBYSCORE", key, "-inf", "(" .. cutoff)
    redis.call("ZADD", key, now, member)
    local count = redis.call("ZCARD", key)
    redis.call("EXPIRE", key, ttl)

    return count
    """,
    apply=_apply,
    optimistic=_optimistic,
)


class SlidingWindowStrategy(QuotaStrategy):
    """
    Sliding Window Log algorithm.

    Precise: the window moves with every request, so there is no
    boundary-doubling burst. The price is one sorted-set entry per request
    still inside the window, scored by its millisecond timestamp.

    Members carry a random suffix after the timestamp, so concurrent
    requests landing on the same millisecond each get their own entry.
    Rejected attempts are logged as well and keep counting until they
    slide out of the window.
    """

    name = "sliding"

    def key_for(self, identifier: str) -> str:
        return f"rate:{identifier}"

    async def _record(self, key: str, window_seconds: int, now: float) -> int:
        now_ms = round(now * 1000)
        cutoff = now_ms - window_seconds * 1000
        member = f"{now_ms}:{uuid.uuid4().hex}"

        count = await self.backend.execute(
            SLIDING_WINDOW,
            keys=[key],
            # One second of slack so the log never vanishes mid-burst
            args=[now_ms, cutoff, window_seconds + 1, member],
        )
        return int(count)
