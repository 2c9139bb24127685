import time
from enum import StrEnum
from typing import Callable

import structlog

from tollgate.core.backends.base import AtomicStore
from tollgate.core.quota import Quota, QuotaGuard
from tollgate.core.strategies.base import QuotaStrategy
from tollgate.core.strategies.fixed_window import FixedWindowStrategy
from tollgate.core.strategies.sliding_window import SlidingWindowStrategy

logger = structlog.get_logger(__name__)


class StrategyMode(StrEnum):
    FIXED = "fixed"
    SLIDING = "sliding"


_STRATEGIES: dict[StrategyMode, type[QuotaStrategy]] = {
    StrategyMode.FIXED: FixedWindowStrategy,
    StrategyMode.SLIDING: SlidingWindowStrategy,
}


def parse_mode(value: str | StrategyMode | None) -> StrategyMode:
    """
    Normalize a configured mode. Unset or unknown values mean sliding.
    """
    if isinstance(value, StrategyMode):
        return value
    if not value:
        return StrategyMode.SLIDING

    try:
        return StrategyMode(value.strip().lower())
    except ValueError:
        logger.warning("unknown_rate_limit_mode", mode=value, fallback=StrategyMode.SLIDING.value)
        return StrategyMode.SLIDING


def resolve_strategy(
    mode: str | StrategyMode | None,
    backend: AtomicStore,
    clock: Callable[[], float] = time.time,
) -> QuotaStrategy:
    return _STRATEGIES[parse_mode(mode)](backend, clock=clock)


def resolve(
    mode: str | StrategyMode | None,
    backend: AtomicStore,
    limit: int,
    window_seconds: int,
    timeout: float | None = None,
    clock: Callable[[], float] = time.time,
) -> QuotaGuard:
    """
    Build the guard the boundary layer calls once per request.

    Args:
        mode: "fixed" or "sliding"; anything else falls back to sliding.
        backend: The shared atomic store.
        limit: Requests allowed per window.
        window_seconds: Window length in seconds.
        timeout: Deadline in seconds for each check.
    """
    strategy = resolve_strategy(mode, backend, clock=clock)
    return QuotaGuard(
        strategy=strategy,
        quota=Quota(limit=limit, window_seconds=window_seconds),
        timeout=timeout,
    )
