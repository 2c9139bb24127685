from dataclasses import dataclass

from tollgate.core.strategies.base import QuotaResult, QuotaStrategy


@dataclass(frozen=True)
class Quota:
    limit: int
    window_seconds: int

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")


class QuotaGuard:
    """
    A strategy bound to one quota and one deadline.

    This is what the middleware holds: it answers "may this identifier
    proceed?" and leaves the fail policy for store errors to the caller.
    """

    def __init__(self, strategy: QuotaStrategy, quota: Quota, timeout: float | None = None):
        self.strategy = strategy
        self.quota = quota
        self.timeout = timeout

    @property
    def mode(self) -> str:
        return self.strategy.name

    async def check(self, identifier: str) -> QuotaResult:
        return await self.strategy.check(
            identifier,
            self.quota.limit,
            self.quota.window_seconds,
            timeout=self.timeout,
        )

    async def reset(self, identifier: str) -> None:
        await self.strategy.reset(identifier)
