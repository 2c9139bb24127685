import pytest
from unittest.mock import AsyncMock

from tollgate.core.errors import StoreUnavailable, TransactionFailed
from tollgate.core.strategies.fixed_window import FIXED_WINDOW, FixedWindowStrategy


@pytest.fixture
def mock_backend():
    backend = AsyncMock()
    # Default: first request of a window
    backend.execute.return_value = 1
    return backend


@pytest.mark.asyncio
async def test_transaction_uses_fixed_key(mock_backend):
    strategy = FixedWindowStrategy(mock_backend)

    result = await strategy.check("10.0.0.1", limit=10, window_seconds=60)

    assert result.allowed
    assert result.count == 1

    call_args = mock_backend.execute.call_args
    assert call_args[0][0] is FIXED_WINDOW
    assert call_args[1]["keys"] == ["rate:fixed:10.0.0.1"]
    assert call_args[1]["args"] == [60]


@pytest.mark.asyncio
async def test_count_above_limit_is_denied(mock_backend):
    strategy = FixedWindowStrategy(mock_backend)
    mock_backend.execute.return_value = 11

    result = await strategy.check("10.0.0.1", limit=10, window_seconds=60)

    assert not result.allowed
    assert result.count == 11
    assert result.remaining == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [StoreUnavailable("down"), TransactionFailed("bad script")])
async def test_store_errors_propagate(mock_backend, error):
    strategy = FixedWindowStrategy(mock_backend)
    mock_backend.execute.side_effect = error

    with pytest.raises(type(error)):
        await strategy.check("10.0.0.1", limit=10, window_seconds=60)

    # No retry inside the core
    assert mock_backend.execute.await_count == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("limit,window", [(0, 60), (10, 0), (-1, -1)])
async def test_invalid_quota_is_rejected(mock_backend, limit, window):
    strategy = FixedWindowStrategy(mock_backend)

    with pytest.raises(ValueError):
        await strategy.check("10.0.0.1", limit=limit, window_seconds=window)

    mock_backend.execute.assert_not_awaited()


class TestCounting:
    """Counting against the in-memory store."""

    @pytest.mark.asyncio
    async def test_counts_increase_by_one_until_limit(self, fixed):
        limit = 5

        for expected in range(1, limit + 1):
            result = await fixed.check("user:1", limit=limit, window_seconds=60)
            assert result.allowed
            assert result.count == expected
            assert result.remaining == limit - expected

        result = await fixed.check("user:1", limit=limit, window_seconds=60)
        assert not result.allowed
        assert result.count == limit + 1

    @pytest.mark.asyncio
    async def test_rejected_requests_still_count(self, fixed):
        for _ in range(5):
            await fixed.check("user:2", limit=2, window_seconds=60)

        result = await fixed.check("user:2", limit=2, window_seconds=60)
        assert result.count == 6

    @pytest.mark.asyncio
    async def test_result_carries_quota(self, fixed):
        result = await fixed.check("user:3", limit=100, window_seconds=30)

        assert result.limit == 100
        assert result.window_seconds == 30

    @pytest.mark.asyncio
    async def test_expiry_set_on_first_request_only(self, fixed, backend, clock):
        await fixed.check("user:4", limit=10, window_seconds=60)
        assert backend.ttl("rate:fixed:user:4") == pytest.approx(60)

        clock.advance(20)
        await fixed.check("user:4", limit=10, window_seconds=60)

        # Window is not extended by later requests
        assert backend.ttl("rate:fixed:user:4") == pytest.approx(40)


class TestWindowExpiration:

    @pytest.mark.asyncio
    async def test_new_window_starts_at_one(self, fixed, clock):
        for _ in range(4):
            await fixed.check("user:5", limit=3, window_seconds=10)

        clock.advance(10.001)

        result = await fixed.check("user:5", limit=3, window_seconds=10)
        assert result.allowed
        assert result.count == 1

    @pytest.mark.asyncio
    async def test_short_window_scenario(self, fixed, clock):
        """limit=2, window=1s: t=0.0 and t=0.9 allowed, t=1.1 opens a new window."""
        results = []
        for offset in (0.0, 0.9, 1.1):
            clock.at(offset)
            results.append(await fixed.check("10.0.0.9", limit=2, window_seconds=1))

        assert [r.allowed for r in results] == [True, True, True]
        assert [r.count for r in results] == [1, 2, 1]

    @pytest.mark.asyncio
    async def test_boundary_burst_admits_twice_the_limit(self, fixed, clock):
        """Two adjacent windows each admit the full limit."""
        limit = 3

        clock.at(0.5)
        first = [await fixed.check("user:6", limit=limit, window_seconds=1) for _ in range(limit)]
        clock.at(1.6)
        second = [await fixed.check("user:6", limit=limit, window_seconds=1) for _ in range(limit)]

        assert all(r.allowed for r in first + second)


@pytest.mark.asyncio
async def test_sequential_scenario(fixed, clock):
    """limit=3, window=60s, calls at t=0,1,2,3."""
    results = []
    for second in range(4):
        clock.at(second)
        results.append(await fixed.check("10.0.0.1", limit=3, window_seconds=60))

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.count for r in results] == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_identifiers_are_independent(fixed):
    for _ in range(3):
        await fixed.check("10.0.0.1", limit=2, window_seconds=60)

    result = await fixed.check("10.0.0.2", limit=2, window_seconds=60)
    assert result.allowed
    assert result.count == 1


@pytest.mark.asyncio
async def test_reset_clears_counter(fixed, backend):
    for _ in range(3):
        await fixed.check("user:7", limit=2, window_seconds=60)

    await fixed.reset("user:7")

    assert "rate:fixed:user:7" not in backend.keys()
    result = await fixed.check("user:7", limit=2, window_seconds=60)
    assert result.count == 1


@pytest.mark.asyncio
async def test_reset_unknown_identifier_does_not_error(fixed):
    await fixed.reset("nobody")


@pytest.mark.asyncio
async def test_fixed_and_sliding_keys_do_not_collide(backend, clock):
    from tollgate.core.strategies.sliding_window import SlidingWindowStrategy

    fixed = FixedWindowStrategy(backend, clock=clock)
    sliding = SlidingWindowStrategy(backend, clock=clock)

    for _ in range(3):
        await fixed.check("10.0.0.1", limit=5, window_seconds=60)

    result = await sliding.check("10.0.0.1", limit=5, window_seconds=60)
    assert result.count == 1
    assert backend.keys() == ["rate:10.0.0.1", "rate:fixed:10.0.0.1"]
