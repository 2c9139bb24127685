import pytest

from tollgate.core.backends.memory import InMemoryBackend
from tollgate.core.strategies.fixed_window import FixedWindowStrategy
from tollgate.core.strategies.sliding_window import SlidingWindowStrategy


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.start = start
        self.now = start

    def __call__(self) -> float:
        return self.now

    def at(self, offset: float) -> None:
        """Jump to start + offset seconds."""
        self.now = self.start + offset

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock: FakeClock) -> InMemoryBackend:
    """Create a fresh in-memory store for each test."""
    return InMemoryBackend(clock=clock)


@pytest.fixture
def fixed(backend: InMemoryBackend, clock: FakeClock) -> FixedWindowStrategy:
    return FixedWindowStrategy(backend, clock=clock)


@pytest.fixture
def sliding(backend: InMemoryBackend, clock: FakeClock) -> SlidingWindowStrategy:
    return SlidingWindowStrategy(backend, clock=clock)
