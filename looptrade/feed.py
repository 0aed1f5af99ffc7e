"""Price feeds — producers of tick prices for the engine.

The engine only needs an object with an async ``prices()`` generator; the
feeds here are a seeded random walk and a fixed replay.
"""

import asyncio
import random
from typing import AsyncIterator, Iterable, Optional, Protocol, runtime_checkable


@runtime_checkable
class PriceFeed(Protocol):
    """Interface for tick sources."""

    def prices(self) -> AsyncIterator[float]:
        """Yield positive price samples, one per tick."""
        ...


class RandomWalkFeed:
    """Multiplicative random walk: each step moves by up to ±volatility/2.

    Args:
        start_price: Price the walk begins from.
        volatility: Full width of the per-step relative change (0.02 → ±1 %).
        interval_seconds: Delay before each sample.
        seed: Seed for the private RNG; ``None`` for a non-deterministic walk.
        max_ticks: Stop after this many samples (0 = unlimited).
    """

    def __init__(
        self,
        start_price: float = 100.0,
        volatility: float = 0.02,
        interval_seconds: float = 10.0,
        seed: Optional[int] = None,
        max_ticks: int = 0,
    ) -> None:
        if start_price <= 0:
            raise ValueError(f"start_price must be positive, got {start_price}")
        if volatility < 0:
            raise ValueError(f"volatility must be non-negative, got {volatility}")
        self._price = start_price
        self._volatility = volatility
        self._interval = interval_seconds
        self._rng = random.Random(seed)
        self._max_ticks = max_ticks

    def next_price(self) -> float:
        """Advance the walk one step and return the new price."""
        change = (self._rng.random() - 0.5) * self._volatility
        self._price = self._price * (1 + change)
        return self._price

    async def prices(self) -> AsyncIterator[float]:
        count = 0
        while self._max_ticks == 0 or count < self._max_ticks:
            # Always suspend so control calls can run between ticks
            await asyncio.sleep(self._interval)
            count += 1
            yield self.next_price()


class ReplayFeed:
    """Replays a fixed sequence of prices."""

    def __init__(self, prices: Iterable[float], interval_seconds: float = 0.0) -> None:
        self._prices = list(prices)
        self._interval = interval_seconds

    async def prices(self) -> AsyncIterator[float]:
        for price in self._prices:
            await asyncio.sleep(self._interval)
            yield price
