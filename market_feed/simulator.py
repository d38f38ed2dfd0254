"""
Simulated Order Book Feed
==========================

Random-walk order books for dry runs of the engine without a venue
connection.
"""

import asyncio
import logging
import random
from typing import Optional

from market_feed.feed import SnapshotFeed
from market_feed.models import OrderBookSide, OrderBookSnapshot, PriceLevel, utc_now


logger = logging.getLogger(__name__)


class SimulatedOrderBook:
    """Generates simulated order book data for a single instrument."""

    def __init__(
        self,
        exchange: str,
        symbol: str,
        initial_price: float = 100.0,
        volatility: float = 0.0005,
        spread_range_pct: tuple[float, float] = (0.01, 0.08),
        base_liquidity: float = 1.0,
        imbalance_probability: float = 0.3,
        depth: int = 5,
        tick_size: float = 0.01,
        seed: Optional[int] = None,
    ):
        self.exchange = exchange
        self.symbol = symbol
        self.mid_price = initial_price
        self.volatility = volatility
        self.spread_range_pct = spread_range_pct
        self.base_liquidity = base_liquidity
        self.imbalance_probability = imbalance_probability
        self.depth = depth
        self.tick_size = tick_size
        self._rng = random.Random(seed)

    def step(self) -> OrderBookSnapshot:
        """Generate the next order book state."""
        # Multiplicative random walk keeps the price positive
        self.mid_price *= 1.0 + self._rng.gauss(0, self.volatility)
        self.mid_price = max(self.tick_size * 10, self.mid_price)

        spread = self.mid_price * self._rng.uniform(*self.spread_range_pct) / 100.0
        spread = max(self.tick_size, spread)

        best_bid = self._round(self.mid_price - spread / 2)
        best_ask = max(self._round(self.mid_price + spread / 2), best_bid + self.tick_size)

        # Occasionally lean one side of the book to produce imbalance
        bid_skew = 1.0
        ask_skew = 1.0
        if self._rng.random() < self.imbalance_probability:
            if self._rng.random() < 0.5:
                bid_skew = self._rng.uniform(1.5, 3.0)
            else:
                ask_skew = self._rng.uniform(1.5, 3.0)

        bids = []
        asks = []
        for i in range(self.depth):
            # Declining liquidity away from best price
            liquidity_factor = 1.0 / (1 + i * 0.3)
            bid_amount = self.base_liquidity * liquidity_factor * bid_skew * self._rng.uniform(0.5, 1.5)
            ask_amount = self.base_liquidity * liquidity_factor * ask_skew * self._rng.uniform(0.5, 1.5)

            bids.append(PriceLevel(price=self._round(best_bid - i * self.tick_size), amount=round(bid_amount, 6)))
            asks.append(PriceLevel(price=self._round(best_ask + i * self.tick_size), amount=round(ask_amount, 6)))

        return OrderBookSnapshot(
            exchange=self.exchange,
            symbol=self.symbol,
            bids=OrderBookSide(levels=bids),
            asks=OrderBookSide(levels=asks),
            timestamp=utc_now(),
        )

    def _round(self, price: float) -> float:
        return round(round(price / self.tick_size) * self.tick_size, 10)


class SimulatedFeed(SnapshotFeed):
    """Feed that emits one simulated snapshot every ``interval_seconds``."""

    def __init__(
        self,
        book: SimulatedOrderBook,
        interval_seconds: float = 1.0,
        max_snapshots: int = 0,
    ):
        self.book = book
        self.interval_seconds = interval_seconds
        self.max_snapshots = max_snapshots
        self._emitted = 0
        self._closed = False

    async def next_snapshot(self, timeout: Optional[float] = None) -> Optional[OrderBookSnapshot]:
        if self._closed:
            return None
        if self.max_snapshots and self._emitted >= self.max_snapshots:
            logger.info(f"Simulated feed exhausted after {self._emitted} snapshots")
            return None

        if self._emitted and self.interval_seconds > 0:
            await asyncio.sleep(self.interval_seconds)

        self._emitted += 1
        return self.book.step()

    async def close(self) -> None:
        self._closed = True

    @property
    def emitted(self) -> int:
        return self._emitted
