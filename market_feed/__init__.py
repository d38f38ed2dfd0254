"""
Market Feed Module
==================

Consumer-side view of the external market-data feed: order-book models and
the pull/await interface the trading loop reads snapshots from.
"""

from market_feed.models import (
    Fill,
    FillReason,
    OrderBookSide,
    OrderBookSnapshot,
    OrderSide,
    PriceLevel,
)
from market_feed.feed import (
    AsyncIteratorFeed,
    FeedError,
    FeedStale,
    QueueFeed,
    SnapshotFeed,
)
from market_feed.simulator import SimulatedFeed, SimulatedOrderBook

__all__ = [
    "AsyncIteratorFeed",
    "FeedError",
    "FeedStale",
    "Fill",
    "FillReason",
    "OrderBookSide",
    "OrderBookSnapshot",
    "OrderSide",
    "PriceLevel",
    "QueueFeed",
    "SimulatedFeed",
    "SimulatedOrderBook",
    "SnapshotFeed",
]
