"""
Signal Calculator Module
=========================

Derives short-horizon order-book signals from a single snapshot:
spread, volume order imbalance (VOI), order imbalance ratio (OIR) and
mid-price basis (MPB). Everything here is pure; numeric edge cases come back
as inf/NaN and are screened by the decision policy.
"""

import math
from dataclasses import dataclass
from typing import Optional

from market_feed.models import OrderBookSnapshot


@dataclass(frozen=True)
class BookSignals:
    """Signals derived from one snapshot. Recomputed every tick."""
    best_bid: float
    best_ask: float
    spread: float
    bid_volume: float
    ask_volume: float
    voi: float
    oir: float
    mid_price: float
    mpb: float

    @property
    def has_finite_spread(self) -> bool:
        return math.isfinite(self.spread)

    @property
    def has_defined_oir(self) -> bool:
        return not math.isnan(self.oir)

    def as_dict(self) -> dict:
        return {
            "best_bid": self.best_bid,
            "best_ask": self.best_ask,
            "spread": self.spread,
            "bid_volume": self.bid_volume,
            "ask_volume": self.ask_volume,
            "voi": self.voi,
            "oir": self.oir,
            "mid_price": self.mid_price,
            "mpb": self.mpb,
        }


def calculate_spread(bid: float, ask: float) -> float:
    """Relative bid/ask gap as a percentage of the best bid."""
    if bid == 0:
        if ask == bid:
            return math.nan
        return math.copysign(math.inf, ask - bid)
    return (ask - bid) / bid * 100.0


def calculate_volumes(snapshot: OrderBookSnapshot) -> tuple[float, float, float]:
    """Return (voi, bid_volume, ask_volume) summed over all observed levels."""
    bid_volume = snapshot.bids.total_amount()
    ask_volume = snapshot.asks.total_amount()
    return bid_volume - ask_volume, bid_volume, ask_volume


def calculate_oir(bid_volume: float, ask_volume: float) -> float:
    """VOI normalised by total volume, in [-1, 1]. NaN when there is no volume."""
    total = bid_volume + ask_volume
    if total == 0:
        return math.nan
    return (bid_volume - ask_volume) / total


def calculate_mid_price(bid: float, ask: float) -> float:
    return (bid + ask) / 2.0


def calculate_mpb(last_price: float, mid_price: float) -> float:
    """Mid-price basis: last price minus the current mid."""
    return last_price - mid_price


class SignalCalculator:
    """
    Computes BookSignals for a snapshot.

    By default the "last price" fed into MPB is the freshly computed
    mid-price, which makes MPB identically zero. Setting
    ``use_last_trade_price`` uses the snapshot's last traded price instead
    whenever the feed supplies one.
    """

    def __init__(self, use_last_trade_price: bool = False):
        self.use_last_trade_price = use_last_trade_price

    def compute(self, snapshot: OrderBookSnapshot) -> Optional[BookSignals]:
        """Returns None when either side of the book is empty."""
        if not snapshot.is_two_sided:
            return None

        bid = snapshot.best_bid
        ask = snapshot.best_ask

        spread = calculate_spread(bid, ask)
        voi, bid_volume, ask_volume = calculate_volumes(snapshot)
        oir = calculate_oir(bid_volume, ask_volume)
        mid_price = calculate_mid_price(bid, ask)

        last_price = mid_price
        if self.use_last_trade_price and snapshot.last_trade_price is not None:
            last_price = snapshot.last_trade_price
        mpb = calculate_mpb(last_price, mid_price)

        return BookSignals(
            best_bid=bid,
            best_ask=ask,
            spread=spread,
            bid_volume=bid_volume,
            ask_volume=ask_volume,
            voi=voi,
            oir=oir,
            mid_price=mid_price,
            mpb=mpb,
        )
