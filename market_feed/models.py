"""
Data Models for the Imbalance Engine
=====================================

Defines the order-book snapshot handed over by the market-data feed and the
fill records produced by the trading ledger.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_now() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class OrderSide(Enum):
    """Order side enumeration."""
    BUY = "buy"
    SELL = "sell"


class FillReason(Enum):
    """Why a fill was executed."""
    SIGNAL = "signal"
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"


@dataclass
class PriceLevel:
    """Single price level in an order book."""
    price: float
    amount: float

    def __post_init__(self) -> None:
        self.price = float(self.price)
        self.amount = float(self.amount)


@dataclass
class OrderBookSide:
    """One side of an order book (bids or asks), best level first."""
    levels: list[PriceLevel] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.levels

    @property
    def best_price(self) -> Optional[float]:
        """Get the best price on this side."""
        if not self.levels:
            return None
        return self.levels[0].price

    @property
    def best_amount(self) -> Optional[float]:
        """Get the amount at the best price."""
        if not self.levels:
            return None
        return self.levels[0].amount

    def total_amount(self) -> float:
        """Sum of amounts across every observed level."""
        return sum(level.amount for level in self.levels)


@dataclass
class OrderBookSnapshot:
    """Point-in-time order book for one (exchange, instrument) pair."""
    exchange: str
    symbol: str
    bids: OrderBookSide = field(default_factory=OrderBookSide)
    asks: OrderBookSide = field(default_factory=OrderBookSide)
    timestamp: datetime = field(default_factory=utc_now)
    last_trade_price: Optional[float] = None

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids.best_price

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks.best_price

    @property
    def is_two_sided(self) -> bool:
        """Both sides carry at least one level."""
        return not self.bids.is_empty and not self.asks.is_empty

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderBookSnapshot":
        """
        Build a snapshot from a plain mapping.

        Levels may be given as ``{"price": p, "amount": a}`` mappings or as
        ``[price, amount]`` pairs, which is how most venues publish depth.
        """
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        elif isinstance(timestamp, (int, float)):
            timestamp = datetime.fromtimestamp(timestamp / 1000.0, tz=timezone.utc).replace(tzinfo=None)

        last_trade = data.get("last_trade_price")

        return cls(
            exchange=str(data.get("exchange", "")),
            symbol=str(data.get("symbol", "")),
            bids=OrderBookSide(levels=_parse_levels(data.get("bids", []))),
            asks=OrderBookSide(levels=_parse_levels(data.get("asks", []))),
            timestamp=timestamp or utc_now(),
            last_trade_price=float(last_trade) if last_trade is not None else None,
        )


def _parse_levels(raw_levels) -> list[PriceLevel]:
    levels = []
    for raw in raw_levels:
        if isinstance(raw, dict):
            levels.append(PriceLevel(price=raw["price"], amount=raw["amount"]))
        else:
            price, amount = raw[0], raw[1]
            levels.append(PriceLevel(price=price, amount=amount))
    return levels


@dataclass
class Fill:
    """Executed trade recorded by the ledger."""
    fill_id: int
    symbol: str
    side: OrderSide
    price: float
    size: float
    fee: float = 0.0
    position_id: Optional[int] = None
    reason: FillReason = FillReason.SIGNAL
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def notional(self) -> float:
        """Calculate trade notional."""
        return self.price * self.size

    @property
    def net_cost(self) -> float:
        """Calculate net cost including fees."""
        return self.notional + self.fee

    @property
    def cash_delta(self) -> float:
        """Signed change in cash caused by this fill."""
        if self.side == OrderSide.BUY:
            return -(self.notional + self.fee)
        return self.notional - self.fee
