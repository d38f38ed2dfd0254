"""
Trading Ledger Module
======================

Owns cash, open positions and symbol identity for one instrument. All
mutation goes through ``execute`` and ``check_tp_sl``; everything else is a
read-only query.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from market_feed.models import Fill, FillReason, OrderSide, utc_now
from utils.logging_utils import trade_logger


logger = logging.getLogger(__name__)


@dataclass
class LedgerConfig:
    """Configuration for the trading ledger."""
    symbol: str = "BTC/USDT"
    initial_cash: float = 1000.0
    trade_size: float = 0.001  # Fixed quantity of every position
    fee_rate: float = 0.005  # 0.5% of notional per execution
    take_profit_pct: float = 0.01  # 1%
    stop_loss_pct: float = 0.02  # 2%

    def __post_init__(self) -> None:
        if self.trade_size <= 0:
            raise ValueError(f"trade_size must be positive, got {self.trade_size}")


@dataclass(frozen=True)
class Position:
    """An open position of ``trade_size`` units bought at ``entry_price``."""
    position_id: int
    entry_price: float
    opened_at: datetime = field(default_factory=utc_now)

    def pnl_pct(self, price: float) -> float:
        """Fractional price move since entry."""
        return (price - self.entry_price) / self.entry_price


@dataclass
class LedgerStats:
    """Ledger-level statistics."""
    buys: int = 0
    sells: int = 0
    take_profits: int = 0
    stop_losses: int = 0
    underflow_sells: int = 0
    total_fees_paid: float = 0.0
    total_volume: float = 0.0
    realized_pnl: float = 0.0
    winning_trades: int = 0
    losing_trades: int = 0

    @property
    def win_rate(self) -> float:
        if self.winning_trades + self.losing_trades == 0:
            return 0.0
        return self.winning_trades / (self.winning_trades + self.losing_trades)


class TradingLedger:
    """
    Cash and position ledger for a single symbol.

    Positions live in an insertion-ordered arena keyed by a monotonically
    increasing id. Discretionary sells close the most recently opened
    position; risk exits close the exact positions that triggered.
    """

    def __init__(self, config: LedgerConfig):
        self.config = config
        self._cash = config.initial_cash
        self._positions: dict[int, Position] = {}
        self._next_position_id = 1
        self._next_fill_id = 1
        self._fills: list[Fill] = []
        self.stats = LedgerStats()

        logger.info(
            f"TradingLedger initialized | symbol={config.symbol} | "
            f"cash={config.initial_cash} | trade_size={config.trade_size} | "
            f"fee_rate={config.fee_rate}"
        )

    @property
    def symbol(self) -> str:
        return self.config.symbol

    @property
    def cash(self) -> float:
        return self._cash

    @property
    def positions(self) -> tuple[Position, ...]:
        """Open positions, oldest first."""
        return tuple(self._positions.values())

    @property
    def open_position_count(self) -> int:
        return len(self._positions)

    @property
    def has_open_positions(self) -> bool:
        return bool(self._positions)

    @property
    def fills(self) -> list[Fill]:
        return list(self._fills)

    def execute(
        self,
        price: float,
        side: Union[OrderSide, str],
        size: Optional[float] = None,
        fee_rate: Optional[float] = None,
        reason: FillReason = FillReason.SIGNAL,
    ) -> Optional[Fill]:
        """
        Execute a trade against the ledger.

        A buy opens a new position at ``price``. A sell closes the most
        recently opened position; with nothing open it is a counted no-op and
        returns None.
        """
        side = OrderSide(side)
        size = self.config.trade_size if size is None else size
        fee_rate = self.config.fee_rate if fee_rate is None else fee_rate

        if side == OrderSide.BUY:
            return self._open(price, size, fee_rate, reason)

        if not self._positions:
            self.stats.underflow_sells += 1
            logger.warning(
                f"Sell ignored: no open {self.symbol} position "
                f"(underflow_sells={self.stats.underflow_sells})"
            )
            return None

        latest_id = next(reversed(self._positions))
        return self._close(latest_id, price, size, fee_rate, reason)

    def check_tp_sl(
        self,
        current_bid: float,
        take_profit_pct: Optional[float] = None,
        stop_loss_pct: Optional[float] = None,
    ) -> list[Fill]:
        """
        Close every open position whose move since entry crossed the
        take-profit or stop-loss threshold. Each triggered position is sold
        once at ``current_bid``.
        """
        if not math.isfinite(current_bid):
            return []

        tp = self.config.take_profit_pct if take_profit_pct is None else take_profit_pct
        sl = self.config.stop_loss_pct if stop_loss_pct is None else stop_loss_pct

        to_close: list[tuple[int, FillReason]] = []
        for position in self._positions.values():
            if position.entry_price <= 0:
                logger.debug(f"Skipping position {position.position_id} with entry price {position.entry_price}")
                continue

            pnl = position.pnl_pct(current_bid)
            if pnl >= tp:
                reason = FillReason.TAKE_PROFIT
            elif pnl <= -sl:
                reason = FillReason.STOP_LOSS
            else:
                continue

            trade_logger.log_risk_exit(
                trigger=reason.value,
                symbol=self.symbol,
                position_id=position.position_id,
                entry_price=position.entry_price,
                price=current_bid,
                pnl_pct=pnl * 100.0,
            )
            to_close.append((position.position_id, reason))

        fills = []
        for position_id, reason in to_close:
            fill = self._close(position_id, current_bid, self.config.trade_size, self.config.fee_rate, reason)
            if reason == FillReason.TAKE_PROFIT:
                self.stats.take_profits += 1
            else:
                self.stats.stop_losses += 1
            fills.append(fill)

        return fills

    def value(self, current_bid: float) -> float:
        """Cash plus open positions marked at ``current_bid``."""
        return self._cash + self.open_position_count * self.config.trade_size * current_bid

    def unrealized_pnl(self, current_bid: float) -> float:
        """Mark-to-market PnL of open positions, before exit fees."""
        return sum(
            (current_bid - position.entry_price) * self.config.trade_size
            for position in self._positions.values()
        )

    def _open(self, price: float, size: float, fee_rate: float, reason: FillReason) -> Fill:
        cost = size * price * fee_rate

        position = Position(position_id=self._next_position_id, entry_price=price)
        self._next_position_id += 1
        self._positions[position.position_id] = position
        self._cash -= price * size + cost

        self.stats.buys += 1
        return self._record_fill(OrderSide.BUY, price, size, cost, position.position_id, reason)

    def _close(
        self,
        position_id: int,
        price: float,
        size: float,
        fee_rate: float,
        reason: FillReason,
    ) -> Fill:
        cost = size * price * fee_rate

        position = self._positions.pop(position_id)
        self._cash += price * size - cost

        realized = (price - position.entry_price) * size
        self.stats.sells += 1
        self.stats.realized_pnl += realized
        if realized > 0:
            self.stats.winning_trades += 1
        else:
            self.stats.losing_trades += 1

        return self._record_fill(OrderSide.SELL, price, size, cost, position_id, reason)

    def _record_fill(
        self,
        side: OrderSide,
        price: float,
        size: float,
        cost: float,
        position_id: int,
        reason: FillReason,
    ) -> Fill:
        fill = Fill(
            fill_id=self._next_fill_id,
            symbol=self.symbol,
            side=side,
            price=price,
            size=size,
            fee=cost,
            position_id=position_id,
            reason=reason,
        )
        self._next_fill_id += 1
        self._fills.append(fill)

        self.stats.total_fees_paid += cost
        self.stats.total_volume += fill.notional

        trade_logger.log_fill(
            action=side.value,
            size=size,
            symbol=self.symbol,
            price=price,
            cost=cost,
            timestamp=fill.timestamp,
            reason=reason.value,
            position_id=position_id,
            cash=self._cash,
        )
        return fill

    def get_summary(self, current_bid: Optional[float] = None) -> dict:
        """Get ledger summary."""
        summary = {
            "symbol": self.symbol,
            "initial_cash": self.config.initial_cash,
            "cash": self._cash,
            "open_positions": self.open_position_count,
            "realized_pnl": self.stats.realized_pnl,
            "fees_paid": self.stats.total_fees_paid,
            "total_trades": self.stats.buys + self.stats.sells,
            "take_profits": self.stats.take_profits,
            "stop_losses": self.stats.stop_losses,
            "underflow_sells": self.stats.underflow_sells,
            "win_rate": self.stats.win_rate,
            "total_volume": self.stats.total_volume,
        }
        if current_bid is not None:
            summary["unrealized_pnl"] = self.unrealized_pnl(current_bid)
            summary["portfolio_value"] = self.value(current_bid)
        return summary
