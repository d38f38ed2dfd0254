"""
Imbalance Engine Module
========================

Decision policy for the order-book imbalance strategy. For each snapshot:
1. Derive spread / VOI / OIR / MPB
2. Take at most one entry or discretionary exit
3. Sweep open positions for take-profit / stop-loss
4. Value the ledger at the best bid
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from core.ledger import TradingLedger
from core.risk_manager import RiskManager
from core.signals import BookSignals, SignalCalculator
from market_feed.models import Fill, FillReason, OrderBookSnapshot, OrderSide, utc_now
from utils.logging_utils import performance_logger


logger = logging.getLogger(__name__)


@dataclass
class StrategyConfig:
    """Configuration for the entry rule."""
    spread_threshold: float = 0.05  # Max spread, in percent of best bid
    oir_threshold: float = 0.1  # Min OIR for a buy
    mpb_threshold: float = -0.1  # MPB must be below this for a sell
    use_last_trade_price: bool = False  # MPB from feed last trade instead of mid


@dataclass
class TickResult:
    """Outcome of evaluating one snapshot."""
    timestamp: datetime
    signals: Optional[BookSignals] = None
    decision: Optional[OrderSide] = None
    fills: list[Fill] = field(default_factory=list)
    portfolio_value: Optional[float] = None
    skip_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None


@dataclass
class EngineStats:
    """Statistics for the imbalance engine."""
    snapshots_processed: int = 0
    snapshots_skipped: int = 0
    gate_blocked: int = 0
    buys: int = 0
    sells: int = 0
    take_profits: int = 0
    stop_losses: int = 0
    risk_rejections: int = 0
    last_bid: Optional[float] = None
    last_portfolio_value: Optional[float] = None
    last_update_time: Optional[datetime] = None


def should_trade(signals: BookSignals, spread_threshold: float) -> bool:
    """Spread gate: finite, within threshold, and some volume imbalance."""
    if not signals.has_finite_spread:
        return False
    return signals.spread <= spread_threshold and abs(signals.voi) > 0


def decide_entry(
    signals: BookSignals,
    config: StrategyConfig,
    has_open_positions: bool,
) -> Optional[OrderSide]:
    """
    Apply the entry rule to one tick's signals.

    Buy when bids dominate (VOI > 0 and OIR above threshold); otherwise sell
    when asks dominate, MPB is below its threshold and there is a position to
    close. Returns None when no action should be taken.
    """
    if not should_trade(signals, config.spread_threshold):
        return None

    # Zero total volume leaves OIR undefined; never buy on it
    if signals.voi > 0 and signals.has_defined_oir and signals.oir > config.oir_threshold:
        return OrderSide.BUY

    if signals.voi < 0 and signals.mpb < config.mpb_threshold and has_open_positions:
        return OrderSide.SELL

    return None


class ImbalanceEngine:
    """
    Order-book imbalance trading engine.

    Consumes snapshots one at a time and drives the TradingLedger. Not
    thread-safe; the trading loop is its only caller.
    """

    def __init__(
        self,
        config: StrategyConfig,
        ledger: TradingLedger,
        risk_manager: Optional[RiskManager] = None,
    ):
        self.config = config
        self.ledger = ledger
        self.risk_manager = risk_manager
        self.calculator = SignalCalculator(use_last_trade_price=config.use_last_trade_price)
        self.stats = EngineStats()

        if not config.use_last_trade_price:
            logger.info("MPB uses the current mid-price as last price; the MPB sell rule cannot fire")

        logger.info(
            f"ImbalanceEngine initialized | spread_threshold={config.spread_threshold}% | "
            f"oir_threshold={config.oir_threshold} | mpb_threshold={config.mpb_threshold}"
        )

    def on_snapshot(self, snapshot: OrderBookSnapshot) -> TickResult:
        """Evaluate one snapshot to completion."""
        result = TickResult(timestamp=snapshot.timestamp)
        self.stats.snapshots_processed += 1
        self.stats.last_update_time = utc_now()

        skip_reason = self._check_data_quality(snapshot)
        if skip_reason:
            self.stats.snapshots_skipped += 1
            result.skip_reason = skip_reason
            logger.debug(f"Skipping trading on snapshot: {skip_reason}")

            bid = snapshot.best_bid
            if bid is not None and math.isfinite(bid):
                result.portfolio_value = self._value(bid)
            return result

        signals = self.calculator.compute(snapshot)
        result.signals = signals

        decision = decide_entry(signals, self.config, self.ledger.has_open_positions)
        if decision is None and not should_trade(signals, self.config.spread_threshold):
            self.stats.gate_blocked += 1
            logger.debug(
                f"Gate closed | spread={signals.spread:.6g}% | voi={signals.voi:.6g} | "
                f"oir={signals.oir:.6g}"
            )

        if decision == OrderSide.BUY:
            fill = self._buy(signals.best_bid)
            if fill:
                result.decision = decision
                result.fills.append(fill)
        elif decision == OrderSide.SELL:
            fill = self.ledger.execute(signals.best_ask, OrderSide.SELL, reason=FillReason.SIGNAL)
            if fill:
                self.stats.sells += 1
                result.decision = decision
                result.fills.append(fill)

        exits = self.ledger.check_tp_sl(signals.best_bid)
        for fill in exits:
            if fill.reason == FillReason.TAKE_PROFIT:
                self.stats.take_profits += 1
            else:
                self.stats.stop_losses += 1
        result.fills.extend(exits)

        result.portfolio_value = self._value(signals.best_bid)
        return result

    def _check_data_quality(self, snapshot: OrderBookSnapshot) -> Optional[str]:
        if snapshot.bids.is_empty or snapshot.asks.is_empty:
            return "empty book side"

        bid = snapshot.best_bid
        ask = snapshot.best_ask
        if not (math.isfinite(bid) and math.isfinite(ask)):
            return "non-finite best price"

        if bid <= 0:
            return "non-positive best bid"

        if ask <= 0:
            return "non-positive best ask"

        return None

    def _buy(self, price: float) -> Optional[Fill]:
        size = self.ledger.config.trade_size
        fee_rate = self.ledger.config.fee_rate

        if self.risk_manager and not self.risk_manager.check_buy(self.ledger, price, size, fee_rate):
            self.stats.risk_rejections += 1
            return None

        fill = self.ledger.execute(price, OrderSide.BUY, size=size, fee_rate=fee_rate)
        self.stats.buys += 1
        return fill

    def _value(self, bid: float) -> float:
        value = self.ledger.value(bid)
        self.stats.last_bid = bid
        self.stats.last_portfolio_value = value

        performance_logger.log_valuation(
            symbol=self.ledger.symbol,
            portfolio_value=value,
            cash=self.ledger.cash,
            open_positions=self.ledger.open_position_count,
            bid=bid,
        )
        return value

    def get_stats(self) -> EngineStats:
        """Get engine statistics."""
        return self.stats
