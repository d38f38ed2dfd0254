"""
Tests for the Imbalance Engine
"""

import logging
import math
from typing import Optional

import pytest

from market_feed.models import FillReason, OrderBookSide, OrderBookSnapshot, OrderSide, PriceLevel
from core.imbalance_engine import ImbalanceEngine, StrategyConfig, decide_entry, should_trade
from core.ledger import LedgerConfig, TradingLedger
from core.risk_manager import RiskConfig, RiskManager
from core.signals import BookSignals


TRADE_SIZE = 0.001
FEE_RATE = 0.005


@pytest.fixture
def strategy_config() -> StrategyConfig:
    """Default strategy configuration for tests."""
    return StrategyConfig(
        spread_threshold=0.05,
        oir_threshold=0.1,
        mpb_threshold=-0.1,
    )


@pytest.fixture
def ledger() -> TradingLedger:
    return TradingLedger(LedgerConfig(
        symbol="BTC/USDT",
        initial_cash=1000.0,
        trade_size=TRADE_SIZE,
        fee_rate=FEE_RATE,
        take_profit_pct=0.01,
        stop_loss_pct=0.02,
    ))


@pytest.fixture
def engine(strategy_config: StrategyConfig, ledger: TradingLedger) -> ImbalanceEngine:
    """Create imbalance engine for tests."""
    return ImbalanceEngine(strategy_config, ledger)


def create_snapshot(
    bid: float = 100.0,
    ask: float = 100.02,
    bid_amount: float = 1.0,
    ask_amount: float = 0.5,
    last_trade_price: Optional[float] = None,
) -> OrderBookSnapshot:
    """Helper to create a one-level snapshot."""
    return OrderBookSnapshot(
        exchange="test",
        symbol="BTC/USDT",
        bids=OrderBookSide(levels=[PriceLevel(price=bid, amount=bid_amount)]),
        asks=OrderBookSide(levels=[PriceLevel(price=ask, amount=ask_amount)]),
        last_trade_price=last_trade_price,
    )


def create_signals(**overrides) -> BookSignals:
    """Helper to create signals directly for the decision rule."""
    values = dict(
        best_bid=100.0,
        best_ask=100.02,
        spread=0.02,
        bid_volume=1.0,
        ask_volume=0.5,
        voi=0.5,
        oir=1.0 / 3.0,
        mid_price=100.01,
        mpb=0.0,
    )
    values.update(overrides)
    return BookSignals(**values)


class TestEntryRule:
    """Tests for the decision rule."""

    def test_should_trade_gate(self):
        assert should_trade(create_signals(spread=0.05), 0.05) is True
        assert should_trade(create_signals(spread=0.06), 0.05) is False
        assert should_trade(create_signals(voi=0.0), 0.05) is False

    def test_non_finite_spread_blocks_trading(self):
        assert should_trade(create_signals(spread=math.inf), 0.05) is False
        assert should_trade(create_signals(spread=-math.inf), 0.05) is False
        assert should_trade(create_signals(spread=math.nan), 0.05) is False

    def test_buy_on_bid_imbalance(self, strategy_config: StrategyConfig):
        assert decide_entry(create_signals(), strategy_config, False) == OrderSide.BUY

    def test_weak_oir_does_not_buy(self, strategy_config: StrategyConfig):
        signals = create_signals(voi=0.1, oir=0.05)
        assert decide_entry(signals, strategy_config, False) is None

    def test_undefined_oir_never_buys(self, strategy_config: StrategyConfig):
        signals = create_signals(voi=0.5, oir=math.nan)
        assert decide_entry(signals, strategy_config, False) is None

    def test_sell_requires_negative_mpb_and_position(self, strategy_config: StrategyConfig):
        signals = create_signals(voi=-0.5, oir=-0.33, mpb=-0.2)

        assert decide_entry(signals, strategy_config, True) == OrderSide.SELL
        assert decide_entry(signals, strategy_config, False) is None

    def test_zero_mpb_never_sells(self, strategy_config: StrategyConfig):
        signals = create_signals(voi=-0.5, oir=-0.33, mpb=0.0)
        assert decide_entry(signals, strategy_config, True) is None


class TestOnSnapshot:
    """Tests for per-snapshot evaluation."""

    def test_end_to_end_buy(self, engine: ImbalanceEngine, ledger: TradingLedger):
        """Bid-heavy tight book opens one position at the best bid."""
        result = engine.on_snapshot(create_snapshot())

        assert result.signals.spread == pytest.approx(0.02)
        assert result.signals.voi == pytest.approx(0.5)
        assert result.decision == OrderSide.BUY
        assert len(result.fills) == 1
        assert result.fills[0].price == 100.0
        assert ledger.open_position_count == 1
        assert ledger.positions[0].entry_price == 100.0
        assert ledger.cash == pytest.approx(1000.0 - 100.0 * TRADE_SIZE * (1 + FEE_RATE))
        assert result.portfolio_value == pytest.approx(ledger.cash + TRADE_SIZE * 100.0)

    def test_one_entry_per_snapshot(self, engine: ImbalanceEngine, ledger: TradingLedger):
        engine.on_snapshot(create_snapshot())
        engine.on_snapshot(create_snapshot())

        assert ledger.open_position_count == 2
        assert engine.stats.buys == 2

    def test_wide_spread_blocks_entry(self, engine: ImbalanceEngine, ledger: TradingLedger):
        result = engine.on_snapshot(create_snapshot(bid=100.0, ask=100.5))

        assert result.decision is None
        assert ledger.open_position_count == 0
        assert engine.stats.gate_blocked == 1
        assert result.portfolio_value == 1000.0

    def test_balanced_book_no_trade(self, engine: ImbalanceEngine, ledger: TradingLedger):
        result = engine.on_snapshot(create_snapshot(bid_amount=1.0, ask_amount=1.0))

        assert result.decision is None
        assert ledger.open_position_count == 0

    def test_zero_volume_book_no_trade(self, engine: ImbalanceEngine, ledger: TradingLedger):
        result = engine.on_snapshot(create_snapshot(bid_amount=0.0, ask_amount=0.0))

        assert result.decision is None
        assert not result.skipped
        assert ledger.open_position_count == 0

    def test_default_mpb_never_sells(self, engine: ImbalanceEngine, ledger: TradingLedger):
        ledger.execute(100.0, OrderSide.BUY)

        result = engine.on_snapshot(create_snapshot(bid_amount=0.5, ask_amount=1.0))

        assert result.decision is None
        assert ledger.open_position_count == 1

    def test_sell_on_ask_imbalance_with_last_trade(self, ledger: TradingLedger):
        engine = ImbalanceEngine(StrategyConfig(use_last_trade_price=True), ledger)
        ledger.execute(100.0, OrderSide.BUY)

        result = engine.on_snapshot(create_snapshot(
            bid=100.0,
            ask=100.02,
            bid_amount=0.5,
            ask_amount=1.0,
            last_trade_price=99.8,
        ))

        assert result.decision == OrderSide.SELL
        assert result.fills[0].price == 100.02
        assert result.fills[0].reason == FillReason.SIGNAL
        assert ledger.open_position_count == 0
        assert engine.stats.sells == 1

    def test_risk_exit_runs_each_tick(self, engine: ImbalanceEngine, ledger: TradingLedger):
        ledger.execute(100.0, OrderSide.BUY)

        # Wide spread: no entry, but take-profit still fires at the bid
        result = engine.on_snapshot(create_snapshot(bid=102.0, ask=103.0))

        assert result.decision is None
        assert [f.reason for f in result.fills] == [FillReason.TAKE_PROFIT]
        assert ledger.open_position_count == 0
        assert engine.stats.take_profits == 1

    def test_stop_loss_via_engine(self, engine: ImbalanceEngine, ledger: TradingLedger):
        ledger.execute(100.0, OrderSide.BUY)

        result = engine.on_snapshot(create_snapshot(bid=97.0, ask=98.0))

        assert [f.reason for f in result.fills] == [FillReason.STOP_LOSS]
        assert engine.stats.stop_losses == 1


class TestDataQuality:
    """Tests for snapshots that must not be traded on."""

    def test_empty_ask_side_skips_but_values(self, engine: ImbalanceEngine, ledger: TradingLedger):
        snapshot = OrderBookSnapshot(
            exchange="test",
            symbol="BTC/USDT",
            bids=OrderBookSide(levels=[PriceLevel(price=100.0, amount=5.0)]),
            asks=OrderBookSide(levels=[]),
        )

        result = engine.on_snapshot(snapshot)

        assert result.skipped
        assert result.signals is None
        assert result.portfolio_value == 1000.0
        assert ledger.open_position_count == 0
        assert engine.stats.snapshots_skipped == 1

    def test_empty_book_skips_valuation(self, engine: ImbalanceEngine):
        snapshot = OrderBookSnapshot(exchange="test", symbol="BTC/USDT")

        result = engine.on_snapshot(snapshot)

        assert result.skipped
        assert result.portfolio_value is None

    def test_nan_bid_skips_everything(self, engine: ImbalanceEngine, ledger: TradingLedger):
        ledger.execute(100.0, OrderSide.BUY)

        result = engine.on_snapshot(create_snapshot(bid=math.nan))

        assert result.skipped
        assert result.portfolio_value is None
        assert ledger.open_position_count == 1

    def test_zero_bid_does_not_trade(self, engine: ImbalanceEngine, ledger: TradingLedger):
        ledger.execute(100.0, OrderSide.BUY)

        result = engine.on_snapshot(create_snapshot(bid=0.0, ask=100.0))

        assert result.skipped
        assert ledger.open_position_count == 1
        assert result.portfolio_value == pytest.approx(ledger.cash)

    def test_zero_ask_does_not_trade(self, engine: ImbalanceEngine, ledger: TradingLedger):
        """Bid 100 against ask 0 would pass the spread gate at -100%."""
        result = engine.on_snapshot(create_snapshot(bid=100.0, ask=0.0))

        assert result.skip_reason == "non-positive best ask"
        assert result.signals is None
        assert ledger.open_position_count == 0
        assert result.portfolio_value == 1000.0

    def test_negative_ask_does_not_sweep(self, engine: ImbalanceEngine, ledger: TradingLedger):
        ledger.execute(100.0, OrderSide.BUY)

        result = engine.on_snapshot(create_snapshot(bid=102.0, ask=-1.0))

        assert result.skipped
        assert result.fills == []
        assert ledger.open_position_count == 1

    def test_skip_logged_at_debug(self, engine: ImbalanceEngine, caplog):
        caplog.set_level(logging.DEBUG)

        engine.on_snapshot(OrderBookSnapshot(exchange="test", symbol="BTC/USDT"))

        skip_records = [r for r in caplog.records if "Skipping trading" in r.getMessage()]
        assert skip_records
        assert all(r.levelno == logging.DEBUG for r in skip_records)


class TestRiskIntegration:
    """Tests for the pre-trade risk check."""

    def test_capital_check_rejects_buy(self, strategy_config: StrategyConfig):
        ledger = TradingLedger(LedgerConfig(initial_cash=0.05, trade_size=TRADE_SIZE, fee_rate=FEE_RATE))
        risk_manager = RiskManager(RiskConfig(allow_negative_cash=False))
        engine = ImbalanceEngine(strategy_config, ledger, risk_manager)

        result = engine.on_snapshot(create_snapshot())

        assert result.decision is None
        assert ledger.open_position_count == 0
        assert ledger.cash == 0.05
        assert engine.stats.risk_rejections == 1

    def test_position_limit(self, strategy_config: StrategyConfig, ledger: TradingLedger):
        engine = ImbalanceEngine(strategy_config, ledger, RiskManager(RiskConfig(max_open_positions=2)))

        for _ in range(4):
            engine.on_snapshot(create_snapshot())

        assert ledger.open_position_count == 2
        assert engine.stats.risk_rejections == 2


class TestValuationLogging:
    """Tests for structured valuation output."""

    def test_valuation_record_fields(self, engine: ImbalanceEngine, caplog):
        caplog.set_level(logging.DEBUG)

        result = engine.on_snapshot(create_snapshot())

        records = [r for r in caplog.records if getattr(r, "fields", {}).get("event") == "VALUATION"]
        assert len(records) == 1
        fields = records[0].fields
        assert fields["portfolio_value"] == result.portfolio_value
        assert fields["symbol"] == "BTC/USDT"
        assert fields["open_positions"] == 1
        assert "timestamp" in fields

    def test_stats_track_last_value(self, engine: ImbalanceEngine):
        result = engine.on_snapshot(create_snapshot())

        stats = engine.get_stats()
        assert stats.snapshots_processed == 1
        assert stats.last_portfolio_value == result.portfolio_value
        assert stats.last_bid == 100.0
