#!/usr/bin/env python3
"""
Order-Book Imbalance Engine
============================

Main entry point. Runs the engine against the simulated order-book feed;
embedders with a real market-data collaborator build a TradingBot and pass
their own SnapshotFeed.

Usage:
    python main.py                      # Run with config.yaml
    python main.py --config my.yaml     # Use custom config file
    python main.py --snapshots 500      # Stop after 500 snapshots
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from core.imbalance_engine import ImbalanceEngine, StrategyConfig
from core.ledger import LedgerConfig, TradingLedger
from core.risk_manager import RiskConfig, RiskManager
from core.trading_loop import LoopStats, TradingLoop
from market_feed.feed import SnapshotFeed
from market_feed.simulator import SimulatedFeed, SimulatedOrderBook
from utils.config_loader import ConfigError, EngineConfig, load_config
from utils.logging_utils import setup_logging


logger = logging.getLogger(__name__)


class TradingBot:
    """
    Main orchestrator.

    Builds the ledger, risk manager and engine from configuration and runs
    the trading loop over a feed.
    """

    def __init__(self, config: EngineConfig):
        self.config = config

        self.ledger = TradingLedger(LedgerConfig(
            symbol=config.trading.symbol,
            initial_cash=config.trading.initial_cash,
            trade_size=config.trading.trade_size,
            fee_rate=config.trading.fee_rate,
            take_profit_pct=config.risk.take_profit_pct,
            stop_loss_pct=config.risk.stop_loss_pct,
        ))

        self.risk_manager = RiskManager(RiskConfig(
            allow_negative_cash=config.risk.allow_negative_cash,
            max_open_positions=config.risk.max_open_positions,
        ))

        self.engine = ImbalanceEngine(
            StrategyConfig(
                spread_threshold=config.signal.spread_threshold,
                oir_threshold=config.signal.oir_threshold,
                mpb_threshold=config.signal.mpb_threshold,
                use_last_trade_price=config.signal.use_last_trade_price,
            ),
            ledger=self.ledger,
            risk_manager=self.risk_manager,
        )

        self.loop: Optional[TradingLoop] = None

    async def run(self, feed: SnapshotFeed, max_snapshots: Optional[int] = None) -> LoopStats:
        """Run the trading loop until the feed ends or stop() is called."""
        logger.info("=" * 60)
        logger.info("Order-Book Imbalance Engine Starting")
        logger.info("=" * 60)
        logger.info(f"Symbol: {self.config.trading.symbol} on {self.config.trading.exchange}")

        self.loop = TradingLoop(
            engine=self.engine,
            feed=feed,
            staleness_timeout=self.config.feed.staleness_timeout_seconds,
            max_snapshots=self.config.feed.max_snapshots if max_snapshots is None else max_snapshots,
        )
        stats = await self.loop.run()

        engine_stats = self.engine.get_stats()
        logger.info(
            f"Engine stats | Snapshots: {engine_stats.snapshots_processed} | "
            f"Skipped: {engine_stats.snapshots_skipped} | Buys: {engine_stats.buys} | "
            f"Sells: {engine_stats.sells} | TP: {engine_stats.take_profits} | "
            f"SL: {engine_stats.stop_losses} | Risk rejections: {engine_stats.risk_rejections}"
        )
        return stats

    def stop(self) -> None:
        """Request a clean shutdown after the current snapshot."""
        if self.loop:
            self.loop.request_stop()


def build_simulated_feed(config: EngineConfig) -> SimulatedFeed:
    """Create the random-walk feed described by the feed config section."""
    feed_config = config.feed
    book = SimulatedOrderBook(
        exchange=config.trading.exchange,
        symbol=config.trading.symbol,
        initial_price=feed_config.sim_initial_price,
        volatility=feed_config.sim_volatility,
        spread_range_pct=tuple(feed_config.sim_spread_range_pct),
        base_liquidity=feed_config.sim_base_liquidity,
        seed=feed_config.sim_seed or None,
    )
    return SimulatedFeed(book, interval_seconds=feed_config.interval_seconds)


async def main_async(config: EngineConfig, args: argparse.Namespace) -> None:
    """Async main function."""
    bot = TradingBot(config)
    feed = build_simulated_feed(config)

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        bot.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await bot.run(feed, max_snapshots=args.snapshots)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Order-Book Imbalance Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                    Run with config.yaml
  python main.py -c custom.yaml     Use custom config file
  python main.py --snapshots 100    Stop after 100 snapshots
        """
    )

    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )

    parser.add_argument(
        "--snapshots",
        type=int,
        default=None,
        help="Stop after this many snapshots (default: feed.max_snapshots)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args()

    # Fail fast on configuration before touching any feed
    try:
        config = load_config(args.config)
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR, format="%(levelname)s | %(message)s")
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    log_level = "DEBUG" if args.verbose else config.logging.console_level
    setup_logging(
        log_dir=config.logging.log_dir,
        console_level=log_level,
        file_level=config.logging.file_level,
        main_log_file=config.logging.main_log_file,
        trades_log_file=config.logging.trades_log_file,
        max_size_mb=config.logging.max_log_size_mb,
        backup_count=config.logging.backup_count,
    )

    try:
        asyncio.run(main_async(config, args))
    except KeyboardInterrupt:
        print("\nShutdown complete.")


if __name__ == "__main__":
    main()
