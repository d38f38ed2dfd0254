"""
Trading Loop Module
====================

Single-writer evaluation loop: wait for the next snapshot from the feed,
run the engine on it to completion, repeat. The only suspension point is the
wait for data, so a shutdown request never interrupts a trade.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from core.imbalance_engine import ImbalanceEngine
from market_feed.feed import FeedError, FeedStale, QueueFeed, SnapshotFeed
from market_feed.models import OrderBookSnapshot, utc_now
from utils.logging_utils import performance_logger


logger = logging.getLogger(__name__)


_STOP_REQUESTED = object()


@dataclass
class LoopStats:
    """Statistics for one run of the loop."""
    snapshots: int = 0
    stale_intervals: int = 0
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    stop_reason: str = ""


class TradingLoop:
    """Pulls snapshots from a feed and hands them to the engine one by one."""

    def __init__(
        self,
        engine: ImbalanceEngine,
        feed: SnapshotFeed,
        staleness_timeout: Optional[float] = 30.0,
        max_snapshots: int = 0,
    ):
        self.engine = engine
        self.feed = feed
        self.staleness_timeout = staleness_timeout
        self.max_snapshots = max_snapshots
        self.stats = LoopStats()

        self._stop_event: Optional[asyncio.Event] = None
        self._stop_requested = False
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def request_stop(self) -> None:
        """Stop after the snapshot currently being processed, if any."""
        if not self._stop_requested:
            logger.info("Shutdown requested")
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()

    async def run(self) -> LoopStats:
        """Run until end of stream, feed failure, snapshot limit or stop request."""
        if self._running:
            raise RuntimeError("TradingLoop is already running")

        self._running = True
        # Must be created inside the running event loop
        self._stop_event = asyncio.Event()
        if self._stop_requested:
            self._stop_event.set()
        self.stats.started_at = utc_now()
        logger.info(
            f"Trading loop started | symbol={self.engine.ledger.symbol} | "
            f"staleness_timeout={self.staleness_timeout}s"
        )

        try:
            while not self._stop_event.is_set():
                try:
                    snapshot = await self._next_snapshot()
                except FeedStale as e:
                    self.stats.stale_intervals += 1
                    logger.warning(f"No data: {e}; skipping evaluation and valuation")
                    continue
                except FeedError as e:
                    self.stats.stop_reason = "feed_error"
                    logger.error(f"Feed error, stopping evaluation: {e}")
                    break

                if snapshot is _STOP_REQUESTED:
                    break

                if snapshot is None:
                    self.stats.stop_reason = "end_of_stream"
                    logger.info("Feed reached end of stream")
                    break

                started = time.perf_counter()
                self.engine.on_snapshot(snapshot)
                performance_logger.log_latency("on_snapshot", (time.perf_counter() - started) * 1000)
                self.stats.snapshots += 1

                if self.max_snapshots and self.stats.snapshots >= self.max_snapshots:
                    self.stats.stop_reason = "max_snapshots"
                    break

            if not self.stats.stop_reason:
                self.stats.stop_reason = "stop_requested"
        finally:
            self._running = False
            self.stats.stopped_at = utc_now()
            await self.feed.close()
            self._log_final_state()

        return self.stats

    async def _next_snapshot(self):
        """Wait for the feed or a stop request, whichever comes first."""
        feed_task = asyncio.ensure_future(self.feed.next_snapshot(timeout=self.staleness_timeout))
        stop_task = asyncio.ensure_future(self._stop_event.wait())

        try:
            done, _ = await asyncio.wait({feed_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            feed_task.cancel()
            stop_task.cancel()
            raise

        if feed_task in done:
            stop_task.cancel()
            return feed_task.result()

        feed_task.cancel()
        try:
            await feed_task
        except (asyncio.CancelledError, FeedStale):
            pass
        except FeedError as e:
            logger.warning(f"Feed error during shutdown: {e}")
        return _STOP_REQUESTED

    def _log_final_state(self) -> None:
        stats = self.engine.get_stats()
        last_value = stats.last_portfolio_value
        summary = self.engine.ledger.get_summary(stats.last_bid)

        logger.info("=" * 60)
        logger.info(f"Trading loop stopped ({self.stats.stop_reason or 'error'})")
        logger.info(f"Snapshots: {self.stats.snapshots} | Stale intervals: {self.stats.stale_intervals}")
        if last_value is not None:
            logger.info(f"Last portfolio value: ${last_value:.2f} at bid {stats.last_bid}")
        else:
            logger.info("Last portfolio value: unavailable (no valuation performed)")
        logger.info(
            f"Cash: ${summary['cash']:.2f} | Open positions: {summary['open_positions']} | "
            f"Trades: {summary['total_trades']} | Fees: ${summary['fees_paid']:.4f}"
        )
        logger.info("=" * 60)


async def run_snapshots(engine: ImbalanceEngine, snapshots: list[OrderBookSnapshot]) -> LoopStats:
    """Drive the engine over an in-memory list of snapshots."""
    feed = QueueFeed()
    for snapshot in snapshots:
        feed.publish(snapshot)
    await feed.close()

    loop = TradingLoop(engine, feed, staleness_timeout=None)
    return await loop.run()
