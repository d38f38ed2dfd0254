"""
Snapshot Feed Module
=====================

The trading loop pulls order-book snapshots through a small await interface:
"give me the next snapshot, or end-of-stream". Subscription, wire formats and
reconnection belong to the external feed collaborator; the adapters here only
bridge whatever it produces into that interface.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional, Union

from market_feed.models import OrderBookSnapshot


logger = logging.getLogger(__name__)


class FeedError(Exception):
    """The feed failed (disconnect, subscription failure) and cannot continue."""
    pass


class FeedStale(Exception):
    """No snapshot arrived within the staleness timeout."""

    def __init__(self, timeout: Optional[float]):
        self.timeout = timeout
        super().__init__(f"No order book snapshot received within {timeout}s")


_END_OF_STREAM = object()


class SnapshotFeed(ABC):
    """Source of order-book snapshots for one (exchange, instrument) pair."""

    @abstractmethod
    async def next_snapshot(self, timeout: Optional[float] = None) -> Optional[OrderBookSnapshot]:
        """
        Wait for the next snapshot.

        Returns None once the stream has ended. Raises FeedStale when nothing
        arrives within ``timeout`` seconds and FeedError when the feed fails.
        """

    async def close(self) -> None:
        """Release any resources held by the feed."""


class QueueFeed(SnapshotFeed):
    """
    Queue-backed feed for push-style producers.

    An external producer (websocket task, thread, test) calls ``publish`` for
    each snapshot, ``close`` at end of stream and ``fail`` on a feed error.
    With a bounded ``maxsize`` the oldest pending snapshot is dropped to make
    room for the newest one. The end-of-stream and failure markers are never
    dropped, and snapshots published after either are ignored.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._ended = False
        self._closed = False
        self.dropped_count = 0

    def publish(self, snapshot: Union[OrderBookSnapshot, dict[str, Any]]) -> None:
        """Enqueue a snapshot (or its mapping form) for the consumer."""
        if self._closed:
            logger.debug("Feed already closed, ignoring published snapshot")
            return
        if isinstance(snapshot, dict):
            snapshot = OrderBookSnapshot.from_dict(snapshot)
        self._put(snapshot)

    def publish_threadsafe(self, snapshot: OrderBookSnapshot, loop: asyncio.AbstractEventLoop) -> None:
        """Enqueue a snapshot from a producer thread outside the event loop."""
        loop.call_soon_threadsafe(self.publish, snapshot)

    def fail(self, error: BaseException) -> None:
        """Signal a feed failure; the consumer sees it as FeedError."""
        if self._closed:
            return
        self._closed = True
        self._put(error)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._put(_END_OF_STREAM)

    def _put(self, item: Any) -> None:
        # Markers are always last in the queue, so the oldest item is a snapshot
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self.dropped_count += 1
                logger.debug(f"Feed queue full, dropped oldest snapshot (dropped={self.dropped_count})")
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(item)

    async def next_snapshot(self, timeout: Optional[float] = None) -> Optional[OrderBookSnapshot]:
        if self._ended:
            return None

        try:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            raise FeedStale(timeout)

        if item is _END_OF_STREAM:
            self._ended = True
            return None

        if isinstance(item, BaseException):
            self._ended = True
            raise FeedError(f"Feed failed: {item}") from item

        return item

    @property
    def pending(self) -> int:
        """Number of snapshots waiting to be consumed."""
        return self._queue.qsize()


class AsyncIteratorFeed(SnapshotFeed):
    """
    Adapter over any async iterator of snapshots.

    A timed-out wait keeps the pending read alive, so a slow source is not
    torn down just because one staleness window elapsed.
    """

    def __init__(self, source: AsyncIterator[Union[OrderBookSnapshot, dict[str, Any]]]):
        self._iterator = source.__aiter__()
        self._pending: Optional[asyncio.Future] = None
        self._ended = False

    async def next_snapshot(self, timeout: Optional[float] = None) -> Optional[OrderBookSnapshot]:
        if self._ended:
            return None

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._read_next())

        done, _ = await asyncio.wait({self._pending}, timeout=timeout)
        if not done:
            raise FeedStale(timeout)

        pending, self._pending = self._pending, None
        try:
            item = pending.result()
        except asyncio.CancelledError:
            self._ended = True
            return None
        except Exception as e:
            self._ended = True
            raise FeedError(f"Feed source raised: {e}") from e

        if item is _END_OF_STREAM:
            self._ended = True
            return None

        if isinstance(item, dict):
            item = OrderBookSnapshot.from_dict(item)
        return item

    async def _read_next(self) -> Any:
        try:
            return await self._iterator.__anext__()
        except StopAsyncIteration:
            return _END_OF_STREAM

    async def close(self) -> None:
        self._ended = True
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            try:
                await self._pending
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Feed source raised while closing: {e}")
        self._pending = None

        aclose = getattr(self._iterator, "aclose", None)
        if aclose is not None:
            await aclose()
