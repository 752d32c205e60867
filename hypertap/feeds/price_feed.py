"""
Hyperliquid WebSocket Price Feed

Live trade prices for one asset with a bounded recent-price history.
Reconnects on a fixed delay until stopped.
"""
import asyncio
import functools
import json
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

import websockets

from ..config import MAX_PRICE_HISTORY, RECONNECT_DELAY_MS, WS_URL

logger = logging.getLogger(__name__)


def get_current_time_ms() -> int:
    """Get current time in milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PricePoint:
    """Price observed at a local receipt time (ms)."""
    time: int
    price: float


@dataclass
class ReconnectPolicy:
    """
    Fixed-delay reconnect supervision.

    max_attempts=None retries forever. Attempts count consecutive failed
    connections and reset once a connection is established.
    """
    delay_ms: int = RECONNECT_DELAY_MS
    max_attempts: Optional[int] = None

    def should_retry(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt <= self.max_attempts

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000.0


@dataclass
class FeedStats:
    """Statistics for a feed."""
    updates_received: int = 0
    malformed_messages: int = 0
    connection_errors: int = 0
    reconnects: int = 0
    last_update_ts: int = 0


TickCallback = Callable[[str, PricePoint], None]


class PriceFeed:
    """
    Real-time trade price feed from the Hyperliquid websocket.

    Subscribes to the ``trades`` channel for one coin. Each trade in a
    message becomes a PricePoint, so every print reaches subscribers in
    order, not only the last one of a batch.

    Ticks are tagged with the generation of the connection that produced
    them; stopping bumps the generation so anything a stale connection
    delivers afterwards is dropped. Following another asset means a new
    PriceFeed.

    Example:
        feed = PriceFeed("BTC")

        def on_tick(asset: str, point: PricePoint):
            print(f"{asset}: ${point.price:.2f}")

        feed.subscribe(on_tick)
        feed.start()
        ...
        await feed.stop()
    """

    def __init__(
        self,
        asset: str,
        ws_url: str = WS_URL,
        max_history: int = MAX_PRICE_HISTORY,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        connector: Optional[Callable[[str], Any]] = None,
        clock: Callable[[], int] = get_current_time_ms,
    ):
        """
        Initialize the feed.

        Args:
            asset: Coin symbol to track (e.g. "BTC")
            ws_url: Websocket endpoint
            max_history: Number of recent price points kept
            reconnect_policy: Reconnect supervision (fixed 3s delay, forever)
            connector: Callable returning an async context manager websocket;
                defaults to websockets.connect
            clock: Millisecond clock used to timestamp ticks
        """
        self.asset = asset.upper()
        self.ws_url = ws_url
        self.max_history = max_history
        self.reconnect_policy = reconnect_policy or ReconnectPolicy()
        self._connector = connector or functools.partial(websockets.connect, ping_interval=20)
        self._clock = clock

        self.current_price: float = 0.0
        self.price_history: Deque[PricePoint] = deque(maxlen=max_history)
        self.is_connected = False
        self.last_error: Optional[str] = None
        self.stats = FeedStats()

        self._callbacks: List[TickCallback] = []
        self._generation = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        """Identity of the current connection loop."""
        return self._generation

    def subscribe(self, callback: TickCallback) -> None:
        """
        Subscribe to price updates.

        Args:
            callback: Function taking (asset, PricePoint)
        """
        self._callbacks.append(callback)

    def unsubscribe(self, callback: TickCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def start(self) -> asyncio.Task:
        """Start the websocket loop as a background task."""
        if self._running and self._task is not None:
            logger.debug(f"{self.asset}: Feed already running")
            return self._task

        self._running = True
        self._generation += 1
        self._task = asyncio.create_task(self._run(self._generation))
        logger.info(f"{self.asset}: Price feed started")
        return self._task

    async def stop(self) -> None:
        """Tear down the connection; no tick is applied after this returns."""
        self._running = False
        self._generation += 1
        self.is_connected = False

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            if task is asyncio.current_task():
                return
            try:
                await task
            except asyncio.CancelledError:
                pass

        logger.info(f"{self.asset}: Price feed stopped")

    def subscribe_message(self) -> Dict[str, Any]:
        return {
            "method": "subscribe",
            "subscription": {"type": "trades", "coin": self.asset},
        }

    async def _run(self, generation: int) -> None:
        """Main websocket loop with fixed-delay reconnect."""
        attempt = 0

        while self._running and generation == self._generation:
            try:
                async with self._connector(self.ws_url) as ws:
                    if generation != self._generation:
                        break

                    await ws.send(json.dumps(self.subscribe_message()))
                    self.is_connected = True
                    self.last_error = None
                    attempt = 0
                    logger.info(f"{self.asset}: Connected to {self.ws_url}")

                    async for message in ws:
                        if generation != self._generation:
                            break
                        self.handle_message(message, generation)

                if generation == self._generation:
                    self.last_error = "connection closed"
                    logger.warning(f"{self.asset}: WebSocket closed by server")

            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats.connection_errors += 1
                self.last_error = str(e) or e.__class__.__name__
                logger.warning(f"{self.asset}: Connection error: {self.last_error}")

            if generation != self._generation:
                break

            self.is_connected = False
            attempt += 1
            if not self._running or not self.reconnect_policy.should_retry(attempt):
                logger.error(f"{self.asset}: Giving up after {attempt - 1} reconnect attempts")
                break

            self.stats.reconnects += 1
            logger.info(
                f"{self.asset}: Reconnecting in {self.reconnect_policy.delay_seconds}s "
                f"(attempt {attempt})..."
            )
            await asyncio.sleep(self.reconnect_policy.delay_seconds)

        if generation == self._generation:
            self._running = False
            self.is_connected = False

    def handle_message(self, message: Any, generation: Optional[int] = None) -> int:
        """
        Apply one raw websocket message.

        Args:
            message: Raw message (str/bytes)
            generation: Connection generation that received it; stale
                generations are ignored

        Returns:
            Number of ticks applied
        """
        if generation is not None and generation != self._generation:
            return 0

        try:
            prices = self.parse_trades(message, self.asset)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            self.stats.malformed_messages += 1
            logger.debug(f"{self.asset}: Dropped malformed message: {e}")
            return 0

        for price in prices:
            self._apply_price(price)
        return len(prices)

    @staticmethod
    def parse_trades(message: Any, asset: str) -> List[float]:
        """
        Extract trade prices for ``asset`` from a websocket message.

        Non-trade channels (subscription acks, pongs) yield no prices.

        Raises:
            ValueError: If the message is not valid JSON or a trade is malformed
        """
        data = json.loads(message)
        if not isinstance(data, dict) or data.get("channel") != "trades":
            return []

        trades = data.get("data")
        if trades is None:
            return []
        if not isinstance(trades, list):
            trades = [trades]

        prices = []
        for trade in trades:
            coin = trade.get("coin")
            if coin is not None and coin.upper() != asset:
                continue
            price = float(trade["px"])
            if not math.isfinite(price) or price <= 0:
                raise ValueError(f"Invalid trade price: {trade['px']!r}")
            prices.append(price)
        return prices

    def _apply_price(self, price: float) -> None:
        point = PricePoint(time=self._clock(), price=price)

        self.current_price = price
        self.price_history.append(point)
        self.stats.updates_received += 1
        self.stats.last_update_ts = point.time

        for callback in list(self._callbacks):
            try:
                callback(self.asset, point)
            except Exception as e:
                logger.error(f"{self.asset}: Callback error: {e}", exc_info=True)

    def is_healthy(self, max_age_seconds: int = 10) -> bool:
        """True if connected and a tick arrived within ``max_age_seconds``."""
        if not self._running or not self.is_connected:
            return False

        age_seconds = (self._clock() - self.stats.last_update_ts) / 1000.0
        return age_seconds < max_age_seconds

    def get_stats(self) -> Dict:
        """Get feed statistics."""
        now_ms = self._clock()
        age = (now_ms - self.stats.last_update_ts) / 1000.0 if self.stats.last_update_ts else 0

        return {
            "asset": self.asset,
            "running": self._running,
            "connected": self.is_connected,
            "healthy": self.is_healthy(),
            "current_price": self.current_price,
            "history_size": len(self.price_history),
            "updates_received": self.stats.updates_received,
            "malformed_messages": self.stats.malformed_messages,
            "connection_errors": self.stats.connection_errors,
            "reconnects": self.stats.reconnects,
            "seconds_since_update": age,
            "last_error": self.last_error,
        }
