"""
Tap trading engine.

Composition root for a tap session. Wires the price feed to the odds grid
(for display) and to the bet monitor (for resolution), owns the bet ledger,
and places the one market order that backs each tap.

Key Features:
- Single-flight placement: a tap while another is in flight is rejected
- Preconditions checked before any order is sent
- A bet becomes active only after the exchange acknowledges its order
- Bets keep resolving against their own asset after the visible asset changes
- Clean teardown; results of orders still in flight at stop are ignored

Example:
    >>> engine = BettingEngine(PaperExchange(), asset="BTC")
    >>> await engine.start()
    >>> box = engine.grid.long_boxes[0][0]
    >>> result = await engine.place_bet(box)
    >>> await engine.stop()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from ..config import (
    BALANCE_POLL_SECONDS,
    DEFAULT_ASSET,
    DEFAULT_BET_AMOUNT,
    MONITOR_INTERVAL_MS,
    ORDER_TIMEOUT_SECONDS,
    TAP_LEVERAGE,
    WS_URL,
)
from ..exchanges.base import BaseExchange, ExchangeError, OrderSide
from ..feeds.price_feed import PriceFeed, PricePoint, get_current_time_ms
from .feedback import FeedbackEvent, FeedbackSink, LoggingFeedback, dispatch
from .ledger import BetLedger
from .models import Direction, GridBox, PlacementFailure, PlacementResult, TapBet
from .monitor import BetMonitor, Resolution
from .odds_grid import Grid, generate_grid

logger = logging.getLogger(__name__)


@dataclass
class EngineSnapshot:
    """Consolidated view state for a front end."""

    asset: str
    current_price: float
    price_history: list[PricePoint]
    bet_amount: float
    active_bets: list[TapBet]
    completed_bets: list[TapBet]
    balance: float
    external_balance: float
    session_pnl: float
    is_connected: bool
    is_placing: bool = False
    stats: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset": self.asset,
            "current_price": self.current_price,
            "price_history": [{"time": p.time, "price": p.price} for p in self.price_history],
            "bet_amount": self.bet_amount,
            "active_bets": [b.to_dict() for b in self.active_bets],
            "completed_bets": [b.to_dict() for b in self.completed_bets],
            "balance": self.balance,
            "external_balance": self.external_balance,
            "session_pnl": self.session_pnl,
            "is_connected": self.is_connected,
            "is_placing": self.is_placing,
            "stats": self.stats,
        }


class BettingEngine:
    """
    Tap trading session.

    Attributes:
        exchange: Order-execution gateway and account balance source.
        ledger: Active and completed bets with derived balance.
        monitor: Excursion tracker and resolution loop.
        asset: Asset shown in the grid and used for new taps.
        bet_amount: Stake for the next tap.
        leverage: Order notional = stake * leverage.
    """

    def __init__(
        self,
        exchange: BaseExchange,
        asset: str = DEFAULT_ASSET,
        bet_amount: float = DEFAULT_BET_AMOUNT,
        leverage: float = TAP_LEVERAGE,
        feedback: Optional[Iterable[FeedbackSink]] = None,
        feed_factory: Optional[Callable[[str], PriceFeed]] = None,
        ws_url: str = WS_URL,
        price_increment: Optional[float] = None,
        monitor_interval_ms: int = MONITOR_INTERVAL_MS,
        balance_poll_seconds: float = BALANCE_POLL_SECONDS,
        order_timeout: float = ORDER_TIMEOUT_SECONDS,
        clock: Callable[[], int] = get_current_time_ms,
    ) -> None:
        """
        Initialize the engine.

        Args:
            exchange: Gateway used for balance and market orders.
            asset: Initial asset.
            bet_amount: Initial stake per tap.
            leverage: Leverage applied to order sizing.
            feedback: Feedback sinks (defaults to LoggingFeedback).
            feed_factory: Builds a PriceFeed for an asset.
            ws_url: Price websocket used by the default feed factory.
            price_increment: Grid row step for every asset (defaults to the per-asset table).
            monitor_interval_ms: Resolution cadence.
            balance_poll_seconds: Account balance refresh cadence.
            order_timeout: Seconds before an order submission is abandoned.
            clock: Millisecond clock.
        """
        if bet_amount <= 0:
            raise ValueError(f"Bet amount must be positive, got {bet_amount}")

        self.exchange = exchange
        self.asset = asset.upper()
        self.bet_amount = float(bet_amount)
        self.leverage = float(leverage)
        self.feedback = list(feedback) if feedback is not None else [LoggingFeedback()]
        self.balance_poll_seconds = balance_poll_seconds
        self.order_timeout = order_timeout
        self.price_increment = price_increment
        self._clock = clock
        self._feed_factory = feed_factory or (lambda a: PriceFeed(a, ws_url=ws_url, clock=clock))

        self.ledger = BetLedger()
        self.monitor = BetMonitor(self.ledger, interval_ms=monitor_interval_ms, clock=clock)
        self.monitor.subscribe(self._on_resolution)

        self._feeds: dict[str, PriceFeed] = {}
        self._grid: Optional[Grid] = None
        self._placing = False
        self._pending_asset: Optional[str] = None
        self._started = False
        self._closed = False
        self._tasks: set[asyncio.Task] = set()

        self._ensure_feed(self.asset)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Connect the gateway, start feeds, the monitor and the balance poller."""
        if self._started:
            return
        if self._closed:
            raise RuntimeError("Engine has been stopped and cannot be restarted")

        self._started = True
        logger.info(f"Starting tap engine (asset={self.asset}, exchange={self.exchange.name})")

        try:
            await asyncio.wait_for(self.exchange.connect(), timeout=self.order_timeout)
        except (ExchangeError, asyncio.TimeoutError) as e:
            logger.warning(f"Order gateway unavailable, taps will be rejected: {e}")

        await self.refresh_balance()

        for feed in self._feeds.values():
            feed.start()

        self._spawn(self.monitor.run())
        if self.balance_poll_seconds > 0:
            self._spawn(self._poll_balance())

    async def stop(self) -> None:
        """Tear down feeds and loops. Orders still in flight are ignored."""
        if self._closed:
            return
        self._closed = True
        logger.info("Stopping tap engine...")

        self.monitor.stop()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        feeds = list(self._feeds.values())
        self._feeds.clear()
        for feed in feeds:
            feed.unsubscribe(self._on_tick)
            await feed.stop()

        if self._started:
            try:
                await self.exchange.disconnect()
            except ExchangeError as e:
                logger.warning(f"Error disconnecting gateway: {e}")

        logger.info(f"Tap engine stopped. Session PnL: {self.ledger.session_pnl:+.2f}")

    @property
    def is_running(self) -> bool:
        return self._started and not self._closed

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # =========================================================================
    # Feeds
    # =========================================================================

    @property
    def feeds(self) -> dict[str, PriceFeed]:
        return dict(self._feeds)

    @property
    def feed(self) -> Optional[PriceFeed]:
        """Feed of the visible asset."""
        return self._feeds.get(self.asset)

    @property
    def current_price(self) -> float:
        feed = self.feed
        return feed.current_price if feed else 0.0

    @property
    def is_connected(self) -> bool:
        feed = self.feed
        return bool(feed and feed.is_connected)

    def _ensure_feed(self, asset: str) -> PriceFeed:
        feed = self._feeds.get(asset)
        if feed is None:
            feed = self._feed_factory(asset)
            feed.subscribe(self._on_tick)
            self._feeds[asset] = feed
            if self.is_running:
                feed.start()
        return feed

    def _on_tick(self, asset: str, point: PricePoint) -> None:
        # Excursions absorb the tick before the feed delivers the next one
        self.monitor.observe(asset, point.price)

    def _prune_feeds(self) -> None:
        """Close feeds that are neither visible nor backing an active or in-flight bet."""
        needed = self.ledger.active_assets() | {self.asset}
        if self._pending_asset is not None:
            needed.add(self._pending_asset)
        for asset in [a for a in self._feeds if a not in needed]:
            feed = self._feeds.pop(asset)
            feed.unsubscribe(self._on_tick)
            logger.info(f"Closing {asset} feed (no active bets)")
            if self.is_running:
                self._spawn(feed.stop())

    # =========================================================================
    # Grid
    # =========================================================================

    @property
    def grid(self) -> Grid:
        """Grid for the visible asset at the latest price, rebuilt when either changes."""
        price = self.current_price
        if self._grid is None or self._grid.asset != self.asset or self._grid.current_price != price:
            self._grid = generate_grid(price, self.asset, increment=self.price_increment)
        return self._grid

    def current_box(self, box: GridBox) -> Optional[GridBox]:
        """The live cell matching a tapped one, or None if the tap came from an outdated grid."""
        live = self.grid.find(box.id)
        if live is None:
            return None
        if (live.price, live.direction, live.time_window) != (box.price, box.direction, box.time_window):
            return None
        return live

    # =========================================================================
    # Setters
    # =========================================================================

    def set_bet_amount(self, amount: float) -> None:
        if amount <= 0:
            raise ValueError(f"Bet amount must be positive, got {amount}")
        self.bet_amount = float(amount)

    def set_asset(self, asset: str) -> None:
        """
        Switch the visible asset.

        Active bets on the previous asset keep their feed until they resolve.
        """
        asset = asset.upper()
        if asset == self.asset:
            return

        logger.info(f"Switching asset {self.asset} -> {asset}")
        self.asset = asset
        self._grid = None
        self._ensure_feed(asset)
        self._prune_feeds()

    # =========================================================================
    # Balance
    # =========================================================================

    async def refresh_balance(self) -> Optional[float]:
        """Pull the withdrawable balance from the gateway; failures keep the last value."""
        try:
            balance = await asyncio.wait_for(self.exchange.get_balance(), timeout=self.order_timeout)
        except (ExchangeError, asyncio.TimeoutError) as e:
            logger.warning(f"Balance refresh failed: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected balance error: {e}", exc_info=True)
            return None

        self.ledger.set_external_balance(float(balance.available))
        return self.ledger.external_balance

    async def _poll_balance(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.balance_poll_seconds)
            await self.refresh_balance()

    # =========================================================================
    # Placement
    # =========================================================================

    async def place_bet(self, box: GridBox) -> PlacementResult:
        """
        Turn a tapped cell into a bet backed by one market order.

        Returns:
            PlacementResult with the active bet, or the failure and reason.
        """
        if self._placing:
            return self._reject(PlacementFailure.ALREADY_PLACING, "A placement is already in flight")

        failure = self._check_preconditions(box)
        if failure is not None:
            return failure

        # Multiplier is repriced at the latest tick
        box = self.current_box(box)

        asset = self.asset
        price = self.current_price
        stake = self.bet_amount
        market = self.exchange.get_market(asset)

        size = market.round_size(Decimal(str(stake * self.leverage)) / Decimal(str(price)))
        if size <= 0:
            return self._reject(
                PlacementFailure.ORDER_TOO_SMALL,
                f"Stake {stake} at {self.leverage}x rounds to zero {asset}",
            )

        bet = TapBet.from_box(box, asset=asset, stake=stake, entry_price=price, now_ms=self._clock())
        side = OrderSide.BUY if bet.direction == Direction.LONG else OrderSide.SELL

        self._placing = True
        self._pending_asset = asset
        try:
            return await self._submit(bet, side, size, Decimal(str(price)))
        finally:
            self._placing = False
            self._pending_asset = None
            if not self._closed:
                self._prune_feeds()

    async def _submit(self, bet: TapBet, side: OrderSide, size: Decimal, price: Decimal) -> PlacementResult:
        """Send the backing order and record the bet once it is acknowledged."""
        try:
            order = await asyncio.wait_for(
                self.exchange.place_market_order(bet.asset, side, size, price),
                timeout=self.order_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Order for {bet.id} timed out after {self.order_timeout}s, status unknown")
            return self._reject_after_submit(
                PlacementFailure.EXECUTION_FAILED, f"Order timed out after {self.order_timeout}s"
            )
        except ExchangeError as e:
            logger.info(f"Order for {bet.id} rejected: {e}")
            return self._reject_after_submit(PlacementFailure.EXECUTION_FAILED, str(e))
        except Exception as e:
            logger.error(f"Unexpected error placing order for {bet.id}: {e}", exc_info=True)
            return self._reject_after_submit(PlacementFailure.EXECUTION_FAILED, str(e))

        if self._closed:
            logger.info(f"Engine stopped while order {order.order_id} was in flight, ignoring")
            return PlacementResult.rejected(PlacementFailure.ENGINE_STOPPED)

        if not order.is_accepted:
            return self._reject(PlacementFailure.EXECUTION_FAILED, f"Order {order.order_id} rejected")

        bet = bet.with_order(order.order_id)
        self.ledger.add_active(bet)
        # The visible asset may have changed while the order was in flight
        self._ensure_feed(bet.asset)
        self.monitor.track(bet)
        dispatch(self.feedback, FeedbackEvent.PLACED, bet)

        return PlacementResult.ok(bet)

    def _check_preconditions(self, box: GridBox) -> Optional[PlacementResult]:
        if self._closed:
            return self._reject(PlacementFailure.ENGINE_STOPPED, "Engine is stopped")

        if self.current_price <= 0:
            return self._reject(PlacementFailure.NO_PRICE, f"No price yet for {self.asset}")

        available = self.ledger.available_balance
        if available < self.bet_amount:
            return self._reject(
                PlacementFailure.INSUFFICIENT_BALANCE,
                f"Need {self.bet_amount:.2f}, available {available:.2f}",
            )

        if not self.exchange.is_connected:
            return self._reject(PlacementFailure.NOT_CONNECTED, f"{self.exchange.name} not connected")

        if self.exchange.get_market(self.asset) is None:
            return self._reject(PlacementFailure.INVALID_ASSET, f"{self.asset} is not tradable")

        if self.current_box(box) is None:
            return self._reject(
                PlacementFailure.STALE_BOX,
                f"Cell {box.id} @ {box.price} is not on the {self.asset} grid at {self.current_price}",
            )

        if self.ledger.has_active_bet(self.asset, box.price, box.direction):
            return self._reject(
                PlacementFailure.DUPLICATE_BET,
                f"Already have a {box.direction} bet at {box.price}",
            )
        return None

    def _reject(self, failure: PlacementFailure, message: str) -> PlacementResult:
        logger.debug(f"Tap rejected ({failure}): {message}")
        dispatch(self.feedback, FeedbackEvent.REJECTED)
        return PlacementResult.rejected(failure, message)

    def _reject_after_submit(self, failure: PlacementFailure, message: str) -> PlacementResult:
        if self._closed:
            return PlacementResult.rejected(PlacementFailure.ENGINE_STOPPED, message)
        return self._reject(failure, message)

    # =========================================================================
    # Resolution
    # =========================================================================

    def _on_resolution(self, resolution: Resolution) -> None:
        event = FeedbackEvent.WON if resolution.won else FeedbackEvent.LOST
        balance = self.exchange.settle_bet(Decimal(str(resolution.bet.pnl)))
        if balance is not None:
            self.ledger.set_external_balance(float(balance.available))

        dispatch(self.feedback, event, resolution.bet)
        self._prune_feeds()

    # =========================================================================
    # View state
    # =========================================================================

    def get_state(self) -> EngineSnapshot:
        feed = self.feed
        return EngineSnapshot(
            asset=self.asset,
            current_price=self.current_price,
            price_history=list(feed.price_history) if feed else [],
            bet_amount=self.bet_amount,
            active_bets=self.ledger.active_bets,
            completed_bets=list(self.ledger.completed_bets),
            balance=self.ledger.available_balance,
            external_balance=self.ledger.external_balance,
            session_pnl=self.ledger.session_pnl,
            is_connected=self.is_connected,
            is_placing=self._placing,
            stats=self.ledger.get_stats(),
        )
