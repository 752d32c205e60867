"""
Bet resolution monitor.

Tracks, for every active bet, the highest and lowest price seen on its
asset since placement, and resolves bets on a fixed cadence:

1. Target touched by the excursion -> WON (checked first)
2. Deadline reached without a touch -> LOST
3. Otherwise the bet stays active

Using the excursion instead of the price at evaluation time catches a
target that was touched and abandoned between two evaluations.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..config import MONITOR_INTERVAL_MS
from ..feeds.price_feed import get_current_time_ms
from .ledger import BetLedger
from .models import BetStatus, TapBet

logger = logging.getLogger(__name__)


@dataclass
class Excursion:
    """Running high/low of a bet's price path."""

    high: float
    low: float

    def update(self, price: float) -> None:
        if price > self.high:
            self.high = price
        if price < self.low:
            self.low = price


@dataclass(frozen=True)
class Resolution:
    """A bet that just reached a terminal status."""

    bet: TapBet

    @property
    def won(self) -> bool:
        return self.bet.status == BetStatus.WON


ResolutionCallback = Callable[[Resolution], None]


class BetMonitor:
    """
    Polling evaluator for active bets.

    Price observations update excursions immediately; ``evaluate`` decides
    outcomes and settles them in the ledger. ``run`` calls ``evaluate`` every
    ``interval_ms`` until ``stop`` is called.

    Example:
        >>> monitor = BetMonitor(ledger)
        >>> monitor.subscribe(lambda r: print(r.bet.status))
        >>> monitor.track(bet)
        >>> monitor.observe("BTC", 101.0)
        >>> monitor.evaluate()
    """

    def __init__(
        self,
        ledger: BetLedger,
        interval_ms: int = MONITOR_INTERVAL_MS,
        clock: Callable[[], int] = get_current_time_ms,
    ) -> None:
        self.ledger = ledger
        self.interval_ms = interval_ms
        self._clock = clock

        self._excursions: dict[str, Excursion] = {}
        self._callbacks: list[ResolutionCallback] = []
        self._stop_event = asyncio.Event()
        self.cycles = 0

    def subscribe(self, callback: ResolutionCallback) -> None:
        self._callbacks.append(callback)

    def track(self, bet: TapBet) -> None:
        """Start the excursion of a newly active bet at its entry price."""
        self._excursions[bet.id] = Excursion(high=bet.entry_price, low=bet.entry_price)

    def excursion(self, bet_id: str) -> Optional[Excursion]:
        return self._excursions.get(bet_id)

    @property
    def tracked_count(self) -> int:
        return len(self._excursions)

    def observe(self, asset: str, price: float) -> None:
        """Fold a price observation into every active bet on ``asset``."""
        for bet in self.ledger.active_bets:
            if bet.asset != asset:
                continue
            excursion = self._excursions.get(bet.id)
            if excursion is None:
                excursion = Excursion(high=bet.entry_price, low=bet.entry_price)
                self._excursions[bet.id] = excursion
            excursion.update(price)

    def evaluate(self, now_ms: Optional[int] = None) -> list[Resolution]:
        """
        Resolve every active bet whose outcome is decided.

        Args:
            now_ms: Evaluation time; defaults to the monitor clock.

        Returns:
            Resolutions produced by this evaluation.
        """
        now_ms = self._clock() if now_ms is None else now_ms
        resolutions = []

        for bet in self.ledger.active_bets:
            excursion = self._excursions.get(bet.id)
            high = excursion.high if excursion else bet.entry_price
            low = excursion.low if excursion else bet.entry_price

            if bet.is_touched(high, low):
                resolved = self.ledger.settle(bet.id, won=True, now_ms=now_ms)
            elif bet.is_expired(now_ms):
                resolved = self.ledger.settle(bet.id, won=False, now_ms=now_ms)
            else:
                continue

            self._excursions.pop(bet.id, None)
            if resolved is not None:
                resolutions.append(Resolution(bet=resolved))

        self._purge()
        self.cycles += 1

        for resolution in resolutions:
            self._notify(resolution)
        return resolutions

    def _purge(self) -> None:
        """Drop excursion state for ids that are no longer active."""
        stale = [bet_id for bet_id in self._excursions if not self.ledger.is_active(bet_id)]
        for bet_id in stale:
            del self._excursions[bet_id]

    def _notify(self, resolution: Resolution) -> None:
        for callback in list(self._callbacks):
            try:
                callback(resolution)
            except Exception as e:
                logger.error(f"Resolution callback error: {e}", exc_info=True)

    async def run(self) -> None:
        """Evaluate on a fixed cadence until stopped."""
        logger.info(f"Bet monitor started (interval={self.interval_ms}ms)")
        self._stop_event.clear()

        try:
            while not self._stop_event.is_set():
                try:
                    self.evaluate()
                except Exception as e:
                    logger.error(f"Unexpected error in evaluation: {e}", exc_info=True)

                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.interval_ms / 1000.0,
                    )
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue to next cycle

        except asyncio.CancelledError:
            logger.info("Bet monitor cancelled")
            raise
        finally:
            logger.info("Bet monitor stopped")

    def stop(self) -> None:
        self._stop_event.set()
