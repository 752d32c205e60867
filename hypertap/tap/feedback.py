"""
Feedback sinks for tap events (haptics, sounds, UI toasts).

The engine only invokes sinks; what a sink does with an event is up to the
front end. Calls are fire-and-forget: a failing sink is logged and skipped.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Iterable, Optional

from .models import TapBet

logger = logging.getLogger(__name__)


class FeedbackEvent(Enum):
    PLACED = "placed"
    WON = "won"
    LOST = "lost"
    REJECTED = "rejected"

    def __str__(self) -> str:
        return self.value


class FeedbackSink(ABC):
    """Receives tap events."""

    @abstractmethod
    def notify(self, event: FeedbackEvent, bet: Optional[TapBet] = None) -> None:
        pass


class LoggingFeedback(FeedbackSink):
    """Writes tap events to the log; the default sink for headless runs."""

    def notify(self, event: FeedbackEvent, bet: Optional[TapBet] = None) -> None:
        if bet is None:
            logger.info(f"[{event}]")
        elif bet.pnl is not None:
            logger.info(f"[{event}] {bet.asset} {bet.direction} @ {bet.target_price} pnl={bet.pnl:+.2f}")
        else:
            logger.info(f"[{event}] {bet.asset} {bet.direction} @ {bet.target_price} x{bet.multiplier}")


def dispatch(sinks: Iterable[FeedbackSink], event: FeedbackEvent, bet: Optional[TapBet] = None) -> None:
    """Notify every sink, isolating failures."""
    for sink in sinks:
        try:
            sink.notify(event, bet)
        except Exception as e:
            logger.warning(f"Feedback sink {sink.__class__.__name__} failed on {event}: {e}")
