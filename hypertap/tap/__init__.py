"""
Tap trading core.

This module provides:
- Odds grid generation (generate_grid, calculate_multiplier)
- Bet records and lifecycle transitions (TapBet, GridBox)
- In-memory accounting (BetLedger)
- Excursion-based resolution loop (BetMonitor)
- Session composition and order placement (BettingEngine)
"""

from .engine import BettingEngine, EngineSnapshot
from .feedback import FeedbackEvent, FeedbackSink, LoggingFeedback
from .ledger import BetLedger
from .models import (
    BetStatus,
    Direction,
    GridBox,
    InvalidTransitionError,
    PlacementFailure,
    PlacementResult,
    TapBet,
)
from .monitor import BetMonitor, Excursion, Resolution
from .odds_grid import Grid, calculate_multiplier, generate_grid, get_price_increment

__all__ = [
    # Engine
    "BettingEngine",
    "EngineSnapshot",
    # Models
    "TapBet",
    "GridBox",
    "Direction",
    "BetStatus",
    "PlacementFailure",
    "PlacementResult",
    "InvalidTransitionError",
    # Accounting and resolution
    "BetLedger",
    "BetMonitor",
    "Excursion",
    "Resolution",
    # Grid
    "Grid",
    "generate_grid",
    "calculate_multiplier",
    "get_price_increment",
    # Feedback
    "FeedbackEvent",
    "FeedbackSink",
    "LoggingFeedback",
]
