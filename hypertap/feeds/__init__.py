"""
Market data feeds for the tap engine.

- PriceFeed: Hyperliquid trades websocket with bounded history and reconnect
- ReconnectPolicy: Fixed-delay reconnect supervision
- PricePoint: One observed price at its receipt time
"""

from .price_feed import (
    FeedStats,
    PriceFeed,
    PricePoint,
    ReconnectPolicy,
    get_current_time_ms,
)

__all__ = [
    "PriceFeed",
    "PricePoint",
    "ReconnectPolicy",
    "FeedStats",
    "get_current_time_ms",
]
