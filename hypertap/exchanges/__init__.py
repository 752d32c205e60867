"""
Exchange implementations for tap order execution.

This module provides exchange abstractions and implementations:
- BaseExchange: Abstract base class for all order-execution gateways
- PaperExchange: In-memory simulator for paper mode and tests
- HyperliquidExchange: Hyperliquid perpetuals (testnet/mainnet, mock without key)

Usage:
    from hypertap.exchanges import HyperliquidExchange, OrderSide

    exchange = HyperliquidExchange(testnet=True)
    await exchange.connect()

    order = await exchange.place_market_order(
        symbol="BTC",
        side=OrderSide.BUY,
        quantity=Decimal("0.001"),
        price=Decimal("100000"),
    )
"""

from .base import (
    AuthenticationError,
    Balance,
    BaseExchange,
    ConnectionError,
    ExchangeError,
    InsufficientBalanceError,
    Market,
    Order,
    OrderError,
    OrderSide,
    OrderStatus,
    RateLimitError,
)
from .hyperliquid import HyperliquidExchange
from .paper import PaperExchange

__all__ = [
    # Base classes and types
    "BaseExchange",
    "Order",
    "Balance",
    "Market",
    "OrderSide",
    "OrderStatus",
    # Exceptions
    "ExchangeError",
    "ConnectionError",
    "AuthenticationError",
    "OrderError",
    "InsufficientBalanceError",
    "RateLimitError",
    # Implementations
    "PaperExchange",
    "HyperliquidExchange",
]
