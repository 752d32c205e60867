"""
Abstract base exchange interface for tap order execution.

This module defines the order, balance and market types the tap engine
exchanges with an order-execution gateway, the exchange error hierarchy,
and the abstract exchange interface every gateway implementation inherits.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Any, Optional


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class OrderSide(Enum):
    """Order side enumeration."""

    BUY = "buy"
    SELL = "sell"

    def __str__(self) -> str:
        return self.value


class OrderStatus(Enum):
    """Order status enumeration."""

    PENDING = "pending"
    OPEN = "open"
    FILLED = "filled"
    REJECTED = "rejected"

    def __str__(self) -> str:
        return self.value


@dataclass
class Order:
    """
    Represents a market order submitted for a tap bet.

    Attributes:
        order_id: Exchange (or simulated) order identifier.
        symbol: Asset symbol (e.g., 'BTC').
        asset_index: Perpetual asset index on the exchange.
        side: Buy or sell side.
        quantity: Order size in base currency.
        price: Reference price the order was sized against.
        status: Current order status.
        filled_quantity: Amount filled so far.
        average_fill_price: Average price of fills.
        created_at: Order creation timestamp.
        raw: Raw exchange response data.
    """

    order_id: str
    symbol: str
    asset_index: int
    side: OrderSide
    quantity: Decimal
    price: Optional[Decimal] = None
    status: OrderStatus = OrderStatus.PENDING
    filled_quantity: Decimal = Decimal("0")
    average_fill_price: Optional[Decimal] = None
    created_at: datetime = field(default_factory=_utc_now)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_accepted(self) -> bool:
        """An accepted order was taken for execution (not necessarily filled)."""
        return self.status != OrderStatus.REJECTED

    @property
    def is_filled(self) -> bool:
        return self.status == OrderStatus.FILLED


@dataclass
class Balance:
    """
    Account balance in the settlement currency.

    Attributes:
        currency: Currency symbol (e.g., 'USDC').
        total: Account value including margin in use.
        available: Withdrawable balance.
        locked: Margin in use.
        updated_at: Last update timestamp.
        raw: Raw exchange response data.
    """

    currency: str
    total: Decimal
    available: Decimal
    locked: Decimal = Decimal("0")
    updated_at: datetime = field(default_factory=_utc_now)
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class Market:
    """
    Tradable perpetual market.

    Attributes:
        symbol: Asset symbol (e.g., 'BTC').
        asset_index: Index used by the exchange to address the asset.
        size_decimals: Decimal places allowed for order size.
        max_leverage: Maximum allowed leverage.
        is_active: Whether market is currently tradeable.
    """

    symbol: str
    asset_index: int
    size_decimals: int
    max_leverage: int = 50
    is_active: bool = True

    def round_size(self, quantity: Decimal) -> Decimal:
        """Round an order size down to the market's size precision."""
        step = Decimal(1).scaleb(-self.size_decimals)
        return Decimal(quantity).quantize(step, rounding=ROUND_DOWN)


class ExchangeError(Exception):
    """Base exception for exchange-related errors."""

    pass


class ConnectionError(ExchangeError):
    """Raised when connection to exchange fails."""

    pass


class AuthenticationError(ExchangeError):
    """Raised when authentication fails."""

    pass


class InsufficientBalanceError(ExchangeError):
    """Raised when balance is insufficient for operation."""

    pass


class OrderError(ExchangeError):
    """Raised when order operation fails."""

    pass


class RateLimitError(ExchangeError):
    """Raised when rate limit is exceeded."""

    pass


class BaseExchange(ABC):
    """
    Abstract base class for order-execution gateways.

    The tap engine needs three things from an exchange: a connection flag,
    a withdrawable balance, and market order submission for a known asset.

    Attributes:
        name: Exchange name identifier.
        is_connected: Connection status flag.
        is_testnet: Whether using testnet environment.
        is_mock: Whether running in mock mode without real credentials.
    """

    def __init__(
        self,
        testnet: bool = True,
        mock_mode: bool = False,
    ) -> None:
        """
        Initialize base exchange.

        Args:
            testnet: Use testnet environment (default True for safety).
            mock_mode: Run in mock mode without real API calls.
        """
        self.is_testnet = testnet
        self.is_mock = mock_mode
        self.is_connected = False
        self._name = "base"
        self._markets: dict[str, Market] = {}

    @property
    def name(self) -> str:
        """Exchange name identifier."""
        return self._name

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish connection to the exchange.

        Raises:
            ConnectionError: If connection fails.
            AuthenticationError: If authentication fails.
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the exchange."""
        pass

    @abstractmethod
    async def get_balance(self) -> Balance:
        """
        Fetch the account balance.

        Returns:
            Balance whose ``available`` field is the withdrawable amount.

        Raises:
            ConnectionError: If not connected.
            AuthenticationError: If authentication fails.
        """
        pass

    @abstractmethod
    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
    ) -> Order:
        """
        Submit a market order.

        Args:
            symbol: Asset symbol.
            side: Buy or sell.
            quantity: Order size in base currency.
            price: Reference price used for slippage protection.

        Returns:
            Order accepted for execution.

        Raises:
            OrderError: If the order is rejected, with a readable reason.
            InsufficientBalanceError: If margin is insufficient.
            ConnectionError: If not connected.
        """
        pass

    def settle_bet(self, pnl: Decimal) -> Optional[Balance]:
        """
        Apply a resolved tap's PnL to a simulated account.

        Live accounts settle on the exchange itself, so the default does nothing.

        Returns:
            The updated balance, or None if the account is not simulated.
        """
        return None

    def get_market(self, symbol: str) -> Optional[Market]:
        """Look up a tradable market by symbol from the cached market table."""
        market = self._markets.get(symbol.upper())
        if market is None or not market.is_active:
            return None
        return market

    def get_asset_index(self, symbol: str) -> Optional[int]:
        """Return the exchange asset index for a symbol, or None if not tradable."""
        market = self.get_market(symbol)
        return market.asset_index if market else None

    def _ensure_connected(self) -> None:
        """Raise ConnectionError if not connected."""
        if not self.is_connected:
            raise ConnectionError(f"Not connected to {self.name}. Call connect() first.")

    def __repr__(self) -> str:
        mode = "mock" if self.is_mock else ("testnet" if self.is_testnet else "mainnet")
        status = "connected" if self.is_connected else "disconnected"
        return f"<{self.__class__.__name__} mode={mode} status={status}>"


def markets_from_config() -> dict[str, Market]:
    """Build the static market table used when exchange metadata is unavailable."""
    from ..config import PERP_ASSET_INDEXES, PERP_SIZE_DECIMALS

    default_decimals = PERP_SIZE_DECIMALS["DEFAULT"]
    return {
        symbol: Market(
            symbol=symbol,
            asset_index=index,
            size_decimals=PERP_SIZE_DECIMALS.get(symbol, default_decimals),
        )
        for symbol, index in PERP_ASSET_INDEXES.items()
    }
