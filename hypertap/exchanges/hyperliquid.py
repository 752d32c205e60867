"""
Hyperliquid exchange implementation.

This module provides the order-execution gateway for tap bets on Hyperliquid
perpetuals. Supports both testnet and mainnet, with automatic mock mode when
credentials are not available.
"""

import asyncio
import logging
import os
import uuid
from decimal import Decimal
from typing import Any, Optional

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .base import (
    AuthenticationError,
    Balance,
    BaseExchange,
    ConnectionError,
    Market,
    Order,
    OrderError,
    OrderSide,
    OrderStatus,
    RateLimitError,
    markets_from_config,
)

logger = logging.getLogger(__name__)

# Retry configuration for read-only calls. Orders are never retried.
MAX_RETRY_ATTEMPTS = 3
RETRY_MIN_WAIT = 0.5  # seconds
RETRY_MAX_WAIT = 2.0  # seconds

# Max slippage allowed on market orders (5%)
DEFAULT_SLIPPAGE = 0.05

_read_retry = retry(
    stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=RETRY_MIN_WAIT, max=RETRY_MAX_WAIT),
    retry=retry_if_exception_type((ConnectionError, RateLimitError)),
    reraise=True,
)


class HyperliquidExchange(BaseExchange):
    """
    Hyperliquid perpetual futures gateway.

    Supports:
    - Testnet (default) and mainnet environments
    - Mock mode when HYPERLIQUID_PRIVATE_KEY is not set
    - Asset index discovery from exchange metadata
    - Retry with exponential backoff for read-only calls

    Environment Variables:
        HYPERLIQUID_PRIVATE_KEY: Private key for signing transactions.
        HYPERLIQUID_WALLET_ADDRESS: Account address (optional, derived from key).

    Example:
        >>> exchange = HyperliquidExchange(testnet=True)
        >>> await exchange.connect()
        >>> balance = await exchange.get_balance()
        >>> await exchange.disconnect()
    """

    MOCK_BALANCE = Decimal("10000")

    def __init__(
        self,
        testnet: bool = True,
        private_key: Optional[str] = None,
        wallet_address: Optional[str] = None,
        slippage: float = DEFAULT_SLIPPAGE,
    ) -> None:
        """
        Initialize Hyperliquid exchange.

        Args:
            testnet: Use testnet environment (default True for safety).
            private_key: Private key for signing. Falls back to env var.
            wallet_address: Account address. Falls back to env var.
            slippage: Max slippage for market orders.
        """
        self._private_key = private_key or os.environ.get("HYPERLIQUID_PRIVATE_KEY")
        self._wallet_address = wallet_address or os.environ.get("HYPERLIQUID_WALLET_ADDRESS")

        # Enable mock mode if no credentials
        mock_mode = not self._private_key
        super().__init__(testnet=testnet, mock_mode=mock_mode)

        self._name = "hyperliquid"
        self.slippage = slippage

        # SDK clients (lazy initialized)
        self._info_client = None
        self._exchange_client = None

        # Static table until metadata is loaded
        self._markets = markets_from_config()

        if self.is_mock:
            logger.info(
                "Hyperliquid initialized in MOCK MODE - no real trades will be executed. "
                "Set HYPERLIQUID_PRIVATE_KEY environment variable for live trading."
            )
        else:
            logger.info(f"Hyperliquid initialized for {'testnet' if testnet else 'MAINNET'}")

    async def connect(self) -> None:
        """
        Establish connection to Hyperliquid.

        In mock mode, simulates a successful connection.
        In live mode, initializes the SDK clients and loads the market table.

        Raises:
            ConnectionError: If connection fails.
            AuthenticationError: If the private key is invalid.
        """
        if self.is_connected:
            logger.debug("Already connected to Hyperliquid")
            return

        if self.is_mock:
            logger.info("Mock connection established to Hyperliquid")
            self.is_connected = True
            return

        try:
            # Import SDK only when needed (not in mock mode)
            from eth_account import Account
            from hyperliquid.exchange import Exchange
            from hyperliquid.info import Info
            from hyperliquid.utils import constants
        except ImportError as e:
            raise ConnectionError(
                f"Failed to import hyperliquid SDK: {e}. "
                "Install with: pip install hyperliquid-python-sdk"
            )

        try:
            wallet = Account.from_key(self._private_key)
        except Exception as e:
            raise AuthenticationError(f"Invalid Hyperliquid private key: {e}")

        if not self._wallet_address:
            self._wallet_address = wallet.address

        base_url = constants.TESTNET_API_URL if self.is_testnet else constants.MAINNET_API_URL

        try:
            self._info_client = await asyncio.to_thread(Info, base_url, True)
            self._exchange_client = await asyncio.to_thread(
                Exchange, wallet, base_url, account_address=self._wallet_address
            )
        except Exception as e:
            raise ConnectionError(f"Failed to connect to Hyperliquid: {e}")

        self.is_connected = True
        logger.info(f"Connected to Hyperliquid {'testnet' if self.is_testnet else 'mainnet'}")

        try:
            await self.load_markets()
        except ConnectionError as e:
            logger.warning(f"Using static asset table, metadata unavailable: {e}")

    async def disconnect(self) -> None:
        """Clean up SDK clients and reset connection state."""
        if not self.is_connected:
            return

        self._info_client = None
        self._exchange_client = None
        self.is_connected = False
        logger.info("Disconnected from Hyperliquid")

    @_read_retry
    async def load_markets(self) -> dict[str, Market]:
        """
        Refresh the market table from the exchange's perpetual universe.

        The asset index of a perpetual is its position in the universe list.

        Returns:
            Mapping of symbol to Market.
        """
        self._ensure_connected()

        if self.is_mock:
            return self._markets

        try:
            meta = await asyncio.to_thread(self._info_client.meta)
        except Exception as e:
            raise ConnectionError(f"Failed to fetch markets: {e}")

        markets = {}
        for index, asset_info in enumerate(meta.get("universe", [])):
            symbol = asset_info["name"].upper()
            markets[symbol] = Market(
                symbol=symbol,
                asset_index=index,
                size_decimals=int(asset_info.get("szDecimals", 4)),
                max_leverage=int(asset_info.get("maxLeverage", 50)),
                is_active=not asset_info.get("isDelisted", False),
            )

        if markets:
            self._markets = markets
            logger.info(f"Loaded {len(markets)} Hyperliquid perpetual markets")
        return self._markets

    @_read_retry
    async def get_balance(self) -> Balance:
        """
        Fetch the withdrawable USDC balance.

        Raises:
            ConnectionError: If not connected or the request fails.
            AuthenticationError: If no account address is known.
        """
        self._ensure_connected()

        if self.is_mock:
            return Balance(currency="USDC", total=self.MOCK_BALANCE, available=self.MOCK_BALANCE)

        if not self._wallet_address:
            raise AuthenticationError("Wallet address required for balance check")

        try:
            user_state = await asyncio.to_thread(
                self._info_client.user_state, self._wallet_address
            )
        except Exception as e:
            logger.error(f"Failed to fetch balance: {e}")
            raise ConnectionError(f"Failed to fetch balance: {e}")

        margin_summary = user_state.get("marginSummary", {})
        account_value = Decimal(str(margin_summary.get("accountValue", "0")))
        margin_used = Decimal(str(margin_summary.get("totalMarginUsed", "0")))

        return Balance(
            currency="USDC",
            total=account_value,
            available=Decimal(str(user_state.get("withdrawable", account_value - margin_used))),
            locked=margin_used,
            raw=user_state,
        )

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
    ) -> Order:
        """
        Submit a market order through the SDK's slippage-bounded market_open.

        Raises:
            OrderError: If the order is rejected or the request fails.
        """
        self._ensure_connected()

        market = self.get_market(symbol)
        if market is None:
            raise OrderError(f"Unknown or inactive market: {symbol}")

        if quantity <= 0:
            raise OrderError(f"Order size must be positive, got {quantity}")

        if self.is_mock:
            return self._mock_place_order(market, side, quantity, price)

        is_buy = side == OrderSide.BUY

        try:
            order_result = await asyncio.to_thread(
                self._exchange_client.market_open,
                market.symbol,
                is_buy,
                float(quantity),
                float(price),
                self.slippage,
            )
        except Exception as e:
            logger.error(f"Failed to place order: {e}")
            raise OrderError(f"Failed to place order: {e}")

        return self._parse_order_result(order_result, market, side, quantity, price)

    def _parse_order_result(
        self,
        order_result: dict[str, Any],
        market: Market,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
    ) -> Order:
        """Turn a market_open response into an Order, raising on rejection."""
        if order_result.get("status") != "ok":
            raise OrderError(f"Order failed: {order_result.get('response', 'Unknown error')}")

        data = order_result.get("response", {}).get("data", {})
        statuses = data.get("statuses", [{}])
        status_info = statuses[0] if statuses else {}

        if "error" in status_info:
            raise OrderError(f"Order rejected: {status_info['error']}")

        if "filled" in status_info:
            filled_info = status_info["filled"]
            status = OrderStatus.FILLED
            filled_qty = Decimal(str(filled_info.get("totalSz", quantity)))
            avg_price = Decimal(str(filled_info.get("avgPx", price)))
            oid = filled_info.get("oid")
        elif "resting" in status_info:
            status = OrderStatus.OPEN
            filled_qty = Decimal("0")
            avg_price = None
            oid = status_info["resting"].get("oid")
        else:
            status = OrderStatus.PENDING
            filled_qty = Decimal("0")
            avg_price = None
            oid = None

        order = Order(
            order_id=str(oid) if oid is not None else str(uuid.uuid4()),
            symbol=market.symbol,
            asset_index=market.asset_index,
            side=side,
            quantity=quantity,
            price=price,
            status=status,
            filled_quantity=filled_qty,
            average_fill_price=avg_price,
            raw=order_result,
        )

        logger.info(f"Order placed: {order.side} {order.quantity} {order.symbol} ({order.status})")
        return order

    def _mock_place_order(
        self,
        market: Market,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
    ) -> Order:
        """Market orders fill immediately at the reference price in mock mode."""
        order = Order(
            order_id=str(uuid.uuid4()),
            symbol=market.symbol,
            asset_index=market.asset_index,
            side=side,
            quantity=quantity,
            price=price,
            status=OrderStatus.FILLED,
            filled_quantity=quantity,
            average_fill_price=price,
        )
        logger.info(f"[MOCK] Order placed: {side} {quantity} {market.symbol} @ {price}")
        return order
