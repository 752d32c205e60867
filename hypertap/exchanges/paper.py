"""
Paper Trading Exchange Simulator.

Implements the BaseExchange interface but executes tap orders virtually.
Useful for:
- Running the tap engine without funds or credentials
- Deterministic tests of the order-placement path
- Simulating rejections and slow acknowledgements

Features:
- Instant fills at the reference price (plus optional slippage)
- Margin check against the simulated balance and leverage
- Injectable rejection reason and acknowledgement latency
- Order history kept in memory
"""

import asyncio
import logging
import uuid
from decimal import Decimal
from typing import Optional

from .base import (
    Balance,
    BaseExchange,
    InsufficientBalanceError,
    Market,
    Order,
    OrderError,
    OrderSide,
    OrderStatus,
    markets_from_config,
)

logger = logging.getLogger(__name__)


class PaperExchange(BaseExchange):
    """
    Paper trading gateway.

    Market orders fill instantly at the reference price. The simulated
    balance is what the tap engine reads as the external account balance.

    Attributes:
        balance: Current withdrawable balance.
        leverage: Leverage used for the margin check.
        slippage_bps: Slippage applied to fills in basis points.
        latency: Seconds to wait before acknowledging an order.
        reject_reason: If set, every order is rejected with this reason.
        orders: All accepted orders in submission order.
    """

    def __init__(
        self,
        initial_balance: Decimal = Decimal("100"),
        leverage: Decimal = Decimal("10"),
        slippage_bps: Decimal = Decimal("0"),
        latency: float = 0.0,
        markets: Optional[dict[str, Market]] = None,
    ) -> None:
        """
        Initialize paper trading exchange.

        Args:
            initial_balance: Starting balance (default 100).
            leverage: Leverage for the margin check (default 10).
            slippage_bps: Slippage in basis points (default 0).
            latency: Simulated acknowledgement delay in seconds.
            markets: Market table override; defaults to the configured table.
        """
        super().__init__(testnet=True, mock_mode=True)
        self._name = "paper"

        self.initial_balance = Decimal(str(initial_balance))
        self.balance = self.initial_balance
        self.leverage = Decimal(str(leverage))
        self.slippage_bps = Decimal(str(slippage_bps))
        self.latency = latency
        self.reject_reason: Optional[str] = None

        self.orders: list[Order] = []
        self._markets = markets if markets is not None else markets_from_config()

    async def connect(self) -> None:
        """Simulate connection to exchange."""
        self.is_connected = True
        logger.info(f"Paper exchange connected with balance: {self.balance}")

    async def disconnect(self) -> None:
        """Simulate disconnection from exchange."""
        self.is_connected = False
        logger.info(f"Paper exchange disconnected after {len(self.orders)} orders")

    async def get_balance(self) -> Balance:
        self._ensure_connected()
        return Balance(currency="USD", total=self.balance, available=self.balance)

    def set_balance(self, amount: Decimal) -> None:
        """Set the simulated withdrawable balance (deposits, demo top-ups)."""
        self.balance = Decimal(str(amount))

    def settle_bet(self, pnl: Decimal) -> Balance:
        """Credit a win or debit a loss against the simulated balance."""
        self.balance += Decimal(str(pnl))
        logger.info(f"[PAPER] Settled tap pnl={pnl}, balance={self.balance}")
        return Balance(currency="USD", total=self.balance, available=self.balance)

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
    ) -> Order:
        """
        Fill a market order instantly at the reference price.

        Raises:
            OrderError: If rejected, the market is unknown, or size is not positive.
            InsufficientBalanceError: If the required margin exceeds the balance.
        """
        self._ensure_connected()

        if self.latency:
            await asyncio.sleep(self.latency)

        if self.reject_reason:
            logger.info(f"[PAPER] Order rejected: {self.reject_reason}")
            raise OrderError(self.reject_reason)

        market = self.get_market(symbol)
        if market is None:
            raise OrderError(f"Unknown or inactive market: {symbol}")

        quantity = Decimal(str(quantity))
        price = Decimal(str(price))
        if quantity <= 0 or price <= 0:
            raise OrderError(f"Invalid order: quantity={quantity}, price={price}")

        margin = quantity * price / self.leverage
        if margin > self.balance:
            raise InsufficientBalanceError(
                f"Insufficient balance: need {margin:.2f}, have {self.balance:.2f}"
            )

        fill_price = self._apply_slippage(price, side)
        order = Order(
            order_id=str(uuid.uuid4()),
            symbol=market.symbol,
            asset_index=market.asset_index,
            side=side,
            quantity=quantity,
            price=price,
            status=OrderStatus.FILLED,
            filled_quantity=quantity,
            average_fill_price=fill_price,
        )
        self.orders.append(order)

        logger.info(f"[PAPER] Order filled: {side} {quantity} {market.symbol} @ {fill_price}")
        return order

    def _apply_slippage(self, price: Decimal, side: OrderSide) -> Decimal:
        """Apply slippage to the fill price (buys fill higher, sells lower)."""
        slippage = price * self.slippage_bps / Decimal("10000")
        if side == OrderSide.BUY:
            return price + slippage
        return price - slippage
