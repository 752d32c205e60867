"""
Tap trading data types.

A tap bet wagers that price touches a target level before a deadline.
Bets are immutable records; lifecycle changes go through ``TapBet.win``
and ``TapBet.lose``, which return the resolved copy and refuse to move a
bet that already left the active state.
"""

import uuid
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Optional


class Direction(Enum):
    """Which side of the current price the target sits on."""

    LONG = "long"
    SHORT = "short"

    def __str__(self) -> str:
        return self.value


class BetStatus(Enum):
    """Bet lifecycle status. WON and LOST are terminal."""

    ACTIVE = "active"
    WON = "won"
    LOST = "lost"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self != BetStatus.ACTIVE


class InvalidTransitionError(Exception):
    """Raised when a bet is moved out of a terminal state."""

    pass


@dataclass(frozen=True)
class GridBox:
    """
    One tappable (price level, time window) cell.

    Attributes:
        id: Stable cell id, e.g. 'long-0-2'.
        row: Price level index counted away from the current price.
        col: Time window column index.
        price: Target price level.
        time_window: Seconds until expiry once tapped.
        multiplier: Payout multiplier (>= 1).
        direction: LONG above the current price, SHORT below.
    """

    id: str
    row: int
    col: int
    price: float
    time_window: int
    multiplier: float
    direction: Direction


@dataclass(frozen=True)
class TapBet:
    """
    A single tap wager.

    Attributes:
        id: Unique bet id.
        asset: Asset symbol the bet resolves against.
        direction: LONG wins on a touch from below, SHORT from above.
        stake: USD amount at risk.
        target_price: Level that must be touched.
        entry_price: Price at placement.
        multiplier: Payout multiplier locked at placement.
        placed_at: Placement time (ms).
        expires_at: Deadline (ms).
        status: Lifecycle status.
        order_id: Exchange order id of the placement order.
        pnl: Realized PnL once resolved.
        resolved_at: Resolution time (ms).
    """

    id: str
    asset: str
    direction: Direction
    stake: float
    target_price: float
    entry_price: float
    multiplier: float
    placed_at: int
    expires_at: int
    status: BetStatus = BetStatus.ACTIVE
    order_id: Optional[str] = None
    pnl: Optional[float] = None
    resolved_at: Optional[int] = None

    @classmethod
    def from_box(
        cls,
        box: GridBox,
        asset: str,
        stake: float,
        entry_price: float,
        now_ms: int,
    ) -> "TapBet":
        """Build an active bet for a tapped grid cell."""
        return cls(
            id=f"bet-{now_ms}-{uuid.uuid4().hex[:9]}",
            asset=asset,
            direction=box.direction,
            stake=stake,
            target_price=box.price,
            entry_price=entry_price,
            multiplier=box.multiplier,
            placed_at=now_ms,
            expires_at=now_ms + box.time_window * 1000,
        )

    @property
    def is_active(self) -> bool:
        return self.status == BetStatus.ACTIVE

    @property
    def payout(self) -> float:
        """Amount returned on a win, stake included."""
        return self.stake * self.multiplier

    def is_touched(self, high: float, low: float) -> bool:
        """Whether a price path with this high/low reached the target."""
        if self.direction == Direction.LONG:
            return high >= self.target_price
        return low <= self.target_price

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at

    def with_order(self, order_id: str) -> "TapBet":
        return replace(self, order_id=order_id)

    def win(self, now_ms: int) -> "TapBet":
        """Resolve as won with pnl = stake * (multiplier - 1)."""
        self._ensure_active(BetStatus.WON)
        return replace(
            self,
            status=BetStatus.WON,
            pnl=self.payout - self.stake,
            resolved_at=now_ms,
        )

    def lose(self, now_ms: int) -> "TapBet":
        """Resolve as lost with pnl = -stake."""
        self._ensure_active(BetStatus.LOST)
        return replace(
            self,
            status=BetStatus.LOST,
            pnl=-self.stake,
            resolved_at=now_ms,
        )

    def _ensure_active(self, target: BetStatus) -> None:
        if not self.is_active:
            raise InvalidTransitionError(f"Bet {self.id} is {self.status}, cannot become {target}")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["direction"] = self.direction.value
        data["status"] = self.status.value
        return data


class PlacementFailure(Enum):
    """Why a tap was not turned into a bet."""

    ALREADY_PLACING = "already_placing"
    ENGINE_STOPPED = "engine_stopped"
    NO_PRICE = "no_price"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NOT_CONNECTED = "not_connected"
    INVALID_ASSET = "invalid_asset"
    DUPLICATE_BET = "duplicate_bet"
    ORDER_TOO_SMALL = "order_too_small"
    STALE_BOX = "stale_box"
    EXECUTION_FAILED = "execution_failed"

    def __str__(self) -> str:
        return self.value


@dataclass
class PlacementResult:
    """Result of a tap placement."""

    success: bool
    bet: Optional[TapBet] = None
    failure: Optional[PlacementFailure] = None
    message: str = ""

    @classmethod
    def ok(cls, bet: TapBet) -> "PlacementResult":
        return cls(success=True, bet=bet)

    @classmethod
    def rejected(cls, failure: PlacementFailure, message: str = "") -> "PlacementResult":
        return cls(success=False, failure=failure, message=message or str(failure))

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "bet": self.bet.to_dict() if self.bet else None,
            "failure": self.failure.value if self.failure else None,
            "message": self.message,
        }
