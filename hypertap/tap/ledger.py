"""
In-memory bet ledger.

Holds active bets keyed by id, the append-only log of completed bets and
the session PnL. Available balance is derived from the external account
balance and the stakes still at risk, never decremented in place, so
active-set membership is the only record of outstanding exposure.
"""

import logging
from typing import Any, Optional

from .models import BetStatus, Direction, TapBet

logger = logging.getLogger(__name__)


class BetLedger:
    """
    Bet accounting for one engine session.

    Every method is total: unknown ids and already-resolved bets are no-ops
    that return None rather than raising.

    Attributes:
        external_balance: Withdrawable balance reported by the account source.
        session_pnl: Sum of realized PnL over resolved bets.
        completed_bets: Resolved bets in resolution order.
    """

    def __init__(self, external_balance: float = 0.0) -> None:
        self.external_balance = float(external_balance)
        self.session_pnl = 0.0
        self.completed_bets: list[TapBet] = []
        self._active: dict[str, TapBet] = {}

    # =========================================================================
    # Views
    # =========================================================================

    @property
    def active_bets(self) -> list[TapBet]:
        return list(self._active.values())

    def get_active(self, bet_id: str) -> Optional[TapBet]:
        return self._active.get(bet_id)

    def is_active(self, bet_id: str) -> bool:
        return bet_id in self._active

    @property
    def total_staked(self) -> float:
        """Stake currently at risk across active bets."""
        return sum(bet.stake for bet in self._active.values())

    @property
    def available_balance(self) -> float:
        return self.external_balance - self.total_staked

    def active_assets(self) -> set[str]:
        return {bet.asset for bet in self._active.values()}

    def has_active_bet(self, asset: str, target_price: float, direction: Direction) -> bool:
        return any(
            bet.asset == asset and bet.target_price == target_price and bet.direction == direction
            for bet in self._active.values()
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    def set_external_balance(self, amount: float) -> None:
        self.external_balance = float(amount)

    def add_active(self, bet: TapBet) -> bool:
        """
        Record an acknowledged bet as active.

        Returns:
            False if the bet is not active or its id is already known.
        """
        if not bet.is_active or bet.id in self._active:
            logger.warning(f"Refusing to add bet {bet.id} (status={bet.status})")
            return False
        if any(done.id == bet.id for done in self.completed_bets):
            return False

        self._active[bet.id] = bet
        logger.info(
            f"Bet {bet.id} active: {bet.direction} {bet.asset} target={bet.target_price} "
            f"stake={bet.stake} x{bet.multiplier}"
        )
        return True

    def settle(self, bet_id: str, won: bool, now_ms: int) -> Optional[TapBet]:
        """
        Resolve an active bet exactly once.

        Args:
            bet_id: Bet to resolve.
            won: True for a win, False for a loss.
            now_ms: Resolution time.

        Returns:
            The resolved bet, or None if the id is not active.
        """
        bet = self._active.pop(bet_id, None)
        if bet is None:
            return None

        resolved = bet.win(now_ms) if won else bet.lose(now_ms)
        self.completed_bets.append(resolved)
        self.session_pnl += resolved.pnl

        logger.info(
            f"Bet {bet_id} {resolved.status}: pnl={resolved.pnl:+.2f} "
            f"session={self.session_pnl:+.2f}"
        )
        return resolved

    def remove(self, bet_id: str) -> Optional[TapBet]:
        """Drop an active bet without resolving it (external removal)."""
        return self._active.pop(bet_id, None)

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        wins = [b for b in self.completed_bets if b.status == BetStatus.WON]
        losses = [b for b in self.completed_bets if b.status == BetStatus.LOST]
        resolved = len(wins) + len(losses)

        return {
            "active": len(self._active),
            "completed": len(self.completed_bets),
            "wins": len(wins),
            "losses": len(losses),
            "win_rate": len(wins) / resolved if resolved else 0.0,
            "at_risk": self.total_staked,
            "total_staked": self.total_staked + sum(b.stake for b in self.completed_bets),
            "total_returned": sum(b.payout for b in wins),
            "session_pnl": self.session_pnl,
            "external_balance": self.external_balance,
            "available_balance": self.available_balance,
        }
