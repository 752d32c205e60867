"""
Tests for bet resolution.

Tests cover:
- Win by touch, including a touch abandoned between evaluations
- Loss at expiry
- Touch taking precedence over expiry
- Exactly-once resolution and excursion cleanup
- Resolution callbacks and the polling loop
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from hypertap.tap.ledger import BetLedger
from hypertap.tap.models import BetStatus, Direction, TapBet
from hypertap.tap.monitor import BetMonitor, Excursion


def make_bet(bet_id="bet-1", asset="BTC", direction=Direction.LONG, target=105.0, expires_at=10_000):
    return TapBet(
        id=bet_id,
        asset=asset,
        direction=direction,
        stake=50.0,
        target_price=target,
        entry_price=100.0,
        multiplier=2.0,
        placed_at=0,
        expires_at=expires_at,
    )


@pytest.fixture
def ledger():
    return BetLedger(external_balance=1000.0)


@pytest.fixture
def monitor(ledger):
    return BetMonitor(ledger, interval_ms=10, clock=lambda: 0)


def activate(ledger, monitor, bet):
    ledger.add_active(bet)
    monitor.track(bet)
    return bet


class TestExcursion:
    """Tests for Excursion."""

    def test_tracks_extremes(self):
        excursion = Excursion(high=100.0, low=100.0)
        for price in (101.0, 97.0, 103.0, 99.0):
            excursion.update(price)
        assert excursion.high == 103.0
        assert excursion.low == 97.0


class TestResolution:
    """Tests for win/loss decisions."""

    def test_touch_wins(self, ledger, monitor):
        activate(ledger, monitor, make_bet())
        for price in (101.0, 103.0, 106.0, 104.0):
            monitor.observe("BTC", price)

        resolutions = monitor.evaluate(now_ms=5_000)

        assert len(resolutions) == 1
        bet = resolutions[0].bet
        assert resolutions[0].won
        assert bet.status == BetStatus.WON
        assert bet.pnl == 50.0
        assert ledger.session_pnl == 50.0
        assert ledger.available_balance == 1000.0

    def test_expiry_loses(self, ledger, monitor):
        activate(ledger, monitor, make_bet())
        for price in (101.0, 102.0, 103.0, 104.0):
            monitor.observe("BTC", price)

        assert monitor.evaluate(now_ms=5_000) == []
        assert ledger.is_active("bet-1")

        resolutions = monitor.evaluate(now_ms=10_000)

        assert len(resolutions) == 1
        assert resolutions[0].bet.status == BetStatus.LOST
        assert resolutions[0].bet.pnl == -50.0
        assert ledger.session_pnl == -50.0

    def test_touch_beats_expiry(self, ledger, monitor):
        activate(ledger, monitor, make_bet())
        monitor.observe("BTC", 105.0)

        resolutions = monitor.evaluate(now_ms=20_000)

        assert resolutions[0].won

    def test_short_touch(self, ledger, monitor):
        activate(ledger, monitor, make_bet(direction=Direction.SHORT, target=95.0))
        monitor.observe("BTC", 96.0)
        assert monitor.evaluate(now_ms=1_000) == []

        monitor.observe("BTC", 94.5)
        monitor.observe("BTC", 99.0)
        assert monitor.evaluate(now_ms=2_000)[0].won

    def test_other_asset_ignored(self, ledger, monitor):
        activate(ledger, monitor, make_bet(asset="BTC"))
        monitor.observe("ETH", 500.0)

        assert monitor.evaluate(now_ms=1_000) == []
        assert monitor.excursion("bet-1").high == 100.0

    def test_untracked_bet_starts_at_entry(self, ledger, monitor):
        ledger.add_active(make_bet())
        monitor.observe("BTC", 103.0)

        excursion = monitor.excursion("bet-1")
        assert excursion.high == 103.0
        assert excursion.low == 100.0

    def test_exactly_once(self, ledger, monitor):
        activate(ledger, monitor, make_bet())
        monitor.observe("BTC", 110.0)

        assert len(monitor.evaluate(now_ms=1_000)) == 1
        assert monitor.evaluate(now_ms=20_000) == []
        assert len(ledger.completed_bets) == 1

    def test_excursion_dropped_on_resolution(self, ledger, monitor):
        activate(ledger, monitor, make_bet())
        monitor.evaluate(now_ms=10_000)
        assert monitor.tracked_count == 0

    def test_excursion_dropped_on_external_removal(self, ledger, monitor):
        activate(ledger, monitor, make_bet())
        ledger.remove("bet-1")

        monitor.evaluate(now_ms=1_000)

        assert monitor.excursion("bet-1") is None
        assert ledger.completed_bets == []

    def test_independent_bets(self, ledger, monitor):
        activate(ledger, monitor, make_bet("near", target=102.0))
        activate(ledger, monitor, make_bet("far", target=110.0))
        monitor.observe("BTC", 103.0)

        resolutions = monitor.evaluate(now_ms=1_000)

        assert [r.bet.id for r in resolutions] == ["near"]
        assert ledger.is_active("far")


class TestCallbacks:
    """Tests for resolution notification."""

    def test_subscribers_notified(self, ledger, monitor):
        callback = MagicMock()
        monitor.subscribe(callback)
        activate(ledger, monitor, make_bet())
        monitor.observe("BTC", 106.0)

        resolutions = monitor.evaluate(now_ms=1_000)

        callback.assert_called_once_with(resolutions[0])

    def test_failing_subscriber_isolated(self, ledger, monitor):
        failing = MagicMock(side_effect=RuntimeError("boom"))
        healthy = MagicMock()
        monitor.subscribe(failing)
        monitor.subscribe(healthy)
        activate(ledger, monitor, make_bet())

        monitor.evaluate(now_ms=10_000)

        healthy.assert_called_once()
        assert ledger.completed_bets[0].status == BetStatus.LOST


class TestRunLoop:
    """Tests for the polling loop."""

    @pytest.mark.asyncio
    async def test_loop_resolves_and_stops(self, ledger, monitor):
        activate(ledger, monitor, make_bet())
        task = asyncio.create_task(monitor.run())

        await asyncio.sleep(0.03)
        assert ledger.is_active("bet-1")

        monitor.observe("BTC", 106.0)
        await asyncio.sleep(0.05)

        monitor.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert ledger.completed_bets[0].status == BetStatus.WON
        assert monitor.cycles >= 2

    @pytest.mark.asyncio
    async def test_loop_survives_evaluation_error(self, ledger, monitor):
        calls = []

        def evaluate(now_ms=None):
            calls.append(now_ms)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return []

        monitor.evaluate = evaluate
        task = asyncio.create_task(monitor.run())

        await asyncio.sleep(0.05)
        monitor.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_cancel(self, ledger, monitor):
        task = asyncio.create_task(monitor.run())
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
