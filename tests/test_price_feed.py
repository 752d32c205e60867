"""
Tests for the websocket price feed.

Tests cover:
- Trade message parsing and malformed-message tolerance
- Bounded price history and subscriber delivery
- Stale-generation suppression
- Reconnect supervision against a fake websocket connector
- Stop teardown and idempotent start
"""

import asyncio
import json

import pytest

from hypertap.feeds.price_feed import PriceFeed, PricePoint, ReconnectPolicy


def trades_message(asset, *prices):
    return json.dumps({
        "channel": "trades",
        "data": [{"coin": asset, "side": "B", "px": str(p), "sz": "0.1", "time": 0} for p in prices],
    })


class FakeSocket:
    """Async-iterable websocket stand-in."""

    def __init__(self, messages=(), block=False):
        self.messages = list(messages)
        self.block = block
        self.sent = []
        self._release = asyncio.Event()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def send(self, message):
        self.sent.append(json.loads(message))

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message
        if self.block:
            await self._release.wait()


class FakeConnector:
    """Fails ``failures`` times, then hands out ``sockets`` in order, then fails forever."""

    def __init__(self, failures=0, sockets=()):
        self.failures = failures
        self.sockets = list(sockets)
        self.calls = []

    def __call__(self, url):
        self.calls.append(url)
        if self.failures > 0:
            self.failures -= 1
            raise OSError("connection refused")
        if self.sockets:
            return self.sockets.pop(0)
        raise OSError("connection refused")


class FakeClock:
    def __init__(self, now=1_000):
        self.now = now

    def __call__(self):
        return self.now


async def wait_until(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


class TestParseTrades:
    """Tests for PriceFeed.parse_trades."""

    def test_trade_batch(self):
        assert PriceFeed.parse_trades(trades_message("BTC", 100, 100.5), "BTC") == [100.0, 100.5]

    def test_single_trade_object(self):
        message = json.dumps({"channel": "trades", "data": {"coin": "BTC", "px": "64000.5"}})
        assert PriceFeed.parse_trades(message, "BTC") == [64000.5]

    def test_other_coin_skipped(self):
        message = json.dumps({
            "channel": "trades",
            "data": [{"coin": "ETH", "px": "3000"}, {"coin": "BTC", "px": "64000"}],
        })
        assert PriceFeed.parse_trades(message, "BTC") == [64000.0]

    def test_non_trade_channels_ignored(self):
        ack = json.dumps({"channel": "subscriptionResponse", "data": {"method": "subscribe"}})
        assert PriceFeed.parse_trades(ack, "BTC") == []
        assert PriceFeed.parse_trades(json.dumps({"channel": "pong"}), "BTC") == []

    @pytest.mark.parametrize("message", [
        "not json",
        json.dumps({"channel": "trades", "data": [{"coin": "BTC"}]}),
        json.dumps({"channel": "trades", "data": [{"coin": "BTC", "px": "abc"}]}),
        json.dumps({"channel": "trades", "data": [{"coin": "BTC", "px": "-5"}]}),
        json.dumps({"channel": "trades", "data": [{"coin": "BTC", "px": "NaN"}]}),
    ])
    def test_malformed_raises(self, message):
        with pytest.raises((ValueError, KeyError)):
            PriceFeed.parse_trades(message, "BTC")


class TestHandleMessage:
    """Tests for applying messages to feed state."""

    def test_applies_in_order(self):
        clock = FakeClock()
        feed = PriceFeed("btc", clock=clock)
        seen = []
        feed.subscribe(lambda asset, point: seen.append((asset, point)))

        assert feed.handle_message(trades_message("BTC", 100, 101, 99.5)) == 3

        assert feed.current_price == 99.5
        assert [p.price for p in feed.price_history] == [100.0, 101.0, 99.5]
        assert seen == [("BTC", PricePoint(1_000, 100.0)), ("BTC", PricePoint(1_000, 101.0)), ("BTC", PricePoint(1_000, 99.5))]
        assert feed.stats.updates_received == 3

    def test_malformed_dropped(self):
        feed = PriceFeed("BTC")
        feed.handle_message(trades_message("BTC", 100))

        assert feed.handle_message("{broken") == 0
        assert feed.handle_message(json.dumps({"channel": "trades", "data": [{"coin": "BTC", "px": None}]})) == 0

        assert feed.current_price == 100.0
        assert feed.stats.malformed_messages == 2

        feed.handle_message(trades_message("BTC", 101))
        assert feed.current_price == 101.0

    def test_history_bounded(self):
        feed = PriceFeed("BTC", max_history=100)
        for i in range(150):
            feed.handle_message(trades_message("BTC", 1000 + i))

        assert len(feed.price_history) == 100
        assert feed.price_history[0].price == 1050.0
        assert feed.price_history[-1].price == 1149.0

    def test_callback_error_isolated(self):
        feed = PriceFeed("BTC")
        seen = []

        def failing(asset, point):
            raise RuntimeError("boom")

        feed.subscribe(failing)
        feed.subscribe(lambda asset, point: seen.append(point.price))

        feed.handle_message(trades_message("BTC", 100))

        assert seen == [100.0]
        assert feed.current_price == 100.0

    def test_unsubscribe(self):
        feed = PriceFeed("BTC")
        seen = []
        callback = lambda asset, point: seen.append(point.price)  # noqa: E731
        feed.subscribe(callback)
        feed.unsubscribe(callback)
        feed.unsubscribe(callback)

        feed.handle_message(trades_message("BTC", 100))
        assert seen == []

    def test_stale_generation_dropped(self):
        feed = PriceFeed("BTC")
        stale = feed.generation
        feed._generation += 1

        assert feed.handle_message(trades_message("BTC", 100), stale) == 0
        assert feed.current_price == 0.0
        assert feed.handle_message(trades_message("BTC", 100), feed.generation) == 1

    def test_health(self):
        clock = FakeClock()
        feed = PriceFeed("BTC", clock=clock)
        assert not feed.is_healthy()

        stats = feed.get_stats()
        assert stats["asset"] == "BTC"
        assert stats["connected"] is False


class TestConnectionLoop:
    """Tests for the reconnecting websocket loop."""

    @pytest.mark.asyncio
    async def test_subscribes_and_streams(self):
        socket = FakeSocket([trades_message("ETH", 3000, 3001)], block=True)
        feed = PriceFeed("ETH", ws_url="wss://test", connector=FakeConnector(sockets=[socket]))

        feed.start()
        await wait_until(lambda: feed.current_price == 3001.0)

        assert feed.is_connected
        assert socket.sent == [{"method": "subscribe", "subscription": {"type": "trades", "coin": "ETH"}}]
        await feed.stop()

    @pytest.mark.asyncio
    async def test_gives_up_when_policy_exhausted(self):
        connector = FakeConnector(failures=100)
        feed = PriceFeed(
            "BTC",
            reconnect_policy=ReconnectPolicy(delay_ms=0, max_attempts=3),
            connector=connector,
        )

        task = feed.start()
        await asyncio.wait_for(task, timeout=1.0)

        assert len(connector.calls) == 4
        assert feed.stats.connection_errors == 4
        assert feed.stats.reconnects == 3
        assert feed.is_connected is False
        assert "refused" in feed.last_error

    @pytest.mark.asyncio
    async def test_reconnects_after_failures(self):
        socket = FakeSocket([trades_message("BTC", 100)], block=True)
        connector = FakeConnector(failures=2, sockets=[socket])
        feed = PriceFeed(
            "BTC",
            reconnect_policy=ReconnectPolicy(delay_ms=0, max_attempts=3),
            connector=connector,
        )

        feed.start()
        await wait_until(lambda: feed.current_price == 100.0)

        assert len(connector.calls) == 3
        assert feed.stats.reconnects == 2
        assert feed.is_connected
        assert feed.last_error is None
        await feed.stop()

    @pytest.mark.asyncio
    async def test_reconnects_after_server_close(self):
        first = FakeSocket([trades_message("BTC", 100)])
        second = FakeSocket([trades_message("BTC", 200)], block=True)
        connector = FakeConnector(sockets=[first, second])
        feed = PriceFeed("BTC", reconnect_policy=ReconnectPolicy(delay_ms=0), connector=connector)

        feed.start()
        await wait_until(lambda: feed.current_price == 200.0)

        assert feed.stats.reconnects == 1
        assert [p.price for p in feed.price_history] == [100.0, 200.0]
        await feed.stop()

    @pytest.mark.asyncio
    async def test_stop_tears_down(self):
        socket = FakeSocket([trades_message("BTC", 100)], block=True)
        feed = PriceFeed("BTC", connector=FakeConnector(sockets=[socket]))
        seen = []
        feed.subscribe(lambda asset, point: seen.append(point.price))

        feed.start()
        await wait_until(lambda: feed.current_price == 100.0)
        old_generation = feed.generation

        await feed.stop()

        assert feed.is_connected is False
        assert feed.handle_message(trades_message("BTC", 999), old_generation) == 0
        assert seen == [100.0]

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        socket = FakeSocket(block=True)
        connector = FakeConnector(sockets=[socket])
        feed = PriceFeed("BTC", connector=connector)

        first = feed.start()
        second = feed.start()
        await wait_until(lambda: feed.is_connected)

        assert first is second
        assert len(connector.calls) == 1
        await feed.stop()
