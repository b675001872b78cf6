"""Tests for StreamingRunner wiring with in-memory providers."""

import pytest

from marketfeed.config import Settings
from marketfeed.streaming.runner import StreamingRunner
from marketfeed.types import FeedState, StreamStatus

from .conftest import FakeConnector, FakeREST, FakeStreamer, settle, wait_for


def make_runner(**overrides):
    settings = Settings(_env_file=None, price_fallback_seconds=60, price_throttle_ms=0, **overrides)
    price_streamer = FakeStreamer()
    trade_streamer = FakeStreamer()
    connector = FakeConnector()
    runner = StreamingRunner(
        settings,
        rest=FakeREST(),
        price_streamer=price_streamer,
        trade_streamer=trade_streamer,
        orderbook_connector=connector,
    )
    return runner, price_streamer, trade_streamer, connector


@pytest.mark.asyncio
async def test_start_selects_default_symbol():
    runner, price_streamer, trade_streamer, connector = make_runner()

    await runner.start()
    await wait_for(lambda: runner.orderbook.snapshot.active_symbol == "BTC")

    assert runner.symbol.symbol == "BTCUSDT"
    assert runner.interval == "1m"
    assert runner.price.active_symbol == "BTCUSDT"
    assert runner.candles.selection == ("BTCUSDT", "1m")
    assert connector.channels[0].emitted == [("subscribe", {"symbol": "BTC"})]

    await runner.stop()


@pytest.mark.asyncio
async def test_select_moves_every_component():
    runner, price_streamer, trade_streamer, connector = make_runner()
    await runner.start()
    await wait_for(lambda: runner.orderbook.snapshot.active_symbol == "BTC")

    spec = await runner.select("eth-usdt", "5m")
    await settle()

    assert spec.symbol == "ETHUSDT"
    assert runner.price.active_symbol == "ETHUSDT"
    assert runner.candles.selection == ("ETHUSDT", "5m")
    assert runner.orderbook.snapshot.active_symbol == "ETH"
    assert connector.channels[0].emitted[-2:] == [
        ("unsubscribe", {"symbol": "BTC"}),
        ("subscribe", {"symbol": "ETH"}),
    ]

    # interval is kept when only the symbol changes
    await runner.select("SOL")
    assert runner.candles.selection == ("SOLUSDT", "5m")

    await runner.stop()


@pytest.mark.asyncio
async def test_invalid_selection_changes_nothing():
    runner, *_ = make_runner()
    await runner.start()

    with pytest.raises(ValueError):
        await runner.select("ETH", "1M")
    with pytest.raises(ValueError):
        await runner.select("   ")

    assert runner.symbol.symbol == "BTCUSDT"
    assert runner.candles.selection == ("BTCUSDT", "1m")

    await runner.stop()


@pytest.mark.asyncio
async def test_interval_must_be_enabled():
    runner, *_ = make_runner(bar_intervals="1m,1h")
    await runner.start()

    with pytest.raises(ValueError, match="not enabled"):
        await runner.select("ETH", "5m")
    spec = await runner.select("ETH", "1h")

    assert spec.symbol == "ETHUSDT"
    assert runner.interval == "1h"

    await runner.stop()


@pytest.mark.asyncio
async def test_price_and_candles_use_separate_streams():
    runner, price_streamer, trade_streamer, _ = make_runner()
    await runner.start()
    await wait_for(lambda: trade_streamer.opened == ["BTCUSDT"])

    assert price_streamer.opened == ["BTCUSDT"]

    await runner.stop()


@pytest.mark.asyncio
async def test_stop_closes_everything():
    runner, price_streamer, trade_streamer, connector = make_runner()
    await runner.start()
    await wait_for(lambda: runner.orderbook.snapshot.active_symbol == "BTC")

    await runner.stop()

    assert runner.price.state is FeedState.CLOSED
    assert runner.orderbook.snapshot.status is StreamStatus.DISCONNECTED
    assert connector.channels[0].emitted[-1] == ("unsubscribe", {"symbol": "BTC"})
    assert price_streamer.closed == ["BTCUSDT"]
