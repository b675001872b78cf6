"""Tests for the HTTP endpoints (handlers called directly, runner swapped in)."""

from dataclasses import replace
from decimal import Decimal

import pytest
import pytest_asyncio
from fastapi import HTTPException

from marketfeed import main
from marketfeed.config import Settings
from marketfeed.providers.binance_rest import BinanceAPIError
from marketfeed.streaming.runner import StreamingRunner
from marketfeed.types import BookLevel, OrderBookState, OrderBookTop, StreamStatus
from marketfeed.utils.precision import derive_precision

from .conftest import FakeConnector, FakeREST, FakeStreamer, make_point, wait_for


@pytest_asyncio.fixture
async def runner(monkeypatch):
    rest = FakeREST()
    rest.filters["BTCUSDT"] = ("0.01000000", "0.00001000")
    r = StreamingRunner(
        Settings(_env_file=None, price_fallback_seconds=60, price_throttle_ms=0),
        rest=rest,
        price_streamer=FakeStreamer(),
        trade_streamer=FakeStreamer(),
        orderbook_connector=FakeConnector(),
    )
    await r.start()
    monkeypatch.setattr(main, "runner", r)
    yield r
    await r.stop()


@pytest.mark.asyncio
async def test_health():
    result = await main.health()

    assert result["ok"] is True


@pytest.mark.asyncio
async def test_runner_missing_is_503(monkeypatch):
    monkeypatch.setattr(main, "runner", None)

    with pytest.raises(HTTPException) as exc:
        await main.get_price()

    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_selection_roundtrip(runner):
    assert (await main.get_selection())["symbol"] == "BTCUSDT"

    result = await main.set_selection(main.SelectionRequest(symbol="eth/usdt", interval="15m"))

    assert result == {"symbol": "ETHUSDT", "base": "ETH", "quote": "USDT", "interval": "15m"}


@pytest.mark.asyncio
async def test_bad_selection_is_400(runner):
    with pytest.raises(HTTPException) as exc:
        await main.set_selection(main.SelectionRequest(symbol="ETH", interval="13x"))

    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_price_loading_placeholder(runner):
    result = await main.get_price()

    assert result["symbol"] == "BTCUSDT"
    assert result["price"] == "-"
    assert result["is_loading"] is True
    assert result["state"] == "connecting"


@pytest.mark.asyncio
async def test_candles_limit(runner):
    await wait_for(lambda: not runner.candles.snapshot.is_loading)

    result = await main.get_candles(limit=10)

    assert result["symbol"] == "BTCUSDT"
    assert result["interval"] == "1m"
    assert result["candles"] == []


@pytest.mark.asyncio
async def test_orderbook_status(runner):
    await wait_for(lambda: runner.orderbook.snapshot.active_symbol == "BTC")

    result = await main.get_orderbook()

    assert result["status"] == "connected"
    assert result["active_symbol"] == "BTC"
    assert result["data"] is None


@pytest.mark.asyncio
async def test_precision_endpoint(runner):
    known = await main.get_precision("BTC-USDT")
    unknown = await main.get_precision("DOGE")

    assert known["available"] is True
    assert known["price_places"] == 2
    assert known["quantity_places"] == 5
    assert unknown == {"symbol": "DOGEUSDT", "available": False, "price_places": 2, "quantity_places": 6}


def test_orderbook_to_dict_formats_levels():
    state = OrderBookState(
        data=OrderBookTop(
            symbol="BTC",
            bid=BookLevel(price=Decimal("67000.129"), qty=Decimal("1234.56789")),
            ask=BookLevel(price=None, qty=None),
            ts=1,
        ),
        status=StreamStatus.CONNECTED,
        error=None,
        active_symbol="BTC",
    )

    result = main.orderbook_to_dict(state, derive_precision("0.01", "0.001"))

    assert result["data"]["bid"]["price_display"] == "67,000.12"
    assert result["data"]["bid"]["qty_display"] == "1,234.567"
    assert result["data"]["bid"]["qty_compact"] == "1.23k"
    assert result["data"]["ask"]["price_display"] == "-"
    assert result["status"] == "connected"


@pytest.mark.asyncio
async def test_pairs_and_batch_prices(runner):
    runner.rest.prices["BTCUSDT"] = make_point("BTCUSDT", "67000.12345", source="rest")
    runner.rest.prices["ETHUSDT"] = make_point("ETHUSDT", "3500.1", source="rest")

    pairs = await main.get_pairs(quote="usdt")
    prices = await main.get_prices(symbols="btc, eth,xyz", quote="USDT")

    assert pairs == {"BTC": "BTCUSDT", "ETH": "ETHUSDT"}
    assert prices["BTC"] == {"symbol": "BTCUSDT", "price": "67,000.12345", "numeric_price": 67000.12345}
    assert prices["ETH"]["price"] == "3,500.10"
    assert "XYZ" not in prices
    assert await main.get_prices(symbols=" , ", quote="USDT") == {}


@pytest.mark.asyncio
async def test_upstream_failure_is_502(runner, monkeypatch):
    async def failing(quote="USDT"):
        raise BinanceAPIError(418, "banned")

    monkeypatch.setattr(runner.rest, "fetch_trading_pairs", failing)

    with pytest.raises(HTTPException) as exc:
        await main.get_pairs(quote="USDT")

    assert exc.value.status_code == 502


@pytest.mark.asyncio
async def test_ticker_24h_formats_at_exchange_precision(runner):
    runner.rest.tickers["BTCUSDT"] = replace(
        make_point("BTCUSDT", "67000.129", source="rest"),
        high=Decimal("68000"),
        low=Decimal("66000.5"),
        volume=Decimal("1234.567891"),
        quote_volume=Decimal("82000000"),
    )

    result = await main.get_ticker_24h(symbol="btc/usdt")

    assert result == {
        "symbol": "BTCUSDT",
        "price": "67,000.12",
        "high": "68,000.00",
        "low": "66,000.50",
        "volume": "1,234.56789",
        "volume_compact": "1.23k",
        "quote_volume_compact": "82.00M",
    }


@pytest.mark.asyncio
async def test_ticker_24h_upstream_failure_is_502(runner):
    runner.rest.errors["ticker:ETHUSDT"] = BinanceAPIError(503, "unavailable")

    with pytest.raises(HTTPException) as exc:
        await main.get_ticker_24h(symbol="ETH")

    assert exc.value.status_code == 502
