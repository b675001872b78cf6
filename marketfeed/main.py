from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator

import aiohttp
from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from .config import get_settings
from .providers.binance_rest import BinanceAPIError
from .providers.normalize import MalformedPayload
from .streaming.runner import StreamingRunner
from .symbols import make_pair_key, parse_symbol
from .types import BookLevel, Candle, CandleSnapshot, OrderBookState, PrecisionSpec, PriceSnapshot
from .utils.precision import decimal_places_hint, format_amount, format_compact, format_price


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

runner: StreamingRunner | None = None

UPSTREAM_ERRORS = (BinanceAPIError, MalformedPayload, aiohttp.ClientError, asyncio.TimeoutError)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for startup/shutdown."""
    global runner

    runner = StreamingRunner(settings)
    await runner.start()

    yield

    if runner:
        await runner.stop()


app = FastAPI(
    title="marketfeed",
    version="0.1.0",
    lifespan=lifespan,
)


class SelectionRequest(BaseModel):
    symbol: str
    interval: str | None = None


def get_runner() -> StreamingRunner:
    if runner is None:
        raise HTTPException(status_code=503, detail="Streaming runner not started")
    return runner


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def price_to_dict(snap: PriceSnapshot) -> dict[str, Any]:
    return {
        "symbol": snap.symbol,
        "price": snap.price,
        "numeric_price": snap.numeric_price,
        "is_loading": snap.is_loading,
        "decimal_places": snap.decimal_places,
        "state": snap.state.value,
        "source": snap.source,
        "received_at": snap.received_at,
        "high": snap.high,
        "low": snap.low,
        "volume": snap.volume,
        "quote_volume": snap.quote_volume,
    }


def _candle_to_dict(candle: Candle, sma: float | None, ema: float | None) -> dict[str, Any]:
    return {
        "open_time": candle.open_time,
        "open": candle.open,
        "high": candle.high,
        "low": candle.low,
        "close": candle.close,
        "volume": candle.volume,
        "sma": sma,
        "ema": ema,
    }


def candles_to_dict(snap: CandleSnapshot, limit: int | None = None) -> dict[str, Any]:
    rows = list(zip(snap.candles, snap.sma, snap.ema))
    if limit is not None:
        rows = rows[-limit:]
    return {
        "symbol": snap.symbol,
        "interval": snap.interval,
        "is_loading": snap.is_loading,
        "error": snap.error,
        "candles": [_candle_to_dict(c, s, e) for c, s, e in rows],
    }


def _level_to_dict(level: BookLevel, precision: PrecisionSpec | None) -> dict[str, Any]:
    return {
        "price": _dec(level.price),
        "qty": _dec(level.qty),
        "price_display": format_price(level.price, precision),
        "qty_display": format_amount(level.qty, precision),
        "qty_compact": format_compact(level.qty),
    }


def orderbook_to_dict(state: OrderBookState, precision: PrecisionSpec | None = None) -> dict[str, Any]:
    data = None
    if state.data is not None:
        data = {
            "symbol": state.data.symbol,
            "bid": _level_to_dict(state.data.bid, precision),
            "ask": _level_to_dict(state.data.ask, precision),
            "ts": state.data.ts,
        }
    return {
        "data": data,
        "status": state.status.value,
        "error": state.error,
        "active_symbol": state.active_symbol,
    }


@app.get("/health")
async def health() -> dict[str, Any]:
    return {"ok": True, "ts": int(time.time())}


@app.get("/v1/selection")
async def get_selection() -> dict[str, Any]:
    r = get_runner()
    return {
        "symbol": r.symbol.symbol if r.symbol else None,
        "base": r.symbol.base if r.symbol else None,
        "quote": r.symbol.quote if r.symbol else None,
        "interval": r.interval,
    }


@app.post("/v1/selection")
async def set_selection(req: SelectionRequest) -> dict[str, Any]:
    r = get_runner()
    try:
        await r.select(req.symbol, req.interval)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return await get_selection()


@app.get("/v1/price")
async def get_price() -> dict[str, Any]:
    return price_to_dict(get_runner().price.snapshot)


@app.get("/v1/candles")
async def get_candles(limit: int = Query(default=500, ge=1, le=5000)) -> dict[str, Any]:
    return candles_to_dict(get_runner().candles.snapshot, limit=limit)


@app.get("/v1/orderbook")
async def get_orderbook() -> dict[str, Any]:
    r = get_runner()
    precision = r.precision_cache.get(r.symbol.symbol) if r.symbol else None
    return orderbook_to_dict(r.orderbook.snapshot, precision)


@app.get("/v1/pairs")
async def get_pairs(quote: str = Query(default="USDT", min_length=1)) -> dict[str, str]:
    """Base asset -> exchange symbol for every pair trading against quote."""
    try:
        return await get_runner().rest.fetch_trading_pairs(quote.strip().upper())
    except UPSTREAM_ERRORS as e:
        logger.warning(f"Pair listing failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/v1/prices")
async def get_prices(
    symbols: str = Query(default="", description="Comma-separated base assets, e.g. BTC,ETH"),
    quote: str = Query(default="USDT", min_length=1),
) -> dict[str, Any]:
    """Last prices for several base assets in one request, keyed by base asset."""
    quote = quote.strip().upper()
    bases = [s.strip().upper() for s in symbols.split(",") if s.strip()]
    if not bases:
        return {}

    try:
        points = await get_runner().rest.fetch_last_prices([make_pair_key(b, quote) for b in bases])
    except UPSTREAM_ERRORS as e:
        logger.warning(f"Batch price lookup failed for {bases}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    out: dict[str, Any] = {}
    for base in bases:
        point = points.get(make_pair_key(base, quote))
        if point is None:
            continue
        places = max(settings.default_price_decimals, decimal_places_hint(point.raw))
        out[base] = {
            "symbol": point.symbol,
            "price": format_price(point.value, None, fallback_places=places),
            "numeric_price": float(point.value),
        }
    return out


@app.get("/v1/ticker/24h")
async def get_ticker_24h(symbol: str = Query(..., min_length=1)) -> dict[str, Any]:
    """Last price with 24h high/low/volume for any symbol, formatted at exchange precision."""
    r = get_runner()
    try:
        spec = parse_symbol(symbol)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        point = await r.rest.fetch_24h_ticker(spec.symbol)
    except UPSTREAM_ERRORS as e:
        logger.warning(f"24h ticker lookup failed for {spec.symbol}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    precision = await r.precision_cache.resolve(spec.symbol)
    places = max(settings.default_price_decimals, decimal_places_hint(point.raw))
    return {
        "symbol": spec.symbol,
        "price": format_price(point.value, precision, fallback_places=places),
        "high": format_price(point.high, precision, fallback_places=places),
        "low": format_price(point.low, precision, fallback_places=places),
        "volume": format_amount(point.volume, precision, fallback_places=settings.default_amount_decimals),
        "volume_compact": format_compact(point.volume),
        "quote_volume_compact": format_compact(point.quote_volume),
    }


@app.get("/v1/precision/{symbol}")
async def get_precision(symbol: str) -> dict[str, Any]:
    r = get_runner()
    try:
        spec = parse_symbol(symbol)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    precision = await r.precision_cache.resolve(spec.symbol)
    if precision is None:
        return {
            "symbol": spec.symbol,
            "available": False,
            "price_places": settings.default_price_decimals,
            "quantity_places": settings.default_amount_decimals,
        }
    return {
        "symbol": spec.symbol,
        "available": True,
        "tick_size": str(precision.tick_size),
        "step_size": str(precision.step_size),
        "price_places": precision.price_places,
        "quantity_places": precision.quantity_places,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("marketfeed.main:app", host=settings.host, port=settings.port)
