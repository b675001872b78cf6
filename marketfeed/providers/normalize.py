"""
Wire-shape normalization.

Every accepted payload shape is mapped into one canonical record before any
business logic sees it. Upstream fields arrive under different keys depending
on the feed (``p`` vs ``price``, ``c`` vs ``lastPrice``) and numbers are often
strings, so nothing downstream reads raw dicts.
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Any

from ..types import BookLevel, Candle, OrderBookTop, PricePoint
from ..utils.precision import parse_decimal


class MalformedPayload(ValueError):
    """Raised when a message cannot be mapped to a canonical record."""
    pass


def unwrap_envelope(payload: Any) -> Any:
    """Strip the combined-stream wrapper ``{"stream": ..., "data": {...}}``."""
    if isinstance(payload, dict) and "stream" in payload and "data" in payload:
        return payload["data"]
    return payload


def detect_price_shape(payload: dict) -> str:
    """
    Tag a price payload with its wire shape.

    Returns one of "trade", "ticker", "rest_24h", "generic".
    """
    event = payload.get("e")
    if event in ("trade", "aggTrade"):
        return "trade"
    if event in ("24hrTicker", "24hrMiniTicker"):
        return "ticker"
    if "lastPrice" in payload:
        return "rest_24h"
    if "p" in payload and "price" not in payload:
        return "trade"
    return "generic"


def _first_present(payload: dict, *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _require_decimal(raw: Any, field: str) -> Decimal:
    value = parse_decimal(raw)
    if value is None:
        raise MalformedPayload(f"Non-numeric {field}: {raw!r}")
    return value


def _optional_int(raw: Any) -> int | None:
    value = parse_decimal(raw)
    if value is None:
        return None
    return int(value)


def normalize_price_message(
    payload: Any,
    symbol_hint: str | None = None,
    now: float | None = None,
    source: str = "stream",
) -> PricePoint:
    """
    Map a trade, ticker or REST price payload into a PricePoint.

    Args:
        payload: Decoded JSON message
        symbol_hint: Symbol to use when the payload does not carry one
        now: Receive time in Unix seconds (defaults to time.time())
        source: "stream" or "rest"

    Raises:
        MalformedPayload: if the message has no usable price or symbol
    """
    payload = unwrap_envelope(payload)
    if not isinstance(payload, dict):
        raise MalformedPayload(f"Expected object payload, got {type(payload).__name__}")

    shape = detect_price_shape(payload)
    received_at = time.time() if now is None else now

    symbol = _first_present(payload, "s", "symbol") or symbol_hint
    if not symbol:
        raise MalformedPayload("Price payload without symbol")
    symbol = str(symbol).upper()

    if shape == "trade":
        raw = _first_present(payload, "p", "price")
        qty = parse_decimal(_first_present(payload, "q", "qty"))
        event_time = _optional_int(_first_present(payload, "T", "E"))
        high = low = volume = quote_volume = None
    elif shape == "ticker":
        raw = _first_present(payload, "c")
        qty = parse_decimal(_first_present(payload, "Q"))
        event_time = _optional_int(_first_present(payload, "E"))
        high = parse_decimal(_first_present(payload, "h"))
        low = parse_decimal(_first_present(payload, "l"))
        volume = parse_decimal(_first_present(payload, "v"))
        quote_volume = parse_decimal(_first_present(payload, "q"))
    elif shape == "rest_24h":
        raw = _first_present(payload, "lastPrice")
        qty = parse_decimal(_first_present(payload, "lastQty"))
        event_time = _optional_int(_first_present(payload, "closeTime"))
        high = parse_decimal(_first_present(payload, "highPrice"))
        low = parse_decimal(_first_present(payload, "lowPrice"))
        volume = parse_decimal(_first_present(payload, "volume"))
        quote_volume = parse_decimal(_first_present(payload, "quoteVolume"))
    else:
        raw = _first_present(payload, "price", "p")
        qty = parse_decimal(_first_present(payload, "qty", "quantity", "q"))
        event_time = _optional_int(_first_present(payload, "time", "ts", "T", "E"))
        high = parse_decimal(_first_present(payload, "highPrice", "high"))
        low = parse_decimal(_first_present(payload, "lowPrice", "low"))
        volume = parse_decimal(_first_present(payload, "volume", "v"))
        quote_volume = parse_decimal(_first_present(payload, "quoteVolume"))

    value = _require_decimal(raw, "price")
    if value <= 0:
        raise MalformedPayload(f"Non-positive price: {raw!r}")

    return PricePoint(
        symbol=symbol,
        value=value,
        raw=raw if isinstance(raw, str) else str(raw),
        received_at=received_at,
        source=source,
        event_time_ms=event_time,
        qty=qty,
        high=high,
        low=low,
        volume=volume,
        quote_volume=quote_volume,
    )


def normalize_kline_row(row: Any) -> Candle:
    """
    Convert a REST kline row to a Candle.

    Kline format:
    [
      0: Open time (ms),
      1: Open,
      2: High,
      3: Low,
      4: Close,
      5: Volume (base asset),
      6: Close time (ms),
      7: Quote asset volume,
      ...
    ]

    The candle volume is quote volume so it lines up with live ticks
    (price * qty). Rows without column 7 fall back to base volume * close.
    """
    if not isinstance(row, (list, tuple)) or len(row) < 6:
        raise MalformedPayload(f"Unexpected kline row: {row!r}")

    open_time = _optional_int(row[0])
    if open_time is None:
        raise MalformedPayload(f"Kline without open time: {row!r}")

    open_ = float(_require_decimal(row[1], "open"))
    high = float(_require_decimal(row[2], "high"))
    low = float(_require_decimal(row[3], "low"))
    close = float(_require_decimal(row[4], "close"))

    quote_volume = parse_decimal(row[7]) if len(row) > 7 else None
    if quote_volume is not None:
        volume = float(quote_volume)
    else:
        volume = float(_require_decimal(row[5], "volume")) * close

    return Candle(open_time=open_time, open=open_, high=high, low=low, close=close, volume=volume)


def _normalize_level(raw: Any) -> BookLevel:
    if raw is None:
        return BookLevel(price=None, qty=None)
    if isinstance(raw, dict):
        return BookLevel(
            price=parse_decimal(_first_present(raw, "price", "p")),
            qty=parse_decimal(_first_present(raw, "qty", "quantity", "q")),
        )
    if isinstance(raw, (list, tuple)) and len(raw) >= 2:
        return BookLevel(price=parse_decimal(raw[0]), qty=parse_decimal(raw[1]))
    raise MalformedPayload(f"Unexpected book level: {raw!r}")


def normalize_orderbook(payload: Any) -> OrderBookTop:
    """
    Map an ``orderbook`` event payload into an OrderBookTop.

    Accepts ``{symbol, bid: {price, qty}, ask: {price, qty}, ts}`` with levels
    either as objects or ``[price, qty]`` pairs.
    """
    payload = unwrap_envelope(payload)
    if not isinstance(payload, dict):
        raise MalformedPayload(f"Expected object payload, got {type(payload).__name__}")

    symbol = payload.get("symbol") or payload.get("s")
    if not symbol:
        raise MalformedPayload("Order book payload without symbol")

    bid = _normalize_level(payload.get("bid"))
    ask = _normalize_level(payload.get("ask"))
    if bid.price is None and ask.price is None:
        raise MalformedPayload("Order book payload without bid or ask price")

    return OrderBookTop(
        symbol=str(symbol).strip().upper(),
        bid=bid,
        ask=ask,
        ts=_optional_int(payload.get("ts")),
    )


def parse_symbol_filters(exchange_info: Any, symbol: str) -> tuple[str | None, str | None]:
    """
    Extract (tickSize, stepSize) for a symbol from an exchangeInfo response.

    Returns (None, None) if the symbol is not listed.
    """
    if not isinstance(exchange_info, dict):
        raise MalformedPayload("exchangeInfo response is not an object")

    wanted = symbol.upper()
    for entry in exchange_info.get("symbols") or []:
        if not isinstance(entry, dict) or str(entry.get("symbol", "")).upper() != wanted:
            continue
        tick_size = None
        step_size = None
        for f in entry.get("filters") or []:
            if f.get("filterType") == "PRICE_FILTER":
                tick_size = f.get("tickSize")
            elif f.get("filterType") == "LOT_SIZE":
                step_size = f.get("stepSize")
        return tick_size, step_size

    return None, None


def parse_trading_pairs(exchange_info: Any, quote: str = "USDT") -> dict[str, str]:
    """
    Map base asset -> exchange symbol for every TRADING pair quoted in `quote`.

    e.g. {"BTC": "BTCUSDT", "ETH": "ETHUSDT"}
    """
    if not isinstance(exchange_info, dict):
        raise MalformedPayload("exchangeInfo response is not an object")

    wanted = quote.upper()
    pairs: dict[str, str] = {}
    for entry in exchange_info.get("symbols") or []:
        if not isinstance(entry, dict):
            continue
        if entry.get("status") != "TRADING" or str(entry.get("quoteAsset", "")).upper() != wanted:
            continue
        base = entry.get("baseAsset")
        symbol = entry.get("symbol")
        if base and symbol:
            pairs[str(base).upper()] = str(symbol).upper()
    return pairs
