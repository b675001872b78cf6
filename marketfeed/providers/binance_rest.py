"""Binance REST client: historical klines, last price fallback, symbol metadata."""

from __future__ import annotations

import json
import logging
from typing import Any

import aiohttp

from ..types import Candle, PricePoint
from .normalize import (
    MalformedPayload,
    normalize_kline_row,
    normalize_price_message,
    parse_symbol_filters,
    parse_trading_pairs,
)


logger = logging.getLogger(__name__)


class BinanceAPIError(Exception):
    """Raised when Binance answers with a non-200 status."""

    def __init__(self, status: int, body: str):
        super().__init__(f"Binance API error {status}: {body}")
        self.status = status
        self.body = body


class BinanceRESTClient:
    """
    Thin async wrapper around the public Binance spot REST API.

    Each call opens its own short-lived session, so one instance can be shared
    by every manager without lifecycle coordination.
    """

    def __init__(self, base_url: str = "https://api.binance.com", timeout_seconds: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, params=params) as response:
                if response.status != 200:
                    text = await response.text()
                    raise BinanceAPIError(response.status, text)
                try:
                    return await response.json()
                except json.JSONDecodeError as e:
                    raise MalformedPayload(f"Non-JSON response from {path}: {e}") from e

    async def fetch_klines(self, symbol: str, interval: str, limit: int = 500) -> list[Candle]:
        """
        Fetch the most recent `limit` bars for symbol/interval.

        Args:
            symbol: Trading pair (e.g., "BTCUSDT")
            interval: Timeframe (e.g., "1m", "1h")
            limit: Number of bars (Binance caps this at 1000)

        Returns:
            Candles in ascending open-time order. Malformed rows are skipped.
        """
        params = {
            "symbol": symbol.upper(),
            "interval": interval,
            "limit": max(1, min(1000, int(limit))),
        }
        data = await self._get_json("/api/v3/klines", params)
        if not isinstance(data, list):
            raise MalformedPayload(f"Unexpected klines response for {symbol}: {type(data).__name__}")

        candles: list[Candle] = []
        for row in data:
            try:
                candles.append(normalize_kline_row(row))
            except MalformedPayload as e:
                logger.warning(f"Skipping kline row for {symbol} {interval}: {e}")

        candles.sort(key=lambda c: c.open_time)
        return candles

    async def fetch_last_price(self, symbol: str) -> PricePoint:
        """Fetch the latest traded price (used as the push-stream fallback)."""
        data = await self._get_json("/api/v3/ticker/price", {"symbol": symbol.upper()})
        return normalize_price_message(data, symbol_hint=symbol.upper(), source="rest")

    async def fetch_24h_ticker(self, symbol: str) -> PricePoint:
        """Fetch last price plus 24h high/low/volume."""
        data = await self._get_json("/api/v3/ticker/24hr", {"symbol": symbol.upper()})
        return normalize_price_message(data, symbol_hint=symbol.upper(), source="rest")

    async def fetch_symbol_filters(self, symbol: str) -> tuple[str | None, str | None]:
        """Return (tickSize, stepSize) for symbol from exchangeInfo."""
        data = await self._get_json("/api/v3/exchangeInfo", {"symbol": symbol.upper()})
        return parse_symbol_filters(data, symbol)

    async def fetch_trading_pairs(self, quote: str = "USDT") -> dict[str, str]:
        """Return base asset -> symbol for every pair currently trading against quote."""
        data = await self._get_json("/api/v3/exchangeInfo")
        pairs = parse_trading_pairs(data, quote)
        logger.info(f"Loaded {len(pairs)} {quote.upper()} trading pairs")
        return pairs

    async def fetch_last_prices(self, symbols: list[str]) -> dict[str, PricePoint]:
        """
        Fetch last prices for several symbols in one request.

        Symbols the exchange does not return (or returns malformed) are
        missing from the result.
        """
        wanted = [s.upper() for s in symbols if s and s.strip()]
        if not wanted:
            return {}

        data = await self._get_json(
            "/api/v3/ticker/price",
            {"symbols": json.dumps(wanted, separators=(",", ":"))},
        )
        if not isinstance(data, list):
            raise MalformedPayload(f"Unexpected batch ticker response: {type(data).__name__}")

        prices: dict[str, PricePoint] = {}
        for item in data:
            try:
                point = normalize_price_message(item, source="rest")
            except MalformedPayload as e:
                logger.warning(f"Skipping batch price entry: {e}")
                continue
            prices[point.symbol] = point
        return prices
