"""Protocols for the market data sources the managers depend on."""

from __future__ import annotations

from typing import Any, AsyncContextManager, AsyncIterator, Callable, Protocol

from ..types import Candle, PricePoint


class PriceStreamProvider(Protocol):
    """Push feed of last-price updates for one symbol."""

    def stream(
        self,
        symbol: str,
        on_status: Callable[[bool], None] | None = None,
    ) -> AsyncIterator[PricePoint]:
        """
        Async generator that yields PricePoint objects.

        Should handle reconnection internally and never raise unhandled exceptions.
        Reports transport up/down through on_status.
        """
        ...


class MarketDataREST(Protocol):
    """Request/response market data."""

    async def fetch_klines(self, symbol: str, interval: str, limit: int = 500) -> list[Candle]:
        ...

    async def fetch_last_price(self, symbol: str) -> PricePoint:
        ...

    async def fetch_24h_ticker(self, symbol: str) -> PricePoint:
        ...

    async def fetch_symbol_filters(self, symbol: str) -> tuple[str | None, str | None]:
        ...

    async def fetch_trading_pairs(self, quote: str = "USDT") -> dict[str, str]:
        ...

    async def fetch_last_prices(self, symbols: list[str]) -> dict[str, PricePoint]:
        ...


class OrderBookChannel(Protocol):
    """An open multiplexed order-book connection."""

    handle: int

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        ...

    def events(self) -> AsyncIterator[tuple[str, Any]]:
        ...


class OrderBookConnector(Protocol):
    def connect(self) -> AsyncContextManager[OrderBookChannel]:
        ...
