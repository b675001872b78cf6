"""Canonical types shared by the precision, price, candle and order-book layers."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class StreamStatus(Enum):
    """Transport status of a subscription."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class FeedState(Enum):
    """Lifecycle of the price feed for the active symbol."""
    IDLE = "idle"
    CONNECTING = "connecting"
    LIVE = "live"
    DEGRADED = "degraded"  # transport dropped after data arrived; last value kept
    CLOSED = "closed"


@dataclass(frozen=True)
class SymbolSpec:
    """Normalized trading pair."""
    base: str  # e.g., "BTC"
    quote: str  # e.g., "USDT"
    symbol: str  # exchange-native, e.g., "BTCUSDT"

    @property
    def stream_name(self) -> str:
        """Lowercase symbol used in push stream names."""
        return self.symbol.lower()


@dataclass(frozen=True)
class PrecisionSpec:
    """Display precision derived from exchange filters."""
    tick_size: Decimal
    step_size: Decimal
    price_places: int
    quantity_places: int


@dataclass(frozen=True)
class PricePoint:
    """One normalized price update from any source."""
    symbol: str
    value: Decimal
    raw: str  # original string, used for the decimal-place hint
    received_at: float  # Unix seconds
    source: str = "stream"  # "stream" | "rest"
    event_time_ms: int | None = None
    qty: Decimal | None = None

    # 24h stats, present only on ticker-shaped messages
    high: Decimal | None = None
    low: Decimal | None = None
    volume: Decimal | None = None
    quote_volume: Decimal | None = None


@dataclass
class Candle:
    """OHLCV bar for one fixed-width bucket. Only the newest candle is mutated."""
    open_time: int  # bucket start, Unix ms
    open: float
    high: float
    low: float
    close: float
    volume: float  # quote-asset volume


@dataclass(frozen=True)
class BookLevel:
    price: Decimal | None
    qty: Decimal | None


@dataclass(frozen=True)
class OrderBookTop:
    """Best bid/ask for a symbol."""
    symbol: str
    bid: BookLevel
    ask: BookLevel
    ts: int | None  # server timestamp, Unix ms


@dataclass(frozen=True)
class StreamSubscription:
    """Subscription owned by exactly one manager."""
    symbol: str
    connection_handle: int
    status: StreamStatus
    subscribed_at: float


@dataclass(frozen=True)
class PriceSnapshot:
    """Read-only output of the price feed."""
    symbol: str | None
    price: str
    numeric_price: float | None
    is_loading: bool
    decimal_places: int
    state: FeedState
    received_at: float | None = None
    source: str | None = None
    high: str | None = None
    low: str | None = None
    volume: str | None = None
    quote_volume: str | None = None


@dataclass(frozen=True)
class CandleSnapshot:
    """Read-only output of the candle aggregator."""
    symbol: str | None
    interval: str | None
    candles: tuple[Candle, ...] = ()
    sma: tuple[float | None, ...] = ()
    ema: tuple[float | None, ...] = ()
    volumes: tuple[float, ...] = ()
    is_loading: bool = False
    error: str | None = None


@dataclass(frozen=True)
class OrderBookState:
    """Read-only output of the order-book manager."""
    data: OrderBookTop | None
    status: StreamStatus
    error: str | None
    active_symbol: str | None
    subscription: StreamSubscription | None = None
