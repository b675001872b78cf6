"""Shared fakes for network-free tests."""

from __future__ import annotations

import asyncio
import itertools
import time
from contextlib import asynccontextmanager
from decimal import Decimal

import pytest

from marketfeed.types import Candle, PricePoint


DISCONNECT = object()
CLOSE = object()


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks run a few steps."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Poll until predicate() is true."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


def make_point(
    symbol: str,
    price: str,
    qty: str | None = None,
    ts_ms: int | None = None,
    source: str = "stream",
) -> PricePoint:
    return PricePoint(
        symbol=symbol,
        value=Decimal(price),
        raw=price,
        received_at=time.time(),
        source=source,
        event_time_ms=ts_ms,
        qty=Decimal(qty) if qty is not None else None,
    )


class FakeStreamer:
    """Per-symbol queues standing in for the Binance push stream."""

    def __init__(self):
        self.queues: dict[str, asyncio.Queue] = {}
        self.opened: list[str] = []
        self.closed: list[str] = []

    def queue(self, symbol: str) -> asyncio.Queue:
        return self.queues.setdefault(symbol, asyncio.Queue())

    def push(self, symbol: str, item) -> None:
        self.queue(symbol).put_nowait(item)

    async def stream(self, symbol, on_status=None):
        self.opened.append(symbol)
        q = self.queue(symbol)
        if on_status:
            on_status(True)
        try:
            while True:
                item = await q.get()
                if item is DISCONNECT:
                    if on_status:
                        on_status(False)
                    continue
                yield item
        finally:
            self.closed.append(symbol)


class FakeREST:
    """In-memory REST source with optional per-symbol gates."""

    def __init__(self):
        self.klines: dict[tuple[str, str], list[Candle]] = {}
        self.prices: dict[str, PricePoint] = {}
        self.tickers: dict[str, PricePoint] = {}
        self.filters: dict[str, tuple[str | None, str | None]] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.errors: dict[str, Exception] = {}

        self.kline_calls: list[tuple[str, str, int]] = []
        self.price_calls: list[str] = []
        self.filter_calls: list[str] = []

    async def _gate(self, key: str) -> None:
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        if key in self.errors:
            raise self.errors[key]

    async def fetch_klines(self, symbol, interval, limit=500):
        self.kline_calls.append((symbol, interval, limit))
        await self._gate(f"klines:{symbol}")
        return list(self.klines.get((symbol, interval), []))

    async def fetch_last_price(self, symbol):
        self.price_calls.append(symbol)
        await self._gate(f"price:{symbol}")
        return self.prices[symbol]

    async def fetch_24h_ticker(self, symbol):
        await self._gate(f"ticker:{symbol}")
        return self.tickers[symbol]

    async def fetch_symbol_filters(self, symbol):
        self.filter_calls.append(symbol)
        await self._gate(f"filters:{symbol}")
        return self.filters.get(symbol, (None, None))

    async def fetch_trading_pairs(self, quote="USDT"):
        return {s[: -len(quote)]: s for s in self.prices if s.endswith(quote)}

    async def fetch_last_prices(self, symbols):
        self.price_calls.extend(symbols)
        return {s: self.prices[s] for s in symbols if s in self.prices}


_handles = itertools.count(1)


class FakeChannel:
    """Order-book connection recording emitted events."""

    def __init__(self):
        self.handle = next(_handles)
        self.emitted: list[tuple[str, dict]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def emit(self, event, data):
        if self.closed:
            raise OSError("socket closed")
        self.emitted.append((event, dict(data)))

    def server_send(self, event, data) -> None:
        self.incoming.put_nowait((event, data))

    def server_close(self) -> None:
        self.incoming.put_nowait(CLOSE)

    async def events(self):
        while True:
            item = await self.incoming.get()
            if item is CLOSE:
                return
            yield item


class FakeConnector:
    """Hands out FakeChannels; can fail or block the next connects."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.channels: list[FakeChannel] = []
        self.gate: asyncio.Event | None = None
        self.attempts = 0

    @asynccontextmanager
    async def connect(self):
        self.attempts += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.failures > 0:
            self.failures -= 1
            raise OSError("connection refused")
        channel = FakeChannel()
        self.channels.append(channel)
        try:
            yield channel
        finally:
            channel.closed = True


class RecordingSleep:
    """asyncio.sleep stand-in that records delays and only yields once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def streamer():
    return FakeStreamer()


@pytest.fixture
def rest():
    return FakeREST()


class FakeTimers:
    """Manual clock plus call_later that fires when time is advanced."""

    def __init__(self):
        self.now = 0.0
        self.timers: list = []

    def clock(self) -> float:
        return self.now

    def call_later(self, delay, callback):
        timer = _Timer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def advance_to(self, t: float) -> None:
        while True:
            due = [x for x in self.timers if not x.cancelled and x.when <= t]
            if not due:
                break
            timer = min(due, key=lambda x: x.when)
            self.timers.remove(timer)
            self.now = timer.when
            timer.callback()
        self.now = t


class _Timer:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


@pytest.fixture
def timers():
    return FakeTimers()
