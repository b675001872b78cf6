"""
Transport for the multiplexed order-book relay.

One physical socket carries many logical subscriptions. Frames are JSON text:
``{"event": "<name>", "data": {...}}``. The client emits ``subscribe`` /
``unsubscribe`` with ``{"symbol": "BTC"}``; the server emits ``orderbook``.
"""

from __future__ import annotations

import itertools
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import websockets


logger = logging.getLogger(__name__)

_handles = itertools.count(1)


class OrderBookConnection:
    """One open relay socket."""

    def __init__(self, ws: Any):
        self._ws = ws
        self.handle = next(_handles)

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        await self._ws.send(json.dumps({"event": event, "data": data}))

    async def events(self) -> AsyncIterator[tuple[str, Any]]:
        """Yield (event, data) until the socket closes. Undecodable frames are skipped."""
        async for message in self._ws:
            try:
                frame = json.loads(message)
            except json.JSONDecodeError as e:
                logger.warning(f"Failed to parse order-book frame: {e}")
                continue
            if not isinstance(frame, dict) or "event" not in frame:
                logger.warning(f"Unexpected order-book frame: {frame!r}")
                continue
            yield str(frame["event"]), frame.get("data")


class OrderBookSocketClient:
    """Opens OrderBookConnections to the relay URL."""

    def __init__(self, url: str, connect=websockets.connect):
        self.url = url
        self._connect = connect

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[OrderBookConnection]:
        async with self._connect(
            self.url,
            open_timeout=10,
            close_timeout=5,
            ping_interval=20,
            ping_timeout=20,
        ) as ws:
            yield OrderBookConnection(ws)
