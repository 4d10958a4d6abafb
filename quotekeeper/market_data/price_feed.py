"""
StandX websocket price feed: last-price ticks plus position-change pushes.

Owns its own reconnect loop (bounded consecutive attempts, fixed delay) and
exposes a read-only health signal. The engine never touches the socket; it
only registers callbacks and reads get_health()/last_price.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

import websockets
from websockets.exceptions import WebSocketException

from quotekeeper.infra.scheduler import Clock

log = logging.getLogger("quotebot")

PriceCallback = Callable[[Decimal], Any]
PositionCallback = Callable[["PositionSnapshot"], Any]


@dataclass(frozen=True)
class FeedHealth:
    connected: bool
    seconds_since_last_message: float


@dataclass(frozen=True)
class PositionSnapshot:
    symbol: str
    qty: Decimal
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "PositionSnapshot":
        try:
            qty = Decimal(str(data.get("qty") or 0))
        except InvalidOperation:
            qty = Decimal(0)
        return cls(symbol=str(data.get("symbol", "")), qty=qty, raw=data)


class PriceFeed:
    """
    Usage:
        feed = PriceFeed("BTC-USD", "wss://perps.standx.com/ws-stream/v1")
        feed.on_price_tick(engine.on_price_tick)
        feed.on_position_alert(engine.on_position_alert)
        await feed.start(wait_connected=15.0)
        ...
        await feed.stop()
    """

    def __init__(
        self,
        symbol: str,
        url: str,
        reconnect_delay: float = 3.0,
        max_reconnects: int = 20,
        heartbeat_sec: float = 10.0,
        connect_timeout: float = 10.0,
        proxy: Optional[str] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.symbol = symbol
        self.url = url
        self._reconnect_delay = reconnect_delay
        self._max_reconnects = max_reconnects
        self._heartbeat_sec = heartbeat_sec
        self._connect_timeout = connect_timeout
        self._proxy = proxy
        self._clock = clock or Clock()

        self._connected = False
        self._last_message: float = self._clock.now()
        self._last_price: Optional[Decimal] = None
        self._price_cb: Optional[PriceCallback] = None
        self._position_cb: Optional[PositionCallback] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._connected_event = asyncio.Event()
        self._exhausted = asyncio.Event()
        self.reconnects = 0

    def on_price_tick(self, callback: PriceCallback) -> None:
        self._price_cb = callback

    def on_position_alert(self, callback: PositionCallback) -> None:
        self._position_cb = callback

    @property
    def last_price(self) -> Optional[Decimal]:
        return self._last_price

    @property
    def exhausted(self) -> asyncio.Event:
        """Set once the reconnect budget is spent; the feed will not come back."""
        return self._exhausted

    def get_health(self) -> FeedHealth:
        return FeedHealth(
            connected=self._connected,
            seconds_since_last_message=max(0.0, self._clock.now() - self._last_message),
        )

    def _mark_alive(self) -> None:
        self._last_message = self._clock.now()

    async def start(self, wait_connected: Optional[float] = None) -> None:
        if self._task is not None:
            return
        self._stopping = False
        self._mark_alive()
        self._task = asyncio.create_task(self._run(), name="price-feed")
        if wait_connected:
            await asyncio.wait_for(self._connected_event.wait(), timeout=wait_connected)

    async def stop(self) -> None:
        self._stopping = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._connected = False

    async def _run(self) -> None:
        failures = 0
        while not self._stopping:
            try:
                kwargs: Dict[str, Any] = {"ping_interval": None, "open_timeout": self._connect_timeout}
                if self._proxy:
                    kwargs["proxy"] = self._proxy
                async with websockets.connect(self.url, **kwargs) as ws:
                    failures = 0
                    await self._session(ws)
                log.warning(json.dumps({"event": "ws_closed", "symbol": self.symbol}))
            except asyncio.CancelledError:
                raise
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                log.warning(json.dumps({"event": "ws_error", "symbol": self.symbol, "err": str(exc)}))
            except Exception as exc:
                log.error(json.dumps({"event": "ws_unexpected_error", "symbol": self.symbol, "err": repr(exc)}))
            finally:
                self._connected = False
            if self._stopping:
                break
            failures += 1
            if failures > self._max_reconnects:
                log.critical(json.dumps({
                    "event": "ws_reconnect_exhausted", "symbol": self.symbol, "attempts": self._max_reconnects,
                }))
                self._exhausted.set()
                break
            self.reconnects += 1
            log.warning(json.dumps({
                "event": "ws_reconnect_wait", "symbol": self.symbol,
                "attempt": failures, "max_attempts": self._max_reconnects, "delay_sec": self._reconnect_delay,
            }))
            await self._clock.sleep(self._reconnect_delay)

    async def _session(self, ws: Any) -> None:
        self._connected = True
        self._mark_alive()
        await self._subscribe(ws)
        self._connected_event.set()
        heartbeat = asyncio.create_task(self._heartbeat(ws), name="price-feed-heartbeat")
        try:
            async for message in ws:
                self._dispatch(message)
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)

    async def _subscribe(self, ws: Any) -> None:
        await ws.send(json.dumps({"subscribe": {"channel": "price", "symbol": self.symbol}}))
        await ws.send(json.dumps({"subscribe": {"channel": "position"}}))
        log.info(json.dumps({"event": "ws_subscribed", "symbol": self.symbol, "channels": ["price", "position"]}))

    async def _heartbeat(self, ws: Any) -> None:
        # Pongs count as liveness so a quiet market is not mistaken for a dead socket.
        while True:
            await self._clock.sleep(self._heartbeat_sec)
            try:
                pong_waiter = await ws.ping()
                await asyncio.wait_for(pong_waiter, timeout=self._heartbeat_sec)
            except asyncio.TimeoutError:
                log.warning(json.dumps({"event": "ws_pong_timeout", "symbol": self.symbol}))
                await ws.close()
                return
            except WebSocketException:
                return
            self._mark_alive()

    def _dispatch(self, raw: Any) -> None:
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            log.debug(json.dumps({"event": "ws_bad_frame", "symbol": self.symbol}))
            return
        if not isinstance(msg, dict):
            return
        channel = msg.get("channel")
        data = msg.get("data")
        if not isinstance(data, dict):
            return

        if channel == "price":
            if data.get("symbol") and data["symbol"] != self.symbol:
                return
            try:
                price = Decimal(str(data.get("last_price")))
            except InvalidOperation:
                return
            if not price.is_finite() or price <= 0:
                return
            self._last_price = price
            self._mark_alive()
            self._invoke(self._price_cb, price, "price")
        elif channel == "position":
            self._invoke(self._position_cb, PositionSnapshot.from_payload(data), "position")

    def _invoke(self, callback: Optional[Callable[[Any], Any]], arg: Any, channel: str) -> None:
        if callback is None:
            return
        try:
            callback(arg)
        except Exception as exc:
            # A misbehaving consumer must not take the socket down.
            log.error(json.dumps({"event": "ws_callback_error", "channel": channel, "err": str(exc)}))
