"""
QuoteEngine: keeps one far-from-touch limit order alive and flattens any fill.

Three event sources drive it: price ticks and position alerts from the feed,
and a watchdog ticker. They are serialized by the Busy flag in EngineState.
Busy is checked and set synchronously on the event loop before any await, so
two triggers can never both start work; a trigger that finds the engine busy
is dropped, not queued (the next tick carries fresher intent anyway).

Reorder cycle:
    check-and-close -> cancel open orders -> refresh balance -> price/size
    -> submit -> verify -> commit reference price

No cycle retries itself. A failed cycle leaves the reference price unset and
the next trigger runs the whole cycle again.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Dict, Optional, Set, TypeVar

from quotekeeper.exchange.models import ExchangeError, OrderAck, OrderRejected
from quotekeeper.infra.logging_cfg import log_event
from quotekeeper.infra.scheduler import Clock, IntervalTicker
from quotekeeper.market_data.price_feed import FeedHealth, PositionSnapshot
from quotekeeper.monitoring.alerting import AlertManager, AlertSeverity, AlertType
from quotekeeper.risk.cooldown_guard import CooldownGuard
from quotekeeper.strategy.engine_state import EngineState, Quote, QuoteStatus
from quotekeeper.strategy.reorder_policy import QuoteSide, ReorderThresholds, live_range, should_reorder
from quotekeeper.strategy.sizing import quote_price, quote_qty

log = logging.getLogger("quotebot")

T = TypeVar("T")


class CycleAborted(Exception):
    """Stops the current cycle early. Not necessarily an error (e.g. no balance)."""

    def __init__(self, reason: str, level: int = logging.WARNING, **details: Any) -> None:
        super().__init__(reason)
        self.reason = reason
        self.level = level
        self.details = details


@dataclass
class QuoteEngineConfig:
    symbol: str = "BTC-USD"
    side: QuoteSide = QuoteSide.LONG
    leverage: int = 40
    offset_pct: Decimal = Decimal("0.0022")
    thresholds: ReorderThresholds = field(default_factory=lambda: ReorderThresholds.of("0.0012", "0.004"))
    margin_buffer: Decimal = Decimal("0.95")
    utilization: Decimal = Decimal("0.8")
    price_decimals: int = 2
    qty_decimals: int = 3
    cooldown_sec: float = 600.0
    settle_delay_sec: float = 1.0
    cancel_settle_sec: float = 0.8
    pre_balance_delay_sec: float = 0.5
    verify_attempts: int = 3
    verify_delay_sec: float = 1.5
    watchdog_interval_sec: float = 5.0
    feed_disconnect_grace_sec: float = 10.0
    feed_stale_sec: float = 30.0
    position_timeout_sec: float = 5.0
    request_timeout_sec: float = 10.0
    shutdown_grace_sec: float = 10.0
    close_on_shutdown: bool = True

    @classmethod
    def from_settings(cls, cfg: Any) -> "QuoteEngineConfig":
        return cls(
            symbol=cfg.symbol,
            side=QuoteSide.parse(cfg.side),
            leverage=cfg.leverage,
            offset_pct=Decimal(str(cfg.offset_pct)),
            thresholds=ReorderThresholds.of(cfg.reorder_low, cfg.reorder_high),
            margin_buffer=Decimal(str(cfg.margin_buffer)),
            utilization=Decimal(str(cfg.utilization)),
            price_decimals=cfg.price_decimals,
            qty_decimals=cfg.qty_decimals,
            cooldown_sec=cfg.cooldown_sec,
            settle_delay_sec=cfg.settle_delay_sec,
            cancel_settle_sec=cfg.cancel_settle_sec,
            pre_balance_delay_sec=cfg.pre_balance_delay_sec,
            verify_attempts=cfg.verify_attempts,
            verify_delay_sec=cfg.verify_delay_sec,
            watchdog_interval_sec=cfg.watchdog_interval_sec,
            feed_disconnect_grace_sec=cfg.feed_disconnect_grace_sec,
            feed_stale_sec=cfg.feed_stale_sec,
            position_timeout_sec=cfg.position_timeout_sec,
            request_timeout_sec=cfg.http_timeout,
            close_on_shutdown=cfg.close_on_shutdown,
        )


class QuoteEngine:
    """
    Usage:
        engine = QuoteEngine(client, feed, QuoteEngineConfig.from_settings(cfg), alerts=alerts)
        await engine.start()     # flatten leftovers, set leverage, hook feed, start watchdog
        ...
        await engine.stop()      # cancel orders, final flatten, stop watchdog
    """

    def __init__(
        self,
        client: Any,
        feed: Any,
        config: Optional[QuoteEngineConfig] = None,
        clock: Optional[Clock] = None,
        cooldown: Optional[CooldownGuard] = None,
        alerts: Optional[AlertManager] = None,
    ) -> None:
        self.config = config or QuoteEngineConfig()
        self._client = client
        self._feed = feed
        self._clock = clock or Clock()
        self.cooldown = cooldown or CooldownGuard(self.config.cooldown_sec)
        self._alerts = alerts
        self.state = EngineState()
        self.available_balance = Decimal(0)
        self._tasks: Set[asyncio.Task] = set()
        self._stopping = False
        self._watchdog = IntervalTicker(
            self.config.watchdog_interval_sec, self.on_watchdog_tick, clock=self._clock, name="watchdog",
        )
        self.stats: Dict[str, int] = {
            "cycles": 0,
            "cycles_ok": 0,
            "cycles_failed": 0,
            "triggers_dropped": 0,
            "emergency_closes": 0,
            "orders_rejected": 0,
            "orders_unconfirmed": 0,
            "feed_trips": 0,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log(self, event: str, level: int = logging.INFO, **data: Any) -> None:
        log_event(log, event, level, symbol=self.config.symbol, **data)

    async def _alert(self, alert_type: AlertType, severity: AlertSeverity, title: str, message: str, **details: Any) -> None:
        if self._alerts is None:
            return
        await self._alerts.alert(alert_type, severity, title, message, symbol=self.config.symbol, **details)

    async def _call(self, label: str, aw: Awaitable[T], timeout: Optional[float] = None, shield: bool = False) -> T:
        """
        Await a venue call with a deadline. A timeout becomes an ExchangeError.

        shield=True keeps a write (submit or cancel) running after the deadline;
        only reads are abandoned. Whatever a late submit leaves resting is
        removed by the next cancel-all.
        """
        timeout = timeout or self.config.request_timeout_sec
        if not shield:
            try:
                return await asyncio.wait_for(aw, timeout=timeout)
            except asyncio.TimeoutError as exc:
                raise ExchangeError(f"{label} timed out after {timeout}s") from exc

        inner = asyncio.ensure_future(aw)
        abandoned = False

        def _reap(task: asyncio.Future) -> None:
            # Always retrieve the outcome; an abandoned write has no other owner.
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None and abandoned:
                self._log("late_write_failed", logging.ERROR, call=label, err=str(exc),
                          err_type=type(exc).__name__)

        inner.add_done_callback(_reap)
        try:
            return await asyncio.wait_for(asyncio.shield(inner), timeout=timeout)
        except asyncio.TimeoutError as exc:
            abandoned = True
            raise ExchangeError(f"{label} timed out after {timeout}s") from exc

    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight cycle or close pass to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cooldown_active(self) -> bool:
        return self.cooldown.is_active(self._clock.now())

    def is_feed_dead(self, health: FeedHealth) -> bool:
        silence = health.seconds_since_last_message
        # The second clause catches a socket that claims to be up but has gone quiet.
        return (not health.connected and silence > self.config.feed_disconnect_grace_sec) \
            or silence > self.config.feed_stale_sec

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def on_price_tick(self, price: Decimal) -> Optional[asyncio.Task]:
        if self.state.busy or self.state.emergency or self._stopping:
            return None
        reference = self.state.reference_price
        if not should_reorder(reference, price, self.config.side, self.config.thresholds):
            return None
        if reference is not None:
            self._log("price_out_of_range", reference=reference, market=price)
        return self._try_start_cycle(price, "price_tick")

    def on_position_alert(self, snapshot: PositionSnapshot) -> Optional[asyncio.Task]:
        if snapshot.symbol and snapshot.symbol != self.config.symbol:
            return None
        if snapshot.qty == 0:
            return None
        self._log("position_alert", logging.WARNING, qty=snapshot.qty)
        self.state = self.state.clear_quote()
        if self.state.busy or self._stopping:
            self.stats["triggers_dropped"] += 1
            return None
        price = self._feed.last_price
        if price is not None and self.state.can_start_cycle(self.cooldown_active()):
            return self._try_start_cycle(price, "position_alert")
        # Quoting is suspended, but a reported position is never left alone.
        self.state = self.state.acquire()
        return self._spawn(self._close_only("position_alert"), "close-only")

    def _try_start_cycle(self, price: Decimal, reason: str) -> Optional[asyncio.Task]:
        if self._stopping:
            return None
        cooldown_active = self.cooldown_active()
        if not self.state.can_start_cycle(cooldown_active):
            self.stats["triggers_dropped"] += 1
            event = "cycle_rejected_busy" if self.state.busy else "cycle_rejected"
            self._log(event, logging.DEBUG, reason=reason, busy=self.state.busy,
                      emergency=self.state.emergency, cooldown=cooldown_active)
            return None
        self.state = self.state.begin_cycle()
        return self._spawn(self._run_cycle(price, reason), "reorder-cycle")

    # ------------------------------------------------------------------
    # Reorder cycle
    # ------------------------------------------------------------------

    async def _run_cycle(self, market_price: Decimal, reason: str) -> bool:
        self.stats["cycles"] += 1
        self._log("cycle_start", reason=reason, market=market_price, side=self.config.side.value)
        ok = False
        try:
            ok = await self._cycle(market_price)
        except CycleAborted as exc:
            self._log("cycle_aborted", exc.level, reason=exc.reason, **exc.details)
        except OrderRejected as exc:
            self._log("order_rejected", logging.ERROR, code=exc.code, message=exc.message)
        except Exception as exc:
            self.state = self.state.clear_quote()
            self._log("cycle_failed", logging.ERROR, err=str(exc), err_type=type(exc).__name__)
        finally:
            self.state = self.state.release()
            self.stats["cycles_ok" if ok else "cycles_failed"] += 1
            self._log("cycle_end", ok=ok)
        return ok

    async def _cycle(self, market_price: Decimal) -> bool:
        cfg = self.config
        await self.check_and_close()
        await self.cancel_open_orders()
        await self._clock.sleep(cfg.pre_balance_delay_sec)

        if self.cooldown_active():
            raise CycleAborted("cooldown_active", remaining_sec=round(self.cooldown.remaining(self._clock.now()), 1))

        balance = await self._call("query_balance", self._client.query_balance())
        self.available_balance = balance.available
        if balance.available <= 0:
            raise CycleAborted("no_balance", logging.INFO, available=balance.available)

        price = quote_price(market_price, cfg.side, cfg.offset_pct, cfg.price_decimals)
        qty = quote_qty(balance.available, cfg.leverage, price, cfg.margin_buffer, cfg.utilization, cfg.qty_decimals)
        if qty <= 0:
            raise CycleAborted("qty_zero", available=balance.available, price=price)

        quote = Quote(side=cfg.side, price=price, qty=qty)
        self._log("order_submit", side=cfg.side.order_side, qty=qty, price=price, available=balance.available)
        ack: OrderAck = await self._call(
            "new_order",
            self._client.new_order(cfg.symbol, cfg.side.order_side, "limit", qty, price),
            shield=True,
        )
        if not ack.ok:
            self.stats["orders_rejected"] += 1
            await self._alert(AlertType.ORDER_REJECTED, AlertSeverity.WARNING, "Order Rejected",
                              ack.message or "venue rejected the quote", code=ack.code, price=price)
            raise OrderRejected(ack.code, ack.message)

        if await self._verify(price):
            self.state = self.state.commit_quote(quote)
            far, near = live_range(price, cfg.side, cfg.thresholds)
            self._log("quote_verified", price=price, qty=qty,
                      live_range=[str(far.quantize(price)), str(near.quantize(price))])
            return True

        quote = quote.with_status(QuoteStatus.UNVERIFIED)
        self.stats["orders_unconfirmed"] += 1
        self._log("order_unconfirmed", logging.CRITICAL, price=quote.price, qty=quote.qty,
                  attempts=cfg.verify_attempts, action="check working orders manually")
        await self._alert(AlertType.ORDER_UNCONFIRMED, AlertSeverity.CRITICAL, "Order Unconfirmed",
                          "Submitted quote never appeared in open orders; capital may be committed.",
                          price=quote.price, qty=quote.qty)
        return False

    async def _verify(self, price: Decimal) -> bool:
        for attempt in range(1, self.config.verify_attempts + 1):
            await self._clock.sleep(self.config.verify_delay_sec)
            orders = await self._call("query_open_orders", self._client.query_open_orders(self.config.symbol))
            if any(o.price == price for o in orders):
                return True
            self._log("verify_pending", logging.DEBUG, attempt=attempt, price=price)
        return False

    # ------------------------------------------------------------------
    # Venue actions shared by cycles, watchdog and shutdown
    # ------------------------------------------------------------------

    async def cancel_open_orders(self) -> int:
        orders = await self._call("query_open_orders", self._client.query_open_orders(self.config.symbol))
        ids = [o.id for o in orders if o.id is not None]
        if not ids:
            return 0
        self._log("cancel_open_orders", count=len(ids))
        await self._call("cancel_orders", self._client.cancel_orders(ids), shield=True)
        await self._clock.sleep(self.config.cancel_settle_sec)
        return len(ids)

    async def check_and_close(self) -> bool:
        """
        Flatten any nonzero position on the symbol with a market order.

        Returns True if something was closed. Raises on I/O failure and
        CycleAborted if the venue refuses the closing order.
        """
        cfg = self.config
        positions = await self._call(
            "query_positions", self._client.query_positions(cfg.symbol), timeout=cfg.position_timeout_sec,
        )
        active = [p for p in positions if p.symbol == cfg.symbol and p.qty != 0]
        if not active:
            return False

        for pos in active:
            qty = abs(pos.qty)
            side = pos.closing_side
            self._log("emergency_close", logging.CRITICAL, position=pos.qty, side=side, qty=qty)
            await self.cancel_open_orders()
            ack = await self._call("market_order", self._client.market_order(cfg.symbol, side, qty), shield=True)
            if not ack.ok:
                await self._alert(AlertType.CLOSE_REJECTED, AlertSeverity.CRITICAL, "Emergency Close Rejected",
                                  ack.message or "venue rejected the flattening order", position=pos.qty)
                raise CycleAborted("close_rejected", logging.CRITICAL, code=ack.code, message=ack.message)

            self.cooldown.record_close(self._clock.now())
            self.state = self.state.clear_quote()
            self.stats["emergency_closes"] += 1
            self._log("emergency_close_done", logging.WARNING, side=side, qty=qty, cooldown_sec=self.cooldown.window_sec)
            await self._alert(AlertType.EMERGENCY_CLOSE, AlertSeverity.CRITICAL, "Position Flattened",
                              f"Quote filled; closed {qty} with a market {side}.", position=pos.qty)
            await self._clock.sleep(cfg.settle_delay_sec)
        return True

    async def _close_only(self, reason: str) -> bool:
        """check-and-close under the Busy flag, without placing anything."""
        closed = False
        try:
            closed = await self.check_and_close()
        except CycleAborted as exc:
            self._log("close_only_aborted", exc.level, reason=exc.reason, trigger=reason, **exc.details)
        except Exception as exc:
            self._log("close_only_failed", logging.ERROR, trigger=reason, err=str(exc))
        finally:
            self.state = self.state.release()
        return closed

    # ------------------------------------------------------------------
    # Watchdog
    # ------------------------------------------------------------------

    async def on_watchdog_tick(self) -> None:
        if self.state.busy or self._stopping:
            return
        health = self._feed.get_health()
        dead = self.is_feed_dead(health)
        self.state = self.state.acquire()
        closed = False
        try:
            if dead and not self.state.emergency:
                self.stats["feed_trips"] += 1
                self._log("feed_dead", logging.CRITICAL, connected=health.connected,
                          silence_sec=round(health.seconds_since_last_message, 1))
                # Do not leave a quote resting while we are blind.
                try:
                    await self.cancel_open_orders()
                except Exception as exc:
                    self._log("watchdog_cancel_failed", logging.ERROR, err=str(exc))
                self.state = self.state.enter_emergency()
                await self._alert(AlertType.FEED_DEAD, AlertSeverity.CRITICAL, "Price Feed Dead",
                                  "Open orders cancelled; quoting suspended until the feed recovers.",
                                  connected=health.connected, silence_sec=round(health.seconds_since_last_message, 1))
            elif not dead and self.state.emergency:
                self.state = self.state.recover()
                self._log("feed_recovered", logging.WARNING)
                await self._alert(AlertType.FEED_RECOVERED, AlertSeverity.WARNING, "Price Feed Recovered",
                                  "Quoting resumes on the next tick.")

            if not self.state.emergency:
                closed = await self.check_and_close()
        except CycleAborted as exc:
            self._log("watchdog_aborted", exc.level, reason=exc.reason, **exc.details)
        except Exception as exc:
            self._log("watchdog_error", logging.ERROR, err=str(exc), err_type=type(exc).__name__)
        finally:
            self.state = self.state.release()

        if closed and self._feed.last_price is not None:
            self._try_start_cycle(self._feed.last_price, "watchdog_position")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        cfg = self.config
        self._log("engine_start", side=cfg.side.value, leverage=cfg.leverage,
                  offset_pct=cfg.offset_pct, low=cfg.thresholds.low, high=cfg.thresholds.high)
        await self.check_and_close()
        balance = await self._call("query_balance", self._client.query_balance())
        self.available_balance = balance.available
        self._log("balance", available=balance.available)
        await self._call("set_leverage", self._client.set_leverage(cfg.symbol, cfg.leverage))
        self._feed.on_price_tick(self.on_price_tick)
        self._feed.on_position_alert(self.on_position_alert)
        self._watchdog.start()

    async def stop(self) -> None:
        if self._stopping:
            return
        self._stopping = True
        self._log("engine_stopping", busy=self.state.busy)
        await self._watchdog.stop()

        pending = [t for t in self._tasks if not t.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=self.config.shutdown_grace_sec)
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

        try:
            await self.cancel_open_orders()
        except Exception as exc:
            self._log("shutdown_cancel_failed", logging.ERROR, err=str(exc))
        if self.config.close_on_shutdown:
            try:
                await self.check_and_close()
            except Exception as exc:
                self._log("shutdown_close_failed", logging.ERROR, err=str(exc))
        self._log("engine_stopped", stats=self.stats)
