"""
Entry point wiring all components.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys
from typing import Any, Callable, Dict

from quotekeeper.config.config import Settings
from quotekeeper.exchange.models import ExchangeError
from quotekeeper.exchange.signing import RequestSigner, load_signing_key
from quotekeeper.exchange.standx_client import StandXClient
from quotekeeper.infra.logging_cfg import build_logger
from quotekeeper.market_data.price_feed import PriceFeed
from quotekeeper.monitoring.alerting import AlertSeverity, AlertType, configure_alerts
from quotekeeper.strategy.quote_engine import QuoteEngine, QuoteEngineConfig

log = logging.getLogger("quotebot")

FEED_CONNECT_TIMEOUT_SEC = 15.0


def loop_exception_handler(request_stop: Callable[[], None]) -> Callable[[asyncio.AbstractEventLoop, Dict[str, Any]], None]:
    """
    Stop the bot on a genuinely unhandled exception.

    Venue I/O errors that surface here belong to requests nobody awaits any
    more; the engine already failed that step, so they are only logged.
    """

    def handler(_loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        exc = context.get("exception")
        payload = {
            "event": "unhandled_exception",
            "message": context.get("message"),
            "err": repr(exc) if exc else None,
        }
        if exc is None or isinstance(exc, ExchangeError):
            log.warning(json.dumps(payload))
            return
        log.critical(json.dumps(payload))
        request_stop()

    return handler


async def main() -> int:
    # Logger first, so config warnings and the config_loaded event are kept.
    build_logger(
        "quotebot",
        level=os.getenv("SX_LOG_LEVEL", "INFO"),
        file_path=os.getenv("SX_LOG_FILE", "quotebot.log") or None,
    )
    cfg = Settings.load()
    cfg.require_credentials()
    log.debug(json.dumps({"event": "settings", **cfg.dump()}, default=str))

    alerts = configure_alerts(
        webhook_url=cfg.alert_webhook_url,
        webhook_type=cfg.alert_webhook_type,
        min_severity=AlertSeverity.WARNING,
        enabled=cfg.alert_enabled,
        bot_name="QuoteBot",
    )

    signer = RequestSigner(cfg.token, load_signing_key(cfg.signing_key))
    client = StandXClient(cfg.base_url, signer, timeout=cfg.http_timeout, proxy=cfg.proxy)
    feed = PriceFeed(
        cfg.symbol,
        cfg.ws_url,
        reconnect_delay=cfg.ws_reconnect_delay_sec,
        max_reconnects=cfg.ws_max_reconnects,
        heartbeat_sec=cfg.ws_heartbeat_sec,
        proxy=cfg.proxy,
    )
    engine = QuoteEngine(client, feed, QuoteEngineConfig.from_settings(cfg), alerts=alerts)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def request_stop() -> None:
        if not stop_event.is_set():
            log.info(json.dumps({"event": "shutdown_requested"}))
            stop_event.set()

    loop.set_exception_handler(loop_exception_handler(request_stop))
    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop)
        except NotImplementedError:
            pass

    exit_code = 0
    try:
        await feed.start(wait_connected=FEED_CONNECT_TIMEOUT_SEC)
        await engine.start()
        await alerts.alert(AlertType.STARTUP, AlertSeverity.INFO, "QuoteBot Started",
                           f"Quoting {cfg.side} {cfg.symbol} at {cfg.leverage}x", symbol=cfg.symbol)

        stop_wait = asyncio.create_task(stop_event.wait())
        exhausted_wait = asyncio.create_task(feed.exhausted.wait())
        await asyncio.wait({stop_wait, exhausted_wait}, return_when=asyncio.FIRST_COMPLETED)
        for task in (stop_wait, exhausted_wait):
            task.cancel()
        if feed.exhausted.is_set():
            exit_code = 1
            await alerts.alert(AlertType.FEED_EXHAUSTED, AlertSeverity.CRITICAL, "Price Feed Gone",
                               "Reconnect attempts exhausted; shutting down.", symbol=cfg.symbol)
    except Exception as exc:
        exit_code = 1
        log.critical(json.dumps({"event": "fatal", "err": str(exc), "err_type": type(exc).__name__}))
    finally:
        log.info("Closing connections...")
        await engine.stop()
        await feed.stop()
        await client.close()
        await alerts.alert(AlertType.SHUTDOWN, AlertSeverity.WARNING, "QuoteBot Stopped",
                           "Open orders cancelled.", symbol=cfg.symbol, stats=engine.stats)
        await alerts.close()
        log.info("Shutdown complete")
    return exit_code


def run() -> None:
    try:
        code = asyncio.run(main())
    except (ValueError, RuntimeError) as exc:
        log.error(json.dumps({"event": "startup_failed", "err": str(exc)}))
        code = 1
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
