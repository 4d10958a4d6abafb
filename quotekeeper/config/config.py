"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

SIDES = ("long", "short")
REDACTED_FIELDS = ("token", "signing_key", "proxy", "alert_webhook_url")


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def format_proxy_url(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a proxy setting into a URL.

    Accepts full URLs as-is and the `ip:port:user:pass` shorthand that
    proxy vendors hand out.
    """
    if not raw:
        return None
    raw = raw.strip()
    if raw.startswith("http"):
        return raw
    parts = raw.split(":")
    if len(parts) == 4:
        ip, port, user, password = parts
        return f"http://{user}:{password}@{ip}:{port}"
    return raw


@dataclass(frozen=True)
class Settings:
    base_url: str
    ws_url: str
    symbol: str
    side: str
    leverage: int
    token: str | None
    signing_key: str | None
    proxy: str | None
    # Quote placement
    offset_pct: float
    reorder_high: float
    reorder_low: float
    margin_buffer: float
    utilization: float
    price_decimals: int
    qty_decimals: int
    # Cycle timing
    cooldown_sec: float
    settle_delay_sec: float
    cancel_settle_sec: float
    pre_balance_delay_sec: float
    verify_attempts: int
    verify_delay_sec: float
    # Watchdog
    watchdog_interval_sec: float
    feed_disconnect_grace_sec: float
    feed_stale_sec: float
    # I/O
    position_timeout_sec: float
    http_timeout: float
    ws_reconnect_delay_sec: float
    ws_max_reconnects: int
    ws_heartbeat_sec: float
    close_on_shutdown: bool
    # Alerting
    alert_webhook_url: str | None
    alert_webhook_type: str  # generic, slack, discord
    alert_enabled: bool
    # Logging
    log_file: str | None
    log_level: str

    def dump(self) -> dict:
        """Return a dict of settings for logging, with secrets masked."""
        data = self.__dict__.copy()
        for key in REDACTED_FIELDS:
            if data.get(key):
                data[key] = "***"
        return data

    @property
    def order_side(self) -> str:
        return "sell" if self.side == "short" else "buy"

    @classmethod
    def load(cls) -> "Settings":
        def _int_env(key: str, default: int) -> int:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return int(raw)

        def _float_env(key: str, default: float) -> float:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return float(raw)

        cfg = cls(
            base_url=os.getenv("SX_BASE_URL", "https://perps.standx.com"),
            ws_url=os.getenv("SX_WS_URL", "wss://perps.standx.com/ws-stream/v1"),
            symbol=os.getenv("SX_SYMBOL", "BTC-USD"),
            side=os.getenv("SX_SIDE", "long").strip().lower(),
            leverage=_int_env("SX_LEVERAGE", 40),
            token=os.getenv("SX_TOKEN"),
            signing_key=os.getenv("SX_SIGNING_KEY"),
            proxy=format_proxy_url(os.getenv("SX_PROXY")),
            offset_pct=_float_env("SX_OFFSET_PCT", 0.0022),
            reorder_high=_float_env("SX_REORDER_HIGH", 0.004),
            reorder_low=_float_env("SX_REORDER_LOW", 0.0012),
            margin_buffer=_float_env("SX_MARGIN_BUFFER", 0.95),
            utilization=_float_env("SX_UTILIZATION", 0.8),
            price_decimals=_int_env("SX_PRICE_DECIMALS", 2),
            qty_decimals=_int_env("SX_QTY_DECIMALS", 3),
            cooldown_sec=_float_env("SX_COOLDOWN_SEC", 600.0),
            settle_delay_sec=_float_env("SX_SETTLE_DELAY_SEC", 1.0),
            cancel_settle_sec=_float_env("SX_CANCEL_SETTLE_SEC", 0.8),
            pre_balance_delay_sec=_float_env("SX_PRE_BALANCE_DELAY_SEC", 0.5),
            verify_attempts=_int_env("SX_VERIFY_ATTEMPTS", 3),
            verify_delay_sec=_float_env("SX_VERIFY_DELAY_SEC", 1.5),
            watchdog_interval_sec=_float_env("SX_WATCHDOG_INTERVAL_SEC", 5.0),
            feed_disconnect_grace_sec=_float_env("SX_FEED_DISCONNECT_GRACE_SEC", 10.0),
            feed_stale_sec=_float_env("SX_FEED_STALE_SEC", 30.0),
            position_timeout_sec=_float_env("SX_POSITION_TIMEOUT_SEC", 5.0),
            http_timeout=_float_env("SX_HTTP_TIMEOUT", 10.0),
            ws_reconnect_delay_sec=_float_env("SX_WS_RECONNECT_DELAY_SEC", 3.0),
            ws_max_reconnects=_int_env("SX_WS_MAX_RECONNECTS", 20),
            ws_heartbeat_sec=_float_env("SX_WS_HEARTBEAT_SEC", 10.0),
            close_on_shutdown=env_bool("SX_CLOSE_ON_SHUTDOWN", True),
            alert_webhook_url=os.getenv("SX_ALERT_WEBHOOK_URL"),
            alert_webhook_type=os.getenv("SX_ALERT_WEBHOOK_TYPE", "generic"),
            alert_enabled=env_bool("SX_ALERT_ENABLED", True),
            log_file=os.getenv("SX_LOG_FILE", "quotebot.log") or None,
            log_level=os.getenv("SX_LOG_LEVEL", "INFO").upper(),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    def require_credentials(self) -> None:
        if not self.token or not self.signing_key:
            raise RuntimeError("Missing credentials: set SX_TOKEN and SX_SIGNING_KEY")

    def _validate(self) -> None:
        if self.side not in SIDES:
            raise ValueError(f"SX_SIDE must be one of {SIDES}, got {self.side!r}")
        if not self.symbol:
            raise ValueError("SX_SYMBOL must be set")
        if self.leverage <= 0:
            raise ValueError("SX_LEVERAGE must be > 0")
        if not 0 < self.reorder_low < self.reorder_high:
            raise ValueError("Reorder thresholds must satisfy 0 < SX_REORDER_LOW < SX_REORDER_HIGH")
        if not 0 < self.offset_pct < 1:
            raise ValueError("SX_OFFSET_PCT must be in (0, 1)")
        if not 0 < self.margin_buffer <= 1 or not 0 < self.utilization <= 1:
            raise ValueError("SX_MARGIN_BUFFER and SX_UTILIZATION must be in (0, 1]")
        if self.price_decimals < 0 or self.qty_decimals < 0:
            raise ValueError("Decimal precisions must be >= 0")
        if self.verify_attempts <= 0:
            raise ValueError("SX_VERIFY_ATTEMPTS must be > 0")
        if self.watchdog_interval_sec <= 0:
            raise ValueError("SX_WATCHDOG_INTERVAL_SEC must be > 0")
        if not 0 < self.feed_disconnect_grace_sec <= self.feed_stale_sec:
            raise ValueError("Feed thresholds must satisfy 0 < SX_FEED_DISCONNECT_GRACE_SEC <= SX_FEED_STALE_SEC")
        if self.position_timeout_sec <= 0 or self.http_timeout <= 0:
            raise ValueError("Timeouts must be > 0")
        if self.ws_max_reconnects <= 0 or self.ws_reconnect_delay_sec < 0:
            raise ValueError("SX_WS_MAX_RECONNECTS must be > 0 and SX_WS_RECONNECT_DELAY_SEC >= 0")
        for name in ("cooldown_sec", "settle_delay_sec", "cancel_settle_sec",
                     "pre_balance_delay_sec", "verify_delay_sec"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.alert_webhook_type not in {"generic", "slack", "discord"}:
            raise ValueError("SX_ALERT_WEBHOOK_TYPE must be generic, slack or discord")

        if self.leverage > 50:
            logging.getLogger("quotebot").warning(
                f"WARNING: SX_LEVERAGE is {self.leverage}x. "
                "A fill at this leverage is expensive even when flattened immediately."
            )
        if self.offset_pct <= self.reorder_low:
            logging.getLogger("quotebot").warning(
                "WARNING: SX_OFFSET_PCT <= SX_REORDER_LOW; every fresh quote is already inside the reorder band."
            )


def _sanity_check(cfg: Settings) -> None:
    """
    Log critical settings once at startup so overrides are obvious.
    """
    logger = logging.getLogger("quotebot")
    payload = {
        "event": "config_loaded",
        "symbol": cfg.symbol,
        "side": cfg.side,
        "leverage": cfg.leverage,
        "offset_pct": cfg.offset_pct,
        "reorder_low": cfg.reorder_low,
        "reorder_high": cfg.reorder_high,
        "cooldown_sec": cfg.cooldown_sec,
        "proxy": bool(cfg.proxy),
    }
    logger.info(json.dumps(payload))
