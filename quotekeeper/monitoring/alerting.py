"""
Webhook alerting for events an operator has to act on.

- Send alerts to a webhook (generic JSON, Slack, Discord)
- Rate limiting per alert type to prevent alert storms
- Batching of alerts raised close together
- Async non-blocking delivery
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional

import aiohttp

logger = logging.getLogger("quotebot")


class AlertSeverity(Enum):
    """Alert severity levels."""
    CRITICAL = auto()  # Immediate attention required
    WARNING = auto()   # Potential issue
    INFO = auto()      # Informational


class AlertType(Enum):
    """Types of alerts."""
    EMERGENCY_CLOSE = auto()
    CLOSE_REJECTED = auto()
    ORDER_UNCONFIRMED = auto()
    ORDER_REJECTED = auto()
    FEED_DEAD = auto()
    FEED_RECOVERED = auto()
    FEED_EXHAUSTED = auto()
    STARTUP = auto()
    SHUTDOWN = auto()


@dataclass
class Alert:
    """An alert to be sent."""
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    details: Dict[str, Any] = field(default_factory=dict)
    symbol: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.alert_type.name,
            "severity": self.severity.name,
            "title": self.title,
            "message": self.message,
            "timestamp_ms": self.timestamp_ms,
            "timestamp_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.timestamp_ms / 1000)),
            "details": {k: str(v) for k, v in self.details.items()},
            "symbol": self.symbol,
        }


@dataclass
class AlertConfig:
    webhook_url: Optional[str] = None
    webhook_type: str = "generic"  # generic, slack, discord
    min_severity: AlertSeverity = AlertSeverity.WARNING
    rate_limit_seconds: int = 60  # Min seconds between same alert type
    batch_window_ms: int = 2000
    enabled: bool = True
    bot_name: str = "QuoteBot"


class WebhookFormatter:
    """Formats alerts for different webhook types."""

    @staticmethod
    def format_generic(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        return alert.to_dict()

    @staticmethod
    def format_slack(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        color = {
            AlertSeverity.CRITICAL: "#FF0000",
            AlertSeverity.WARNING: "#FFA500",
            AlertSeverity.INFO: "#0000FF",
        }.get(alert.severity, "#808080")
        fields = [{"title": "Type", "value": alert.alert_type.name, "short": True}]
        if alert.symbol:
            fields.append({"title": "Symbol", "value": alert.symbol, "short": True})
        for key, value in list(alert.details.items())[:5]:
            fields.append({"title": key, "value": str(value), "short": True})
        return {
            "username": config.bot_name,
            "attachments": [{
                "color": color,
                "title": alert.title,
                "text": alert.message,
                "fields": fields,
                "footer": f"{config.bot_name} | {alert.severity.name}",
                "ts": alert.timestamp_ms // 1000,
            }]
        }

    @staticmethod
    def format_discord(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        color = {
            AlertSeverity.CRITICAL: 0xFF0000,
            AlertSeverity.WARNING: 0xFFA500,
            AlertSeverity.INFO: 0x0000FF,
        }.get(alert.severity, 0x808080)
        fields = [{"name": "Type", "value": alert.alert_type.name, "inline": True}]
        if alert.symbol:
            fields.append({"name": "Symbol", "value": alert.symbol, "inline": True})
        for key, value in list(alert.details.items())[:5]:
            fields.append({"name": key, "value": str(value), "inline": True})
        return {
            "username": config.bot_name,
            "embeds": [{
                "title": alert.title,
                "description": alert.message,
                "color": color,
                "fields": fields,
                "footer": {"text": f"{config.bot_name} | {alert.severity.name}"},
            }]
        }


class AlertManager:
    """
    Queues alerts and delivers them in small batches.

    send_alert() never blocks on the network; delivery happens in a
    background task. close() flushes whatever is still pending.
    """

    def __init__(self, config: Optional[AlertConfig] = None) -> None:
        self.config = config or AlertConfig()
        self._last_alert_times: Dict[AlertType, int] = {}
        self._pending_alerts: List[Alert] = []
        self._batch_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    async def send_alert(self, alert: Alert) -> bool:
        """
        Queue an alert for delivery.

        Returns True if queued, False if disabled, below threshold, or rate limited.
        """
        if not self.config.enabled or not self.config.webhook_url:
            return False
        if alert.severity.value > self.config.min_severity.value:
            return False

        now_ms = int(time.time() * 1000)
        last_time = self._last_alert_times.get(alert.alert_type, 0)
        if now_ms - last_time < self.config.rate_limit_seconds * 1000:
            logger.debug(f"Alert rate limited: {alert.alert_type.name}")
            return False

        async with self._lock:
            self._pending_alerts.append(alert)
            self._last_alert_times[alert.alert_type] = now_ms
            if self._batch_task is None or self._batch_task.done():
                self._batch_task = asyncio.create_task(self._batch_deliver())
        return True

    async def alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        message: str,
        symbol: Optional[str] = None,
        **details: Any,
    ) -> bool:
        return await self.send_alert(Alert(
            alert_type=alert_type,
            severity=severity,
            title=title,
            message=message,
            symbol=symbol,
            details=details,
        ))

    async def close(self) -> None:
        """Deliver anything still queued, skipping the batch wait."""
        task, self._batch_task = self._batch_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._flush()

    async def _batch_deliver(self) -> None:
        await asyncio.sleep(self.config.batch_window_ms / 1000)
        await self._flush()

    async def _flush(self) -> None:
        async with self._lock:
            alerts = self._pending_alerts.copy()
            self._pending_alerts.clear()
        if not alerts:
            return
        if len(alerts) == 1:
            await self._http_post(self._format_alert(alerts[0]))
        else:
            await self._http_post(self._format_batch(alerts))

    def _format_batch(self, alerts: List[Alert]) -> Dict[str, Any]:
        if self.config.webhook_type == "slack":
            payload = self._format_alert(alerts[0])
            for alert in alerts[1:]:
                payload["attachments"].extend(self._format_alert(alert)["attachments"])
            return payload
        if self.config.webhook_type == "discord":
            payload = self._format_alert(alerts[0])
            for alert in alerts[1:]:
                payload["embeds"].extend(self._format_alert(alert)["embeds"])
            return payload
        return {"alerts": [alert.to_dict() for alert in alerts]}

    def _format_alert(self, alert: Alert) -> Dict[str, Any]:
        formatters = {
            "generic": WebhookFormatter.format_generic,
            "slack": WebhookFormatter.format_slack,
            "discord": WebhookFormatter.format_discord,
        }
        formatter = formatters.get(self.config.webhook_type, WebhookFormatter.format_generic)
        return formatter(alert, self.config)

    async def _http_post(self, payload: Dict[str, Any], retries: int = 2) -> bool:
        if not self.config.webhook_url:
            return False
        async with aiohttp.ClientSession() as session:
            for attempt in range(retries + 1):
                try:
                    async with session.post(
                        self.config.webhook_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=10),
                    ) as resp:
                        if resp.status < 300:
                            return True
                        logger.warning(f"Alert delivery failed: HTTP {resp.status}")
                except asyncio.TimeoutError:
                    logger.warning(f"Alert delivery timeout (attempt {attempt + 1})")
                except aiohttp.ClientError as e:
                    logger.warning(f"Alert delivery error: {e}")
                if attempt < retries:
                    await asyncio.sleep(1 * (attempt + 1))
        return False


_alert_manager: Optional[AlertManager] = None


def get_alert_manager() -> AlertManager:
    """Get the global alert manager instance (disabled until configured)."""
    global _alert_manager
    if _alert_manager is None:
        _alert_manager = AlertManager(AlertConfig(enabled=False))
    return _alert_manager


def configure_alerts(
    webhook_url: Optional[str] = None,
    webhook_type: str = "generic",
    min_severity: AlertSeverity = AlertSeverity.WARNING,
    enabled: bool = True,
    bot_name: str = "QuoteBot",
) -> AlertManager:
    """Configure and return the global alert manager."""
    global _alert_manager
    _alert_manager = AlertManager(AlertConfig(
        webhook_url=webhook_url,
        webhook_type=webhook_type,
        min_severity=min_severity,
        enabled=enabled,
        bot_name=bot_name,
    ))
    return _alert_manager
