"""
Tests for webhook alerting.
"""
from unittest.mock import AsyncMock

import pytest

from quotekeeper.monitoring.alerting import (
    Alert,
    AlertConfig,
    AlertManager,
    AlertSeverity,
    AlertType,
    WebhookFormatter,
    configure_alerts,
    get_alert_manager,
)


def _manager(**overrides):
    cfg = AlertConfig(webhook_url="https://hooks.example/abc", batch_window_ms=0, **overrides)
    manager = AlertManager(cfg)
    manager._http_post = AsyncMock(return_value=True)
    return manager


class TestAlertManager:

    @pytest.mark.asyncio
    async def test_disabled_manager_drops_alerts(self):
        manager = AlertManager(AlertConfig(enabled=False, webhook_url="https://hooks.example/abc"))
        assert not await manager.alert(AlertType.FEED_DEAD, AlertSeverity.CRITICAL, "t", "m")

    @pytest.mark.asyncio
    async def test_missing_url_drops_alerts(self):
        assert not await AlertManager(AlertConfig()).alert(AlertType.FEED_DEAD, AlertSeverity.CRITICAL, "t", "m")

    @pytest.mark.asyncio
    async def test_below_min_severity_dropped(self):
        manager = _manager()
        assert not await manager.alert(AlertType.STARTUP, AlertSeverity.INFO, "t", "m")

    @pytest.mark.asyncio
    async def test_same_type_rate_limited(self):
        manager = _manager()
        assert await manager.alert(AlertType.EMERGENCY_CLOSE, AlertSeverity.CRITICAL, "t", "m", symbol="BTC-USD")
        assert not await manager.alert(AlertType.EMERGENCY_CLOSE, AlertSeverity.CRITICAL, "t", "m")
        assert await manager.alert(AlertType.FEED_DEAD, AlertSeverity.CRITICAL, "t", "m")
        await manager.close()

    @pytest.mark.asyncio
    async def test_close_flushes_pending_as_batch(self):
        manager = _manager()
        manager.config.batch_window_ms = 60_000
        await manager.alert(AlertType.EMERGENCY_CLOSE, AlertSeverity.CRITICAL, "closed", "m", qty="0.5")
        await manager.alert(AlertType.FEED_DEAD, AlertSeverity.CRITICAL, "dead", "m")
        await manager.close()

        manager._http_post.assert_awaited_once()
        payload = manager._http_post.await_args.args[0]
        assert [a["type"] for a in payload["alerts"]] == ["EMERGENCY_CLOSE", "FEED_DEAD"]


class TestFormatters:

    def _alert(self):
        return Alert(AlertType.ORDER_UNCONFIRMED, AlertSeverity.CRITICAL, "Order Unconfirmed", "check",
                     details={"price": "49890.00"}, symbol="BTC-USD")

    def test_slack_payload(self):
        payload = WebhookFormatter.format_slack(self._alert(), AlertConfig())
        attachment = payload["attachments"][0]
        assert attachment["color"] == "#FF0000"
        assert {"title": "Symbol", "value": "BTC-USD", "short": True} in attachment["fields"]

    def test_discord_payload(self):
        payload = WebhookFormatter.format_discord(self._alert(), AlertConfig())
        assert payload["embeds"][0]["title"] == "Order Unconfirmed"

    def test_generic_payload_stringifies_details(self):
        data = self._alert().to_dict()
        assert data["details"] == {"price": "49890.00"}
        assert data["symbol"] == "BTC-USD"


def test_global_manager_disabled_until_configured():
    assert not get_alert_manager().config.enabled
    manager = configure_alerts(webhook_url="https://hooks.example/abc", webhook_type="slack")
    assert get_alert_manager() is manager
    assert manager.config.webhook_type == "slack"
