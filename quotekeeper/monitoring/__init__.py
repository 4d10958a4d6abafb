"""
Operator-facing monitoring: webhook alerts.
"""

from quotekeeper.monitoring.alerting import (
    Alert,
    AlertManager,
    AlertSeverity,
    AlertType,
    configure_alerts,
    get_alert_manager,
)

__all__ = [
    "Alert",
    "AlertManager",
    "AlertSeverity",
    "AlertType",
    "configure_alerts",
    "get_alert_manager",
]
