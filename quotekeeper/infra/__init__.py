"""
Infrastructure: logging setup and time/scheduling primitives.
"""

from quotekeeper.infra.logging_cfg import build_logger, log_event
from quotekeeper.infra.scheduler import Clock, IntervalTicker

__all__ = ["build_logger", "log_event", "Clock", "IntervalTicker"]
