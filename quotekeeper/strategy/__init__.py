"""
Quoting strategy: reorder policy, sizing, engine state and the engine itself.
"""

from quotekeeper.strategy.engine_state import EngineState, Quote, QuoteStatus
from quotekeeper.strategy.quote_engine import CycleAborted, QuoteEngine, QuoteEngineConfig
from quotekeeper.strategy.reorder_policy import (
    QuoteSide,
    ReorderThresholds,
    live_range,
    should_reorder,
    signed_deviation,
)
from quotekeeper.strategy.sizing import quote_price, quote_qty

__all__ = [
    "EngineState",
    "Quote",
    "QuoteStatus",
    "CycleAborted",
    "QuoteEngine",
    "QuoteEngineConfig",
    "QuoteSide",
    "ReorderThresholds",
    "live_range",
    "should_reorder",
    "signed_deviation",
    "quote_price",
    "quote_qty",
]
