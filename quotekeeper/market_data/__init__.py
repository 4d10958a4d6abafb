"""
Market data: websocket price feed and its health signal.
"""

from quotekeeper.market_data.price_feed import FeedHealth, PositionSnapshot, PriceFeed

__all__ = ["FeedHealth", "PositionSnapshot", "PriceFeed"]
