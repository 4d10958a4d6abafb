"""
Single resting-quote keeper for StandX perpetuals.

Keeps one far-from-touch limit order alive on a symbol, repositions it as the
market drifts, and flattens immediately if it ever fills.
"""

__version__ = "0.3.0"
