"""
Configuration package.

Environment-driven settings and validation.
"""

from quotekeeper.config.config import Settings, env_bool, format_proxy_url

__all__ = [
    "Settings",
    "env_bool",
    "format_proxy_url",
]
