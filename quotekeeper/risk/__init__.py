"""
Risk controls.
"""

from quotekeeper.risk.cooldown_guard import CooldownGuard

__all__ = ["CooldownGuard"]
