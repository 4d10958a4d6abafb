"""
CooldownGuard: suppresses new quotes for a fixed window after an emergency close.

A forced pause after a fill lets an oscillating feed or a misbehaving venue
settle instead of producing a close -> requote -> close storm.
"""

from __future__ import annotations

from typing import Optional


class CooldownGuard:
    DEFAULT_WINDOW_SEC = 600.0

    def __init__(self, window_sec: float = DEFAULT_WINDOW_SEC) -> None:
        if window_sec < 0:
            raise ValueError("window_sec must be >= 0")
        self.window_sec = window_sec
        self._last_close: Optional[float] = None

    @property
    def last_close(self) -> Optional[float]:
        return self._last_close

    def record_close(self, now: float) -> None:
        """Arm (or re-arm) the window from an emergency close at `now`."""
        self._last_close = now

    def is_active(self, now: float) -> bool:
        if self._last_close is None:
            return False
        return now - self._last_close < self.window_sec

    def remaining(self, now: float) -> float:
        """Seconds left in the window, 0 when inactive."""
        if not self.is_active(now):
            return 0.0
        return self.window_sec - (now - self._last_close)
