"""
Engine state as an immutable value.

Busy and Emergency are independent axes (cooldown is the third, derived from
the CooldownGuard and the clock). Every transition returns a new EngineState,
so the engine's state changes are explicit and unit-testable without timers.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Optional

from quotekeeper.strategy.reorder_policy import QuoteSide


class QuoteStatus(Enum):
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    UNVERIFIED = "unverified"


@dataclass(frozen=True)
class Quote:
    side: QuoteSide
    price: Decimal
    qty: Decimal
    status: QuoteStatus = QuoteStatus.SUBMITTED

    def with_status(self, status: QuoteStatus) -> "Quote":
        return replace(self, status=status)


@dataclass(frozen=True)
class EngineState:
    busy: bool = False
    emergency: bool = False
    quote: Optional[Quote] = None

    @property
    def reference_price(self) -> Optional[Decimal]:
        """Price of the committed quote; None means "no quote exists"."""
        if self.quote is None or self.quote.status is not QuoteStatus.VERIFIED:
            return None
        return self.quote.price

    def can_start_cycle(self, cooldown_active: bool) -> bool:
        return not self.busy and not self.emergency and not cooldown_active

    def acquire(self) -> "EngineState":
        if self.busy:
            raise RuntimeError("engine is busy")
        return replace(self, busy=True)

    def begin_cycle(self) -> "EngineState":
        # A replace cycle forgets the old quote; it comes back only once verified.
        return replace(self.acquire(), quote=None)

    def release(self) -> "EngineState":
        return replace(self, busy=False)

    def commit_quote(self, quote: Quote) -> "EngineState":
        return replace(self, quote=quote.with_status(QuoteStatus.VERIFIED))

    def clear_quote(self) -> "EngineState":
        return replace(self, quote=None)

    def enter_emergency(self) -> "EngineState":
        return replace(self, emergency=True)

    def recover(self) -> "EngineState":
        # A quote from before the outage cannot be trusted; force a fresh one.
        return replace(self, emergency=False, quote=None)
