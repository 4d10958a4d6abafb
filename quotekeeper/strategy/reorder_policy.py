"""
Reorder policy: decide whether the resting quote must be replaced.

Pure functions, no I/O. Deviation is measured as the signed distance of the
market from the quote's reference price, oriented so that a healthy quote
(market on the far side of the touch) reads positive:

    long  (bid below market):  s = p / r - 1
    short (ask above market):  s = 1 - p / r

Replace when s >= high (quote left too far behind, offset no longer the one
we want) or s <= low (market has come back toward the quote; fill risk).
Negative s means the market already crossed the quote and is always a replace.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, DivisionByZero, InvalidOperation
from enum import Enum
from typing import Optional, Union

Number = Union[Decimal, float, int, str]


class QuoteSide(Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def order_side(self) -> str:
        return "buy" if self is QuoteSide.LONG else "sell"

    @classmethod
    def parse(cls, value: Union["QuoteSide", str]) -> "QuoteSide":
        if isinstance(value, QuoteSide):
            return value
        norm = str(value).strip().lower()
        if norm in ("long", "buy"):
            return cls.LONG
        if norm in ("short", "sell"):
            return cls.SHORT
        raise ValueError(f"unknown side: {value!r}")


@dataclass(frozen=True)
class ReorderThresholds:
    low: Decimal
    high: Decimal

    def __post_init__(self) -> None:
        if not (0 < self.low < self.high):
            raise ValueError(f"thresholds must satisfy 0 < low < high, got low={self.low} high={self.high}")

    @classmethod
    def of(cls, low: Number, high: Number) -> "ReorderThresholds":
        return cls(low=Decimal(str(low)), high=Decimal(str(high)))


def signed_deviation(reference: Number, current: Number, side: QuoteSide) -> Decimal:
    d = Decimal(str(current)) / Decimal(str(reference))
    return d - 1 if side is QuoteSide.LONG else 1 - d


def should_reorder(
    reference: Optional[Number],
    current: Number,
    side: Union[QuoteSide, str],
    thresholds: ReorderThresholds,
) -> bool:
    if reference is None:
        return True
    side = QuoteSide.parse(side)
    try:
        r = Decimal(str(reference))
        p = Decimal(str(current))
        if not (r.is_finite() and p.is_finite()) or r <= 0 or p <= 0:
            return True
        s = signed_deviation(r, p, side)
    except (InvalidOperation, DivisionByZero):
        return True
    return s >= thresholds.high or s <= thresholds.low


def live_range(reference: Number, side: Union[QuoteSide, str], thresholds: ReorderThresholds) -> tuple[Decimal, Decimal]:
    """
    Market prices between which the quote at `reference` is left alone,
    returned as (far, near): far is where the high threshold trips, near is
    where the low threshold trips.
    """
    side = QuoteSide.parse(side)
    r = Decimal(str(reference))
    if side is QuoteSide.LONG:
        return r * (1 + thresholds.high), r * (1 + thresholds.low)
    return r * (1 - thresholds.high), r * (1 - thresholds.low)
