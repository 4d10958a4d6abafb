"""
Quote price and size.

The offset pushes the quote away from the touch so it rests without filling;
it is not a pricing signal. Size takes a fraction of buying power, discounted
once for margin/fee headroom and once more as a utilization cap.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from quotekeeper.strategy.reorder_policy import QuoteSide

Number = Union[Decimal, float, int, str]


def _quantum(decimals: int) -> Decimal:
    return Decimal(1).scaleb(-decimals)


def quote_price(market: Number, side: Union[QuoteSide, str], offset: Number, decimals: int = 2) -> Decimal:
    side = QuoteSide.parse(side)
    p = Decimal(str(market))
    off = Decimal(str(offset))
    raw = p * (1 - off) if side is QuoteSide.LONG else p * (1 + off)
    return raw.quantize(_quantum(decimals), rounding=ROUND_HALF_UP)


def quote_qty(
    available: Number,
    leverage: Number,
    price: Number,
    margin_buffer: Number = Decimal("0.95"),
    utilization: Number = Decimal("0.8"),
    decimals: int = 3,
) -> Decimal:
    """Rounded down, so the order never asks for more than the budget. Returns 0 when nothing fits."""
    try:
        bal = Decimal(str(available))
        px = Decimal(str(price))
        if bal <= 0 or px <= 0:
            return Decimal(0)
        qty = bal * Decimal(str(leverage)) * Decimal(str(margin_buffer)) / px * Decimal(str(utilization))
    except InvalidOperation:
        return Decimal(0)
    qty = qty.quantize(_quantum(decimals), rounding=ROUND_DOWN)
    return qty if qty > 0 else Decimal(0)
