"""
Typed views of StandX responses and the exchange error hierarchy.

The venue wraps lists inconsistently (`result`, `data`, `result.list`, or a
bare list), so parsing is tolerant and always yields these types.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, List

SUCCESS_CODE = 0


class ExchangeError(Exception):
    """Transport, HTTP status, or response-shape failure talking to the venue."""


class OrderRejected(ExchangeError):
    """The venue answered an order request with a non-success code."""

    def __init__(self, code: Any, message: str) -> None:
        super().__init__(f"order rejected code={code} message={message}")
        self.code = code
        self.message = message


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal(0)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ExchangeError(f"not a number: {value!r}") from exc


def extract_items(payload: Any) -> List[dict]:
    """Pull the item list out of whatever envelope the venue used."""
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    raw = payload.get("result")
    if raw is None:
        raw = payload.get("data")
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        inner = raw.get("list")
        return inner if isinstance(inner, list) else []
    return []


@dataclass(frozen=True)
class Balance:
    available: Decimal

    @classmethod
    def from_payload(cls, payload: Any) -> "Balance":
        if not isinstance(payload, dict):
            raise ExchangeError(f"unexpected balance payload: {payload!r}")
        body = payload.get("result") if isinstance(payload.get("result"), dict) else payload
        if "cross_available" not in body:
            raise ExchangeError("balance payload missing cross_available")
        return cls(available=to_decimal(body["cross_available"]))


@dataclass(frozen=True)
class OpenOrder:
    id: Any
    price: Decimal
    symbol: str = ""

    @classmethod
    def from_payload(cls, item: dict) -> "OpenOrder":
        return cls(id=item.get("id"), price=to_decimal(item.get("price")), symbol=item.get("symbol", ""))


@dataclass(frozen=True)
class Position:
    symbol: str
    qty: Decimal

    @property
    def is_flat(self) -> bool:
        return self.qty == 0

    @property
    def closing_side(self) -> str:
        return "sell" if self.qty > 0 else "buy"

    @classmethod
    def from_payload(cls, item: dict) -> "Position":
        return cls(symbol=str(item.get("symbol", "")), qty=to_decimal(item.get("qty")))


@dataclass(frozen=True)
class OrderAck:
    code: Any
    message: str = ""
    raw: Any = None

    @property
    def ok(self) -> bool:
        return self.code == SUCCESS_CODE

    @classmethod
    def from_payload(cls, payload: Any) -> "OrderAck":
        if not isinstance(payload, dict):
            raise ExchangeError(f"unexpected order response: {payload!r}")
        return cls(code=payload.get("code"), message=str(payload.get("message", "")), raw=payload)
