"""
Async StandX perps REST client over a shared httpx connection pool.

Stateless request/response wrappers; no retries here. Callers decide what a
failure means (the engine aborts the cycle and waits for the next trigger).
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import httpx

from quotekeeper.exchange.models import (
    Balance,
    ExchangeError,
    OpenOrder,
    OrderAck,
    Position,
    extract_items,
)
from quotekeeper.exchange.signing import RequestSigner

log = logging.getLogger("quotebot")


def _body(payload: Dict[str, Any]) -> str:
    # The signature covers the exact bytes sent, so serialize once.
    return json.dumps(payload, separators=(",", ":"))


class StandXClient:
    def __init__(
        self,
        base_url: str,
        signer: RequestSigner,
        timeout: float = 10.0,
        proxy: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._signer = signer
        kwargs: Dict[str, Any] = {
            "base_url": base_url.rstrip("/"),
            "timeout": timeout,
            "headers": {"Content-Type": "application/json"},
        }
        if proxy:
            kwargs["proxy"] = proxy
        if transport is not None:
            kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**kwargs)

    async def close(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            resp = await self._client.get(path, params=params, headers=self._signer.auth_headers())
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            raise ExchangeError(f"GET {path} failed: {exc}") from exc
        except ValueError as exc:
            raise ExchangeError(f"GET {path} returned invalid JSON") from exc

    async def _post_signed(self, path: str, payload: Dict[str, Any]) -> Any:
        body = _body(payload)
        try:
            resp = await self._client.post(path, content=body, headers=self._signer.signed_headers(body))
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            raise ExchangeError(f"POST {path} failed: {exc}") from exc
        except ValueError as exc:
            raise ExchangeError(f"POST {path} returned invalid JSON") from exc

    async def query_balance(self) -> Balance:
        return Balance.from_payload(await self._get("/api/query_balance"))

    async def query_open_orders(self, symbol: str) -> List[OpenOrder]:
        data = await self._get("/api/query_open_orders", params={"symbol": symbol})
        return [OpenOrder.from_payload(o) for o in extract_items(data)]

    async def query_positions(self, symbol: str) -> List[Position]:
        data = await self._get("/api/query_positions", params={"symbol": symbol})
        return [Position.from_payload(p) for p in extract_items(data)]

    async def cancel_orders(self, order_ids: Iterable[Any]) -> Any:
        ids = list(order_ids)
        if not ids:
            return None
        return await self._post_signed("/api/cancel_orders", {"order_id_list": ids})

    async def new_order(
        self,
        symbol: str,
        side: str,
        order_type: str,
        qty: Decimal | str,
        price: Decimal | str | None = None,
        reduce_only: bool = False,
    ) -> OrderAck:
        payload: Dict[str, Any] = {
            "symbol": symbol,
            "side": side,
            "order_type": order_type,
            "qty": str(qty),
            "reduce_only": reduce_only,
        }
        if price is not None:
            payload["price"] = str(price)
        if order_type == "limit":
            payload["time_in_force"] = "gtc"
        return OrderAck.from_payload(await self._post_signed("/api/new_order", payload))

    async def market_order(self, symbol: str, side: str, qty: Decimal | str) -> OrderAck:
        return await self.new_order(symbol, side, "market", qty, reduce_only=True)

    async def set_leverage(self, symbol: str, leverage: int) -> Any:
        return await self._post_signed("/api/change_leverage", {"symbol": symbol, "leverage": int(leverage)})
