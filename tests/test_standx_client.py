"""
Tests for the StandX REST client, request signing and response parsing.
"""
import base64
import json
from decimal import Decimal

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from quotekeeper.exchange.models import Balance, ExchangeError, OpenOrder, Position, extract_items
from quotekeeper.exchange.signing import RequestSigner, load_signing_key
from quotekeeper.exchange.standx_client import StandXClient

SEED = bytes(range(32))
SEED_B64 = base64.b64encode(SEED).decode()


@pytest.fixture
def signer():
    return RequestSigner("tok-123", load_signing_key(SEED_B64), session_id="sess-1", now_ms=lambda: 1700000000000)


def _client(signer, handler):
    return StandXClient("https://perps.example/", signer, transport=httpx.MockTransport(handler))


class TestSigning:

    def test_signature_verifies_against_public_key(self, signer):
        body = '{"symbol":"BTC-USD"}'
        headers = signer.signed_headers(body)
        assert headers["Authorization"] == "Bearer tok-123"
        assert headers["x-request-sign-version"] == "v1"
        assert headers["x-request-timestamp"] == "1700000000000"
        assert headers["x-session-id"] == "sess-1"

        message = f"v1,{headers['x-request-id']},1700000000000,{body}".encode()
        public = Ed25519PrivateKey.from_private_bytes(SEED).public_key()
        public.verify(base64.b64decode(headers["x-request-signature"]), message)

    def test_64_byte_secret_uses_seed(self):
        key = load_signing_key(base64.b64encode(SEED + b"\x00" * 32).decode())
        assert key.sign(b"x") == Ed25519PrivateKey.from_private_bytes(SEED).sign(b"x")

    def test_wrong_key_length_rejected(self):
        with pytest.raises(ValueError):
            load_signing_key(base64.b64encode(b"short").decode())


class TestEnvelopes:

    @pytest.mark.parametrize("payload", [
        [{"id": 1}],
        {"result": [{"id": 1}]},
        {"data": [{"id": 1}]},
        {"result": {"list": [{"id": 1}]}},
    ])
    def test_extract_items_accepts_all_envelopes(self, payload):
        assert extract_items(payload) == [{"id": 1}]

    def test_extract_items_unknown_shape_is_empty(self):
        assert extract_items({"code": 0}) == []
        assert extract_items("nope") == []

    def test_balance_reads_top_level_or_result(self):
        assert Balance.from_payload({"cross_available": "12.5"}).available == Decimal("12.5")
        assert Balance.from_payload({"result": {"cross_available": 3}}).available == Decimal("3")

    def test_balance_missing_field_raises(self):
        with pytest.raises(ExchangeError):
            Balance.from_payload({"result": {}})

    def test_position_closing_side(self):
        assert Position("BTC-USD", Decimal("1")).closing_side == "sell"
        assert Position("BTC-USD", Decimal("-1")).closing_side == "buy"
        assert Position("BTC-USD", Decimal("0")).is_flat


class TestClient:

    @pytest.mark.asyncio
    async def test_query_open_orders(self, signer):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"result": [{"id": 5, "price": "49890.00", "symbol": "BTC-USD"}]})

        client = _client(signer, handler)
        orders = await client.query_open_orders("BTC-USD")
        await client.close()

        assert orders == [OpenOrder(id=5, price=Decimal("49890.00"), symbol="BTC-USD")]
        assert seen["url"].path == "/api/query_open_orders"
        assert seen["url"].params["symbol"] == "BTC-USD"
        assert seen["auth"] == "Bearer tok-123"

    @pytest.mark.asyncio
    async def test_new_order_posts_signed_exact_body(self, signer):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content.decode()
            seen["headers"] = request.headers
            return httpx.Response(200, json={"code": 0, "message": "success"})

        client = _client(signer, handler)
        ack = await client.new_order("BTC-USD", "buy", "limit", Decimal("0.609"), Decimal("49890.00"))
        await client.close()

        assert ack.ok
        body = json.loads(seen["body"])
        assert body == {
            "symbol": "BTC-USD",
            "side": "buy",
            "order_type": "limit",
            "qty": "0.609",
            "reduce_only": False,
            "price": "49890.00",
            "time_in_force": "gtc",
        }
        message = f"v1,{seen['headers']['x-request-id']},1700000000000,{seen['body']}".encode()
        Ed25519PrivateKey.from_private_bytes(SEED).public_key().verify(
            base64.b64decode(seen["headers"]["x-request-signature"]), message
        )

    @pytest.mark.asyncio
    async def test_market_order_is_reduce_only_without_price(self, signer):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"code": 0})

        client = _client(signer, handler)
        await client.market_order("BTC-USD", "sell", Decimal("0.5"))
        await client.close()

        assert seen["body"]["reduce_only"] is True
        assert seen["body"]["order_type"] == "market"
        assert "price" not in seen["body"]
        assert "time_in_force" not in seen["body"]

    @pytest.mark.asyncio
    async def test_rejection_code_surfaces_in_ack(self, signer):
        client = _client(signer, lambda request: httpx.Response(200, json={"code": 400, "message": "bad qty"}))
        ack = await client.new_order("BTC-USD", "buy", "limit", "0.001", "1")
        await client.close()
        assert not ack.ok
        assert ack.message == "bad qty"

    @pytest.mark.asyncio
    async def test_cancel_with_no_ids_sends_nothing(self, signer):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"code": 0})

        client = _client(signer, handler)
        assert await client.cancel_orders([]) is None
        await client.cancel_orders([1, 2])
        await client.close()

        assert len(calls) == 1
        assert json.loads(calls[0].content) == {"order_id_list": [1, 2]}

    @pytest.mark.asyncio
    async def test_http_error_becomes_exchange_error(self, signer):
        client = _client(signer, lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(ExchangeError):
            await client.query_balance()
        await client.close()

    @pytest.mark.asyncio
    async def test_invalid_json_becomes_exchange_error(self, signer):
        client = _client(signer, lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(ExchangeError):
            await client.query_positions("BTC-USD")
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_exchange_error(self, signer):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client(signer, handler)
        with pytest.raises(ExchangeError):
            await client.query_balance()
        await client.close()
