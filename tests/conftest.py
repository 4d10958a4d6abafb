"""
Pytest configuration and fixtures.
Adds the repo root to the Python path so tests can import quotekeeper uninstalled.
"""

import asyncio
import sys
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from quotekeeper.exchange.models import Balance, OpenOrder, OrderAck  # noqa: E402
from quotekeeper.market_data.price_feed import FeedHealth  # noqa: E402
from quotekeeper.strategy.quote_engine import QuoteEngine, QuoteEngineConfig  # noqa: E402


class FakeClock:
    """Synthetic time: sleep() advances now() instantly and yields once."""

    def __init__(self, start: float = 1000.0):
        self.t = start
        self.sleeps = []

    def now(self) -> float:
        return self.t

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.t += seconds
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.t += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def venue():
    """
    In-memory StandX stand-in. Orders placed with new_order rest in
    venue.open_orders until cancelled; market orders flatten venue.positions.
    """
    v = MagicMock()
    v.open_orders = []
    v.positions = []
    v.balance = Decimal("1000")
    v.rests = True

    async def new_order(symbol, side, order_type, qty, price=None, reduce_only=False):
        if v.rests:
            v.open_orders.append(OpenOrder(id=100 + len(v.open_orders), price=price, symbol=symbol))
        return OrderAck(code=0)

    def cancel_orders(ids):
        v.open_orders[:] = [o for o in v.open_orders if o.id not in ids]
        return {"code": 0}

    def market_order(symbol, side, qty):
        v.positions.clear()
        return OrderAck(code=0)

    v.query_balance = AsyncMock(side_effect=lambda: Balance(available=v.balance))
    v.query_open_orders = AsyncMock(side_effect=lambda symbol: list(v.open_orders))
    v.query_positions = AsyncMock(side_effect=lambda symbol: list(v.positions))
    v.cancel_orders = AsyncMock(side_effect=cancel_orders)
    v.new_order = AsyncMock(side_effect=new_order)
    v.market_order = AsyncMock(side_effect=market_order)
    v.set_leverage = AsyncMock(return_value={"code": 0})
    return v


@pytest.fixture
def feed():
    f = MagicMock()
    f.last_price = Decimal("50000")
    f.get_health = MagicMock(return_value=FeedHealth(connected=True, seconds_since_last_message=0.5))
    return f


@pytest.fixture
def alerts():
    a = MagicMock()
    a.alert = AsyncMock(return_value=True)
    return a


@pytest.fixture
def engine_config():
    return QuoteEngineConfig(symbol="BTC-USD", position_timeout_sec=0.5, request_timeout_sec=0.5)


@pytest.fixture
def engine(venue, feed, engine_config, clock, alerts):
    return QuoteEngine(venue, feed, engine_config, clock=clock, alerts=alerts)
