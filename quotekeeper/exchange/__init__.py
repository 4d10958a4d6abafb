"""
StandX venue access: REST client, request signing, response models.
"""

from quotekeeper.exchange.models import (
    Balance,
    ExchangeError,
    OpenOrder,
    OrderAck,
    OrderRejected,
    Position,
)
from quotekeeper.exchange.signing import RequestSigner, load_signing_key
from quotekeeper.exchange.standx_client import StandXClient

__all__ = [
    "Balance",
    "ExchangeError",
    "OpenOrder",
    "OrderAck",
    "OrderRejected",
    "Position",
    "RequestSigner",
    "load_signing_key",
    "StandXClient",
]
