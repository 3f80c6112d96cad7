"""Exchange integration module."""

from botcoin.trading.exchange.base import BaseExchange
from botcoin.trading.exchange.bitget_client import BitgetClient
from botcoin.trading.exchange.bitget_ws import BitgetWebSocket, SessionState

__all__ = [
    "BaseExchange",
    "BitgetClient",
    "BitgetWebSocket",
    "SessionState",
]
