"""Pytest fixtures: fake exchange, fake WebSocket transport and configs."""

import itertools
import json
import queue
import threading
import time
from decimal import Decimal
from typing import Any

import pytest
import websocket

from botcoin.trading.config import BuyOrderConfig, TradingConfig, TradingPairConfig
from botcoin.trading.errors import RejectedError
from botcoin.trading.exchange.base import BaseExchange
from botcoin.trading.exchange.bitget_client import validate_symbol
from botcoin.trading.orders.order import OrderSide, Position

SYMBOL = "SBTCSUSDT"


class FakeExchange(BaseExchange):
    """In-memory order gateway recording every command."""

    def __init__(self, demo_trading: bool = True):
        self.demo_trading = demo_trading
        self.prices: dict[str, Decimal] = {}
        self.positions: dict[str, list[Position | None]] = {}
        self.placed: list[tuple[str, OrderSide, Decimal, Decimal, str]] = []
        self.cancelled: list[tuple[str, str]] = []
        self.price_calls = 0
        self.position_calls = 0
        self.reject_place: set[OrderSide] = set()
        self.reject_place_after: int | None = None
        self.reject_cancel = False
        self.closed = False
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def set_position(self, symbol: str, *results: Position | None) -> None:
        """Queue get_position results; the last one repeats."""
        self.positions[symbol] = list(results)

    def get_price(self, symbol: str) -> Decimal:
        self.price_calls += 1
        return self.prices[symbol]

    def get_position(self, symbol: str) -> Position | None:
        self.position_calls += 1
        results = self.positions.get(symbol) or [None]
        if len(results) > 1:
            return results.pop(0)
        return results[0]

    def place_limit_order(self, symbol, side, price, size) -> str:
        validate_symbol(symbol, self.demo_trading)
        with self._lock:
            if side in self.reject_place:
                raise RejectedError("insufficient balance", code="40762")
            if self.reject_place_after is not None and len(self.placed) >= self.reject_place_after:
                raise RejectedError("too many orders", code="40000")
            order_id = f"{side.value}-{next(self._ids)}"
            self.placed.append((symbol, side, price, size, order_id))
        return order_id

    def cancel_order(self, symbol: str, order_id: str) -> None:
        if self.reject_cancel:
            raise RejectedError("order does not exist", code="40768")
        self.cancelled.append((symbol, order_id))

    def get_pending_orders(self, symbol: str) -> list[dict[str, Any]]:
        return [
            {"orderId": oid, "side": side.value, "price": str(price), "size": str(size)}
            for sym, side, price, size, oid in self.placed
            if sym == symbol
        ]

    def get_all_positions(self) -> list[Position]:
        return [r[-1] for r in self.positions.values() if r and r[-1] is not None]

    def close(self) -> None:
        self.closed = True

    def orders(self, side: OrderSide) -> list[tuple[str, OrderSide, Decimal, Decimal, str]]:
        return [o for o in self.placed if o[1] == side]


_CLOSED = object()


class FakeConnection:
    """Stand-in for a websocket-client connection.

    Acts as a minimal Bitget server: acknowledges login and subscribe
    frames and answers pings, each behaviour switchable per connection.
    """

    def __init__(
        self,
        frames: tuple = (),
        login_code: int = 0,
        answer_login: bool = True,
        answer_ping: bool = True,
        fail_send: bool = False,
        after_subscribe: tuple = (),
    ):
        self.inbox: queue.Queue = queue.Queue()
        for frame in frames:
            self.inbox.put(frame)
        self.sent: list[str] = []
        self.closed = False
        self.login_code = login_code
        self.answer_login = answer_login
        self.answer_ping = answer_ping
        self.fail_send = fail_send
        self.after_subscribe = after_subscribe

    def push(self, frame: Any) -> None:
        self.inbox.put(frame if isinstance(frame, str) else json.dumps(frame))

    def send(self, data: str) -> None:
        if self.closed or self.fail_send:
            raise websocket.WebSocketConnectionClosedException("socket is already closed.")
        self.sent.append(data)
        if data == "ping":
            if self.answer_ping:
                self.inbox.put("pong")
            return
        frame = json.loads(data)
        if frame["op"] == "login" and self.answer_login:
            if self.login_code == 0:
                self.push({"event": "login", "code": 0})
            else:
                self.push({"event": "error", "code": self.login_code, "msg": "sign error"})
        elif frame["op"] == "subscribe":
            self.push({"event": "subscribe", "arg": frame["args"][0]})
            for extra in self.after_subscribe:
                self.push(extra)

    def recv(self) -> str:
        if self.closed:
            raise websocket.WebSocketConnectionClosedException("socket is already closed.")
        try:
            item = self.inbox.get(timeout=0.02)
        except queue.Empty:
            raise websocket.WebSocketTimeoutException("timed out")
        if item is _CLOSED:
            raise websocket.WebSocketConnectionClosedException("Connection to remote host was lost.")
        return item

    def close(self) -> None:
        self.closed = True
        self.inbox.put(_CLOSED)

    def ops(self) -> list[str]:
        return [json.loads(s)["op"] for s in self.sent if s != "ping"]


class FakeConnector:
    """Connection factory handing out planned FakeConnections."""

    def __init__(self, *planned: FakeConnection | Exception, connect_delay: float = 0.0):
        self.planned = list(planned)
        self.connections: list[FakeConnection] = []
        self.attempts = 0
        self.connect_delay = connect_delay
        self._lock = threading.Lock()

    def __call__(self, url: str, timeout: float | None = None) -> FakeConnection:
        if self.connect_delay:
            time.sleep(self.connect_delay)
        with self._lock:
            self.attempts += 1
            item = self.planned.pop(0) if self.planned else FakeConnection()
            if isinstance(item, Exception):
                raise item
            self.connections.append(item)
            return item


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def order_record(order_id: str, side: str = "buy", status: str = "filled",
                 symbol: str = SYMBOL, price: str = "39800.0", size: str = "0.0025") -> dict:
    return {
        "orderId": order_id,
        "instId": symbol,
        "side": side,
        "status": status,
        "price": price,
        "size": size,
    }


def make_position(avg: str, total: str, symbol: str = SYMBOL) -> Position:
    return Position(
        symbol=symbol,
        hold_side="long",
        total=Decimal(total),
        available=Decimal(total),
        open_price_avg=Decimal(avg),
    )


@pytest.fixture
def exchange() -> FakeExchange:
    ex = FakeExchange()
    ex.prices[SYMBOL] = Decimal("40000")
    return ex


@pytest.fixture
def pair() -> TradingPairConfig:
    """Two-level ladder: one fixed, one relative to the current price."""
    return TradingPairConfig(
        symbol=SYMBOL,
        sell_target_percent=Decimal("0.8"),
        buy_orders=[
            BuyOrderConfig(order_amount=Decimal("100"), coin_price_below_percent=Decimal("0.5")),
            BuyOrderConfig(order_amount=Decimal("100"), coin_price=Decimal("39000")),
        ],
        max_orders=2,
        price_precision=2,
        size_precision=4,
    )


@pytest.fixture
def config(pair: TradingPairConfig) -> TradingConfig:
    return TradingConfig(
        api_key="key",
        secret_key="secret",
        passphrase="phrase",
        is_demo_trading=True,
        sell_fill_policy="terminate",
        trading_processes=[pair],
        settle_delay=0.0,
        position_retry_delay=0.0,
    )


@pytest.fixture
def ws_config(config: TradingConfig) -> TradingConfig:
    """Config with session timings shrunk for tests."""
    config.ping_interval = 0.05
    config.pong_timeout = 0.2
    config.idle_timeout = 0.3
    config.reconnect_delay = 0.05
    config.login_timeout = 0.5
    return config
