"""Tests for the bot supervisor: startup, dispatch and shutdown."""

import json
import logging
from decimal import Decimal

import pytest

from botcoin.trading.bot import Bot
from botcoin.trading.config import BuyOrderConfig, TradingPairConfig
from botcoin.trading.errors import ConfigurationError, ExchangeConnectionError, SymbolModeError
from botcoin.trading.orders.order import OrderSide

from conftest import SYMBOL, make_position, order_record

OTHER = "SETHSUSDT"


class FakeStream:
    """Records the order stream calls the bot makes."""

    def __init__(self, fail_open: Exception | None = None):
        self.handler = None
        self.opened = 0
        self.closed = 0
        self.fail_open = fail_open

    def register_handler(self, handler) -> None:
        self.handler = handler

    def open(self) -> None:
        if self.fail_open is not None:
            raise self.fail_open
        self.opened += 1

    def close(self) -> None:
        self.closed += 1


def _payload(*records) -> bytes:
    return json.dumps(list(records)).encode("utf-8")


@pytest.fixture
def stream() -> FakeStream:
    return FakeStream()


@pytest.fixture
def bot(config, exchange, stream) -> Bot:
    return Bot(config, exchange=exchange, stream=stream)


def _buy_ids(exchange, symbol=SYMBOL) -> list[str]:
    return [o[4] for o in exchange.orders(OrderSide.BUY) if o[0] == symbol]


def test_start_opens_stream_and_places_ladders(bot, exchange, stream) -> None:
    bot.start()

    assert bot.is_running
    assert stream.opened == 1
    assert stream.handler == bot.handle_order_update
    assert bot.active_symbols == [SYMBOL]
    assert len(_buy_ids(exchange)) == 2


def test_start_fans_out_over_symbols(config, exchange, stream) -> None:
    exchange.prices[OTHER] = Decimal("2000")
    config.trading_processes.append(
        TradingPairConfig(
            symbol=OTHER,
            sell_target_percent=Decimal("1"),
            buy_orders=[BuyOrderConfig(order_amount=Decimal("50"), coin_price_below_percent=Decimal("1"))],
            price_precision=2,
        )
    )
    bot = Bot(config, exchange=exchange, stream=stream)

    bot.start()

    assert bot.active_symbols == [SYMBOL, OTHER]
    assert len(_buy_ids(exchange, OTHER)) == 1
    other_buy = [o for o in exchange.orders(OrderSide.BUY) if o[0] == OTHER][0]
    assert other_buy[2] == Decimal("1980.00")
    assert other_buy[3] == Decimal("0.0252")


def test_start_twice_raises(bot) -> None:
    bot.start()
    with pytest.raises(RuntimeError):
        bot.start()


def test_start_rejects_invalid_config(config, exchange, stream) -> None:
    config.sell_fill_policy = None
    bot = Bot(config, exchange=exchange, stream=stream)
    with pytest.raises(ConfigurationError):
        bot.start()
    assert not bot.is_running
    assert stream.opened == 0


def test_stream_failure_aborts_start(config, exchange) -> None:
    bot = Bot(config, exchange=exchange, stream=FakeStream(ExchangeConnectionError("refused")))
    with pytest.raises(ExchangeConnectionError):
        bot.start()
    assert not bot.is_running
    assert exchange.placed == []


def test_symbol_mode_mismatch_fails_start(bot, exchange) -> None:
    exchange.demo_trading = False
    with pytest.raises(SymbolModeError):
        bot.start()


def test_buy_fill_places_sell(bot, exchange, stream) -> None:
    bot.start()
    exchange.set_position(SYMBOL, make_position("39800", "0.0025"))

    stream.handler(_payload(order_record(_buy_ids(exchange)[0])))

    sells = exchange.orders(OrderSide.SELL)
    assert len(sells) == 1
    assert sells[0][2] == Decimal("40118.40")


def test_sell_fill_removes_process(bot, exchange, stream) -> None:
    bot.start()
    exchange.set_position(SYMBOL, make_position("39800", "0.0025"))
    stream.handler(_payload(order_record(_buy_ids(exchange)[0])))
    sell_id = exchange.orders(OrderSide.SELL)[0][4]

    stream.handler(_payload(order_record(sell_id, side="sell")))

    assert bot.active_symbols == []
    assert bot.finished.is_set()
    assert bot.wait(timeout=0)

    # Later events for the removed symbol are discarded
    placed = len(exchange.placed)
    stream.handler(_payload(order_record(_buy_ids(exchange)[1])))
    assert len(exchange.placed) == placed


def test_unknown_symbol_is_ignored(bot, exchange, stream) -> None:
    bot.start()
    stream.handler(_payload(order_record("x", symbol="SXRPSUSDT")))
    assert exchange.position_calls == 0
    assert bot.active_symbols == [SYMBOL]


@pytest.mark.parametrize("payload", [b"not json", b'{"orderId": "1"}', b"\xff\xfe"])
def test_malformed_payload_is_dropped(bot, exchange, stream, payload) -> None:
    bot.start()
    stream.handler(payload)
    assert exchange.position_calls == 0
    assert bot.active_symbols == [SYMBOL]


def test_malformed_record_does_not_block_batch(bot, exchange, stream) -> None:
    bot.start()
    exchange.set_position(SYMBOL, make_position("39800", "0.0025"))

    stream.handler(_payload({"orderId": "broken"}, order_record(_buy_ids(exchange)[0])))

    assert len(exchange.orders(OrderSide.SELL)) == 1


def test_stop_is_idempotent(bot, exchange, stream) -> None:
    bot.start()
    bot.stop()
    bot.stop()

    assert stream.closed == 1
    assert exchange.closed
    assert not bot.is_running


def test_stop_before_start_is_noop(bot, exchange, stream) -> None:
    bot.stop()
    assert stream.closed == 0
    assert not exchange.closed


def test_ladder_state_logged_after_fill(bot, exchange, stream, caplog) -> None:
    bot.start()
    exchange.set_position(SYMBOL, make_position("39800", "0.0025"))

    with caplog.at_level(logging.INFO, logger="botcoin.trading.bot"):
        stream.handler(_payload(order_record(_buy_ids(exchange)[0])))
        stream.handler(_payload(order_record("not-ours")))

    states = [r.getMessage() for r in caplog.records if "Ladder state" in r.getMessage()]
    assert len(states) == 1
    assert "after sell_placed" in states[0]
    assert "40118.40" in states[0]
