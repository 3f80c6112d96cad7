"""Per-symbol buy ladder / take-profit state machine."""

import logging
import threading
import time
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from enum import Enum
from typing import Callable

from botcoin.trading.config import TradingPairConfig
from botcoin.trading.errors import (
    ExchangeConnectionError,
    NotFoundError,
    ProtocolError,
    RejectedError,
)
from botcoin.trading.exchange.base import BaseExchange
from botcoin.trading.orders.order import (
    BuyLevel,
    OrderSide,
    OrderUpdate,
    Position,
    SellOrder,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

# Failures of a single REST command; the affected event is abandoned
COMMAND_ERRORS = (RejectedError, ExchangeConnectionError, NotFoundError, ProtocolError)


class UpdateOutcome(Enum):
    """Result of handling one order update."""

    IGNORED = "ignored"  # Unknown order or non-fill status
    FAILED = "failed"  # Matched, but a command failed
    SELL_PLACED = "sell_placed"  # Sell order placed or replaced
    RESTARTED = "restarted"  # Sell filled, new ladder round placed
    COMPLETED = "completed"  # Sell filled, trading for the symbol is done


def quantize(value: Decimal, places: int, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round a Decimal to a fixed number of decimal places."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=rounding)


def buy_price_below(current_price: Decimal, percent: Decimal) -> Decimal:
    """Price percent below current_price (40000, 0.5 -> 39800)."""
    return current_price * (1 - percent / HUNDRED)


def sell_price_above(entry_price: Decimal, percent: Decimal) -> Decimal:
    """Take-profit price percent above entry_price (39800, 0.8 -> 40118.4)."""
    return entry_price * (1 + percent / HUNDRED)


class LadderProcess:
    """Trading state machine for a single symbol.

    Holds the buy ladder and at most one open sell order. A filled buy
    replaces the sell order with one sized to the exchange-reported
    position and priced sell_target_percent above its average entry. A
    filled sell either ends the process or, under the "restart" policy,
    places a fresh ladder until max_orders rounds have completed.

    Every mutation happens under the process lock, so two fills for the
    same symbol are never handled concurrently.

    Attributes:
        pair: Symbol configuration
        exchange: Order gateway
        sell_fill_policy: "terminate" or "restart"
        buy_levels: Current ladder
        sell_order: Open take-profit order, if any
        completed_rounds: Sell fills seen so far
    """

    def __init__(
        self,
        pair: TradingPairConfig,
        exchange: BaseExchange,
        sell_fill_policy: str = "terminate",
        settle_delay: float = 3.0,
        position_retries: int = 3,
        position_retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.pair = pair
        self.exchange = exchange
        self.sell_fill_policy = sell_fill_policy
        self.settle_delay = settle_delay
        self.position_retries = max(1, position_retries)
        self.position_retry_delay = position_retry_delay
        self._sleep = sleep
        self._lock = threading.Lock()

        self.buy_levels: list[BuyLevel] = []
        self.sell_order: SellOrder | None = None
        self.completed_rounds = 0

    @property
    def symbol(self) -> str:
        return self.pair.symbol

    def initialize(self) -> None:
        """Resolve the ladder's buy prices from configuration.

        Relative levels use one current-price lookup; prices are fixed
        from then on.

        Raises:
            NotFoundError: If a relative level needs a price and none exists
        """
        with self._lock:
            self.buy_levels = self._build_levels()

    def _build_levels(self, slots: list[int] | None = None) -> list[BuyLevel]:
        if slots is None:
            slots = list(range(len(self.pair.buy_orders)))
        current_price: Decimal | None = None
        levels = []
        for slot in slots:
            buy = self.pair.buy_orders[slot]
            if buy.is_relative:
                if current_price is None:
                    current_price = self.exchange.get_price(self.symbol)
                    logger.info(f"Current price for {self.symbol}: {current_price}")
                price = buy_price_below(current_price, buy.coin_price_below_percent)
            else:
                price = buy.coin_price
            price = quantize(price, self.pair.price_precision)
            levels.append(BuyLevel(price=price, amount=buy.order_amount, slot=slot))
            logger.info(f"{self.symbol}: buy level at {price} for {buy.order_amount}")
        return levels

    def place_buy_orders(self) -> int:
        """Place limit buys for every level without an order.

        Stops at the first rejected or failed order. SymbolModeError and
        other configuration errors propagate.

        Returns:
            Number of orders placed
        """
        with self._lock:
            return self._place_buy_orders()

    def _place_buy_orders(self) -> int:
        placed = 0
        for level in self.buy_levels:
            if level.is_placed:
                logger.debug(
                    f"Buy order for {self.symbol} already placed with id {level.order_id}"
                )
                continue
            size = quantize(level.amount / level.price, self.pair.size_precision, ROUND_DOWN)
            if size <= 0:
                logger.error(
                    f"{self.symbol}: amount {level.amount} at {level.price} "
                    f"is below the minimum size, skipping level"
                )
                continue
            try:
                order_id = self.exchange.place_limit_order(
                    self.symbol, OrderSide.BUY, level.price, size
                )
            except COMMAND_ERRORS as e:
                logger.error(f"Failed to place buy order for {self.symbol}: {e}")
                break
            level.assign_order_id(order_id)
            placed += 1
            logger.info(
                f"Placed buy order {order_id} for {self.symbol} at price {level.price}"
            )
        return placed

    def owns(self, order_id: str) -> bool:
        """Check whether an order ID belongs to this ladder."""
        with self._lock:
            return self._owns(order_id)

    def _owns(self, order_id: str) -> bool:
        if self.sell_order is not None and self.sell_order.order_id == order_id:
            return True
        return any(level.order_id == order_id for level in self.buy_levels if level.order_id)

    def on_order_update(self, update: OrderUpdate) -> UpdateOutcome:
        """Apply one order-channel update.

        Args:
            update: Decoded order update for this symbol

        Returns:
            What the update did to the ladder
        """
        with self._lock:
            if not self._owns(update.order_id):
                logger.info(
                    f"Order with id {update.order_id} is not in configured orders "
                    f"for trading process with symbol {self.symbol}"
                )
                return UpdateOutcome.IGNORED

            logger.info(
                f"Dealing with order with id {update.order_id}, "
                f"status {update.status} and side {update.side.value}"
            )
            if not update.is_filled:
                return UpdateOutcome.IGNORED

            if update.side == OrderSide.BUY:
                return self._on_buy_filled(update)
            return self._on_sell_filled(update)

    def _on_buy_filled(self, update: OrderUpdate) -> UpdateOutcome:
        logger.info("Buy order filled, waiting shortly to ensure the position is updated...")
        self._sleep(self.settle_delay)

        position = self._fetch_position()
        if position is None:
            logger.error(f"No open position for {self.symbol} after buy fill {update.order_id}")
            return UpdateOutcome.FAILED

        previous = self.sell_order
        if previous is not None:
            logger.info(
                f"Attempting to cancel existing sell order {previous.order_id} "
                f"for {self.symbol} (price: {previous.price})"
            )
            try:
                self.exchange.cancel_order(self.symbol, previous.order_id)
            except COMMAND_ERRORS as e:
                logger.error(f"Failed to cancel previous sell order: {e}")
                return UpdateOutcome.FAILED
            self.sell_order = None
            logger.info("Successfully cancelled previous sell order")

        logger.info(
            f"Current position for {self.symbol}: average price {position.open_price_avg}, "
            f"size {position.total}"
        )
        sell_price = quantize(
            sell_price_above(position.open_price_avg, self.pair.sell_target_percent),
            self.pair.price_precision,
        )
        logger.info(f"Attempting to place sell order for {self.symbol} at price {sell_price}")
        try:
            sell_id = self.exchange.place_limit_order(
                self.symbol, OrderSide.SELL, sell_price, position.total
            )
        except COMMAND_ERRORS as e:
            logger.error(f"Failed to place sell order: {e}")
            return UpdateOutcome.FAILED

        self.sell_order = SellOrder(order_id=sell_id, price=sell_price, size=position.total)
        for level in self.buy_levels:
            if level.order_id == update.order_id:
                level.filled = True
        logger.info(f"Placed sell order {sell_id} for {self.symbol} at price {sell_price}")
        return UpdateOutcome.SELL_PLACED

    def _fetch_position(self) -> Position | None:
        for attempt in range(1, self.position_retries + 1):
            try:
                position = self.exchange.get_position(self.symbol)
            except COMMAND_ERRORS as e:
                logger.warning(f"Failed to get position for {self.symbol}: {e}")
                position = None
            if position is not None and position.total > 0:
                return position
            if attempt < self.position_retries:
                logger.debug(
                    f"Position for {self.symbol} not settled (attempt {attempt}), retrying"
                )
                self._sleep(self.position_retry_delay)
        return None

    def _on_sell_filled(self, update: OrderUpdate) -> UpdateOutcome:
        logger.info(
            f"Sell order {update.order_id} for {self.symbol} filled at price "
            f"{update.price_avg or update.price}"
        )
        self.completed_rounds += 1
        self.sell_order = None

        if self.sell_fill_policy == "restart" and self.completed_rounds < self.pair.max_orders:
            logger.info(
                f"Restarting ladder for {self.symbol} "
                f"(round {self.completed_rounds + 1} of {self.pair.max_orders})"
            )
            # Unfilled levels keep resting; only filled slots get a fresh level
            latest: dict[int, BuyLevel] = {}
            for level in self.buy_levels:
                latest[level.slot] = level
            slots = sorted(slot for slot, level in latest.items() if level.filled)
            try:
                self.buy_levels.extend(self._build_levels(slots))
            except COMMAND_ERRORS as e:
                logger.error(f"Failed to rebuild ladder for {self.symbol}: {e}")
                return UpdateOutcome.COMPLETED
            self._place_buy_orders()
            return UpdateOutcome.RESTARTED

        logger.info(f"Trading process for {self.symbol} completed!")
        return UpdateOutcome.COMPLETED

    def snapshot(self) -> dict:
        """Current ladder state for status logging."""
        with self._lock:
            return {
                "symbol": self.symbol,
                "buy_levels": [
                    {
                        "price": str(level.price),
                        "amount": str(level.amount),
                        "order_id": level.order_id,
                        "filled": level.filled,
                    }
                    for level in self.buy_levels
                ],
                "sell_order": self.sell_order.to_dict() if self.sell_order else None,
                "completed_rounds": self.completed_rounds,
            }
