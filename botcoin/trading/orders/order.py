"""Order, position and ladder dataclasses for trading operations."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from botcoin.trading.errors import ProtocolError


class OrderSide(Enum):
    """Order side (buy or sell)."""

    BUY = "buy"
    SELL = "sell"


class OrderState(Enum):
    """Order lifecycle state as reported by the order channel."""

    OPEN = "OPEN"  # Resting on the book
    PARTIALLY_FILLED = "PARTIALLY_FILLED"  # Some quantity filled
    FILLED = "FILLED"  # Fully executed
    CANCELLED = "CANCELLED"  # Cancelled by user or exchange
    UNKNOWN = "UNKNOWN"  # Status not recognised


def _map_order_status(bitget_status: str) -> OrderState:
    """Map Bitget order status to our OrderState."""
    status_map = {
        "live": OrderState.OPEN,
        "new": OrderState.OPEN,
        "init": OrderState.OPEN,
        "partially_filled": OrderState.PARTIALLY_FILLED,
        "filled": OrderState.FILLED,
        "canceled": OrderState.CANCELLED,
        "cancelled": OrderState.CANCELLED,
    }
    return status_map.get(bitget_status.lower(), OrderState.UNKNOWN)


def to_decimal(value: Any, name: str = "value") -> Decimal:
    """Parse an exchange decimal string (or number) into a Decimal.

    Raises:
        ProtocolError: If the value is empty or not numeric
    """
    if value is None or value == "":
        raise ProtocolError(f"missing decimal field '{name}'")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ProtocolError(f"invalid decimal for '{name}': {value!r}")


@dataclass
class OrderUpdate:
    """A single record from the private order channel.

    Attributes:
        order_id: Exchange-assigned order ID
        symbol: Instrument ID (e.g., "BTCUSDT" or "SBTCSUSDT" in demo mode)
        side: Buy or sell
        status: Raw exchange status string
        state: Status mapped to OrderState
        price: Limit price
        size: Order size in instrument units
        price_avg: Average fill price, if reported
        filled_size: Filled quantity, if reported
    """

    order_id: str
    symbol: str
    side: OrderSide
    status: str
    price: Decimal
    size: Decimal
    price_avg: Decimal | None = None
    filled_size: Decimal | None = None

    @property
    def state(self) -> OrderState:
        return _map_order_status(self.status)

    @property
    def is_filled(self) -> bool:
        return self.state == OrderState.FILLED

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderUpdate":
        """Build an update from a decoded order-channel record.

        Raises:
            ProtocolError: If a required field is missing or malformed
        """
        if not isinstance(data, dict):
            raise ProtocolError(f"order record is not an object: {data!r}")
        try:
            order_id = str(data["orderId"])
            symbol = str(data["instId"])
            side = OrderSide(str(data["side"]).lower())
            status = str(data["status"])
        except KeyError as e:
            raise ProtocolError(f"order record missing field {e}")
        except ValueError:
            raise ProtocolError(f"unknown order side: {data.get('side')!r}")

        price_avg = data.get("priceAvg")
        filled = data.get("accBaseVolume")
        return cls(
            order_id=order_id,
            symbol=symbol,
            side=side,
            status=status,
            price=to_decimal(data.get("price"), "price"),
            size=to_decimal(data.get("size"), "size"),
            price_avg=to_decimal(price_avg, "priceAvg") if price_avg else None,
            filled_size=to_decimal(filled, "accBaseVolume") if filled else None,
        )


@dataclass
class Position:
    """Open futures position as reported by the exchange.

    Attributes:
        symbol: Instrument ID
        hold_side: Position direction (long/short)
        total: Total position size
        available: Size available to close
        open_price_avg: Average entry price
    """

    symbol: str
    hold_side: str
    total: Decimal
    available: Decimal
    open_price_avg: Decimal

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Position":
        return cls(
            symbol=str(data.get("symbol", "")),
            hold_side=str(data.get("holdSide", "")),
            total=to_decimal(data.get("total"), "total"),
            available=to_decimal(data.get("available") or "0", "available"),
            open_price_avg=to_decimal(data.get("openPriceAvg"), "openPriceAvg"),
        )


@dataclass
class BuyLevel:
    """One rung of the buy ladder.

    The order ID is empty until the order is placed and is never reassigned.
    """

    price: Decimal
    amount: Decimal
    order_id: str = ""
    slot: int = 0  # Index of the configured buy order this level came from
    filled: bool = False
    placed_at: datetime | None = None

    @property
    def is_placed(self) -> bool:
        return bool(self.order_id)

    def assign_order_id(self, order_id: str) -> None:
        """Record the exchange order ID for this level.

        Raises:
            ValueError: If the level already holds an order ID
        """
        if self.order_id:
            raise ValueError(
                f"buy level at {self.price} already has order {self.order_id}"
            )
        self.order_id = order_id
        self.placed_at = datetime.now()


@dataclass
class SellOrder:
    """The single open take-profit order of a ladder."""

    order_id: str
    price: Decimal
    size: Decimal
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "price": str(self.price),
            "size": str(self.size),
            "created_at": self.created_at.isoformat(),
        }
