"""Order management module."""

from botcoin.trading.orders.order import (
    BuyLevel,
    OrderSide,
    OrderState,
    OrderUpdate,
    Position,
    SellOrder,
)

__all__ = [
    "BuyLevel",
    "OrderSide",
    "OrderState",
    "OrderUpdate",
    "Position",
    "SellOrder",
]
