"""Base exchange interface for trading operations."""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

from botcoin.trading.orders.order import OrderSide, Position


class BaseExchange(ABC):
    """Abstract base class for the order gateway.

    All calls are synchronous: one call is one request/response round trip.
    Implementations raise errors from botcoin.trading.errors.
    """

    @abstractmethod
    def get_price(self, symbol: str) -> Decimal:
        """Get current price for a symbol.

        Args:
            symbol: Instrument ID (e.g., "BTCUSDT")

        Returns:
            Last traded price as Decimal

        Raises:
            NotFoundError: If the exchange has no ticker data
        """
        pass

    @abstractmethod
    def get_position(self, symbol: str) -> Position | None:
        """Get the open position for a symbol.

        Args:
            symbol: Instrument ID

        Returns:
            Position, or None if no position is open
        """
        pass

    @abstractmethod
    def place_limit_order(
        self,
        symbol: str,
        side: OrderSide,
        price: Decimal,
        size: Decimal,
    ) -> str:
        """Place a good-till-cancelled limit order.

        Args:
            symbol: Instrument ID
            side: OrderSide.BUY or OrderSide.SELL
            price: Limit price
            size: Quantity in instrument units

        Returns:
            Exchange order ID

        Raises:
            RejectedError: If the exchange declines the order
        """
        pass

    @abstractmethod
    def cancel_order(self, symbol: str, order_id: str) -> None:
        """Cancel an open order.

        Args:
            symbol: Instrument ID
            order_id: Exchange order ID to cancel

        Raises:
            RejectedError: If the exchange declines or acknowledges another order
        """
        pass

    @abstractmethod
    def get_pending_orders(self, symbol: str) -> list[dict[str, Any]]:
        """List open orders for a symbol as raw exchange records."""
        pass

    @abstractmethod
    def get_all_positions(self) -> list[Position]:
        """List all open positions for the trading mode's product type."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close exchange connections and clean up resources."""
        pass
