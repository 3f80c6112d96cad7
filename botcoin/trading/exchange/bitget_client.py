"""Bitget REST API client for live and demo futures trading (v2 mix API)."""

import json
import logging
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

import requests

from botcoin.trading.config import TradingConfig
from botcoin.trading.errors import (
    ExchangeConnectionError,
    NotFoundError,
    ProtocolError,
    RejectedError,
    SymbolModeError,
)
from botcoin.trading.exchange.base import BaseExchange
from botcoin.trading.exchange.signing import sign, timestamp_ms
from botcoin.trading.orders.order import OrderSide, Position

logger = logging.getLogger(__name__)

BITGET_BASE_URL = "https://api.bitget.com"
BITGET_MIX_PATH = "/api/v2/mix"
SUCCESS_CODE = "00000"
DEMO_SYMBOL_PREFIX = "S"
DEMO_SYMBOL_SUFFIX = "SUSDT"


def is_demo_symbol(symbol: str) -> bool:
    """Demo instruments look like "SBTCSUSDT": S prefix, SUSDT quote."""
    return symbol.startswith(DEMO_SYMBOL_PREFIX) and symbol.endswith(DEMO_SYMBOL_SUFFIX)


def validate_symbol(symbol: str, demo_trading: bool) -> None:
    """Check that the symbol naming matches the trading mode.

    Demo instruments carry an "S" prefix (e.g., "SBTCSUSDT"), live ones do
    not. Live symbols that merely start with S (e.g., "SOLUSDT") are fine.

    Raises:
        SymbolModeError: On a mode/naming mismatch
    """
    if demo_trading and not is_demo_symbol(symbol):
        raise SymbolModeError(
            f"demo trading requires symbols with '{DEMO_SYMBOL_PREFIX}' prefix, got: {symbol}"
        )
    if not demo_trading and is_demo_symbol(symbol):
        raise SymbolModeError(
            f"live trading requires symbols without '{DEMO_SYMBOL_PREFIX}' prefix, got: {symbol}"
        )


def format_decimal(value: Decimal) -> str:
    """Render a Decimal without exponent notation."""
    return format(value, "f")


class BitgetClient(BaseExchange):
    """Bitget exchange client for USDT-margined futures.

    Signs every request with the account's API secret and uses one
    persistent requests.Session with a fixed timeout.

    Attributes:
        config: Trading configuration with API credentials
        base_url: REST endpoint root
    """

    def __init__(
        self,
        config: TradingConfig,
        session: requests.Session | None = None,
        base_url: str = BITGET_BASE_URL,
    ):
        self.config = config
        self.base_url = base_url
        self._session = session or requests.Session()
        self._timeout = config.request_timeout

    def _headers(self, method: str, request_path: str, body: str) -> dict[str, str]:
        timestamp = timestamp_ms()
        return {
            "ACCESS-KEY": self.config.api_key,
            "ACCESS-SIGN": sign(self.config.secret_key, timestamp, method, request_path, body),
            "ACCESS-TIMESTAMP": timestamp,
            "ACCESS-PASSPHRASE": self.config.passphrase,
            "Content-Type": "application/json",
            "locale": "en-US",
        }

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Send a signed request and return the response's "data" field.

        Raises:
            ExchangeConnectionError: On transport failure or timeout
            RejectedError: On non-200 status or non-success response code
            ProtocolError: If the response is not JSON
        """
        request_path = BITGET_MIX_PATH + path
        if params:
            request_path += "?" + urlencode(params)
        body_str = json.dumps(body) if body is not None else ""

        try:
            resp = self._session.request(
                method,
                self.base_url + request_path,
                data=body_str or None,
                headers=self._headers(method, request_path, body_str),
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise ExchangeConnectionError(f"{method} {path} failed: {e}") from e

        try:
            payload = resp.json()
        except ValueError:
            if resp.status_code != 200:
                raise RejectedError(
                    f"API request failed with status {resp.status_code}: {resp.text}"
                )
            raise ProtocolError(f"{method} {path} returned non-JSON body: {resp.text[:200]}")

        code = str(payload.get("code", ""))
        if resp.status_code != 200 or code != SUCCESS_CODE:
            msg = payload.get("msg", "Unknown error")
            logger.debug(f"{method} {path} rejected ({resp.status_code}, {code}): {msg}")
            raise RejectedError(msg, code=code)

        return payload.get("data")

    def get_price(self, symbol: str) -> Decimal:
        validate_symbol(symbol, self.config.is_demo_trading)
        data = self._request(
            "GET",
            "/market/ticker",
            params={"productType": self.config.product_type, "symbol": symbol},
        )
        if not data:
            raise NotFoundError(f"no price data available for {symbol}")
        last = data[0].get("lastPr")
        if not last:
            raise NotFoundError(f"no last price in ticker for {symbol}")
        return Decimal(last)

    def get_position(self, symbol: str) -> Position | None:
        validate_symbol(symbol, self.config.is_demo_trading)
        data = self._request(
            "GET",
            "/position/single-position",
            params={
                "symbol": symbol,
                "productType": self.config.product_type,
                "marginCoin": self.config.margin_coin,
            },
        )
        if not data:
            return None
        return Position.from_dict(data[0])

    def get_all_positions(self) -> list[Position]:
        data = self._request(
            "GET",
            "/position/all-position",
            params={
                "productType": self.config.product_type,
                "marginCoin": self.config.margin_coin,
            },
        )
        return [Position.from_dict(p) for p in data or []]

    def get_pending_orders(self, symbol: str) -> list[dict[str, Any]]:
        validate_symbol(symbol, self.config.is_demo_trading)
        data = self._request(
            "GET",
            "/order/orders-pending",
            params={"symbol": symbol, "productType": self.config.product_type},
        )
        return (data or {}).get("entrustedList") or []

    def place_limit_order(
        self,
        symbol: str,
        side: OrderSide,
        price: Decimal,
        size: Decimal,
    ) -> str:
        validate_symbol(symbol, self.config.is_demo_trading)
        data = self._request(
            "POST",
            "/order/place-order",
            body={
                "symbol": symbol,
                "productType": self.config.product_type,
                "marginMode": "isolated",
                "marginCoin": self.config.margin_coin,
                "size": format_decimal(size),
                "price": format_decimal(price),
                "side": side.value,
                "orderType": "limit",
                "force": "gtc",
                "reduceOnly": "NO",
            },
        )
        order_id = (data or {}).get("orderId")
        if not order_id:
            raise RejectedError(f"order placement returned no order id for {symbol}")
        logger.info(f"Bitget limit order placed: {side.value} {size} {symbol} @ {price}")
        return str(order_id)

    def cancel_order(self, symbol: str, order_id: str) -> None:
        validate_symbol(symbol, self.config.is_demo_trading)
        data = self._request(
            "POST",
            "/order/cancel-order",
            body={
                "symbol": symbol,
                "productType": self.config.product_type,
                "marginCoin": self.config.margin_coin,
                "orderId": order_id,
            },
        )
        cancelled_id = str((data or {}).get("orderId", ""))
        if cancelled_id != order_id:
            raise RejectedError(
                f"order cancellation failed: order ID mismatch, "
                f"expected {order_id}, got {cancelled_id}"
            )
        logger.info(f"Bitget order cancelled: {order_id} {symbol}")

    def close(self) -> None:
        self._session.close()
        logger.info("Bitget client closed")
