"""Trading configuration dataclasses."""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any
import json
import os

from botcoin.trading.errors import ConfigurationError

SELL_FILL_POLICIES = ("terminate", "restart")


def _dec(value: Any, name: str) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    if not result.is_finite():
        raise ConfigurationError(f"{name} must be a finite number, got {value!r}")
    return result


def _num(cast: type, value: Any, name: str) -> Any:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def _bool(value: Any, name: str) -> bool:
    """Accept JSON booleans and the strings "true"/"false"."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ConfigurationError(f"{name} must be true or false, got {value!r}")


@dataclass
class BuyOrderConfig:
    """One configured buy level.

    Exactly one of coin_price (absolute) or coin_price_below_percent
    (relative to the current price at startup) must be set.

    Attributes:
        order_amount: Notional amount to spend, in the margin coin
        coin_price: Fixed limit price
        coin_price_below_percent: Percentage below current price (0.5 = 0.5%)
    """

    order_amount: Decimal
    coin_price: Decimal | None = None
    coin_price_below_percent: Decimal | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuyOrderConfig":
        return cls(
            order_amount=_dec(data.get("order_amount", 0), "order_amount"),
            coin_price=_dec(data.get("coin_price"), "coin_price"),
            coin_price_below_percent=_dec(
                data.get("coin_price_below_percent"), "coin_price_below_percent"
            ),
        )

    @property
    def is_relative(self) -> bool:
        return self.coin_price_below_percent is not None


@dataclass
class TradingPairConfig:
    """Configuration for a single traded symbol.

    Attributes:
        symbol: Instrument ID (e.g., "BTCUSDT", or "SBTCSUSDT" in demo mode)
        sell_target_percent: Take-profit above the average entry price, in percent
        buy_orders: Buy ladder levels
        max_orders: Ladder rounds allowed under the "restart" sell-fill policy
        price_precision: Decimal places of the instrument's price
        size_precision: Decimal places of the instrument's order size
    """

    symbol: str
    sell_target_percent: Decimal
    buy_orders: list[BuyOrderConfig] = field(default_factory=list)
    max_orders: int = 1
    price_precision: int = 1
    size_precision: int = 4

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TradingPairConfig":
        return cls(
            symbol=str(data.get("symbol", "")),
            sell_target_percent=_dec(data.get("sell_target_percent", 0), "sell_target_percent"),
            buy_orders=[BuyOrderConfig.from_dict(b) for b in data.get("buy_orders", [])],
            max_orders=_num(int, data.get("max_orders", 1), "max_orders"),
            price_precision=_num(int, data.get("price_precision", 1), "price_precision"),
            size_precision=_num(int, data.get("size_precision", 4), "size_precision"),
        )


@dataclass
class TradingConfig:
    """Configuration for the trading bot.

    Attributes:
        api_key: Bitget API key
        secret_key: Bitget API secret
        passphrase: Bitget API passphrase
        is_demo_trading: Use demo (paper) instruments and channels
        sell_fill_policy: "terminate" or "restart"; what happens when a sell fills
        trading_processes: Per-symbol ladder configuration
        ping_interval: Seconds between WebSocket heartbeats
        pong_timeout: Seconds to wait for a heartbeat reply
        idle_timeout: Seconds without inbound data before reconnecting
        reconnect_delay: Seconds between reconnection attempts
        login_timeout: Seconds to wait for dial and login acknowledgment
        request_timeout: REST request timeout in seconds
        settle_delay: Seconds to wait after a buy fill before reading the position
        position_retries: Attempts to read a settled position
        position_retry_delay: Seconds between position reads
        log_level: Logging level
    """

    # Credentials
    api_key: str = ""
    secret_key: str = ""
    passphrase: str = ""

    # Mode
    is_demo_trading: bool = True
    sell_fill_policy: str | None = None

    # Trading pairs
    trading_processes: list[TradingPairConfig] = field(default_factory=list)

    # Streaming session
    ping_interval: float = 15.0
    pong_timeout: float = 10.0
    idle_timeout: float = 50.0  # Bitget disconnects after 60s of inactivity
    reconnect_delay: float = 5.0
    login_timeout: float = 10.0

    # REST / orchestration
    request_timeout: float = 10.0
    settle_delay: float = 3.0
    position_retries: int = 3
    position_retry_delay: float = 1.0

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TradingConfig":
        """Create config from a decoded JSON document.

        Raises:
            ConfigurationError: If a value has the wrong type
        """
        defaults = cls()

        def setting(name: str, cast: type = float) -> Any:
            return _num(cast, data.get(name, getattr(defaults, name)), name)

        return cls(
            api_key=data.get("api_key", ""),
            secret_key=data.get("secret_key", ""),
            passphrase=data.get("passphrase", ""),
            is_demo_trading=_bool(data.get("is_demo_trading", True), "is_demo_trading"),
            sell_fill_policy=data.get("sell_fill_policy"),
            trading_processes=[
                TradingPairConfig.from_dict(p) for p in data.get("trading_processes", [])
            ],
            ping_interval=setting("ping_interval"),
            pong_timeout=setting("pong_timeout"),
            idle_timeout=setting("idle_timeout"),
            reconnect_delay=setting("reconnect_delay"),
            login_timeout=setting("login_timeout"),
            request_timeout=setting("request_timeout"),
            settle_delay=setting("settle_delay"),
            position_retries=setting("position_retries", int),
            position_retry_delay=setting("position_retry_delay"),
            log_level=data.get("log_level", defaults.log_level),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "TradingConfig":
        """Load config from a JSON file, then apply environment overrides.

        Raises:
            ConfigurationError: If the file is missing, not valid JSON or holds
                a value of the wrong type
        """
        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"config file not found: {path}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"config file {path} is not valid JSON: {e}")
        return cls.from_dict(data).apply_env()

    def apply_env(self) -> "TradingConfig":
        """Override credentials and mode from environment variables.

        Environment variables (all optional, file values kept if not set):
            BITGET_API_KEY: Bitget API key
            BITGET_SECRET_KEY: Bitget API secret
            BITGET_PASSPHRASE: Bitget API passphrase
            DEMO_TRADING: "true" or "false"
            SELL_FILL_POLICY: "terminate" or "restart"
            LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
        """
        self.api_key = os.getenv("BITGET_API_KEY", self.api_key)
        self.secret_key = os.getenv("BITGET_SECRET_KEY", self.secret_key)
        self.passphrase = os.getenv("BITGET_PASSPHRASE", self.passphrase)
        demo = os.getenv("DEMO_TRADING")
        if demo is not None:
            self.is_demo_trading = demo.lower() == "true"
        self.sell_fill_policy = os.getenv("SELL_FILL_POLICY", self.sell_fill_policy)
        self.log_level = os.getenv("LOG_LEVEL", self.log_level)
        return self

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors (empty if valid)."""
        errors = []

        if not self.api_key:
            errors.append("api_key is required")
        if not self.secret_key:
            errors.append("secret_key is required")
        if not self.passphrase:
            errors.append("passphrase is required")

        if self.sell_fill_policy not in SELL_FILL_POLICIES:
            errors.append(
                f"sell_fill_policy must be one of {SELL_FILL_POLICIES}, "
                f"got {self.sell_fill_policy!r}"
            )

        if not self.trading_processes:
            errors.append("at least one trading process is required")

        seen = set()
        for pair in self.trading_processes:
            name = pair.symbol or "<unnamed>"
            if not pair.symbol:
                errors.append("trading process symbol is required")
            elif pair.symbol in seen:
                errors.append(f"{name}: duplicate trading process")
            seen.add(pair.symbol)

            if pair.sell_target_percent <= 0:
                errors.append(f"{name}: sell_target_percent must be positive")
            if pair.max_orders < 1:
                errors.append(f"{name}: max_orders must be at least 1")
            if pair.price_precision < 0 or pair.size_precision < 0:
                errors.append(f"{name}: precisions must not be negative")
            if not pair.buy_orders:
                errors.append(f"{name}: at least one buy order is required")

            for i, buy in enumerate(pair.buy_orders):
                if buy.order_amount <= 0:
                    errors.append(f"{name}: buy order {i} order_amount must be positive")
                if (buy.coin_price is None) == (buy.coin_price_below_percent is None):
                    errors.append(
                        f"{name}: buy order {i} needs exactly one of "
                        "coin_price or coin_price_below_percent"
                    )
                elif buy.coin_price is not None and buy.coin_price <= 0:
                    errors.append(f"{name}: buy order {i} coin_price must be positive")
                elif buy.is_relative and not 0 < buy.coin_price_below_percent < 100:
                    errors.append(
                        f"{name}: buy order {i} coin_price_below_percent must be between 0 and 100"
                    )

        if self.idle_timeout <= self.ping_interval:
            errors.append("idle_timeout must be greater than ping_interval")

        return errors

    @property
    def product_type(self) -> str:
        """Bitget REST product type for the trading mode."""
        return "susdt-futures" if self.is_demo_trading else "usdt-futures"

    @property
    def margin_coin(self) -> str:
        return "SUSDT" if self.is_demo_trading else "USDT"

    @property
    def ws_inst_type(self) -> str:
        """Bitget WebSocket instType for the order channel."""
        return "SUSDT-FUTURES" if self.is_demo_trading else "USDT-FUTURES"
