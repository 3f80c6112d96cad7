"""Exception hierarchy for exchange and trading failures."""


class BotcoinError(Exception):
    """Base class for all bot errors."""


class ExchangeConnectionError(BotcoinError, ConnectionError):
    """Transport-level failure (dial, read, write or HTTP round trip)."""


class AuthError(BotcoinError):
    """Login rejected by the exchange."""


class ProtocolError(BotcoinError):
    """Malformed frame or payload received from the exchange."""


class RejectedError(BotcoinError):
    """Exchange declined a command.

    Attributes:
        reason: Message returned by the exchange
        code: Exchange response code, if any
    """

    def __init__(self, reason: str, code: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.code = code


class NotFoundError(BotcoinError):
    """Exchange has no data for the query."""


class ConfigurationError(BotcoinError, ValueError):
    """Invalid configuration or credentials."""


class SymbolModeError(ConfigurationError):
    """Symbol naming does not match the trading mode (demo vs live)."""
