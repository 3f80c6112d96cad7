"""Request signing for the Bitget REST and WebSocket APIs."""

import base64
import hashlib
import hmac
import time

LOGIN_METHOD = "GET"
LOGIN_PATH = "/user/verify"


def sign(secret: str, timestamp: str, method: str, request_path: str, body: str = "") -> str:
    """Generate the base64 HMAC-SHA256 signature required by Bitget.

    Args:
        secret: API secret key
        timestamp: Request timestamp as a string
        method: HTTP method (GET, POST)
        request_path: Path including query string (e.g., "/api/v2/mix/market/ticker?symbol=BTCUSDT")
        body: JSON request body, empty for GET

    Returns:
        Base64-encoded signature
    """
    message = timestamp + method.upper() + request_path + body
    mac = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256)
    return base64.b64encode(mac.digest()).decode("ascii")


def sign_login(secret: str, timestamp: str) -> str:
    """Signature for the WebSocket login frame."""
    return sign(secret, timestamp, LOGIN_METHOD, LOGIN_PATH)


def timestamp_ms() -> str:
    """Current UTC time in milliseconds, as used by REST requests."""
    return str(int(time.time() * 1000))


def timestamp_s() -> str:
    """Current UTC time in seconds, as used by the WebSocket login."""
    return str(int(time.time()))
