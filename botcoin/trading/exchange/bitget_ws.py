"""Bitget private WebSocket session for order updates (v2)."""

import json
import logging
import queue
import threading
import time
from enum import Enum
from typing import Any, Callable

import websocket

from botcoin.trading.config import TradingConfig
from botcoin.trading.errors import AuthError, ExchangeConnectionError, ProtocolError
from botcoin.trading.exchange.signing import sign_login, timestamp_s

logger = logging.getLogger(__name__)

BITGET_WS_PRIVATE = "wss://ws.bitget.com/v2/ws/private"

ERR_NOT_LOGGED_IN = "30004"
ERR_TOO_MANY_REQUESTS = "30006"

OrderUpdateHandler = Callable[[bytes], None]


class SessionState(Enum):
    """Streaming session lifecycle state."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    AUTHENTICATING = "AUTHENTICATING"
    SUBSCRIBING = "SUBSCRIBING"
    LIVE = "LIVE"
    DEGRADED = "DEGRADED"
    CLOSED = "CLOSED"


def _parse_frame(raw: str) -> dict[str, Any]:
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"parse error: {e}; message: {raw[:500]}")
    if not isinstance(msg, dict):
        raise ProtocolError(f"unexpected frame: {raw[:500]}")
    return msg


class BitgetWebSocket:
    """Authenticated, self-healing Bitget order-channel session.

    One transport connection is kept logged in and subscribed to the
    "orders" channel. Bitget drops connections that stay idle for 60s
    without sending a close frame, so liveness is tracked on the client:
    a heartbeat thread sends "ping" and a monitor thread reconnects when
    nothing has been received for idle_timeout seconds or a ping goes
    unanswered for pong_timeout seconds.

    Decoded "data" arrays are handed to the single registered handler as
    UTF-8 JSON bytes, in arrival order, on a dispatcher thread fed by the
    reader. A slow handler therefore never delays heartbeat replies.

    Attributes:
        config: Trading configuration (credentials, mode, timings)
        url: WebSocket endpoint
        reconnect_count: Completed reconnections since open()
    """

    def __init__(
        self,
        config: TradingConfig,
        url: str = BITGET_WS_PRIVATE,
        connection_factory: Callable[..., Any] | None = None,
        check_interval: float = 1.0,
    ):
        self.config = config
        self.url = url
        self.reconnect_count = 0
        self._connection_factory = connection_factory or websocket.create_connection
        self._check_interval = check_interval

        # Guards _conn, _connected, _state and the liveness timestamps
        self._lock = threading.Lock()
        self._reconnect_guard = threading.Lock()
        self._conn: Any = None
        self._connected = False
        self._state = SessionState.DISCONNECTED
        self._last_received = time.monotonic()
        self._ping_sent_at: float | None = None

        self._handler: OrderUpdateHandler | None = None
        # Payloads are handed to the handler on their own thread so a slow
        # handler never stalls reads (and with them pong and idle tracking)
        self._updates: queue.Queue[bytes | None] = queue.Queue()
        self._live = threading.Event()
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._connected

    @property
    def is_live(self) -> bool:
        return self._live.is_set()

    def _set_state(self, state: SessionState) -> None:
        with self._lock:
            if self._stop.is_set() and state != SessionState.CLOSED:
                return
            self._state = state
        logger.debug(f"WebSocket session state: {state.value}")

    def register_handler(self, handler: OrderUpdateHandler) -> None:
        """Install the consumer of order-update payloads, replacing any previous one."""
        if self._handler is not None:
            logger.info("Replacing existing order update handler")
        self._handler = handler

    def open(self) -> None:
        """Connect, log in, subscribe and start the background threads.

        Raises:
            ExchangeConnectionError: If the transport cannot be established
            AuthError: If the login is rejected
        """
        if self._stop.is_set():
            raise RuntimeError("WebSocket session already closed")
        if self._threads:
            logger.warning("WebSocket session already open")
            return

        self._establish()

        for name, target in (
            ("BitgetWSReader", self._read_loop),
            ("BitgetWSHeartbeat", self._heartbeat_loop),
            ("BitgetWSDispatcher", self._dispatch_loop),
            ("BitgetWSMonitor", self._monitor_loop),
        ):
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("Bitget WebSocket session started")

    def close(self) -> None:
        """Stop monitoring and close the transport. Safe to call more than once."""
        with self._lock:
            if self._stop.is_set():
                return
            self._stop.set()
        self._live.clear()
        self._close_connection()
        self._updates.put(None)

        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join(timeout=self.config.login_timeout)
        self._threads.clear()
        self._set_state(SessionState.CLOSED)
        logger.info("Bitget WebSocket session closed")

    # Connection lifecycle

    def _establish(self) -> None:
        """Run connect, authenticate and subscribe once."""
        self._set_state(SessionState.CONNECTING)
        try:
            conn = self._connection_factory(self.url, timeout=self.config.login_timeout)
        except (websocket.WebSocketException, OSError) as e:
            self._set_state(SessionState.DISCONNECTED)
            raise ExchangeConnectionError(f"websocket connection failed: {e}") from e

        with self._lock:
            closed = self._stop.is_set()
            if not closed:
                self._conn = conn
                self._connected = True
                self._last_received = time.monotonic()
                self._ping_sent_at = None
        if closed:
            self._discard(conn)
            raise ExchangeConnectionError("session closed while connecting")

        try:
            self._set_state(SessionState.AUTHENTICATING)
            self._send_login(conn)
            self._await_login(conn)
            self._set_state(SessionState.SUBSCRIBING)
            self._send_subscribe(conn)
        except (AuthError, ExchangeConnectionError):
            self._close_connection()
            self._set_state(SessionState.DISCONNECTED)
            raise

        with self._lock:
            closed = self._stop.is_set()
            if not closed:
                self._state = SessionState.LIVE
                self._live.set()
        if closed:
            self._close_connection()
            raise ExchangeConnectionError("session closed while subscribing")
        logger.debug(f"WebSocket session state: {SessionState.LIVE.value}")

    def _close_connection(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
            self._connected = False
        if conn is None:
            return
        self._discard(conn)

    def _discard(self, conn: Any) -> None:
        try:
            conn.close()
        except (websocket.WebSocketException, OSError) as e:
            logger.warning(f"failed to close connection: {e}")

    def _degrade(self, conn: Any, reason: str) -> None:
        """Reconnect if conn is still the active transport.

        Only one reconnection runs at a time. Triggers that refer to a
        transport that has already been replaced are ignored.
        """
        with self._lock:
            if self._stop.is_set() or conn is not self._conn:
                logger.debug(f"Ignoring stale degradation ({reason})")
                return

        if not self._reconnect_guard.acquire(blocking=False):
            logger.info(f"Reconnect already in progress ({reason})")
            return
        try:
            with self._lock:
                if self._stop.is_set() or conn is not self._conn:
                    return
            logger.warning(f"WebSocket session degraded: {reason}")
            self._reconnect()
        finally:
            self._reconnect_guard.release()

    def _reconnect(self) -> None:
        self._live.clear()
        self._set_state(SessionState.DEGRADED)
        self._close_connection()
        self._set_state(SessionState.DISCONNECTED)

        while not self._stop.is_set():
            logger.info("Attempting to reconnect...")
            try:
                self._establish()
            except (ExchangeConnectionError, AuthError) as e:
                if self._stop.is_set():
                    break
                logger.warning(
                    f"Reconnect failed: {e}; retrying in {self.config.reconnect_delay}s"
                )
                self._stop.wait(self.config.reconnect_delay)
                continue
            self.reconnect_count += 1
            logger.info("Reconnected, re-authenticated and re-subscribed")
            return

    # Outbound frames

    def _send(self, conn: Any, data: str) -> None:
        with self._lock:
            if not self._connected or conn is not self._conn:
                raise ExchangeConnectionError("not connected")
            try:
                conn.send(data)
            except (websocket.WebSocketException, OSError) as e:
                raise ExchangeConnectionError(f"send failed: {e}") from e

    def _send_login(self, conn: Any) -> None:
        timestamp = timestamp_s()
        frame = {
            "op": "login",
            "args": [{
                "apiKey": self.config.api_key,
                "passphrase": self.config.passphrase,
                "timestamp": timestamp,
                "sign": sign_login(self.config.secret_key, timestamp),
            }],
        }
        self._send(conn, json.dumps(frame))
        logger.debug("Sent login request")

    def _send_subscribe(self, conn: Any) -> None:
        frame = {
            "op": "subscribe",
            "args": [{
                "instType": self.config.ws_inst_type,
                "channel": "orders",
                "instId": "default",  # all trading pairs
            }],
        }
        self._send(conn, json.dumps(frame))
        logger.info(f"Sent subscribe request for {self.config.ws_inst_type} orders")

    def _await_login(self, conn: Any) -> None:
        deadline = time.monotonic() + self.config.login_timeout
        while True:
            if time.monotonic() > deadline:
                raise ExchangeConnectionError("timed out waiting for login acknowledgment")
            try:
                raw = conn.recv()
            except websocket.WebSocketTimeoutException:
                continue
            except (websocket.WebSocketException, OSError) as e:
                raise ExchangeConnectionError(f"connection lost during login: {e}") from e
            self._mark_received()

            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            if raw == "pong":
                continue
            try:
                msg = _parse_frame(raw)
            except ProtocolError as e:
                logger.warning(str(e))
                continue

            event = msg.get("event")
            if event == "login":
                if str(msg.get("code", "0")) != "0":
                    raise AuthError(f"login rejected ({msg.get('code')}): {msg.get('msg')}")
                logger.info("Received login event")
                return
            if event == "error":
                raise AuthError(f"login rejected ({msg.get('code')}): {msg.get('msg')}")
            logger.debug(f"Ignoring frame before login: {raw[:200]}")

    # Background threads

    def _mark_received(self) -> None:
        with self._lock:
            self._last_received = time.monotonic()

    def _live_connection(self) -> Any:
        with self._lock:
            return self._conn if self._live.is_set() else None

    def _read_loop(self) -> None:
        while not self._stop.is_set():
            if not self._live.wait(timeout=self._check_interval):
                continue
            conn = self._live_connection()
            if conn is None:
                continue
            try:
                raw = conn.recv()
            except websocket.WebSocketTimeoutException:
                continue
            except (websocket.WebSocketException, OSError) as e:
                if self._stop.is_set():
                    break
                logger.warning(f"read error: {e}")
                self._degrade(conn, "read error")
                continue

            self._mark_received()
            self._dispatch(conn, raw)
        logger.debug("Reader thread exiting")

    def _heartbeat_loop(self) -> None:
        while not self._stop.wait(self.config.ping_interval):
            conn = self._live_connection()
            if conn is None:
                continue
            try:
                self._send(conn, "ping")
            except ExchangeConnectionError as e:
                logger.warning(f"ping failed: {e}")
                self._degrade(conn, "ping failed")
                continue
            with self._lock:
                if self._ping_sent_at is None:
                    self._ping_sent_at = time.monotonic()
            logger.debug("Sent ping")
        logger.debug("Heartbeat thread exiting")

    def _monitor_loop(self) -> None:
        while not self._stop.wait(self._check_interval):
            conn = self._live_connection()
            if conn is None:
                continue
            with self._lock:
                now = time.monotonic()
                idle = now - self._last_received
                ping_wait = now - self._ping_sent_at if self._ping_sent_at is not None else 0.0

            if idle > self.config.idle_timeout:
                logger.warning(f"Last received message was {idle:.0f}s ago")
                self._degrade(conn, "idle timeout")
            elif ping_wait > self.config.pong_timeout:
                logger.warning(f"No pong received for {ping_wait:.0f}s")
                self._degrade(conn, "heartbeat timeout")
        logger.debug("Monitor thread exiting")

    # Inbound frames

    def _dispatch(self, conn: Any, raw: str | bytes) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")

        if raw == "pong":
            with self._lock:
                self._ping_sent_at = None
            logger.debug("Received pong")
            return

        try:
            msg = _parse_frame(raw)
        except ProtocolError as e:
            logger.warning(str(e))
            return

        event = msg.get("event")
        if event == "error":
            self._handle_error(conn, msg, raw)
            return
        if event == "login":
            logger.info("Received login event")
            return
        if event == "subscribe":
            arg = msg.get("arg") or {}
            logger.info(f"Subscribed to {arg.get('instType')} on channel {arg.get('channel')}")
            return
        if "data" not in msg:
            logger.debug(f"Ignoring frame without data: {raw[:200]}")
            return

        logger.debug(f"Received message: {raw}")
        self._updates.put(json.dumps(msg["data"]).encode("utf-8"))

    def _dispatch_loop(self) -> None:
        while True:
            payload = self._updates.get()
            if payload is None or self._stop.is_set():
                break
            handler = self._handler
            if handler is None:
                logger.warning("No order update handler registered, dropping message")
                continue
            try:
                handler(payload)
            except Exception as e:
                logger.error(f"Order update handler error: {e}", exc_info=True)
        pending = 0
        while True:
            try:
                if self._updates.get_nowait() is not None:
                    pending += 1
            except queue.Empty:
                break
        if pending:
            logger.warning(f"Dropping {pending} undelivered order updates on close")
        logger.debug("Dispatcher thread exiting")

    def _handle_error(self, conn: Any, msg: dict[str, Any], raw: str) -> None:
        code = str(msg.get("code", ""))
        text = str(msg.get("msg", ""))
        try:
            if code == ERR_NOT_LOGGED_IN or "not logged in" in text:
                logger.warning("Session reported not logged in, re-authenticating")
                self._send_login(conn)
            elif code == ERR_TOO_MANY_REQUESTS or "request too many" in text:
                logger.warning(f"Rate limited ({raw}), re-subscribing")
                self._send_subscribe(conn)
            else:
                logger.error(f"Received error message: {raw}")
        except ExchangeConnectionError as e:
            logger.warning(f"Recovery send failed: {e}")
            self._degrade(conn, "recovery send failed")
