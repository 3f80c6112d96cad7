"""Bot supervisor: wires the order stream to the per-symbol ladders."""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from botcoin.trading.config import TradingConfig
from botcoin.trading.errors import ConfigurationError, ProtocolError
from botcoin.trading.exchange.base import BaseExchange
from botcoin.trading.exchange.bitget_client import BitgetClient
from botcoin.trading.exchange.bitget_ws import BitgetWebSocket
from botcoin.trading.orders.order import OrderUpdate
from botcoin.trading.strategy.ladder import LadderProcess, UpdateOutcome

logger = logging.getLogger(__name__)


class Bot:
    """Main trading orchestrator.

    Owns one LadderProcess per configured symbol, the REST gateway and the
    WebSocket session. Order-update batches from the session are decoded
    here and routed to the process for each record's symbol; a process
    whose trading is complete is removed from the active set.

    Attributes:
        config: Trading configuration
        exchange: Order gateway
        stream: Order-update WebSocket session
        processes: Active ladders by symbol
        finished: Set once no active ladders remain
    """

    def __init__(
        self,
        config: TradingConfig,
        exchange: BaseExchange | None = None,
        stream: BitgetWebSocket | None = None,
    ):
        self.config = config
        self.exchange = exchange or BitgetClient(config)
        self.stream = stream or BitgetWebSocket(config)
        self.processes: dict[str, LadderProcess] = {}
        self.finished = threading.Event()
        self._mu = threading.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        with self._mu:
            return self._running

    @property
    def active_symbols(self) -> list[str]:
        with self._mu:
            return sorted(self.processes)

    def setup(self) -> None:
        """Create the per-symbol ladders and resolve their buy prices.

        Raises:
            ConfigurationError: If the configuration is invalid
            NotFoundError: If a relative buy level has no current price
        """
        errors = self.config.validate()
        if errors:
            raise ConfigurationError(f"Invalid configuration: {errors}")

        processes = {}
        for pair in self.config.trading_processes:
            process = LadderProcess(
                pair,
                self.exchange,
                sell_fill_policy=self.config.sell_fill_policy,
                settle_delay=self.config.settle_delay,
                position_retries=self.config.position_retries,
                position_retry_delay=self.config.position_retry_delay,
            )
            process.initialize()
            processes[pair.symbol] = process

        with self._mu:
            self.processes = processes
        self.finished.clear()
        logger.info(f"Initialized trading processes for {', '.join(processes)}")

    def start(self) -> None:
        """Open the order stream and place the initial buy ladders.

        Raises:
            RuntimeError: If the bot is already running
            ConfigurationError: If a symbol does not match the trading mode
        """
        with self._mu:
            if self._running:
                raise RuntimeError("bot is already running")
            self._running = True
        try:
            if not self.processes:
                self.setup()
            self.stream.register_handler(self.handle_order_update)
            logger.info("Registered order update handler")
            self.stream.open()
        except Exception:
            with self._mu:
                self._running = False
            raise

        processes = list(self.processes.values())
        with ThreadPoolExecutor(
            max_workers=len(processes) or 1, thread_name_prefix="buy-placement"
        ) as pool:
            futures = {pool.submit(p.place_buy_orders): p.symbol for p in processes}
        for future, symbol in futures.items():
            placed = future.result()
            logger.info(f"Placed {placed} initial buy orders for {symbol}")

    def stop(self) -> None:
        """Close the stream and REST client. Safe to call more than once."""
        with self._mu:
            if not self._running:
                return
            self._running = False
        logger.info("Stopping trading bot...")
        self.stream.close()
        self.exchange.close()
        logger.info("Trading bot stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every ladder has completed, or timeout. Returns True if finished."""
        return self.finished.wait(timeout)

    def handle_order_update(self, payload: bytes) -> None:
        """Decode an order-update batch and dispatch each record by symbol."""
        try:
            records = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Failed to parse order update: {e}; update data: {payload[:500]!r}")
            return
        if not isinstance(records, list):
            logger.error(f"Order update is not a list: {payload[:500]!r}")
            return

        for record in records:
            try:
                update = OrderUpdate.from_dict(record)
            except ProtocolError as e:
                logger.error(f"Dropping malformed order record: {e}")
                continue
            logger.info(
                f"Received order update: status {update.status} "
                f"for order with id {update.order_id}"
            )
            self._dispatch(update)

    def _dispatch(self, update: OrderUpdate) -> None:
        with self._mu:
            process = self.processes.get(update.symbol)
        if process is None:
            logger.info(f"Received order update for unknown symbol: {update.symbol}")
            return

        outcome = process.on_order_update(update)
        if outcome != UpdateOutcome.IGNORED:
            logger.info(f"Ladder state after {outcome.value}: {process.snapshot()}")
        if outcome == UpdateOutcome.COMPLETED:
            with self._mu:
                if self.processes.get(update.symbol) is process:
                    del self.processes[update.symbol]
                remaining = len(self.processes)
            logger.info(
                f"Removed trading process for {update.symbol}, {remaining} remaining"
            )
            if remaining == 0:
                self.finished.set()
