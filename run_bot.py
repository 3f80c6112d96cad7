#!/usr/bin/env python3
"""
Bitget futures ladder bot.

Places a ladder of limit buys below market for each configured symbol,
turns every buy fill into a single take-profit sell above the average
entry price, and listens for fills on Bitget's private order stream.

Usage:
    python run_bot.py --config config.json [--demo | --live] [--status]

Credentials can live in the config file or in a .env file
(BITGET_API_KEY, BITGET_SECRET_KEY, BITGET_PASSPHRASE).
"""

import argparse
import logging
import signal
import sys
import threading

from dotenv import load_dotenv

from botcoin.trading.bot import Bot
from botcoin.trading.config import TradingConfig
from botcoin.trading.errors import BotcoinError
from botcoin.trading.exchange.bitget_client import BitgetClient

logger = logging.getLogger("run_bot")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler("bitget_bot.log"),
        ],
    )


def setup_signal_handlers(shutdown: threading.Event) -> None:
    """Setup signal handlers for graceful shutdown.

    Args:
        shutdown: Event set when a termination signal arrives
    """
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}")
        shutdown.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def print_status(config: TradingConfig) -> None:
    """Print pending orders and positions for the configured symbols."""
    client = BitgetClient(config)
    try:
        for pair in config.trading_processes:
            orders = client.get_pending_orders(pair.symbol)
            print(f"{pair.symbol}: {len(orders)} pending orders")
            for o in orders:
                print(
                    f"  {o.get('orderId')} {o.get('side')} {o.get('size')} "
                    f"@ {o.get('price')} ({o.get('status')})"
                )
        positions = client.get_all_positions()
        print(f"{len(positions)} open positions")
        for p in positions:
            print(f"  {p.symbol} {p.hold_side} {p.total} @ {p.open_price_avg}")
    finally:
        client.close()


def main() -> int:
    """Main entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Bitget Futures Ladder Bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config.json",
        help="Path to configuration file (default: config.json)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--demo",
        action="store_true",
        help="Trade demo instruments (S-prefixed symbols)",
    )
    mode.add_argument(
        "--live",
        action="store_true",
        help="Trade live instruments (real money)",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print pending orders and positions, then exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    try:
        config = TradingConfig.from_file(args.config)
    except BotcoinError as e:
        setup_logging("INFO")
        logger.error(f"Failed to load configuration: {e}")
        return 1

    setup_logging("DEBUG" if args.verbose else config.log_level)

    if args.demo:
        config.is_demo_trading = True
    if args.live:
        config.is_demo_trading = False

    if args.status:
        try:
            print_status(config)
        except BotcoinError as e:
            logger.error(f"Failed to fetch status: {e}")
            return 1
        return 0

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        return 1

    if not config.is_demo_trading:
        print("\n" + "=" * 60)
        print("WARNING: LIVE TRADING MODE")
        print("Real money will be at risk!")
        print("=" * 60)
        confirm = input("Type 'CONFIRM' to proceed: ")
        if confirm != "CONFIRM":
            print("Aborted.")
            return 1

    shutdown = threading.Event()
    setup_signal_handlers(shutdown)

    bot = Bot(config)
    try:
        bot.setup()
        bot.start()
        logger.info("Trading bot running, press Ctrl+C to stop")
        while not shutdown.wait(1.0):
            if bot.finished.is_set():
                logger.info("All trading processes completed")
                break
        logger.info("Shutting down...")
    except BotcoinError as e:
        logger.error(f"Failed to run trading bot: {e}")
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        raise
    finally:
        bot.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
