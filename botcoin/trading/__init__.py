"""
Futures ladder trading on Bitget.

Key Components:
- TradingConfig: Credentials, trading mode and per-symbol ladders
- BitgetClient: Signed REST order gateway
- BitgetWebSocket: Self-healing private order-update stream
- LadderProcess: Per-symbol buy ladder / take-profit state machine
- Bot: Supervisor that routes stream updates to the ladders

Usage:
    from botcoin.trading import TradingConfig
    from botcoin.trading.bot import Bot

    config = TradingConfig.from_file("config.json")
    bot = Bot(config)
    bot.setup()
    bot.start()

For trading, run:
    python run_bot.py --config config.json --demo  # Demo instruments
    python run_bot.py --config config.json --live  # Real money
"""

from botcoin.trading.config import TradingConfig

__all__ = ["TradingConfig"]
