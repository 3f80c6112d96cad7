"""Trading strategies."""

from botcoin.trading.strategy.ladder import LadderProcess, UpdateOutcome

__all__ = ["LadderProcess", "UpdateOutcome"]
