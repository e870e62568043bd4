"""
Strategia wstęg Bollingera
"""

from typing import Sequence

from core.models import Candle, Signal, SignalType
from core.strategy_base import BaseStrategy
from utils.indicators import bollinger_bands


class BandsStrategy(BaseStrategy):
    """BUY przy dotknięciu dolnej wstęgi, SELL przy dotknięciu górnej"""

    strategy_id = "bands"
    default_params = {"window": 20, "k": 2.0}

    def __init__(self, params=None):
        super().__init__(params)
        self.window = int(self.params["window"])
        self.k = float(self.params["k"])
        if self.window <= 1 or self.k <= 0:
            raise ValueError("window must be > 1 and k must be positive")

    @property
    def required_candles(self) -> int:
        return self.window

    def _evaluate(self, candles: Sequence[Candle], current_price: float) -> Signal:
        bands = bollinger_bands(self.closes(candles), self.window, self.k)
        if bands['std'] == 0:
            return self.signal(SignalType.HOLD, "zero volatility", current_price)
        if current_price <= bands['lower']:
            return self.signal(
                SignalType.BUY,
                f"price {current_price:.4f} at or below lower band {bands['lower']:.4f}",
                current_price,
            )
        if current_price >= bands['upper']:
            return self.signal(
                SignalType.SELL,
                f"price {current_price:.4f} at or above upper band {bands['upper']:.4f}",
                current_price,
            )
        return self.signal(SignalType.HOLD, "price inside bands", current_price)
