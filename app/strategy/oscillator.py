"""
Strategia oscylatora RSI (wygładzanie Wildera)
"""

from typing import Sequence

from core.models import Candle, Signal, SignalType
from core.strategy_base import BaseStrategy
from utils.indicators import rsi


class OscillatorStrategy(BaseStrategy):
    """BUY poniżej progu wyprzedania, SELL powyżej progu wykupienia"""

    strategy_id = "oscillator"
    default_params = {"period": 14, "oversold": 30.0, "overbought": 70.0}

    def __init__(self, params=None):
        super().__init__(params)
        self.period = int(self.params["period"])
        self.oversold = float(self.params["oversold"])
        self.overbought = float(self.params["overbought"])
        if self.period <= 0:
            raise ValueError("period must be positive")
        if not 0 <= self.oversold < self.overbought <= 100:
            raise ValueError("thresholds must satisfy 0 <= oversold < overbought <= 100")

    @property
    def required_candles(self) -> int:
        return self.period + 1

    def _evaluate(self, candles: Sequence[Candle], current_price: float) -> Signal:
        value = rsi(self.closes(candles), self.period)
        if value < self.oversold:
            return self.signal(SignalType.BUY, f"RSI oversold ({value:.2f} < {self.oversold:g})", current_price)
        if value > self.overbought:
            return self.signal(SignalType.SELL, f"RSI overbought ({value:.2f} > {self.overbought:g})", current_price)
        return self.signal(SignalType.HOLD, f"RSI neutral ({value:.2f})", current_price)
