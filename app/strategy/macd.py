"""
Strategia MACD - przecięcie linii MACD z linią sygnału
"""

from typing import Sequence

from core.models import Candle, Signal, SignalType
from core.strategy_base import BaseStrategy
from utils.indicators import macd


class MacdStrategy(BaseStrategy):
    strategy_id = "macd"
    default_params = {"fast": 12, "slow": 26, "signal": 9}

    def __init__(self, params=None):
        super().__init__(params)
        self.fast = int(self.params["fast"])
        self.slow = int(self.params["slow"])
        self.signal_period = int(self.params["signal"])
        if not 0 < self.fast < self.slow or self.signal_period <= 0:
            raise ValueError("MACD periods must satisfy 0 < fast < slow and signal > 0")

    @property
    def required_candles(self) -> int:
        # dwie wartości linii sygnału, żeby wykryć przecięcie
        return self.slow + self.signal_period

    def _evaluate(self, candles: Sequence[Candle], current_price: float) -> Signal:
        data = macd(self.closes(candles), self.fast, self.slow, self.signal_period)
        macd_prev, macd_now = data['macd'][-2], data['macd'][-1]
        signal_prev, signal_now = data['signal'][-2], data['signal'][-1]

        if macd_prev <= signal_prev and macd_now > signal_now:
            return self.signal(SignalType.BUY, f"MACD crossed above signal ({macd_now:.4f})", current_price)
        if macd_prev >= signal_prev and macd_now < signal_now:
            return self.signal(SignalType.SELL, f"MACD crossed below signal ({macd_now:.4f})", current_price)
        return self.signal(SignalType.HOLD, "no MACD crossover", current_price)
