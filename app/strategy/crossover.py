"""
Strategia przecięcia średnich kroczących (SMA krótka / SMA długa)
"""

from typing import Sequence

from core.models import Candle, Signal, SignalType
from core.strategy_base import BaseStrategy
from utils.indicators import sma


class CrossoverStrategy(BaseStrategy):
    """
    BUY gdy krótka średnia przecina długą od dołu dokładnie na ostatniej
    świecy, SELL przy przecięciu od góry, w pozostałych przypadkach HOLD.
    """

    strategy_id = "crossover"
    default_params = {"short_window": 5, "long_window": 20}

    def __init__(self, params=None):
        super().__init__(params)
        self.short_window = int(self.params["short_window"])
        self.long_window = int(self.params["long_window"])
        if not 0 < self.short_window < self.long_window:
            raise ValueError(
                f"short_window ({self.short_window}) must be positive and below long_window ({self.long_window})"
            )

    @property
    def required_candles(self) -> int:
        return self.long_window + 1

    def _evaluate(self, candles: Sequence[Candle], current_price: float) -> Signal:
        closes = self.closes(candles)
        previous = closes[:-1]

        short_prev, long_prev = sma(previous, self.short_window), sma(previous, self.long_window)
        short_now, long_now = sma(closes, self.short_window), sma(closes, self.long_window)

        if short_prev <= long_prev and short_now > long_now:
            return self.signal(
                SignalType.BUY,
                f"SMA{self.short_window} crossed above SMA{self.long_window} ({short_now:.4f} > {long_now:.4f})",
                current_price,
            )
        if short_prev >= long_prev and short_now < long_now:
            return self.signal(
                SignalType.SELL,
                f"SMA{self.short_window} crossed below SMA{self.long_window} ({short_now:.4f} < {long_now:.4f})",
                current_price,
            )
        return self.signal(SignalType.HOLD, "no moving average crossover", current_price)
