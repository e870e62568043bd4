"""
Podstawowe klasy dla strategii tradingowych
"""

from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence

from core.models import Candle, Signal, SignalType
from utils.logger import get_logger

logger = get_logger("strategy_base")

INSUFFICIENT_DATA = "insufficient data"


class BaseStrategy:
    """
    Bazowa klasa strategii tradingowej

    Strategia jest czystą funkcją: okno świec + bieżąca cena -> Signal.
    Nie wykonuje I/O i nie przechowuje stanu między wywołaniami.
    """

    strategy_id: ClassVar[str] = "base"
    default_params: ClassVar[Dict[str, Any]] = {}

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        merged = dict(self.default_params)
        for key, value in (params or {}).items():
            if key in merged:
                merged[key] = value
            else:
                logger.debug(f"Ignoring unknown parameter '{key}' for {self.strategy_id}")
        self.params = merged

    @property
    def required_candles(self) -> int:
        """Minimalna liczba świec potrzebna do ewaluacji"""
        raise NotImplementedError

    def evaluate(self, candles: Sequence[Candle], current_price: float) -> Signal:
        """
        Zwraca sygnał dla podanego okna

        Args:
            candles: Świece uporządkowane od najstarszej
            current_price: Bieżąca cena instrumentu

        Returns:
            Signal (HOLD z powodem "insufficient data" przy zbyt krótkim oknie)
        """
        needed = self.required_candles
        if len(candles) < needed:
            return Signal.hold(
                f"{INSUFFICIENT_DATA}: {len(candles)} of {needed} candles",
                current_price,
            )
        return self._evaluate(candles, float(current_price))

    def _evaluate(self, candles: Sequence[Candle], current_price: float) -> Signal:
        raise NotImplementedError

    @staticmethod
    def closes(candles: Sequence[Candle]) -> List[float]:
        return [c.close for c in candles]

    def signal(self, action: SignalType, reason: str, price: float) -> Signal:
        return Signal(action, reason, float(price))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.params})"
