"""
Strategy Engine - rejestr strategii i bezpieczna ewaluacja sygnałów

Mapuje identyfikator strategii (wraz z aliasami używanymi przez UI) na
klasę strategii. Błędy wyboru strategii i błędy wewnątrz ewaluatora są
zamieniane na sygnał HOLD z powodem - nigdy nie przerywają ticka.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type

from app.strategy.bands import BandsStrategy
from app.strategy.crossover import CrossoverStrategy
from app.strategy.macd import MacdStrategy
from app.strategy.oscillator import OscillatorStrategy
from core.errors import StrategyError
from core.models import Candle, Signal
from core.strategy_base import BaseStrategy
from utils.logger import LogType, get_logger

logger = get_logger("strategy_engine", LogType.BOT)


class StrategyType(Enum):
    """Typy strategii"""
    CROSSOVER = "crossover"
    OSCILLATOR = "oscillator"
    BANDS = "bands"
    MACD = "macd"


STRATEGY_CLASSES: Dict[str, Type[BaseStrategy]] = {
    StrategyType.CROSSOVER.value: CrossoverStrategy,
    StrategyType.OSCILLATOR.value: OscillatorStrategy,
    StrategyType.BANDS.value: BandsStrategy,
    StrategyType.MACD.value: MacdStrategy,
}

STRATEGY_ALIASES: Dict[str, str] = {
    "simplemovingaverage": StrategyType.CROSSOVER.value,
    "sma": StrategyType.CROSSOVER.value,
    "relativestrengthindex": StrategyType.OSCILLATOR.value,
    "rsi": StrategyType.OSCILLATOR.value,
    "bollingerbands": StrategyType.BANDS.value,
    "bollinger": StrategyType.BANDS.value,
}


def resolve_strategy_id(strategy_id: str) -> Optional[str]:
    """Zwraca kanoniczny identyfikator strategii albo None dla nieznanego"""
    key = (strategy_id or "").strip().lower()
    if key in STRATEGY_CLASSES:
        return key
    return STRATEGY_ALIASES.get(key)


def is_known_strategy(strategy_id: str) -> bool:
    return resolve_strategy_id(strategy_id) is not None


def build_strategy(strategy_id: str, params: Optional[Mapping[str, Any]] = None) -> BaseStrategy:
    """
    Tworzy instancję strategii

    Raises:
        StrategyError: nieznany identyfikator lub niepoprawne parametry
    """
    canonical = resolve_strategy_id(strategy_id)
    if canonical is None:
        raise StrategyError(f"unknown strategy: {strategy_id}")
    try:
        return STRATEGY_CLASSES[canonical](params)
    except (TypeError, ValueError) as e:
        raise StrategyError(f"invalid parameters for {canonical}: {e}") from e


def evaluate_signal(
    strategy_id: str,
    params: Optional[Mapping[str, Any]],
    candles: Sequence[Candle],
    current_price: float,
) -> Signal:
    """
    Ewaluuje strategię; każdy błąd kończy się sygnałem HOLD

    Args:
        strategy_id: Identyfikator lub alias strategii
        params: Nadpisania parametrów strategii
        candles: Okno świec
        current_price: Bieżąca cena

    Returns:
        Signal
    """
    if resolve_strategy_id(strategy_id) is None:
        logger.warning(f"Unknown strategy '{strategy_id}' - holding")
        return Signal.hold(f"unknown strategy: {strategy_id}", current_price)

    try:
        strategy = build_strategy(strategy_id, params)
        return strategy.evaluate(candles, current_price)
    except Exception as e:
        logger.error(f"Strategy {strategy_id} failed: {e}")
        return Signal.hold(f"strategy error: {e}", current_price)


def describe_strategies() -> List[Dict[str, Any]]:
    """Opis dostępnych strategii dla UI"""
    described = []
    for strategy_id, cls in STRATEGY_CLASSES.items():
        described.append({
            "id": strategy_id,
            "name": cls.__name__,
            "description": (cls.__doc__ or "").strip().splitlines()[0] if cls.__doc__ else "",
            "aliases": sorted(a for a, target in STRATEGY_ALIASES.items() if target == strategy_id),
            "params": dict(cls.default_params),
        })
    return described
