"""
Wskaźniki techniczne liczone na listach cen zamknięcia.

Funkcje zwracają None, gdy danych jest za mało.
"""

from typing import Dict, List, Optional, Sequence


def sma(prices: Sequence[float], period: int) -> Optional[float]:
    """Prosta średnia krocząca z ostatnich ``period`` cen"""
    if period <= 0 or len(prices) < period:
        return None
    return sum(prices[-period:]) / period


def ema_series(prices: Sequence[float], period: int) -> List[float]:
    """Seria EMA zaczynająca się od SMA pierwszych ``period`` cen"""
    if period <= 0 or len(prices) < period:
        return []
    multiplier = 2 / (period + 1)
    ema = sum(prices[:period]) / period
    series = [ema]
    for price in prices[period:]:
        ema = (price * multiplier) + (ema * (1 - multiplier))
        series.append(ema)
    return series


def ema(prices: Sequence[float], period: int) -> Optional[float]:
    series = ema_series(prices, period)
    return series[-1] if series else None


def rsi(prices: Sequence[float], period: int = 14) -> Optional[float]:
    """RSI z wygładzaniem Wildera"""
    if period <= 0 or len(prices) < period + 1:
        return None

    deltas = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
    gains = [d if d > 0 else 0.0 for d in deltas]
    losses = [-d if d < 0 else 0.0 for d in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 50.0 if avg_gain == 0 else 100.0

    rs = avg_gain / avg_loss
    return 100 - (100 / (1 + rs))


def stddev(prices: Sequence[float], period: int) -> Optional[float]:
    """Odchylenie standardowe populacji z ostatnich ``period`` cen"""
    middle = sma(prices, period)
    if middle is None:
        return None
    recent = prices[-period:]
    variance = sum((p - middle) ** 2 for p in recent) / period
    return variance ** 0.5


def bollinger_bands(prices: Sequence[float], period: int = 20, std_dev: float = 2.0) -> Optional[Dict[str, float]]:
    middle = sma(prices, period)
    if middle is None:
        return None
    std = stddev(prices, period)
    return {
        'upper': middle + std * std_dev,
        'middle': middle,
        'lower': middle - std * std_dev,
        'std': std,
    }


def macd(prices: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9) -> Optional[Dict[str, List[float]]]:
    """
    MACD wraz z historią linii sygnału

    Returns:
        Słownik z listami 'macd', 'signal', 'histogram' wyrównanymi do końca
        serii, albo None gdy danych jest za mało
    """
    if fast >= slow or len(prices) < slow + signal - 1:
        return None
    fast_series = ema_series(prices, fast)
    slow_series = ema_series(prices, slow)
    # wyrównanie do ostatnich wartości - seria wolna jest krótsza
    offset = len(fast_series) - len(slow_series)
    macd_line = [f - s for f, s in zip(fast_series[offset:], slow_series)]
    signal_line = ema_series(macd_line, signal)
    if not signal_line:
        return None
    macd_tail = macd_line[-len(signal_line):]
    return {
        'macd': macd_tail,
        'signal': signal_line,
        'histogram': [m - s for m, s in zip(macd_tail, signal_line)],
    }
