"""
Hierarchia wyjątków silnika botów

Błędy walidacji i łączności są zwracane bezpośrednio do wywołującego
``BotManager.start``. Błędy z pojedynczego ticka są przechwytywane przez
workera bota i zamieniane na zdarzenia ``bot.error``.
"""

from __future__ import annotations

from typing import List, Optional


class BotEngineError(Exception):
    """Bazowy wyjątek silnika"""

    code = "UNKNOWN_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def __str__(self) -> str:
        return self.message


class ValidationError(BotEngineError):
    """Niepoprawne żądanie startu bota (brakujące lub błędne pola)"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = list(problems or [])


class ConnectivityError(BotEngineError):
    """Gateway niedostępny lub odrzucił uwierzytelnienie podczas startu"""

    code = "CONNECTIVITY_ERROR"


class TickError(BotEngineError):
    """Nieoczekiwany błąd podczas wykonywania ticka"""

    code = "TICK_ERROR"


class StrategyError(BotEngineError):
    """Nieznana strategia lub błąd wewnątrz ewaluatora"""

    code = "STRATEGY_ERROR"


class GatewayError(BotEngineError):
    """Błąd zwrócony przez Market Data & Order Gateway"""

    code = "GATEWAY_ERROR"


class NetworkError(GatewayError):
    code = "NETWORK_TIMEOUT"


class AuthenticationError(GatewayError):
    code = "INVALID_API_KEY"


class RateLimitError(GatewayError):
    code = "RATE_LIMIT_EXCEEDED"


class OrderRejectedError(GatewayError):
    code = "ORDER_REJECTED"


class InsufficientBalanceError(OrderRejectedError):
    code = "INSUFFICIENT_BALANCE"


# (fragment komunikatu, kod) - kolejność ma znaczenie, pierwsze dopasowanie wygrywa
_MESSAGE_CODES = (
    ("insufficient", InsufficientBalanceError.code),
    ("balance", InsufficientBalanceError.code),
    ("rate limit", RateLimitError.code),
    ("too many requests", RateLimitError.code),
    ("api-key", AuthenticationError.code),
    ("api key", AuthenticationError.code),
    ("signature", AuthenticationError.code),
    ("unauthorized", AuthenticationError.code),
    ("timeout", NetworkError.code),
    ("timed out", NetworkError.code),
    ("network", NetworkError.code),
    ("connection", NetworkError.code),
    ("rejected", OrderRejectedError.code),
    ("min_notional", OrderRejectedError.code),
)


def classify_error(error: BaseException) -> str:
    """
    Zwraca kod błędu dla dowolnego wyjątku

    Args:
        error: Wyjątek do sklasyfikowania

    Returns:
        Kod błędu (np. "INSUFFICIENT_BALANCE")
    """
    if isinstance(error, BotEngineError):
        return error.code

    message = str(error).lower()
    for fragment, code in _MESSAGE_CODES:
        if fragment in message:
            return code
    return BotEngineError.code
