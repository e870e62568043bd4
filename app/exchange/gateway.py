"""
Interfejs Market Data & Order Gateway używany przez silnik botów.

Wszystkie operacje są asynchroniczne; błędy zgłaszane są jako
podklasy ``core.errors.GatewayError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from core.models import Candle, GatewayCredentials, OrderFill


class MarketGateway(ABC):
    """Bazowa klasa bramki rynkowej"""

    name = "gateway"

    @abstractmethod
    async def ping(self) -> bool:
        """Sprawdza dostępność giełdy"""

    @abstractmethod
    async def get_account_info(self, credentials: GatewayCredentials) -> Dict[str, Any]:
        """Salda konta: {asset: {'free', 'locked', 'total'}}"""

    @abstractmethod
    async def get_current_price(self, symbol: str) -> float:
        ...

    @abstractmethod
    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        """Ostatnie ``limit`` świec, od najstarszej"""

    @abstractmethod
    async def place_market_order(
        self,
        credentials: GatewayCredentials,
        symbol: str,
        side: str,
        quantity: float,
    ) -> OrderFill:
        ...

    async def close(self) -> None:
        return None


QUOTE_ASSETS = ("USDT", "FDUSD", "USDC", "BUSD", "TUSD", "EUR", "USD", "TRY", "BTC", "ETH", "BNB")


def split_symbol(symbol: str) -> tuple[str, str]:
    """'BNBUSDT' lub 'BNB/USDT' -> ('BNB', 'USDT')"""
    if "/" in symbol:
        base, quote = symbol.split("/", 1)
        return base.upper(), quote.split(":", 1)[0].upper()
    upper = symbol.upper()
    for quote in QUOTE_ASSETS:
        if upper.endswith(quote) and len(upper) > len(quote):
            return upper[: -len(quote)], quote
    raise ValueError(f"Cannot determine quote asset of symbol '{symbol}'")


def to_unified_symbol(symbol: str) -> str:
    base, quote = split_symbol(symbol)
    return f"{base}/{quote}"
