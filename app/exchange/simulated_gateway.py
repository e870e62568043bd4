"""Offline paper-trading gateway with random-walk market data."""

from __future__ import annotations

import asyncio
import itertools
import random
from typing import Dict, List, Optional

from app.exchange.gateway import MarketGateway, split_symbol
from core.errors import AuthenticationError, InsufficientBalanceError, OrderRejectedError
from core.models import Candle, GatewayCredentials, OrderFill, to_millis, utc_now
from core.schedule import INTERVAL_SECONDS, DEFAULT_INTERVAL
from utils.logger import LogType, get_logger

logger = get_logger("simulated_gateway", LogType.NETWORK)


class SimulatedGateway(MarketGateway):
    """
    Generic gateway mimicking the exchange API.

    Every ``get_candles`` call moves the market by one candle, so a bot
    ticking against it sees a fresh close on each tick.
    """

    name = "simulated"

    def __init__(
        self,
        base_prices: Optional[Dict[str, float]] = None,
        balances: Optional[Dict[str, float]] = None,
        fee_rate: float = 0.001,
        volatility: float = 0.004,
        seed: Optional[int] = None,
    ) -> None:
        self.base_prices = {k.upper(): float(v) for k, v in (base_prices or {}).items()}
        self._balances: Dict[str, float] = dict(balances or {
            'USDT': 10_000.0,
            'BTC': 0.5,
            'ETH': 5.0,
            'BNB': 10.0,
        })
        self.fee_rate = fee_rate
        self.volatility = volatility
        self._rng = random.Random(seed)
        self._history: Dict[str, List[Candle]] = {}
        self._id_seq = itertools.count(1)
        self.orders: List[OrderFill] = []

    async def ping(self) -> bool:
        await asyncio.sleep(0)
        return True

    async def get_account_info(self, credentials: GatewayCredentials) -> Dict[str, Dict[str, float]]:
        await asyncio.sleep(0)
        self._check_credentials(credentials)
        return {
            asset: {'free': amount, 'locked': 0.0, 'total': amount}
            for asset, amount in self._balances.items()
        }

    async def get_current_price(self, symbol: str) -> float:
        await asyncio.sleep(0)
        return self._series(symbol, DEFAULT_INTERVAL, 1)[-1].close

    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        await asyncio.sleep(0)
        window = list(self._series(symbol, interval, limit)[-limit:])
        self._append_candle(symbol.upper(), interval)
        return window

    async def place_market_order(
        self,
        credentials: GatewayCredentials,
        symbol: str,
        side: str,
        quantity: float,
    ) -> OrderFill:
        await asyncio.sleep(0)
        self._check_credentials(credentials)
        if quantity <= 0:
            raise OrderRejectedError(f"Order rejected: invalid quantity {quantity}")

        base, quote = split_symbol(symbol)
        price = self._series(symbol, DEFAULT_INTERVAL, 1)[-1].close
        notional = price * quantity
        commission = notional * self.fee_rate
        side = side.upper()

        if side == "BUY":
            if self._balances.get(quote, 0.0) < notional + commission:
                raise InsufficientBalanceError(
                    f"Insufficient balance: need {notional + commission:.8f} {quote}"
                )
            self._balances[quote] = self._balances.get(quote, 0.0) - notional - commission
            self._balances[base] = self._balances.get(base, 0.0) + quantity
        elif side == "SELL":
            if self._balances.get(base, 0.0) < quantity:
                raise InsufficientBalanceError(f"Insufficient balance: need {quantity:.8f} {base}")
            self._balances[base] = self._balances.get(base, 0.0) - quantity
            self._balances[quote] = self._balances.get(quote, 0.0) + notional - commission
        else:
            raise OrderRejectedError(f"Order rejected: unsupported side {side}")

        fill = OrderFill(
            order_id=f"sim-{next(self._id_seq)}",
            symbol=symbol.upper(),
            side=side,
            quantity=quantity,
            price=price,
            commission=commission,
        )
        self.orders.append(fill)
        logger.info(f"Simulated {side} {quantity} {symbol} @ {price:.4f}")
        return fill

    def _check_credentials(self, credentials: Optional[GatewayCredentials]) -> None:
        if credentials is None or not credentials.api_key or not credentials.api_secret:
            raise AuthenticationError("Invalid API key or secret")

    def _series(self, symbol: str, interval: str, minimum: int) -> List[Candle]:
        key = symbol.upper()
        history = self._history.get(key)
        if history is None:
            history = self._history[key] = []
        while len(history) < max(minimum, 1):
            self._append_candle(key, interval, prepend=True)
        return history

    def _append_candle(self, key: str, interval: str, prepend: bool = False) -> None:
        history = self._history.setdefault(key, [])
        step_ms = INTERVAL_SECONDS.get(interval, INTERVAL_SECONDS[DEFAULT_INTERVAL]) * 1000
        if not history:
            open_price = self.base_prices.get(key, 100.0)
            open_time = to_millis(utc_now()) // step_ms * step_ms
        elif prepend:
            # dokładanie historii wstecz: kolejna świeca kończy się na otwarciu najstarszej
            oldest = history[0]
            close = oldest.open
            open_price = close / (1 + self._rng.gauss(0, self.volatility))
            history.insert(0, self._make_candle(oldest.open_time - step_ms, open_price, close))
            return
        else:
            last = history[-1]
            open_price = last.close
            open_time = last.open_time + step_ms
        close = open_price * (1 + self._rng.gauss(0, self.volatility))
        history.append(self._make_candle(open_time, open_price, close))

    def _make_candle(self, open_time: int, open_price: float, close: float) -> Candle:
        spread = abs(close - open_price) + open_price * self.volatility * self._rng.random()
        return Candle(
            open_time=open_time,
            open=open_price,
            high=max(open_price, close) + spread / 2,
            low=max(min(open_price, close) - spread / 2, 0.0),
            close=close,
            volume=round(self._rng.uniform(1, 100), 4),
        )
