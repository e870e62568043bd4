"""CCXT-based live gateway implementation.

Relies on ``ccxt.async_support`` so every exchange call is awaited without
blocking other bots. Market data requests are retried with exponential
backoff on transient network errors; orders are never retried, because a
timed-out order may still have been executed.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import ccxt
import ccxt.async_support as ccxt_async

from app.exchange.gateway import MarketGateway, to_unified_symbol
from core.errors import (
    AuthenticationError,
    GatewayError,
    InsufficientBalanceError,
    NetworkError,
    OrderRejectedError,
    RateLimitError,
)
from core.models import Candle, GatewayCredentials, OrderFill, parse_timestamp, utc_now
from utils.retry import retry_async

logger = logging.getLogger(__name__)


def translate_ccxt_error(exc: Exception) -> GatewayError:
    """Maps a ccxt exception onto the engine's gateway error hierarchy."""
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, ccxt.InsufficientFunds):
        return InsufficientBalanceError(f"Insufficient balance: {message}")
    if isinstance(exc, ccxt.InvalidOrder):
        return OrderRejectedError(f"Order rejected: {message}")
    if isinstance(exc, (ccxt.AuthenticationError, ccxt.PermissionDenied)):
        return AuthenticationError(f"Authentication failed: {message}")
    if isinstance(exc, (ccxt.RateLimitExceeded, ccxt.DDoSProtection)):
        return RateLimitError(f"Rate limit exceeded: {message}")
    if isinstance(exc, ccxt.NetworkError):
        return NetworkError(f"Network error: {message}")
    return GatewayError(f"Exchange error: {message}")


class LiveCcxtGateway(MarketGateway):
    """Thin wrapper around ``ccxt`` exchange clients (one per API key)."""

    name = "ccxt"

    def __init__(
        self,
        exchange_id: str = "binance",
        *,
        sandbox: bool = True,
        timeout_ms: int = 10000,
        max_retries: int = 3,
        options: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not hasattr(ccxt_async, exchange_id):
            raise ValueError(f"Exchange '{exchange_id}' is not supported by ccxt")
        self.exchange_id = exchange_id
        self.sandbox = sandbox
        self.timeout_ms = timeout_ms
        self.max_retries = max_retries
        self.options = dict(options or {})
        self._public_client = None
        self._clients: Dict[str, Any] = {}

    def _make_client(self, credentials: Optional[GatewayCredentials] = None):
        config: Dict[str, Any] = {"enableRateLimit": True, "timeout": self.timeout_ms}
        if credentials is not None:
            config["apiKey"] = credentials.api_key
            config["secret"] = credentials.api_secret
            if credentials.passphrase:
                config["password"] = credentials.passphrase
        if self.options:
            config["options"] = dict(self.options)
        client = getattr(ccxt_async, self.exchange_id)(config)
        if self.sandbox:
            client.set_sandbox_mode(True)
        return client

    def _client_for(self, credentials: Optional[GatewayCredentials] = None):
        if credentials is None:
            if self._public_client is None:
                self._public_client = self._make_client()
            return self._public_client
        client = self._clients.get(credentials.api_key)
        if client is None:
            client = self._clients[credentials.api_key] = self._make_client(credentials)
        return client

    async def _market_call(self, operation: str, call):
        def _on_retry(attempt: int, exc: BaseException) -> None:
            logger.warning("%s on %s failed (attempt %s): %s", operation, self.exchange_id, attempt, exc)

        try:
            return await retry_async(
                call,
                max_retries=self.max_retries,
                exceptions=(ccxt.NetworkError,),
                on_retry=_on_retry,
            )
        except ccxt.BaseError as exc:
            raise translate_ccxt_error(exc) from exc

    async def ping(self) -> bool:
        try:
            await self._client_for().fetch_time()
            return True
        except ccxt.BaseError as exc:
            logger.error("Connection test for %s failed: %s", self.exchange_id, exc)
            return False

    async def get_account_info(self, credentials: GatewayCredentials) -> Dict[str, Any]:
        client = self._client_for(credentials)
        try:
            balances = await client.fetch_balance()
        except ccxt.BaseError as exc:
            raise translate_ccxt_error(exc) from exc

        normalised: Dict[str, Any] = {}
        for asset, info in balances.items():
            if not isinstance(info, dict) or "free" not in info:
                continue
            normalised[asset] = {
                "free": float(info.get("free") or 0.0),
                "locked": float(info.get("used") or 0.0),
                "total": float(info.get("total") or info.get("free") or 0.0),
            }
        return normalised

    async def get_current_price(self, symbol: str) -> float:
        client = self._client_for()
        ticker = await self._market_call("fetch_ticker", lambda: client.fetch_ticker(to_unified_symbol(symbol)))
        return float(ticker.get("last") or ticker.get("close") or ticker.get("ask") or 0.0)

    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        client = self._client_for()
        rows = await self._market_call(
            "fetch_ohlcv",
            lambda: client.fetch_ohlcv(to_unified_symbol(symbol), timeframe=interval, limit=limit),
        )
        return [Candle.from_ohlcv(row) for row in rows]

    async def place_market_order(
        self,
        credentials: GatewayCredentials,
        symbol: str,
        side: str,
        quantity: float,
    ) -> OrderFill:
        client = self._client_for(credentials)
        logger.debug(
            "Submitting market order: exchange=%s symbol=%s side=%s amount=%s",
            self.exchange_id,
            symbol,
            side,
            quantity,
        )
        try:
            order = await client.create_order(to_unified_symbol(symbol), "market", side.lower(), quantity)
        except ccxt.BaseError as exc:
            raise translate_ccxt_error(exc) from exc

        order_id = str(order.get("id"))
        if order.get("average") is None or order.get("filled") is None:
            # giełda potwierdziła tylko przyjęcie zlecenia - dociągnij szczegóły
            order = await self._refresh_order(client, order, symbol)

        filled = order.get("filled")
        if filled is not None and float(filled) <= 0:
            raise OrderRejectedError(
                f"Order {order_id} was not filled (status: {order.get('status') or 'unknown'})"
            )
        price = float(order.get("average") or order.get("price") or 0.0)
        if price <= 0:
            price = await self.get_current_price(symbol)
        if price <= 0:
            raise GatewayError(f"Order {order_id}: exchange returned no fill price for {symbol}")

        fee = order.get("fee") or {}
        return OrderFill(
            order_id=order_id,
            symbol=symbol,
            side=side.upper(),
            quantity=float(filled if filled is not None else quantity),
            price=price,
            commission=float(fee.get("cost") or 0.0),
            timestamp=parse_timestamp(order.get("timestamp")) or utc_now(),
        )

    async def _refresh_order(self, client, order: Dict[str, Any], symbol: str) -> Dict[str, Any]:
        try:
            fetched = await client.fetch_order(order.get("id"), to_unified_symbol(symbol))
        except ccxt.BaseError as exc:
            logger.warning("fetch_order for %s on %s failed: %s", order.get("id"), self.exchange_id, exc)
            return order
        merged = dict(order)
        merged.update({k: v for k, v in (fetched or {}).items() if v is not None})
        return merged

    async def close(self) -> None:
        clients = list(self._clients.values())
        if self._public_client is not None:
            clients.append(self._public_client)
        for client in clients:
            await client.close()
        self._clients.clear()
        self._public_client = None
