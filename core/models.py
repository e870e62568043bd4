"""
Modele danych silnika botów: konfiguracja, sygnały, świece, transakcje.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Container, Dict, Mapping, Optional, Sequence

from core.errors import ValidationError

TRADE_SOURCE_AUTO = "trading_bot_auto"
TRADE_SOURCE_MANUAL = "manual"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Przyjmuje datetime, ISO string albo epoch millis"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class SignalType(Enum):
    """Typ sygnału handlowego"""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class BotStatus(Enum):
    """Status bota"""
    STARTING = "starting"
    ACTIVE = "active"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class Signal:
    """Wynik ewaluacji strategii dla jednego ticka"""
    action: SignalType
    reason: str
    price: float

    @classmethod
    def hold(cls, reason: str, price: float) -> "Signal":
        return cls(SignalType.HOLD, reason, float(price))

    @property
    def is_hold(self) -> bool:
        return self.action is SignalType.HOLD

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action.value, "reason": self.reason, "price": self.price}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Signal":
        return cls(SignalType(data["action"]), data.get("reason", ""), float(data.get("price", 0.0)))


@dataclass(frozen=True)
class Candle:
    """Świeca OHLCV"""
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @classmethod
    def from_ohlcv(cls, row: Sequence[Any]) -> "Candle":
        """Tworzy świecę z wiersza w formacie ccxt: [ts, o, h, l, c, v]"""
        volume = row[5] if len(row) > 5 and row[5] is not None else 0.0
        return cls(int(row[0]), float(row[1]), float(row[2]), float(row[3]), float(row[4]), float(volume))


@dataclass(frozen=True)
class GatewayCredentials:
    """Uchwyt do kluczy API. Nigdy nie jest logowany ani zapisywany jawnie."""
    api_key: str
    api_secret: str
    passphrase: Optional[str] = None

    def __repr__(self) -> str:
        return f"GatewayCredentials(api_key='{_mask(self.api_key)}', api_secret='***')"

    __str__ = __repr__

    def to_dict(self) -> Dict[str, Any]:
        """Jawna postać - wyłącznie do zaszyfrowania przez CredentialVault"""
        data = {"api_key": self.api_key, "api_secret": self.api_secret}
        if self.passphrase:
            data["passphrase"] = self.passphrase
        return data

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GatewayCredentials":
        api_key = data.get("api_key") or data.get("apiKey")
        api_secret = data.get("api_secret") or data.get("apiSecret") or data.get("secret")
        if not api_key or not api_secret:
            raise ValidationError("Gateway credentials require api key and secret",
                                  ["credentials"])
        return cls(str(api_key), str(api_secret), data.get("passphrase"))


def _mask(value: str) -> str:
    if not value:
        return ""
    if len(value) <= 6:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


def _first(request: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in request and request[name] is not None:
            return request[name]
    return None


def _positive_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


@dataclass(frozen=True)
class BotConfig:
    """Konfiguracja bota - niezmienna od momentu startu"""
    symbol: str
    strategy_id: str
    amount: float
    interval: str
    take_profit_pct: float
    stop_loss_pct: float
    credentials: GatewayCredentials = field(repr=False, compare=False)
    strategy_params: Dict[str, Any] = field(default_factory=dict)
    name: Optional[str] = None

    @classmethod
    def from_request(cls, request: Any) -> "BotConfig":
        """
        Buduje konfigurację z żądania startu (snake_case lub camelCase)

        Args:
            request: Słownik żądania albo gotowy BotConfig

        Returns:
            Zwalidowana konfiguracja

        Raises:
            ValidationError: gdy brakuje pól lub są niepoprawne
        """
        if isinstance(request, BotConfig):
            request.validate()
            return request
        if not isinstance(request, Mapping):
            raise ValidationError("Start request must be a mapping", ["request"])

        problems = []
        symbol = _first(request, "symbol")
        if not isinstance(symbol, str) or not symbol.strip():
            problems.append("symbol")

        strategy_id = _first(request, "strategy_id", "strategyId", "strategy")
        if not isinstance(strategy_id, str) or not strategy_id.strip():
            problems.append("strategy_id")

        amount = _positive_number(_first(request, "amount"))
        if amount is None:
            problems.append("amount")

        interval = _first(request, "interval")
        if not isinstance(interval, str) or not interval.strip():
            problems.append("interval")

        take_profit = _positive_number(_first(request, "take_profit_pct", "takeProfitPct", "takeProfit"))
        if take_profit is None:
            problems.append("take_profit_pct")

        stop_loss = _positive_number(_first(request, "stop_loss_pct", "stopLossPct", "stopLoss"))
        if stop_loss is None:
            problems.append("stop_loss_pct")

        raw_credentials = _first(request, "credentials", "gatewayCredentials", "apiConfig")
        credentials = None
        if isinstance(raw_credentials, GatewayCredentials):
            credentials = raw_credentials
        elif isinstance(raw_credentials, Mapping):
            try:
                credentials = GatewayCredentials.from_mapping(raw_credentials)
            except ValidationError:
                problems.append("credentials")
        else:
            problems.append("credentials")

        params = _first(request, "strategy_params", "strategyParams") or {}
        if not isinstance(params, Mapping):
            problems.append("strategy_params")

        if problems:
            raise ValidationError(
                f"Invalid bot configuration: missing or malformed {', '.join(problems)}",
                problems,
            )

        return cls(
            symbol=symbol.strip().upper(),
            strategy_id=strategy_id.strip(),
            amount=amount,
            interval=interval.strip(),
            take_profit_pct=take_profit,
            stop_loss_pct=stop_loss,
            credentials=credentials,
            strategy_params=dict(params),
            name=_first(request, "name"),
        )

    def validate(self) -> None:
        """Ponowna walidacja gotowego obiektu (np. zbudowanego ręcznie)"""
        self.from_request({
            "symbol": self.symbol,
            "strategy_id": self.strategy_id,
            "amount": self.amount,
            "interval": self.interval,
            "take_profit_pct": self.take_profit_pct,
            "stop_loss_pct": self.stop_loss_pct,
            "credentials": self.credentials,
            "strategy_params": self.strategy_params,
        })

    def to_record(self, sealed_credentials: Optional[str] = None) -> Dict[str, Any]:
        """Postać do zapisu - dane uwierzytelniające tylko jako zaszyfrowany token"""
        record = {
            "symbol": self.symbol,
            "strategy_id": self.strategy_id,
            "amount": self.amount,
            "interval": self.interval,
            "take_profit_pct": self.take_profit_pct,
            "stop_loss_pct": self.stop_loss_pct,
            "strategy_params": dict(self.strategy_params),
            "name": self.name,
        }
        if sealed_credentials:
            record["sealed_credentials"] = sealed_credentials
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any], credentials: GatewayCredentials) -> "BotConfig":
        data = dict(record)
        data.pop("sealed_credentials", None)
        data["credentials"] = credentials
        return cls.from_request(data)


@dataclass(frozen=True)
class OrderFill:
    """Wynik zlecenia rynkowego zwrócony przez gateway"""
    order_id: str
    symbol: str
    side: str
    quantity: float
    price: float
    commission: float = 0.0
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class TradeRecord:
    """Zapis wykonanej transakcji - tylko do dopisywania"""
    id: str
    bot_id: str
    symbol: str
    side: str
    quantity: float
    price: float
    timestamp: datetime
    strategy_id: str
    reason: str
    profit: float = 0.0
    source: str = TRADE_SOURCE_AUTO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bot_id": self.bot_id,
            "symbol": self.symbol,
            "side": self.side,
            "quantity": self.quantity,
            "price": self.price,
            "timestamp": format_timestamp(self.timestamp),
            "strategy_id": self.strategy_id,
            "reason": self.reason,
            "profit": self.profit,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TradeRecord":
        return cls(
            id=data["id"],
            bot_id=data.get("bot_id", ""),
            symbol=data.get("symbol", ""),
            side=data.get("side", ""),
            quantity=float(data.get("quantity", 0.0)),
            price=float(data.get("price", 0.0)),
            timestamp=parse_timestamp(data.get("timestamp")),
            strategy_id=data.get("strategy_id", ""),
            reason=data.get("reason", ""),
            profit=float(data.get("profit", 0.0)),
            source=data.get("source", TRADE_SOURCE_AUTO),
        )


def make_bot_id(symbol: str, created_at: datetime, taken: Container[str] = ()) -> str:
    """
    Generuje BotId "<symbol>-<epoch ms>"

    Przy kolizji z istniejącym identyfikatorem przesuwa znacznik czasu
    o kolejne milisekundy.
    """
    millis = to_millis(created_at)
    bot_id = f"{symbol}-{millis}"
    while bot_id in taken:
        millis += 1
        bot_id = f"{symbol}-{millis}"
    return bot_id
