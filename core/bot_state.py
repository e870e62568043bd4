"""
Stan bota i dozwolone przejścia statusów.

BotState jest własnością workera bota - modyfikuje go wyłącznie jego
własny task, więc nie wymaga blokad.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from core.models import (
    BotStatus,
    OrderFill,
    Signal,
    format_timestamp,
    parse_timestamp,
    utc_now,
)

_EPSILON = 1e-12

_ALLOWED_TRANSITIONS = {
    BotStatus.STARTING: {BotStatus.ACTIVE, BotStatus.ERROR, BotStatus.STOPPED},
    BotStatus.ACTIVE: {BotStatus.STOPPED},
    BotStatus.ERROR: {BotStatus.STOPPED},
    BotStatus.STOPPED: set(),
}


class InvalidTransition(ValueError):
    """Niedozwolona zmiana statusu bota"""


@dataclass
class BotState:
    """Mutowalny stan bota, zapisywany po każdej zmianie"""
    bot_id: str
    status: BotStatus = BotStatus.STARTING
    created_at: datetime = field(default_factory=utc_now)
    last_check_at: Optional[datetime] = None
    last_signal: Optional[Signal] = None
    trades_executed: int = 0
    total_profit: float = 0.0
    open_positions: Dict[str, float] = field(default_factory=dict)
    entry_prices: Dict[str, float] = field(default_factory=dict)
    stopped_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def transition(self, new_status: BotStatus) -> None:
        if new_status is self.status:
            return
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Bot {self.bot_id}: {self.status.value} -> {new_status.value} is not allowed"
            )
        self.status = new_status

    def activate(self) -> None:
        self.transition(BotStatus.ACTIVE)

    def mark_stopped(self, at: Optional[datetime] = None) -> None:
        self.transition(BotStatus.STOPPED)
        self.stopped_at = at or utc_now()

    @property
    def is_running(self) -> bool:
        return self.status in (BotStatus.STARTING, BotStatus.ACTIVE)

    def record_check(self, signal: Signal, at: Optional[datetime] = None) -> None:
        self.last_check_at = at or utc_now()
        self.last_signal = signal

    def apply_fill(self, fill: OrderFill) -> float:
        """
        Księguje wykonane zlecenie (pozycja tylko długa, średni koszt wejścia)

        Args:
            fill: Wypełnienie zwrócone przez gateway

        Returns:
            Zrealizowany zysk z tego zlecenia (0 dla BUY)
        """
        symbol = fill.symbol
        held = self.open_positions.get(symbol, 0.0)
        entry = self.entry_prices.get(symbol, 0.0)
        profit = 0.0

        if fill.side.upper() == "BUY":
            quantity = held + fill.quantity
            if quantity > _EPSILON:
                cost = held * entry + fill.quantity * fill.price + fill.commission
                self.entry_prices[symbol] = cost / quantity
                self.open_positions[symbol] = quantity
        else:
            closed = min(fill.quantity, held)
            if closed > _EPSILON:
                profit = (fill.price - entry) * closed - fill.commission
                remaining = held - closed
                if remaining > _EPSILON:
                    self.open_positions[symbol] = remaining
                else:
                    self.open_positions.pop(symbol, None)
                    self.entry_prices.pop(symbol, None)

        self.trades_executed += 1
        self.total_profit += profit
        return profit

    def to_dict(self) -> Dict[str, Any]:
        """Kanoniczna postać do zapisu - ten sam stan daje ten sam słownik"""
        return {
            "bot_id": self.bot_id,
            "status": self.status.value,
            "created_at": format_timestamp(self.created_at),
            "last_check_at": format_timestamp(self.last_check_at),
            "last_signal": self.last_signal.to_dict() if self.last_signal else None,
            "trades_executed": self.trades_executed,
            "total_profit": self.total_profit,
            "open_positions": dict(sorted(self.open_positions.items())),
            "entry_prices": dict(sorted(self.entry_prices.items())),
            "stopped_at": format_timestamp(self.stopped_at),
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BotState":
        signal = data.get("last_signal")
        return cls(
            bot_id=data["bot_id"],
            status=BotStatus(data.get("status", BotStatus.STOPPED.value)),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            last_check_at=parse_timestamp(data.get("last_check_at")),
            last_signal=Signal.from_dict(signal) if signal else None,
            trades_executed=int(data.get("trades_executed", 0)),
            total_profit=float(data.get("total_profit", 0.0)),
            open_positions={k: float(v) for k, v in (data.get("open_positions") or {}).items()},
            entry_prices={k: float(v) for k, v in (data.get("entry_prices") or {}).items()},
            stopped_at=parse_timestamp(data.get("stopped_at")),
            last_error=data.get("last_error"),
        )
