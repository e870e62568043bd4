"""
Status Reporter - publikuje zdarzenia status / trade-executed / error
"""

from datetime import datetime
from typing import Optional

from core.bot_state import BotState
from core.models import TradeRecord, format_timestamp, utc_now
from utils.event_bus import EventBus, get_event_bus, publish_event
from utils.events_schema import BotErrorEvent, BotStatusEvent, TradeExecutedEvent
from utils.logger import LogType, get_logger

logger = get_logger("status_reporter", LogType.BOT)


class StatusReporter:
    """Zamienia zmiany stanu botów na płaskie zdarzenia dla UI"""

    def __init__(self, event_bus: Optional[EventBus] = None):
        self.event_bus = event_bus or get_event_bus()

    def status(self, state: BotState, message: str = "", status: Optional[str] = None) -> BotStatusEvent:
        """
        Publikuje zdarzenie statusu

        Args:
            state: Bieżący stan bota
            message: Komunikat dla użytkownika
            status: Nadpisanie statusu (np. "error" dla nieudanego ticka)
        """
        signal = state.last_signal
        event = BotStatusEvent(
            bot_id=state.bot_id,
            status=status or state.status.value,
            last_check_at=format_timestamp(state.last_check_at),
            signal=signal.action.value if signal else None,
            reason=signal.reason if signal else None,
            trades_executed=state.trades_executed,
            total_profit=state.total_profit,
            message=message,
        )
        publish_event(event, self.event_bus)
        return event

    def trade_executed(self, trade: TradeRecord) -> TradeExecutedEvent:
        event = TradeExecutedEvent(
            bot_id=trade.bot_id,
            time=format_timestamp(trade.timestamp),
            symbol=trade.symbol,
            side=trade.side,
            price=trade.price,
            quantity=trade.quantity,
            reason=trade.reason,
            profit=trade.profit,
        )
        publish_event(event, self.event_bus)
        return event

    def error(
        self,
        message: str,
        bot_id: Optional[str] = None,
        code: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> BotErrorEvent:
        event = BotErrorEvent(
            bot_id=bot_id,
            message=message,
            timestamp=format_timestamp(at or utc_now()),
            code=code,
        )
        logger.warning(f"Bot error [{bot_id or '-'}] {code or ''}: {message}")
        publish_event(event, self.event_bus)
        return event
