from typing import ClassVar, Optional

from pydantic import BaseModel, Field

from utils.event_bus import EventTypes


class BotStatusEvent(BaseModel):
    topic: ClassVar[str] = EventTypes.BOT_STATUS

    bot_id: str
    status: str  # 'starting'|'active'|'stopped'|'error'
    last_check_at: Optional[str] = None
    signal: Optional[str] = None  # 'BUY'|'SELL'|'HOLD'
    reason: Optional[str] = None
    trades_executed: int = 0
    total_profit: float = 0.0
    message: str = ""


class TradeExecutedEvent(BaseModel):
    topic: ClassVar[str] = EventTypes.TRADE_EXECUTED

    bot_id: str
    time: str
    symbol: str
    side: str  # 'BUY' | 'SELL'
    price: float
    quantity: float
    reason: str = ""
    profit: float = 0.0


class BotErrorEvent(BaseModel):
    topic: ClassVar[str] = EventTypes.BOT_ERROR

    bot_id: Optional[str] = Field(default=None, description="absent before the bot is registered")
    message: str
    timestamp: str
    code: Optional[str] = None
