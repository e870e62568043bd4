import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Ensure project root is importable when running tests directly
ROOT_DIR = Path(__file__).resolve().parents[1]
root_str = str(ROOT_DIR)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from app.exchange.gateway import MarketGateway  # noqa: E402
from app.storage import InMemoryKeyValueStore  # noqa: E402
from core.bot_manager import BotManager, EngineSettings  # noqa: E402
from core.models import Candle, GatewayCredentials, OrderFill  # noqa: E402
from utils.event_bus import EventBus, EventTypes  # noqa: E402


class FakeGateway(MarketGateway):
    """Gateway sterowany z testu: stała historia cen, opcjonalne błędy i blokady."""

    name = "fake"

    def __init__(self, closes: Optional[List[float]] = None):
        self.closes: List[float] = list(closes if closes is not None else [100.0] * 60)
        self.price: Optional[float] = None
        self.account_error: Optional[Exception] = None
        self.order_error: Optional[Exception] = None
        self.candles_error: Optional[Exception] = None
        self.order_gate: Optional[asyncio.Event] = None
        self.order_started: Optional[asyncio.Event] = None
        self.on_candles = None
        self.orders: List[tuple] = []
        self.candle_calls = 0
        self.candle_intervals: List[str] = []
        self.stalled: Dict[str, asyncio.Event] = {}
        self.stall_started = asyncio.Event()
        self.closed = False

    async def ping(self) -> bool:
        return True

    async def get_account_info(self, credentials) -> Dict:
        if self.account_error is not None:
            raise self.account_error
        return {"USDT": {"free": 1000.0, "locked": 0.0, "total": 1000.0}}

    async def get_current_price(self, symbol: str) -> float:
        return self.price if self.price is not None else self.closes[-1]

    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        self.candle_calls += 1
        self.candle_intervals.append(interval)
        if symbol in self.stalled:
            self.stall_started.set()
            await self.stalled[symbol].wait()
        if self.candles_error is not None:
            raise self.candles_error
        if self.on_candles is not None:
            self.on_candles(self)
        window = self.closes[-limit:]
        return [Candle(i * 60_000, c, c, c, c, 1.0) for i, c in enumerate(window)]

    async def place_market_order(self, credentials, symbol: str, side: str, quantity: float) -> OrderFill:
        self.orders.append((symbol, side, quantity))
        if self.order_started is not None:
            self.order_started.set()
        if self.order_gate is not None:
            await self.order_gate.wait()
        if self.order_error is not None:
            raise self.order_error
        price = self.price if self.price is not None else self.closes[-1]
        return OrderFill(f"fake-{len(self.orders)}", symbol, side, quantity, price)

    async def close(self) -> None:
        self.closed = True


async def never_sleep(_delay: float) -> None:
    """Wyzwalacze w testach nie odpalają same - ticki wywołujemy ręcznie."""
    await asyncio.Event().wait()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def credentials():
    return GatewayCredentials("test-key-123456", "test-secret-abcdef")


@pytest.fixture
def bot_request(credentials):
    def _make(**overrides):
        request = {
            "symbol": "BNBUSDT",
            "strategy_id": "crossover",
            "amount": 0.1,
            "interval": "15m",
            "take_profit_pct": 3.0,
            "stop_loss_pct": 2.0,
            "credentials": credentials,
        }
        request.update(overrides)
        return request
    return _make


@pytest.fixture
def events(event_bus):
    """Zbiera zdarzenia publikowane na EventBus według tematu."""
    received: Dict[str, List[dict]] = {
        EventTypes.BOT_STATUS: [],
        EventTypes.TRADE_EXECUTED: [],
        EventTypes.BOT_ERROR: [],
        EventTypes.BOT_STARTED: [],
        EventTypes.BOT_STOPPED: [],
    }
    for topic, bucket in received.items():
        event_bus.subscribe(topic, bucket.append)
    return received


@pytest.fixture
def make_manager(gateway, store, event_bus):
    def _make(settings: Optional[EngineSettings] = None, vault=None, **kwargs):
        return BotManager(
            kwargs.pop("gateway", gateway),
            kwargs.pop("store", store),
            settings=settings,
            vault=vault,
            event_bus=event_bus,
            sleep=kwargs.pop("sleep", never_sleep),
            **kwargs,
        )
    return _make


@pytest.fixture
def manager(make_manager):
    return make_manager()
