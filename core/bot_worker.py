"""
Bot Worker - aktor wykonujący ticki jednego bota

Każdy bot ma własną skrzynkę komend (asyncio.Queue) obsługiwaną przez
jeden task. Tylko ten task modyfikuje BotState, więc ticki jednego bota
nigdy się nie nakładają, a zapisy jego kluczy są serializowane.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from app.exchange.gateway import MarketGateway
from core.bot_state import BotState
from core.errors import GatewayError, TickError, classify_error
from core.models import BotConfig, BotStatus, Signal, SignalType, TradeRecord, utc_now
from core.schedule import normalize_interval
from core.status_reporter import StatusReporter
from core.strategy_engine import evaluate_signal
from core.trade_journal import TradeJournal
from utils.logger import LogType, get_logger

logger = get_logger("bot_worker", LogType.BOT)

_TICK = "tick"
_STOP = "stop"


@dataclass(frozen=True)
class WorkerSettings:
    candle_limit: int = 100
    exit_rules_enabled: bool = False


@dataclass(frozen=True)
class TickOutcome:
    """Wynik pojedynczego ticka"""
    bot_id: str
    signal: Optional[Signal]
    trade: Optional[TradeRecord] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BotWorker:
    """Aktor bota: przyjmuje komendy tick/stop i wykonuje je po kolei"""

    def __init__(
        self,
        config: BotConfig,
        state: BotState,
        gateway: MarketGateway,
        journal: TradeJournal,
        reporter: StatusReporter,
        settings: Optional[WorkerSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        interval: Optional[str] = None,
    ):
        self.bot_id = state.bot_id
        self.config = config
        # granulacja świec zgodna z harmonogramem (po ewentualnym fallbacku)
        self.interval = interval or normalize_interval(config.interval)
        self.state = state
        self.gateway = gateway
        self.journal = journal
        self.reporter = reporter
        self.settings = settings or WorkerSettings()
        self._clock = clock

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._busy = False
        self._tick_queued = False
        self._stop_future: Optional[asyncio.Future] = None
        self.skipped_ticks = 0

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"bot-worker-{self.bot_id}")

    @property
    def stopping(self) -> bool:
        return self._stop_future is not None

    @property
    def busy(self) -> bool:
        return self._busy

    def submit_tick(self) -> Optional[asyncio.Future]:
        """
        Zleca tick bez czekania na jego wynik

        Returns:
            Future z TickOutcome albo None, gdy tick pominięto (poprzedni
            tick trwa lub czeka w kolejce, albo bot jest zatrzymywany)
        """
        if self.stopping or self._task is None or self._task.done():
            return None
        if self._busy or self._tick_queued:
            self.skipped_ticks += 1
            logger.info(f"Bot {self.bot_id}: previous tick still running - skipping")
            return None
        future = asyncio.get_running_loop().create_future()
        self._tick_queued = True
        self._inbox.put_nowait((_TICK, future))
        return future

    async def stop(self) -> BotState:
        """
        Zatrzymuje bota po zakończeniu bieżącego ticka

        Tick w trakcie wykonania jest dokończony (łącznie z zapisem), ticki
        oczekujące w kolejce są odrzucane.
        """
        if self._stop_future is None:
            self._stop_future = asyncio.get_running_loop().create_future()
            if self._task is None or self._task.done():
                try:
                    await self._finalize()
                except Exception as e:
                    self._stop_future.set_exception(e)
                    raise
                self._stop_future.set_result(self.state)
            else:
                self._inbox.put_nowait((_STOP, self._stop_future))
        return await asyncio.shield(self._stop_future)

    async def _run(self) -> None:
        while True:
            command, future = await self._inbox.get()
            if command == _TICK:
                self._tick_queued = False
                if self.stopping:
                    future.set_result(None)
                    continue
                self._busy = True
                try:
                    outcome = await self._run_tick()
                finally:
                    self._busy = False
                if not future.done():
                    future.set_result(outcome)
            else:
                try:
                    await self._finalize()
                except Exception as e:
                    logger.error(f"Bot {self.bot_id}: failed to persist final state: {e}")
                    future.set_exception(e)
                else:
                    future.set_result(self.state)
                return

    async def _run_tick(self) -> TickOutcome:
        """Protokół jednego ticka; żaden wyjątek nie wychodzi poza tę metodę"""
        now = self._clock()
        signal: Optional[Signal] = None
        try:
            price = await self.gateway.get_current_price(self.config.symbol)
            candles = await self.gateway.get_candles(
                self.config.symbol, self.interval, self.settings.candle_limit
            )
            signal = evaluate_signal(self.config.strategy_id, self.config.strategy_params, candles, price)
            signal = self._apply_exit_rules(signal, price)

            if signal.is_hold:
                self.state.record_check(signal, now)
                await self.journal.save_state(self.state)
                self.reporter.status(self.state, f"HOLD: {signal.reason}")
                return TickOutcome(self.bot_id, signal)

            try:
                fill = await self.gateway.place_market_order(
                    self.config.credentials, self.config.symbol, signal.action.value, self.config.amount
                )
            except GatewayError as e:
                return await self._order_failed(signal, now, e)

            profit = self.state.apply_fill(fill)
            self.state.record_check(signal, now)
            self.state.last_error = None
            trade = TradeRecord(
                id=await self.journal.new_trade_id(self.bot_id, fill.timestamp),
                bot_id=self.bot_id,
                symbol=self.config.symbol,
                side=signal.action.value,
                quantity=fill.quantity,
                price=fill.price,
                timestamp=fill.timestamp,
                strategy_id=self.config.strategy_id,
                reason=signal.reason,
                profit=profit,
            )
            await self.journal.append_trade(trade)
            await self.journal.save_state(self.state)

            self.reporter.trade_executed(trade)
            self.reporter.status(
                self.state, f"{trade.side} {trade.quantity} {trade.symbol} @ {trade.price}"
            )
            return TickOutcome(self.bot_id, signal, trade=trade)

        except Exception as e:
            return await self._tick_failed(signal, now, e)

    def _apply_exit_rules(self, signal: Signal, price: float) -> Signal:
        if not self.settings.exit_rules_enabled or signal.action is SignalType.SELL:
            return signal
        symbol = self.config.symbol
        if self.state.open_positions.get(symbol, 0.0) <= 0:
            return signal
        entry = self.state.entry_prices.get(symbol)
        if not entry:
            return signal
        if price >= entry * (1 + self.config.take_profit_pct / 100):
            return Signal(SignalType.SELL, f"take profit reached ({price:.4f} vs entry {entry:.4f})", price)
        if price <= entry * (1 - self.config.stop_loss_pct / 100):
            return Signal(SignalType.SELL, f"stop loss reached ({price:.4f} vs entry {entry:.4f})", price)
        return signal

    async def _order_failed(self, signal: Signal, now: datetime, error: GatewayError) -> TickOutcome:
        message = f"{signal.action.value} order failed: {error}"
        logger.warning(f"Bot {self.bot_id}: {message}")
        self.state.record_check(signal, now)
        self.state.last_error = message
        await self.journal.save_state(self.state)
        await self.journal.record_error(self.bot_id, message, error.code, now)
        self.reporter.error(message, bot_id=self.bot_id, code=error.code, at=now)
        self.reporter.status(self.state, message, status=BotStatus.ERROR.value)
        return TickOutcome(self.bot_id, signal, error=message)

    async def _tick_failed(self, signal: Optional[Signal], now: datetime, error: Exception) -> TickOutcome:
        failure = TickError(f"Tick failed: {error}", code=classify_error(error))
        logger.error(f"Bot {self.bot_id}: {failure}")
        self.state.last_check_at = now
        self.state.last_error = failure.message
        try:
            await self.journal.save_state(self.state)
            await self.journal.record_error(self.bot_id, failure.message, failure.code, now)
        except Exception as e:
            logger.error(f"Bot {self.bot_id}: failed to persist tick error: {e}")
        self.reporter.error(failure.message, bot_id=self.bot_id, code=failure.code, at=now)
        self.reporter.status(self.state, failure.message, status=BotStatus.ERROR.value)
        return TickOutcome(self.bot_id, signal, error=failure.message)

    async def _finalize(self) -> None:
        if self.state.status is not BotStatus.STOPPED:
            self.state.mark_stopped(self._clock())
        await self.journal.save_state(self.state)
        await self.journal.clear_active(self.bot_id)
        self.reporter.status(self.state, "Bot stopped")
        logger.info(
            f"Bot {self.bot_id} stopped (trades={self.state.trades_executed}, profit={self.state.total_profit:.8f})"
        )
