"""
Bot Manager - Zarządzanie botami tradingowymi

Centralny rejestr działających botów: uruchamianie, zatrzymywanie,
cykliczne ticki oraz wznawianie po restarcie aplikacji.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.exchange.gateway import MarketGateway
from app.storage import KeyValueStore
from core.bot_state import BotState
from core.bot_worker import BotWorker, TickOutcome, WorkerSettings
from core.errors import ConnectivityError, ValidationError, classify_error
from core.models import BotConfig, TradeRecord, make_bot_id, utc_now
from core.schedule import IntervalSchedule, ScheduledTrigger, normalize_interval
from core.status_reporter import StatusReporter
from core.strategy_engine import is_known_strategy
from core.trade_journal import TradeJournal, TradeStatistics
from utils.config_manager import ConfigManager, MIN_CANDLE_LIMIT
from utils.encryption import CredentialVault, VaultError
from utils.event_bus import EventBus, EventTypes, get_event_bus
from utils.logger import LogType, get_logger

logger = get_logger("bot_manager", LogType.BOT)

# nazwy zdarzeń używane przez UI -> tematy EventBus
EVENT_KINDS = {
    "status": EventTypes.BOT_STATUS,
    "trade-executed": EventTypes.TRADE_EXECUTED,
    "error": EventTypes.BOT_ERROR,
    "bot-started": EventTypes.BOT_STARTED,
    "bot-stopped": EventTypes.BOT_STOPPED,
}


@dataclass(frozen=True)
class EngineSettings:
    """Ustawienia sekcji ``engine`` konfiguracji"""
    candle_limit: int = 100
    resume_active_bots: bool = False
    strict_intervals: bool = False
    strict_strategy_ids: bool = False
    exit_rules_enabled: bool = False
    daily_run_hour: int = 0

    @classmethod
    def from_config(cls, config_manager: ConfigManager) -> "EngineSettings":
        section = config_manager.get_setting("engine", {}) or {}
        return cls(
            candle_limit=max(int(section.get("candle_limit", 100)), MIN_CANDLE_LIMIT),
            resume_active_bots=bool(section.get("resume_active_bots", False)),
            strict_intervals=bool(section.get("strict_intervals", False)),
            strict_strategy_ids=bool(section.get("strict_strategy_ids", False)),
            exit_rules_enabled=bool(section.get("exit_rules_enabled", False)),
            daily_run_hour=int(section.get("daily_run_hour", 0)),
        )

    def worker_settings(self) -> WorkerSettings:
        return WorkerSettings(candle_limit=self.candle_limit, exit_rules_enabled=self.exit_rules_enabled)


@dataclass
class BotHandle:
    """Wpis rejestru: konfiguracja, aktor bota i jego wyzwalacz"""
    config: BotConfig
    worker: BotWorker
    trigger: ScheduledTrigger

    @property
    def state(self) -> BotState:
        return self.worker.state


class BotManager:
    """
    Manager botów tradingowych

    Rejestr ``bot_id -> BotHandle`` jest jedyną kolekcją działających botów
    i jest chroniony blokadą asyncio.
    """

    def __init__(
        self,
        gateway: MarketGateway,
        store: KeyValueStore,
        *,
        settings: Optional[EngineSettings] = None,
        vault: Optional[CredentialVault] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        """
        Inicjalizuje BotManager

        Args:
            gateway: Bramka danych rynkowych i zleceń
            store: Magazyn klucz-wartość
            settings: Ustawienia silnika (domyślne gdy brak)
            vault: Sejf do szyfrowania danych uwierzytelniających
            event_bus: EventBus (domyślnie globalny)
            clock: Źródło czasu UTC
            sleep: Funkcja usypiająca wyzwalacze
        """
        self.gateway = gateway
        self.store = store
        self.settings = settings or EngineSettings()
        self.event_bus = event_bus or get_event_bus()
        self.journal = TradeJournal(store, vault)
        self.reporter = StatusReporter(self.event_bus)
        self._clock = clock
        self._sleep = sleep

        self._bots: Dict[str, BotHandle] = {}
        self._issued_ids: set = set()
        self._lock = asyncio.Lock()

        logger.info("BotManager initialized successfully")

    # --- start ------------------------------------------------------------

    async def start(self, request: Any) -> str:
        """
        Uruchamia nowego bota

        Args:
            request: BotConfig albo słownik żądania startu

        Returns:
            Identyfikator bota

        Raises:
            ValidationError: niepoprawne żądanie (bez skutków ubocznych)
            ConnectivityError: gateway niedostępny - bot nie jest rejestrowany
        """
        try:
            config = BotConfig.from_request(request)
            self._check_config(config)
        except ValidationError as e:
            logger.error(f"Rejected start request: {e}")
            self.reporter.error(str(e), code=e.code)
            raise

        async with self._lock:
            created_at = self._clock()
            bot_id = make_bot_id(config.symbol, created_at, self._issued_ids)
            self._issued_ids.add(bot_id)

        await self.journal.save_config(bot_id, config)

        try:
            await self.gateway.get_account_info(config.credentials)
        except Exception as e:
            code = classify_error(e)
            message = f"Connectivity check failed for {config.symbol}: {e}"
            logger.error(message)
            self.reporter.error(message, code=code)
            raise ConnectivityError(message, code=code) from e

        state = BotState(bot_id, created_at=created_at)
        state.activate()
        await self.journal.save_state(state)
        await self.journal.mark_active(bot_id, created_at)

        async with self._lock:
            self._register(config, state)

        logger.info(f"Started bot {bot_id} ({config.strategy_id}, {config.interval})")
        self.reporter.status(state, f"Bot started for {config.symbol} ({config.strategy_id}, {config.interval})")
        self._notify_bot_event(EventTypes.BOT_STARTED, bot_id, config)
        return bot_id

    def _check_config(self, config: BotConfig) -> None:
        normalize_interval(config.interval, strict=self.settings.strict_intervals)
        if self.settings.strict_strategy_ids and not is_known_strategy(config.strategy_id):
            raise ValidationError(f"unknown strategy: {config.strategy_id}", ["strategy_id"])

    def _register(self, config: BotConfig, state: BotState) -> BotHandle:
        bot_id = state.bot_id
        schedule = IntervalSchedule(config.interval, daily_hour=self.settings.daily_run_hour)
        worker = BotWorker(
            config,
            state,
            self.gateway,
            self.journal,
            self.reporter,
            settings=self.settings.worker_settings(),
            clock=self._clock,
            interval=schedule.interval,
        )
        worker.start()
        trigger = ScheduledTrigger(
            bot_id,
            schedule,
            on_fire=lambda: self._on_trigger(bot_id),
            clock=self._clock,
            sleep=self._sleep,
        )
        trigger.start()
        handle = BotHandle(config, worker, trigger)
        self._bots[bot_id] = handle
        return handle

    def _on_trigger(self, bot_id: str) -> None:
        handle = self._bots.get(bot_id)
        if handle is not None:
            handle.worker.submit_tick()

    # --- tick -------------------------------------------------------------

    async def tick(self, bot_id: str) -> Optional[TickOutcome]:
        """
        Wykonuje tick bota i czeka na jego wynik

        Returns:
            TickOutcome albo None (bot nieznany, zatrzymany lub tick pominięty)
        """
        handle = self._bots.get(bot_id)
        if handle is None:
            logger.debug(f"Tick for unknown or stopped bot {bot_id} ignored")
            return None
        future = handle.worker.submit_tick()
        if future is None:
            return None
        return await future

    # --- stop -------------------------------------------------------------

    async def stop(self, bot_id: Optional[str] = None) -> int:
        """
        Zatrzymuje bota lub wszystkie boty

        Args:
            bot_id: Identyfikator bota (None = wszystkie)

        Returns:
            Liczba zatrzymanych botów
        """
        async with self._lock:
            if bot_id is None:
                handles = list(self._bots.values())
                self._bots.clear()
            else:
                handle = self._bots.pop(bot_id, None)
                handles = [handle] if handle is not None else []

        if bot_id is not None and not handles:
            logger.warning(f"Bot {bot_id} not found or already stopped")
            self.reporter.error(f"Bot {bot_id} not found or already stopped", bot_id=bot_id, code="BOT_NOT_FOUND")
            return 0

        for handle in handles:
            handle.trigger.cancel()

        await asyncio.gather(*(self._finalize(handle) for handle in handles))
        return len(handles)

    async def _finalize(self, handle: BotHandle) -> None:
        bot_id = handle.state.bot_id
        try:
            await handle.worker.stop()
        except Exception as e:
            logger.error(f"Error stopping bot {bot_id}: {e}")
            self.reporter.error(f"Error stopping bot {bot_id}: {e}", bot_id=bot_id, code=classify_error(e))
        await handle.trigger.wait_closed()
        self._notify_bot_event(EventTypes.BOT_STOPPED, bot_id, handle.config)

    async def shutdown(self) -> int:
        """Zatrzymuje wszystkie boty i zamyka gateway oraz magazyn"""
        stopped = await self.stop()
        await self.gateway.close()
        await self.store.close()
        return stopped

    # --- recover ----------------------------------------------------------

    async def recover(self) -> List[str]:
        """
        Obsługuje boty, które były aktywne przed restartem

        Przy ``resume_active_bots`` boty z odszyfrowywalnymi danymi
        uwierzytelniającymi są wznawiane pod tym samym identyfikatorem,
        pozostałe są finalizowane jako zatrzymane.

        Returns:
            Lista wznowionych botów
        """
        resumed: List[str] = []
        for bot_id in await self.journal.active_bot_ids():
            if bot_id in self._bots:
                continue
            state = await self.journal.load_state(bot_id)
            record = await self.journal.load_config_record(bot_id)
            if state is None or record is None:
                await self.journal.clear_active(bot_id)
                continue
            if not state.is_running:
                await self.journal.clear_active(bot_id)
                continue

            config = self._restore_config(bot_id, record) if self.settings.resume_active_bots else None
            if config is None:
                state.mark_stopped(self._clock())
                await self.journal.save_state(state)
                await self.journal.clear_active(bot_id)
                self.reporter.status(state, "Bot stopped after restart")
                logger.info(f"Bot {bot_id} finalized as stopped after restart")
                continue

            state.activate()
            await self.journal.save_state(state)
            async with self._lock:
                self._issued_ids.add(bot_id)
                self._register(config, state)
            self.reporter.status(state, "Bot resumed after restart")
            self._notify_bot_event(EventTypes.BOT_STARTED, bot_id, config)
            logger.info(f"Resumed bot {bot_id}")
            resumed.append(bot_id)
        return resumed

    def _restore_config(self, bot_id: str, record: Dict[str, Any]) -> Optional[BotConfig]:
        try:
            credentials = self.journal.open_credentials(record)
            if credentials is None:
                logger.warning(f"Bot {bot_id} has no sealed credentials - cannot resume")
                return None
            return BotConfig.from_record(record, credentials)
        except (VaultError, ValidationError) as e:
            logger.warning(f"Bot {bot_id} cannot be resumed: {e}")
            return None

    # --- zapytania --------------------------------------------------------

    def running_bots(self) -> List[str]:
        return sorted(self._bots)

    def get_config(self, bot_id: str) -> Optional[BotConfig]:
        handle = self._bots.get(bot_id)
        return handle.config if handle else None

    async def get_state(self, bot_id: str) -> Optional[BotState]:
        """Stan działającego bota albo ostatni zapisany stan"""
        handle = self._bots.get(bot_id)
        if handle is not None:
            return handle.state
        return await self.journal.load_state(bot_id)

    async def list_trades(self, **filters) -> List[TradeRecord]:
        return await self.journal.list_trades(**filters)

    async def trade_statistics(self, **filters) -> TradeStatistics:
        return await self.journal.trade_statistics(**filters)

    async def export_data(self, path) -> int:
        return await self.journal.export_data(path)

    async def import_data(self, path) -> int:
        """Import rekordów z pliku eksportu (działające boty nie są zmieniane)"""
        return await self.journal.import_data(path)

    def subscribe(self, kind: str, callback: Callable[[Any], None]) -> None:
        """
        Subskrybuje zdarzenia botów

        Args:
            kind: "status", "trade-executed", "error" (lub temat EventBus)
            callback: Funkcja otrzymująca słownik zdarzenia
        """
        self.event_bus.subscribe(EVENT_KINDS.get(kind, kind), callback)

    def unsubscribe(self, kind: str, callback: Callable[[Any], None]) -> None:
        self.event_bus.unsubscribe(EVENT_KINDS.get(kind, kind), callback)

    def _notify_bot_event(self, event_type: str, bot_id: str, config: BotConfig) -> None:
        self.event_bus.publish(event_type, {
            'bot_id': bot_id,
            'symbol': config.symbol,
            'strategy_id': config.strategy_id,
            'interval': config.interval,
        })
