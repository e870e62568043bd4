"""
Trade Journal - zapis konfiguracji, stanu, transakcji i błędów botów

Konwencje kluczy w magazynie:
    bot_config_<id>       konfiguracja (dane uwierzytelniające tylko zaszyfrowane)
    bot_state_<id>        ostatni stan bota (nadpisywany)
    trade_<trade id>      rekord transakcji (tylko dopisywany)
    bot_error_<id>_<ms>   rekord błędu ticka
    active_bot_<id>       znacznik działającego bota
"""

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from app.storage import KeyValueStore
from core.bot_state import BotState
from core.models import (
    BotConfig,
    GatewayCredentials,
    TradeRecord,
    format_timestamp,
    parse_timestamp,
    to_millis,
    utc_now,
)
from utils.encryption import CredentialVault
from utils.logger import LogType, get_logger

logger = get_logger("trade_journal", LogType.TRADE)

CONFIG_PREFIX = "bot_config_"
STATE_PREFIX = "bot_state_"
TRADE_PREFIX = "trade_"
ERROR_PREFIX = "bot_error_"
ACTIVE_PREFIX = "active_bot_"
EXPORT_VERSION = "1.0"
EXPORTED_PREFIXES = (CONFIG_PREFIX, STATE_PREFIX, TRADE_PREFIX, ERROR_PREFIX)


def config_key(bot_id: str) -> str:
    return f"{CONFIG_PREFIX}{bot_id}"


def state_key(bot_id: str) -> str:
    return f"{STATE_PREFIX}{bot_id}"


def trade_key(trade_id: str) -> str:
    return f"{TRADE_PREFIX}{trade_id}"


def error_key(bot_id: str, at: datetime) -> str:
    return f"{ERROR_PREFIX}{bot_id}_{to_millis(at)}"


def active_key(bot_id: str) -> str:
    return f"{ACTIVE_PREFIX}{bot_id}"


@dataclass
class TradeStatistics:
    """Statystyki transakcji"""
    total_trades: int = 0
    total_profit: float = 0.0
    win_rate: float = 0.0
    avg_profit: float = 0.0
    avg_loss: float = 0.0
    profitable_trades: int = 0
    losing_trades: int = 0
    best_trade: float = 0.0
    worst_trade: float = 0.0


class TradeJournal:
    """Warstwa trwałości silnika nad KeyValueStore"""

    def __init__(self, store: KeyValueStore, vault: Optional[CredentialVault] = None):
        self.store = store
        self.vault = vault

    # --- konfiguracja -----------------------------------------------------

    async def save_config(self, bot_id: str, config: BotConfig) -> None:
        sealed = self.vault.seal(config.credentials) if self.vault else None
        if sealed is None:
            logger.debug(f"No credential vault configured - credentials of {bot_id} are not persisted")
        await self.store.set(config_key(bot_id), config.to_record(sealed))

    async def load_config_record(self, bot_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.get(config_key(bot_id))

    def open_credentials(self, record: Dict[str, Any]) -> Optional[GatewayCredentials]:
        """Odszyfrowuje dane uwierzytelniające z rekordu konfiguracji (VaultError przy błędzie)"""
        token = record.get("sealed_credentials")
        if not token or self.vault is None:
            return None
        return self.vault.open(token)

    # --- stan -------------------------------------------------------------

    async def save_state(self, state: BotState) -> None:
        await self.store.set(state_key(state.bot_id), state.to_dict())

    async def load_state(self, bot_id: str) -> Optional[BotState]:
        data = await self.store.get(state_key(bot_id))
        return BotState.from_dict(data) if data else None

    async def mark_active(self, bot_id: str, at: Optional[datetime] = None) -> None:
        await self.store.set(active_key(bot_id), {"bot_id": bot_id, "since": format_timestamp(at or utc_now())})

    async def clear_active(self, bot_id: str) -> None:
        await self.store.delete(active_key(bot_id))

    async def active_bot_ids(self) -> List[str]:
        return [key[len(ACTIVE_PREFIX):] for key in await self.store.list(ACTIVE_PREFIX)]

    # --- transakcje -------------------------------------------------------

    async def new_trade_id(self, bot_id: str, at: datetime) -> str:
        millis = to_millis(at)
        trade_id = f"bot_{bot_id}_{millis}"
        while await self.store.get_raw(trade_key(trade_id)) is not None:
            millis += 1
            trade_id = f"bot_{bot_id}_{millis}"
        return trade_id

    async def append_trade(self, record: TradeRecord) -> None:
        key = trade_key(record.id)
        if await self.store.get_raw(key) is not None:
            raise ValueError(f"Trade {record.id} already recorded")
        await self.store.set(key, record.to_dict())
        logger.info(
            f"Trade recorded: {record.side} {record.quantity} {record.symbol} @ {record.price} (bot {record.bot_id})"
        )

    async def list_trades(
        self,
        *,
        bot_id: Optional[str] = None,
        symbol: Optional[str] = None,
        strategy_id: Optional[str] = None,
        side: Optional[str] = None,
        source: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[TradeRecord]:
        """
        Zwraca transakcje spełniające filtry, od najnowszej

        Args:
            bot_id, symbol, strategy_id, side, source: Filtry równościowe
            start_time, end_time: Zakres czasu (włącznie)
            limit: Maksymalna liczba wyników
        """
        trades: List[TradeRecord] = []
        for key in await self.store.list(TRADE_PREFIX):
            data = await self.store.get(key)
            if not data:
                continue
            trade = TradeRecord.from_dict(data)
            if bot_id and trade.bot_id != bot_id:
                continue
            if symbol and trade.symbol != symbol:
                continue
            if strategy_id and trade.strategy_id != strategy_id:
                continue
            if side and trade.side.upper() != side.upper():
                continue
            if source and trade.source != source:
                continue
            if start_time and trade.timestamp < parse_timestamp(start_time):
                continue
            if end_time and trade.timestamp > parse_timestamp(end_time):
                continue
            trades.append(trade)

        trades.sort(key=lambda t: t.timestamp, reverse=True)
        if limit is not None:
            trades = trades[:limit]
        return trades

    async def trade_statistics(self, **filters) -> TradeStatistics:
        trades = await self.list_trades(**filters)
        stats = TradeStatistics(total_trades=len(trades))
        if not trades:
            return stats

        profits = [t.profit for t in trades]
        gains = [p for p in profits if p > 0]
        losses = [p for p in profits if p < 0]

        stats.total_profit = sum(profits)
        stats.profitable_trades = len(gains)
        stats.losing_trades = len(losses)
        stats.win_rate = len(gains) / len(trades) * 100
        stats.avg_profit = sum(gains) / len(gains) if gains else 0.0
        stats.avg_loss = sum(losses) / len(losses) if losses else 0.0
        stats.best_trade = max(profits)
        stats.worst_trade = min(profits)
        return stats

    # --- błędy ------------------------------------------------------------

    async def record_error(self, bot_id: str, message: str, code: str, at: Optional[datetime] = None) -> str:
        moment = at or utc_now()
        key = error_key(bot_id, moment)
        millis = to_millis(moment)
        while await self.store.get_raw(key) is not None:
            millis += 1
            key = f"{ERROR_PREFIX}{bot_id}_{millis}"
        await self.store.set(key, {
            "bot_id": bot_id,
            "message": message,
            "code": code,
            "timestamp": format_timestamp(moment),
        })
        return key

    async def list_errors(self, bot_id: str) -> List[Dict[str, Any]]:
        errors = []
        for key in await self.store.list(f"{ERROR_PREFIX}{bot_id}_"):
            record = await self.store.get(key)
            if record:
                errors.append(record)
        return errors

    # --- eksport / import -------------------------------------------------

    async def export_data(self, path: Union[str, Path]) -> int:
        """
        Zapisuje konfiguracje, stany, transakcje i błędy botów do pliku JSON

        Znaczniki ``active_bot_`` nie są eksportowane - zaimportowane boty
        nie są wznawiane.

        Returns:
            Liczba wyeksportowanych rekordów
        """
        records: Dict[str, Any] = {}
        for key in await self.store.list(""):
            if key.startswith(EXPORTED_PREFIXES):
                records[key] = await self.store.get(key)

        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'w', encoding='utf-8') as f:
            json.dump({
                "version": EXPORT_VERSION,
                "exported_at": format_timestamp(utc_now()),
                "records": records,
            }, f, indent=2, ensure_ascii=False, sort_keys=True)
        logger.info(f"Exported {len(records)} records to {target}")
        return len(records)

    async def import_data(self, path: Union[str, Path]) -> int:
        """
        Wczytuje plik z ``export_data`` i scala go z magazynem

        Rekordy o tych samych kluczach są nadpisywane, pozostałe zostają.

        Raises:
            ValueError: plik nie jest poprawnym eksportem

        Returns:
            Liczba zaimportowanych rekordów
        """
        source = Path(path)
        try:
            with open(source, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid export file {source}: {e}") from e

        records = data.get("records") if isinstance(data, dict) else None
        if not isinstance(records, dict):
            raise ValueError(f"Invalid export file {source}: missing 'records' section")

        imported = 0
        for key, value in sorted(records.items()):
            if not key.startswith(EXPORTED_PREFIXES):
                logger.warning(f"Skipping unexpected key in import: {key}")
                continue
            await self.store.set(key, value)
            imported += 1
        logger.info(f"Imported {imported} records from {source}")
        return imported
