"""
Magazyn klucz-wartość dla stanu botów

Wartości są serializowane do JSON z posortowanymi kluczami, więc zapis
tego samego obiektu dwa razy daje identyczny tekst w magazynie.
"""

import asyncio
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

logger = logging.getLogger(__name__)


def encode_value(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def decode_value(raw: Optional[str]) -> Any:
    return None if raw is None else json.loads(raw)


class KeyValueStore(ABC):
    """Interfejs magazynu: get / set / list(prefix)"""

    async def initialize(self) -> None:
        return None

    async def get(self, key: str) -> Any:
        return decode_value(await self.get_raw(key))

    async def set(self, key: str, value: Any) -> None:
        await self.set_raw(key, encode_value(value))

    @abstractmethod
    async def get_raw(self, key: str) -> Optional[str]:
        """Zwraca zapisany tekst JSON albo None"""

    @abstractmethod
    async def set_raw(self, key: str, raw: str) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def list(self, prefix: str = "") -> List[str]:
        """Klucze zaczynające się od ``prefix``, posortowane"""

    async def close(self) -> None:
        return None


class InMemoryKeyValueStore(KeyValueStore):
    """Magazyn w pamięci - testy i tryb papierowy"""

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get_raw(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set_raw(self, key: str, raw: str) -> None:
        self._data[key] = raw

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def list(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class SqliteKeyValueStore(KeyValueStore):
    """Magazyn oparty o SQLite (aiosqlite)"""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Inicjalizacja schematu bazy danych"""
        await self.get_connection()

    async def get_connection(self) -> aiosqlite.Connection:
        """Pobiera połączenie z bazy danych"""
        async with self._lock:
            if self._conn is None:
                if self.db_path != ":memory:":
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                self._conn = await aiosqlite.connect(self.db_path)
                self._conn.row_factory = sqlite3.Row
                await self._conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv_store (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                await self._conn.commit()
                logger.info(f"Key-value store opened: {self.db_path}")
            return self._conn

    async def get_raw(self, key: str) -> Optional[str]:
        conn = await self.get_connection()
        async with conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        return row["value"] if row is not None else None

    async def set_raw(self, key: str, raw: str) -> None:
        conn = await self.get_connection()
        await conn.execute(
            """
            INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, raw, datetime.now(timezone.utc).isoformat()),
        )
        await conn.commit()

    async def delete(self, key: str) -> bool:
        conn = await self.get_connection()
        cursor = await conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        await conn.commit()
        return cursor.rowcount > 0

    async def list(self, prefix: str = "") -> List[str]:
        conn = await self.get_connection()
        # substr zamiast LIKE - prefiksy zawierają '_'
        async with conn.execute(
            "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        ) as cursor:
            rows = await cursor.fetchall()
        return [row["key"] for row in rows]

    async def close(self) -> None:
        """Zamyka połączenie z bazą danych"""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None


def create_store(settings: Dict[str, Any]) -> KeyValueStore:
    """Fabryka magazynu na podstawie sekcji ``storage`` konfiguracji"""
    backend = settings.get("backend", "sqlite")
    if backend == "memory":
        return InMemoryKeyValueStore()
    if backend == "sqlite":
        return SqliteKeyValueStore(settings.get("path", "data/engine.db"))
    raise ValueError(f"Unsupported storage backend: {backend}")
