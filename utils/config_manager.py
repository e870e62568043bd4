"""
Menedżer konfiguracji silnika botów

Zarządza ładowaniem, zapisywaniem i walidacją
pliku konfiguracyjnego silnika.
"""

import copy
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .event_bus import EventTypes, get_event_bus

logger = logging.getLogger(__name__)

MIN_CANDLE_LIMIT = 50
STORAGE_BACKENDS = ("memory", "sqlite")


@dataclass
class ConfigValidationError(Exception):
    """Błąd walidacji konfiguracji"""
    message: str
    config_file: str
    field: Optional[str] = None

    def __str__(self) -> str:
        return self.message


class ConfigManager:
    """
    Menedżer konfiguracji silnika

    Łączy plik JSON użytkownika z wartościami domyślnymi i publikuje
    ``config.updated`` po każdym zapisie.
    """

    def __init__(self, config_dir: str = "config", file_name: str = "engine_config.json"):
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_path = self.config_dir / file_name

        self._config: Optional[Dict[str, Any]] = None
        self._default_config = self._get_default_config()

        # EventBus dla powiadomień o zmianach konfiguracji
        self.event_bus = get_event_bus()

    def _get_default_config(self) -> Dict[str, Any]:
        """Zwraca domyślną konfigurację silnika"""
        return {
            "engine": {
                "candle_limit": 100,
                "resume_active_bots": False,
                "strict_intervals": False,
                "strict_strategy_ids": False,
                "exit_rules_enabled": False,
                "daily_run_hour": 0,
            },
            "storage": {
                "backend": "sqlite",
                "path": "data/engine.db",
            },
            "gateway": {
                "exchange_id": "binance",
                "sandbox": True,
                "timeout_ms": 10000,
                "max_retries": 3,
            },
            "logging": {
                "level": "INFO",
                "dir": "logs",
                "max_file_size_mb": 10,
                "max_files": 5,
                "log_to_file": True,
            },
            "security": {
                "vault_key_env": "CRYPTOBOT_VAULT_KEY",
            },
        }

    def load_config(self) -> Dict[str, Any]:
        """
        Ładuje konfigurację z pliku

        Returns:
            Słownik z konfiguracją
        """
        self._config = self._load_json_file(self.config_path, self._default_config)
        self._validate_config(self._config)
        logger.info(f"Configuration loaded from {self.config_path}")
        return self._config

    def _load_json_file(self, file_path: Path, default_config: Dict) -> Dict[str, Any]:
        """
        Ładuje plik JSON z konfiguracją

        Args:
            file_path: Ścieżka do pliku
            default_config: Domyślna konfiguracja

        Returns:
            Słownik z konfiguracją
        """
        if not file_path.exists():
            # Utwórz plik z domyślną konfiguracją
            self._save_json_file(file_path, default_config)
            return copy.deepcopy(default_config)

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigValidationError(f"Invalid JSON in config file: {e}", str(file_path))
        except OSError as e:
            raise ConfigValidationError(f"Error reading config file: {e}", str(file_path))

        if not isinstance(config, dict):
            raise ConfigValidationError("Config root must be a JSON object", str(file_path))

        # Połącz z domyślną konfiguracją (dodaj brakujące klucze)
        merged_config = self._merge_configs(default_config, config)
        if merged_config != config:
            self._save_json_file(file_path, merged_config)
        return merged_config

    def _merge_configs(self, default: Dict, user: Dict) -> Dict:
        """
        Łączy konfigurację użytkownika z domyślną

        Args:
            default: Domyślna konfiguracja
            user: Konfiguracja użytkownika

        Returns:
            Połączona konfiguracja
        """
        merged = copy.deepcopy(default)

        for key, value in user.items():
            if key in merged and isinstance(value, dict) and isinstance(merged[key], dict):
                merged[key] = self._merge_configs(merged[key], value)
            else:
                merged[key] = value

        return merged

    def _save_json_file(self, file_path: Path, config: Dict):
        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(config, f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise ConfigValidationError(f"Error saving config file: {e}", str(file_path))

    def save_config(self, config: Dict[str, Any]):
        """
        Zapisuje konfigurację do pliku i publikuje zdarzenie

        Args:
            config: Konfiguracja do zapisania
        """
        logger.info("Saving engine configuration")
        self._validate_config(config)
        old_config = copy.deepcopy(self._config) if self._config is not None else None
        self._save_json_file(self.config_path, config)
        self._config = config

        self.event_bus.publish(EventTypes.CONFIG_UPDATED, {
            'config_type': 'engine',
            'old_config': old_config,
            'new_config': copy.deepcopy(config),
            'timestamp': datetime.now(timezone.utc).isoformat(),
        })

    def get_config(self) -> Dict[str, Any]:
        if self._config is None:
            self.load_config()
        return self._config

    def get_setting(self, path: str, default: Any = None) -> Any:
        """
        Pobiera konkretne ustawienie z konfiguracji

        Args:
            path: Ścieżka do ustawienia (np. "engine.candle_limit")
            default: Wartość domyślna

        Returns:
            Wartość ustawienia
        """
        current: Any = self.get_config()
        for key in self._split_path(path):
            if not isinstance(current, dict) or key not in current:
                return default
            current = current[key]
        return current

    def set_setting(self, path: str, value: Any):
        """
        Ustawia konkretne ustawienie w konfiguracji

        Args:
            path: Ścieżka do ustawienia (np. "engine.resume_active_bots")
            value: Nowa wartość
        """
        keys = self._split_path(path)
        if not keys:
            raise ConfigValidationError("Invalid configuration path provided", str(self.config_path), path)

        config = copy.deepcopy(self.get_config())
        current = config
        for key in keys[:-1]:
            if key not in current or not isinstance(current[key], dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

        logger.info(f"Setting {path} updated")
        self.save_config(config)

    def _validate_config(self, config: Dict[str, Any]):
        """Waliduje sekcje używane przez silnik"""
        errors: List[str] = []
        engine = config.get("engine", {})

        candle_limit = engine.get("candle_limit")
        if not isinstance(candle_limit, int) or isinstance(candle_limit, bool) or candle_limit < MIN_CANDLE_LIMIT:
            errors.append(f"engine.candle_limit must be an integer >= {MIN_CANDLE_LIMIT}")

        hour = engine.get("daily_run_hour")
        if not isinstance(hour, int) or isinstance(hour, bool) or not 0 <= hour <= 23:
            errors.append("engine.daily_run_hour must be an integer between 0 and 23")

        backend = config.get("storage", {}).get("backend")
        if backend not in STORAGE_BACKENDS:
            errors.append(f"storage.backend must be one of {', '.join(STORAGE_BACKENDS)}")

        if errors:
            raise ConfigValidationError("; ".join(errors), str(self.config_path))

    def _split_path(self, path: str) -> List[str]:
        return [p for p in (path or "").split(".") if p]


# Globalna instancja menedżera konfiguracji
_config_manager = None


def get_config_manager(config_dir: Optional[str] = None) -> ConfigManager:
    """
    Pobiera globalną instancję menedżera konfiguracji

    Returns:
        Instancja ConfigManager
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(config_dir or "config")
    return _config_manager


def reset_config_manager() -> None:
    global _config_manager
    _config_manager = None
