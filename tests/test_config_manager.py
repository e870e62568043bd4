import json
import logging

import pytest

from core.bot_manager import EngineSettings
from utils.config_manager import ConfigManager, ConfigValidationError
from utils.event_bus import EventTypes


def test_defaults_are_written_when_file_missing(tmp_path):
    cm = ConfigManager(config_dir=str(tmp_path / "config"))
    config = cm.load_config()

    assert (tmp_path / "config" / "engine_config.json").exists()
    assert config["engine"]["candle_limit"] == 100
    assert cm.get_setting("engine.resume_active_bots") is False
    assert cm.get_setting("engine.missing", "fallback") == "fallback"


def test_user_values_are_merged_over_defaults(tmp_path):
    cfg_dir = tmp_path / "config"
    cfg_dir.mkdir()
    # Minimalny plik użytkownika - brakujące klucze uzupełnia ConfigManager
    (cfg_dir / "engine_config.json").write_text(
        json.dumps({"engine": {"resume_active_bots": True, "candle_limit": 200}}), encoding="utf-8"
    )

    cm = ConfigManager(config_dir=str(cfg_dir))
    settings = EngineSettings.from_config(cm)

    assert settings.resume_active_bots is True
    assert settings.candle_limit == 200
    assert settings.daily_run_hour == 0
    assert cm.get_setting("storage.backend") == "sqlite"


def test_set_setting_publishes_config_updated(tmp_path):
    cm = ConfigManager(config_dir=str(tmp_path))
    received = []
    cm.event_bus.subscribe(EventTypes.CONFIG_UPDATED, received.append)
    try:
        cm.set_setting("engine.exit_rules_enabled", True)
    finally:
        cm.event_bus.unsubscribe(EventTypes.CONFIG_UPDATED, received.append)

    assert received[-1]["config_type"] == "engine"
    assert received[-1]["new_config"]["engine"]["exit_rules_enabled"] is True
    reloaded = ConfigManager(config_dir=str(tmp_path))
    assert reloaded.get_setting("engine.exit_rules_enabled") is True


def test_invalid_values_are_rejected(tmp_path):
    cfg_dir = tmp_path / "config"
    cfg_dir.mkdir()
    (cfg_dir / "engine_config.json").write_text(json.dumps({"engine": {"candle_limit": 10}}), encoding="utf-8")

    with pytest.raises(ConfigValidationError) as exc:
        ConfigManager(config_dir=str(cfg_dir)).load_config()
    assert "candle_limit" in str(exc.value)


def test_broken_json_is_reported(tmp_path):
    (tmp_path / "engine_config.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigValidationError):
        ConfigManager(config_dir=str(tmp_path)).load_config()


def test_set_setting_logs_changed_path(tmp_path, caplog):
    cm = ConfigManager(config_dir=str(tmp_path))
    with caplog.at_level(logging.INFO, logger="utils.config_manager"):
        cm.set_setting("engine.daily_run_hour", 6)

    assert "Setting engine.daily_run_hour updated" in caplog.text
    assert "TRACE" not in caplog.text
    assert cm.get_setting("engine.daily_run_hour") == 6
