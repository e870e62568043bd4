from datetime import datetime, timezone

import pytest

from core.bot_state import BotState, InvalidTransition
from core.errors import ValidationError
from core.models import (
    BotConfig,
    BotStatus,
    GatewayCredentials,
    OrderFill,
    Signal,
    SignalType,
    make_bot_id,
)


def test_status_transitions_are_monotonic():
    state = BotState("BTCUSDT-1")
    assert state.status is BotStatus.STARTING
    state.activate()
    state.mark_stopped()
    assert state.status is BotStatus.STOPPED
    assert state.stopped_at is not None
    with pytest.raises(InvalidTransition):
        state.activate()


def test_buy_then_sell_realizes_profit_against_average_entry():
    state = BotState("BTCUSDT-1", status=BotStatus.ACTIVE)

    assert state.apply_fill(OrderFill("1", "BTCUSDT", "BUY", 1.0, 100.0)) == 0.0
    assert state.apply_fill(OrderFill("2", "BTCUSDT", "BUY", 1.0, 120.0, commission=2.0)) == 0.0
    assert state.open_positions["BTCUSDT"] == pytest.approx(2.0)
    assert state.entry_prices["BTCUSDT"] == pytest.approx(111.0)

    profit = state.apply_fill(OrderFill("3", "BTCUSDT", "SELL", 2.0, 121.0, commission=1.0))
    assert profit == pytest.approx((121.0 - 111.0) * 2 - 1.0)
    assert state.total_profit == pytest.approx(19.0)
    assert state.trades_executed == 3
    assert state.open_positions == {}
    assert state.entry_prices == {}


def test_sell_without_position_counts_trade_without_profit():
    state = BotState("ETHUSDT-1", status=BotStatus.ACTIVE)
    assert state.apply_fill(OrderFill("1", "ETHUSDT", "SELL", 0.5, 2000.0)) == 0.0
    assert state.trades_executed == 1
    assert state.total_profit == 0.0


def test_state_survives_serialization():
    state = BotState("BNBUSDT-5", status=BotStatus.ACTIVE)
    state.record_check(Signal(SignalType.BUY, "cross", 301.5), datetime(2024, 1, 1, tzinfo=timezone.utc))
    state.apply_fill(OrderFill("1", "BNBUSDT", "BUY", 0.1, 301.5))

    restored = BotState.from_dict(state.to_dict())
    assert restored == state
    assert restored.to_dict() == state.to_dict()


def test_bot_id_is_unique_for_same_millisecond():
    moment = datetime(2024, 1, 1, tzinfo=timezone.utc)
    first = make_bot_id("BTCUSDT", moment)
    second = make_bot_id("BTCUSDT", moment, {first})
    assert first == f"BTCUSDT-{int(moment.timestamp() * 1000)}"
    assert second != first
    assert second.startswith("BTCUSDT-")


def test_config_from_request_accepts_camel_case():
    config = BotConfig.from_request({
        "symbol": "bnbusdt",
        "strategyId": "simpleMovingAverage",
        "amount": "0.1",
        "interval": "15m",
        "takeProfitPct": 3,
        "stopLossPct": 2,
        "apiConfig": {"apiKey": "abcdef123", "apiSecret": "secret123"},
    })
    assert config.symbol == "BNBUSDT"
    assert config.amount == pytest.approx(0.1)
    assert config.credentials.api_key == "abcdef123"


def test_config_validation_lists_all_problems():
    with pytest.raises(ValidationError) as exc:
        BotConfig.from_request({"symbol": "", "amount": -1, "interval": "15m", "take_profit_pct": 1})
    assert set(exc.value.problems) == {"symbol", "strategy_id", "amount", "stop_loss_pct", "credentials"}


def test_credentials_never_rendered_in_cleartext():
    credentials = GatewayCredentials("AKIAVERYSECRETKEY", "topsecretvalue")
    config = BotConfig("BTCUSDT", "crossover", 1.0, "1h", 3.0, 2.0, credentials)
    assert "topsecretvalue" not in repr(config)
    assert "AKIAVERYSECRETKEY" not in repr(credentials)
    assert "topsecretvalue" not in str(config.to_record())
