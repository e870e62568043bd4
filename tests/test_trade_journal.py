from datetime import datetime, timedelta, timezone

import pytest

from app.storage import InMemoryKeyValueStore
from core.models import BotConfig, TradeRecord
from core.trade_journal import TradeJournal, config_key
from utils.encryption import CredentialVault

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def trade(trade_id, minutes, profit, symbol="BTCUSDT", side="SELL", bot_id="BTCUSDT-1", strategy_id="crossover"):
    return TradeRecord(
        id=trade_id,
        bot_id=bot_id,
        symbol=symbol,
        side=side,
        quantity=0.1,
        price=100.0,
        timestamp=T0 + timedelta(minutes=minutes),
        strategy_id=strategy_id,
        reason="test",
        profit=profit,
    )


@pytest.fixture
def journal(store):
    return TradeJournal(store)


@pytest.mark.asyncio
async def test_list_trades_filters_and_orders_newest_first(journal):
    await journal.append_trade(trade("t1", 0, 5.0))
    await journal.append_trade(trade("t2", 10, -2.0, side="BUY"))
    await journal.append_trade(trade("t3", 20, 3.0, symbol="ETHUSDT", bot_id="ETHUSDT-1", strategy_id="bands"))

    assert [t.id for t in await journal.list_trades()] == ["t3", "t2", "t1"]
    assert [t.id for t in await journal.list_trades(symbol="BTCUSDT")] == ["t2", "t1"]
    assert [t.id for t in await journal.list_trades(side="buy")] == ["t2"]
    assert [t.id for t in await journal.list_trades(strategy_id="bands")] == ["t3"]
    assert [t.id for t in await journal.list_trades(start_time=T0 + timedelta(minutes=5))] == ["t3", "t2"]
    assert [t.id for t in await journal.list_trades(end_time=T0 + timedelta(minutes=5))] == ["t1"]
    assert [t.id for t in await journal.list_trades(limit=1)] == ["t3"]


@pytest.mark.asyncio
async def test_trades_are_append_only(journal):
    await journal.append_trade(trade("t1", 0, 1.0))
    with pytest.raises(ValueError):
        await journal.append_trade(trade("t1", 1, 2.0))


@pytest.mark.asyncio
async def test_trade_statistics(journal):
    for i, profit in enumerate([10.0, -4.0, 6.0, -2.0]):
        await journal.append_trade(trade(f"t{i}", i, profit))

    stats = await journal.trade_statistics()
    assert stats.total_trades == 4
    assert stats.total_profit == pytest.approx(10.0)
    assert stats.profitable_trades == 2
    assert stats.losing_trades == 2
    assert stats.win_rate == pytest.approx(50.0)
    assert stats.avg_profit == pytest.approx(8.0)
    assert stats.avg_loss == pytest.approx(-3.0)
    assert stats.best_trade == 10.0
    assert stats.worst_trade == -4.0

    empty = await journal.trade_statistics(symbol="DOGEUSDT")
    assert empty.total_trades == 0 and empty.win_rate == 0.0


@pytest.mark.asyncio
async def test_new_trade_ids_do_not_collide(journal):
    first = await journal.new_trade_id("BTCUSDT-1", T0)
    await journal.append_trade(trade(first, 0, 0.0))
    second = await journal.new_trade_id("BTCUSDT-1", T0)
    assert first.startswith("bot_BTCUSDT-1_")
    assert second != first


@pytest.mark.asyncio
async def test_error_records_are_timestamped_and_unique(journal, store):
    first = await journal.record_error("BTCUSDT-1", "boom", "NETWORK_TIMEOUT", T0)
    second = await journal.record_error("BTCUSDT-1", "boom again", "NETWORK_TIMEOUT", T0)

    assert first == f"bot_error_BTCUSDT-1_{int(T0.timestamp() * 1000)}"
    assert second != first
    errors = await journal.list_errors("BTCUSDT-1")
    assert [e["message"] for e in errors] == ["boom", "boom again"]


@pytest.mark.asyncio
async def test_config_is_persisted_without_cleartext_credentials(store, credentials):
    config = BotConfig("BTCUSDT", "crossover", 0.5, "1h", 3.0, 2.0, credentials)

    plain = TradeJournal(store)
    await plain.save_config("BTCUSDT-1", config)
    raw = await store.get_raw(config_key("BTCUSDT-1"))
    assert credentials.api_secret not in raw
    assert credentials.api_key not in raw
    assert "sealed_credentials" not in raw

    vault = CredentialVault(CredentialVault.generate_key().encode())
    sealed = TradeJournal(store, vault)
    await sealed.save_config("BTCUSDT-2", config)
    raw = await store.get_raw(config_key("BTCUSDT-2"))
    assert credentials.api_secret not in raw
    record = await sealed.load_config_record("BTCUSDT-2")
    assert sealed.open_credentials(record) == credentials


@pytest.mark.asyncio
async def test_active_markers(journal):
    await journal.mark_active("A-1", T0)
    await journal.mark_active("B-2", T0)
    await journal.clear_active("A-1")
    assert await journal.active_bot_ids() == ["B-2"]


@pytest.mark.asyncio
async def test_export_and_import_round_trip(journal, tmp_path, credentials):
    vault = CredentialVault(CredentialVault.generate_key().encode())
    source = TradeJournal(journal.store, vault)
    await source.save_config("BTCUSDT-1", BotConfig("BTCUSDT", "crossover", 0.5, "1h", 3.0, 2.0, credentials))
    await source.append_trade(trade("t1", 0, 5.0))
    await source.record_error("BTCUSDT-1", "boom", "NETWORK_TIMEOUT", T0)
    await source.mark_active("BTCUSDT-1", T0)

    path = tmp_path / "backup" / "export.json"
    assert await source.export_data(path) == 3
    assert credentials.api_secret not in path.read_text(encoding="utf-8")

    target = TradeJournal(InMemoryKeyValueStore(), vault)
    await target.append_trade(trade("t0", -5, 1.0))
    assert await target.import_data(path) == 3

    assert [t.id for t in await target.list_trades()] == ["t1", "t0"]
    assert await target.active_bot_ids() == []
    record = await target.load_config_record("BTCUSDT-1")
    assert target.open_credentials(record) == credentials


@pytest.mark.asyncio
async def test_import_rejects_malformed_files(journal, tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError):
        await journal.import_data(broken)

    wrong = tmp_path / "wrong.json"
    wrong.write_text('{"trades": []}', encoding="utf-8")
    with pytest.raises(ValueError):
        await journal.import_data(wrong)
