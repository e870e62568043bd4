import asyncio
from datetime import datetime, timezone

import pytest

from app.storage import InMemoryKeyValueStore
from core.bot_manager import BotManager, EngineSettings
from core.bot_state import BotState
from core.errors import AuthenticationError, ConnectivityError, ValidationError
from core.models import BotConfig, BotStatus
from core.trade_journal import TradeJournal, config_key, state_key
from utils.encryption import CredentialVault
from utils.event_bus import EventTypes

FIXED = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_start_then_stop_persists_final_state(manager, store, events, bot_request):
    bot_id = await manager.start(bot_request())

    assert bot_id.startswith("BNBUSDT-")
    assert manager.running_bots() == [bot_id]
    assert events[EventTypes.BOT_STARTED][0]["bot_id"] == bot_id
    assert events[EventTypes.BOT_STATUS][-1]["status"] == "active"

    assert await manager.stop(bot_id) == 1
    state = await manager.journal.load_state(bot_id)
    assert state.status is BotStatus.STOPPED
    assert state.trades_executed == 0
    assert state.stopped_at is not None
    assert await manager.journal.active_bot_ids() == []
    assert manager.running_bots() == []
    assert events[EventTypes.BOT_STOPPED][0]["bot_id"] == bot_id


@pytest.mark.asyncio
async def test_invalid_request_has_no_side_effects(manager, store, events, bot_request):
    with pytest.raises(ValidationError) as exc:
        await manager.start(bot_request(amount=-1, symbol=""))

    assert set(exc.value.problems) == {"amount", "symbol"}
    assert await store.list("") == []
    assert manager.running_bots() == []
    error = events[EventTypes.BOT_ERROR][0]
    assert error["bot_id"] is None
    assert error["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_connectivity_failure_leaves_bot_unregistered(manager, gateway, store, events, bot_request):
    gateway.account_error = AuthenticationError("invalid api key")

    with pytest.raises(ConnectivityError) as exc:
        await manager.start(bot_request())

    assert exc.value.code == "INVALID_API_KEY"
    assert manager.running_bots() == []
    assert await store.list("bot_state_") == []
    assert await manager.journal.active_bot_ids() == []
    assert events[EventTypes.BOT_ERROR][0]["bot_id"] is None


@pytest.mark.asyncio
async def test_stop_unknown_bot_reports_error(manager, events):
    assert await manager.stop("DOGEUSDT-1") == 0
    error = events[EventTypes.BOT_ERROR][0]
    assert error["bot_id"] == "DOGEUSDT-1"
    assert error["code"] == "BOT_NOT_FOUND"


@pytest.mark.asyncio
async def test_stop_all_then_ticks_are_ignored(manager, events, bot_request):
    ids = [await manager.start(bot_request(symbol=s)) for s in ("BNBUSDT", "ETHUSDT", "BTCUSDT")]

    assert await manager.stop() == 3
    published = sum(len(bucket) for bucket in events.values())

    for bot_id in ids:
        assert await manager.tick(bot_id) is None
        state = await manager.get_state(bot_id)
        assert state.status is BotStatus.STOPPED
    assert sum(len(bucket) for bucket in events.values()) == published
    assert await manager.stop() == 0


@pytest.mark.asyncio
async def test_bot_ids_are_unique_for_same_millisecond(make_manager, bot_request):
    manager = make_manager(clock=lambda: FIXED)
    first = await manager.start(bot_request())
    second = await manager.start(bot_request())
    try:
        assert first != second
        assert first == f"BNBUSDT-{int(FIXED.timestamp() * 1000)}"
    finally:
        await manager.stop()


@pytest.mark.asyncio
async def test_unknown_interval_falls_back_or_is_rejected(make_manager, gateway, bot_request):
    lenient = make_manager()
    bot_id = await lenient.start(bot_request(interval="7m"))
    assert lenient.get_config(bot_id).interval == "7m"
    assert (await lenient.tick(bot_id)).ok
    assert gateway.candle_intervals == ["15m"]
    await lenient.stop()

    strict = make_manager(settings=EngineSettings(strict_intervals=True))
    with pytest.raises(ValidationError):
        await strict.start(bot_request(interval="7m"))


@pytest.mark.asyncio
async def test_unknown_strategy_rejected_only_in_strict_mode(make_manager, bot_request):
    strict = make_manager(settings=EngineSettings(strict_strategy_ids=True))
    with pytest.raises(ValidationError):
        await strict.start(bot_request(strategy_id="moon"))

    lenient = make_manager()
    bot_id = await lenient.start(bot_request(strategy_id="moon"))
    outcome = await lenient.tick(bot_id)
    assert outcome.signal.is_hold
    assert outcome.signal.reason == "unknown strategy: moon"
    await lenient.stop()


@pytest.mark.asyncio
async def test_scheduled_trigger_drives_ticks(make_manager, gateway, bot_request):
    permits = asyncio.Queue()

    async def gated_sleep(_delay):
        await permits.get()

    manager = make_manager(sleep=gated_sleep)
    bot_id = await manager.start(bot_request(interval="1m"))
    permits.put_nowait(None)
    for _ in range(100):
        if gateway.candle_calls:
            break
        await asyncio.sleep(0)

    assert gateway.candle_calls == 1
    await manager.stop(bot_id)
    state = await manager.journal.load_state(bot_id)
    assert state.last_signal is not None and state.last_signal.is_hold


async def _seed_running_bot(store, vault, credentials, bot_id="ETHUSDT-1"):
    journal = TradeJournal(store, vault)
    config = BotConfig("ETHUSDT", "crossover", 0.2, "1h", 3.0, 2.0, credentials)
    await journal.save_config(bot_id, config)
    state = BotState(bot_id, created_at=FIXED)
    state.activate()
    await journal.save_state(state)
    await journal.mark_active(bot_id, FIXED)
    return bot_id


@pytest.mark.asyncio
async def test_recover_finalizes_bots_when_resume_disabled(make_manager, store, events, credentials):
    bot_id = await _seed_running_bot(store, None, credentials)
    manager = make_manager()

    assert await manager.recover() == []
    state = await manager.journal.load_state(bot_id)
    assert state.status is BotStatus.STOPPED
    assert await manager.journal.active_bot_ids() == []
    assert events[EventTypes.BOT_STATUS][-1]["message"] == "Bot stopped after restart"


@pytest.mark.asyncio
async def test_recover_resumes_bots_with_sealed_credentials(make_manager, store, credentials):
    vault = CredentialVault(CredentialVault.generate_key().encode())
    bot_id = await _seed_running_bot(store, vault, credentials)
    manager = make_manager(settings=EngineSettings(resume_active_bots=True), vault=vault)

    assert await manager.recover() == [bot_id]
    try:
        assert manager.running_bots() == [bot_id]
        assert manager.get_config(bot_id).credentials == credentials
        assert (await manager.tick(bot_id)).ok
    finally:
        await manager.stop()


@pytest.mark.asyncio
async def test_recover_without_vault_cannot_resume(make_manager, store, credentials):
    bot_id = await _seed_running_bot(store, None, credentials)
    manager = make_manager(settings=EngineSettings(resume_active_bots=True))

    assert await manager.recover() == []
    assert (await manager.journal.load_state(bot_id)).status is BotStatus.STOPPED


@pytest.mark.asyncio
async def test_shutdown_closes_gateway_and_store(make_manager, gateway, bot_request):
    store = InMemoryKeyValueStore()
    manager = make_manager(store=store)
    await manager.start(bot_request())

    assert await manager.shutdown() == 1
    assert gateway.closed


@pytest.mark.asyncio
async def test_persisted_config_has_no_cleartext_secret(manager, store, bot_request, credentials):
    bot_id = await manager.start(bot_request())
    try:
        raw = await store.get_raw(config_key(bot_id))
        assert credentials.api_secret not in raw
        assert await store.get_raw(state_key(bot_id)) is not None
    finally:
        await manager.stop()


def test_subscribe_maps_event_kinds(event_bus, gateway, store):
    manager = BotManager(gateway, store, event_bus=event_bus)
    received = []
    manager.subscribe("trade-executed", received.append)
    event_bus.publish(EventTypes.TRADE_EXECUTED, {"bot_id": "x"})
    manager.unsubscribe("trade-executed", received.append)
    event_bus.publish(EventTypes.TRADE_EXECUTED, {"bot_id": "y"})
    assert received == [{"bot_id": "x"}]
