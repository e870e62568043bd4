import pytest

from app.storage import InMemoryKeyValueStore, SqliteKeyValueStore, create_store
from core.bot_state import BotState
from core.models import BotStatus


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryKeyValueStore()
    return SqliteKeyValueStore(str(tmp_path / "kv.db"))


@pytest.mark.asyncio
async def test_get_set_and_prefix_listing(any_store):
    await any_store.initialize()
    await any_store.set("bot_state_A-1", {"status": "active"})
    await any_store.set("bot_state_B-2", {"status": "stopped"})
    await any_store.set("bot_stateX", {"status": "other"})
    await any_store.set("trade_bot_A-1_1", {"side": "BUY"})

    assert await any_store.get("bot_state_A-1") == {"status": "active"}
    assert await any_store.get("missing") is None
    assert await any_store.list("bot_state_") == ["bot_state_A-1", "bot_state_B-2"]
    assert len(await any_store.list()) == 4

    assert await any_store.delete("trade_bot_A-1_1") is True
    assert await any_store.delete("trade_bot_A-1_1") is False
    await any_store.close()


@pytest.mark.asyncio
async def test_persisting_same_state_twice_stores_identical_text(any_store):
    state = BotState("ETHUSDT-1", status=BotStatus.ACTIVE, open_positions={"ETHUSDT": 1.0, "BTCUSDT": 2.0})

    await any_store.set("bot_state_ETHUSDT-1", state.to_dict())
    first = await any_store.get_raw("bot_state_ETHUSDT-1")
    await any_store.set("bot_state_ETHUSDT-1", state.to_dict())
    second = await any_store.get_raw("bot_state_ETHUSDT-1")

    assert first == second
    await any_store.close()


@pytest.mark.asyncio
async def test_sqlite_store_persists_across_connections(tmp_path):
    path = str(tmp_path / "engine.db")
    store = SqliteKeyValueStore(path)
    await store.set("active_bot_X-1", {"bot_id": "X-1"})
    await store.close()

    reopened = SqliteKeyValueStore(path)
    assert await reopened.list("active_bot_") == ["active_bot_X-1"]
    await reopened.close()


def test_create_store_rejects_unknown_backend():
    assert isinstance(create_store({"backend": "memory"}), InMemoryKeyValueStore)
    with pytest.raises(ValueError):
        create_store({"backend": "redis"})
