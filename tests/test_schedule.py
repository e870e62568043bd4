import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import ValidationError
from core.schedule import IntervalSchedule, ScheduledTrigger, normalize_interval

UTC = timezone.utc


def at(hour, minute, second=0, day=1):
    return datetime(2024, 3, day, hour, minute, second, tzinfo=UTC)


@pytest.mark.parametrize(
    "interval, now, expected",
    [
        ("1m", at(10, 7, 30), at(10, 8)),
        ("1m", at(10, 7, 0), at(10, 8)),
        ("5m", at(10, 7, 30), at(10, 10)),
        ("15m", at(10, 52), at(11, 0)),
        ("15m", at(23, 59, 59), at(0, 0, day=2)),
        ("1h", at(10, 0, 1), at(11, 0)),
        ("4h", at(10, 30), at(12, 0)),
        ("4h", at(22, 0), at(0, 0, day=2)),
    ],
)
def test_next_fire_aligned_to_boundaries(interval, now, expected):
    assert IntervalSchedule(interval).next_fire(now) == expected


def test_daily_fires_at_configured_hour():
    schedule = IntervalSchedule("1d", daily_hour=6)
    assert schedule.next_fire(at(5, 59)) == at(6, 0)
    assert schedule.next_fire(at(6, 0)) == at(6, 0, day=2)


def test_unknown_interval_falls_back_to_fifteen_minutes():
    schedule = IntervalSchedule("7m")
    assert schedule.interval == "15m"
    assert schedule.requested == "7m"
    assert schedule.next_fire(at(10, 1)) == at(10, 15)


def test_strict_mode_rejects_unknown_interval():
    with pytest.raises(ValidationError):
        normalize_interval("2w", strict=True)
    assert normalize_interval("4h", strict=True) == "4h"


@pytest.mark.asyncio
async def test_trigger_fires_on_each_boundary():
    now = [at(10, 7, 30)]
    delays = []
    fired = []

    async def fake_sleep(seconds):
        delays.append(seconds)
        now[0] += timedelta(seconds=seconds)
        await asyncio.sleep(0)

    trigger = None

    def on_fire():
        fired.append(now[0])
        if len(fired) == 3:
            trigger.cancel()

    trigger = ScheduledTrigger("t1", IntervalSchedule("5m"), on_fire, clock=lambda: now[0], sleep=fake_sleep)
    trigger.start()
    await trigger.wait_closed()

    assert fired == [at(10, 10), at(10, 15), at(10, 20)]
    assert delays[0] == pytest.approx(150.0)
    assert trigger.fires == 3
    assert not trigger.running


@pytest.mark.asyncio
async def test_trigger_survives_failing_callback():
    now = [at(10, 0, 30)]
    calls = []

    async def fake_sleep(seconds):
        now[0] += timedelta(seconds=seconds)
        await asyncio.sleep(0)

    trigger = None

    def on_fire():
        calls.append(now[0])
        if len(calls) == 2:
            trigger.cancel()
            return
        raise RuntimeError("boom")

    trigger = ScheduledTrigger("t2", IntervalSchedule("1m"), on_fire, clock=lambda: now[0], sleep=fake_sleep)
    trigger.start()
    await trigger.wait_closed()

    assert calls == [at(10, 1), at(10, 2)]
