"""
Harmonogram ticków botów

Zamienia interwał ("1m", "15m", "1h", ...) na kolejne momenty wyzwolenia
wyrównane do granic minut/godzin (UTC) i uruchamia jeden task asyncio
na bota, który w tych momentach wysyła tick do workera.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional, Tuple

from core.errors import ValidationError
from core.models import utc_now
from utils.logger import LogType, get_logger

logger = get_logger("schedule", LogType.BOT)

DEFAULT_INTERVAL = "15m"

# interwał -> (jednostka, krok)
INTERVALS: Dict[str, Tuple[str, int]] = {
    "1m": ("minute", 1),
    "5m": ("minute", 5),
    "15m": ("minute", 15),
    "1h": ("hour", 1),
    "4h": ("hour", 4),
    "1d": ("day", 1),
}

INTERVAL_SECONDS: Dict[str, int] = {
    "1m": 60,
    "5m": 5 * 60,
    "15m": 15 * 60,
    "1h": 60 * 60,
    "4h": 4 * 60 * 60,
    "1d": 24 * 60 * 60,
}


def normalize_interval(interval: str, strict: bool = False) -> str:
    """
    Zwraca obsługiwany interwał

    Nieznany interwał zamieniany jest na 15m (z ostrzeżeniem), a w trybie
    ``strict`` odrzucany.

    Raises:
        ValidationError: nieznany interwał przy strict=True
    """
    if interval in INTERVALS:
        return interval
    if strict:
        raise ValidationError(
            f"Unsupported interval '{interval}', expected one of {', '.join(INTERVALS)}",
            ["interval"],
        )
    logger.warning(f"Unsupported interval '{interval}' - falling back to {DEFAULT_INTERVAL}")
    return DEFAULT_INTERVAL


class IntervalSchedule:
    """Wyznacza kolejne momenty ticków dla interwału"""

    def __init__(self, interval: str, daily_hour: int = 0, strict: bool = False):
        self.requested = interval
        self.interval = normalize_interval(interval, strict)
        self.unit, self.step = INTERVALS[self.interval]
        if not 0 <= daily_hour <= 23:
            raise ValueError("daily_hour must be between 0 and 23")
        self.daily_hour = daily_hour

    def next_fire(self, after: datetime) -> datetime:
        """Pierwszy moment wyzwolenia ściśle późniejszy niż ``after``"""
        if after.tzinfo is None:
            after = after.replace(tzinfo=timezone.utc)
        after = after.astimezone(timezone.utc)

        if self.unit == "minute":
            hour_start = after.replace(minute=0, second=0, microsecond=0)
            minute = (after.minute // self.step + 1) * self.step
            return hour_start + timedelta(minutes=minute)

        if self.unit == "hour":
            day_start = after.replace(hour=0, minute=0, second=0, microsecond=0)
            hour = (after.hour // self.step + 1) * self.step
            return day_start + timedelta(hours=hour)

        candidate = after.replace(hour=self.daily_hour, minute=0, second=0, microsecond=0)
        if candidate <= after:
            candidate += timedelta(days=1)
        return candidate

    def __repr__(self) -> str:
        return f"IntervalSchedule({self.interval!r})"


class ScheduledTrigger:
    """
    Cykliczny wyzwalacz jednego bota

    ``on_fire`` jest wywoływane synchronicznie i nie może czekać na wynik
    ticka - jedynie przekazuje komendę do workera.
    """

    def __init__(
        self,
        name: str,
        schedule: IntervalSchedule,
        on_fire: Callable[[], None],
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.schedule = schedule
        self._on_fire = on_fire
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False
        self._last_fire_at: Optional[datetime] = None
        self.fires = 0

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name=f"trigger-{self.name}")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while not self._cancelled:
            now = self._clock()
            reference = max(now, self._last_fire_at) if self._last_fire_at else now
            fire_at = self.schedule.next_fire(reference)
            await self._sleep(max(0.0, (fire_at - now).total_seconds()))
            if self._cancelled:
                break
            self._last_fire_at = fire_at
            self.fires += 1
            try:
                self._on_fire()
            except Exception:
                logger.exception(f"Trigger {self.name} failed to dispatch tick")

    def cancel(self) -> None:
        """Natychmiast wstrzymuje kolejne wyzwolenia"""
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
