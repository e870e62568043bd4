"""
EventBus - kanał zdarzeń silnika (bot.status, bot.trade_executed, bot.error)

Listenerzy wywoływani są synchronicznie w wątku publikującym; błąd jednego
listenera jest logowany i nie blokuje pozostałych.
"""
import logging
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class EventBus:
    """Rejestr listenerów pogrupowanych według tematu"""

    def __init__(self):
        self._topics: Dict[str, List[Listener]] = {}
        self._lock = Lock()

    def subscribe(self, event_type: str, callback: Listener) -> None:
        """
        Dodaje listenera tematu

        Ponowna rejestracja tego samego callbacku niczego nie zmienia.
        """
        with self._lock:
            listeners = self._topics.setdefault(event_type, [])
            if callback not in listeners:
                listeners.append(callback)

    def unsubscribe(self, event_type: str, callback: Listener) -> None:
        with self._lock:
            listeners = self._topics.get(event_type, [])
            if callback in listeners:
                listeners.remove(callback)
            else:
                logger.debug(f"No listener registered for {event_type}")

    def publish(self, event_type: str, data: Any = None, **kwargs) -> None:
        """
        Przekazuje zdarzenie wszystkim listenerom tematu

        Args:
            event_type: Temat zdarzenia
            data: Ładunek; gdy pominięty, ładunkiem są argumenty nazwane
        """
        payload = kwargs if data is None and kwargs else data
        with self._lock:
            listeners = list(self._topics.get(event_type, ()))

        for callback in listeners:
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Listener for {event_type} raised: {e}")

    def get_listeners_count(self, event_type: Optional[str] = None) -> int:
        with self._lock:
            if event_type:
                return len(self._topics.get(event_type, ()))
            return sum(len(group) for group in self._topics.values())


_global_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Wspólna instancja EventBus procesu"""
    global _global_event_bus
    if _global_event_bus is None:
        _global_event_bus = EventBus()
    return _global_event_bus


class EventTypes:
    """Tematy zdarzeń"""
    CONFIG_UPDATED = "config.updated"
    BOT_STARTED = "bot.started"
    BOT_STOPPED = "bot.stopped"
    BOT_STATUS = "bot.status"
    TRADE_EXECUTED = "bot.trade_executed"
    BOT_ERROR = "bot.error"


def publish_event(event: Any, bus: Optional[EventBus] = None) -> None:
    """Publikuje model zdarzenia (pydantic) pod tematem zadeklarowanym w modelu"""
    target = bus or get_event_bus()
    topic = getattr(event, "topic", None)
    if not topic:
        raise TypeError(f"Unsupported event type: {type(event)}")
    target.publish(topic, event.model_dump(mode="json"))
