"""
Event Bus fuer Lebenszyklus-Signale der Pattern- und Scenario-Engine.

Publish/Subscribe mit Prioritaeten, Wildcards ('pattern*', '*') und
einer kurzen Event-History. Fehler in einem Handler werden geloggt und
blockieren weder andere Handler noch den laufenden Analyse-Pass.
"""

import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from itertools import count
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class Event:
    """Ein Signal der Engines. Zeitstempel kommt von der Engine-Uhr."""
    event_type: str
    data: dict = field(default_factory=dict)
    source: str = "system"
    timestamp: Optional[datetime] = None

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def summary(self) -> dict:
        return {
            "type": self.event_type,
            "source": self.source,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "keys": sorted(self.data),
        }


@dataclass
class Subscription:
    id: str
    topic: str
    handler: Callable
    priority: int = 0
    source_filter: Optional[str] = None
    seq: int = 0

    def matches(self, event: Event) -> bool:
        if self.source_filter and event.source != self.source_filter:
            return False
        if self.topic == "*" or self.topic == event.event_type:
            return True
        return self.topic.endswith("*") and event.event_type.startswith(self.topic[:-1])


class EventBus:
    """Zentraler Bus, pro Engine-Verbund eine Instanz (kein Singleton).

    Handler bekommen das Event-Objekt; die Nutzdaten liegen in ``event.data``
    unter festen Namen (``pattern``, ``observation``, ``scenario``,
    ``scenario_a``/``scenario_b``, ``action``).
    """

    def __init__(self, history_size: int = 100,
                 clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or datetime.now
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()
        self._history: deque = deque(maxlen=history_size)
        self._counts: Counter = Counter()
        self._seq = count(1)

    def subscribe(self, topic: str, handler: Callable, priority: int = 0,
                  source_filter: Optional[str] = None) -> str:
        """Registriert einen Handler.

        Args:
            topic: Event-Name, '*' fuer alle oder Praefix mit '*' am Ende
            handler: Callback(event: Event)
            priority: Hoehere Prioritaet laeuft zuerst, bei Gleichstand
                die Reihenfolge der Anmeldung
            source_filter: Nur Events dieser Quelle

        Returns:
            Subscription-ID fuer unsubscribe()
        """
        seq = next(self._seq)
        sub = Subscription(f"{topic}#{seq}", topic, handler, priority, source_filter, seq)
        with self._lock:
            self._subscriptions.append(sub)
            self._subscriptions.sort(key=lambda s: (-s.priority, s.seq))
        logger.debug("Abonniert: '%s' (Prioritaet %d)", topic, priority)
        return sub.id

    def unsubscribe(self, sub_id: str) -> bool:
        with self._lock:
            before = len(self._subscriptions)
            self._subscriptions = [s for s in self._subscriptions if s.id != sub_id]
            return len(self._subscriptions) < before

    def publish(self, event_type: str, data: Optional[dict] = None, source: str = "system") -> Event:
        """Verteilt ein Event an alle passenden Handler."""
        event = Event(event_type, dict(data or {}), source, self._clock())
        self._history.append(event)
        self._counts[event_type] += 1

        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(event)]

        for sub in targets:
            try:
                sub.handler(event)
            except Exception as e:
                logger.error("Handler %s fuer '%s' fehlgeschlagen: %s",
                             sub.id, event_type, e, exc_info=True)
        return event

    def get_history(self, event_type: Optional[str] = None, limit: int = 50) -> list[dict]:
        events = [e for e in self._history if not event_type or e.event_type == event_type]
        return [e.summary() for e in events[-limit:]]

    def get_stats(self) -> dict:
        with self._lock:
            active = len(self._subscriptions)
        return {
            "total_events": sum(self._counts.values()),
            "by_type": dict(self._counts),
            "active_subscriptions": active,
            "history_size": len(self._history),
        }

    def clear(self):
        with self._lock:
            self._subscriptions.clear()
        self._history.clear()
        self._counts.clear()
