"""
Preparation Scheduler - loest faellige Vorbereitungs-Aktionen aus.

Feuert jede Aktion deren execute_at in [now - 60s, now] liegt, genau
einmal: ausgeloeste (id, execute_at)-Paare landen in einem Ledger, der
hinter dem Fenster wieder bereinigt wird.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable

from .constants import EVENT_PREPARATION_TRIGGERED, PREPARATION_TRIGGER_WINDOW_SECONDS
from .event_bus import EventBus
from .models import PreparationAction, Scenario

logger = logging.getLogger(__name__)


class PreparationScheduler:

    def __init__(self, bus: EventBus, window_seconds: int = PREPARATION_TRIGGER_WINDOW_SECONDS):
        self.bus = bus
        self.window = timedelta(seconds=window_seconds)
        self._fired: dict[tuple, datetime] = {}
        self._total_fired = 0

    def trigger(self, scenarios: Iterable[Scenario], now: datetime) -> list[PreparationAction]:
        """Feuert alle im Fenster faelligen, noch nicht ausgeloesten Aktionen."""
        window_start = now - self.window
        self._prune(window_start)

        due = []
        for scenario in scenarios:
            for action in scenario.required_preparation:
                if not window_start <= action.execute_at <= now:
                    continue
                key = (action.id, action.execute_at)
                if key in self._fired:
                    continue
                self._fired[key] = action.execute_at
                due.append(action)

        due.sort(key=lambda a: a.execute_at)
        for action in due:
            logger.info("Vorbereitung faellig: %s (Szenario '%s', %s)",
                        action.action, action.scenario_id, action.execute_at.strftime("%H:%M"))
            self.bus.publish(EVENT_PREPARATION_TRIGGERED, {"action": action}, source="scenario_engine")
        self._total_fired += len(due)
        return due

    @staticmethod
    def upcoming(scenarios: Iterable[Scenario], now: datetime,
                 within_minutes: int = 30) -> list[PreparationAction]:
        """Aktionen mit execute_at in [now, now + within], sortiert."""
        horizon = now + timedelta(minutes=within_minutes)
        actions = [
            action
            for scenario in scenarios
            for action in scenario.required_preparation
            if now <= action.execute_at <= horizon
        ]
        return sorted(actions, key=lambda a: a.execute_at)

    def _prune(self, window_start: datetime):
        stale = [key for key, execute_at in self._fired.items() if execute_at < window_start]
        for key in stale:
            del self._fired[key]

    def get_stats(self) -> dict:
        return {"fired_total": self._total_fired, "ledger_size": len(self._fired)}
