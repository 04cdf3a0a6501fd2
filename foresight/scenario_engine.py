"""
Scenario Engine - Konsument der Pipeline: Patterns + Kontext -> Szenarien.

Ablauf pro regenerate_scenarios():
  1. Abgelaufene Szenarien entfernen (scenarioExpired)
  2. Vier Horizont-Passes + Energiebedarf (Scenario Generator)
  3. Upsert: neu -> scenarioGenerated, geaendert -> scenarioUpdated
  4. Konfliktloesung ueber das gesamte lebende Set
  5. Faellige Vorbereitungen ausloesen (preparationTriggered)

Ausgeloest durch Kalender-, Kontext- und Bewohner-Updates sowie durch
neu entdeckte Patterns. Ein Update waehrend eines laufenden Passes wird
vorgemerkt und danach ausgefuehrt, nie rekursiv.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Union

from .config import section_config
from .conflict_resolver import ConflictResolver, scenarios_conflict
from .constants import (
    EVENT_PATTERN_DISCOVERED,
    EVENT_SCENARIO_EXPIRED,
    EVENT_SCENARIO_GENERATED,
    EVENT_SCENARIO_UPDATED,
)
from .event_bus import EventBus
from .models import (
    CalendarEvent,
    ExternalContext,
    Horizon,
    OccupantState,
    PreparationAction,
    Scenario,
)
from .pass_context import analysis_pass
from .preparation_scheduler import PreparationScheduler
from .scenario_generator import ScenarioGenerator

logger = logging.getLogger(__name__)

SOURCE = "scenario_engine"

DEFAULT_HORIZONS = {
    "immediate_minutes": 30,
    "short_term_hours": 4,
    "daily_hours": 24,
    "weekly_days": 7,
}

# Kurzform aus der Konfiguration -> Schluessel mit Einheit
_HORIZON_ALIASES = {
    "immediate": "immediate_minutes",
    "short_term": "short_term_hours",
    "daily": "daily_hours",
    "weekly": "weekly_days",
}

# Schutz gegen Handler die bei jedem Pass ein neues Update ausloesen
_MAX_QUEUED_RUNS = 5


def _normalize_horizons(raw: Optional[dict]) -> dict:
    horizons = dict(DEFAULT_HORIZONS)
    for key, value in (raw or {}).items():
        horizons[_HORIZON_ALIASES.get(key, key)] = value
    return horizons


class ScenarioEngine:
    """Verwaltet das lebende Szenario-Set."""

    def __init__(self, pattern_engine, config: Optional[dict] = None,
                 bus: Optional[EventBus] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        cfg = section_config("scenario_engine", config)
        self.horizons = _normalize_horizons(cfg.get("prediction_horizons"))
        self.min_scenario_probability = float(cfg.get("min_scenario_probability", 0.3))
        self.auto_execute_threshold = float(cfg.get("auto_execute_threshold", 0.85))
        self.strategy = cfg.get("conflict_resolution_strategy", "balanced")

        self.pattern_engine = pattern_engine
        self.bus = bus or pattern_engine.bus
        self._clock = clock or datetime.now

        self.resolver = ConflictResolver(self.bus, self.strategy)
        self.generator = ScenarioGenerator(
            pattern_engine,
            horizons=self.horizons,
            min_probability=self.min_scenario_probability,
            auto_execute_threshold=self.auto_execute_threshold,
        )
        self.preparations = PreparationScheduler(self.bus)

        self._scenarios: dict[str, Scenario] = {}
        # Unter 'aggressive' verworfene Szenarien: id -> (Verlierer, Gewinner-ID)
        self._suppressed: dict[str, tuple[Scenario, str]] = {}
        self._calendar: list[CalendarEvent] = []
        self._context: Optional[ExternalContext] = None
        self._occupants: dict[str, OccupantState] = {}

        self._regenerating = False
        self._pending = False
        self._runs = 0
        self._last_run: Optional[datetime] = None

        self._subscription = self.bus.subscribe(EVENT_PATTERN_DISCOVERED, self._on_pattern_discovered)

    # ------------------------------------------------------------------
    # Kollaborateure
    # ------------------------------------------------------------------

    def update_calendar(self, events: Iterable[CalendarEvent]):
        self._calendar = list(events)
        self.regenerate_scenarios()

    def update_external_context(self, context: ExternalContext):
        self._context = context
        self.regenerate_scenarios()

    def update_occupant_state(self, user_id: str, state: OccupantState):
        self._occupants[user_id] = state
        self.regenerate_scenarios()

    def _on_pattern_discovered(self, event):
        logger.debug("Neues Pattern '%s' -> Szenarien neu berechnen", event["pattern"].id)
        self.regenerate_scenarios()

    def _retire_missing_events(self) -> int:
        """Kalender- und Social-Szenarien ohne Event im aktuellen Kalender."""
        event_ids = {e.id for e in self._calendar}
        retired = 0
        for scenario_id in list(self._scenarios):
            for prefix in ("calendar_", "social_"):
                if scenario_id.startswith(prefix) and scenario_id[len(prefix):] not in event_ids:
                    self._expire(scenario_id)
                    retired += 1
                    break
        return retired

    # ------------------------------------------------------------------
    # Regenerierung
    # ------------------------------------------------------------------

    def regenerate_scenarios(self):
        if self._regenerating:
            self._pending = True
            return

        self._regenerating = True
        try:
            for _ in range(_MAX_QUEUED_RUNS):
                self._pending = False
                self._regenerate_once()
                if not self._pending:
                    break
            else:
                logger.warning("Szenario-Regenerierung: %d Folge-Updates, breche ab", _MAX_QUEUED_RUNS)
        finally:
            self._regenerating = False

    def _regenerate_once(self):
        with analysis_pass("scenarios"):
            now = self._clock()
            expired = self._cleanup_expired(now)
            expired += self._retire_missing_events()

            generated = self.generator.generate(
                now, self._calendar, self._context, self._occupants,
                existing=list(self._scenarios.values()),
            )
            created, updated = 0, 0
            for scenario in generated:
                result = self._upsert(scenario)
                created += result == "created"
                updated += result == "updated"

            resolution = self.resolver.resolve(self._scenarios)
            for loser in resolution["removed"]:
                self._suppressed[loser.id] = (loser, resolution["beaten_by"][loser.id])

            fired = self.preparations.trigger(self._scenarios.values(), now)

            self._runs += 1
            self._last_run = now
            logger.info("Szenarien: %d live (%d neu, %d geaendert, %d abgelaufen, %d Konflikte, %d Vorbereitungen)",
                        len(self._scenarios), created, updated, expired,
                        len(resolution["conflicts"]), len(fired))

    def _upsert(self, scenario: Scenario) -> str:
        if scenario.id in self._suppressed:
            if self._still_suppressed(scenario):
                return "suppressed"
            del self._suppressed[scenario.id]

        existing = self._scenarios.get(scenario.id)
        if existing is None:
            self._scenarios[scenario.id] = scenario
            self.bus.publish(EVENT_SCENARIO_GENERATED, {"scenario": scenario}, source=SOURCE)
            return "created"
        if existing.fingerprint() == scenario.fingerprint():
            return "unchanged"
        self._scenarios[scenario.id] = scenario
        self.bus.publish(EVENT_SCENARIO_UPDATED, {"scenario": scenario}, source=SOURCE)
        return "updated"

    def _still_suppressed(self, scenario: Scenario) -> bool:
        """Verlierer bleibt weg, solange er unveraendert ist und sein Gewinner
        noch lebt und weiterhin mit ihm kollidiert."""
        loser, winner_id = self._suppressed[scenario.id]
        winner = self._scenarios.get(winner_id)
        if winner is None or loser.fingerprint() != scenario.fingerprint():
            return False
        return scenarios_conflict(winner, scenario)

    def _cleanup_expired(self, now: datetime) -> int:
        for scenario_id in [sid for sid, (s, _) in self._suppressed.items() if s.timeframe.end < now]:
            del self._suppressed[scenario_id]

        stale = [sid for sid, s in self._scenarios.items() if s.timeframe.end < now]
        for scenario_id in stale:
            self._expire(scenario_id)
        return len(stale)

    def _expire(self, scenario_id: str):
        scenario = self._scenarios.pop(scenario_id, None)
        if scenario:
            self.bus.publish(EVENT_SCENARIO_EXPIRED, {"scenario": scenario}, source=SOURCE)

    # ------------------------------------------------------------------
    # Abfragen
    # ------------------------------------------------------------------

    def horizon_delta(self, horizon: Union[Horizon, str]) -> timedelta:
        horizon = Horizon(horizon)
        if horizon == Horizon.IMMEDIATE:
            return timedelta(minutes=self.horizons["immediate_minutes"])
        if horizon == Horizon.SHORT_TERM:
            return timedelta(hours=self.horizons["short_term_hours"])
        if horizon == Horizon.DAILY:
            return timedelta(hours=self.horizons["daily_hours"])
        return timedelta(days=self.horizons["weekly_days"])

    def get_scenarios(self, horizon: Optional[Union[Horizon, str]] = None) -> list[Scenario]:
        """Lebende Szenarien, optional nur mit Beginn innerhalb des Horizonts."""
        scenarios = list(self._scenarios.values())
        if horizon is not None:
            limit = self._clock() + self.horizon_delta(horizon)
            scenarios = [s for s in scenarios if s.timeframe.start <= limit]
        return sorted(scenarios, key=lambda s: s.timeframe.start)

    def get_high_probability_scenarios(self, threshold: float = 0.7) -> list[Scenario]:
        return [s for s in self.get_scenarios() if s.probability >= threshold]

    def get_preparations_due(self, within_minutes: int = 30) -> list[PreparationAction]:
        return self.preparations.upcoming(self._scenarios.values(), self._clock(), within_minutes)

    @property
    def context(self) -> Optional[ExternalContext]:
        return self._context

    def get_scenario(self, scenario_id: str) -> Optional[Scenario]:
        return self._scenarios.get(scenario_id)

    def get_status(self) -> dict:
        return {
            "scenarios": len(self._scenarios),
            "suppressed": len(self._suppressed),
            "strategy": self.strategy,
            "calendar_events": len(self._calendar),
            "occupants": {uid: s.is_home for uid, s in self._occupants.items()},
            "runs": self._runs,
            "last_run": self._last_run.isoformat() if self._last_run else None,
            "preparations": self.preparations.get_stats(),
        }

    def shutdown(self):
        self.bus.unsubscribe(self._subscription)
