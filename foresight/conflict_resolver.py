"""
Conflict Resolver - Konflikte zwischen ueberlappenden Szenarien.

Zwei Szenarien kollidieren wenn sich ihre Zeitfenster ueberlappen und
ihre vorhergesagten Aktivitaeten ein unvereinbares Paar enthalten:
  - sleeping x socializing
  - sleeping x entertaining
  - working x socializing

Loesungsstrategien:
  1. conservative: Schwaecheres Szenario halbiert, beide referenzieren sich
  2. balanced (Default): Beide x0.7, beide referenzieren sich
  3. aggressive: Schwaecheres Szenario wird geloescht (scenarioExpired)

Bei Gleichstand verliert das spaeter eingefuegte Szenario. Jeder Pass
rechnet ab base_probability neu, wiederholte Passes sind damit stabil.
"""

import logging
from typing import Optional

from .constants import (
    BALANCED_PENALTY,
    CONFLICT_STRATEGIES,
    CONFLICTING_ACTIVITIES,
    CONSERVATIVE_PENALTY,
    EVENT_CONFLICT_DETECTED,
    EVENT_SCENARIO_EXPIRED,
)
from .event_bus import EventBus
from .models import Scenario

logger = logging.getLogger(__name__)

SOURCE = "scenario_engine"


def activities_conflict(first: set, second: set) -> bool:
    for a, b in CONFLICTING_ACTIVITIES:
        if (a in first and b in second) or (b in first and a in second):
            return True
    return False


def scenarios_conflict(a: Scenario, b: Scenario) -> bool:
    if not a.timeframe.overlaps(b.timeframe):
        return False
    return activities_conflict(a.predicted_state.activity_names, b.predicted_state.activity_names)


class ConflictResolver:
    """Erkennt und loest Konflikte im lebenden Szenario-Set."""

    def __init__(self, bus: EventBus, strategy: str = "balanced"):
        if strategy not in CONFLICT_STRATEGIES:
            raise ValueError(
                f"Unbekannte Konflikt-Strategie '{strategy}' (erlaubt: {', '.join(CONFLICT_STRATEGIES)})"
            )
        self.bus = bus
        self.strategy = strategy
        self._known_pairs: set = set()

    def resolve(self, scenarios: dict[str, Scenario]) -> dict:
        """Loest alle Konflikte paarweise (O(n^2)).

        ``scenarios`` wird in Einfuegereihenfolge gelesen; unter
        ``aggressive`` werden Verlierer daraus entfernt.

        Returns:
            {"conflicts": [(id_a, id_b), ...], "removed": [Scenario, ...],
             "beaten_by": {verlierer_id: gewinner_id}}
        """
        for scenario in scenarios.values():
            scenario.probability = scenario.base_probability
            scenario.conflicts_with = []

        ordered = list(scenarios.values())
        removed: dict[str, Scenario] = {}
        beaten_by: dict[str, str] = {}
        conflicts = []

        for i, a in enumerate(ordered):
            for b in ordered[i + 1:]:
                if a.id in removed or b.id in removed:
                    continue
                if not scenarios_conflict(a, b):
                    continue
                conflicts.append((a.id, b.id))
                loser = self._apply(a, b)
                if loser:
                    removed[loser.id] = loser
                    beaten_by[loser.id] = b.id if loser is a else a.id

        for scenario_id in removed:
            scenarios.pop(scenario_id, None)

        pairs = set(conflicts)
        for a_id, b_id in conflicts:
            if (a_id, b_id) in self._known_pairs:
                continue
            logger.info("Konflikt: '%s' <-> '%s' (%s)", a_id, b_id, self.strategy)
            self.bus.publish(EVENT_CONFLICT_DETECTED, {
                "scenario_a": self._lookup(a_id, scenarios, removed),
                "scenario_b": self._lookup(b_id, scenarios, removed),
            }, source=SOURCE)
        self._known_pairs = pairs

        for loser in removed.values():
            self.bus.publish(EVENT_SCENARIO_EXPIRED, {"scenario": loser}, source=SOURCE)

        return {"conflicts": conflicts, "removed": list(removed.values()), "beaten_by": beaten_by}

    def _apply(self, a: Scenario, b: Scenario) -> Optional[Scenario]:
        # Gleichstand: das spaeter eingefuegte Szenario (b) verliert
        weaker = b if b.probability <= a.probability else a

        if self.strategy == "aggressive":
            logger.debug("Szenario '%s' verworfen (Konflikt)", weaker.id)
            return weaker

        _link(a, b)
        if self.strategy == "conservative":
            weaker.probability *= CONSERVATIVE_PENALTY
        else:
            a.probability *= BALANCED_PENALTY
            b.probability *= BALANCED_PENALTY
        return None

    @staticmethod
    def _lookup(scenario_id: str, scenarios: dict, removed: dict) -> Scenario:
        return scenarios.get(scenario_id) or removed[scenario_id]

    def reset(self):
        self._known_pairs = set()


def _link(a: Scenario, b: Scenario):
    if b.id not in a.conflicts_with:
        a.conflicts_with.append(b.id)
    if a.id not in b.conflicts_with:
        b.conflicts_with.append(a.id)
