"""
Tests fuer ConflictResolver - Erkennung und die drei Loesungsstrategien.
"""

from datetime import datetime

import pytest

from foresight.conflict_resolver import ConflictResolver, activities_conflict, scenarios_conflict
from foresight.constants import EVENT_CONFLICT_DETECTED, EVENT_SCENARIO_EXPIRED

from factories import scenario


def _sleep(probability=0.8):
    return scenario("sleep", "sleeping", datetime(2026, 3, 2, 23, 0),
                    datetime(2026, 3, 3, 7, 0), probability)


def _party(probability=0.9):
    return scenario("party", "entertaining", datetime(2026, 3, 2, 22, 30),
                    datetime(2026, 3, 3, 1, 0), probability)


def _live(*scenarios) -> dict:
    return {s.id: s for s in scenarios}


class TestDetection:

    def test_conflicting_pairs_are_symmetric(self):
        assert activities_conflict({"sleeping"}, {"socializing"})
        assert activities_conflict({"socializing"}, {"sleeping"})
        assert activities_conflict({"working"}, {"socializing"})
        assert not activities_conflict({"cooking"}, {"sleeping"})

    def test_requires_overlap(self):
        evening_party = scenario("party", "entertaining", datetime(2026, 3, 2, 19, 0),
                                 datetime(2026, 3, 2, 22, 0), 0.9)
        assert not scenarios_conflict(_sleep(), evening_party)
        assert scenarios_conflict(_sleep(), _party())

    def test_compatible_activities(self):
        late_snack = scenario("snack", "eating", datetime(2026, 3, 2, 23, 0),
                              datetime(2026, 3, 2, 23, 30), 0.6)
        assert not scenarios_conflict(_sleep(), late_snack)


class TestStrategies:

    def test_balanced(self, bus):
        sleep, party = _sleep(), _party()
        result = ConflictResolver(bus, "balanced").resolve(_live(sleep, party))

        assert sleep.probability == pytest.approx(0.56)
        assert party.probability == pytest.approx(0.63)
        assert sleep.conflicts_with == ["party"]
        assert party.conflicts_with == ["sleep"]
        assert result["conflicts"] == [("sleep", "party")]
        assert result["removed"] == []

    def test_conservative(self, bus):
        sleep, party = _sleep(), _party()
        ConflictResolver(bus, "conservative").resolve(_live(sleep, party))
        assert sleep.probability == pytest.approx(0.4)
        assert party.probability == pytest.approx(0.9)
        assert sleep.conflicts_with == ["party"]

    def test_aggressive(self, bus, recorder):
        sleep, party = _sleep(), _party()
        live = _live(sleep, party)
        result = ConflictResolver(bus, "aggressive").resolve(live)

        assert list(live) == ["party"]
        assert result["removed"] == [sleep]
        assert result["beaten_by"] == {"sleep": "party"}
        assert party.probability == pytest.approx(0.9)
        assert recorder.of(EVENT_SCENARIO_EXPIRED)[0]["scenario"] is sleep

    def test_tie_removes_later_scenario(self, bus):
        sleep, party = _sleep(0.8), _party(0.8)
        live = _live(sleep, party)
        ConflictResolver(bus, "aggressive").resolve(live)
        assert list(live) == ["sleep"]

    def test_unknown_strategy(self, bus):
        with pytest.raises(ValueError):
            ConflictResolver(bus, "random")


class TestRepeatedPasses:

    def test_recomputed_from_base_probability(self, bus):
        sleep, party = _sleep(), _party()
        live = _live(sleep, party)
        resolver = ConflictResolver(bus, "balanced")
        resolver.resolve(live)
        resolver.resolve(live)
        assert sleep.probability == pytest.approx(0.56)
        assert sleep.conflicts_with == ["party"]

    def test_event_only_for_new_pairs(self, bus, recorder):
        live = _live(_sleep(), _party())
        resolver = ConflictResolver(bus, "balanced")
        resolver.resolve(live)
        resolver.resolve(live)
        events = recorder.of(EVENT_CONFLICT_DETECTED)
        assert len(events) == 1
        assert events[0]["scenario_a"].id == "sleep"
        assert events[0]["scenario_b"].id == "party"

    def test_reset_forgets_pairs(self, bus, recorder):
        live = _live(_sleep(), _party())
        resolver = ConflictResolver(bus, "balanced")
        resolver.resolve(live)
        resolver.reset()
        resolver.resolve(live)
        assert len(recorder.of(EVENT_CONFLICT_DETECTED)) == 2
