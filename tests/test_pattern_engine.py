"""
Tests fuer PatternEngine - Import, inkrementelle Analyse, Voll-Pass, Snapshot.
"""

import json
from datetime import timedelta
from unittest.mock import patch

from foresight.constants import EVENT_PATTERN_DISCOVERED
from foresight.event_bus import EventBus
from foresight.models import PatternStatus, PatternType
from foresight.pattern_engine import PatternEngine
from foresight.temporal import date_to_moment

from conftest import PATTERN_CONFIG, EventRecorder
from factories import START, activity, daily


def _dinner_history():
    # 20 Beobachtungen an 15 verschiedenen Tagen
    observations = daily(START, 15, 19, 0, "cooking")
    observations += daily(START, 5, 19, 20, "cooking")
    return observations


class TestImportHistory:

    def test_import_promotes_slot_pattern(self, pattern_engine, clock, recorder):
        clock.set(START + timedelta(days=15, hours=10))
        assert pattern_engine.import_history(_dinner_history()) == 20

        pattern = pattern_engine.registry.get("daily_slot_9")
        assert pattern is not None
        assert pattern.type == PatternType.DAILY_ROUTINE
        assert pattern.status == PatternStatus.ESTABLISHED
        assert pattern.data.typical_time == "19:00"
        discovered = [e["pattern"].id for e in recorder.of(EVENT_PATTERN_DISCOVERED)]
        assert "daily_slot_9" in discovered

    def test_promoted_candidates_leave_tracker(self, pattern_engine, clock):
        clock.set(START + timedelta(days=15, hours=10))
        pattern_engine.import_history(_dinner_history())
        assert "daily_slot_9" not in pattern_engine.tracker

    def test_repeated_full_analysis_does_not_duplicate(self, pattern_engine, clock, recorder):
        clock.set(START + timedelta(days=15, hours=10))
        pattern_engine.import_history(_dinner_history())
        count = len(pattern_engine.get_patterns())
        result = pattern_engine.perform_full_analysis()
        assert result["promoted"] == 0
        assert len(pattern_engine.get_patterns()) == count
        assert len(recorder.of(EVENT_PATTERN_DISCOVERED)) == count


class TestIncremental:

    def test_rate_limited(self, pattern_engine, clock):
        with patch.object(pattern_engine.registry, "evaluate", return_value=[]) as evaluate:
            for i in range(3):
                pattern_engine.observe(activity(START - timedelta(minutes=i), "cooking"))
            assert evaluate.call_count == 1

            clock.advance(seconds=61)
            pattern_engine.observe(activity(clock.now, "cooking"))
            assert evaluate.call_count == 2

    def test_observations_always_stored(self, pattern_engine):
        for i in range(3):
            pattern_engine.observe(activity(START - timedelta(minutes=i), "cooking"))
        assert len(pattern_engine.store) == 3

    def test_promotion_after_fifth_day(self, pattern_engine, clock):
        for i, obs in enumerate(daily(START, 5, 19, 0, "cooking")):
            clock.set(obs.timestamp)
            pattern_engine.observe(obs)
            if i < 4:
                assert "daily_slot_9" not in pattern_engine.registry
        assert "daily_slot_9" in pattern_engine.registry

    def test_following_day_strengthens(self, pattern_engine, clock):
        for obs in daily(START, 6, 19, 0, "cooking"):
            clock.set(obs.timestamp)
            pattern_engine.observe(obs)
        pattern = pattern_engine.registry.get("daily_slot_9")
        assert pattern.occurrences == 6
        assert pattern.last_observed == START.replace(hour=19) + timedelta(days=5)


class TestDecay:

    def test_full_pass_decays_stale_patterns(self, pattern_engine, clock):
        clock.set(START + timedelta(days=15, hours=10))
        pattern_engine.import_history(_dinner_history())

        clock.advance(days=20)
        result = pattern_engine.perform_full_analysis()
        assert result["decayed"] >= 1
        assert pattern_engine.registry.get("daily_slot_9").status == PatternStatus.FADING

    def test_decay_tick(self, pattern_engine, clock):
        clock.set(START + timedelta(days=15, hours=10))
        pattern_engine.import_history(_dinner_history())
        clock.advance(days=20)
        decayed = pattern_engine.decay_patterns()
        assert "daily_slot_9" in [p.id for p in decayed]


class TestQueries:

    def test_active_patterns_respect_min_confidence(self, pattern_engine, clock):
        clock.set(START + timedelta(days=15, hours=10))
        pattern_engine.import_history(_dinner_history())
        pattern = pattern_engine.registry.get("daily_slot_9")

        assert pattern in pattern_engine.get_active_patterns(PatternType.DAILY_ROUTINE)
        pattern.confidence = 0.55
        assert pattern not in pattern_engine.get_active_patterns(PatternType.DAILY_ROUTINE)

    def test_prediction_for_moment(self, pattern_engine, clock):
        clock.set(START + timedelta(days=15, hours=10))
        pattern_engine.import_history(_dinner_history())
        moment = date_to_moment(START.replace(hour=19) + timedelta(days=15))
        prediction = pattern_engine.get_prediction_for_moment(moment)
        assert prediction.activities[0].activity == "cooking"

    def test_status(self, pattern_engine, clock):
        clock.set(START + timedelta(days=15, hours=10))
        pattern_engine.import_history(_dinner_history())
        status = pattern_engine.get_status()
        assert status["observations"] == 20
        assert status["by_status"]["established"] == status["patterns"]
        assert status["last_full_analysis"] is not None


class TestSnapshot:

    def test_restore_into_fresh_engine(self, pattern_engine, clock):
        clock.set(START + timedelta(days=15, hours=10))
        pattern_engine.import_history(_dinner_history())
        snapshot = json.loads(json.dumps(pattern_engine.snapshot()))

        bus = EventBus()
        recorder = EventRecorder(bus)
        fresh = PatternEngine(dict(PATTERN_CONFIG), bus=bus, clock=clock)
        fresh.restore(snapshot["patterns"], snapshot["observations"])

        assert len(fresh.registry) == len(pattern_engine.registry)
        assert len(fresh.store) == 20
        assert fresh.registry.get("daily_slot_9").data.typical_time == "19:00"
        assert recorder.events == []
