"""
Tests fuer CandidateTracker - Slot-, Wochen-, Sequenz- und Komfort-Achse
sowie die Fit-Bewertung gegen etablierte Patterns.
"""

from datetime import timedelta

import pytest

from foresight.candidate_tracker import (
    CandidateTracker,
    calculate_pattern_fit,
    infer_activity,
    preferred_range,
    should_have_matched,
)
from foresight.models import (
    ComfortPreferenceData,
    Pattern,
    PatternType,
)

from factories import START, activity, daily, device, environment, presence


@pytest.fixture
def tracker():
    return CandidateTracker(min_observations=5, emerging_threshold=0.4)


def _as_pattern(candidate) -> Pattern:
    return Pattern(
        id=candidate.key,
        type=candidate.type,
        confidence=candidate.strength,
        stability=1.0,
        first_observed=candidate.first_seen,
        last_observed=candidate.last_seen,
        occurrences=candidate.observation_count,
        data=candidate.data,
    )


# =====================================================================
# Aktivitaets-Inferenz
# =====================================================================


class TestInferActivity:

    def test_activity_payload(self):
        assert infer_activity(activity(START, "cooking")) == "cooking"

    def test_device_mapping(self):
        assert infer_activity(device(START, "tv", "on")) == "watching_media"
        assert infer_activity(device(START, "tv", "off")) is None

    def test_presence(self):
        assert infer_activity(presence(START, True)) == "arriving"
        assert infer_activity(presence(START, False)) == "leaving"

    def test_environment_has_no_activity(self):
        assert infer_activity(environment(START, temperature=21.0)) is None


class TestPreferredRange:

    def test_quartiles_and_confidence(self):
        p25, p75, median, confidence = preferred_range(list(range(1, 11)))
        assert (p25, p75) == (3, 8)
        assert median == 5.5
        assert confidence == pytest.approx(1 - 5 / 9)

    def test_constant_series(self):
        assert preferred_range([21.0] * 10)[3] == 0.5


# =====================================================================
# Achse 1: Zeit-Slots
# =====================================================================


class TestTimeSlots:

    def test_daily_cooking_creates_slot_candidate(self, tracker):
        candidates = list(tracker.analyze_time_slots(daily(START, 15, 19, 0, "cooking")))
        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.key == "daily_slot_9"
        assert candidate.type == PatternType.DAILY_ROUTINE
        assert candidate.strength == 1.0
        assert candidate.data.start_time == "18:00"
        assert candidate.data.end_time == "20:00"
        assert candidate.data.typical_time == "19:00"
        signature = candidate.data.activities[0]
        assert signature.activity == "cooking"
        assert signature.confidence == 1.0
        assert signature.locations == ["kitchen"]

    def test_too_few_observations(self, tracker):
        assert list(tracker.analyze_time_slots(daily(START, 4, 19, 0, "cooking"))) == []

    def test_inconsistent_days_rejected(self, tracker):
        # 5 Tage verteilt ueber 13 Kalendertage -> 0.38
        observations = daily(START, 13, 19, 0, "cooking", step=3)
        assert len(observations) == 5
        assert list(tracker.analyze_time_slots(observations)) == []

    def test_every_other_day_is_emerging(self, tracker):
        observations = daily(START, 17, 19, 0, "cooking", step=2)
        candidate = list(tracker.analyze_time_slots(observations))[0]
        assert candidate.strength == pytest.approx(9 / 17)

    def test_last_slot_ends_at_midnight(self, tracker):
        candidate = list(tracker.analyze_time_slots(daily(START, 5, 23, 0, "sleeping")))[0]
        assert candidate.key == "daily_slot_11"
        assert candidate.data.end_time == "00:00"
        assert candidate.data.end_hour == 24

    def test_environment_medians(self, tracker):
        observations = daily(START, 5, 19, 0, "cooking")
        observations += [environment(START.replace(hour=19, minute=30) + timedelta(days=i),
                                     temperature=20.0 + i) for i in range(5)]
        candidate = list(tracker.analyze_time_slots(sorted(observations, key=lambda o: o.timestamp)))[0]
        assert candidate.data.environment.temperature == 22.0


# =====================================================================
# Achse 2: Werktag vs. Wochenende
# =====================================================================


class TestWeekly:

    def _week_data(self):
        observations = []
        for week in range(3):
            monday = START + timedelta(weeks=week)
            for day in range(5):
                observations.append(activity((monday + timedelta(days=day)).replace(hour=9), "working"))
            for day in (5, 6):
                observations.append(activity((monday + timedelta(days=day)).replace(hour=11), "relaxing"))
        return observations

    def test_divergent_week_creates_candidate(self, tracker):
        candidates = list(tracker.analyze_weekly(self._week_data()))
        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.key == "weekly_weekday_weekend"
        assert candidate.type == PatternType.WEEKLY_ROUTINE
        assert candidate.data.divergence == pytest.approx(2.0)
        assert candidate.strength == 1.0

    def test_same_behavior_no_candidate(self, tracker):
        observations = [activity(START + timedelta(days=d), "cooking") for d in range(21)]
        assert list(tracker.analyze_weekly(observations)) == []

    def test_requires_weekend_observations(self, tracker):
        observations = [activity(START + timedelta(days=d), "working") for d in range(5)]
        assert list(tracker.analyze_weekly(observations)) == []


# =====================================================================
# Achse 3: Sequenzen
# =====================================================================


class TestSequences:

    def test_repeated_window(self, tracker):
        observations = [activity(START + timedelta(minutes=i), "cooking") for i in range(10)]
        candidates = list(tracker.analyze_sequences(observations))
        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.key == "sequence_cooking->cooking->cooking->cooking->cooking"
        assert candidate.type == PatternType.ACTIVITY_SEQUENCE
        assert candidate.data.occurrences == 6
        assert candidate.strength == 1.0

    def test_short_history(self, tracker):
        observations = [activity(START + timedelta(minutes=i), "cooking") for i in range(4)]
        assert list(tracker.analyze_sequences(observations)) == []

    def test_windows_without_activity_skipped(self, tracker):
        observations = [environment(START + timedelta(minutes=i), temperature=21.0) for i in range(10)]
        assert list(tracker.analyze_sequences(observations)) == []


# =====================================================================
# Achse 4: Komfort
# =====================================================================


class TestComfort:

    VALUES = [20.0, 20.5, 21.0, 21.0, 21.0, 21.5, 21.5, 22.0, 22.5, 23.0]

    def test_temperature_range(self, tracker):
        observations = [environment(START + timedelta(hours=i), temperature=v)
                        for i, v in enumerate(self.VALUES)]
        candidates = list(tracker.analyze_comfort(observations))
        assert [c.key for c in candidates] == ["comfort_temperature"]
        data = candidates[0].data
        assert (data.minimum, data.maximum) == (21.0, 22.0)
        assert data.preferred == 21.25
        assert candidates[0].strength == pytest.approx(2 / 3)

    def test_needs_ten_readings(self, tracker):
        observations = [environment(START + timedelta(hours=i), temperature=v)
                        for i, v in enumerate(self.VALUES[:9])]
        assert list(tracker.analyze_comfort(observations)) == []


# =====================================================================
# Voll- und Einzel-Pass
# =====================================================================


class TestAnalyze:

    def test_keys_are_stable(self, tracker):
        observations = daily(START, 15, 19, 0, "cooking")
        first = sorted(c.key for c in tracker.analyze(observations))
        second = sorted(c.key for c in tracker.analyze(observations))
        assert first == second
        assert len(tracker) == len(first)

    def test_drops_candidates_not_produced(self, tracker):
        tracker.analyze(daily(START, 15, 19, 0, "cooking"))
        assert "daily_slot_9" in tracker
        tracker.analyze([])
        assert len(tracker) == 0

    def test_merge_keeps_strongest(self, tracker):
        tracker.analyze(daily(START, 15, 19, 0, "cooking"))
        tracker.analyze(daily(START, 17, 19, 0, "cooking", step=2))
        assert tracker.get("daily_slot_9").strength == 1.0

    def test_incremental_only_touches_own_slot(self, tracker):
        observations = daily(START, 5, 19, 0, "cooking") + daily(START, 5, 7, 0, "breakfast")
        observations.sort(key=lambda o: o.timestamp)
        updated = tracker.analyze_observation(observations, observations[-1])
        assert [c.key for c in updated] == ["daily_slot_9"]
        assert "daily_slot_3" not in tracker


# =====================================================================
# Fit-Bewertung
# =====================================================================


class TestPatternFit:

    @pytest.fixture
    def dinner(self, tracker):
        return _as_pattern(list(tracker.analyze_time_slots(daily(START, 15, 19, 0, "cooking")))[0])

    def test_matching_observation(self, dinner):
        assert calculate_pattern_fit(activity(START.replace(hour=19, minute=30), "cooking"), dinner) == 1.0

    def test_wrong_activity_in_slot(self, dinner):
        obs = activity(START.replace(hour=19), "sleeping")
        assert calculate_pattern_fit(obs, dinner) == pytest.approx(0.1)
        assert should_have_matched(obs, dinner) is True

    def test_far_away_in_time(self, dinner):
        obs = activity(START.replace(hour=23), "cooking")
        assert calculate_pattern_fit(obs, dinner) == 0.0
        assert should_have_matched(obs, dinner) is False

    def test_comfort_fit(self):
        pattern = Pattern(
            id="comfort_temperature", type=PatternType.COMFORT_PREFERENCE,
            confidence=0.8, stability=1.0, first_observed=START, last_observed=START,
            occurrences=10,
            data=ComfortPreferenceData("temperature", minimum=21.0, maximum=22.0, preferred=21.5),
        )
        assert calculate_pattern_fit(environment(START, temperature=21.5), pattern) == 1.0
        assert calculate_pattern_fit(environment(START, temperature=22.5), pattern) == pytest.approx(0.5)
        assert calculate_pattern_fit(environment(START, temperature=25.0), pattern) == 0.0
        assert should_have_matched(environment(START, humidity=50.0), pattern) is False
