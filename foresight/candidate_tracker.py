"""
Pattern Candidate Tracker - gruppiert Beobachtungen zu Pattern-Kandidaten.

Vier unabhaengige Analyse-Achsen:
  1. Zeit-Slots (2-Stunden-Raster) -> daily_routine
  2. Werktag vs. Wochenende -> weekly_routine
  3. Aktivitaets-Sequenzen (Sliding Window ueber 5 Beobachtungen)
  4. Komfort-Praeferenzen (Interquartilsabstand je Umweltgroesse)

Kandidaten-Keys haengen nur vom Gruppierungskriterium ab, wiederholte
Analysen konvergieren daher statt zu duplizieren. Zu wenige Daten fuer
eine Achse ergeben schlicht keinen Kandidaten.

Zusaetzlich: Fit-Bewertung einer Beobachtung gegen ein etabliertes
Pattern (calculate_pattern_fit / should_have_matched).
"""

import logging
import statistics
from collections import Counter, defaultdict
from datetime import datetime
from typing import Iterable, Optional

from .constants import (
    COMFORT_MIN_READINGS,
    COMFORT_VARIABLES,
    DEVICE_ACTIVITY_MAP,
    MIN_ACTIVITY_SHARE,
    SEQUENCE_MIN_WINDOW_RATIO,
    SEQUENCE_WINDOW_SIZE,
    WEEKLY_DIVERGENCE_THRESHOLD,
)
from .models import (
    ActivitySequenceData,
    ActivitySignature,
    ComfortPreferenceData,
    DailyRoutineData,
    DurationRange,
    EnvironmentState,
    Observation,
    ObservationKind,
    Pattern,
    PatternCandidate,
    PatternType,
    WeeklyRoutineData,
)
from .temporal import (
    hhmm,
    hour_distance,
    minutes_of_day,
    next_occurrence,
    parse_hhmm,
    slot_bounds,
    slot_of,
)

logger = logging.getLogger(__name__)

# Payload-Keys der Umwelt-Sensoren -> EnvironmentState-Feld
_ENVIRONMENT_FIELDS = {
    "temperature": "temperature",
    "humidity": "humidity",
    "brightness": "brightness",
    "colorTemp": "color_temp",
    "color_temp": "color_temp",
}


# ============================================================
# Aktivitaets-Inferenz
# ============================================================

def infer_activity(observation: Observation) -> Optional[str]:
    """Leitet die Aktivitaet einer Beobachtung ab (oder None)."""
    payload = observation.payload
    if observation.kind == ObservationKind.ACTIVITY:
        activity = payload.get("activity")
        return str(activity) if activity else None

    if observation.kind == ObservationKind.DEVICE:
        device_type = payload.get("deviceType", payload.get("device_type"))
        return DEVICE_ACTIVITY_MAP.get((device_type, payload.get("state")))

    if observation.kind == ObservationKind.PRESENCE:
        entering = payload.get("entering")
        if entering is True:
            return "arriving"
        if entering is False:
            return "leaving"
    return None


def numeric_value(payload: dict, key: str) -> Optional[float]:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def preferred_range(values: list) -> tuple:
    """(p25, p75, median, confidence) einer Messreihe.

    Confidence = 1 - IQR / Gesamtspanne; ohne Spanne 0.5.
    """
    ordered = sorted(values)
    n = len(ordered)
    p25 = ordered[int(n * 0.25)]
    p75 = ordered[int(n * 0.75)]
    total_range = ordered[-1] - ordered[0]
    confidence = 1 - (p75 - p25) / total_range if total_range > 0 else 0.5
    return p25, p75, statistics.median(ordered), confidence


def _span_days(observations: list) -> int:
    days = [o.day for o in observations]
    return (max(days) - min(days)).days + 1


def _activity_signatures(observations: list) -> list[ActivitySignature]:
    counts: Counter = Counter()
    rooms: dict[str, list] = defaultdict(list)
    devices: dict[str, list] = defaultdict(list)

    for obs in observations:
        activity = infer_activity(obs)
        if not activity:
            continue
        counts[activity] += 1
        if obs.room_id and obs.room_id not in rooms[activity]:
            rooms[activity].append(obs.room_id)
        if obs.device_id and obs.device_id not in devices[activity]:
            devices[activity].append(obs.device_id)

    total = len(observations)
    signatures = [
        ActivitySignature(
            activity=activity,
            duration=DurationRange.for_activity(activity),
            locations=rooms[activity],
            devices=devices[activity],
            confidence=count / total,
        )
        for activity, count in counts.most_common()
    ]
    return [s for s in signatures if s.confidence > MIN_ACTIVITY_SHARE]


def _environment_preferences(observations: list) -> EnvironmentState:
    readings: dict[str, list] = defaultdict(list)
    for obs in observations:
        if obs.kind != ObservationKind.ENVIRONMENT:
            continue
        for key, field_name in _ENVIRONMENT_FIELDS.items():
            value = numeric_value(obs.payload, key)
            if value is not None:
                readings[field_name].append(value)

    env = EnvironmentState()
    for field_name, values in readings.items():
        setattr(env, field_name, statistics.median(values))
    return env


def _behavior_signature(observations: list) -> dict:
    counts = Counter(a for a in (infer_activity(o) for o in observations) if a)
    total = sum(counts.values())
    return {activity: count / total for activity, count in counts.items()} if total else {}


# ============================================================
# Candidate Tracker
# ============================================================

class CandidateTracker:
    """Verwaltet die noch nicht bestaetigten Pattern-Kandidaten."""

    def __init__(self, min_observations: int = 5, emerging_threshold: float = 0.4):
        self.min_observations = min_observations
        self.emerging_threshold = emerging_threshold
        self._candidates: dict[str, PatternCandidate] = {}

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def analyze(self, observations: list[Observation]) -> list[PatternCandidate]:
        """Voller Pass ueber alle Achsen.

        Kandidaten die dieser Pass nicht mehr erzeugt, werden verworfen.
        """
        produced: dict[str, PatternCandidate] = {}
        for axis in (self.analyze_time_slots, self.analyze_weekly,
                     self.analyze_sequences, self.analyze_comfort):
            for candidate in axis(observations):
                produced[candidate.key] = self._merge(candidate)

        dropped = set(self._candidates) - set(produced)
        if dropped:
            logger.debug("%d Kandidaten verworfen: %s", len(dropped), sorted(dropped))
        self._candidates = produced
        return list(produced.values())

    def analyze_observation(self, observations: list[Observation],
                            observation: Observation) -> list[PatternCandidate]:
        """Inkrementeller Pass: nur Slot und Komfort der neuen Beobachtung."""
        updated = []
        slot = slot_of(observation.timestamp)
        candidate = self.slot_candidate(
            slot, [o for o in observations if slot_of(o.timestamp) == slot])
        if candidate:
            updated.append(self._merge(candidate))

        if observation.kind == ObservationKind.ENVIRONMENT:
            for candidate in self.analyze_comfort(observations):
                if candidate.data.variable in observation.payload:
                    updated.append(self._merge(candidate))

        for candidate in updated:
            self._candidates[candidate.key] = candidate
        return updated

    def _merge(self, fresh: PatternCandidate) -> PatternCandidate:
        existing = self._candidates.get(fresh.key)
        if existing:
            fresh.strength = max(existing.strength, fresh.strength)
            fresh.first_seen = min(existing.first_seen, fresh.first_seen)
        return fresh

    # ------------------------------------------------------------------
    # Achse 1: Zeit-Slots
    # ------------------------------------------------------------------

    def analyze_time_slots(self, observations: list[Observation]) -> Iterable[PatternCandidate]:
        slots: dict[int, list] = defaultdict(list)
        for obs in observations:
            slots[slot_of(obs.timestamp)].append(obs)
        for slot in sorted(slots):
            candidate = self.slot_candidate(slot, slots[slot])
            if candidate:
                yield candidate

    def slot_candidate(self, slot: int, observations: list) -> Optional[PatternCandidate]:
        if len(observations) < self.min_observations:
            return None

        days = {o.day for o in observations}
        consistency = min(1.0, len(days) / _span_days(observations))
        if consistency <= self.emerging_threshold:
            return None

        start_hour, end_hour = slot_bounds(slot)
        typical = int(statistics.median(minutes_of_day(o.timestamp) for o in observations))
        data = DailyRoutineData(
            slot=slot,
            start_time=hhmm(start_hour),
            end_time=hhmm(end_hour),
            typical_time=hhmm(typical // 60, typical % 60),
            probability=consistency,
            activities=_activity_signatures(observations),
            environment=_environment_preferences(observations),
        )
        return PatternCandidate(
            key=f"daily_slot_{slot}",
            type=PatternType.DAILY_ROUTINE,
            observations=list(observations),
            strength=consistency,
            first_seen=min(o.timestamp for o in observations),
            last_seen=max(o.timestamp for o in observations),
            data=data,
        )

    # ------------------------------------------------------------------
    # Achse 2: Werktag vs. Wochenende
    # ------------------------------------------------------------------

    def analyze_weekly(self, observations: list[Observation]) -> Iterable[PatternCandidate]:
        bearing = [o for o in observations if infer_activity(o)]
        weekday = [o for o in bearing if o.timestamp.weekday() < 5]
        weekend = [o for o in bearing if o.timestamp.weekday() >= 5]
        if len(weekday) < self.min_observations or len(weekend) < self.min_observations:
            return

        weekday_sig = _behavior_signature(weekday)
        weekend_sig = _behavior_signature(weekend)
        divergence = sum(abs(weekday_sig.get(k, 0.0) - weekend_sig.get(k, 0.0))
                         for k in set(weekday_sig) | set(weekend_sig))
        if divergence <= WEEKLY_DIVERGENCE_THRESHOLD:
            return

        per_day = Counter(o.timestamp.weekday() for o in bearing)
        yield PatternCandidate(
            key="weekly_weekday_weekend",
            type=PatternType.WEEKLY_ROUTINE,
            observations=bearing,
            strength=min(1.0, 0.5 + divergence / 4),
            first_seen=bearing[0].timestamp,
            last_seen=bearing[-1].timestamp,
            data=WeeklyRoutineData(
                weekday_signature=weekday_sig,
                weekend_signature=weekend_sig,
                divergence=divergence,
                busiest_day=max(per_day, key=lambda d: (per_day[d], -d)),
                quietest_day=min(per_day, key=lambda d: (per_day[d], d)),
            ),
        )

    # ------------------------------------------------------------------
    # Achse 3: Aktivitaets-Sequenzen
    # ------------------------------------------------------------------

    def analyze_sequences(self, observations: list[Observation]) -> Iterable[PatternCandidate]:
        size = SEQUENCE_WINDOW_SIZE
        total_windows = len(observations) - size + 1
        if total_windows < 1:
            return

        activities = [infer_activity(o) for o in observations]
        found: dict[tuple, dict] = {}
        for start in range(total_windows):
            sequence = tuple(a for a in activities[start:start + size] if a)
            if not sequence:
                continue
            entry = found.setdefault(sequence, {"count": 0, "indices": set()})
            entry["count"] += 1
            entry["indices"].update(range(start, start + size))

        for sequence, entry in found.items():
            ratio = entry["count"] / total_windows
            if ratio <= SEQUENCE_MIN_WINDOW_RATIO or entry["count"] < self.min_observations:
                continue
            members = [observations[i] for i in sorted(entry["indices"])]
            yield PatternCandidate(
                key="sequence_" + "->".join(sequence),
                type=PatternType.ACTIVITY_SEQUENCE,
                observations=members,
                strength=min(1.0, ratio),
                first_seen=members[0].timestamp,
                last_seen=members[-1].timestamp,
                data=ActivitySequenceData(
                    activities=list(sequence),
                    occurrences=entry["count"],
                    window_size=size,
                ),
            )

    # ------------------------------------------------------------------
    # Achse 4: Komfort-Praeferenzen
    # ------------------------------------------------------------------

    def analyze_comfort(self, observations: list[Observation]) -> Iterable[PatternCandidate]:
        environment = [o for o in observations if o.kind == ObservationKind.ENVIRONMENT]
        for variable in COMFORT_VARIABLES:
            readings = [o for o in environment if numeric_value(o.payload, variable) is not None]
            if len(readings) < COMFORT_MIN_READINGS:
                continue
            p25, p75, median, confidence = preferred_range(
                [numeric_value(o.payload, variable) for o in readings])
            yield PatternCandidate(
                key=f"comfort_{variable}",
                type=PatternType.COMFORT_PREFERENCE,
                observations=readings,
                strength=confidence,
                first_seen=readings[0].timestamp,
                last_seen=readings[-1].timestamp,
                data=ComfortPreferenceData(variable=variable, minimum=p25,
                                           maximum=p75, preferred=median),
            )

    # ------------------------------------------------------------------
    # Zugriff
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[PatternCandidate]:
        return self._candidates.get(key)

    def remove(self, key: str) -> Optional[PatternCandidate]:
        return self._candidates.pop(key, None)

    @property
    def candidates(self) -> list[PatternCandidate]:
        return list(self._candidates.values())

    def __len__(self) -> int:
        return len(self._candidates)

    def __contains__(self, key: str) -> bool:
        return key in self._candidates


# ============================================================
# Fit-Bewertung gegen etablierte Patterns
# ============================================================

def _daily_fit(observation: Observation, data: DailyRoutineData) -> float:
    hour = observation.timestamp.hour + observation.timestamp.minute / 60
    if data.start_hour <= hour < data.end_hour:
        time_fit = 1.0
    else:
        distance = min(hour_distance(hour, data.start_hour), hour_distance(hour, data.end_hour))
        time_fit = max(0.0, 1 - distance / 2)

    activity = infer_activity(observation)
    if activity is None:
        activity_fit = 0.5
    elif data.has_activity({activity}):
        activity_fit = 1.0
    else:
        activity_fit = 0.1
    return time_fit * activity_fit


def _comfort_fit(observation: Observation, data: ComfortPreferenceData) -> float:
    value = numeric_value(observation.payload, data.variable)
    if value is None:
        return 0.5
    if data.minimum <= value <= data.maximum:
        return 1.0
    scale = data.maximum - data.minimum
    if scale <= 0:
        scale = max(abs(data.preferred) * 0.05, 1.0)
    distance = data.minimum - value if value < data.minimum else value - data.maximum
    return max(0.0, 1 - distance / scale)


def _weekly_fit(observation: Observation, data: WeeklyRoutineData) -> float:
    activity = infer_activity(observation)
    if activity is None:
        return 0.5
    signature = data.weekend_signature if observation.timestamp.weekday() >= 5 else data.weekday_signature
    return 0.9 if signature.get(activity, 0.0) >= MIN_ACTIVITY_SHARE else 0.1


def _sequence_fit(observation: Observation, data: ActivitySequenceData) -> float:
    activity = infer_activity(observation)
    if activity is None:
        return 0.5
    return 1.0 if activity in data.activities else 0.3


def calculate_pattern_fit(observation: Observation, pattern: Pattern) -> float:
    """Wie gut passt eine Beobachtung zu einem Pattern (0..1)?"""
    data = pattern.data
    if isinstance(data, DailyRoutineData):
        return _daily_fit(observation, data)
    if isinstance(data, ComfortPreferenceData):
        return _comfort_fit(observation, data)
    if isinstance(data, WeeklyRoutineData):
        return _weekly_fit(observation, data)
    if isinstance(data, ActivitySequenceData):
        return _sequence_fit(observation, data)
    return 0.5


def should_have_matched(observation: Observation, pattern: Pattern) -> bool:
    """Haette die Beobachtung zum Pattern passen muessen? (nur Hinweis)

    Daily: Beobachtung liegt im Slot, aber mit anderer Aktivitaet.
    Komfort: Beobachtung misst die Groesse des Patterns.
    """
    data = pattern.data
    if isinstance(data, DailyRoutineData):
        hour = observation.timestamp.hour
        activity = infer_activity(observation)
        return (data.start_hour <= hour < data.end_hour
                and activity is not None and not data.has_activity({activity}))
    if isinstance(data, ComfortPreferenceData):
        return numeric_value(observation.payload, data.variable) is not None
    return False


def next_expected(data, now: datetime) -> Optional[datetime]:
    """Naechster erwarteter Zeitpunkt eines Slot-Patterns."""
    if not isinstance(data, DailyRoutineData):
        return None
    hour, minute = parse_hhmm(data.typical_time)
    return next_occurrence(now, hour, minute)
