"""
Pattern Registry - Lebenszyklus der etablierten Patterns.

Zustaende: established -> fading -> dormant (pro Decay-Tick hoechstens
ein Schritt). Ein passendes Signal setzt fading/dormant Patterns wieder
auf established. Alle Uebergaenge werden ueber den Event Bus gemeldet.
"""

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Optional

from .candidate_tracker import (
    calculate_pattern_fit,
    next_expected,
    should_have_matched,
)
from .constants import (
    DECAY_FACTOR,
    DORMANT_CONFIDENCE,
    EVENT_ANOMALY_DETECTED,
    EVENT_PATTERN_DISCOVERED,
    EVENT_PATTERN_FADED,
    EVENT_PATTERN_STRENGTHENED,
    EVENT_PATTERN_WEAKENED,
    FIT_ANOMALY_THRESHOLD,
    FIT_STRENGTHEN_THRESHOLD,
    MAX_ANOMALIES,
    PREDICTION_MIN_CONFIDENCE,
    STABILITY_FULL_DAYS,
    STRENGTHEN_STEP,
)
from .event_bus import EventBus
from .models import (
    ActivitySequenceData,
    ActivitySignature,
    ComfortPreferenceData,
    DailyRoutineData,
    EnvironmentState,
    MomentPrediction,
    Observation,
    Pattern,
    PatternCandidate,
    PatternStatus,
    PatternType,
    TemporalMoment,
    WeeklyRoutineData,
)

logger = logging.getLogger(__name__)

SOURCE = "pattern_engine"


def calculate_stability(candidate: PatternCandidate) -> float:
    """Stabil wenn ueber mindestens zwei Wochen beobachtet."""
    days = {o.day for o in candidate.observations}
    return min(1.0, len(days) / STABILITY_FULL_DAYS)


class PatternRegistry:
    """Haelt die etablierten Patterns einer Pattern Engine."""

    def __init__(self, bus: EventBus, min_observations: int = 5,
                 established_threshold: float = 0.75, decay_days: int = 14):
        self.bus = bus
        self.min_observations = min_observations
        self.established_threshold = established_threshold
        self.decay_days = decay_days
        self._patterns: dict[str, Pattern] = {}
        self._anomalies: deque = deque(maxlen=MAX_ANOMALIES)

    # ------------------------------------------------------------------
    # Verstaerkung (inkrementell)
    # ------------------------------------------------------------------

    def evaluate(self, observation: Observation) -> list[Pattern]:
        """Bewertet eine neue Beobachtung gegen alle Patterns.

        Passende Patterns werden verstaerkt, klare Abweichungen als
        Anomalie vermerkt. Gibt die verstaerkten Patterns zurueck.
        """
        strengthened = []
        for pattern in list(self._patterns.values()):
            fit = calculate_pattern_fit(observation, pattern)
            if fit > FIT_STRENGTHEN_THRESHOLD:
                self.strengthen(pattern, observation)
                strengthened.append(pattern)
            elif fit < FIT_ANOMALY_THRESHOLD and should_have_matched(observation, pattern):
                self._record_anomaly(observation, pattern, fit)
        return strengthened

    def strengthen(self, pattern: Pattern, observation: Observation):
        pattern.occurrences += 1
        pattern.last_observed = max(pattern.last_observed, observation.timestamp)
        pattern.confidence = min(1.0, pattern.confidence + STRENGTHEN_STEP)
        pattern.next_expected_occurrence = next_expected(pattern.data, observation.timestamp)
        if pattern.status != PatternStatus.ESTABLISHED:
            logger.info("Pattern '%s' reaktiviert (%s -> established)",
                        pattern.id, pattern.status.value)
            pattern.status = PatternStatus.ESTABLISHED
        self.bus.publish(EVENT_PATTERN_STRENGTHENED, {"pattern": pattern}, source=SOURCE)

    def _record_anomaly(self, observation: Observation, pattern: Pattern, fit: float):
        logger.debug("Anomalie: %s passt nicht zu '%s' (fit=%.2f)",
                     observation.kind.value, pattern.id, fit)
        self._anomalies.append({
            "timestamp": observation.timestamp.isoformat(),
            "pattern_id": pattern.id,
            "fit": round(fit, 3),
            "observation": observation.to_dict(),
        })
        self.bus.publish(EVENT_ANOMALY_DETECTED,
                         {"observation": observation, "pattern": pattern}, source=SOURCE)

    def get_anomalies(self, limit: Optional[int] = None) -> list[dict]:
        anomalies = list(self._anomalies)
        return anomalies[-limit:] if limit else anomalies

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    def absorb(self, candidate: PatternCandidate) -> Optional[Pattern]:
        """Uebernimmt neue Evidenz eines Kandidaten in ein bestehendes Pattern.

        Nur Beobachtungen nach last_observed zaehlen; alte History
        reaktiviert nichts.
        """
        pattern = self._patterns.get(candidate.key)
        if pattern is None or candidate.last_seen <= pattern.last_observed:
            return None

        pattern.last_observed = candidate.last_seen
        pattern.occurrences = max(pattern.occurrences, candidate.observation_count)
        pattern.stability = calculate_stability(candidate)
        pattern.data = candidate.data
        pattern.next_expected_occurrence = next_expected(pattern.data, candidate.last_seen)

        if pattern.status != PatternStatus.ESTABLISHED:
            if candidate.strength < self.established_threshold:
                return None
            logger.info("Pattern '%s' reaktiviert (%s -> established)",
                        pattern.id, pattern.status.value)
            pattern.status = PatternStatus.ESTABLISHED
        pattern.confidence = max(pattern.confidence, candidate.strength)
        self.bus.publish(EVENT_PATTERN_STRENGTHENED, {"pattern": pattern}, source=SOURCE)
        return pattern

    def qualifies(self, candidate: PatternCandidate) -> bool:
        return (candidate.strength >= self.established_threshold
                and candidate.observation_count >= self.min_observations)

    def promote(self, candidate: PatternCandidate) -> Optional[Pattern]:
        if candidate.key in self._patterns or not self.qualifies(candidate):
            return None

        pattern = Pattern(
            id=candidate.key,
            type=candidate.type,
            confidence=min(1.0, candidate.strength),
            stability=calculate_stability(candidate),
            first_observed=candidate.first_seen,
            last_observed=candidate.last_seen,
            occurrences=candidate.observation_count,
            data=candidate.data,
            status=PatternStatus.ESTABLISHED,
            next_expected_occurrence=next_expected(candidate.data, candidate.last_seen),
        )
        self._patterns[pattern.id] = pattern
        logger.info("Neues Pattern: '%s' (%s, confidence=%.2f, %d Beobachtungen)",
                    pattern.id, pattern.type.value, pattern.confidence, pattern.occurrences)
        self.bus.publish(EVENT_PATTERN_DISCOVERED, {"pattern": pattern}, source=SOURCE)
        return pattern

    # ------------------------------------------------------------------
    # Decay
    # ------------------------------------------------------------------

    def decay(self, now: datetime) -> list[Pattern]:
        """Ein Decay-Tick: hoechstens ein Zustandsschritt pro Pattern."""
        cutoff = now - timedelta(days=self.decay_days)
        changed = []
        for pattern in list(self._patterns.values()):
            if pattern.status == PatternStatus.DORMANT or pattern.last_observed >= cutoff:
                continue

            pattern.confidence *= DECAY_FACTOR
            if pattern.status == PatternStatus.ESTABLISHED:
                pattern.status = PatternStatus.FADING
                self.bus.publish(EVENT_PATTERN_WEAKENED, {"pattern": pattern}, source=SOURCE)
            elif pattern.confidence < DORMANT_CONFIDENCE:
                pattern.status = PatternStatus.DORMANT
                logger.info("Pattern '%s' ruht (confidence=%.2f)", pattern.id, pattern.confidence)
                self.bus.publish(EVENT_PATTERN_FADED, {"pattern": pattern}, source=SOURCE)
            else:
                self.bus.publish(EVENT_PATTERN_WEAKENED, {"pattern": pattern}, source=SOURCE)
            changed.append(pattern)

        if changed:
            logger.debug("Decay: %d Patterns abgeschwaecht", len(changed))
        return changed

    # ------------------------------------------------------------------
    # Abfragen
    # ------------------------------------------------------------------

    def get(self, pattern_id: str) -> Optional[Pattern]:
        return self._patterns.get(pattern_id)

    def __contains__(self, pattern_id: str) -> bool:
        return pattern_id in self._patterns

    def __len__(self) -> int:
        return len(self._patterns)

    def get_patterns(self) -> list[Pattern]:
        return list(self._patterns.values())

    def get_patterns_by_type(self, pattern_type: PatternType) -> list[Pattern]:
        pattern_type = PatternType(pattern_type)
        return [p for p in self._patterns.values() if p.type == pattern_type]

    def find_relevant(self, moment: TemporalMoment) -> list[Pattern]:
        return [
            p for p in self._patterns.values()
            if p.is_active and p.confidence > PREDICTION_MIN_CONFIDENCE and _applies(p, moment)
        ]

    def prediction_for_moment(self, moment: TemporalMoment) -> MomentPrediction:
        relevant = self.find_relevant(moment)
        return MomentPrediction(
            activities=_aggregate_activities(relevant),
            environment=_aggregate_environment(relevant),
            confidence=sum(p.confidence for p in relevant) / len(relevant) if relevant else 0.0,
            pattern_ids=[p.id for p in relevant],
        )

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {pid: p.to_dict() for pid, p in self._patterns.items()}

    def load(self, data: dict) -> int:
        self._patterns = {pid: Pattern.from_dict(p) for pid, p in data.items()}
        return len(self._patterns)

    def clear(self):
        self._patterns.clear()
        self._anomalies.clear()


def _applies(pattern: Pattern, moment: TemporalMoment) -> bool:
    data = pattern.data
    if isinstance(data, DailyRoutineData):
        return data.start_hour <= moment.hour_of_day < data.end_hour
    if isinstance(data, ActivitySequenceData):
        # Reihenfolge, kein Zeitbezug
        return False
    return isinstance(data, (ComfortPreferenceData, WeeklyRoutineData))


def _aggregate_activities(patterns: list[Pattern]) -> list[ActivitySignature]:
    best: dict[str, ActivitySignature] = {}
    for pattern in patterns:
        if not isinstance(pattern.data, DailyRoutineData):
            continue
        for sig in pattern.data.activities:
            confidence = sig.confidence * pattern.confidence
            if sig.activity not in best or confidence > best[sig.activity].confidence:
                best[sig.activity] = ActivitySignature(
                    activity=sig.activity,
                    duration=sig.duration,
                    locations=list(sig.locations),
                    devices=list(sig.devices),
                    confidence=confidence,
                )
    return sorted(best.values(), key=lambda s: -s.confidence)


def _aggregate_environment(patterns: list[Pattern]) -> EnvironmentState:
    env = EnvironmentState()
    daily = sorted((p for p in patterns if isinstance(p.data, DailyRoutineData)),
                   key=lambda p: p.confidence)
    for pattern in daily:
        env = EnvironmentState(**vars(pattern.data.environment))
    for pattern in patterns:
        if isinstance(pattern.data, ComfortPreferenceData):
            setattr(env, pattern.data.variable, pattern.data.preferred)
    return env
