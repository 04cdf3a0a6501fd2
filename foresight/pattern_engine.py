"""
Pattern Engine - lernt wiederkehrendes Verhalten aus dem Beobachtungsstrom.

Verbindet Observation Store, Candidate Tracker und Pattern Registry:
  - observe(): Beobachtung speichern, hoechstens einmal pro Minute
    inkrementell analysieren (Fit -> Kandidaten -> Promotion)
  - import_history(): Bulk-Import mit vollem Analyse-Pass
  - perform_full_analysis(): alle Achsen, Promotion, dann Decay
  - decay_patterns(): Decay-Tick (vom Task Scheduler)

Konfiguration (settings.yaml, Abschnitt pattern_engine):
  min_observations_for_pattern, min_confidence_threshold,
  pattern_decay_days, emerging_pattern_threshold,
  established_pattern_threshold, retention_days
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from .candidate_tracker import CandidateTracker
from .config import section_config
from .constants import INCREMENTAL_ANALYSIS_INTERVAL_SECONDS, OBSERVATION_RETENTION_DAYS
from .event_bus import EventBus
from .models import (
    MomentPrediction,
    Observation,
    Pattern,
    PatternCandidate,
    PatternStatus,
    PatternType,
    TemporalMoment,
)
from .observation_store import ObservationStore
from .pass_context import analysis_pass
from .pattern_registry import PatternRegistry

logger = logging.getLogger(__name__)


class PatternEngine:
    """Produzent der Pipeline: Beobachtungen rein, Patterns raus."""

    def __init__(self, config: Optional[dict] = None, bus: Optional[EventBus] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        cfg = section_config("pattern_engine", config)
        self.min_observations = int(cfg.get("min_observations_for_pattern", 5))
        self.min_confidence = float(cfg.get("min_confidence_threshold", 0.6))
        self.decay_days = int(cfg.get("pattern_decay_days", 14))
        self.emerging_threshold = float(cfg.get("emerging_pattern_threshold", 0.4))
        self.established_threshold = float(cfg.get("established_pattern_threshold", 0.75))

        self._clock = clock or datetime.now
        self.bus = bus or EventBus(clock=self._clock)
        self._last_incremental: Optional[datetime] = None
        self._last_full: Optional[datetime] = None

        self.store = ObservationStore(
            retention_days=int(cfg.get("retention_days", OBSERVATION_RETENTION_DAYS)),
            clock=self._clock,
        )
        self.tracker = CandidateTracker(self.min_observations, self.emerging_threshold)
        self.registry = PatternRegistry(
            self.bus,
            min_observations=self.min_observations,
            established_threshold=self.established_threshold,
            decay_days=self.decay_days,
        )
        self.store.set_listeners(on_record=self._on_observation, on_import=self._on_import)

    # ------------------------------------------------------------------
    # Eingang
    # ------------------------------------------------------------------

    def observe(self, observation: Observation):
        self.store.record(observation)

    def import_history(self, observations: Iterable[Observation]) -> int:
        return self.store.import_history(observations)

    def _on_observation(self, observation: Observation):
        now = self._clock()
        if (self._last_incremental is not None
                and (now - self._last_incremental).total_seconds() <= INCREMENTAL_ANALYSIS_INTERVAL_SECONDS):
            return
        self._last_incremental = now
        self._analyze_incremental(observation)

    def _on_import(self, _observations: list):
        self.perform_full_analysis()

    # ------------------------------------------------------------------
    # Analyse
    # ------------------------------------------------------------------

    def _analyze_incremental(self, observation: Observation):
        with analysis_pass("incremental"):
            self.registry.evaluate(observation)
            self._absorb(self.tracker.analyze_observation(self.store.all(), observation))
            self._promote()

    def perform_full_analysis(self) -> dict:
        """Kompletter Pass ueber das gesamte Rolling Window."""
        with analysis_pass("full"):
            now = self._clock()
            self.store.purge()
            candidates = self.tracker.analyze(self.store.all())
            absorbed = self._absorb(candidates)
            promoted = self._promote()
            decayed = self.registry.decay(now)
            self._last_full = now

            result = {
                "observations": len(self.store),
                "candidates": len(self.tracker),
                "absorbed": len(absorbed),
                "promoted": len(promoted),
                "decayed": len(decayed),
                "patterns": len(self.registry),
            }
            logger.info("Voll-Analyse: %d Beobachtungen, %d Kandidaten, %d neue Patterns, %d abgeschwaecht",
                        result["observations"], result["candidates"], result["promoted"], result["decayed"])
            return result

    def decay_patterns(self) -> list[Pattern]:
        with analysis_pass("decay"):
            return self.registry.decay(self._clock())

    def _absorb(self, candidates: list[PatternCandidate]) -> list[Pattern]:
        absorbed = []
        for candidate in candidates:
            if candidate.key in self.registry:
                pattern = self.registry.absorb(candidate)
                if pattern:
                    absorbed.append(pattern)
                self.tracker.remove(candidate.key)
        return absorbed

    def _promote(self) -> list[Pattern]:
        promoted = []
        for candidate in self.tracker.candidates:
            pattern = self.registry.promote(candidate)
            if pattern:
                self.tracker.remove(candidate.key)
                promoted.append(pattern)
        return promoted

    # ------------------------------------------------------------------
    # Abfragen
    # ------------------------------------------------------------------

    def get_patterns(self) -> list[Pattern]:
        return self.registry.get_patterns()

    def get_patterns_by_type(self, pattern_type: PatternType) -> list[Pattern]:
        return self.registry.get_patterns_by_type(pattern_type)

    def get_active_patterns(self, pattern_type: Optional[PatternType] = None) -> list[Pattern]:
        """Nicht ruhende Patterns ab min_confidence_threshold."""
        patterns = self.get_patterns_by_type(pattern_type) if pattern_type else self.get_patterns()
        return [p for p in patterns if p.is_active and p.confidence >= self.min_confidence]

    def get_prediction_for_moment(self, moment: TemporalMoment) -> MomentPrediction:
        return self.registry.prediction_for_moment(moment)

    def get_candidates(self) -> list[PatternCandidate]:
        return self.tracker.candidates

    def get_anomalies(self, limit: Optional[int] = None) -> list[dict]:
        return self.registry.get_anomalies(limit)

    def get_status(self) -> dict:
        by_status = {s.value: 0 for s in PatternStatus}
        for pattern in self.registry.get_patterns():
            by_status[pattern.status.value] += 1
        return {
            "observations": len(self.store),
            "candidates": len(self.tracker),
            "patterns": len(self.registry),
            "by_status": by_status,
            "anomalies": len(self.registry.get_anomalies()),
            "last_full_analysis": self._last_full.isoformat() if self._last_full else None,
        }

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        return {
            "patterns": self.registry.to_dict(),
            "observations": [o.to_dict() for o in self.store.all()],
        }

    def restore(self, patterns: Optional[dict] = None, observations: Optional[list] = None):
        """Laedt einen Snapshot ohne Events und ohne Analyse."""
        if patterns:
            self.registry.load(patterns)
        if observations:
            self.store.restore(Observation.from_dict(o) for o in observations)
        logger.info("Snapshot geladen: %d Patterns, %d Beobachtungen",
                    len(self.registry), len(self.store))
