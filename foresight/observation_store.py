"""
Observation Store - zeitlich sortiertes Rolling Window der Beobachtungen.

Haelt alle Beobachtungen der letzten OBSERVATION_RETENTION_DAYS Tage,
sortiert nach Zeitstempel. Neue Beobachtungen werden an den Listener
(Pattern Engine) gemeldet, ein History-Import an den Import-Listener
(voller Analyse-Pass statt Einzel-Signal).
"""

import bisect
import dataclasses
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from .constants import OBSERVATION_RETENTION_DAYS
from .models import Observation, ObservationKind

logger = logging.getLogger(__name__)


class ObservationStore:
    """Rolling Window fuer Beobachtungen.

    Beobachtungen werden beim Speichern kopiert; Daten des Aufrufers
    werden nie veraendert oder geteilt.
    """

    def __init__(self, retention_days: int = OBSERVATION_RETENTION_DAYS,
                 clock: Optional[Callable[[], datetime]] = None):
        self.retention_days = retention_days
        self._clock = clock or datetime.now
        self._observations: list[Observation] = []
        self._on_record: Optional[Callable[[Observation], None]] = None
        self._on_import: Optional[Callable[[list], None]] = None

    def set_listeners(self, on_record: Optional[Callable] = None,
                      on_import: Optional[Callable] = None):
        self._on_record = on_record
        self._on_import = on_import

    # ------------------------------------------------------------------
    # Schreiben
    # ------------------------------------------------------------------

    def record(self, observation: Observation) -> Optional[Observation]:
        """Speichert eine Beobachtung und meldet sie dem Listener.

        Returns:
            Die gespeicherte Kopie, oder None wenn sie bereits ausserhalb
            des Retention-Fensters liegt.
        """
        stored = dataclasses.replace(observation)
        if stored.timestamp < self._cutoff():
            logger.debug("Beobachtung ausserhalb Retention verworfen: %s", stored.timestamp)
            return None

        bisect.insort_right(self._observations, stored, key=lambda o: o.timestamp)
        self.purge()

        if self._on_record:
            self._on_record(stored)
        return stored

    def import_history(self, observations: Iterable[Observation]) -> int:
        """Bulk-Import: sortiert, bereinigt und loest einen Voll-Pass aus."""
        imported = [dataclasses.replace(o) for o in observations]
        self._observations.extend(imported)
        self._observations.sort(key=lambda o: o.timestamp)
        removed = self.purge()
        count = len(imported) - removed
        logger.info("History importiert: %d Beobachtungen (%d ausserhalb Retention)",
                    len(imported), removed)

        if self._on_import:
            self._on_import(list(self._observations))
        return count

    def purge(self) -> int:
        """Entfernt alles vor dem Retention-Cutoff. Gibt die Anzahl zurueck."""
        cutoff = self._cutoff()
        idx = bisect.bisect_left(self._observations, cutoff, key=lambda o: o.timestamp)
        if idx:
            del self._observations[:idx]
        return idx

    def restore(self, observations: Iterable[Observation]):
        """Laedt einen Snapshot ohne Analyse-Signal."""
        self._observations = sorted((dataclasses.replace(o) for o in observations),
                                    key=lambda o: o.timestamp)
        self.purge()

    def clear(self):
        self._observations.clear()

    # ------------------------------------------------------------------
    # Lesen
    # ------------------------------------------------------------------

    def all(self) -> list[Observation]:
        return list(self._observations)

    def since(self, timestamp: datetime) -> list[Observation]:
        idx = bisect.bisect_left(self._observations, timestamp, key=lambda o: o.timestamp)
        return self._observations[idx:]

    def of_kind(self, kind: ObservationKind) -> list[Observation]:
        return [o for o in self._observations if o.kind == kind]

    @property
    def latest(self) -> Optional[Observation]:
        return self._observations[-1] if self._observations else None

    def __len__(self) -> int:
        return len(self._observations)

    def _cutoff(self) -> datetime:
        return self._clock() - timedelta(days=self.retention_days)
