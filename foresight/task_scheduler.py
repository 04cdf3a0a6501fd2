"""
Task Scheduler fuer periodische und einmalige Foresight-Tasks.

Decay-Tick, Voll-Analyse und Szenario-Regenerierung laufen als benannte
Tasks in einem gemeinsamen Thread. run_pending() fuehrt faellige Tasks
synchron aus; Tests treiben den Scheduler damit ueber eine Fake-Uhr.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Ein registrierter periodischer oder einmaliger Task."""

    def __init__(self, name: str, callback: Callable, interval_seconds: float,
                 now: datetime, run_immediately: bool = False, one_shot: bool = False,
                 enabled: bool = True):
        self.name = name
        self.callback = callback
        self.interval_seconds = interval_seconds
        self.one_shot = one_shot
        self.enabled = enabled
        self.last_run: Optional[datetime] = None
        self.next_run: datetime = now if run_immediately else now + timedelta(seconds=interval_seconds)
        self.run_count: int = 0
        self.error_count: int = 0
        self.last_error: Optional[str] = None
        self.last_duration: float = 0.0


class TaskScheduler:
    """Zentraler Scheduler, ein Thread fuer alle Tasks.

    Verwendung:
        scheduler = TaskScheduler(clock=datetime.now)
        scheduler.register("pattern_decay", engine.decay_patterns, interval_seconds=86400)
        scheduler.start()
    """

    def __init__(self, tick_interval: float = 5.0,
                 clock: Optional[Callable[[], datetime]] = None):
        self._tasks: dict[str, ScheduledTask] = {}
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.RLock()
        self._tick_interval = tick_interval
        self._clock = clock or datetime.now

    def register(self, name: str, callback: Callable, interval_seconds: float,
                 run_immediately: bool = False, one_shot: bool = False,
                 enabled: bool = True) -> bool:
        """Registriert einen Task (bestehender Name wird aktualisiert).

        Args:
            name: Eindeutiger Task-Name
            callback: Funktion ohne Argumente
            interval_seconds: Intervall in Sekunden
            run_immediately: Beim naechsten Tick sofort ausfuehren
            one_shot: Nur einmal ausfuehren, danach deaktivieren
            enabled: Aktiv starten
        """
        if interval_seconds <= 0:
            raise ValueError(f"Task '{name}': Intervall muss > 0 sein")
        with self._lock:
            if name in self._tasks:
                logger.warning("Task '%s' bereits registriert, aktualisiere", name)
                task = self._tasks[name]
                task.callback = callback
                task.interval_seconds = interval_seconds
                task.enabled = enabled
                return True

            self._tasks[name] = ScheduledTask(name, callback, interval_seconds, self._clock(),
                                              run_immediately, one_shot, enabled)
            logger.info("Task registriert: '%s' (alle %ss)", name, interval_seconds)
            return True

    def unregister(self, name: str) -> bool:
        with self._lock:
            if self._tasks.pop(name, None) is not None:
                logger.info("Task entfernt: '%s'", name)
                return True
        return False

    def enable(self, name: str) -> bool:
        task = self._tasks.get(name)
        if task:
            task.enabled = True
        return task is not None

    def disable(self, name: str) -> bool:
        task = self._tasks.get(name)
        if task:
            task.enabled = False
        return task is not None

    def trigger_now(self, name: str) -> bool:
        """Task beim naechsten Tick ausfuehren."""
        task = self._tasks.get(name)
        if task:
            task.next_run = self._clock()
            task.enabled = True
        return task is not None

    # ------------------------------------------------------------------
    # Ausfuehrung
    # ------------------------------------------------------------------

    def run_pending(self) -> list[str]:
        """Fuehrt alle faelligen Tasks aus. Gibt deren Namen zurueck."""
        now = self._clock()
        with self._lock:
            due = [t for t in self._tasks.values() if t.enabled and now >= t.next_run]
            for task in due:
                self._execute_task(task, now)
        return [t.name for t in due]

    def _execute_task(self, task: ScheduledTask, now: datetime):
        started = datetime.now()
        try:
            task.callback()
            task.run_count += 1
            task.last_run = now
            task.last_duration = (datetime.now() - started).total_seconds()
            if task.one_shot:
                task.enabled = False
                logger.info("Einmaliger Task '%s' erledigt, deaktiviert", task.name)
            else:
                task.next_run = now + timedelta(seconds=task.interval_seconds)
            logger.debug("Task '%s' fertig in %.2fs", task.name, task.last_duration)
        except Exception as e:
            task.error_count += 1
            task.last_error = str(e)
            task.next_run = now + timedelta(seconds=task.interval_seconds)
            logger.error("Task '%s' fehlgeschlagen: %s", task.name, e, exc_info=True)

    def start(self):
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True,
                                        name="Foresight-TaskScheduler")
        self._thread.start()
        logger.info("TaskScheduler gestartet (%d Tasks)", len(self._tasks))

    def stop(self):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=10)
            self._thread = None
        logger.info("TaskScheduler gestoppt")

    def _run_loop(self):
        while not self._stop_event.is_set():
            self.run_pending()
            self._stop_event.wait(self._tick_interval)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> list[dict]:
        return [
            {
                "name": name,
                "enabled": task.enabled,
                "interval_seconds": task.interval_seconds,
                "run_count": task.run_count,
                "error_count": task.error_count,
                "last_run": task.last_run.isoformat() if task.last_run else None,
                "next_run": task.next_run.isoformat(),
                "last_duration_ms": round(task.last_duration * 1000, 1),
                "last_error": task.last_error,
                "one_shot": task.one_shot,
            }
            for name, task in self._tasks.items()
        ]

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __contains__(self, name: str) -> bool:
        return name in self._tasks
