"""
ForesightService - verdrahtet Event Bus, Engines, Scheduler und Snapshots.

Die Engines selbst sind single-threaded. Scheduler-Thread und HTTP-Handler
laufen deshalb ueber call(), das alle Mutationen hinter einem Lock
serialisiert.
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Callable, Optional

import redis.asyncio as aioredis

from .config import section_config
from .event_bus import EventBus
from .pattern_engine import PatternEngine
from .persistence import SnapshotStore
from .scenario_engine import ScenarioEngine
from .task_scheduler import TaskScheduler

logger = logging.getLogger(__name__)

TASK_DECAY = "pattern_decay"
TASK_FULL_ANALYSIS = "full_analysis"
TASK_REGENERATION = "scenario_regeneration"


class ForesightService:

    def __init__(self, config: Optional[dict] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        config = config or {}
        self._clock = clock or datetime.now
        self._lock = threading.RLock()

        self.bus = EventBus(clock=self._clock)
        self.pattern_engine = PatternEngine(config.get("pattern_engine"), bus=self.bus, clock=self._clock)
        self.scenario_engine = ScenarioEngine(self.pattern_engine, config.get("scenario_engine"),
                                              bus=self.bus, clock=self._clock)

        sched_cfg = section_config("scheduler", config.get("scheduler"))
        self.snapshot_interval = float(sched_cfg.get("snapshot_interval_minutes", 15)) * 60
        self.scheduler = TaskScheduler(tick_interval=float(sched_cfg.get("tick_seconds", 5)),
                                       clock=self._clock)
        self.scheduler.register(TASK_DECAY, self._locked(self.pattern_engine.decay_patterns),
                                interval_seconds=float(sched_cfg.get("decay_interval_hours", 24)) * 3600)
        self.scheduler.register(TASK_FULL_ANALYSIS, self._locked(self.pattern_engine.perform_full_analysis),
                                interval_seconds=float(sched_cfg.get("full_analysis_interval_hours", 6)) * 3600)
        self.scheduler.register(TASK_REGENERATION, self._locked(self.scenario_engine.regenerate_scenarios),
                                interval_seconds=float(sched_cfg.get("regeneration_interval_seconds", 60)),
                                run_immediately=True)

        self.snapshots = SnapshotStore(
            ttl_seconds=self.pattern_engine.store.retention_days * 86400)
        self._started_at: Optional[datetime] = None

    def _locked(self, func: Callable) -> Callable:
        def run():
            with self._lock:
                return func()
        run.__name__ = getattr(func, "__name__", "task")
        return run

    def now(self) -> datetime:
        return self._clock()

    def call(self, func: Callable, *args, **kwargs):
        """Fuehrt eine Engine-Operation serialisiert aus."""
        with self._lock:
            return func(*args, **kwargs)

    # ------------------------------------------------------------------
    # Lebenszyklus
    # ------------------------------------------------------------------

    async def initialize(self, redis_client: Optional[aioredis.Redis] = None):
        await self.snapshots.initialize(redis_client)
        snapshot = await self.snapshots.load()
        if snapshot:
            self.call(self.pattern_engine.restore,
                      snapshot.get("patterns"), snapshot.get("observations"))
        logger.info("ForesightService initialisiert (%d Patterns)", len(self.pattern_engine.registry))

    def start(self):
        self._started_at = self._clock()
        self.scheduler.start()

    async def save_snapshot(self) -> bool:
        snapshot = self.call(self.pattern_engine.snapshot)
        return await self.snapshots.save(snapshot)

    async def snapshot_loop(self):
        """Periodische Sicherung, laeuft als asyncio-Task."""
        while True:
            await asyncio.sleep(self.snapshot_interval)
            await self.save_snapshot()

    async def shutdown(self):
        self.scheduler.stop()
        await self.save_snapshot()
        self.scenario_engine.shutdown()
        logger.info("ForesightService heruntergefahren")

    def status(self) -> dict:
        with self._lock:
            return {
                "started_at": self._started_at.isoformat() if self._started_at else None,
                "pattern_engine": self.pattern_engine.get_status(),
                "scenario_engine": self.scenario_engine.get_status(),
                "tasks": self.scheduler.get_status(),
                "events": self.bus.get_stats(),
                "persistence": {
                    "redis": self.snapshots.available,
                    "last_saved": self.snapshots.last_saved,
                },
            }
