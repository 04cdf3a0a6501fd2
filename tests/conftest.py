"""
Globale Test-Fixtures fuer MindHome Foresight.

Stellt wiederverwendbare Objekte bereit:
  - clock: steuerbare Uhr (alle Engines bekommen sie injiziert)
  - bus / recorder: Event Bus plus Mitschnitt aller Events
  - pattern_engine / scenario_engine: Engines mit festen Test-Configs
  - redis_mock: AsyncMock Redis Client fuer die Snapshot-Persistenz
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from foresight.event_bus import EventBus
from foresight.pattern_engine import PatternEngine
from foresight.scenario_engine import ScenarioEngine

from factories import START

PATTERN_CONFIG = {
    "min_observations_for_pattern": 5,
    "min_confidence_threshold": 0.6,
    "pattern_decay_days": 14,
    "emerging_pattern_threshold": 0.4,
    "established_pattern_threshold": 0.75,
    "retention_days": 90,
}

SCENARIO_CONFIG = {
    "prediction_horizons": {
        "immediate_minutes": 30,
        "short_term_hours": 4,
        "daily_hours": 24,
        "weekly_days": 7,
    },
    "min_scenario_probability": 0.3,
    "auto_execute_threshold": 0.85,
    "conflict_resolution_strategy": "balanced",
}


# ============================================================
# Uhr
# ============================================================

class FakeClock:
    """Injizierbare Uhr, wird von Tests explizit weitergestellt."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(START)


# ============================================================
# Event Bus
# ============================================================

class EventRecorder:
    """Schneidet alle Events eines Busses mit."""

    def __init__(self, bus: EventBus):
        self.events = []
        bus.subscribe("*", self.events.append)

    def of(self, event_type: str) -> list:
        return [e for e in self.events if e.event_type == event_type]

    def names(self) -> list:
        return [e.event_type for e in self.events]

    def clear(self):
        self.events.clear()


@pytest.fixture
def bus(clock):
    return EventBus(clock=clock)


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


# ============================================================
# Engines
# ============================================================

@pytest.fixture
def pattern_engine(bus, clock):
    return PatternEngine(dict(PATTERN_CONFIG), bus=bus, clock=clock)


@pytest.fixture
def scenario_engine(pattern_engine, clock):
    engine = ScenarioEngine(pattern_engine, dict(SCENARIO_CONFIG), clock=clock)
    yield engine
    engine.shutdown()


@pytest.fixture
def make_scenario_engine(pattern_engine, clock):
    """Factory fuer Scenario Engines mit abweichender Config."""
    engines = []

    def factory(**overrides):
        cfg = dict(SCENARIO_CONFIG)
        cfg.update(overrides)
        engine = ScenarioEngine(pattern_engine, cfg, clock=clock)
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        engine.shutdown()


@pytest.fixture
def service_config():
    return {
        "pattern_engine": dict(PATTERN_CONFIG),
        "scenario_engine": dict(SCENARIO_CONFIG),
        "scheduler": {
            "tick_seconds": 0.05,
            "regeneration_interval_seconds": 60,
            "full_analysis_interval_hours": 6,
            "decay_interval_hours": 24,
            "snapshot_interval_minutes": 15,
        },
    }


# ============================================================
# Redis Mock
# ============================================================

@pytest.fixture
def redis_mock():
    """AsyncMock Redis Client mit den von SnapshotStore genutzten Methoden."""
    mock = AsyncMock()

    mock.ping = AsyncMock(return_value=True)
    mock.close = AsyncMock()
    mock.get = AsyncMock(return_value=None)
    mock.setex = AsyncMock()
    mock.delete = AsyncMock()
    mock.expire = AsyncMock()

    mock.hset = AsyncMock()
    mock.hgetall = AsyncMock(return_value={})

    # Pipeline: redis.pipeline() ist synchron, nur execute() ist async
    pipe_mock = MagicMock()
    pipe_mock.delete = MagicMock()
    pipe_mock.hset = MagicMock()
    pipe_mock.expire = MagicMock()
    pipe_mock.setex = MagicMock()
    pipe_mock.execute = AsyncMock(return_value=[])
    mock.pipeline = MagicMock(return_value=pipe_mock)
    mock._pipeline = pipe_mock  # Fuer direkte Assertions in Tests

    return mock
