"""
Datenmodell fuer MindHome Foresight.

Beobachtungen, Pattern-Kandidaten, etablierte Patterns (mit typisierten
Nutzdaten je Pattern-Typ), Szenarien samt Vorhersage-Zustand und
Vorbereitungs-Aktionen sowie die Snapshots der externen Kollaborateure
(Kalender, Wetter/Kontext, Bewohner).
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from .constants import ACTIVITY_DURATIONS


class ForesightError(Exception):
    """Basis-Fehler fuer Vertragsverletzungen durch den Aufrufer."""


class InvalidTimeframeError(ForesightError, ValueError):
    """Zeitfenster mit end < start."""


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# ============================================================
# Enums
# ============================================================

class ObservationKind(Enum):
    ACTIVITY = "activity"
    PRESENCE = "presence"
    DEVICE = "device"
    ENVIRONMENT = "environment"


class PatternType(Enum):
    DAILY_ROUTINE = "daily_routine"
    WEEKLY_ROUTINE = "weekly_routine"
    SEASONAL_BEHAVIOR = "seasonal_behavior"
    OCCUPANCY_PATTERN = "occupancy_pattern"
    ENERGY_USAGE = "energy_usage"
    SLEEP_PATTERN = "sleep_pattern"
    SOCIAL_PATTERN = "social_pattern"
    COMFORT_PREFERENCE = "comfort_preference"
    ARRIVAL_DEPARTURE = "arrival_departure"
    MEAL_PATTERN = "meal_pattern"
    WORK_PATTERN = "work_pattern"
    LEISURE_PATTERN = "leisure_pattern"
    RITUAL = "ritual"
    ACTIVITY_SEQUENCE = "activity_sequence"


class PatternStatus(Enum):
    EMERGING = "emerging"
    ESTABLISHED = "established"
    FADING = "fading"
    DORMANT = "dormant"


class ScenarioSource(Enum):
    CALENDAR = "calendar"
    PATTERN = "pattern"
    INFERENCE = "inference"


class Horizon(Enum):
    IMMEDIATE = "immediate"
    SHORT_TERM = "short_term"
    DAILY = "daily"
    WEEKLY = "weekly"


class PreparationCategory(Enum):
    ENVIRONMENTAL = "environmental"
    SECURITY = "security"
    RESOURCE = "resource"
    NOTIFICATION = "notification"


class PreparationPriority(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


# ============================================================
# Beobachtungen
# ============================================================

@dataclass(frozen=True)
class Observation:
    """Ein einzelner, zeitgestempelter Fakt aus dem Haus."""
    timestamp: datetime
    kind: ObservationKind
    payload: dict = field(default_factory=dict)
    user_id: Optional[str] = None
    room_id: Optional[str] = None
    device_id: Optional[str] = None

    def __post_init__(self):
        # Eigene Kopie: Aufrufer-Daten werden nie geteilt
        object.__setattr__(self, "payload", dict(self.payload or {}))
        if not isinstance(self.kind, ObservationKind):
            object.__setattr__(self, "kind", ObservationKind(self.kind))

    @property
    def day(self) -> date:
        return self.timestamp.date()

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "payload": dict(self.payload),
            "user_id": self.user_id,
            "room_id": self.room_id,
            "device_id": self.device_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Observation":
        return cls(
            timestamp=_parse_dt(data["timestamp"]),
            kind=ObservationKind(data["kind"]),
            payload=data.get("payload", {}),
            user_id=data.get("user_id"),
            room_id=data.get("room_id"),
            device_id=data.get("device_id"),
        )


# ============================================================
# Pattern-Bausteine
# ============================================================

@dataclass
class DurationRange:
    min: int
    typical: int
    max: int

    @classmethod
    def for_activity(cls, activity: str) -> "DurationRange":
        low, typical, high = ACTIVITY_DURATIONS.get(activity, ACTIVITY_DURATIONS["unknown"])
        return cls(low, typical, high)


@dataclass
class ActivitySignature:
    activity: str
    duration: DurationRange
    locations: list = field(default_factory=list)
    devices: list = field(default_factory=list)
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return {
            "activity": self.activity,
            "duration": vars(self.duration).copy(),
            "locations": list(self.locations),
            "devices": list(self.devices),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ActivitySignature":
        return cls(
            activity=data["activity"],
            duration=DurationRange(**data["duration"]),
            locations=list(data.get("locations", [])),
            devices=list(data.get("devices", [])),
            confidence=data.get("confidence", 0.0),
        )


@dataclass
class EnvironmentState:
    temperature: float = 22.0
    humidity: float = 45.0
    brightness: float = 70.0
    color_temp: float = 4000.0
    noise: float = 30.0
    curtains: float = 50.0


@dataclass
class DailyRoutineData:
    """Verhalten in einem festen 2-Stunden-Slot."""
    slot: int
    start_time: str
    end_time: str
    typical_time: str
    probability: float
    activities: list = field(default_factory=list)
    environment: EnvironmentState = field(default_factory=EnvironmentState)
    kind: str = "daily_routine"

    @property
    def start_hour(self) -> int:
        return int(self.start_time.split(":")[0])

    @property
    def end_hour(self) -> int:
        # "00:00" als Slot-Ende = Mitternacht
        hour = int(self.end_time.split(":")[0])
        return hour or 24

    def has_activity(self, names) -> bool:
        return any(sig.activity in names for sig in self.activities)


@dataclass
class WeeklyRoutineData:
    """Unterschied Werktag vs. Wochenende."""
    weekday_signature: dict
    weekend_signature: dict
    divergence: float
    busiest_day: Optional[int] = None
    quietest_day: Optional[int] = None
    kind: str = "weekly_routine"


@dataclass
class ActivitySequenceData:
    activities: list
    occurrences: int
    window_size: int
    kind: str = "activity_sequence"


@dataclass
class ComfortPreferenceData:
    variable: str
    minimum: float
    maximum: float
    preferred: float
    kind: str = "comfort_preference"


PatternData = Union[DailyRoutineData, WeeklyRoutineData, ActivitySequenceData, ComfortPreferenceData]


def pattern_data_to_dict(data: PatternData) -> dict:
    result = dict(vars(data))
    if isinstance(data, DailyRoutineData):
        result["activities"] = [sig.to_dict() for sig in data.activities]
        result["environment"] = dict(vars(data.environment))
    return result


def pattern_data_from_dict(data: dict) -> PatternData:
    values = dict(data)
    kind = values.pop("kind")
    if kind == "daily_routine":
        values["activities"] = [ActivitySignature.from_dict(s) for s in values.get("activities", [])]
        values["environment"] = EnvironmentState(**values.get("environment", {}))
        return DailyRoutineData(**values)
    if kind == "weekly_routine":
        return WeeklyRoutineData(**values)
    if kind == "activity_sequence":
        return ActivitySequenceData(**values)
    if kind == "comfort_preference":
        return ComfortPreferenceData(**values)
    raise ValueError(f"Unbekannter Pattern-Datentyp: {kind}")


@dataclass
class PatternCandidate:
    """Noch nicht bestaetigte Hypothese ueber wiederkehrendes Verhalten."""
    key: str
    type: PatternType
    observations: list
    strength: float
    first_seen: datetime
    last_seen: datetime
    data: PatternData

    @property
    def observation_count(self) -> int:
        return len(self.observations)


@dataclass
class Pattern:
    """Bestaetigte, abfragbare Verhaltens-Regelmaessigkeit."""
    id: str
    type: PatternType
    confidence: float
    stability: float
    first_observed: datetime
    last_observed: datetime
    occurrences: int
    data: PatternData
    status: PatternStatus = PatternStatus.ESTABLISHED
    next_expected_occurrence: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status != PatternStatus.DORMANT

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "confidence": round(self.confidence, 4),
            "stability": round(self.stability, 4),
            "first_observed": _iso(self.first_observed),
            "last_observed": _iso(self.last_observed),
            "occurrences": self.occurrences,
            "data": pattern_data_to_dict(self.data),
            "status": self.status.value,
            "next_expected_occurrence": _iso(self.next_expected_occurrence),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Pattern":
        return cls(
            id=data["id"],
            type=PatternType(data["type"]),
            confidence=data["confidence"],
            stability=data["stability"],
            first_observed=_parse_dt(data["first_observed"]),
            last_observed=_parse_dt(data["last_observed"]),
            occurrences=data["occurrences"],
            data=pattern_data_from_dict(data["data"]),
            status=PatternStatus(data.get("status", "established")),
            next_expected_occurrence=_parse_dt(data.get("next_expected_occurrence")),
        )


@dataclass
class MomentPrediction:
    """Aggregierte Vorhersage der Pattern Engine fuer einen Zeitpunkt."""
    activities: list = field(default_factory=list)
    environment: EnvironmentState = field(default_factory=EnvironmentState)
    confidence: float = 0.0
    pattern_ids: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "activities": [sig.to_dict() for sig in self.activities],
            "environment": dict(vars(self.environment)),
            "confidence": round(self.confidence, 4),
            "pattern_ids": list(self.pattern_ids),
        }


@dataclass
class TemporalMoment:
    timestamp: datetime
    day_of_week: int
    hour_of_day: int
    minute_of_hour: int
    week_of_year: int
    month_of_year: int
    season: str
    is_holiday: bool
    is_weekend: bool
    sun_phase: str


# ============================================================
# Szenarien
# ============================================================

@dataclass
class TimeWindow:
    start: datetime
    end: datetime
    granularity: str = "hour"

    def __post_init__(self):
        if self.end < self.start:
            raise InvalidTimeframeError(
                f"Zeitfenster ungueltig: end {self.end.isoformat()} < start {self.start.isoformat()}"
            )

    def overlaps(self, other: "TimeWindow") -> bool:
        return not (self.end < other.start or other.end < self.start)


@dataclass
class OccupancyPrediction:
    expected_occupants: list = field(default_factory=list)
    arrival_times: dict = field(default_factory=dict)
    departure_times: dict = field(default_factory=dict)
    guest_probability: float = 0.0
    guest_count: Optional[int] = None


@dataclass
class ActivityPrediction:
    activity: str
    probability: float
    location: str
    participants: list = field(default_factory=list)
    duration: Optional[DurationRange] = None

    def __post_init__(self):
        if self.duration is None:
            self.duration = DurationRange.for_activity(self.activity)


@dataclass
class TemperatureRange:
    day_min: float = 20.0
    day_max: float = 24.0
    night_min: float = 18.0
    night_max: float = 21.0
    unit: str = "celsius"


@dataclass
class LightingPreference:
    wake_light: int = 80
    day_light: int = 80
    evening_light: int = 60
    night_light: int = 20
    color_temp_preference: int = 4000


@dataclass
class EnvironmentPrediction:
    temperature: TemperatureRange = field(default_factory=TemperatureRange)
    lighting: LightingPreference = field(default_factory=LightingPreference)
    humidity_min: float = 40.0
    humidity_max: float = 55.0
    ventilation: str = "normal"
    noise: str = "normal"


@dataclass
class ResourcePrediction:
    energy_demand: float = 2.0
    water_demand: float = 50.0
    peak_load_time: Optional[datetime] = None
    unusual_consumption: bool = False


@dataclass
class PredictedState:
    occupancy: OccupancyPrediction = field(default_factory=OccupancyPrediction)
    activities: list = field(default_factory=list)
    environment_needs: EnvironmentPrediction = field(default_factory=EnvironmentPrediction)
    resource_needs: ResourcePrediction = field(default_factory=ResourcePrediction)

    @property
    def activity_names(self) -> set:
        return {a.activity for a in self.activities}


@dataclass
class PreparationAction:
    """Vorbereitende Aktion, gehoert zu genau einem Szenario."""
    id: str
    category: PreparationCategory
    action: str
    execute_at: datetime
    priority: PreparationPriority = PreparationPriority.NORMAL
    reversible: bool = True
    dependencies: list = field(default_factory=list)
    scenario_id: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category.value,
            "action": self.action,
            "execute_at": self.execute_at.isoformat(),
            "priority": self.priority.value,
            "reversible": self.reversible,
            "dependencies": list(self.dependencies),
            "scenario_id": self.scenario_id,
        }


@dataclass
class Scenario:
    """Wahrscheinlichkeitsbasierte Vorhersage eines kuenftigen Hauszustands."""
    id: str
    description: str
    probability: float
    timeframe: TimeWindow
    source: ScenarioSource
    predicted_state: PredictedState
    required_preparation: list = field(default_factory=list)
    conflicts_with: list = field(default_factory=list)
    enabled_by: list = field(default_factory=list)
    horizon: Optional[Horizon] = None
    auto_execute_threshold: float = 0.85
    base_probability: Optional[float] = None
    confidence: Optional[float] = None

    def __post_init__(self):
        if not 0.0 <= self.probability <= 1.0:
            raise ValueError(f"Wahrscheinlichkeit ausserhalb [0, 1]: {self.probability}")
        if self.base_probability is None:
            self.base_probability = self.probability
        if self.confidence is None:
            self.confidence = self.probability
        for prep in self.required_preparation:
            prep.scenario_id = self.id

    @property
    def user_confirmation_needed(self) -> bool:
        return self.probability < self.auto_execute_threshold

    @property
    def auto_executable(self) -> bool:
        return self.probability >= self.auto_execute_threshold

    def fingerprint(self) -> tuple:
        """Inhalt ohne Konfliktzustand, fuer 'hat sich etwas geaendert?'."""
        return (
            self.description,
            round(self.base_probability, 6),
            self.timeframe.start,
            self.timeframe.end,
            self.source,
            tuple(sorted(self.predicted_state.activity_names)),
            tuple((p.id, p.execute_at) for p in self.required_preparation),
        )

    def to_dict(self) -> dict:
        state = self.predicted_state
        return {
            "id": self.id,
            "description": self.description,
            "probability": round(self.probability, 4),
            "base_probability": round(self.base_probability, 4),
            "timeframe": {
                "start": self.timeframe.start.isoformat(),
                "end": self.timeframe.end.isoformat(),
                "granularity": self.timeframe.granularity,
            },
            "source": self.source.value,
            "horizon": self.horizon.value if self.horizon else None,
            "predicted_state": {
                "occupancy": {
                    "expected_occupants": list(state.occupancy.expected_occupants),
                    "arrival_times": {k: _iso(v) for k, v in state.occupancy.arrival_times.items()},
                    "guest_probability": state.occupancy.guest_probability,
                    "guest_count": state.occupancy.guest_count,
                },
                "activities": [
                    {
                        "activity": a.activity,
                        "probability": round(a.probability, 4),
                        "location": a.location,
                        "duration": vars(a.duration).copy(),
                    }
                    for a in state.activities
                ],
                "environment_needs": {
                    "temperature": vars(state.environment_needs.temperature).copy(),
                    "lighting": vars(state.environment_needs.lighting).copy(),
                    "humidity": [state.environment_needs.humidity_min, state.environment_needs.humidity_max],
                    "ventilation": state.environment_needs.ventilation,
                    "noise": state.environment_needs.noise,
                },
                "resource_needs": {
                    "energy_demand": state.resource_needs.energy_demand,
                    "water_demand": state.resource_needs.water_demand,
                    "peak_load_time": _iso(state.resource_needs.peak_load_time),
                    "unusual_consumption": state.resource_needs.unusual_consumption,
                },
            },
            "required_preparation": [p.to_dict() for p in self.required_preparation],
            "conflicts_with": list(self.conflicts_with),
            "user_confirmation_needed": self.user_confirmation_needed,
        }


# ============================================================
# Externe Kollaborateure (Snapshots)
# ============================================================

@dataclass
class CalendarEvent:
    id: str
    title: str
    start: datetime
    end: datetime
    category: str = "other"
    attendees: list = field(default_factory=list)
    location: Optional[str] = None

    def __post_init__(self):
        if self.end < self.start:
            raise InvalidTimeframeError(
                f"Kalender-Event '{self.id}' endet vor seinem Beginn"
            )


@dataclass
class WeatherCondition:
    temperature: float
    humidity: float
    condition: str = "clear"
    wind_speed: float = 0.0
    time: Optional[datetime] = None


@dataclass
class ExternalContext:
    weather: Optional[WeatherCondition] = None
    forecast: list = field(default_factory=list)
    traffic: Optional[dict] = None
    local_events: list = field(default_factory=list)
    holidays: list = field(default_factory=list)


@dataclass
class OccupantState:
    user_id: str
    is_home: bool
    last_seen: datetime
    current_room: Optional[str] = None
    activity: Optional[str] = None
