"""
Zentrale Konstanten fuer MindHome Foresight.

Sammelt Fenstergroessen, Schwellwerte, Event-Namen und Redis-Keys
an einem Ort statt sie ueber Pattern- und Scenario-Engine zu verstreuen.
"""

from typing import Final

# ============================================================
# Beobachtungen / Rolling Window
# ============================================================

OBSERVATION_RETENTION_DAYS: Final[int] = 90
INCREMENTAL_ANALYSIS_INTERVAL_SECONDS: Final[int] = 60

# ============================================================
# Pattern-Analyse
# ============================================================

SLOT_WIDTH_HOURS: Final[int] = 2
SEQUENCE_WINDOW_SIZE: Final[int] = 5
SEQUENCE_MIN_WINDOW_RATIO: Final[float] = 0.1
WEEKLY_DIVERGENCE_THRESHOLD: Final[float] = 0.3
COMFORT_MIN_READINGS: Final[int] = 10
COMFORT_VARIABLES: Final[tuple] = ("temperature", "humidity", "brightness")
MIN_ACTIVITY_SHARE: Final[float] = 0.1

# Stabil ab 14 verschiedenen Tagen
STABILITY_FULL_DAYS: Final[int] = 14

# ============================================================
# Pattern-Lebenszyklus
# ============================================================

STRENGTHEN_STEP: Final[float] = 0.01
DECAY_FACTOR: Final[float] = 0.9
DORMANT_CONFIDENCE: Final[float] = 0.3
PREDICTION_MIN_CONFIDENCE: Final[float] = 0.5
FIT_STRENGTHEN_THRESHOLD: Final[float] = 0.8
FIT_ANOMALY_THRESHOLD: Final[float] = 0.2
MAX_ANOMALIES: Final[int] = 200

# ============================================================
# Szenarien
# ============================================================

CALENDAR_EVENT_PROBABILITY: Final[float] = 0.95
CALENDAR_ACTIVITY_PROBABILITY: Final[float] = 0.9
SOCIAL_EVENT_PROBABILITY: Final[float] = 0.9
SOCIAL_GUEST_PROBABILITY: Final[float] = 0.95
ARRIVAL_CONFIDENCE_FACTOR: Final[float] = 0.8
DEFAULT_PATTERN_PROBABILITY: Final[float] = 0.5
DEFAULT_SLEEP_PROBABILITY: Final[float] = 0.8
ENERGY_SCENARIO_PROBABILITY: Final[float] = 0.7
ENERGY_SCENARIO_MIN_KWH: Final[float] = 5.0
ENERGY_OPTIMIZE_MIN_KWH: Final[float] = 8.0
ENERGY_UNUSUAL_KWH: Final[float] = 10.0
WEEKEND_GUEST_PROBABILITY: Final[float] = 0.3
DEFAULT_BEDTIME: Final[tuple] = (23, 0)
EVENING_START_HOUR: Final[int] = 17
EVENING_END_HOUR: Final[int] = 22

# Mahlzeiten-Fenster (Stunden, lokal)
MEAL_WINDOWS: Final[tuple] = (
    ("breakfast", 6, 10),
    ("lunch", 11, 14),
    ("dinner", 18, 21),
)

# Wetterlagen die eine Vorbereitung ausloesen
SEVERE_WEATHER: Final[dict] = {
    "rainy": 0.7,
    "snowy": 0.8,
    "stormy": 0.85,
}

# ============================================================
# Konfliktloesung
# ============================================================

CONFLICTING_ACTIVITIES: Final[tuple] = (
    ("sleeping", "socializing"),
    ("sleeping", "entertaining"),
    ("working", "socializing"),
)
CONSERVATIVE_PENALTY: Final[float] = 0.5
BALANCED_PENALTY: Final[float] = 0.7
CONFLICT_STRATEGIES: Final[tuple] = ("conservative", "balanced", "aggressive")

# ============================================================
# Vorbereitungs-Trigger
# ============================================================

PREPARATION_TRIGGER_WINDOW_SECONDS: Final[int] = 60

# ============================================================
# Event-Namen (Vertrag mit UI/Automation, nicht umbenennen)
# ============================================================

EVENT_PATTERN_DISCOVERED: Final[str] = "patternDiscovered"
EVENT_PATTERN_STRENGTHENED: Final[str] = "patternStrengthened"
EVENT_PATTERN_WEAKENED: Final[str] = "patternWeakened"
EVENT_PATTERN_FADED: Final[str] = "patternFaded"
EVENT_ANOMALY_DETECTED: Final[str] = "anomalyDetected"
EVENT_SCENARIO_GENERATED: Final[str] = "scenarioGenerated"
EVENT_SCENARIO_UPDATED: Final[str] = "scenarioUpdated"
EVENT_SCENARIO_EXPIRED: Final[str] = "scenarioExpired"
EVENT_CONFLICT_DETECTED: Final[str] = "conflictDetected"
EVENT_PREPARATION_TRIGGERED: Final[str] = "preparationTriggered"

# ============================================================
# Redis (Snapshot-Persistenz)
# ============================================================

REDIS_KEY_PATTERNS: Final[str] = "mha:foresight:patterns"
REDIS_KEY_OBSERVATIONS: Final[str] = "mha:foresight:observations"
REDIS_SNAPSHOT_TTL: Final[int] = OBSERVATION_RETENTION_DAYS * 86400

# ============================================================
# Aktivitaeten
# ============================================================

# Typische Dauer in Minuten: (min, typisch, max)
ACTIVITY_DURATIONS: Final[dict] = {
    "sleeping": (300, 480, 720),
    "waking": (5, 15, 30),
    "morning_routine": (20, 45, 90),
    "breakfast": (10, 25, 60),
    "working": (60, 240, 480),
    "studying": (30, 90, 240),
    "cooking": (15, 45, 120),
    "eating": (15, 30, 90),
    "relaxing": (15, 60, 240),
    "exercising": (20, 45, 120),
    "watching_media": (30, 90, 240),
    "reading": (15, 45, 180),
    "socializing": (30, 120, 360),
    "entertaining": (60, 180, 480),
    "cleaning": (15, 45, 180),
    "bathing": (10, 20, 60),
    "leaving": (1, 5, 15),
    "arriving": (1, 5, 15),
    "unknown": (5, 30, 120),
}

# Geraet + Zustand -> Aktivitaet
DEVICE_ACTIVITY_MAP: Final[dict] = {
    ("tv", "on"): "watching_media",
    ("oven", "on"): "cooking",
    ("coffee_maker", "on"): "morning_routine",
    ("shower", "on"): "bathing",
}

MEAL_ACTIVITIES: Final[frozenset] = frozenset({"cooking", "eating", "breakfast"})
LEISURE_ACTIVITIES: Final[frozenset] = frozenset({"relaxing", "watching_media", "reading"})
