"""
Scenario Generator - erzeugt Zukunfts-Szenarien fuer vier Horizonte.

  immediate   (<= 30 min)  Kalender, Pattern-Aktivitaeten, Ankuenfte
  short_term  (<= 4 h)     Soziale Events, Wetterumschwung
  daily       (Tagesende)  Mahlzeiten, Abend, Schlaf
  weekly      (<= 7 Tage)  Kalender, Wochenende
  + Energiebedarf aus der Summe aller Szenarien im Kurzfrist-Horizont

Szenario-IDs sind deterministisch (Art + Bezug + Tag). Ein erneuter Pass
ersetzt damit bestehende Szenarien statt sie zu duplizieren. Patterns
werden nur gelesen, nie veraendert.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from .constants import (
    ARRIVAL_CONFIDENCE_FACTOR,
    CALENDAR_ACTIVITY_PROBABILITY,
    CALENDAR_EVENT_PROBABILITY,
    DEFAULT_BEDTIME,
    DEFAULT_PATTERN_PROBABILITY,
    DEFAULT_SLEEP_PROBABILITY,
    ENERGY_OPTIMIZE_MIN_KWH,
    ENERGY_SCENARIO_MIN_KWH,
    ENERGY_SCENARIO_PROBABILITY,
    ENERGY_UNUSUAL_KWH,
    EVENING_END_HOUR,
    EVENING_START_HOUR,
    LEISURE_ACTIVITIES,
    MEAL_ACTIVITIES,
    MEAL_WINDOWS,
    SEVERE_WEATHER,
    SOCIAL_EVENT_PROBABILITY,
    SOCIAL_GUEST_PROBABILITY,
    WEEKEND_GUEST_PROBABILITY,
)
from .models import (
    ActivityPrediction,
    CalendarEvent,
    DailyRoutineData,
    DurationRange,
    EnvironmentPrediction,
    ExternalContext,
    Horizon,
    LightingPreference,
    OccupancyPrediction,
    Pattern,
    PatternType,
    PredictedState,
    PreparationAction,
    PreparationCategory,
    PreparationPriority,
    ResourcePrediction,
    Scenario,
    ScenarioSource,
    TemperatureRange,
    TimeWindow,
)
from .temporal import at_time, date_to_moment, end_of_day, parse_hhmm, start_of_day

logger = logging.getLogger(__name__)

ENERGY_SCENARIO_ID = "energy_demand"

# Aktivitaet -> (wake, day, evening, night, Farbtemperatur) + Abweichungen
_ACTIVITY_ENVIRONMENT = {
    "sleeping": ((0, 0, 0, 0, 2700), {"noise": "quiet"}),
    "working": ((100, 100, 80, 50, 5000), {"noise": "quiet"}),
    "relaxing": ((80, 60, 40, 20, 3000), {"noise": "quiet"}),
    "socializing": ((80, 70, 60, 40, 3500), {"noise": "social"}),
    "cooking": ((100, 100, 90, 70, 4500), {"ventilation": "increased"}),
    "watching_media": ((50, 30, 20, 10, 3000), {"noise": "normal"}),
    "exercising": ((100, 100, 100, 80, 5000), {"ventilation": "increased"}),
    "waking": ((50, 80, 100, 100, 4000), {}),
    "morning_routine": ((80, 100, 100, 100, 4500), {}),
    "breakfast": ((100, 100, 100, 100, 4000), {}),
    "studying": ((100, 100, 90, 70, 5000), {"noise": "quiet"}),
    "eating": ((80, 80, 60, 40, 3500), {}),
    "reading": ((90, 80, 70, 50, 4000), {"noise": "quiet"}),
    "entertaining": ((80, 70, 60, 50, 3500), {"noise": "social"}),
    "cleaning": ((100, 100, 100, 100, 5000), {}),
    "bathing": ((70, 60, 50, 30, 3000), {}),
    "leaving": ((100, 100, 100, 100, 4000), {}),
    "arriving": ((100, 80, 70, 50, 4000), {}),
}

_CATEGORY_ACTIVITY = {
    "work": "working",
    "social": "socializing",
}


def environment_for_activity(activity: str) -> EnvironmentPrediction:
    env = EnvironmentPrediction()
    entry = _ACTIVITY_ENVIRONMENT.get(activity)
    if entry:
        lighting, overrides = entry
        env.lighting = LightingPreference(*lighting)
        for key, value in overrides.items():
            setattr(env, key, value)
    return env


def _mean_confidence(patterns: list, default: float) -> float:
    if not patterns:
        return default
    return sum(p.confidence for p in patterns) / len(patterns)


def _slot_overlaps(data: DailyRoutineData, start_hour: int, end_hour: int) -> bool:
    return data.start_hour < end_hour and start_hour < data.end_hour


def _typical_at(day: datetime, data: DailyRoutineData) -> datetime:
    hour, minute = parse_hhmm(data.typical_time)
    return at_time(day, hour, minute)


class ScenarioGenerator:
    """Baut Szenarien aus Patterns, Kalender und externem Kontext."""

    def __init__(self, pattern_engine, horizons: Optional[dict] = None,
                 min_probability: float = 0.3, auto_execute_threshold: float = 0.85):
        horizons = horizons or {}
        self.pattern_engine = pattern_engine
        self.immediate = timedelta(minutes=horizons.get("immediate_minutes", 30))
        self.short_term = timedelta(hours=horizons.get("short_term_hours", 4))
        self.daily = timedelta(hours=horizons.get("daily_hours", 24))
        self.weekly = timedelta(days=horizons.get("weekly_days", 7))
        self.min_probability = min_probability
        self.auto_execute_threshold = auto_execute_threshold

        # Zustand eines einzelnen Passes
        self._now: datetime = datetime.min
        self._calendar: list = []
        self._context = ExternalContext()
        self._occupants: dict = {}
        self._generated: dict[str, Scenario] = {}

    # ------------------------------------------------------------------
    # Einstieg
    # ------------------------------------------------------------------

    def generate(self, now: datetime, calendar: list, context: Optional[ExternalContext],
                 occupants: dict, existing: Optional[list] = None) -> list[Scenario]:
        """Alle Horizont-Passes, danach die Energiebedarfs-Inferenz.

        Args:
            existing: Bereits lebende Szenarien (fuer die Energiesumme)
        """
        self._now = now
        self._calendar = list(calendar)
        self._context = context or ExternalContext()
        self._occupants = dict(occupants)
        self._generated = {}

        self.generate_immediate()
        self.generate_short_term()
        self.generate_daily()
        self.generate_weekly()
        self.predict_energy_demand(existing or [])

        logger.debug("Szenario-Pass: %d Szenarien erzeugt", len(self._generated))
        return list(self._generated.values())

    def _add(self, scenario: Scenario) -> bool:
        if scenario.probability < self.min_probability:
            return False
        # Erster (kuerzester) Horizont gewinnt
        if scenario.id in self._generated:
            return False
        self._generated[scenario.id] = scenario
        return True

    def _scenario(self, scenario_id: str, description: str, probability: float,
                  start: datetime, end: datetime, source: ScenarioSource,
                  state: PredictedState, horizon: Horizon, granularity: str = "hour",
                  preparations: Optional[list] = None, enabled_by: Optional[list] = None) -> Scenario:
        return Scenario(
            id=scenario_id,
            description=description,
            probability=min(1.0, probability),
            timeframe=TimeWindow(start, end, granularity),
            source=source,
            predicted_state=state,
            required_preparation=preparations or [],
            enabled_by=enabled_by or [],
            horizon=horizon,
            auto_execute_threshold=self.auto_execute_threshold,
        )

    def _preparation(self, scenario_id: str, action: str, execute_at: datetime,
                     category: PreparationCategory = PreparationCategory.ENVIRONMENTAL,
                     priority: PreparationPriority = PreparationPriority.NORMAL,
                     reversible: bool = True) -> PreparationAction:
        return PreparationAction(
            id=f"prep_{scenario_id}_{action}",
            category=category,
            action=action,
            execute_at=execute_at,
            priority=priority,
            reversible=reversible,
            scenario_id=scenario_id,
        )

    def _occupancy(self, guest_probability: float = 0.0,
                   guest_count: Optional[int] = None) -> OccupancyPrediction:
        home = sorted(uid for uid, state in self._occupants.items() if state.is_home)
        return OccupancyPrediction(expected_occupants=home,
                                   guest_probability=guest_probability,
                                   guest_count=guest_count)

    def _events_between(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        return [e for e in self._calendar if start <= e.start <= end]

    def _slot_patterns(self, activities) -> list[Pattern]:
        return [
            p for p in self.pattern_engine.get_active_patterns(PatternType.DAILY_ROUTINE)
            if isinstance(p.data, DailyRoutineData) and p.data.has_activity(activities)
        ]

    # ------------------------------------------------------------------
    # Horizont: immediate
    # ------------------------------------------------------------------

    def generate_immediate(self):
        now = self._now
        horizon = now + self.immediate

        for event in self._events_between(now, horizon):
            self._add(self.event_scenario(event, Horizon.IMMEDIATE))

        moment = date_to_moment(now, self._context.holidays)
        prediction = self.pattern_engine.get_prediction_for_moment(moment)
        for signature in prediction.activities:
            activity = signature.activity
            state = PredictedState(
                occupancy=self._occupancy(),
                activities=[ActivityPrediction(
                    activity=activity,
                    probability=signature.confidence,
                    location=signature.locations[0] if signature.locations else "unknown",
                    duration=signature.duration,
                )],
                environment_needs=environment_for_activity(activity),
            )
            self._add(self._scenario(
                f"immediate_activity_{activity}", f"{activity} activity predicted",
                signature.confidence, now, horizon, ScenarioSource.PATTERN, state,
                Horizon.IMMEDIATE, granularity="minute",
                enabled_by=list(prediction.pattern_ids),
            ))

        self.predict_arrivals(now, horizon)

    def predict_arrivals(self, now: datetime, horizon: datetime):
        if self._occupants and all(s.is_home for s in self._occupants.values()):
            return

        patterns = self.pattern_engine.get_active_patterns(PatternType.ARRIVAL_DEPARTURE)
        known = {p.id for p in patterns}
        patterns += [p for p in self._slot_patterns({"arriving"}) if p.id not in known]

        for pattern in patterns:
            arrival = now
            data = pattern.data
            if isinstance(data, DailyRoutineData):
                typical = _typical_at(now, data)
                if now <= typical <= horizon:
                    arrival = typical
                else:
                    end_hour = 24 if horizon.date() > now.date() else horizon.hour + 1
                    if not _slot_overlaps(data, now.hour, end_hour):
                        continue

            probability = pattern.confidence * ARRIVAL_CONFIDENCE_FACTOR
            scenario_id = f"arrival_{pattern.id}_{now.date().isoformat()}"
            occupancy = self._occupancy()
            state = PredictedState(
                occupancy=occupancy,
                activities=[ActivityPrediction("arriving", probability, "entrance")],
                environment_needs=environment_for_activity("arriving"),
            )
            self._add(self._scenario(
                scenario_id, "Occupant arrival expected", probability,
                arrival, max(horizon, arrival), ScenarioSource.PATTERN, state,
                Horizon.IMMEDIATE, granularity="minute",
                preparations=[self._preparation(scenario_id, "prepare_entrance_lighting",
                                                arrival - timedelta(minutes=5))],
                enabled_by=[pattern.id],
            ))

    # ------------------------------------------------------------------
    # Horizont: short_term
    # ------------------------------------------------------------------

    def generate_short_term(self):
        now = self._now
        horizon = now + self.short_term
        for event in self._events_between(now, horizon):
            if event.category == "social":
                self._add(self.social_scenario(event))
        self.predict_weather(now, horizon)

    def social_scenario(self, event: CalendarEvent) -> Scenario:
        guests = len(event.attendees) or 2
        scenario_id = f"social_{event.id}"
        state = PredictedState(
            occupancy=self._occupancy(SOCIAL_GUEST_PROBABILITY, guests),
            activities=[ActivityPrediction(
                "entertaining", SOCIAL_EVENT_PROBABILITY, event.location or "living_room",
                participants=list(event.attendees),
                duration=DurationRange(60, 180, 360),
            )],
            environment_needs=EnvironmentPrediction(
                temperature=TemperatureRange(21, 23, 20, 22),
                lighting=LightingPreference(100, 80, 60, 30, 3500),
                humidity_min=40, humidity_max=55,
                ventilation="increased", noise="social",
            ),
            resource_needs=ResourcePrediction(
                energy_demand=3 + guests * 0.5,
                water_demand=20 + guests * 5,
                peak_load_time=event.start,
                unusual_consumption=guests > 4,
            ),
        )
        preparations = [
            self._preparation(scenario_id, "adjust_temperature_for_guests",
                              event.start - timedelta(minutes=60)),
            self._preparation(scenario_id, "set_social_lighting_scene",
                              event.start - timedelta(minutes=15)),
            self._preparation(scenario_id, "prepare_ambient_music",
                              event.start - timedelta(minutes=15),
                              priority=PreparationPriority.LOW),
        ]
        return self._scenario(
            scenario_id, f"Social gathering: {event.title}", SOCIAL_EVENT_PROBABILITY,
            event.start, event.end, ScenarioSource.CALENDAR, state, Horizon.SHORT_TERM,
            preparations=preparations, enabled_by=[event.id],
        )

    def predict_weather(self, now: datetime, horizon: datetime):
        conditions = list(self._context.forecast)
        if self._context.weather:
            conditions.insert(0, self._context.weather)

        for weather in conditions:
            when = weather.time or now
            if weather.condition not in SEVERE_WEATHER or not now <= when <= horizon:
                continue
            scenario_id = f"weather_{when.date().isoformat()}"
            state = PredictedState(
                occupancy=self._occupancy(),
                environment_needs=EnvironmentPrediction(ventilation="minimal"),
            )
            self._add(self._scenario(
                scenario_id, "Weather change expected", SEVERE_WEATHER[weather.condition],
                when, when + timedelta(hours=1), ScenarioSource.INFERENCE, state,
                Horizon.SHORT_TERM,
                preparations=[self._preparation(
                    scenario_id, "close_windows_and_covers", when - timedelta(minutes=30),
                    category=PreparationCategory.SECURITY, priority=PreparationPriority.HIGH)],
            ))
            # Nur die erste Unwetterlage im Horizont
            return

    # ------------------------------------------------------------------
    # Horizont: daily
    # ------------------------------------------------------------------

    def generate_daily(self):
        self.predict_meals()
        self.predict_evening()
        self.predict_sleep()

    def predict_meals(self):
        now = self._now
        meal_patterns = self.pattern_engine.get_active_patterns(PatternType.MEAL_PATTERN)
        slot_patterns = self._slot_patterns(MEAL_ACTIVITIES)

        for meal, start_hour, end_hour in MEAL_WINDOWS:
            if now.hour >= end_hour:
                continue

            slots = [p for p in slot_patterns if _slot_overlaps(p.data, start_hour, end_hour)]
            contributing = meal_patterns + slots
            probability = _mean_confidence(contributing, DEFAULT_PATTERN_PROBABILITY)

            if slots:
                best = max(slots, key=lambda p: p.confidence)
                meal_time = _typical_at(now, best.data)
            else:
                meal_time = at_time(now, (start_hour + end_hour) // 2)
            end = meal_time + timedelta(minutes=60)
            if end < now or meal_time > now + self.daily:
                continue

            scenario_id = f"meal_{meal}_{now.date().isoformat()}"
            state = PredictedState(
                occupancy=self._occupancy(),
                activities=[ActivityPrediction("cooking", probability, "kitchen",
                                               duration=DurationRange(15, 45, 90))],
                environment_needs=EnvironmentPrediction(
                    temperature=TemperatureRange(20, 23, 18, 20),
                    lighting=LightingPreference(100, 80, 70, 20, 4000),
                    humidity_min=40, humidity_max=60,
                    ventilation="increased",
                ),
                resource_needs=ResourcePrediction(energy_demand=2.0, water_demand=10.0,
                                                  peak_load_time=meal_time),
            )
            self._add(self._scenario(
                scenario_id, f"{meal} preparation expected", probability,
                meal_time, end, ScenarioSource.PATTERN, state, Horizon.DAILY,
                preparations=[self._preparation(scenario_id, "preheat_kitchen",
                                                meal_time - timedelta(minutes=30))],
                enabled_by=[p.id for p in contributing],
            ))

    def predict_evening(self):
        now = self._now
        if now.hour > EVENING_END_HOUR:
            return

        contributing = self.pattern_engine.get_active_patterns(PatternType.LEISURE_PATTERN)
        contributing += [p for p in self._slot_patterns(LEISURE_ACTIVITIES)
                         if _slot_overlaps(p.data, EVENING_START_HOUR, 24)]
        probability = _mean_confidence(contributing, DEFAULT_PATTERN_PROBABILITY)

        start = at_time(now, EVENING_START_HOUR)
        scenario_id = f"evening_{now.date().isoformat()}"
        state = PredictedState(
            occupancy=self._occupancy(),
            activities=[ActivityPrediction("relaxing", probability, "living_room",
                                           duration=DurationRange(30, 120, 240))],
            environment_needs=EnvironmentPrediction(
                temperature=TemperatureRange(21, 23, 20, 22),
                lighting=LightingPreference(100, 80, 50, 15, 3000),
                humidity_min=40, humidity_max=55,
                ventilation="minimal", noise="quiet",
            ),
        )
        self._add(self._scenario(
            scenario_id, "Evening relaxation time", probability,
            start, end_of_day(now), ScenarioSource.PATTERN, state, Horizon.DAILY,
            preparations=[self._preparation(scenario_id, "transition_to_evening_mode",
                                            start - timedelta(minutes=15),
                                            priority=PreparationPriority.LOW)],
            enabled_by=[p.id for p in contributing],
        ))

    def infer_bedtime(self) -> tuple:
        """(Stunde, Minute, beitragende Patterns) der typischen Schlafenszeit."""
        contributing = self.pattern_engine.get_active_patterns(PatternType.SLEEP_PATTERN)
        contributing += [p for p in self._slot_patterns({"sleeping"})
                         if p.data.start_hour >= 18 or p.data.start_hour < 4]

        timed = [p for p in contributing if isinstance(p.data, DailyRoutineData)]
        if not timed:
            return DEFAULT_BEDTIME[0], DEFAULT_BEDTIME[1], contributing

        # Frueheste Abendzeit (Stunden ab Mittag gerechnet)
        def evening_order(pattern):
            hour, minute = parse_hhmm(pattern.data.typical_time)
            return ((hour - 12) % 24) * 60 + minute

        hour, minute = parse_hhmm(min(timed, key=evening_order).data.typical_time)
        return hour, minute, contributing

    def predict_sleep(self):
        now = self._now
        hour, minute, contributing = self.infer_bedtime()

        tonight = at_time(now, hour, minute)
        if hour < 12:
            tonight += timedelta(days=1)
        bedtime = tonight
        duration = timedelta(minutes=480)
        if tonight - timedelta(days=1) + duration > now:
            bedtime = tonight - timedelta(days=1)

        probability = _mean_confidence(contributing, DEFAULT_SLEEP_PROBABILITY)
        evening = bedtime if bedtime.hour >= 12 else bedtime - timedelta(days=1)
        scenario_id = f"sleep_{evening.date().isoformat()}"
        state = PredictedState(
            occupancy=self._occupancy(),
            activities=[ActivityPrediction("sleeping", probability, "bedroom",
                                           duration=DurationRange(360, 480, 600))],
            environment_needs=EnvironmentPrediction(
                temperature=TemperatureRange(18, 20, 17, 19),
                lighting=LightingPreference(50, 30, 10, 0, 2700),
                humidity_min=45, humidity_max=55,
                ventilation="minimal", noise="quiet",
            ),
            resource_needs=ResourcePrediction(energy_demand=0.5, water_demand=0.0,
                                              peak_load_time=bedtime),
        )
        self._add(self._scenario(
            scenario_id, "Bedtime approaching", probability,
            bedtime, bedtime + duration, ScenarioSource.PATTERN, state, Horizon.DAILY,
            preparations=[self._preparation(scenario_id, "begin_sleep_transition",
                                            bedtime - timedelta(minutes=60))],
            enabled_by=[p.id for p in contributing],
        ))

    # ------------------------------------------------------------------
    # Horizont: weekly
    # ------------------------------------------------------------------

    def generate_weekly(self):
        now = self._now
        for event in self._events_between(now, now + self.weekly):
            self._add(self.event_scenario(event, Horizon.WEEKLY))
        if now.weekday() < 5:
            self.predict_weekend(now)

    def predict_weekend(self, now: datetime):
        saturday = start_of_day(now) + timedelta(days=5 - now.weekday())
        state = PredictedState(
            occupancy=self._occupancy(WEEKEND_GUEST_PROBABILITY),
            activities=[ActivityPrediction("relaxing", 0.7, "living_room",
                                           duration=DurationRange(60, 240, 480))],
            resource_needs=ResourcePrediction(energy_demand=8.0, water_demand=150.0,
                                              peak_load_time=saturday),
        )
        self._add(self._scenario(
            f"weekend_{saturday.date().isoformat()}", "Weekend period", 1.0,
            saturday, saturday + timedelta(days=2), ScenarioSource.CALENDAR, state,
            Horizon.WEEKLY, granularity="day",
        ))

    def event_scenario(self, event: CalendarEvent, horizon: Horizon) -> Scenario:
        activity = _CATEGORY_ACTIVITY.get(event.category, "unknown")
        minutes = int((event.end - event.start).total_seconds() // 60)
        state = PredictedState(
            occupancy=self._occupancy(0.8 if event.category == "social" else 0.0,
                                      len(event.attendees) or None),
            activities=[ActivityPrediction(
                activity, CALENDAR_ACTIVITY_PROBABILITY, event.location or "living_room",
                participants=list(event.attendees),
                duration=DurationRange(int(minutes * 0.5), minutes, int(minutes * 1.5)),
            )],
            environment_needs=environment_for_activity(activity),
        )
        return self._scenario(
            f"calendar_{event.id}", event.title, CALENDAR_EVENT_PROBABILITY,
            event.start, event.end, ScenarioSource.CALENDAR, state, horizon,
            enabled_by=[event.id],
        )

    # ------------------------------------------------------------------
    # Energiebedarf
    # ------------------------------------------------------------------

    def predict_energy_demand(self, existing: list):
        now = self._now
        horizon = now + self.short_term

        pool = {s.id: s for s in existing}
        pool.update(self._generated)
        pool.pop(ENERGY_SCENARIO_ID, None)

        total = 0.0
        peak_load = 0.0
        peak_time = now
        for scenario in pool.values():
            if scenario.timeframe.start > horizon or scenario.timeframe.end < now:
                continue
            demand = scenario.predicted_state.resource_needs.energy_demand
            total += demand
            if demand > peak_load:
                peak_load = demand
                peak_time = scenario.predicted_state.resource_needs.peak_load_time or scenario.timeframe.start

        if total <= ENERGY_SCENARIO_MIN_KWH:
            return

        patterns = self.pattern_engine.get_active_patterns(PatternType.ENERGY_USAGE)
        probability = _mean_confidence(patterns, ENERGY_SCENARIO_PROBABILITY)
        preparations = []
        if total > ENERGY_OPTIMIZE_MIN_KWH:
            preparations.append(self._preparation(
                ENERGY_SCENARIO_ID, "optimize_non_essential_loads",
                peak_time - timedelta(minutes=30), category=PreparationCategory.RESOURCE))

        state = PredictedState(
            occupancy=self._occupancy(),
            resource_needs=ResourcePrediction(
                energy_demand=round(total, 3),
                water_demand=0.0,
                peak_load_time=peak_time,
                unusual_consumption=total > ENERGY_UNUSUAL_KWH,
            ),
        )
        self._add(self._scenario(
            ENERGY_SCENARIO_ID, "High energy demand period", probability,
            now, horizon, ScenarioSource.INFERENCE, state, Horizon.SHORT_TERM,
            preparations=preparations, enabled_by=[p.id for p in patterns],
        ))
