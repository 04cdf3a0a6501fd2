"""
Zeit-Helfer: Moment-Beschreibung, Slots, Jahreszeit, Sonnenphase.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional

from .constants import SLOT_WIDTH_HOURS
from .models import TemporalMoment


def get_season(month: int) -> str:
    if month in (3, 4, 5):
        return "spring"
    if month in (6, 7, 8):
        return "summer"
    if month in (9, 10, 11):
        return "autumn"
    return "winter"


def get_sun_phase(hour: int) -> str:
    if hour < 6:
        return "night"
    if hour < 8:
        return "dawn"
    if hour < 12:
        return "morning"
    if hour < 14:
        return "midday"
    if hour < 17:
        return "afternoon"
    if hour < 20:
        return "dusk"
    if hour < 22:
        return "evening"
    return "night"


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def date_to_moment(dt: datetime, holidays: Optional[Iterable] = None) -> TemporalMoment:
    """Beschreibt einen Zeitpunkt fuer die Pattern-Abfrage."""
    holiday_dates = {_as_date(h) for h in (holidays or [])}
    is_holiday = dt.date() in holiday_dates
    return TemporalMoment(
        timestamp=dt,
        day_of_week=dt.weekday(),
        hour_of_day=dt.hour,
        minute_of_hour=dt.minute,
        week_of_year=dt.isocalendar()[1],
        month_of_year=dt.month,
        season=get_season(dt.month),
        is_holiday=is_holiday,
        # Feiertage zaehlen wie Wochenende
        is_weekend=dt.weekday() >= 5 or is_holiday,
        sun_phase=get_sun_phase(dt.hour),
    )


def slot_of(dt: datetime) -> int:
    return dt.hour // SLOT_WIDTH_HOURS


def slot_bounds(slot: int) -> tuple:
    start = slot * SLOT_WIDTH_HOURS
    return start, start + SLOT_WIDTH_HOURS


def hhmm(hour: int, minute: int = 0) -> str:
    return f"{hour % 24:02d}:{minute:02d}"


def parse_hhmm(value: str) -> tuple:
    hour, minute = value.split(":")
    return int(hour), int(minute)


def minutes_of_day(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute


def at_time(day: datetime, hour: int, minute: int = 0) -> datetime:
    """Gleicher Kalendertag, andere Uhrzeit (Sekunden auf 0)."""
    return datetime.combine(day.date(), time(hour % 24, minute), tzinfo=day.tzinfo)


def start_of_day(dt: datetime) -> datetime:
    return at_time(dt, 0, 0)


def end_of_day(dt: datetime) -> datetime:
    return datetime.combine(dt.date(), time(23, 59, 59, 999999), tzinfo=dt.tzinfo)


def hour_distance(hour_a: float, hour_b: float) -> float:
    """Zirkulaere Distanz zweier Tageszeiten in Stunden (0..12)."""
    diff = abs(hour_a - hour_b) % 24
    return min(diff, 24 - diff)


def next_occurrence(now: datetime, hour: int, minute: int) -> datetime:
    candidate = at_time(now, hour, minute)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate
