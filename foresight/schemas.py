"""Request-Schemas der HTTP-API - werden in die Engine-Dataclasses umgewandelt."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .models import (
    CalendarEvent,
    ExternalContext,
    Observation,
    ObservationKind,
    OccupantState,
    WeatherCondition,
)


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    """Engines rechnen in lokaler Zeit ohne tzinfo."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class ObservationIn(BaseModel):
    timestamp: datetime
    kind: ObservationKind
    payload: dict = Field(default_factory=dict)
    user_id: Optional[str] = None
    room_id: Optional[str] = None
    device_id: Optional[str] = None

    def to_model(self) -> Observation:
        return Observation(
            timestamp=_naive(self.timestamp),
            kind=self.kind,
            payload=self.payload,
            user_id=self.user_id,
            room_id=self.room_id,
            device_id=self.device_id,
        )


class ObservationBatch(BaseModel):
    observations: list[ObservationIn]


class CalendarEventIn(BaseModel):
    id: str
    title: str
    start: datetime
    end: datetime
    category: str = "other"
    attendees: list[str] = Field(default_factory=list)
    location: Optional[str] = None

    def to_model(self) -> CalendarEvent:
        return CalendarEvent(
            id=self.id,
            title=self.title,
            start=_naive(self.start),
            end=_naive(self.end),
            category=self.category,
            attendees=list(self.attendees),
            location=self.location,
        )


class CalendarUpdate(BaseModel):
    events: list[CalendarEventIn]


class WeatherIn(BaseModel):
    temperature: float
    humidity: float
    condition: str = "clear"
    wind_speed: float = 0.0
    time: Optional[datetime] = None

    def to_model(self) -> WeatherCondition:
        values = self.model_dump()
        values["time"] = _naive(self.time)
        return WeatherCondition(**values)


class ContextUpdate(BaseModel):
    weather: Optional[WeatherIn] = None
    forecast: list[WeatherIn] = Field(default_factory=list)
    traffic: Optional[dict] = None
    local_events: list[dict] = Field(default_factory=list)
    holidays: list[str] = Field(default_factory=list)

    def to_model(self) -> ExternalContext:
        return ExternalContext(
            weather=self.weather.to_model() if self.weather else None,
            forecast=[w.to_model() for w in self.forecast],
            traffic=self.traffic,
            local_events=list(self.local_events),
            holidays=list(self.holidays),
        )


class OccupantUpdate(BaseModel):
    is_home: bool
    last_seen: Optional[datetime] = None
    current_room: Optional[str] = None
    activity: Optional[str] = None

    def to_model(self, user_id: str, now: datetime) -> OccupantState:
        return OccupantState(
            user_id=user_id,
            is_home=self.is_home,
            last_seen=_naive(self.last_seen) or now,
            current_room=self.current_room,
            activity=self.activity,
        )
