from datetime import date, datetime, time

from sqlmodel import Field, SQLModel

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class TimeRange(SQLModel):
    """Wall-clock interval in the doctor's fixed UTC offset."""

    start: time
    end: time


class WeeklyTemplate(SQLModel):
    monday: list[TimeRange] = Field(default_factory=list)
    tuesday: list[TimeRange] = Field(default_factory=list)
    wednesday: list[TimeRange] = Field(default_factory=list)
    thursday: list[TimeRange] = Field(default_factory=list)
    friday: list[TimeRange] = Field(default_factory=list)
    saturday: list[TimeRange] = Field(default_factory=list)
    sunday: list[TimeRange] = Field(default_factory=list)

    def for_date(self, d: date) -> list[TimeRange]:
        return getattr(self, WEEKDAYS[d.weekday()])


class BlockedDate(SQLModel):
    """A date on which the doctor is unavailable.

    Without start_time/end_time the whole date is blocked.
    """

    date: date
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None and self.end_time is None


class Doctor(SQLModel):
    id: str
    name: str | None = None
    utc_offset_minutes: int = 0
    slot_duration_minutes: int | None = None
    is_active: bool = True
    weekly_template: WeeklyTemplate = Field(default_factory=WeeklyTemplate)
    blocked_dates: list[BlockedDate] = Field(default_factory=list)
    updated_at: datetime | None = None


class Patient(SQLModel):
    id: str
    name: str | None = None
