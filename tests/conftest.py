from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest

from clinicbook.services.context import Actor, Role, SchedulingContext
from clinicbook.store import MemoryRecordStore

# Sunday; the first bookable Monday is the next day
NOW = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)
MONDAY = date(2026, 3, 2)
TUESDAY = MONDAY + timedelta(days=1)
WEDNESDAY = MONDAY + timedelta(days=2)

DOCTOR_ID = "doc-1"
OTHER_DOCTOR_ID = "doc-2"
PATIENT_ID = "pat-1"
OTHER_PATIENT_ID = "pat-2"


class FixedClock:
    """Settable clock; call it to get the current instant."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def doctor_record(**overrides: Any) -> dict[str, Any]:
    record = {
        "id": DOCTOR_ID,
        "name": "Dr. Rivera",
        "utc_offset_minutes": 0,
        "is_active": True,
        "weekly_template": {
            "monday": [{"start": "09:00:00", "end": "12:00:00"}],
            "wednesday": [{"start": "13:00:00", "end": "15:00:00"}],
        },
        "blocked_dates": [],
    }
    record.update(overrides)
    return record


def seed_records() -> dict[str, list[dict[str, Any]]]:
    return {
        "doctors": [
            doctor_record(),
            doctor_record(id=OTHER_DOCTOR_ID, name="Dr. Okafor"),
        ],
        "patients": [
            {"id": PATIENT_ID, "name": "Sam Lee"},
            {"id": OTHER_PATIENT_ID, "name": "Alex Kim"},
        ],
    }


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> MemoryRecordStore:
    return MemoryRecordStore(seed_records())


@pytest.fixture
def ctx(store, clock) -> SchedulingContext:
    return SchedulingContext(store=store, clock=clock)


@pytest.fixture
def patient_ctx(ctx) -> SchedulingContext:
    return ctx.as_actor(Actor(user_id=PATIENT_ID, role=Role.PATIENT))


@pytest.fixture
def doctor_ctx(ctx) -> SchedulingContext:
    return ctx.as_actor(Actor(user_id=DOCTOR_ID, role=Role.DOCTOR))


def starts(slots) -> list[str]:
    return [s.start_time.strftime("%H:%M") for s in slots]
