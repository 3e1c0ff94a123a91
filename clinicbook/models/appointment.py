from datetime import UTC, date, datetime, time
from enum import Enum

from sqlmodel import SQLModel


def _utc_now() -> datetime:
    return datetime.now(UTC)


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELED = "canceled"
    RESCHEDULED = "rescheduled"


class AppointmentType(str, Enum):
    IN_PERSON = "in_person"
    VIDEO = "video"


class Appointment(SQLModel):
    id: str
    doctor_id: str
    patient_id: str
    date: date
    start_time: time
    end_time: time
    status: AppointmentStatus = AppointmentStatus.PENDING
    appointment_type: AppointmentType = AppointmentType.IN_PERSON
    reason: str | None = None
    notes: str | None = None
    rescheduled_from: str | None = None
    rescheduled_to: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def occludes(self) -> bool:
        """True while the appointment holds its interval on the doctor's calendar.

        A rescheduled appointment keeps holding it until its replacement exists.
        """
        if self.status in (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED):
            return True
        return self.status == AppointmentStatus.RESCHEDULED and not self.rescheduled_to


class BookingMetadata(SQLModel):
    appointment_type: AppointmentType = AppointmentType.IN_PERSON
    reason: str | None = None


class Slot(SQLModel):
    doctor_id: str
    date: date
    start_time: time
    end_time: time
