from clinicbook.models.appointment import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    BookingMetadata,
    Slot,
)
from clinicbook.models.doctor import WEEKDAYS, BlockedDate, Doctor, Patient, TimeRange, WeeklyTemplate
from clinicbook.models.record import Record

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "AppointmentType",
    "BookingMetadata",
    "Slot",
    "WEEKDAYS",
    "BlockedDate",
    "Doctor",
    "Patient",
    "TimeRange",
    "WeeklyTemplate",
    "Record",
]
