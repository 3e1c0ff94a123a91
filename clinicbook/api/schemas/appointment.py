from datetime import date, time

from pydantic import BaseModel

from clinicbook.models.appointment import AppointmentType, Slot


class AvailableSlotsResponse(BaseModel):
    doctor_id: str
    start: date
    end: date
    slots: list[Slot]


class BookAppointmentRequest(BaseModel):
    doctor_id: str
    # Defaults to the calling patient
    patient_id: str | None = None
    date: date
    start_time: time
    end_time: time
    appointment_type: AppointmentType = AppointmentType.IN_PERSON
    reason: str | None = None
    # Length the slot was listed with; the doctor's default when omitted
    slot_duration_minutes: int | None = None


class BookAppointmentResponse(BaseModel):
    appointment_id: str


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None


class CompleteAppointmentRequest(BaseModel):
    notes: str | None = None


class RescheduleAppointmentRequest(BaseModel):
    date: date
    start_time: time
    end_time: time
    # Defaults to the length of the appointment being moved
    slot_duration_minutes: int | None = None
