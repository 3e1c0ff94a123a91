from datetime import date

from fastapi import APIRouter, Depends, Query, status

from clinicbook.api.deps import get_context, unwrap
from clinicbook.api.schemas.appointment import (
    BookAppointmentRequest,
    BookAppointmentResponse,
    CancelAppointmentRequest,
    CompleteAppointmentRequest,
    RescheduleAppointmentRequest,
)
from clinicbook.models.appointment import Appointment, BookingMetadata
from clinicbook.services import appointment_service
from clinicbook.services.context import SchedulingContext

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.post("", response_model=BookAppointmentResponse, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    body: BookAppointmentRequest,
    ctx: SchedulingContext = Depends(get_context),
) -> BookAppointmentResponse:
    patient_id = body.patient_id or ctx.actor.user_id
    appointment_id = unwrap(
        await appointment_service.book_slot(
            ctx,
            body.doctor_id,
            patient_id,
            body.date,
            body.start_time,
            body.end_time,
            BookingMetadata(appointment_type=body.appointment_type, reason=body.reason),
            body.slot_duration_minutes,
        )
    )
    return BookAppointmentResponse(appointment_id=appointment_id)


@router.get("", response_model=list[Appointment])
async def list_appointments(
    doctor_id: str | None = Query(None),
    patient_id: str | None = Query(None),
    from_date: date | None = Query(None),
    ctx: SchedulingContext = Depends(get_context),
) -> list[Appointment]:
    return unwrap(
        await appointment_service.list_appointments(
            ctx, doctor_id=doctor_id, patient_id=patient_id, from_date=from_date
        )
    )


@router.get("/{appointment_id}", response_model=Appointment)
async def get_appointment(
    appointment_id: str,
    ctx: SchedulingContext = Depends(get_context),
) -> Appointment:
    return unwrap(await appointment_service.get_appointment(ctx, appointment_id))


@router.post("/{appointment_id}/confirm", response_model=Appointment)
async def confirm_appointment(
    appointment_id: str,
    ctx: SchedulingContext = Depends(get_context),
) -> Appointment:
    return unwrap(await appointment_service.confirm_appointment(ctx, appointment_id))


@router.post("/{appointment_id}/complete", response_model=Appointment)
async def complete_appointment(
    appointment_id: str,
    body: CompleteAppointmentRequest | None = None,
    ctx: SchedulingContext = Depends(get_context),
) -> Appointment:
    notes = body.notes if body else None
    return unwrap(await appointment_service.complete_appointment(ctx, appointment_id, notes=notes))


@router.post("/{appointment_id}/cancel", response_model=Appointment)
async def cancel_appointment(
    appointment_id: str,
    body: CancelAppointmentRequest | None = None,
    ctx: SchedulingContext = Depends(get_context),
) -> Appointment:
    reason = body.reason if body else None
    return unwrap(await appointment_service.cancel_appointment(ctx, appointment_id, reason=reason))


@router.post("/{appointment_id}/reschedule", response_model=Appointment, status_code=status.HTTP_201_CREATED)
async def reschedule_appointment(
    appointment_id: str,
    body: RescheduleAppointmentRequest,
    ctx: SchedulingContext = Depends(get_context),
) -> Appointment:
    """Book the new time and close the old appointment; returns the replacement."""
    return unwrap(
        await appointment_service.reschedule_appointment(
            ctx, appointment_id, body.date, body.start_time, body.end_time, body.slot_duration_minutes
        )
    )
