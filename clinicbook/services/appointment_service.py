"""Booking commit and appointment lifecycle.

A booking re-derives availability for its date right before committing and
then goes through the store's compare-and-write primitive, so two requests
racing for overlapping slots cannot both succeed.
"""
import logging
from datetime import UTC, date, datetime, time
from typing import Any
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from clinicbook.core.errors import (
    ConflictError,
    DataIntegrityError,
    Err,
    NotFoundError,
    Ok,
    PermissionDeniedError,
    Result,
    SchedulingError,
    ValidationError,
)
from clinicbook.models.appointment import Appointment, AppointmentStatus, BookingMetadata
from clinicbook.models.doctor import Doctor
from clinicbook.services.context import Actor, Role, SchedulingContext
from clinicbook.services.intervals import overlaps, to_minutes
from clinicbook.services.schedule_service import blocks_in_range, doctor_lock, load_doctor, load_patient
from clinicbook.services.slot_service import (
    APPOINTMENTS,
    available_slots_for_doctor,
    block_intervals,
    doctor_now,
    doctor_timezone,
    horizon_last_day,
    load_appointments,
    slot_duration_for,
    template_intervals,
)

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[AppointmentStatus, set[AppointmentStatus]] = {
    AppointmentStatus.PENDING: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELED,
        AppointmentStatus.RESCHEDULED,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELED,
        AppointmentStatus.RESCHEDULED,
    },
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in _TRANSITIONS.get(current, set())


def _new_appointment_id() -> str:
    return f"appt-{uuid4().hex}"


def _conflict_predicate(start: time, end: time, ignore_ids: frozenset[str]):
    requested = (to_minutes(start), to_minutes(end))

    def conflicts(record: dict[str, Any]) -> bool:
        if record.get("id") in ignore_ids:
            return False
        try:
            existing = Appointment.model_validate(record)
        except PydanticValidationError:
            # An unreadable record on the same date cannot be proven free
            logger.error("Unreadable appointment %s treated as conflicting", record.get("id"))
            return True
        return existing.occludes and overlaps(
            requested, (to_minutes(existing.start_time), to_minutes(existing.end_time))
        )

    return conflicts


def _parse_metadata(metadata: BookingMetadata | dict | None) -> BookingMetadata:
    if metadata is None:
        return BookingMetadata()
    if isinstance(metadata, BookingMetadata):
        return metadata
    try:
        return BookingMetadata.model_validate(metadata)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid booking metadata: {e.errors(include_url=False)}") from e


def _check_may_book(actor: Actor | None, patient_id: str) -> None:
    if actor is None or actor.is_admin:
        return
    if actor.role == Role.PATIENT and actor.user_id == patient_id:
        return
    raise PermissionDeniedError("Only the patient or an admin can book for this patient")


def _validate_request(
    ctx: SchedulingContext, doctor: Doctor, d: date, start: time, end: time, duration: int
) -> None:
    """Input checks that do not depend on other bookings."""
    if not doctor.is_active:
        raise ValidationError(f"Doctor {doctor.id} is not accepting bookings")
    if start >= end:
        raise ValidationError("start_time must be before end_time")
    if to_minutes(end) - to_minutes(start) != duration:
        raise ValidationError(f"Requested slot must last {duration} minutes")
    now = doctor_now(ctx, doctor)
    if datetime.combine(d, start, tzinfo=doctor_timezone(doctor)) < now:
        raise ValidationError("Cannot book a slot in the past")
    if d > horizon_last_day(ctx, now.date()):
        raise ValidationError(f"Bookings open at most {ctx.settings.booking_horizon_days} days ahead")
    requested = (to_minutes(start), to_minutes(end))
    if not any(s <= requested[0] and requested[1] <= e for s, e in template_intervals(doctor, d)):
        raise ValidationError("Requested time is outside the doctor's working hours")


async def _recheck_availability(
    ctx: SchedulingContext,
    doctor: Doctor,
    d: date,
    start: time,
    end: time,
    duration: int,
    ignore_ids: frozenset[str],
) -> None:
    """Fail unless (d, start, end) is one of the ``duration`` slots the generator offers right now."""
    slots = await available_slots_for_doctor(ctx, doctor, d, d, duration, ignore_appointment_ids=ignore_ids)
    if any(s.start_time == start and s.end_time == end for s in slots):
        return
    requested = (to_minutes(start), to_minutes(end))
    if any(overlaps(requested, b) for b in block_intervals(blocks_in_range(doctor, d, d))):
        raise ConflictError("slot no longer available: the doctor is unavailable at that time")
    occupied = [
        a for a in await load_appointments(ctx, doctor.id, d, d)
        if a.id not in ignore_ids and a.occludes
    ]
    if any(overlaps(requested, (to_minutes(a.start_time), to_minutes(a.end_time))) for a in occupied):
        raise ConflictError("slot no longer available")
    raise ValidationError("Requested time is not aligned to an available slot")


async def _commit(
    ctx: SchedulingContext,
    doctor_id: str,
    patient_id: str,
    d: date,
    start: time,
    end: time,
    metadata: BookingMetadata,
    slot_duration_minutes: int | None = None,
    replaces: Appointment | None = None,
) -> Appointment:
    ignore_ids = frozenset({replaces.id}) if replaces else frozenset()
    # Schedule edits take the same lock, so the doctor read here stays current
    # until the appointment is written.
    async with doctor_lock(ctx, doctor_id):
        doctor = await load_doctor(ctx, doctor_id)
        duration = slot_duration_for(ctx, doctor, slot_duration_minutes)
        _validate_request(ctx, doctor, d, start, end, duration)
        await _recheck_availability(ctx, doctor, d, start, end, duration, ignore_ids)

        now = ctx.now().astimezone(UTC)
        appointment = Appointment(
            id=_new_appointment_id(),
            doctor_id=doctor.id,
            patient_id=patient_id,
            date=d,
            start_time=start,
            end_time=end,
            status=AppointmentStatus(ctx.settings.default_booking_status),
            appointment_type=metadata.appointment_type,
            reason=metadata.reason,
            rescheduled_from=replaces.id if replaces else None,
            created_at=now,
            updated_at=now,
        )
        result = await ctx.store.write_record_if_unconflicted(
            APPOINTMENTS,
            appointment.id,
            appointment.model_dump(mode="json"),
            _conflict_predicate(start, end, ignore_ids),
            scope={"doctor_id": doctor.id, "date": d},
        )
    if isinstance(result, Err):
        logger.info(
            "Booking %s %s-%s with doctor %s lost to a concurrent write",
            d.isoformat(), start.isoformat(), end.isoformat(), doctor.id,
        )
        raise result.error
    logger.info(
        "Booked %s for patient %s with doctor %s on %s %s-%s",
        appointment.id, patient_id, doctor.id, d.isoformat(), start.isoformat(), end.isoformat(),
    )
    return appointment


async def book_slot(
    ctx: SchedulingContext,
    doctor_id: str,
    patient_id: str,
    date: date,
    start_time: time,
    end_time: time,
    metadata: BookingMetadata | dict | None = None,
    slot_duration_minutes: int | None = None,
) -> Result[str]:
    """Book one slot; returns the new appointment id.

    ``slot_duration_minutes`` must match the duration the slot was generated
    with (the doctor's default when omitted). Err(ValidationError) for
    malformed or misaligned requests, Err(NotFoundError) for unknown
    doctor/patient, Err(ConflictError) when the slot was taken or blocked since
    it was offered. The store is untouched on any error.
    """
    try:
        _check_may_book(ctx.actor, patient_id)
        details = _parse_metadata(metadata)
        await load_patient(ctx, patient_id)
        appointment = await _commit(
            ctx, doctor_id, patient_id, date, start_time, end_time, details, slot_duration_minutes
        )
    except SchedulingError as e:
        return Err(e)
    return Ok(appointment.id)


async def _load_appointment(ctx: SchedulingContext, appointment_id: str) -> Appointment:
    raw = await ctx.store.read_record(APPOINTMENTS, appointment_id)
    if raw is None:
        raise NotFoundError(f"Appointment {appointment_id} not found")
    try:
        return Appointment.model_validate(raw)
    except PydanticValidationError as e:
        logger.error("Appointment record %s failed validation: %s", appointment_id, e)
        raise DataIntegrityError(f"Appointment {appointment_id} record is malformed") from e


def _check_can_view(actor: Actor | None, appointment: Appointment) -> None:
    if actor is None or actor.is_admin:
        return
    if actor.role == Role.PATIENT and actor.user_id == appointment.patient_id:
        return
    if actor.role == Role.DOCTOR and actor.user_id == appointment.doctor_id:
        return
    raise PermissionDeniedError("You are not a participant of this appointment")


def _check_is_treating_doctor(actor: Actor | None, appointment: Appointment) -> None:
    if actor is None or actor.is_admin:
        return
    if actor.role == Role.DOCTOR and actor.user_id == appointment.doctor_id:
        return
    raise PermissionDeniedError("Only the appointment's doctor can do this")


async def _save(ctx: SchedulingContext, appointment: Appointment) -> None:
    appointment.updated_at = ctx.now().astimezone(UTC)
    await ctx.store.write_record(APPOINTMENTS, appointment.id, appointment.model_dump(mode="json"))


def _move_to(appointment: Appointment, target: AppointmentStatus) -> None:
    if not can_transition(appointment.status, target):
        raise ValidationError(
            f"Cannot move appointment from {appointment.status.value} to {target.value}"
        )
    appointment.status = target


async def _transition(ctx: SchedulingContext, appointment_id: str, target: AppointmentStatus, check, **changes) -> Appointment:
    async with ctx.store.lock(APPOINTMENTS, {"id": appointment_id}):
        appointment = await _load_appointment(ctx, appointment_id)
        check(ctx.actor, appointment)
        _move_to(appointment, target)
        for name, value in changes.items():
            if value is not None:
                setattr(appointment, name, value)
        await _save(ctx, appointment)
    logger.info("Appointment %s is now %s", appointment_id, target.value)
    return appointment


async def confirm_appointment(ctx: SchedulingContext, appointment_id: str) -> Result[Appointment]:
    try:
        appointment = await _transition(
            ctx, appointment_id, AppointmentStatus.CONFIRMED, _check_is_treating_doctor
        )
    except SchedulingError as e:
        return Err(e)
    return Ok(appointment)


async def complete_appointment(
    ctx: SchedulingContext, appointment_id: str, notes: str | None = None
) -> Result[Appointment]:
    """Mark a confirmed appointment completed; existing notes are kept when none are given."""
    try:
        appointment = await _transition(
            ctx, appointment_id, AppointmentStatus.COMPLETED, _check_is_treating_doctor, notes=notes
        )
    except SchedulingError as e:
        return Err(e)
    return Ok(appointment)


def _canceled_by(actor: Actor | None) -> str:
    return actor.role.value if actor else "system"


async def cancel_appointment(
    ctx: SchedulingContext, appointment_id: str, reason: str | None = None
) -> Result[Appointment]:
    """Cancel a pending or confirmed appointment. Its slot becomes bookable again."""
    note = f"Canceled by {_canceled_by(ctx.actor)}"
    if reason:
        note = f"{note}: {reason}"
    try:
        appointment = await _transition(
            ctx, appointment_id, AppointmentStatus.CANCELED, _check_can_view, notes=note
        )
    except SchedulingError as e:
        return Err(e)
    return Ok(appointment)


async def reschedule_appointment(
    ctx: SchedulingContext,
    appointment_id: str,
    date: date,
    start_time: time,
    end_time: time,
    slot_duration_minutes: int | None = None,
) -> Result[Appointment]:
    """Move an appointment by booking a replacement and closing the original.

    The replacement is committed first through the normal booking path (the
    original does not count as a conflict), then the original is marked
    rescheduled and linked to it. The replacement keeps the original's length
    unless ``slot_duration_minutes`` says otherwise. Returns the replacement.
    """
    try:
        async with ctx.store.lock(APPOINTMENTS, {"id": appointment_id}):
            original = await _load_appointment(ctx, appointment_id)
            _check_can_view(ctx.actor, original)
            if not can_transition(original.status, AppointmentStatus.RESCHEDULED):
                raise ValidationError(f"Cannot reschedule an appointment that is {original.status.value}")
            if slot_duration_minutes is None:
                slot_duration_minutes = to_minutes(original.end_time) - to_minutes(original.start_time)
            metadata = BookingMetadata(appointment_type=original.appointment_type, reason=original.reason)
            replacement = await _commit(
                ctx, original.doctor_id, original.patient_id, date, start_time, end_time, metadata,
                slot_duration_minutes, replaces=original,
            )
            _move_to(original, AppointmentStatus.RESCHEDULED)
            original.rescheduled_to = replacement.id
            await _save(ctx, original)
    except SchedulingError as e:
        return Err(e)
    logger.info("Appointment %s rescheduled to %s", appointment_id, replacement.id)
    return Ok(replacement)


async def get_appointment(ctx: SchedulingContext, appointment_id: str) -> Result[Appointment]:
    try:
        appointment = await _load_appointment(ctx, appointment_id)
        _check_can_view(ctx.actor, appointment)
    except SchedulingError as e:
        return Err(e)
    return Ok(appointment)


async def list_appointments(
    ctx: SchedulingContext,
    doctor_id: str | None = None,
    patient_id: str | None = None,
    from_date: date | None = None,
) -> Result[list[Appointment]]:
    """Appointments ordered by (date, start_time); patients and doctors only see their own."""
    actor = ctx.actor
    try:
        if actor is not None and actor.role == Role.PATIENT:
            if patient_id not in (None, actor.user_id):
                raise PermissionDeniedError("Patients can only list their own appointments")
            patient_id = actor.user_id
        elif actor is not None and actor.role == Role.DOCTOR:
            if doctor_id not in (None, actor.user_id):
                raise PermissionDeniedError("Doctors can only list their own appointments")
            doctor_id = actor.user_id
        filters: dict[str, Any] = {}
        if doctor_id:
            filters["doctor_id"] = doctor_id
        if patient_id:
            filters["patient_id"] = patient_id
        if from_date:
            filters["date"] = {"gte": from_date}
        appointments = []
        for record in await ctx.store.query_records(APPOINTMENTS, filters):
            try:
                appointments.append(Appointment.model_validate(record))
            except PydanticValidationError as e:
                logger.error("Appointment record %s failed validation: %s", record.get("id"), e)
                raise DataIntegrityError(f"Appointment {record.get('id')} record is malformed") from e
    except SchedulingError as e:
        return Err(e)
    return Ok(sorted(appointments, key=lambda a: (a.date, a.start_time, a.id)))
