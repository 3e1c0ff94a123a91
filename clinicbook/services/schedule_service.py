"""Read and write a doctor's weekly template and blocked dates.

Thin adapter over the record store; the only logic here is shape validation
of the template and blocked ranges.
"""
import logging
from datetime import UTC, date, time
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from clinicbook.core.errors import (
    DataIntegrityError,
    Err,
    NotFoundError,
    Ok,
    Result,
    SchedulingError,
    ValidationError,
)
from clinicbook.models.doctor import WEEKDAYS, BlockedDate, Doctor, Patient, WeeklyTemplate
from clinicbook.services.context import SchedulingContext
from clinicbook.services.intervals import find_overlaps, to_minutes

logger = logging.getLogger(__name__)

DOCTORS = "doctors"
PATIENTS = "patients"


def template_problems(template: WeeklyTemplate) -> list[str]:
    """Describe every inverted or overlapping interval in the template."""
    problems = []
    for day in WEEKDAYS:
        ranges = getattr(template, day)
        for r in ranges:
            if r.start >= r.end:
                problems.append(f"{day}: {r.start.isoformat()}-{r.end.isoformat()} ends before it starts")
        valid = [(to_minutes(r.start), to_minutes(r.end)) for r in ranges if r.start < r.end]
        for a, b in find_overlaps(valid):
            problems.append(f"{day}: intervals {a} and {b} (minutes) overlap")
    return problems


def blocked_date_problems(blocked: BlockedDate) -> list[str]:
    if (blocked.start_time is None) != (blocked.end_time is None):
        return [f"{blocked.date.isoformat()}: start_time and end_time must be given together"]
    if not blocked.is_full_day and blocked.start_time >= blocked.end_time:
        return [f"{blocked.date.isoformat()}: blocked range ends before it starts"]
    return []


async def load_doctor(ctx: SchedulingContext, doctor_id: str) -> Doctor:
    """Fetch and validate a doctor record; raises NotFoundError / DataIntegrityError."""
    raw = await ctx.store.read_record(DOCTORS, doctor_id)
    if raw is None:
        raise NotFoundError(f"Doctor {doctor_id} not found")
    try:
        doctor = Doctor.model_validate(raw)
    except PydanticValidationError as e:
        logger.error("Doctor record %s failed validation: %s", doctor_id, e)
        raise DataIntegrityError(f"Doctor {doctor_id} record is malformed") from e
    problems = template_problems(doctor.weekly_template)
    problems += [p for b in doctor.blocked_dates for p in blocked_date_problems(b)]
    if problems:
        logger.error("Doctor %s schedule violates its invariants: %s", doctor_id, "; ".join(problems))
        raise DataIntegrityError(f"Doctor {doctor_id} schedule is invalid: {'; '.join(problems)}")
    return doctor


async def load_patient(ctx: SchedulingContext, patient_id: str) -> Patient:
    raw = await ctx.store.read_record(PATIENTS, patient_id)
    if raw is None:
        raise NotFoundError(f"Patient {patient_id} not found")
    try:
        return Patient.model_validate(raw)
    except PydanticValidationError as e:
        logger.error("Patient record %s failed validation: %s", patient_id, e)
        raise DataIntegrityError(f"Patient {patient_id} record is malformed") from e


def _block_key(b: BlockedDate) -> tuple:
    return (b.date, b.start_time or time.min)


def blocks_in_range(doctor: Doctor, range_start: date, range_end: date) -> list[BlockedDate]:
    return sorted(
        (b for b in doctor.blocked_dates if range_start <= b.date <= range_end),
        key=_block_key,
    )


def doctor_lock(ctx: SchedulingContext, doctor_id: str):
    """Serializes edits to one doctor record with bookings that read it."""
    return ctx.store.lock(DOCTORS, {"id": doctor_id})


async def _save_doctor(ctx: SchedulingContext, doctor: Doctor) -> None:
    doctor.updated_at = ctx.now().astimezone(UTC)
    await ctx.store.write_record(DOCTORS, doctor.id, doctor.model_dump(mode="json"))


def _parse(model, value: Any):
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {model.__name__}: {e.errors(include_url=False)}") from e


async def get_weekly_template(ctx: SchedulingContext, doctor_id: str) -> Result[WeeklyTemplate]:
    try:
        doctor = await load_doctor(ctx, doctor_id)
    except SchedulingError as e:
        return Err(e)
    return Ok(doctor.weekly_template)


async def get_blocked_dates(
    ctx: SchedulingContext, doctor_id: str, range_start: date, range_end: date
) -> Result[list[BlockedDate]]:
    try:
        doctor = await load_doctor(ctx, doctor_id)
    except SchedulingError as e:
        return Err(e)
    return Ok(blocks_in_range(doctor, range_start, range_end))


async def update_weekly_template(
    ctx: SchedulingContext, doctor_id: str, template: WeeklyTemplate | dict
) -> Result[WeeklyTemplate]:
    """Replace the doctor's weekly template.

    Intervals are stored sorted by start; inverted or overlapping intervals are
    rejected rather than merged.
    """
    try:
        ctx.require_doctor_access(doctor_id)
        template = _parse(WeeklyTemplate, template)
        problems = template_problems(template)
        if problems:
            raise ValidationError("; ".join(problems))
        for day in WEEKDAYS:
            setattr(template, day, sorted(getattr(template, day), key=lambda r: r.start))
        async with doctor_lock(ctx, doctor_id):
            doctor = await load_doctor(ctx, doctor_id)
            doctor.weekly_template = template
            await _save_doctor(ctx, doctor)
    except SchedulingError as e:
        return Err(e)
    logger.info("Weekly template updated for doctor %s", doctor_id)
    return Ok(template)


async def add_blocked_date(
    ctx: SchedulingContext, doctor_id: str, blocked: BlockedDate | dict
) -> Result[list[BlockedDate]]:
    """Block a whole date, or a sub-range of it when start_time/end_time are given.

    Bookings already committed inside the range are kept; bookings still in
    flight for it fail with ConflictError.
    """
    try:
        ctx.require_doctor_access(doctor_id)
        blocked = _parse(BlockedDate, blocked)
        problems = blocked_date_problems(blocked)
        if problems:
            raise ValidationError("; ".join(problems))
        async with doctor_lock(ctx, doctor_id):
            doctor = await load_doctor(ctx, doctor_id)
            if blocked not in doctor.blocked_dates:
                doctor.blocked_dates.append(blocked)
                await _save_doctor(ctx, doctor)
                logger.info(
                    "Doctor %s blocked %s%s", doctor_id, blocked.date.isoformat(),
                    "" if blocked.is_full_day else f" {blocked.start_time.isoformat()}-{blocked.end_time.isoformat()}",
                )
    except SchedulingError as e:
        return Err(e)
    return Ok(sorted(doctor.blocked_dates, key=_block_key))


async def remove_blocked_date(ctx: SchedulingContext, doctor_id: str, blocked_date: date) -> Result[list[BlockedDate]]:
    """Drop every block (full-day or partial) on the given date."""
    try:
        ctx.require_doctor_access(doctor_id)
        async with doctor_lock(ctx, doctor_id):
            doctor = await load_doctor(ctx, doctor_id)
            remaining = [b for b in doctor.blocked_dates if b.date != blocked_date]
            if len(remaining) != len(doctor.blocked_dates):
                doctor.blocked_dates = remaining
                await _save_doctor(ctx, doctor)
                logger.info("Doctor %s unblocked %s", doctor_id, blocked_date.isoformat())
    except SchedulingError as e:
        return Err(e)
    return Ok(sorted(remaining, key=_block_key))
