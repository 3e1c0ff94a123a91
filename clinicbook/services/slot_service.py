import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone

from pydantic import ValidationError as PydanticValidationError

from clinicbook.core.errors import DataIntegrityError, Err, Ok, Result, SchedulingError, ValidationError
from clinicbook.models.appointment import Appointment, Slot
from clinicbook.models.doctor import BlockedDate, Doctor
from clinicbook.services.context import SchedulingContext
from clinicbook.services.intervals import (
    Interval,
    chunk_interval,
    from_minutes,
    merge_intervals,
    subtract_intervals,
    to_minutes,
)
from clinicbook.services.schedule_service import blocks_in_range, load_doctor

logger = logging.getLogger(__name__)

APPOINTMENTS = "appointments"

FULL_DAY: Interval = (0, 24 * 60)


def doctor_timezone(doctor: Doctor) -> timezone:
    return timezone(timedelta(minutes=doctor.utc_offset_minutes))


def doctor_now(ctx: SchedulingContext, doctor: Doctor) -> datetime:
    """Current wall-clock time in the doctor's fixed offset."""
    return ctx.now().astimezone(doctor_timezone(doctor))


def horizon_last_day(ctx: SchedulingContext, today: date) -> date:
    """Last bookable date: the horizon spans booking_horizon_days dates starting today."""
    return today + timedelta(days=max(ctx.settings.booking_horizon_days, 1) - 1)


def slot_duration_for(ctx: SchedulingContext, doctor: Doctor, override: int | None = None) -> int:
    if override is not None:
        duration = override
    else:
        duration = doctor.slot_duration_minutes or ctx.settings.slot_duration_minutes
    if duration <= 0:
        raise ValidationError(f"Slot duration must be positive, got {duration}")
    return duration


def template_intervals(doctor: Doctor, d: date) -> list[Interval]:
    return merge_intervals([(to_minutes(r.start), to_minutes(r.end)) for r in doctor.weekly_template.for_date(d)])


def block_intervals(blocks: list[BlockedDate]) -> list[Interval]:
    return [FULL_DAY if b.is_full_day else (to_minutes(b.start_time), to_minutes(b.end_time)) for b in blocks]


def appointment_intervals(appointments: list[Appointment]) -> list[Interval]:
    return [(to_minutes(a.start_time), to_minutes(a.end_time)) for a in appointments if a.occludes]


def free_intervals(
    base: list[Interval], blocks: list[BlockedDate], appointments: list[Appointment]
) -> list[Interval]:
    """Template intervals minus blocked ranges minus occluding appointments."""
    remaining = subtract_intervals(merge_intervals(base), block_intervals(blocks))
    return subtract_intervals(remaining, appointment_intervals(appointments))


def day_slots(
    doctor_id: str,
    d: date,
    free: list[Interval],
    duration: int,
    not_before: int | None = None,
) -> list[Slot]:
    """Chunk free intervals into slots, dropping any that start before ``not_before`` minutes."""
    slots = []
    for interval in free:
        for start, end in chunk_interval(interval, duration):
            if not_before is not None and start < not_before:
                continue
            slots.append(Slot(doctor_id=doctor_id, date=d, start_time=from_minutes(start), end_time=from_minutes(end)))
    return slots


async def load_appointments(
    ctx: SchedulingContext, doctor_id: str, range_start: date, range_end: date
) -> list[Appointment]:
    """All of the doctor's appointments dated within the range, in any status."""
    records = await ctx.store.query_records(
        APPOINTMENTS,
        {"doctor_id": doctor_id, "date": {"gte": range_start, "lte": range_end}},
    )
    appointments = []
    for record in records:
        try:
            appointments.append(Appointment.model_validate(record))
        except PydanticValidationError as e:
            logger.error("Appointment record %s failed validation: %s", record.get("id"), e)
            raise DataIntegrityError(f"Appointment {record.get('id')} record is malformed") from e
    return appointments


async def available_slots_for_doctor(
    ctx: SchedulingContext,
    doctor: Doctor,
    range_start: date,
    range_end: date,
    duration: int,
    ignore_appointment_ids: frozenset[str] = frozenset(),
) -> list[Slot]:
    """Free slots for an already-loaded doctor; raises instead of returning a Result."""
    if range_end < range_start or not doctor.is_active:
        return []
    now = doctor_now(ctx, doctor)
    today = now.date()
    last_day = horizon_last_day(ctx, today)
    if range_end > last_day:
        logger.debug("Clamping slot range end %s to horizon %s", range_end, last_day)
        range_end = last_day
    # Slots that already started are not offered
    minute_now = now.hour * 60 + now.minute + (1 if now.second or now.microsecond else 0)
    first_day = max(range_start, today)
    if range_end < first_day:
        return []

    blocks_by_date: dict[date, list[BlockedDate]] = defaultdict(list)
    for block in blocks_in_range(doctor, first_day, range_end):
        blocks_by_date[block.date].append(block)
    appointments_by_date: dict[date, list[Appointment]] = defaultdict(list)
    for appointment in await load_appointments(ctx, doctor.id, first_day, range_end):
        if appointment.id not in ignore_appointment_ids:
            appointments_by_date[appointment.date].append(appointment)

    slots: list[Slot] = []
    d = first_day
    while d <= range_end:
        base = template_intervals(doctor, d)
        if base:
            free = free_intervals(base, blocks_by_date[d], appointments_by_date[d])
            slots.extend(day_slots(doctor.id, d, free, duration, minute_now if d == today else None))
        d += timedelta(days=1)
    return slots


async def generate_available_slots(
    ctx: SchedulingContext,
    doctor_id: str,
    range_start: date,
    range_end: date,
    slot_duration_minutes: int | None = None,
) -> Result[list[Slot]]:
    """Bookable slots for the doctor on every date in [range_start, range_end], ordered by (date, start)."""
    try:
        doctor = await load_doctor(ctx, doctor_id)
        duration = slot_duration_for(ctx, doctor, slot_duration_minutes)
        slots = await available_slots_for_doctor(ctx, doctor, range_start, range_end, duration)
    except SchedulingError as e:
        return Err(e)
    return Ok(slots)
