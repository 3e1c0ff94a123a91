import asyncio
from datetime import UTC, datetime, time, timedelta

import pytest

from clinicbook.core.errors import ConflictError, Err, NotFoundError, Ok, PermissionDeniedError, ValidationError
from clinicbook.models.appointment import AppointmentStatus, AppointmentType, BookingMetadata
from clinicbook.services import appointment_service
from clinicbook.services.appointment_service import (
    book_slot,
    can_transition,
    cancel_appointment,
    complete_appointment,
    confirm_appointment,
    get_appointment,
    list_appointments,
    reschedule_appointment,
)
from clinicbook.services.context import Actor, Role
from clinicbook.services.schedule_service import add_blocked_date
from clinicbook.services.slot_service import generate_available_slots
from conftest import DOCTOR_ID, MONDAY, OTHER_DOCTOR_ID, OTHER_PATIENT_ID, PATIENT_ID, WEDNESDAY, starts


async def _book(ctx, start="09:00", end="09:30", d=MONDAY, patient_id=PATIENT_ID, metadata=None):
    return await book_slot(
        ctx, DOCTOR_ID, patient_id, d, time.fromisoformat(start), time.fromisoformat(end), metadata
    )


async def _booked(ctx, **kwargs) -> str:
    result = await _book(ctx, **kwargs)
    assert isinstance(result, Ok), result
    return result.value


async def _free_starts(ctx, d=MONDAY):
    return starts((await generate_available_slots(ctx, DOCTOR_ID, d, d)).value)


async def test_book_slot_creates_pending_appointment(ctx, store):
    appointment_id = await _booked(
        ctx, metadata=BookingMetadata(appointment_type=AppointmentType.VIDEO, reason="checkup")
    )
    record = await store.read_record("appointments", appointment_id)
    assert record["status"] == "pending"
    assert record["doctor_id"] == DOCTOR_ID
    assert record["patient_id"] == PATIENT_ID
    assert record["date"] == MONDAY.isoformat()
    assert record["start_time"] == "09:00:00"
    assert record["appointment_type"] == "video"
    assert record["reason"] == "checkup"
    assert "09:00" not in await _free_starts(ctx)


async def test_metadata_may_be_a_dict(ctx, store):
    appointment_id = await _booked(ctx, metadata={"reason": "follow-up"})
    record = await store.read_record("appointments", appointment_id)
    assert record["reason"] == "follow-up"
    assert record["appointment_type"] == "in_person"


async def test_invalid_metadata(ctx):
    result = await _book(ctx, metadata={"appointment_type": "telepathy"})
    assert isinstance(result.error, ValidationError)


async def test_double_booking_conflicts(ctx):
    await _booked(ctx)
    result = await _book(ctx, patient_id=OTHER_PATIENT_ID)
    assert isinstance(result, Err)
    assert isinstance(result.error, ConflictError)
    assert result.error.retryable


async def test_concurrent_bookings_only_one_wins(ctx, store):
    results = await asyncio.gather(*(_book(ctx) for _ in range(5)))
    assert sum(isinstance(r, Ok) for r in results) == 1
    assert all(isinstance(r.error, ConflictError) for r in results if isinstance(r, Err))
    assert len(await store.query_records("appointments", {"doctor_id": DOCTOR_ID})) == 1


async def test_store_rejects_race_that_passed_recheck(ctx, store, monkeypatch):
    async def stale_recheck(*args, **kwargs):
        return None

    # Both requests see the slot as free; the store's compare-and-write decides
    monkeypatch.setattr(appointment_service, "_recheck_availability", stale_recheck)
    first = await _book(ctx)
    second = await _book(ctx, patient_id=OTHER_PATIENT_ID)
    assert isinstance(first, Ok)
    assert isinstance(second.error, ConflictError)
    assert second.error.message == "slot no longer available"
    assert len(await store.query_records("appointments")) == 1


async def test_block_added_after_listing_conflicts(ctx):
    assert "10:00" in await _free_starts(ctx)
    await add_blocked_date(ctx, DOCTOR_ID, {"date": MONDAY, "start_time": "10:00", "end_time": "11:00"})
    result = await _book(ctx, start="10:00", end="10:30")
    assert isinstance(result.error, ConflictError)


@pytest.mark.parametrize(
    "start, end",
    [
        ("09:15", "09:45"),  # off the slot grid
        ("09:00", "10:00"),  # wrong duration
        ("09:30", "09:00"),  # inverted
        ("13:00", "13:30"),  # outside Monday hours
        ("11:45", "12:15"),  # runs past closing
    ],
)
async def test_invalid_requests(ctx, store, start, end):
    result = await _book(ctx, start=start, end=end)
    assert isinstance(result, Err)
    assert isinstance(result.error, ValidationError)
    assert await store.query_records("appointments") == []


async def test_booking_in_the_past(ctx, clock):
    clock.now = datetime(2026, 3, 2, 10, 10, tzinfo=UTC)
    result = await _book(ctx, start="10:00", end="10:30")
    assert isinstance(result.error, ValidationError)
    assert isinstance(await _book(ctx, start="10:30", end="11:00"), Ok)


async def test_inactive_doctor_cannot_be_booked(ctx, store):
    doctor = await store.read_record("doctors", DOCTOR_ID)
    doctor["is_active"] = False
    await store.write_record("doctors", DOCTOR_ID, doctor)
    assert isinstance((await _book(ctx)).error, ValidationError)


async def test_unknown_doctor_or_patient(ctx):
    result = await book_slot(ctx, "nobody", PATIENT_ID, MONDAY, time(9), time(9, 30))
    assert isinstance(result.error, NotFoundError)
    result = await _book(ctx, patient_id="nobody")
    assert isinstance(result.error, NotFoundError)


async def test_patient_cannot_book_for_someone_else(patient_ctx):
    result = await _book(patient_ctx, patient_id=OTHER_PATIENT_ID)
    assert isinstance(result.error, PermissionDeniedError)
    assert isinstance(await _book(patient_ctx), Ok)


def test_transition_table():
    assert can_transition(AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)
    assert can_transition(AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED)
    assert not can_transition(AppointmentStatus.PENDING, AppointmentStatus.COMPLETED)
    assert not can_transition(AppointmentStatus.CANCELED, AppointmentStatus.CONFIRMED)
    assert not can_transition(AppointmentStatus.COMPLETED, AppointmentStatus.CANCELED)


async def test_confirm_then_complete(ctx, doctor_ctx):
    appointment_id = await _booked(ctx)
    confirmed = await confirm_appointment(doctor_ctx, appointment_id)
    assert confirmed.value.status == AppointmentStatus.CONFIRMED
    completed = await complete_appointment(doctor_ctx, appointment_id, notes="All good")
    assert completed.value.status == AppointmentStatus.COMPLETED
    assert completed.value.notes == "All good"
    # Completed appointments no longer hold the slot
    assert "09:00" in await _free_starts(ctx)


async def test_complete_requires_confirmation(ctx, doctor_ctx):
    appointment_id = await _booked(ctx)
    result = await complete_appointment(doctor_ctx, appointment_id)
    assert isinstance(result.error, ValidationError)


async def test_patient_cannot_confirm(ctx, patient_ctx):
    appointment_id = await _booked(ctx)
    result = await confirm_appointment(patient_ctx, appointment_id)
    assert isinstance(result.error, PermissionDeniedError)


async def test_other_doctor_cannot_confirm(ctx):
    appointment_id = await _booked(ctx)
    other = ctx.as_actor(Actor(user_id=OTHER_DOCTOR_ID, role=Role.DOCTOR))
    assert isinstance((await confirm_appointment(other, appointment_id)).error, PermissionDeniedError)


async def test_cancel_frees_the_slot(ctx, patient_ctx):
    appointment_id = await _booked(ctx)
    result = await cancel_appointment(patient_ctx, appointment_id, reason="feeling better")
    assert result.value.status == AppointmentStatus.CANCELED
    assert result.value.notes == "Canceled by patient: feeling better"
    assert "09:00" in await _free_starts(ctx)
    assert isinstance(await _book(ctx, patient_id=OTHER_PATIENT_ID), Ok)


async def test_cancel_twice_is_rejected(ctx):
    appointment_id = await _booked(ctx)
    await cancel_appointment(ctx, appointment_id)
    result = await cancel_appointment(ctx, appointment_id)
    assert isinstance(result.error, ValidationError)


async def test_unknown_appointment(ctx):
    assert isinstance((await cancel_appointment(ctx, "missing")).error, NotFoundError)
    assert isinstance((await get_appointment(ctx, "missing")).error, NotFoundError)


async def test_reschedule_moves_the_booking(ctx, patient_ctx, store):
    original_id = await _booked(ctx, metadata={"reason": "checkup"})
    result = await reschedule_appointment(patient_ctx, original_id, MONDAY, time(10), time(10, 30))
    assert isinstance(result, Ok), result
    replacement = result.value
    assert replacement.id != original_id
    assert replacement.rescheduled_from == original_id
    assert replacement.status == AppointmentStatus.PENDING
    assert replacement.reason == "checkup"

    original = (await get_appointment(ctx, original_id)).value
    assert original.status == AppointmentStatus.RESCHEDULED
    assert original.rescheduled_to == replacement.id

    free = await _free_starts(ctx)
    assert "09:00" in free
    assert "10:00" not in free


async def test_reschedule_to_overlapping_own_slot(ctx):
    original_id = await _booked(ctx)
    # The original does not conflict with its own replacement
    result = await reschedule_appointment(ctx, original_id, MONDAY, time(9), time(9, 30))
    assert isinstance(result, Ok)


async def test_reschedule_into_taken_slot_leaves_original(ctx):
    original_id = await _booked(ctx)
    await _booked(ctx, start="10:00", end="10:30", patient_id=OTHER_PATIENT_ID)
    result = await reschedule_appointment(ctx, original_id, MONDAY, time(10), time(10, 30))
    assert isinstance(result.error, ConflictError)
    original = (await get_appointment(ctx, original_id)).value
    assert original.status == AppointmentStatus.PENDING
    assert original.rescheduled_to is None


async def test_reschedule_canceled_appointment(ctx):
    appointment_id = await _booked(ctx)
    await cancel_appointment(ctx, appointment_id)
    result = await reschedule_appointment(ctx, appointment_id, WEDNESDAY, time(13), time(13, 30))
    assert isinstance(result.error, ValidationError)


async def test_get_appointment_checks_participants(ctx, patient_ctx, doctor_ctx):
    appointment_id = await _booked(ctx)
    assert isinstance(await get_appointment(patient_ctx, appointment_id), Ok)
    assert isinstance(await get_appointment(doctor_ctx, appointment_id), Ok)
    stranger = ctx.as_actor(Actor(user_id=OTHER_PATIENT_ID, role=Role.PATIENT))
    assert isinstance((await get_appointment(stranger, appointment_id)).error, PermissionDeniedError)


async def test_list_appointments(ctx, patient_ctx):
    late = await _booked(ctx, start="11:00", end="11:30")
    early = await _booked(ctx, start="09:00", end="09:30")
    other = await _booked(ctx, start="10:00", end="10:30", patient_id=OTHER_PATIENT_ID)

    everything = (await list_appointments(ctx)).value
    assert [a.id for a in everything] == [early, other, late]

    mine = (await list_appointments(patient_ctx)).value
    assert [a.id for a in mine] == [early, late]

    result = await list_appointments(patient_ctx, patient_id=OTHER_PATIENT_ID)
    assert isinstance(result.error, PermissionDeniedError)

    assert (await list_appointments(ctx, from_date=WEDNESDAY)).value == []


async def test_book_slot_generated_with_custom_duration(ctx, store):
    slots = (await generate_available_slots(ctx, DOCTOR_ID, MONDAY, MONDAY, 60)).value
    first = slots[0]
    result = await book_slot(
        ctx, DOCTOR_ID, PATIENT_ID, MONDAY, first.start_time, first.end_time, slot_duration_minutes=60
    )
    assert isinstance(result, Ok), result
    record = await store.read_record("appointments", result.value)
    assert (record["start_time"], record["end_time"]) == ("09:00:00", "10:00:00")
    # The whole hour is gone from the default grid as well
    assert await _free_starts(ctx) == ["10:00", "10:30", "11:00", "11:30"]


async def test_duration_must_match_the_listing(ctx):
    result = await _book(ctx, start="10:00", end="11:00")
    assert isinstance(result.error, ValidationError)
    result = await book_slot(ctx, DOCTOR_ID, PATIENT_ID, MONDAY, time(10), time(11), slot_duration_minutes=0)
    assert isinstance(result.error, ValidationError)


@pytest.mark.parametrize("duration", [None, 45, 60])
async def test_every_listed_slot_can_be_booked(ctx, duration):
    # Off-grid block so later slots on Monday start at 10:20
    await add_blocked_date(ctx, DOCTOR_ID, {"date": MONDAY, "start_time": "10:10", "end_time": "10:20"})
    last = WEDNESDAY + timedelta(days=7)
    slots = (await generate_available_slots(ctx, DOCTOR_ID, MONDAY, last, duration)).value
    assert {s.date for s in slots} == {MONDAY, WEDNESDAY, MONDAY + timedelta(days=7), last}
    assert "10:20" in starts(s for s in slots if s.date == MONDAY)

    for slot in slots:
        result = await book_slot(
            ctx, DOCTOR_ID, PATIENT_ID, slot.date, slot.start_time, slot.end_time,
            slot_duration_minutes=duration,
        )
        assert isinstance(result, Ok), (slot, result)

    assert (await generate_available_slots(ctx, DOCTOR_ID, MONDAY, last, duration)).value == []


async def test_block_cannot_land_between_recheck_and_commit(ctx, store, monkeypatch):
    recheck = appointment_service._recheck_availability
    blockers = []

    async def recheck_then_block(*args, **kwargs):
        await recheck(*args, **kwargs)
        blockers.append(asyncio.create_task(add_blocked_date(ctx, DOCTOR_ID, {"date": MONDAY})))
        await asyncio.sleep(0)

    write = store.write_record_if_unconflicted
    blocks_at_commit = []

    async def record_blocks_then_write(*args, **kwargs):
        blocks_at_commit.append((await store.read_record("doctors", DOCTOR_ID))["blocked_dates"])
        return await write(*args, **kwargs)

    monkeypatch.setattr(appointment_service, "_recheck_availability", recheck_then_block)
    monkeypatch.setattr(store, "write_record_if_unconflicted", record_blocks_then_write)

    result = await _book(ctx)
    await asyncio.gather(*blockers)

    assert isinstance(result, Ok)
    # The block waited for the booking to finish instead of slipping in under it
    assert blocks_at_commit == [[]]
    doctor = await store.read_record("doctors", DOCTOR_ID)
    assert [b["date"] for b in doctor["blocked_dates"]] == [MONDAY.isoformat()]


async def test_concurrent_block_and_booking(ctx, store):
    booking, _ = await asyncio.gather(
        _book(ctx),
        add_blocked_date(ctx, DOCTOR_ID, {"date": MONDAY, "start_time": "09:00", "end_time": "09:30"}),
    )
    booked = await store.query_records("appointments")
    doctor = await store.read_record("doctors", DOCTOR_ID)
    assert len(doctor["blocked_dates"]) == 1
    # Either the booking went first, or it saw the block and failed
    if isinstance(booking, Ok):
        assert len(booked) == 1
    else:
        assert isinstance(booking.error, ConflictError)
        assert booked == []


async def test_locks_are_released_after_use(ctx, store):
    for _ in range(5):
        appointment_id = await _booked(ctx)
        await cancel_appointment(ctx, appointment_id)
    appointment_id = await _booked(ctx)
    await confirm_appointment(ctx, appointment_id)
    await reschedule_appointment(ctx, appointment_id, MONDAY, time(10), time(10, 30))
    await asyncio.gather(*(_book(ctx, start="11:00", end="11:30") for _ in range(3)))
    await add_blocked_date(ctx, DOCTOR_ID, {"date": WEDNESDAY})
    assert store._scope_locks == {}


async def test_reschedule_keeps_the_original_length(ctx, store):
    original_id = (
        await book_slot(ctx, DOCTOR_ID, PATIENT_ID, MONDAY, time(9), time(10), slot_duration_minutes=60)
    ).value
    result = await reschedule_appointment(ctx, original_id, MONDAY, time(10), time(11))
    assert isinstance(result, Ok), result
    assert result.value.end_time == time(11)


async def test_booking_beyond_the_horizon(ctx):
    far = MONDAY + timedelta(days=7 * 20)
    result = await _book(ctx, d=far)
    assert isinstance(result.error, ValidationError)
