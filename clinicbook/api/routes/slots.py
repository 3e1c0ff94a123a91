from datetime import date

from fastapi import APIRouter, Depends, Query

from clinicbook.api.deps import get_public_context, unwrap
from clinicbook.api.schemas.appointment import AvailableSlotsResponse
from clinicbook.services.context import SchedulingContext
from clinicbook.services.slot_service import generate_available_slots

router = APIRouter(prefix="/doctors", tags=["slots"])


@router.get("/{doctor_id}/slots", response_model=AvailableSlotsResponse)
async def available_slots(
    doctor_id: str,
    start: date = Query(...),
    end: date | None = Query(None),
    duration: int | None = Query(None, description="Slot length in minutes; defaults to the doctor's"),
    ctx: SchedulingContext = Depends(get_public_context),
) -> AvailableSlotsResponse:
    """Bookable slots for the doctor from ``start`` to ``end`` inclusive (a single day if ``end`` is omitted)."""
    end = end or start
    slots = unwrap(await generate_available_slots(ctx, doctor_id, start, end, duration))
    return AvailableSlotsResponse(doctor_id=doctor_id, start=start, end=end, slots=slots)
