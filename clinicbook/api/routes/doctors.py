from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query, status

from clinicbook.api.deps import get_context, get_public_context, unwrap
from clinicbook.models.doctor import BlockedDate, WeeklyTemplate
from clinicbook.services import schedule_service
from clinicbook.services.context import SchedulingContext

router = APIRouter(prefix="/doctors", tags=["schedule"])


@router.get("/{doctor_id}/schedule", response_model=WeeklyTemplate)
async def get_schedule(
    doctor_id: str,
    ctx: SchedulingContext = Depends(get_public_context),
) -> WeeklyTemplate:
    return unwrap(await schedule_service.get_weekly_template(ctx, doctor_id))


@router.put("/{doctor_id}/schedule", response_model=WeeklyTemplate)
async def put_schedule(
    doctor_id: str,
    body: WeeklyTemplate,
    ctx: SchedulingContext = Depends(get_context),
) -> WeeklyTemplate:
    return unwrap(await schedule_service.update_weekly_template(ctx, doctor_id, body))


@router.get("/{doctor_id}/blocked-dates", response_model=list[BlockedDate])
async def list_blocked_dates(
    doctor_id: str,
    start: date | None = Query(None),
    end: date | None = Query(None),
    ctx: SchedulingContext = Depends(get_public_context),
) -> list[BlockedDate]:
    """Blocked dates in [start, end]; defaults to the next booking horizon from today."""
    start = start or ctx.now().date()
    end = end or start + timedelta(days=ctx.settings.booking_horizon_days)
    return unwrap(await schedule_service.get_blocked_dates(ctx, doctor_id, start, end))


@router.post("/{doctor_id}/blocked-dates", response_model=list[BlockedDate], status_code=status.HTTP_201_CREATED)
async def add_blocked_date(
    doctor_id: str,
    body: BlockedDate,
    ctx: SchedulingContext = Depends(get_context),
) -> list[BlockedDate]:
    return unwrap(await schedule_service.add_blocked_date(ctx, doctor_id, body))


@router.delete("/{doctor_id}/blocked-dates/{blocked_date}", response_model=list[BlockedDate])
async def remove_blocked_date(
    doctor_id: str,
    blocked_date: date,
    ctx: SchedulingContext = Depends(get_context),
) -> list[BlockedDate]:
    return unwrap(await schedule_service.remove_blocked_date(ctx, doctor_id, blocked_date))
