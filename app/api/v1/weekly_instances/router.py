from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.timetables import service as template_store
from app.auth.dependencies import get_current_user
from app.auth.rbac import ensure_owner, require_admin
from app.auth.schemas import CurrentUser
from app.core.enums import SyncStrategy
from app.core.exceptions import ServiceError
from app.core.models import InstanceOccurrence, WeeklyInstance
from app.db.session import get_db

from .schemas import (
    BatchGenerateResponse,
    CountResponse,
    CurrentInstanceResponse,
    DedupeSummaryResponse,
    LeaveApply,
    OccurrenceCreate,
    OccurrenceIds,
    OccurrenceResponse,
    OccurrenceUpdate,
    SwapRequest,
    SwapResponse,
    SyncResultResponse,
    WeeklyInstanceResponse,
    WeeklyInstanceSummary,
)
from . import repair, service, sync

router = APIRouter(prefix="/api/v1/weekly-instances", tags=["weekly-instances"])


def _raise_http(e: ServiceError) -> None:
    raise HTTPException(status_code=e.status_code, detail=e.message)


async def _check_template(db: AsyncSession, user: CurrentUser, template_id: int) -> None:
    try:
        template = await template_store.get_template(db, template_id)
    except ServiceError as e:
        _raise_http(e)
    ensure_owner(user, template.owner_id)


async def _check_instance(db: AsyncSession, user: CurrentUser, instance_id: int) -> WeeklyInstance:
    try:
        instance = await service.get_instance(db, instance_id)
    except ServiceError as e:
        _raise_http(e)
    ensure_owner(user, instance.owner_id)
    return instance


async def _check_occurrence(db: AsyncSession, user: CurrentUser, occurrence_id: int) -> InstanceOccurrence:
    try:
        occ = await service.get_occurrence(db, occurrence_id)
    except ServiceError as e:
        _raise_http(e)
    await _check_instance(db, user, occ.weekly_instance_id)
    return occ


def _sync_response(result: sync.ReconcileResult) -> SyncResultResponse:
    return SyncResultResponse(
        created=result.created,
        updated=result.updated,
        deleted=result.deleted,
        skipped=result.skipped,
    )


# ----- Generation and switching -----
@router.post("/generate/{template_id}", response_model=WeeklyInstanceResponse)
async def generate_current_week_instance(
    template_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_template(db, current_user, template_id)
    try:
        return await service.ensure_current_week_instance(db, template_id)
    except ServiceError as e:
        _raise_http(e)


@router.post("/next-week/generate/{template_id}", response_model=WeeklyInstanceResponse)
async def generate_next_week_instance(
    template_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_template(db, current_user, template_id)
    try:
        return await service.ensure_next_week_instance(db, template_id)
    except ServiceError as e:
        _raise_http(e)


@router.delete("/next-week/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_next_week_instance(
    template_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_template(db, current_user, template_id)
    if not await service.delete_next_week_instance(db, template_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Next week instance not found")


@router.post("/batch-generate/current-week", response_model=BatchGenerateResponse)
async def batch_generate_current_week(
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
):
    return await service.generate_current_week_instances_for_all(db)


@router.post("/batch-generate/next-week", response_model=BatchGenerateResponse)
async def batch_generate_next_week(
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
):
    return await service.generate_next_week_instances_for_all(db)


@router.get("/current/{template_id}", response_model=CurrentInstanceResponse)
async def get_current_week_instance(
    template_id: int,
    include_leaves: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_template(db, current_user, template_id)
    instance = await service.get_current_instance(db, template_id)
    if instance is None:
        return CurrentInstanceResponse(has_instance=False)
    occurrences = await service.list_occurrences(db, instance.id, include_leaves=include_leaves)
    return CurrentInstanceResponse(
        has_instance=True,
        instance=WeeklyInstanceResponse.model_validate(instance),
        occurrences=[OccurrenceResponse.model_validate(o) for o in occurrences],
    )


@router.get("/list/{template_id}", response_model=List[WeeklyInstanceSummary])
async def list_weekly_instances(
    template_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_template(db, current_user, template_id)
    rows = await service.list_instances(db, template_id)
    return [
        WeeklyInstanceSummary(
            **WeeklyInstanceResponse.model_validate(instance).model_dump(),
            occurrence_count=count,
        )
        for instance, count in rows
    ]


@router.put("/switch/{instance_id}", response_model=WeeklyInstanceResponse)
async def switch_to_instance(
    instance_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_instance(db, current_user, instance_id)
    return await service.set_current_instance(db, instance_id)


@router.get("/by-date", response_model=List[OccurrenceResponse])
async def list_occurrences_by_date(
    template_id: int,
    on_date: date = Query(..., alias="date"),
    include_leaves: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_template(db, current_user, template_id)
    try:
        return await service.list_occurrences_by_date(db, template_id, on_date, include_leaves=include_leaves)
    except ServiceError as e:
        _raise_http(e)


@router.get("/leave-records", response_model=List[OccurrenceResponse])
async def list_leave_records(
    template_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    if template_id is not None:
        await _check_template(db, current_user, template_id)
    owner_id = None if current_user.is_admin else current_user.id
    return await service.list_leave_records(db, template_id=template_id, owner_id=owner_id)


# ----- Sync -----
@router.post("/sync/{template_id}", response_model=SyncResultResponse)
async def sync_template_to_instances(
    template_id: int,
    strategy: SyncStrategy = Query(SyncStrategy.FULL_OVERRIDE),
    protect_modified: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Push the whole template into every current and future instance.

    FULL_OVERRIDE restores matched occurrences and drops stale ones (modified ones are kept when
    protect_modified is set). SELECTIVE_FUTURE only touches lessons that have not started yet.
    """
    await _check_template(db, current_user, template_id)
    try:
        if strategy == SyncStrategy.SELECTIVE_FUTURE:
            slots = await template_store.list_slots(db, template_id)
            result = await sync.selective_future_sync(db, template_id, slots)
        else:
            options = sync.ReconcileOptions(delete_stale=True, protect_modified=protect_modified)
            result = await sync.propagate_template_change(db, template_id, options=options)
    except ServiceError as e:
        _raise_http(e)
    return _sync_response(result)


@router.post("/{instance_id}/restore", response_model=SyncResultResponse)
async def restore_instance_to_template(
    instance_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_instance(db, current_user, instance_id)
    result = await sync.full_override_sync(db, instance_id)
    return _sync_response(result)


# ----- Repair (admin) -----
@router.post("/{instance_id}/dedupe", response_model=CountResponse)
async def dedupe_instance(
    instance_id: int,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
):
    try:
        return CountResponse(count=await repair.dedupe(db, instance_id))
    except ServiceError as e:
        _raise_http(e)


@router.post("/dedupe/template/{template_id}", response_model=DedupeSummaryResponse)
async def dedupe_template(
    template_id: int,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
):
    return await repair.dedupe_template(db, template_id)


@router.post("/repair/{template_id}", response_model=CountResponse)
async def merge_duplicate_instances(
    template_id: int,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
):
    return CountResponse(count=await repair.merge_duplicate_instances(db, template_id))


# ----- Occurrences -----
@router.get("/{instance_id}/occurrences", response_model=List[OccurrenceResponse])
async def list_instance_occurrences(
    instance_id: int,
    include_leaves: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_instance(db, current_user, instance_id)
    return await service.list_occurrences(db, instance_id, include_leaves=include_leaves)


@router.post(
    "/{instance_id}/occurrences",
    response_model=OccurrenceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_manual_occurrence(
    instance_id: int,
    payload: OccurrenceCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_instance(db, current_user, instance_id)
    try:
        return await service.add_manual_occurrence(db, instance_id, payload)
    except ServiceError as e:
        _raise_http(e)


@router.post(
    "/{instance_id}/occurrences/batch",
    response_model=List[OccurrenceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_manual_occurrences(
    instance_id: int,
    payload: List[OccurrenceCreate],
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_instance(db, current_user, instance_id)
    try:
        return await service.add_manual_occurrences(db, instance_id, payload)
    except ServiceError as e:
        _raise_http(e)


@router.delete("/{instance_id}/occurrences", response_model=CountResponse)
async def clear_instance(
    instance_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_instance(db, current_user, instance_id)
    return CountResponse(count=await service.clear_instance(db, instance_id))


@router.post("/occurrences/swap", response_model=SwapResponse)
async def swap_occurrences(
    payload: SwapRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_occurrence(db, current_user, payload.occurrence_id_a)
    await _check_occurrence(db, current_user, payload.occurrence_id_b)
    first, second = await service.swap(db, payload.occurrence_id_a, payload.occurrence_id_b)
    return SwapResponse(
        first=OccurrenceResponse.model_validate(first),
        second=OccurrenceResponse.model_validate(second),
    )


@router.post("/occurrences/batch-delete", response_model=CountResponse)
async def delete_occurrences(
    payload: OccurrenceIds,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    for occurrence_id in payload.ids:
        await _check_occurrence(db, current_user, occurrence_id)
    return CountResponse(count=await service.delete_occurrences(db, payload.ids))


@router.put("/occurrences/{occurrence_id}", response_model=OccurrenceResponse)
async def update_occurrence(
    occurrence_id: int,
    payload: OccurrenceUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_occurrence(db, current_user, occurrence_id)
    try:
        return await service.update_occurrence(db, occurrence_id, payload)
    except ServiceError as e:
        _raise_http(e)


@router.delete("/occurrences/{occurrence_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_occurrence(
    occurrence_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_occurrence(db, current_user, occurrence_id)
    await service.delete_occurrence(db, occurrence_id)


@router.post("/occurrences/{occurrence_id}/leave", response_model=OccurrenceResponse)
async def request_leave(
    occurrence_id: int,
    payload: LeaveApply,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_occurrence(db, current_user, occurrence_id)
    try:
        return await service.request_leave(db, occurrence_id, payload.reason)
    except ServiceError as e:
        _raise_http(e)


@router.post("/occurrences/{occurrence_id}/cancel-leave", response_model=OccurrenceResponse)
async def cancel_leave(
    occurrence_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_occurrence(db, current_user, occurrence_id)
    return await service.cancel_leave(db, occurrence_id)


@router.post("/occurrences/{occurrence_id}/cancel", response_model=OccurrenceResponse)
async def cancel_occurrence(
    occurrence_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_occurrence(db, current_user, occurrence_id)
    return await service.cancel_occurrence(db, occurrence_id)


@router.post("/occurrences/{occurrence_id}/restore", response_model=OccurrenceResponse)
async def restore_occurrence(
    occurrence_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _check_occurrence(db, current_user, occurrence_id)
    return await service.restore_occurrence(db, occurrence_id)
