from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import ensure_owner
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    TemplateSlotCreate,
    TemplateSlotResponse,
    TemplateSlotUpdate,
    TimetableCreate,
    TimetableResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/timetables", tags=["timetables"])


async def _owned_template(db: AsyncSession, current_user: CurrentUser, template_id: int):
    try:
        template = await service.get_template(db, template_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    ensure_owner(current_user, template.owner_id)
    return template


@router.post("", response_model=TimetableResponse, status_code=status.HTTP_201_CREATED)
async def create_timetable(
    payload: TimetableCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    if payload.organization_id is None:
        payload = payload.model_copy(update={"organization_id": current_user.organization_id})
    return await service.create_timetable(db, current_user.id, payload)


@router.get("", response_model=List[TimetableResponse])
async def list_timetables(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    owner_id = None if current_user.is_admin else current_user.id
    return await service.list_timetables(db, owner_id=owner_id)


@router.get("/{template_id}", response_model=TimetableResponse)
async def get_timetable(
    template_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await _owned_template(db, current_user, template_id)


@router.get("/{template_id}/slots", response_model=List[TemplateSlotResponse])
async def list_template_slots(
    template_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _owned_template(db, current_user, template_id)
    return await service.list_slots(db, template_id)


@router.post(
    "/{template_id}/slots",
    response_model=TemplateSlotResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_template_slot(
    template_id: int,
    payload: TemplateSlotCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _owned_template(db, current_user, template_id)
    try:
        return await service.create_slot(db, template_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/slots/{slot_id}", response_model=TemplateSlotResponse)
async def update_template_slot(
    slot_id: int,
    payload: TemplateSlotUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    slot = await service.get_slot(db, slot_id)
    if slot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template slot not found")
    await _owned_template(db, current_user, slot.timetable_id)
    try:
        return await service.update_slot(db, slot_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/slots/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template_slot(
    slot_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    slot = await service.get_slot(db, slot_id)
    if slot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template slot not found")
    await _owned_template(db, current_user, slot.timetable_id)
    await service.delete_slot(db, slot_id)
