from datetime import date, time

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.timetables import service as template_store
from app.api.v1.weekly_instances import drift, service
from app.api.v1.weekly_instances.schemas import OccurrenceCreate, OccurrenceUpdate
from app.core.models import InstanceOccurrence, TemplateSlot, Timetable


def _slot(**overrides) -> TemplateSlot:
    values = dict(
        id=1, timetable_id=1, day_of_week="MONDAY", start_time=time(9, 0), end_time=time(10, 0),
        student_name="Li Hua", subject="Math", note=None,
    )
    values.update(overrides)
    return TemplateSlot(**values)


def _occurrence(**overrides) -> InstanceOccurrence:
    values = dict(
        weekly_instance_id=1, template_slot_id=1, day_of_week="MONDAY", start_time=time(9, 0),
        end_time=time(10, 0), schedule_date=date(2024, 6, 3), student_name="Li Hua", subject="Math",
        note=None, is_manual_added=False, is_modified=False,
    )
    values.update(overrides)
    return InstanceOccurrence(**values)


def test_identical_occurrence_is_not_drifted() -> None:
    assert drift.evaluate(_occurrence(), _slot()) is False


@pytest.mark.parametrize(
    "field, value",
    [
        ("student_name", "Wang Wei"),
        ("subject", "English"),
        ("day_of_week", "TUESDAY"),
        ("start_time", time(9, 30)),
        ("end_time", time(10, 30)),
    ],
)
def test_each_compared_field_counts(field, value) -> None:
    assert drift.evaluate(_occurrence(**{field: value}), _slot()) is True


def test_note_only_compared_on_request() -> None:
    occ = _occurrence(note="bring calculator")
    assert drift.evaluate(occ, _slot()) is False
    assert drift.evaluate(occ, _slot(), compare_note=True) is True
    assert "note" not in drift.compared_fields()
    assert "note" in drift.compared_fields(True)


def test_empty_text_equals_missing() -> None:
    assert drift.evaluate(_occurrence(subject=""), _slot(subject=None)) is False
    assert drift.evaluate(_occurrence(note="  "), _slot(note=None), compare_note=True) is False


def test_manual_occurrence_never_drifts() -> None:
    occ = _occurrence(is_manual_added=True, template_slot_id=None, student_name="Guest")
    assert drift.evaluate(occ, None) is False
    assert drift.evaluate(occ, _slot()) is False


def test_missing_baseline_counts_as_drifted() -> None:
    assert drift.evaluate(_occurrence(), None) is True


async def _only_occurrence(db: AsyncSession, template: Timetable) -> InstanceOccurrence:
    instance = await service.ensure_instance(db, template.id, date(2024, 6, 3))
    result = await db.execute(select(InstanceOccurrence).where(InstanceOccurrence.weekly_instance_id == instance.id))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_edit_and_revert_toggles_flag(db_session: AsyncSession, template: Timetable) -> None:
    occ = await _only_occurrence(db_session, template)

    occ = await service.update_occurrence(db_session, occ.id, OccurrenceUpdate(start_time="09:15"))
    assert occ.is_modified is True
    occ = await service.update_occurrence(db_session, occ.id, OccurrenceUpdate(start_time="09:00"))
    assert occ.is_modified is False


@pytest.mark.asyncio
async def test_note_edit_respects_compare_note(db_session: AsyncSession, template: Timetable) -> None:
    occ = await _only_occurrence(db_session, template)

    occ = await service.update_occurrence(db_session, occ.id, OccurrenceUpdate(note="bring workbook"))
    assert occ.is_modified is False
    occ = await service.update_occurrence(
        db_session, occ.id, OccurrenceUpdate(note="bring workbook"), compare_note=True
    )
    assert occ.is_modified is True


@pytest.mark.asyncio
async def test_manual_edit_keeps_flag_clear(db_session: AsyncSession, template: Timetable) -> None:
    instance = await service.ensure_instance(db_session, template.id, date(2024, 6, 3))
    manual = await service.add_manual_occurrence(
        db_session,
        instance.id,
        OccurrenceCreate(student_name="Guest", day_of_week="TUESDAY", start_time="14:00", end_time="15:00"),
    )
    updated = await service.update_occurrence(db_session, manual.id, OccurrenceUpdate(student_name="Guest 2"))
    assert updated.is_modified is False
    assert await drift.is_drifted(db_session, updated) is False


@pytest.mark.asyncio
async def test_listing_repairs_stale_flags(db_session: AsyncSession, template: Timetable) -> None:
    occ = await _only_occurrence(db_session, template)
    # Flag written behind the service's back.
    await db_session.execute(
        update(InstanceOccurrence).where(InstanceOccurrence.id == occ.id).values(is_modified=True)
    )
    await db_session.commit()
    await db_session.refresh(occ)
    assert occ.is_modified is True

    [listed] = await service.list_occurrences(db_session, occ.weekly_instance_id)
    assert listed.is_modified is False

    await db_session.refresh(occ)
    assert occ.is_modified is False


@pytest.mark.asyncio
async def test_deleted_slot_marks_occurrence_modified(db_session: AsyncSession, template: Timetable) -> None:
    occ = await _only_occurrence(db_session, template)
    await template_store.delete_slot(db_session, occ.template_slot_id)

    [listed] = await service.list_occurrences(db_session, occ.weekly_instance_id)
    assert listed.is_modified is True
    assert await drift.is_drifted(db_session, listed) is True


@pytest.mark.asyncio
async def test_repair_counts_only_changed_flags(db_session: AsyncSession, template: Timetable) -> None:
    occ = await _only_occurrence(db_session, template)
    occ.student_name = "Wang Wei"

    assert await drift.repair_modified_flags(db_session, [occ]) == 1
    assert occ.is_modified is True
    assert await drift.repair_modified_flags(db_session, [occ]) == 0
