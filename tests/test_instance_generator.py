from datetime import date, time, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.timetables import service as template_store
from app.api.v1.weekly_instances import service, sync
from app.api.v1.weekly_instances.schemas import OccurrenceUpdate
from app.core.exceptions import InvalidDayToken, NotWeeklyTemplate, TemplateNotFound
from app.core.models import InstanceOccurrence, Timetable, WeeklyInstance


async def _occurrences(db: AsyncSession, instance_id: int):
    result = await db.execute(
        select(InstanceOccurrence)
        .where(InstanceOccurrence.weekly_instance_id == instance_id)
        .order_by(InstanceOccurrence.id)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_generated_instance_materializes_template(db_session: AsyncSession, template: Timetable) -> None:
    instance = await service.ensure_instance(db_session, template.id, date(2024, 6, 5))

    assert instance.week_start_date == date(2024, 6, 3)
    assert instance.week_end_date == date(2024, 6, 9)
    assert instance.year_week == "2024-23"
    assert instance.owner_id == template.owner_id
    assert instance.last_synced_at is not None

    occurrences = await _occurrences(db_session, instance.id)
    assert len(occurrences) == 1
    occ = occurrences[0]
    assert occ.schedule_date == date(2024, 6, 3)
    assert occ.start_time == time(9, 0)
    assert occ.end_time == time(10, 0)
    assert occ.student_name == "Li Hua"
    assert occ.is_modified is False
    assert occ.is_manual_added is False
    assert occ.template_slot_id is not None


@pytest.mark.asyncio
async def test_ensure_instance_is_idempotent_within_week(db_session: AsyncSession, template: Timetable) -> None:
    first = await service.ensure_instance(db_session, template.id, date(2024, 6, 3))
    second = await service.ensure_instance(db_session, template.id, date(2024, 6, 9))

    assert first.id == second.id
    assert len(await _occurrences(db_session, first.id)) == 1
    count = await db_session.execute(select(WeeklyInstance).where(WeeklyInstance.template_id == template.id))
    assert len(count.scalars().all()) == 1


@pytest.mark.asyncio
async def test_schedule_dates_fall_inside_week(db_session: AsyncSession, template: Timetable, add_slot) -> None:
    await add_slot(template.id, "WEDNESDAY", time(14, 0), time(15, 0), "Zhao Lei")
    await add_slot(template.id, "SUNDAY", time(18, 0), time(19, 30), "Chen Jing")

    instance = await service.ensure_instance(db_session, template.id, date(2024, 6, 7))
    ordinals = {"MONDAY": 1, "WEDNESDAY": 3, "SUNDAY": 7}
    for occ in await _occurrences(db_session, instance.id):
        assert instance.week_start_date <= occ.schedule_date <= instance.week_end_date
        assert occ.schedule_date == instance.week_start_date + timedelta(days=ordinals[occ.day_of_week] - 1)


@pytest.mark.asyncio
async def test_ensure_instance_unknown_template(db_session: AsyncSession) -> None:
    with pytest.raises(TemplateNotFound):
        await service.ensure_instance(db_session, 999, date(2024, 6, 3))


@pytest.mark.asyncio
async def test_ensure_instance_rejects_non_weekly_template(db_session: AsyncSession) -> None:
    dated = Timetable(name="One-off", is_weekly=False, owner_id=1)
    db_session.add(dated)
    await db_session.commit()

    with pytest.raises(NotWeeklyTemplate):
        await service.ensure_instance(db_session, dated.id, date(2024, 6, 3))


@pytest.mark.asyncio
async def test_current_flag_is_exclusive(db_session: AsyncSession, template: Timetable) -> None:
    this_week = await service.ensure_current_week_instance(db_session, template.id, today=date(2024, 6, 4))
    assert this_week.is_current is True

    next_week = await service.ensure_next_week_instance(db_session, template.id, today=date(2024, 6, 4))
    assert next_week.week_start_date == date(2024, 6, 10)
    assert next_week.is_current is False

    switched = await service.set_current_instance(db_session, next_week.id)
    assert switched.is_current is True
    await db_session.refresh(this_week)
    assert this_week.is_current is False

    result = await db_session.execute(
        select(WeeklyInstance).where(
            WeeklyInstance.template_id == template.id,
            WeeklyInstance.is_current.is_(True),
        )
    )
    assert [i.id for i in result.scalars().all()] == [next_week.id]


@pytest.mark.asyncio
async def test_ensure_current_week_instance_keeps_existing(db_session: AsyncSession, template: Timetable) -> None:
    first = await service.ensure_current_week_instance(db_session, template.id, today=date(2024, 6, 4))
    again = await service.ensure_current_week_instance(db_session, template.id, today=date(2024, 6, 6))
    assert first.id == again.id
    assert (await service.get_current_instance(db_session, template.id)).id == first.id


@pytest.mark.asyncio
async def test_delete_next_week_instance(db_session: AsyncSession, template: Timetable) -> None:
    today = date(2024, 6, 4)
    assert await service.delete_next_week_instance(db_session, template.id, today=today) is False

    instance = await service.ensure_next_week_instance(db_session, template.id, today=today)
    assert await service.delete_next_week_instance(db_session, template.id, today=today) is True
    assert await db_session.get(WeeklyInstance, instance.id) is None
    assert await _occurrences(db_session, instance.id) == []


@pytest.mark.asyncio
async def test_list_instances_with_counts(db_session: AsyncSession, template: Timetable) -> None:
    current = await service.ensure_instance(db_session, template.id, date(2024, 6, 4))
    upcoming = await service.ensure_instance(db_session, template.id, date(2024, 6, 11))
    await service.clear_instance(db_session, upcoming.id)

    rows = await service.list_instances(db_session, template.id)
    assert [(i.id, n) for i, n in rows] == [(upcoming.id, 0), (current.id, 1)]


@pytest.mark.asyncio
async def test_generate_for_all_skips_inactive_and_reports(db_session: AsyncSession, template: Timetable) -> None:
    db_session.add_all(
        [
            Timetable(name="Archived", is_weekly=True, is_archived=True, owner_id=2),
            Timetable(name="Paused", is_weekly=True, is_active=False, owner_id=2),
            Timetable(name="Dated", is_weekly=False, owner_id=2),
        ]
    )
    await db_session.commit()

    summary = await service.generate_current_week_instances_for_all(db_session, today=date(2024, 6, 4))
    assert summary == {"processed": [template.id], "failed": {}}
    current = await service.get_current_instance(db_session, template.id)
    assert current is not None and current.year_week == "2024-23"

    summary = await service.generate_next_week_instances_for_all(db_session, today=date(2024, 6, 4))
    assert summary["processed"] == [template.id]
    rows = await service.list_instances(db_session, template.id)
    assert len(rows) == 2


@pytest.mark.asyncio
async def test_failed_materialization_leaves_no_instance(
    db_session: AsyncSession, template: Timetable, add_slot
) -> None:
    template_id = template.id
    bad_slot_id = (await add_slot(template_id, "FUNDAY", time(8, 0), time(9, 0), "Nobody")).id

    with pytest.raises(InvalidDayToken):
        await service.ensure_instance(db_session, template_id, date(2024, 6, 5))
    await db_session.commit()
    assert (await db_session.execute(select(WeeklyInstance))).scalars().all() == []

    await template_store.delete_slot(db_session, bad_slot_id)
    instance = await service.ensure_instance(db_session, template_id, date(2024, 6, 5))
    assert [o.student_name for o in await _occurrences(db_session, instance.id)] == ["Li Hua"]


@pytest.mark.asyncio
async def test_failed_override_sync_keeps_instance_as_it_was(
    db_session: AsyncSession, template: Timetable, add_slot
) -> None:
    template_id = template.id
    instance = await service.ensure_instance(db_session, template_id, date(2024, 6, 5))
    instance_id = instance.id
    [occ] = await _occurrences(db_session, instance_id)
    await service.update_occurrence(db_session, occ.id, OccurrenceUpdate(student_name="Wang Wei"))
    await add_slot(template_id, "FUNDAY", time(8, 0), time(9, 0), "Nobody")

    with pytest.raises(InvalidDayToken):
        await sync.full_override_sync(db_session, instance_id)
    with pytest.raises(InvalidDayToken):
        await sync.propagate_template_change(db_session, template_id, today=date(2024, 6, 4))

    [kept] = await _occurrences(db_session, instance_id)
    assert (kept.student_name, kept.is_modified) == ("Wang Wei", True)
