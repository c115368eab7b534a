"""
Tests for slot availability.

The pure engine is exercised with plain model instances; the database lookup
is covered against the in-memory SQLite fixture.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from tutorbot.availability import (
    blocked_intervals,
    compute_available_slots,
    get_available_slots,
    is_slot_available,
)
from tutorbot.models import Lesson, LessonStatus, RecurringSlot, SlotException

from conftest import NEXT_MONDAY, SUNDAY_MIDNIGHT, add_exception

UTC = timezone.utc


def monday(hour, minute=0):
    return datetime(2024, 6, 10, hour, minute, tzinfo=UTC)


def template(weekday=0, hour=10, minute=0, duration=60):
    return RecurringSlot(weekday=weekday, start_time=time(hour, minute), duration_minutes=duration)


# ============================================================================
# PURE ENGINE
# ============================================================================

class TestComputeAvailableSlots:
    def test_single_template(self):
        """Monday 10:00 template, asked on Sunday: the slot is offered."""
        slots = compute_available_slots(NEXT_MONDAY, SUNDAY_MIDNIGHT, [template()], [], [])
        assert slots == [monday(10)]

    def test_no_template_for_weekday(self):
        slots = compute_available_slots(date(2024, 6, 11), SUNDAY_MIDNIGHT, [template()], [], [])
        assert slots == []

    def test_sorted_and_deduplicated(self):
        recurring = [template(hour=14), template(hour=10), template(hour=10)]
        slots = compute_available_slots(NEXT_MONDAY, SUNDAY_MIDNIGHT, recurring, [], [])
        assert slots == [monday(10), monday(14)]

    def test_confirmed_lesson_removes_slot(self):
        recurring = [template(hour=10), template(hour=14)]
        slots = compute_available_slots(NEXT_MONDAY, SUNDAY_MIDNIGHT, recurring, [], [monday(10)])
        assert slots == [monday(14)]

    def test_full_day_exception(self):
        exceptions = [SlotException(on_date=NEXT_MONDAY, full_day=True)]
        slots = compute_available_slots(NEXT_MONDAY, SUNDAY_MIDNIGHT, [template()], exceptions, [])
        assert slots == []

    def test_exception_on_other_date_ignored(self):
        exceptions = [SlotException(on_date=date(2024, 6, 17), full_day=True)]
        slots = compute_available_slots(NEXT_MONDAY, SUNDAY_MIDNIGHT, [template()], exceptions, [])
        assert slots == [monday(10)]

    def test_partial_exception_blocks_until_cutoff(self):
        """Blocked until 12:00: the 10:00 slot goes, the 14:00 slot stays."""
        recurring = [template(hour=10), template(hour=14)]
        exceptions = [SlotException(on_date=NEXT_MONDAY, full_day=False, until_time=time(12, 0))]
        slots = compute_available_slots(NEXT_MONDAY, SUNDAY_MIDNIGHT, recurring, exceptions, [])
        assert slots == [monday(14)]

    def test_partial_exception_overlapping_slot(self):
        """A slot that is still running at the cut-off is blocked too."""
        exceptions = [SlotException(on_date=NEXT_MONDAY, full_day=False, until_time=time(10, 30))]
        slots = compute_available_slots(NEXT_MONDAY, SUNDAY_MIDNIGHT, [template()], exceptions, [])
        assert slots == []

    def test_partial_exception_ending_at_slot_start(self):
        exceptions = [SlotException(on_date=NEXT_MONDAY, full_day=False, until_time=time(10, 0))]
        slots = compute_available_slots(NEXT_MONDAY, SUNDAY_MIDNIGHT, [template()], exceptions, [])
        assert slots == [monday(10)]

    def test_lead_time(self):
        """At 09:45 the 10:00 slot is inside the 30 minute lead time."""
        now = monday(9, 45)
        slots = compute_available_slots(NEXT_MONDAY, now, [template(hour=10), template(hour=14)], [], [])
        assert slots == [monday(14)]

    def test_lead_time_boundary_is_inclusive(self):
        slots = compute_available_slots(NEXT_MONDAY, monday(9, 30), [template()], [], [])
        assert slots == [monday(10)]

    def test_past_day(self):
        now = datetime(2024, 6, 12, tzinfo=UTC)
        assert compute_available_slots(NEXT_MONDAY, now, [template()], [], []) == []

    def test_schedule_zone(self):
        """Templates are wall-clock times in the schedule zone."""
        tz = ZoneInfo("Europe/Moscow")
        slots = compute_available_slots(NEXT_MONDAY, SUNDAY_MIDNIGHT, [template()], [], [], tz=tz)
        assert slots == [monday(7)]


class TestBlockedIntervals:
    def test_full_day_closes(self):
        assert blocked_intervals(NEXT_MONDAY, [SlotException(on_date=NEXT_MONDAY, full_day=True)]) is None

    def test_partial_without_cutoff_blocks_nothing(self):
        exceptions = [SlotException(on_date=NEXT_MONDAY, full_day=False, until_time=None)]
        assert blocked_intervals(NEXT_MONDAY, exceptions) == []

    def test_partial_interval(self):
        exceptions = [SlotException(on_date=NEXT_MONDAY, full_day=False, until_time=time(12, 0))]
        [blocked] = blocked_intervals(NEXT_MONDAY, exceptions)
        assert blocked.start_at_utc == monday(0)
        assert blocked.end_at_utc == monday(12)


# ============================================================================
# DATABASE LOOKUP
# ============================================================================

class TestGetAvailableSlots:
    @pytest.mark.asyncio
    async def test_reads_templates(self, async_session, monday_slots):
        slots = await get_available_slots(async_session, NEXT_MONDAY, SUNDAY_MIDNIGHT)
        assert slots == [monday(10), monday(14)]

    @pytest.mark.asyncio
    async def test_only_confirmed_lessons_block(self, async_session, monday_slots):
        async_session.add_all(
            [
                Lesson(student_id=1, start_at_utc=monday(10), status=LessonStatus.CONFIRMED),
                Lesson(student_id=2, start_at_utc=monday(14), status=LessonStatus.PENDING),
            ]
        )
        await async_session.commit()

        slots = await get_available_slots(async_session, NEXT_MONDAY, SUNDAY_MIDNIGHT)
        assert slots == [monday(14)]

    @pytest.mark.asyncio
    async def test_full_day_exception(self, async_session, monday_slots):
        await add_exception(async_session, NEXT_MONDAY)
        assert await get_available_slots(async_session, NEXT_MONDAY, SUNDAY_MIDNIGHT) == []

    @pytest.mark.asyncio
    async def test_no_templates(self, async_session):
        assert await get_available_slots(async_session, NEXT_MONDAY, SUNDAY_MIDNIGHT) == []

    @pytest.mark.asyncio
    async def test_is_slot_available(self, async_session, monday_slots):
        assert await is_slot_available(async_session, monday(10), SUNDAY_MIDNIGHT)
        assert not await is_slot_available(async_session, monday(11), SUNDAY_MIDNIGHT)
        assert not await is_slot_available(async_session, monday(10), monday(9, 45))
        assert await is_slot_available(async_session, monday(14), monday(10) + timedelta(hours=1))
