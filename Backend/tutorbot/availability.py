"""
Slot availability for a single calendar date.

A date is bookable only through the weekly recurring template. Date-scoped
exceptions black out the whole day or the span from midnight to a cut-off
time; confirmed lessons and the minimum lead time remove individual slots.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import get_zone, start_of_day, to_instant, to_utc
from .core.config import get_settings
from .models import Lesson, LessonStatus, RecurringSlot, SlotException

logger = logging.getLogger(__name__)

MIN_LEAD_TIME = timedelta(minutes=30)


@dataclass
class BlockedTime:
    start_at_utc: datetime
    end_at_utc: datetime


def overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


def blocked_intervals(
    day: date,
    exceptions: Iterable[SlotException],
    tz: ZoneInfo | timezone = timezone.utc,
) -> List[BlockedTime] | None:
    """
    Intervals blocked on ``day``; ``None`` means the whole day is closed.

    A partial exception without a cut-off time blocks nothing.
    """
    day_start = start_of_day(day, tz)
    blocked: list[BlockedTime] = []
    for exc in exceptions:
        if exc.full_day:
            return None
        if exc.until_time is not None:
            blocked.append(BlockedTime(day_start, to_instant(day, exc.until_time, tz)))
    return blocked


def compute_available_slots(
    day: date,
    now: datetime,
    recurring: Iterable[RecurringSlot],
    exceptions: Iterable[SlotException],
    confirmed_starts: Iterable[datetime],
    tz: ZoneInfo | timezone = timezone.utc,
    lead_time: timedelta = MIN_LEAD_TIME,
) -> List[datetime]:
    """Bookable start instants (UTC, ascending) for ``day``."""
    weekday = day.weekday()  # Monday = 0
    templates = [slot for slot in recurring if slot.weekday == weekday]
    if not templates:
        return []

    blocked = blocked_intervals(
        day, [exc for exc in exceptions if exc.on_date == day], tz
    )
    if blocked is None:
        return []

    candidates: set[datetime] = set()
    for slot in templates:
        slot_start = to_instant(day, slot.start_time, tz)
        slot_end = slot_start + timedelta(minutes=slot.duration_minutes)
        if any(overlap(slot_start, slot_end, b.start_at_utc, b.end_at_utc) for b in blocked):
            continue
        candidates.add(slot_start)

    booked = {to_utc(start) for start in confirmed_starts}
    earliest = to_utc(now) + lead_time
    return sorted(s for s in candidates if s not in booked and s >= earliest)


# ────────────────────────────────────────────────────────────────
# Database-backed lookups
# ────────────────────────────────────────────────────────────────

async def get_available_slots(
    session: AsyncSession,
    day: date,
    now: datetime,
    tz: ZoneInfo | timezone | None = None,
    lead_time: timedelta | None = None,
) -> List[datetime]:
    """
    Bookable start instants for ``day``.

    ``tz`` and ``lead_time`` default to the configured schedule zone and lead time.
    """
    settings = get_settings()
    if tz is None:
        tz = get_zone(settings.schedule_timezone)
    if lead_time is None:
        lead_time = timedelta(minutes=settings.min_lead_minutes)

    result = await session.execute(
        select(RecurringSlot).where(RecurringSlot.weekday == day.weekday())
    )
    recurring = result.scalars().all()
    if not recurring:
        return []

    result = await session.execute(select(SlotException).where(SlotException.on_date == day))
    exceptions = result.scalars().all()

    window_start = start_of_day(day, tz)
    window_end = start_of_day(day + timedelta(days=1), tz)
    result = await session.execute(
        select(Lesson.start_at_utc).where(
            Lesson.status == LessonStatus.CONFIRMED,
            Lesson.start_at_utc >= window_start,
            Lesson.start_at_utc < window_end,
        )
    )
    confirmed_starts = result.scalars().all()

    slots = compute_available_slots(
        day,
        now,
        recurring,
        exceptions,
        confirmed_starts,
        tz=tz,
        lead_time=lead_time,
    )
    logger.debug(f"{len(slots)} slots available on {day.isoformat()}")
    return slots


async def is_slot_available(
    session: AsyncSession,
    start_at: datetime,
    now: datetime,
    tz: ZoneInfo | timezone | None = None,
    lead_time: timedelta | None = None,
) -> bool:
    if tz is None:
        tz = get_zone(get_settings().schedule_timezone)
    local_day = to_utc(start_at).astimezone(tz).date()
    slots = await get_available_slots(session, local_day, now, tz=tz, lead_time=lead_time)
    return to_utc(start_at) in slots
