import logging

from sqlalchemy import func, select

from .clock import parse_time_of_day
from .core.config import get_settings
from .models import RecurringSlot

logger = logging.getLogger(__name__)


async def seed_initial_data(session):
    """Insert the configured weekly template if no recurring slots exist yet."""
    settings = get_settings()
    entries = settings.seed_recurring_slots_list
    if not entries:
        return

    existing = await session.scalar(select(func.count()).select_from(RecurringSlot))
    if existing:
        return

    slots = [
        RecurringSlot(
            weekday=weekday,
            start_time=parse_time_of_day(start),
            duration_minutes=settings.lesson_duration_minutes,
        )
        for weekday, start in entries
        if 0 <= weekday <= 6
    ]
    session.add_all(slots)
    await session.commit()
    logger.info(f"Seeded {len(slots)} recurring slots")
