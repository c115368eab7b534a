"""
Lesson ledger: creation and status lifecycle of lesson requests.

Lessons are never deleted. The unique index ``uq_lesson_active_start`` keeps at
most one pending-or-confirmed lesson per start instant, so the conflict check
and the insert cannot be interleaved by another writer for the same instant.
"""
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import to_utc
from .errors import PersistenceFailure, SlotConflict, StateMismatch
from .models import ACTIVE_LESSON_STATUSES, Lesson, LessonStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[LessonStatus, set[LessonStatus]] = {
    LessonStatus.PENDING: {LessonStatus.CONFIRMED, LessonStatus.DECLINED, LessonStatus.CANCELED},
    LessonStatus.CONFIRMED: {LessonStatus.CANCELED},
    LessonStatus.DECLINED: set(),
    LessonStatus.CANCELED: set(),
}

SLOT_TAKEN_MESSAGE = "Sorry, this time slot is already taken. Please choose another time."


class LessonLedger:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise SlotConflict(SLOT_TAKEN_MESSAGE)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception(f"Lesson write failed: {exc}")
            raise PersistenceFailure("Booking storage is unavailable. Please try again later.")

    async def find_active_at(self, start_at: datetime) -> Optional[Lesson]:
        result = await self.session.execute(
            select(Lesson).where(
                Lesson.start_at_utc == to_utc(start_at),
                Lesson.status.in_(ACTIVE_LESSON_STATUSES),
            )
        )
        return result.scalars().first()

    async def create_pending_lesson(
        self,
        student_id: int,
        start_at: datetime,
        duration_minutes: int = 60,
        notes: Optional[str] = None,
    ) -> Lesson:
        """
        Claim ``start_at`` for ``student_id`` with a new PENDING lesson.

        The first claim wins: a second request for an instant that already has
        a pending or confirmed lesson raises SlotConflict.
        """
        start_at = to_utc(start_at)
        existing = await self.find_active_at(start_at)
        if existing is not None:
            logger.info(
                f"Slot {start_at.isoformat()} already held by lesson {existing.id} ({existing.status.value})"
            )
            raise SlotConflict(SLOT_TAKEN_MESSAGE)

        lesson = Lesson(
            student_id=student_id,
            start_at_utc=start_at,
            duration_minutes=duration_minutes,
            status=LessonStatus.PENDING,
            notes=notes,
        )
        self.session.add(lesson)
        await self._commit()
        await self.session.refresh(lesson)
        logger.info(f"Lesson {lesson.id} requested by {student_id} for {start_at.isoformat()}")
        return lesson

    async def update_status(self, lesson_id: uuid.UUID, new_status: LessonStatus) -> bool:
        """
        Move a lesson to ``new_status``.

        Returns True if the status changed. Unknown ids and repeats of the
        current status are no-ops.
        """
        lesson = await self.session.get(
            Lesson, lesson_id, with_for_update=True, populate_existing=True
        )
        if lesson is None:
            return False
        if lesson.status == new_status:
            return False
        if new_status not in ALLOWED_TRANSITIONS[lesson.status]:
            raise StateMismatch(
                f"This lesson is already {lesson.status.value.lower()}.",
                details={"lesson_id": str(lesson_id), "status": lesson.status.value},
            )

        old_status = lesson.status
        lesson.status = new_status
        await self._commit()
        await self.session.refresh(lesson)
        logger.info(f"Lesson {lesson_id}: {old_status.value} -> {new_status.value}")
        return True

    async def get_lesson_by_id(self, lesson_id: uuid.UUID) -> Optional[Lesson]:
        return await self.session.get(Lesson, lesson_id, populate_existing=True)

    async def list_lessons_for_student(self, student_id: int) -> List[Lesson]:
        result = await self.session.execute(
            select(Lesson).where(Lesson.student_id == student_id).order_by(Lesson.start_at_utc)
        )
        return list(result.scalars().all())

    async def list_pending_lessons(self) -> List[Lesson]:
        result = await self.session.execute(
            select(Lesson).where(Lesson.status == LessonStatus.PENDING).order_by(Lesson.start_at_utc)
        )
        return list(result.scalars().all())
