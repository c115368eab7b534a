"""
Booking orchestrator: one entry point per actor action.

Each entry point loads the actor (locking its row), validates the action
against the conversation step before any side effect, then reads availability
or mutates the ledger and persists the next step.

A StateMismatch resets the conversation to Idle. A ValidationError leaves
the step unchanged so the actor can simply try again.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from . import conversation
from .actors import current_step, get_or_create_actor, load_for_update, set_step
from .availability import get_available_slots, is_slot_available
from .clock import Clock, get_zone, local_today, parse_date, parse_time_of_day
from .conversation import IDLE, ChoosingDate, ChoosingTime, Step
from .core.config import Settings, get_settings
from .errors import NotFound, SlotConflict, StaleSession, StateMismatch, ValidationError
from .ledger import LessonLedger
from .models import Actor, ConversationState, Lesson, LessonStatus
from .notifications import NotificationKind, Notifier, build_notification

logger = logging.getLogger(__name__)


class OperatorDecision(str, Enum):
    CONFIRM = "confirm"
    DECLINE = "decline"


DECISION_STATUS = {
    OperatorDecision.CONFIRM: LessonStatus.CONFIRMED,
    OperatorDecision.DECLINE: LessonStatus.DECLINED,
}

DECISION_NOTIFICATION = {
    OperatorDecision.CONFIRM: NotificationKind.LESSON_CONFIRMED,
    OperatorDecision.DECLINE: NotificationKind.LESSON_DECLINED,
}

ACCESS_DENIED_MESSAGE = "Access denied or lesson not found."


@dataclass
class ActionOutcome:
    state: ConversationState
    lesson: Optional[Lesson] = None
    day: Optional[date] = None
    start_at: Optional[datetime] = None
    slots: List[datetime] = field(default_factory=list)


@dataclass
class ActorProfile:
    """Profile fields the chat front-end reports with every action."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None


class BookingOrchestrator:
    def __init__(
        self,
        session: AsyncSession,
        clock: Clock,
        notifier: Notifier,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.clock = clock
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.tz = get_zone(self.settings.schedule_timezone)
        self.display_tz = get_zone(self.settings.display_timezone)
        self.lead_time = timedelta(minutes=self.settings.min_lead_minutes)
        self.ledger = LessonLedger(session)

    # ────────────────────────────────────────────────────────────────
    # Helpers
    # ────────────────────────────────────────────────────────────────

    async def _load(self, actor_id: int, profile: Optional[ActorProfile] = None) -> Actor:
        profile = profile or ActorProfile()
        await get_or_create_actor(
            self.session,
            actor_id,
            self.clock.now(),
            first_name=profile.first_name,
            last_name=profile.last_name,
            username=profile.username,
            operator_id=self.settings.operator_id,
        )
        return await load_for_update(self.session, actor_id)

    async def _save(self, actor: Actor, step: Step) -> None:
        set_step(actor, step, self.clock.now())
        await self.session.commit()

    async def _read_step(self, actor: Actor) -> Step:
        try:
            return current_step(actor)
        except StaleSession:
            await self._reset(actor, "unreadable conversation data")
            raise

    async def _reset(self, actor: Actor, reason: str) -> None:
        logger.info(f"Actor {actor.id}: {reason} while {actor.state.value}; resetting to idle")
        await self._save(actor, IDLE)

    async def _require(self, actor: Actor, step: Step, expected: type, action: str) -> None:
        try:
            conversation.require(step, expected, action)
        except StateMismatch:
            await self._reset(actor, f"cannot {action}")
            raise

    async def _notify(
        self,
        recipient_id: int,
        kind: NotificationKind,
        lesson: Lesson,
        student_name: Optional[str] = None,
    ) -> None:
        notification = build_notification(
            recipient_id, kind, lesson, student_name, display_tz=self.display_tz
        )
        await self.notifier.send(notification)

    async def _notify_operator(
        self,
        kind: NotificationKind,
        lesson: Lesson,
        student_name: Optional[str] = None,
    ) -> None:
        if not self.settings.operator_id:
            logger.warning(f"OPERATOR_ID not configured; operator not told about lesson {lesson.id}")
            return
        await self._notify(self.settings.operator_id, kind, lesson, student_name)

    def _check_date_window(self, day: date) -> None:
        today = local_today(self.clock.now(), self.tz)
        if day < today:
            raise ValidationError("That date is in the past. Please pick another date.")
        if day > today + timedelta(days=self.settings.booking_horizon_days):
            raise ValidationError(
                f"Bookings are open for the next {self.settings.booking_horizon_days} days only."
            )

    # ────────────────────────────────────────────────────────────────
    # Student conversation
    # ────────────────────────────────────────────────────────────────

    async def on_start_booking(self, actor_id: int, profile: Optional[ActorProfile] = None) -> ActionOutcome:
        actor = await self._load(actor_id, profile)
        step = await self._read_step(actor)
        try:
            next_step = conversation.start_booking(step, bool(actor.display_name))
        except StateMismatch:
            await self._reset(actor, "booking already in progress")
            raise
        await self._save(actor, next_step)
        return ActionOutcome(state=actor.state)

    async def on_profile_name(
        self, actor_id: int, name: str, profile: Optional[ActorProfile] = None
    ) -> ActionOutcome:
        actor = await self._load(actor_id, profile)
        step = await self._read_step(actor)
        await self._require(actor, step, conversation.AwaitingProfileName, "update your name")
        try:
            display_name, next_step = conversation.submit_profile_name(step, name)
        except ValidationError:
            await self.session.rollback()
            raise
        actor.display_name = display_name
        await self._save(actor, next_step)
        return ActionOutcome(state=actor.state)

    async def on_date_chosen(
        self, actor_id: int, date_text: str, profile: Optional[ActorProfile] = None
    ) -> ActionOutcome:
        actor = await self._load(actor_id, profile)
        step = await self._read_step(actor)
        await self._require(actor, step, ChoosingDate, "pick a date")
        try:
            day = parse_date(date_text)
            self._check_date_window(day)
        except ValidationError:
            await self.session.rollback()
            raise

        next_step = conversation.choose_date(step, day)
        await self._save(actor, next_step)
        slots = await get_available_slots(
            self.session, day, self.clock.now(), tz=self.tz, lead_time=self.lead_time
        )
        return ActionOutcome(state=actor.state, day=day, slots=slots)

    async def on_time_chosen(
        self, actor_id: int, time_text: str, profile: Optional[ActorProfile] = None
    ) -> ActionOutcome:
        actor = await self._load(actor_id, profile)
        step = await self._read_step(actor)
        await self._require(actor, step, ChoosingTime, "pick a time")
        try:
            time_of_day = parse_time_of_day(time_text)
        except ValidationError:
            await self.session.rollback()
            raise

        next_step = conversation.choose_time(step, time_of_day, self.tz)
        available = await is_slot_available(
            self.session, next_step.start_at, self.clock.now(), tz=self.tz, lead_time=self.lead_time
        )
        if not available:
            await self.session.rollback()
            raise SlotConflict("That time is not available. Please choose another time.")
        await self._save(actor, next_step)
        return ActionOutcome(state=actor.state, day=step.day, start_at=next_step.start_at)

    async def on_confirm(self, actor_id: int, profile: Optional[ActorProfile] = None) -> ActionOutcome:
        actor = await self._load(actor_id, profile)
        step = await self._read_step(actor)
        try:
            start_at, next_step = conversation.confirm(step)
        except StaleSession:
            await self._reset(actor, "confirmation without a pending choice")
            raise

        student_name = actor.display_name or actor.first_name
        # The conversation is consumed whether or not the slot can be claimed
        await self._save(actor, next_step)
        lesson = await self.ledger.create_pending_lesson(
            actor_id,
            start_at,
            duration_minutes=self.settings.lesson_duration_minutes,
        )

        await self._notify(actor_id, NotificationKind.LESSON_REQUESTED, lesson, student_name)
        await self._notify_operator(NotificationKind.LESSON_REQUEST_RECEIVED, lesson, student_name)
        return ActionOutcome(state=ConversationState.IDLE, lesson=lesson, start_at=lesson.start_at_utc)

    async def on_cancel(self, actor_id: int, profile: Optional[ActorProfile] = None) -> ActionOutcome:
        actor = await self._load(actor_id, profile)
        try:
            step = current_step(actor)
        except StaleSession:
            # Unreadable data is discarded by the reset below
            step = None
        if step is not None:
            try:
                conversation.cancel(step)
            except StateMismatch:
                await self.session.rollback()
                raise
        await self._save(actor, IDLE)
        return ActionOutcome(state=actor.state)

    # ────────────────────────────────────────────────────────────────
    # Lessons
    # ────────────────────────────────────────────────────────────────

    async def on_operator_decision(
        self,
        actor_id: int,
        lesson_id: uuid.UUID,
        decision: OperatorDecision,
    ) -> ActionOutcome:
        """
        Confirm or decline a pending lesson. Only the operator may decide.

        Repeating a decision is a no-op and sends nothing.
        """
        actor = await get_or_create_actor(
            self.session, actor_id, self.clock.now(), operator_id=self.settings.operator_id
        )
        state = actor.state
        lesson = await self.ledger.get_lesson_by_id(lesson_id)
        if lesson is None or not actor.is_operator():
            logger.warning(f"Actor {actor_id} denied {decision.value} on lesson {lesson_id}")
            raise NotFound(ACCESS_DENIED_MESSAGE)

        # Availability is not re-run here; uq_lesson_active_start already holds
        # at most one active lesson per instant
        changed = await self.ledger.update_status(lesson.id, DECISION_STATUS[decision])
        if changed:
            await self._notify(lesson.student_id, DECISION_NOTIFICATION[decision], lesson)
        return ActionOutcome(state=state, lesson=lesson, start_at=lesson.start_at_utc)

    async def on_lesson_canceled(self, actor_id: int, lesson_id: uuid.UUID) -> ActionOutcome:
        """A student cancels their own lesson, or the operator cancels any lesson."""
        actor = await get_or_create_actor(
            self.session, actor_id, self.clock.now(), operator_id=self.settings.operator_id
        )
        state = actor.state
        is_operator = actor.is_operator()
        student_name = actor.display_name
        lesson = await self.ledger.get_lesson_by_id(lesson_id)
        if lesson is None or (not is_operator and lesson.student_id != actor_id):
            raise NotFound(ACCESS_DENIED_MESSAGE)

        changed = await self.ledger.update_status(lesson.id, LessonStatus.CANCELED)
        if changed:
            if is_operator:
                await self._notify(lesson.student_id, NotificationKind.LESSON_CANCELED, lesson)
            else:
                await self._notify_operator(NotificationKind.LESSON_CANCELED, lesson, student_name)
        return ActionOutcome(state=state, lesson=lesson, start_at=lesson.start_at_utc)

    async def list_my_lessons(self, actor_id: int) -> List[Lesson]:
        await get_or_create_actor(
            self.session, actor_id, self.clock.now(), operator_id=self.settings.operator_id
        )
        return await self.ledger.list_lessons_for_student(actor_id)

    async def list_pending_requests(self, actor_id: int) -> List[Lesson]:
        actor = await get_or_create_actor(
            self.session, actor_id, self.clock.now(), operator_id=self.settings.operator_id
        )
        if not actor.is_operator():
            raise NotFound(ACCESS_DENIED_MESSAGE)
        return await self.ledger.list_pending_lessons()
