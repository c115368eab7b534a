"""
Booking conversation state machine.

Each actor is always in exactly one step. A step only carries the data that
belongs to it, so a state/payload mismatch cannot be constructed; the
``(ConversationState, state_data)`` column pair is an encoding detail handled
by ``encode_state`` / ``decode_state``.

    Idle -> [AwaitingProfileName ->] ChoosingDate -> ChoosingTime(day)
         -> ConfirmingBooking(start_at) -> Idle

Cancel returns to Idle from any other step. The machine has no terminal state.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo

from .clock import format_instant, parse_instant, to_instant
from .errors import StaleSession, StateMismatch, ValidationError
from .models import ConversationState

logger = logging.getLogger(__name__)

MAX_DISPLAY_NAME_LENGTH = 100
SESSION_EXPIRED_MESSAGE = "Your session has expired. Please start the booking again."


@dataclass(frozen=True)
class Idle:
    kind = ConversationState.IDLE


@dataclass(frozen=True)
class AwaitingProfileName:
    kind = ConversationState.AWAITING_PROFILE_NAME


@dataclass(frozen=True)
class ChoosingDate:
    kind = ConversationState.CHOOSING_DATE_FOR_BOOKING


@dataclass(frozen=True)
class ChoosingTime:
    day: date
    kind = ConversationState.CHOOSING_TIME_FOR_BOOKING


@dataclass(frozen=True)
class ConfirmingBooking:
    start_at: datetime
    kind = ConversationState.CONFIRMING_BOOKING


Step = Union[Idle, AwaitingProfileName, ChoosingDate, ChoosingTime, ConfirmingBooking]

IDLE = Idle()


# ────────────────────────────────────────────────────────────────
# Persistence encoding
# ────────────────────────────────────────────────────────────────

def encode_state(step: Step) -> Tuple[ConversationState, Optional[str]]:
    if isinstance(step, ChoosingTime):
        return step.kind, step.day.isoformat()
    if isinstance(step, ConfirmingBooking):
        return step.kind, format_instant(step.start_at)
    return step.kind, None


def decode_state(state: ConversationState, state_data: Optional[str]) -> Step:
    """
    Rebuild the typed step from stored columns.

    Raises StaleSession when a step that needs data has none (or garbage).
    """
    if state == ConversationState.IDLE:
        return IDLE
    if state == ConversationState.AWAITING_PROFILE_NAME:
        return AwaitingProfileName()
    if state == ConversationState.CHOOSING_DATE_FOR_BOOKING:
        return ChoosingDate()
    if not state_data:
        raise StaleSession(SESSION_EXPIRED_MESSAGE)
    try:
        if state == ConversationState.CHOOSING_TIME_FOR_BOOKING:
            return ChoosingTime(date.fromisoformat(state_data))
        if state == ConversationState.CONFIRMING_BOOKING:
            return ConfirmingBooking(parse_instant(state_data))
    except (ValueError, ValidationError):
        logger.warning(f"Unreadable state data for {state.value}: {state_data!r}")
        raise StaleSession(SESSION_EXPIRED_MESSAGE)
    raise StaleSession(SESSION_EXPIRED_MESSAGE)


# ────────────────────────────────────────────────────────────────
# Transitions
# ────────────────────────────────────────────────────────────────

def require(step: Step, expected: type, action: str) -> None:
    """Raise StateMismatch unless ``step`` is an ``expected`` step."""
    if not isinstance(step, expected):
        raise StateMismatch(
            f"Can't {action} right now; that step is no longer active. Please start again.",
            details={"state": step.kind.value},
        )


def start_booking(step: Step, has_display_name: bool) -> Step:
    require(step, Idle, "start a new booking")
    if not has_display_name:
        return AwaitingProfileName()
    return ChoosingDate()


def submit_profile_name(step: Step, name: str) -> Tuple[str, Step]:
    require(step, AwaitingProfileName, "update your name")
    cleaned = " ".join((name or "").split())
    if not cleaned:
        raise ValidationError("Please send your name as text.")
    if len(cleaned) > MAX_DISPLAY_NAME_LENGTH:
        raise ValidationError(f"Name is too long (max {MAX_DISPLAY_NAME_LENGTH} characters).")
    return cleaned, ChoosingDate()


def choose_date(step: Step, day: date) -> Step:
    require(step, ChoosingDate, "pick a date")
    return ChoosingTime(day)


def choose_time(
    step: Step,
    time_of_day: time,
    tz: ZoneInfo | timezone = timezone.utc,
) -> Step:
    require(step, ChoosingTime, "pick a time")
    return ConfirmingBooking(to_instant(step.day, time_of_day, tz))


def confirm(step: Step) -> Tuple[datetime, Step]:
    """The confirmed start instant; the conversation is consumed either way."""
    if not isinstance(step, ConfirmingBooking):
        raise StaleSession(SESSION_EXPIRED_MESSAGE)
    return step.start_at, IDLE


def cancel(step: Step) -> Step:
    if isinstance(step, Idle):
        raise StateMismatch("There is nothing to cancel.")
    return IDLE
