import logging
import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .availability import get_available_slots
from .clock import Clock, SystemClock, format_instant, get_zone, parse_date, to_local
from .core.config import get_settings
from .core.db import get_session, init_models
from .core.responses import ErrorCodes, error_response, success_response
from .errors import BookingError
from .models import Lesson, LessonStatus
from .notifications import Notifier, get_default_notifier
from .orchestrator import ActionOutcome, ActorProfile, BookingOrchestrator, OperatorDecision


settings = get_settings()
app = FastAPI(title="TutorBot Booking Backend")
logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────
# Request / response models
# ────────────────────────────────────────────────────────────────

class ActorActionRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None

    def profile(self) -> ActorProfile:
        return ActorProfile(
            first_name=self.first_name,
            last_name=self.last_name,
            username=self.username,
        )


class ProfileNameRequest(ActorActionRequest):
    name: str


class DateChoiceRequest(ActorActionRequest):
    date: str


class TimeChoiceRequest(ActorActionRequest):
    time: str


class DecisionRequest(BaseModel):
    decision: OperatorDecision


class LessonOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    student_id: int
    start_at_utc: datetime
    duration_minutes: int
    status: LessonStatus
    notes: Optional[str] = None


def serialize_slots(slots: List[datetime]) -> List[dict]:
    tz = get_zone(settings.schedule_timezone)
    return [
        {"start_at_utc": format_instant(slot), "local_time": to_local(slot, tz).strftime("%H:%M")}
        for slot in slots
    ]


def serialize_lesson(lesson: Lesson) -> dict:
    return LessonOut.model_validate(lesson).model_dump(mode="json")


def serialize_outcome(outcome: ActionOutcome) -> dict:
    return {
        "state": outcome.state.value,
        "date": outcome.day.isoformat() if outcome.day else None,
        "start_at_utc": format_instant(outcome.start_at) if outcome.start_at else None,
        "slots": serialize_slots(outcome.slots),
        "lesson": serialize_lesson(outcome.lesson) if outcome.lesson else None,
    }


# ────────────────────────────────────────────────────────────────
# Dependencies
# ────────────────────────────────────────────────────────────────

def get_clock() -> Clock:
    return SystemClock()


def get_notifier() -> Notifier:
    return get_default_notifier()


async def get_orchestrator(
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
) -> BookingOrchestrator:
    return BookingOrchestrator(session, clock, notifier)


# ────────────────────────────────────────────────────────────────
# Error handling
# ────────────────────────────────────────────────────────────────

@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message, exc.details),
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Database error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content=error_response(
            ErrorCodes.PERSISTENCE_FAILURE,
            "Booking storage is unavailable. Please try again later.",
        ),
    )


@app.on_event("startup")
async def on_startup():
    logging.basicConfig(level=settings.log_level.upper())
    await init_models()


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

@app.get("/health")
async def healthcheck():
    return {"status": "ok"}


@app.get("/availability")
async def get_availability(
    date: str,
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    local_date = parse_date(date)
    slots = await get_available_slots(session, local_date, clock.now())
    return success_response({"date": local_date.isoformat(), "slots": serialize_slots(slots)})


@app.post("/actors/{actor_id}/booking/start")
async def start_booking(
    actor_id: int,
    payload: Optional[ActorActionRequest] = None,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    payload = payload or ActorActionRequest()
    outcome = await orchestrator.on_start_booking(actor_id, payload.profile())
    return success_response(serialize_outcome(outcome))


@app.post("/actors/{actor_id}/profile/name")
async def submit_profile_name(
    actor_id: int,
    payload: ProfileNameRequest,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    outcome = await orchestrator.on_profile_name(actor_id, payload.name, payload.profile())
    return success_response(serialize_outcome(outcome))


@app.post("/actors/{actor_id}/booking/date")
async def choose_date(
    actor_id: int,
    payload: DateChoiceRequest,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    outcome = await orchestrator.on_date_chosen(actor_id, payload.date, payload.profile())
    return success_response(serialize_outcome(outcome))


@app.post("/actors/{actor_id}/booking/time")
async def choose_time(
    actor_id: int,
    payload: TimeChoiceRequest,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    outcome = await orchestrator.on_time_chosen(actor_id, payload.time, payload.profile())
    return success_response(serialize_outcome(outcome))


@app.post("/actors/{actor_id}/booking/confirm")
async def confirm_booking(
    actor_id: int,
    payload: Optional[ActorActionRequest] = None,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    payload = payload or ActorActionRequest()
    outcome = await orchestrator.on_confirm(actor_id, payload.profile())
    return success_response(serialize_outcome(outcome))


@app.post("/actors/{actor_id}/booking/cancel")
async def cancel_booking(
    actor_id: int,
    payload: Optional[ActorActionRequest] = None,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    payload = payload or ActorActionRequest()
    outcome = await orchestrator.on_cancel(actor_id, payload.profile())
    return success_response(serialize_outcome(outcome))


@app.get("/actors/{actor_id}/lessons")
async def list_lessons(
    actor_id: int,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    lessons = await orchestrator.list_my_lessons(actor_id)
    return success_response([serialize_lesson(lesson) for lesson in lessons])


@app.post("/actors/{actor_id}/lessons/{lesson_id}/cancel")
async def cancel_lesson(
    actor_id: int,
    lesson_id: uuid.UUID,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    outcome = await orchestrator.on_lesson_canceled(actor_id, lesson_id)
    return success_response(serialize_outcome(outcome))


@app.get("/operator/{actor_id}/lessons/pending")
async def list_pending_lessons(
    actor_id: int,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    lessons = await orchestrator.list_pending_requests(actor_id)
    return success_response([serialize_lesson(lesson) for lesson in lessons])


@app.post("/operator/{actor_id}/lessons/{lesson_id}/decision")
async def decide_lesson(
    actor_id: int,
    lesson_id: uuid.UUID,
    payload: DecisionRequest,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    outcome = await orchestrator.on_operator_decision(actor_id, lesson_id, payload.decision)
    return success_response(serialize_outcome(outcome))
