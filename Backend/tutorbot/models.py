import uuid
from datetime import date, datetime, time, timezone
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum as PgEnum,
    Index,
    Integer,
    String,
    Text,
    Time,
    TypeDecorator,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .core.db import Base


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime that is always bound and returned as UTC.

    SQLite drops the offset on storage, so values read back are re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ActorRole(str, Enum):
    STUDENT = "STUDENT"
    OPERATOR = "OPERATOR"


class ConversationState(str, Enum):
    IDLE = "IDLE"
    AWAITING_PROFILE_NAME = "AWAITING_PROFILE_NAME"
    CHOOSING_DATE_FOR_BOOKING = "CHOOSING_DATE_FOR_BOOKING"
    CHOOSING_TIME_FOR_BOOKING = "CHOOSING_TIME_FOR_BOOKING"
    CONFIRMING_BOOKING = "CONFIRMING_BOOKING"


class LessonStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    DECLINED = "DECLINED"
    CANCELED = "CANCELED"


# Statuses that occupy their start instant
ACTIVE_LESSON_STATUSES = (LessonStatus.PENDING, LessonStatus.CONFIRMED)


class Actor(Base):
    __tablename__ = "actors"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[ActorRole] = mapped_column(
        PgEnum(ActorRole), nullable=False, default=ActorRole.STUDENT
    )
    state: Mapped[ConversationState] = mapped_column(
        PgEnum(ConversationState), nullable=False, default=ConversationState.IDLE
    )
    state_data: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_activity: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )

    def is_operator(self) -> bool:
        return self.role == ActorRole.OPERATOR


class Lesson(Base):
    __tablename__ = "lessons"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(), primary_key=True, default=uuid.uuid4, unique=True
    )
    student_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    start_at_utc: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    status: Mapped[LessonStatus] = mapped_column(
        PgEnum(LessonStatus), nullable=False, default=LessonStatus.PENDING
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        # At most one pending-or-confirmed lesson per start instant
        Index(
            "uq_lesson_active_start",
            "start_at_utc",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'CONFIRMED')"),
            sqlite_where=text("status IN ('PENDING', 'CONFIRMED')"),
        ),
    )


class RecurringSlot(Base):
    __tablename__ = "recurring_slots"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(), primary_key=True, default=uuid.uuid4, unique=True
    )
    weekday: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # 0 = Monday
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )


class SlotException(Base):
    __tablename__ = "slot_exceptions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(), primary_key=True, default=uuid.uuid4, unique=True
    )
    on_date: Mapped[date] = mapped_column("date", Date, nullable=False, index=True)
    full_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    until_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
