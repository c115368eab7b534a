"""
Clock and time-zone helpers.

Lessons live on the UTC timeline. Schedule templates, picked dates and picked
times are wall-clock values in the tutor's schedule zone and are converted here.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ValidationError


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock pinned to one instant; ``advance`` moves it forward."""

    def __init__(self, instant: datetime):
        self.instant = to_utc(instant)

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> None:
        self.instant = self.instant + timedelta(**kwargs)


def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown time zone: {name}") from exc


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_instant(day: date, time_of_day: time, tz: ZoneInfo | timezone = timezone.utc) -> datetime:
    """Wall-clock ``day`` + ``time_of_day`` in ``tz`` as a UTC instant."""
    local_dt = datetime.combine(day, time_of_day).replace(tzinfo=tz)
    return local_dt.astimezone(timezone.utc)


def start_of_day(day: date, tz: ZoneInfo | timezone = timezone.utc) -> datetime:
    return to_instant(day, time.min, tz)


def to_local(instant: datetime, tz: ZoneInfo | timezone) -> datetime:
    return to_utc(instant).astimezone(tz)


def local_today(now: datetime, tz: ZoneInfo | timezone) -> date:
    return to_local(now, tz).date()


def format_instant(instant: datetime) -> str:
    return to_utc(instant).isoformat()


def parse_instant(value: str) -> datetime:
    text = (value or "").strip()
    if not text:
        raise ValidationError("Missing date/time.")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return to_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ValidationError(f"Invalid date/time: {value!r}. Expected ISO format.")


def parse_date(value: str) -> date:
    try:
        return datetime.strptime((value or "").strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}. Expected YYYY-MM-DD.")


def parse_time_of_day(value: str) -> time:
    try:
        hour, minute = map(int, (value or "").strip().split(":"))
        return time(hour=hour, minute=minute)
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid time: {value!r}. Expected HH:MM.")
