"""
Outbound notifications to students and the tutor.

The booking flow only decides who is told what about which lesson; wording
and buttons are rendered by the chat front-end that receives the webhook.
"""
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Protocol
from zoneinfo import ZoneInfo

import httpx

from .clock import format_instant, get_zone, to_local
from .core.config import get_settings
from .models import Lesson

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    LESSON_REQUESTED = "LESSON_REQUESTED"  # to the student: request sent
    LESSON_REQUEST_RECEIVED = "LESSON_REQUEST_RECEIVED"  # to the operator: decide
    LESSON_CONFIRMED = "LESSON_CONFIRMED"
    LESSON_DECLINED = "LESSON_DECLINED"
    LESSON_CANCELED = "LESSON_CANCELED"


@dataclass
class Notification:
    recipient_id: int
    kind: NotificationKind
    lesson_id: str
    start_at_utc: str
    start_at_local: str
    student_id: int
    student_name: str | None = None
    actions: List[str] = field(default_factory=list)

    def to_payload(self) -> dict:
        payload = asdict(self)
        payload["kind"] = self.kind.value
        return payload


def build_notification(
    recipient_id: int,
    kind: NotificationKind,
    lesson: Lesson,
    student_name: str | None = None,
    display_tz: ZoneInfo | None = None,
) -> Notification:
    if display_tz is None:
        display_tz = get_zone(get_settings().display_timezone)
    actions: list[str] = []
    if kind == NotificationKind.LESSON_REQUEST_RECEIVED:
        actions = [f"confirm_lesson:{lesson.id}", f"decline_lesson:{lesson.id}"]
    return Notification(
        recipient_id=recipient_id,
        kind=kind,
        lesson_id=str(lesson.id),
        start_at_utc=format_instant(lesson.start_at_utc),
        start_at_local=to_local(lesson.start_at_utc, display_tz).isoformat(),
        student_id=lesson.student_id,
        student_name=student_name,
        actions=actions,
    )


class Notifier(Protocol):
    async def send(self, notification: Notification) -> bool:
        ...


class WebhookNotifier:
    """
    POSTs notifications as JSON to the chat front-end.

    Never raises: a failed delivery is logged and must not undo a booking.
    """

    def __init__(self, url: str, token: str = "", timeout: float = 10):
        self.url = url
        self.token = token
        self.timeout = timeout

    async def send(self, notification: Notification) -> bool:
        if not self.url:
            logger.warning(
                f"Notification webhook is not configured; skipping {notification.kind.value} "
                f"for {notification.recipient_id}."
            )
            return False

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=notification.to_payload(), headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(
                f"Failed to deliver {notification.kind.value} for lesson {notification.lesson_id} "
                f"to {notification.recipient_id}: {exc}"
            )
            return False

        logger.info(
            f"Sent {notification.kind.value} for lesson {notification.lesson_id} to {notification.recipient_id}"
        )
        return True


def get_default_notifier() -> Notifier:
    settings = get_settings()
    return WebhookNotifier(settings.notify_webhook_url, settings.notify_webhook_token)
