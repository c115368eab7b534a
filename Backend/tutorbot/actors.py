"""
Actor directory: first-contact creation, activity tracking and state storage.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .conversation import Step, decode_state, encode_state
from .core.config import get_settings
from .models import Actor, ActorRole

logger = logging.getLogger(__name__)


def build_display_name(first_name: Optional[str], last_name: Optional[str]) -> Optional[str]:
    name = f"{first_name or ''} {last_name or ''}".strip()
    return name or None


async def get_or_create_actor(
    session: AsyncSession,
    actor_id: int,
    now: datetime,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    username: Optional[str] = None,
    operator_id: Optional[int] = None,
) -> Actor:
    """
    Return the actor for ``actor_id``, creating it on first contact.

    ``operator_id`` defaults to the configured operator.
    """
    actor = await session.get(Actor, actor_id)
    if actor is not None:
        actor.last_activity = now
        await session.commit()
        return actor

    if operator_id is None:
        operator_id = get_settings().operator_id
    actor = Actor(
        id=actor_id,
        first_name=first_name,
        last_name=last_name,
        username=username,
        display_name=build_display_name(first_name, last_name),
        role=ActorRole.OPERATOR if operator_id and actor_id == operator_id else ActorRole.STUDENT,
        last_activity=now,
    )
    session.add(actor)
    try:
        await session.commit()
    except IntegrityError:
        # Another request created the actor first
        await session.rollback()
        actor = await session.get(Actor, actor_id, populate_existing=True)
        actor.last_activity = now
        await session.commit()
        return actor
    await session.refresh(actor)
    logger.info(f"New actor {actor_id} ({actor.role.value})")
    return actor


async def load_for_update(session: AsyncSession, actor_id: int) -> Optional[Actor]:
    """Lock the actor row for the rest of the transaction."""
    result = await session.execute(
        select(Actor).where(Actor.id == actor_id).with_for_update().execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def current_step(actor: Actor) -> Step:
    return decode_state(actor.state, actor.state_data)


def set_step(actor: Actor, step: Step, now: datetime) -> None:
    old_state = actor.state
    actor.state, actor.state_data = encode_state(step)
    actor.last_activity = now
    if old_state != actor.state:
        logger.info(f"Actor {actor.id}: {old_state.value} -> {actor.state.value}")
