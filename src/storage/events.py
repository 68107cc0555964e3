"""Append-only record of processed webhook deliveries."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.storage.models import Event

logger = logging.getLogger(__name__)


async def event_exists(session: AsyncSession, event_id: str) -> bool:
    """Check whether an event with this id was already recorded."""
    result = await session.execute(select(Event.id).where(Event.id == event_id))
    return result.scalar_one_or_none() is not None


async def get_event(session: AsyncSession, event_id: str) -> Optional[Event]:
    return await session.get(Event, event_id)


async def insert_event(session: AsyncSession, event: Event) -> bool:
    """Insert an event row, relying on the primary key for uniqueness.

    Returns False when another delivery already inserted the same id. The
    session is rolled back in that case, so callers must not have other
    pending work in it.
    """
    session.add(event)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        logger.info("Event %s already recorded by a concurrent delivery", event.id)
        return False

    logger.debug("Stored event %s (%s)", event.id, event.type)
    return True


async def list_events(
    session: AsyncSession,
    event_type: Optional[str] = None,
    limit: int = 50,
) -> list[Event]:
    """Fetch the most recent events, newest first."""
    query = select(Event).order_by(Event.timestamp.desc())
    if event_type:
        query = query.where(Event.type == event_type)

    result = await session.execute(query.limit(limit))
    return list(result.scalars().all())
