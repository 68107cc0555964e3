"""Conversation history storage."""

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.storage.models import ChatMessage

logger = logging.getLogger(__name__)


async def load_messages(session: AsyncSession, conversation_id: str) -> list[ChatMessage]:
    """Fetch a conversation's messages in append order."""
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.position.asc())
    )
    return list(result.scalars().all())


async def append_message(session: AsyncSession, conversation_id: str, message: dict) -> ChatMessage:
    """Append one serialized turn at the end of a conversation."""
    result = await session.execute(
        select(func.max(ChatMessage.position)).where(ChatMessage.conversation_id == conversation_id)
    )
    last = result.scalar()
    row = ChatMessage(
        id=message["id"],
        conversation_id=conversation_id,
        position=0 if last is None else last + 1,
        role=message["role"],
        parts=message["parts"],
        metadata_=message.get("metadata") or {},
    )
    session.add(row)
    await session.flush()
    return row


async def replace_messages(session: AsyncSession, conversation_id: str, messages: list[dict]) -> None:
    """Overwrite a conversation's history with ``messages``."""
    await delete_messages(session, conversation_id)
    for position, message in enumerate(messages):
        session.add(
            ChatMessage(
                id=message["id"],
                conversation_id=conversation_id,
                position=position,
                role=message["role"],
                parts=message["parts"],
                metadata_=message.get("metadata") or {},
            )
        )
    await session.flush()
    logger.debug("Saved %d messages for conversation %s", len(messages), conversation_id)


async def delete_messages(session: AsyncSession, conversation_id: str) -> int:
    result = await session.execute(
        delete(ChatMessage).where(ChatMessage.conversation_id == conversation_id)
    )
    return result.rowcount
