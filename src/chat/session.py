"""Conversation session, the explicit owner of one conversation's history."""

import asyncio
import inspect
import logging
import weakref
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

from src.chat.continuation import resolve_pending
from src.chat.prompts import ScheduledTask, build_system_prompt
from src.chat.streamer import OutputChunk, StreamConfig, stream_response
from src.chat.tools import EXECUTIONS, TOOLS, Tool, ToolHandler
from src.chat.turns import TextPart, ToolCallPart, Turn, resolved_call_ids
from src.config import Settings, get_settings
from src.storage.db import get_session
from src.storage.messages import append_message, delete_messages, load_messages, replace_messages

logger = logging.getLogger(__name__)

ScheduleProvider = Callable[[], Union[list[ScheduledTask], Awaitable[list[ScheduledTask]]]]

# One lock per conversation keeps turns in arrival order. Entries vanish once
# no holder or waiter references the lock.
_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _lock_for(conversation_id: str) -> asyncio.Lock:
    lock = _locks.get(conversation_id)
    if lock is None:
        lock = _locks[conversation_id] = asyncio.Lock()
    return lock


def _dump(turn: Turn) -> dict:
    return turn.model_dump(mode="json")


class ConversationSession:
    """History, persistence and chat entry points for one conversation."""

    def __init__(
        self,
        conversation_id: str,
        tools: Optional[dict[str, Tool]] = None,
        executions: Optional[dict[str, ToolHandler]] = None,
        schedule_provider: Optional[ScheduleProvider] = None,
        settings: Optional[Settings] = None,
        client: Optional[Any] = None,
    ):
        self.conversation_id = conversation_id
        self.tools = TOOLS if tools is None else tools
        self.executions = EXECUTIONS if executions is None else executions
        self.schedule_provider = schedule_provider
        self.settings = settings or get_settings()
        self.client = client

    async def messages(self) -> list[Turn]:
        async with get_session() as session:
            rows = await load_messages(session, self.conversation_id)
        return [
            Turn(id=r.id, role=r.role, parts=r.parts, metadata=r.metadata_ or {})
            for r in rows
        ]

    async def append(self, turn: Turn) -> None:
        async with get_session() as session:
            await append_message(session, self.conversation_id, _dump(turn))

    async def save_messages(self, turns: list[Turn]) -> None:
        async with get_session() as session:
            await replace_messages(session, self.conversation_id, [_dump(t) for t in turns])

    async def clear(self) -> int:
        async with _lock_for(self.conversation_id):
            async with get_session() as session:
                count = await delete_messages(session, self.conversation_id)
        logger.info("Cleared %d messages from conversation %s", count, self.conversation_id)
        return count

    async def _scheduled_tasks(self) -> list[ScheduledTask]:
        if self.schedule_provider is None:
            return []
        tasks = self.schedule_provider()
        if inspect.isawaitable(tasks):
            tasks = await tasks
        return list(tasks)

    async def chat(
        self,
        user_turn: Optional[Turn] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[OutputChunk]:
        """Append ``user_turn`` (if any) and stream the assistant's reply.

        Pending tool calls from earlier turns are resolved first and the
        resolved history is saved. The assistant turn is persisted when the
        stream finishes.
        """
        async with _lock_for(self.conversation_id):
            history = await self.messages()
            if user_turn is not None:
                await self.append(user_turn)
                history.append(user_turn)

            resolved = await resolve_pending(history, self.executions)
            if resolved != history:
                await self.save_messages(resolved)

            config = StreamConfig(
                model=self.settings.anthropic.model,
                tools=self.tools,
                system_prompt=build_system_prompt(datetime.now(timezone.utc), await self._scheduled_tasks()),
                max_steps=self.settings.chat.max_steps,
                max_tokens=self.settings.anthropic.max_tokens,
            )

            async for chunk in stream_response(
                resolved,
                config,
                on_finish=self.append,
                cancel_event=cancel_event,
                client=self.client,
            ):
                yield chunk

    async def confirm_tool_call(self, tool_call_id: str, approved: bool) -> bool:
        """Record a human decision on a pending tool call.

        Returns False if no pending call with that id exists. A call that
        already has a result is no longer pending.
        """
        async with _lock_for(self.conversation_id):
            history = await self.messages()
            if tool_call_id in resolved_call_ids(history):
                logger.info("Tool call %s already resolved in conversation %s", tool_call_id, self.conversation_id)
                return False

            found = False
            updated = []
            for turn in history:
                parts = []
                for part in turn.parts:
                    if isinstance(part, ToolCallPart) and part.tool_call_id == tool_call_id:
                        part = part.model_copy(update={"approval": approved})
                        found = True
                    parts.append(part)
                updated.append(turn.model_copy(update={"parts": tuple(parts)}))

            if found:
                await self.save_messages(updated)
                logger.info(
                    "Tool call %s %s in conversation %s",
                    tool_call_id,
                    "approved" if approved else "denied",
                    self.conversation_id,
                )
            return found

    async def execute_task(self, description: str) -> Turn:
        """Record that a scheduled task fired, as a synthesized user turn."""
        turn = Turn(
            role="user",
            parts=(TextPart(text=f"Running scheduled task: {description}"),),
            metadata={"created_at": datetime.now(timezone.utc).isoformat(), "scheduled": True},
        )
        async with _lock_for(self.conversation_id):
            await self.append(turn)
        logger.info("Scheduled task appended to conversation %s: %s", self.conversation_id, description)
        return turn
