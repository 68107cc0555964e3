"""Resolve tool calls left pending by a previous turn.

Human-in-the-loop tools stop the stream with an unanswered tool call. Before
the next model request every such call must either get a result or be
removed, since the model API rejects a tool call with no result.
"""

import logging
from typing import Optional

from src.chat.tools import ToolHandler, denied_result, run_tool
from src.chat.turns import ToolCallPart, Turn, resolved_call_ids

logger = logging.getLogger(__name__)


def _pending(part, resolved: set[str]) -> bool:
    return isinstance(part, ToolCallPart) and part.tool_call_id not in resolved


async def resolve_pending(
    history: list[Turn],
    executions: Optional[dict[str, ToolHandler]] = None,
) -> list[Turn]:
    """Return a new history in which no tool call is left without a result.

    Denied calls get an error result and approved calls with a registered
    handler are executed. Undecided calls and calls with no handler are
    stripped. Turns left empty by stripping are dropped. The input list and
    its turns are not modified.
    """
    executions = executions or {}
    resolved = resolved_call_ids(history)
    out: list[Turn] = []

    for turn in history:
        if not any(_pending(p, resolved) for p in turn.parts):
            out.append(turn)
            continue

        parts = []
        for part in turn.parts:
            if not _pending(part, resolved):
                parts.append(part)
                continue

            if part.approval is False:
                logger.info("Tool call %s (%s) denied by user", part.tool_call_id, part.tool_name)
                parts.extend([part, denied_result(part)])
            elif part.approval is True and part.tool_name in executions:
                result = await run_tool(executions[part.tool_name], part)
                parts.extend([part, result])
            else:
                logger.debug("Stripping unresolved tool call %s (%s)", part.tool_call_id, part.tool_name)

        if parts:
            out.append(turn.model_copy(update={"parts": tuple(parts)}))

    return out


def cleanup_messages(history: list[Turn]) -> list[Turn]:
    """Strip every tool call that has no result, without executing anything."""
    resolved = resolved_call_ids(history)
    out: list[Turn] = []
    for turn in history:
        if not any(_pending(p, resolved) for p in turn.parts):
            out.append(turn)
            continue
        parts = tuple(p for p in turn.parts if not _pending(p, resolved))
        if parts:
            out.append(turn.model_copy(update={"parts": parts}))
    return out
