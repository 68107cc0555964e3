"""Streamed model responses with tool execution interleaved into the stream."""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Literal, Optional, Union

import anthropic
from pydantic import BaseModel

from src.chat.continuation import cleanup_messages
from src.chat.tools import Tool, run_tool
from src.chat.turns import TextPart, ToolCallPart, ToolResultPart, Turn, to_model_messages
from src.config import get_settings
from src.errors import MissingSecretError, ModelProviderError

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 10

FinishCallback = Callable[[Turn], Union[None, Awaitable[None]]]


@dataclass
class StreamConfig:
    model: str
    tools: dict[str, Tool] = field(default_factory=dict)
    system_prompt: str = ""
    max_steps: int = DEFAULT_MAX_STEPS
    max_tokens: int = 4096


class OutputChunk(BaseModel):
    type: Literal["text-delta", "tool-call", "tool-result", "finish", "error"]
    step: Optional[int] = None
    text: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    input: Optional[dict] = None
    output: Any = None
    is_error: Optional[bool] = None
    finish_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.type in ("finish", "error")


class _Cancelled(Exception):
    pass


_DONE = object()


async def _pull(iterator):
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _DONE


async def _next_or_cancel(iterator, cancel_event: Optional[asyncio.Event]):
    """Await the next item, giving up as soon as ``cancel_event`` is set."""
    if cancel_event is None:
        return await _pull(iterator)
    if cancel_event.is_set():
        raise _Cancelled()

    next_task = asyncio.ensure_future(_pull(iterator))
    cancel_task = asyncio.ensure_future(cancel_event.wait())
    done, _ = await asyncio.wait({next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    if next_task in done:
        cancel_task.cancel()
        return next_task.result()

    next_task.cancel()
    await asyncio.gather(next_task, return_exceptions=True)
    raise _Cancelled()


def _get_client() -> anthropic.AsyncAnthropic:
    settings = get_settings()
    if not settings.anthropic.api_key:
        raise MissingSecretError("ANTHROPIC_API_KEY")
    return anthropic.AsyncAnthropic(api_key=settings.anthropic.api_key)


def _block_to_dict(block) -> Optional[dict]:
    if block.type == "text":
        return {"type": "text", "text": block.text}
    if block.type == "tool_use":
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": dict(block.input or {})}
    return None


async def _notify(on_finish: Optional[FinishCallback], turn: Turn) -> None:
    if on_finish is None:
        return
    result = on_finish(turn)
    if inspect.isawaitable(result):
        await result


async def stream_response(
    history: list[Turn],
    config: StreamConfig,
    on_finish: Optional[FinishCallback] = None,
    cancel_event: Optional[asyncio.Event] = None,
    client: Optional[Any] = None,
) -> AsyncIterator[OutputChunk]:
    """Stream one assistant response for ``history``.

    Yields text deltas and tool events in generation order and always ends
    with exactly one terminal chunk (``finish`` or ``error``). Tools with an
    execute handler run inline and the model is called again with their
    results, for at most ``config.max_steps`` model calls. A call to a tool
    that needs confirmation ends the stream with that call pending.

    ``on_finish`` receives the assembled assistant turn once, before the
    terminal chunk. History itself is never modified.
    """
    messages = to_model_messages(cleanup_messages(history))
    parts: list = []
    text: list[str] = []
    finish_reason: Optional[str] = None
    error: Optional[ModelProviderError] = None
    step = 0

    try:
        client = client or _get_client()
        while step < config.max_steps:
            step += 1
            request = {
                "model": config.model,
                "max_tokens": config.max_tokens,
                "messages": messages,
            }
            if config.system_prompt:
                request["system"] = config.system_prompt
            if config.tools:
                request["tools"] = [t.to_model_tool() for t in config.tools.values()]

            async with client.messages.stream(**request) as stream:
                iterator = stream.text_stream.__aiter__()
                while True:
                    delta = await _next_or_cancel(iterator, cancel_event)
                    if delta is _DONE:
                        break
                    if not delta:
                        continue
                    text.append(delta)
                    yield OutputChunk(type="text-delta", step=step, text=delta)
                final = await stream.get_final_message()

            if text:
                parts.append(TextPart(text="".join(text)))
                text = []

            content = [b for b in (_block_to_dict(block) for block in final.content) if b]
            calls = [
                ToolCallPart(tool_call_id=b["id"], tool_name=b["name"], input=b["input"])
                for b in content
                if b["type"] == "tool_use"
            ]
            if not calls:
                finish_reason = "stop"
                break

            messages = [*messages, {"role": "assistant", "content": content}]
            results = []
            awaiting_confirmation = False
            for call in calls:
                parts.append(call)
                yield OutputChunk(
                    type="tool-call",
                    step=step,
                    tool_call_id=call.tool_call_id,
                    tool_name=call.tool_name,
                    input=call.input,
                )

                tool = config.tools.get(call.tool_name)
                if tool is not None and tool.requires_confirmation:
                    awaiting_confirmation = True
                    continue

                if tool is None:
                    result = ToolResultPart(
                        tool_call_id=call.tool_call_id,
                        tool_name=call.tool_name,
                        output=f"Error: unknown tool {call.tool_name}",
                        is_error=True,
                    )
                else:
                    if cancel_event is not None and cancel_event.is_set():
                        raise _Cancelled()
                    result = await run_tool(tool.execute, call)

                parts.append(result)
                results.append(result)
                yield OutputChunk(
                    type="tool-result",
                    step=step,
                    tool_call_id=result.tool_call_id,
                    tool_name=result.tool_name,
                    output=result.output,
                    is_error=result.is_error,
                )

            if awaiting_confirmation:
                finish_reason = "tool-confirmation"
                break

            messages = [*messages, *to_model_messages([Turn(role="tool", parts=tuple(results))])]
        else:
            finish_reason = "max-steps"
            logger.warning("Chat stream stopped after %d steps", config.max_steps)

    except _Cancelled:
        finish_reason = "cancelled"
        logger.info("Chat stream cancelled at step %d", step)
    except MissingSecretError as e:
        error = ModelProviderError(e.message, e.detail)
        logger.error("Chat stream not started: %s", e.message)
    except Exception as e:
        error = ModelProviderError(f"Model call failed: {e}")
        logger.error("Chat stream failed at step %d: %s", step, e)

    # Partial text from an interrupted step is kept, never retracted
    if text:
        parts.append(TextPart(text="".join(text)))

    if parts:
        await _notify(on_finish, Turn(role="assistant", parts=tuple(parts)))

    if error is not None:
        yield OutputChunk(type="error", step=step, error=error.message)
    else:
        yield OutputChunk(type="finish", step=step, finish_reason=finish_reason)
