"""Tool definitions available to the chat model.

A tool with an ``execute`` handler runs automatically when the model calls
it. A tool without one needs a human decision; its handler lives in
``EXECUTIONS`` and only runs once the call is approved.
"""

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.chat.turns import ToolCallPart, ToolResultPart
from src.errors import ToolExecutionError

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict], Union[Any, Awaitable[Any]]]

DENIED_MESSAGE = "Error: User denied access to tool execution"


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    input_schema: dict
    execute: Optional[ToolHandler] = None

    @property
    def requires_confirmation(self) -> bool:
        return self.execute is None

    def to_model_tool(self) -> dict:
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}


async def run_tool(handler: ToolHandler, call: ToolCallPart) -> ToolResultPart:
    """Run a tool handler and wrap its outcome as a tool-result part.

    Handler failures are returned as error results so the model can react.
    """
    try:
        output = handler(call.input)
        if inspect.isawaitable(output):
            output = await output
    except Exception as e:
        err = ToolExecutionError(call.tool_name, e)
        logger.warning("%s", err.message)
        return ToolResultPart(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            output=f"Error: {e}",
            is_error=True,
        )

    return ToolResultPart(tool_call_id=call.tool_call_id, tool_name=call.tool_name, output=output)


def denied_result(call: ToolCallPart) -> ToolResultPart:
    return ToolResultPart(
        tool_call_id=call.tool_call_id,
        tool_name=call.tool_name,
        output=DENIED_MESSAGE,
        is_error=True,
    )


# --- Built-in tools ---


def get_local_time(args: dict) -> str:
    tz_name = args.get("timezone") or "UTC"
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {tz_name}")
    return datetime.now(tz).strftime("%Y-%m-%d %H:%M %Z")


async def get_weather_information(args: dict) -> str:
    city = args.get("city", "your area")
    return f"The weather in {city} is sunny"


get_weather_tool = Tool(
    name="get_weather_information",
    description="Show the weather in a given city to the user",
    input_schema={
        "type": "object",
        "properties": {"city": {"type": "string"}},
        "required": ["city"],
    },
)

get_local_time_tool = Tool(
    name="get_local_time",
    description="Get the local time for a specified IANA timezone, e.g. Europe/Paris",
    input_schema={
        "type": "object",
        "properties": {"timezone": {"type": "string"}},
        "required": ["timezone"],
    },
    execute=get_local_time,
)

TOOLS: dict[str, Tool] = {t.name: t for t in (get_weather_tool, get_local_time_tool)}

# Handlers for tools that run only after human confirmation
EXECUTIONS: dict[str, ToolHandler] = {
    "get_weather_information": get_weather_information,
}
