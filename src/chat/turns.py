"""Conversation turns and their conversion to Anthropic message format."""

import json
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def generate_id() -> str:
    return uuid.uuid4().hex


class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ToolCallPart(BaseModel):
    """A model request to invoke a tool.

    ``approval`` records a human decision for tools that need confirmation:
    None while undecided, True when approved, False when denied.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: dict = Field(default_factory=dict)
    approval: Optional[bool] = None


class ToolResultPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    output: Any = None
    is_error: bool = False


Part = Annotated[Union[TextPart, ToolCallPart, ToolResultPart], Field(discriminator="type")]


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    role: Literal["user", "assistant", "tool"]
    parts: tuple[Part, ...] = ()
    metadata: dict = Field(default_factory=dict)

    @classmethod
    def user(cls, text: str, **metadata) -> "Turn":
        """Build a user turn stamped with its creation time."""
        meta = {"created_at": datetime.now(timezone.utc).isoformat(), **metadata}
        return cls(role="user", parts=(TextPart(text=text),), metadata=meta)

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def tool_results(self) -> list[ToolResultPart]:
        return [p for p in self.parts if isinstance(p, ToolResultPart)]


def resolved_call_ids(history: list[Turn]) -> set[str]:
    """Ids of every tool call that has a matching result anywhere in history."""
    return {r.tool_call_id for turn in history for r in turn.tool_results}


def _result_content(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)


def _tool_result_block(part: ToolResultPart) -> dict:
    block = {
        "type": "tool_result",
        "tool_use_id": part.tool_call_id,
        "content": _result_content(part.output),
    }
    if part.is_error:
        block["is_error"] = True
    return block


def to_model_messages(history: list[Turn]) -> list[dict]:
    """Convert turns to Anthropic Messages API format.

    Tool results recorded inside an assistant turn are split out into the
    following user message, as the API requires. Consecutive messages with the
    same role are merged.
    """
    messages: list[dict] = []

    def emit(role: str, content: list[dict]) -> None:
        if not content:
            return
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].extend(content)
        else:
            messages.append({"role": role, "content": list(content)})

    for turn in history:
        if turn.role in ("user", "tool"):
            content = []
            for part in turn.parts:
                if isinstance(part, TextPart) and part.text:
                    content.append({"type": "text", "text": part.text})
                elif isinstance(part, ToolResultPart):
                    content.append(_tool_result_block(part))
            emit("user", content)
            continue

        blocks: list[dict] = []
        results: list[dict] = []
        for part in turn.parts:
            if isinstance(part, ToolResultPart):
                results.append(_tool_result_block(part))
                continue
            if results:
                emit("assistant", blocks)
                emit("user", results)
                blocks, results = [], []
            if isinstance(part, TextPart) and part.text:
                blocks.append({"type": "text", "text": part.text})
            elif isinstance(part, ToolCallPart):
                blocks.append(
                    {"type": "tool_use", "id": part.tool_call_id, "name": part.tool_name, "input": part.input}
                )
        emit("assistant", blocks)
        emit("user", results)

    return messages
