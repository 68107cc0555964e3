"""Shared test fixtures."""

import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio

from src.chat.turns import TextPart, ToolCallPart, ToolResultPart, Turn
from src.storage.db import close_db, init_db, init_engine


@pytest_asyncio.fixture
async def db(tmp_path):
    """A fresh SQLite database with all tables created."""
    init_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db()
    yield
    await close_db()


def make_turn(role="user", text=None, parts=(), **overrides):
    """Create a Turn for testing."""
    if text is not None:
        parts = (TextPart(text=text), *parts)
    return Turn(role=role, parts=tuple(parts), **overrides)


def make_call(call_id="call-1", name="get_weather_information", approval=None, **input_):
    return ToolCallPart(tool_call_id=call_id, tool_name=name, input=input_ or {"city": "Paris"}, approval=approval)


def make_result(call_id="call-1", name="get_weather_information", output="ok", is_error=False):
    return ToolResultPart(tool_call_id=call_id, tool_name=name, output=output, is_error=is_error)


# ---------------------------------------------------------------------------
# Fake Anthropic client
# ---------------------------------------------------------------------------

def text_block(text):
    return SimpleNamespace(type="text", text=text)


def tool_use_block(call_id, name, input_=None):
    return SimpleNamespace(type="tool_use", id=call_id, name=name, input=input_ or {})


class FakeStream:
    """Mimics anthropic's AsyncMessageStream for one model call."""

    def __init__(self, deltas=(), tool_uses=(), delay=0.0, fail_after=None):
        self.deltas = list(deltas)
        self.tool_uses = list(tool_uses)
        self.delay = delay
        self.fail_after = fail_after
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True
        return False

    @property
    def text_stream(self):
        return self._texts()

    async def _texts(self):
        for i, delta in enumerate(self.deltas):
            if self.fail_after is not None and i >= self.fail_after:
                raise RuntimeError("upstream connection reset")
            if self.delay:
                await asyncio.sleep(self.delay)
            yield delta

    async def get_final_message(self):
        content = []
        if self.deltas:
            content.append(text_block("".join(self.deltas)))
        content.extend(self.tool_uses)
        stop_reason = "tool_use" if self.tool_uses else "end_turn"
        return SimpleNamespace(content=content, stop_reason=stop_reason)


class FakeMessages:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []
        self.streams = []

    def stream(self, **kwargs):
        self.calls.append(kwargs)
        if callable(self.responses):
            response = self.responses(len(self.calls))
        else:
            response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        self.streams.append(response)
        return response


class FakeClient:
    """Stand-in for anthropic.AsyncAnthropic.

    ``responses`` is a list of FakeStream (or exceptions) consumed one per
    model call, or a callable receiving the 1-based call number.
    """

    def __init__(self, responses):
        self.messages = FakeMessages(responses)


@pytest.fixture
def fake_client():
    return FakeClient
