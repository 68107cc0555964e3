"""Tests for built-in tools and tool execution."""

from datetime import datetime, timezone

import pytest

from src.chat.prompts import SYSTEM_INSTRUCTIONS, ScheduledTask, build_schedule_block, build_system_prompt
from src.chat.tools import EXECUTIONS, TOOLS, denied_result, get_local_time, run_tool
from tests.conftest import make_call


class TestToolRegistry:
    def test_weather_needs_confirmation(self):
        assert TOOLS["get_weather_information"].requires_confirmation is True
        assert "get_weather_information" in EXECUTIONS

    def test_local_time_runs_automatically(self):
        assert TOOLS["get_local_time"].requires_confirmation is False

    def test_model_tool_shape(self):
        spec = TOOLS["get_local_time"].to_model_tool()
        assert spec["name"] == "get_local_time"
        assert spec["input_schema"]["required"] == ["timezone"]


class TestGetLocalTime:
    def test_known_timezone(self):
        assert "UTC" in get_local_time({"timezone": "UTC"})

    def test_unknown_timezone_raises(self):
        with pytest.raises(ValueError, match="Unknown timezone"):
            get_local_time({"timezone": "Mars/Olympus_Mons"})


class TestRunTool:
    @pytest.mark.asyncio
    async def test_async_handler(self):
        result = await run_tool(EXECUTIONS["get_weather_information"], make_call("c1", city="Lima"))
        assert result.tool_call_id == "c1"
        assert result.output == "The weather in Lima is sunny"
        assert result.is_error is False

    @pytest.mark.asyncio
    async def test_exception_becomes_error_result(self):
        result = await run_tool(get_local_time, make_call("c2", name="get_local_time", timezone="Nowhere/Land"))
        assert result.is_error is True
        assert result.output.startswith("Error: Unknown timezone")

    def test_denied_result(self):
        result = denied_result(make_call("c3"))
        assert result.tool_call_id == "c3"
        assert result.output == "Error: User denied access to tool execution"


class TestPrompts:
    NOW = datetime(2026, 2, 1, 9, 30, tzinfo=timezone.utc)

    def test_empty_schedule(self):
        block = build_schedule_block(self.NOW)
        assert block.startswith("Current date and time: 2026-02-01T09:30:00+00:00")
        assert "No tasks are currently scheduled." in block

    def test_tasks_sorted_by_time(self):
        tasks = [
            ScheduledTask(id="b", description="Later", when=datetime(2026, 2, 3, tzinfo=timezone.utc)),
            ScheduledTask(id="a", description="Sooner", when=datetime(2026, 2, 2, tzinfo=timezone.utc)),
        ]
        block = build_schedule_block(self.NOW, tasks)
        assert block.index("Sooner") < block.index("Later")

    def test_system_prompt_combines_instructions_and_schedule(self):
        prompt = build_system_prompt(self.NOW)
        assert prompt.startswith(SYSTEM_INSTRUCTIONS)
        assert "2026-02-01T09:30:00+00:00" in prompt
