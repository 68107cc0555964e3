"""System prompt assembly for the chat agent."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

SYSTEM_INSTRUCTIONS = """You are a helpful assistant that can do various tasks.

You can look up the local time for a timezone and show the weather for a city.
Weather lookups need the user's confirmation before they run; ask for the city
if the user did not name one.

If the user asks to schedule a task, describe the task and when it should run
so the scheduler can pick it up."""


@dataclass(frozen=True)
class ScheduledTask:
    """A deferred task as reported by the external scheduler."""

    id: str
    description: str
    when: datetime


def build_schedule_block(now: datetime, scheduled_tasks: Optional[list[ScheduledTask]] = None) -> str:
    """Describe the current time and the scheduled tasks as of ``now``."""
    lines = [f"Current date and time: {now.isoformat()}"]
    if scheduled_tasks:
        lines.append("Scheduled tasks:")
        for task in sorted(scheduled_tasks, key=lambda t: t.when):
            lines.append(f"- [{task.id}] {task.when.isoformat()}: {task.description}")
    else:
        lines.append("No tasks are currently scheduled.")
    return "\n".join(lines)


def build_system_prompt(
    now: Optional[datetime] = None,
    scheduled_tasks: Optional[list[ScheduledTask]] = None,
) -> str:
    """Static instructions plus a snapshot of the schedule taken at call time."""
    now = now or datetime.now(timezone.utc)
    return f"{SYSTEM_INSTRUCTIONS}\n\n{build_schedule_block(now, scheduled_tasks)}"
