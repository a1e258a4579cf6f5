"""Post-commit tasks -- best-effort side effects after an authoritative write.

A transition's database commit is the source of truth. Notifications and CRM
sync run afterwards as independent tasks: each is awaited in order, any
exception is logged and recorded, and no failure propagates to the caller or
affects the tasks after it.

Exports:
    PostCommitTask: Named zero-argument coroutine factory
    TaskOutcome: Result of one task
    run_post_commit_tasks: Execute tasks, never raises
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PostCommitTask:
    """A side effect to run once the write has committed."""

    name: str
    run: Callable[[], Awaitable[Any]]


class TaskOutcome(BaseModel):
    name: str
    ok: bool
    error: str | None = None


async def run_post_commit_tasks(
    tasks: Sequence[PostCommitTask], **log_context: Any
) -> list[TaskOutcome]:
    """Run every task, isolating failures.

    Args:
        tasks: Tasks in execution order.
        **log_context: Extra structlog keys (e.g. order_id) for failure logs.

    Returns:
        One TaskOutcome per task.
    """
    outcomes: list[TaskOutcome] = []
    for task in tasks:
        try:
            await task.run()
        except Exception as exc:
            logger.warning(
                "post_commit.task_failed",
                task=task.name,
                error=str(exc),
                exc_info=True,
                **log_context,
            )
            outcomes.append(TaskOutcome(name=task.name, ok=False, error=str(exc)))
        else:
            outcomes.append(TaskOutcome(name=task.name, ok=True))
    return outcomes
