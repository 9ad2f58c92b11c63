"""
session/utils.py — Shared Session Utilities
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from orama_answer.observability.logger import get_logger

log = get_logger(__name__)

# Strong references so the GC cannot reap a task mid-flight.
# Tasks remove themselves in the done-callback.
_BG_TASKS: set[asyncio.Task] = set()


def fire_and_forget(coro: Coroutine[Any, Any, Any], label: str = "bg_task") -> asyncio.Task:
    """
    Schedule a coroutine as a background asyncio task.

    Unlike a bare asyncio.create_task(), this holds a strong reference until
    the task finishes and logs any exception it raised instead of losing it.
    """
    task = asyncio.create_task(coro)
    _BG_TASKS.add(task)

    def _on_done(t: asyncio.Task) -> None:
        _BG_TASKS.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            log.warning(
                "bg_task.failed",
                label=label,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    task.add_done_callback(_on_done)
    return task
