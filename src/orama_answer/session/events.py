"""
session/events.py — State-Change Subscriptions

Listeners receive the FULL interaction sequence on every event, never a
diff. Each event carries a fresh tuple of snapshots, so a listener can keep
or compare what it received without it changing underneath.

Sync listeners run inline, in mutation order. A listener returning an
awaitable has it scheduled as a background task. Listener failures are
logged and never reach the answer pipeline.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from typing import Any, Callable

from orama_answer.observability.logger import get_logger
from orama_answer.session.types import Interaction
from orama_answer.session.utils import fire_and_forget

log = get_logger(__name__)

Listener = Callable[[tuple[Interaction, ...]], Any]


class Subscription:
    """Handle returned by subscribe(). cancel() is idempotent."""

    def __init__(self, registry: "SubscriberRegistry", key: int, listener: Listener):
        self._registry = registry
        self._key = key
        self.listener = listener

    @property
    def active(self) -> bool:
        return self._registry._has(self._key)

    def cancel(self) -> None:
        self._registry._remove(self._key)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.cancel()

    def __repr__(self) -> str:
        return f"<Subscription #{self._key} active={self.active}>"


class SubscriberRegistry:

    def __init__(self) -> None:
        self._listeners: dict[int, Listener] = {}
        self._counter = itertools.count(1)

    def subscribe(self, listener: Listener) -> Subscription:
        if not callable(listener):
            raise TypeError(f"listener must be callable, got {type(listener).__name__}")
        key = next(self._counter)
        self._listeners[key] = listener
        return Subscription(self, key, listener)

    def notify(self, interactions: tuple[Interaction, ...]) -> None:
        # Copy: a listener may cancel its own subscription while being notified.
        for key, listener in list(self._listeners.items()):
            try:
                result = listener(interactions)
            except Exception as e:
                log.warning(
                    "subscriber.failed",
                    subscription=key,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            if not inspect.isawaitable(result):
                continue
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                # Notified from sync code with no loop: nothing can run the listener.
                if inspect.iscoroutine(result):
                    result.close()
                log.warning("subscriber.skipped", subscription=key, reason="no running event loop")
                continue
            fire_and_forget(_await(result), label=f"subscriber_{key}")

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)

    def _has(self, key: int) -> bool:
        return key in self._listeners

    def _remove(self, key: int) -> None:
        self._listeners.pop(key, None)


async def _await(awaitable: Any) -> Any:
    return await awaitable
