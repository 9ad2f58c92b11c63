"""
Shared test fixtures.

  - Isolates ORAMA_* environment variables and disables .env loading so
    Settings() behaves as if nothing is configured unless a test says so.
  - FakeTransport: in-memory stand-in for the HTTP transport. Responses and
    stream scripts are queued per path; every call is recorded.

Stream scripts are lists whose items are:
    str             yielded as a fragment
    dict            JSON-encoded and yielded as a fragment
    BaseException   raised at that point of the stream
    asyncio.Event   the stream waits for it before continuing
"""

from __future__ import annotations

import asyncio
import inspect
import json
from dataclasses import dataclass
from typing import Any

import pytest

from orama_answer.transport.client import SecurityLevel

_ORAMA_ENV_VARS = [
    "ORAMA_URL",
    "ORAMA_COLLECTION_ID",
    "ORAMA_READ_API_KEY",
    "ORAMA_WRITE_API_KEY",
    "ORAMA_ANSWER_CONFIG",
]


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove ORAMA_* env vars and stop Settings from reading a local .env file."""
    for var in _ORAMA_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import orama_answer.config.settings as settings_module
    patched_config = {**settings_module.Settings.model_config, "env_file": None}
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    monkeypatch.setattr(settings_module, "_singleton", None)


# ─────────────────────────────────────────────────────────────────────────────
# FakeTransport
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class Call:
    method: str
    path: str
    body: Any
    security_level: SecurityLevel


class FakeTransport:

    def __init__(self) -> None:
        self.requests: list[Call] = []
        self.streams: list[Call] = []
        self.streams_closed = 0
        self._responses: dict[str, list[Any]] = {}
        self._scripts: dict[str, list[list[Any]]] = {}

    # -- scripting -----------------------------------------------------------

    def on_request(self, path: str, *responses: Any) -> "FakeTransport":
        """Queue responses for a path. The last one repeats once the queue drains."""
        self._responses.setdefault(path, []).extend(responses)
        return self

    def on_stream(self, path: str, script: list[Any]) -> "FakeTransport":
        """Queue one stream script for a path (consumed in order, one per call)."""
        self._scripts.setdefault(path, []).append(list(script))
        return self

    # -- Transport interface -------------------------------------------------

    async def request(self, method, path, body=None, security_level=SecurityLevel.READ):
        self.requests.append(Call(method, path, body, SecurityLevel(security_level)))
        queue = self._responses.get(path)
        if not queue:
            return None
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(body)
            if inspect.isawaitable(response):
                response = await response
        return response

    async def stream(self, method, path, body=None, security_level=SecurityLevel.READ):
        self.streams.append(Call(method, path, body, SecurityLevel(security_level)))
        scripts = self._scripts.get(path)
        script = scripts.pop(0) if scripts else []
        try:
            for item in script:
                if isinstance(item, asyncio.Event):
                    await item.wait()
                    continue
                if isinstance(item, BaseException):
                    raise item
                await asyncio.sleep(0)
                yield json.dumps(item) if isinstance(item, dict) else item
        finally:
            self.streams_closed += 1

    # -- helpers -------------------------------------------------------------

    def requests_to(self, path: str) -> list[Call]:
        return [c for c in self.requests if c.path == path]


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


async def _wait_until(predicate, *, attempts: int = 200) -> None:
    """Yield to the event loop until predicate() is true."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def wait_until():
    return _wait_until
