"""
transport/client.py — Async HTTP Transport

Thin async client for the Orama REST API. Everything above this layer
(answer sessions, plan execution, collection plumbing) consumes exactly
two capabilities:

    request(method, path, body, security_level) -> JSON
    stream(method, path, body, security_level)  -> async iterator of text fragments

Security levels pick the credential:
    write       Authorization: Bearer <write key>
    read        Authorization: Bearer <read key>
    read-query  ?api-key=<read key>

request() retries transient failures (network errors, 429, 5xx) with
exponential backoff. stream() never retries: a stream that fails
mid-flight has already delivered fragments to the caller.

Usage:
    async with OramaTransport("https://api.example.com", read_api_key="...") as t:
        hits = await t.request("POST", "/v1/collections/abc/search", {"term": "x"},
                               SecurityLevel.READ_QUERY)
        async for fragment in t.stream("POST", "/v1/collections/abc/answer", body):
            ...
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any, Optional, Protocol

import httpx

from orama_answer.exceptions import ConfigurationError, TransportError
from orama_answer.observability.logger import get_logger

log = get_logger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}
_SSE_DONE = "[DONE]"
_JSON_LINE_TYPES = {"application/json", "application/x-ndjson", "application/jsonl"}


class SecurityLevel(str, Enum):
    READ = "read"
    READ_QUERY = "read-query"
    WRITE = "write"


class Transport(Protocol):
    """The collaborator interface the session core depends on."""

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        security_level: SecurityLevel = SecurityLevel.READ,
    ) -> Any: ...

    def stream(
        self,
        method: str,
        path: str,
        body: Any = None,
        security_level: SecurityLevel = SecurityLevel.READ,
    ) -> AsyncIterator[str]: ...


class OramaTransport:
    """
    httpx-backed transport. Async context manager — closes its client on exit
    unless the client was injected by the caller.
    """

    def __init__(
        self,
        base_url: str,
        *,
        read_api_key: Optional[str] = None,
        write_api_key: Optional[str] = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        user_agent: str = "orama-answer/1.0",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._read_api_key = read_api_key
        self._write_api_key = write_api_key
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._user_agent = user_agent
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings, **overrides: Any) -> "OramaTransport":
        """Build a transport from a Settings instance."""
        kwargs: dict[str, Any] = {
            "read_api_key": settings.read_api_key,
            "write_api_key": settings.write_api_key,
            "timeout": settings.transport.timeout_seconds,
            "max_attempts": settings.transport.max_attempts,
            "base_delay": settings.transport.base_delay,
            "max_delay": settings.transport.max_delay,
            "user_agent": settings.transport.user_agent,
        }
        kwargs.update(overrides)
        return cls(settings.url or "", **kwargs)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> "OramaTransport":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ─────────────────────────────────────────────────────────────────────────
    # Request building
    # ─────────────────────────────────────────────────────────────────────────

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _prepare(
        self, method: str, path: str, body: Any, security_level: SecurityLevel
    ) -> dict[str, Any]:
        """Resolve URL, credentials and payload. Raises ConfigurationError before any I/O."""
        security_level = SecurityLevel(security_level)
        headers = {"User-Agent": self._user_agent}
        params: dict[str, Any] = {}

        if security_level is SecurityLevel.WRITE:
            if not self._write_api_key:
                raise ConfigurationError(f"A write API key is required for {method} {path}")
            headers["Authorization"] = f"Bearer {self._write_api_key}"
        else:
            if not self._read_api_key:
                raise ConfigurationError(f"A read API key is required for {method} {path}")
            if security_level is SecurityLevel.READ_QUERY:
                params["api-key"] = self._read_api_key
            else:
                headers["Authorization"] = f"Bearer {self._read_api_key}"

        kwargs: dict[str, Any] = {"headers": headers}
        if method.upper() == "GET":
            # GET bodies are flattened into the query string.
            if isinstance(body, dict):
                params.update({k: v for k, v in body.items() if v is not None})
        elif body is not None:
            kwargs["json"] = body
        if params:
            kwargs["params"] = params
        return kwargs

    # ─────────────────────────────────────────────────────────────────────────
    # JSON request / response
    # ─────────────────────────────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        security_level: SecurityLevel = SecurityLevel.READ,
    ) -> Any:
        """
        Send a JSON request and return the decoded body (None when empty).

        Retries network errors, 429 and 5xx up to max_attempts with
        min(base_delay * 2^attempt + jitter, max_delay) backoff; a
        Retry-After header takes precedence. Other 4xx are permanent.
        """
        kwargs = self._prepare(method, path, body, security_level)
        url = self._base_url + path
        last_error: TransportError | None = None

        for attempt in range(self._max_attempts):
            retry_after: Optional[float] = None
            try:
                response = await self._http().request(method.upper(), url, **kwargs)
            except httpx.HTTPError as e:
                last_error = TransportError(
                    f"{method.upper()} {path} failed: {type(e).__name__}: {e}", path=path
                )
            else:
                if response.status_code < 400:
                    return _decode_json(response, path)
                last_error = TransportError(
                    f"{method.upper()} {path} returned {response.status_code}: "
                    f"{response.text[:500]}",
                    status_code=response.status_code,
                    path=path,
                )
                if response.status_code not in _RETRYABLE_STATUS:
                    raise last_error
                retry_after = _parse_retry_after(response.headers.get("retry-after"))

            if attempt == self._max_attempts - 1:
                break

            if retry_after is not None:
                delay = min(retry_after, self._max_delay)
            else:
                jitter = random.uniform(0, self._base_delay / 2)
                delay = min(self._base_delay * (2 ** attempt) + jitter, self._max_delay)

            log.warning(
                "transport.retrying",
                path=path,
                attempt=attempt + 1,
                max_attempts=self._max_attempts,
                delay_s=round(delay, 2),
                error=str(last_error),
            )
            await asyncio.sleep(delay)

        assert last_error is not None
        raise last_error

    # ─────────────────────────────────────────────────────────────────────────
    # Streaming
    # ─────────────────────────────────────────────────────────────────────────

    async def stream(
        self,
        method: str,
        path: str,
        body: Any = None,
        security_level: SecurityLevel = SecurityLevel.READ,
    ) -> AsyncIterator[str]:
        """
        Send a request and yield the body as text fragments in arrival order.

        text/event-stream bodies yield one fragment per SSE event (the joined
        ``data:`` lines, ``[DONE]`` terminates). JSON and NDJSON bodies yield one
        fragment per non-empty line, so a frame never spans two fragments. Any
        other content type yields raw decoded chunks. Closing the iterator releases the connection.
        """
        kwargs = self._prepare(method, path, body, security_level)
        kwargs["headers"]["Accept"] = "text/event-stream"
        url = self._base_url + path

        log.debug("transport.stream_open", method=method.upper(), path=path)
        try:
            async with self._http().stream(method.upper(), url, **kwargs) as response:
                if response.status_code >= 400:
                    detail = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        f"{method.upper()} {path} returned {response.status_code}: {detail[:500]}",
                        status_code=response.status_code,
                        path=path,
                    )
                content_type = response.headers.get("content-type", "")
                if "text/event-stream" in content_type:
                    async for data in iter_sse_data(response.aiter_lines()):
                        yield data
                elif _is_json_lines(content_type):
                    async for line in response.aiter_lines():
                        if line.strip():
                            yield line
                else:
                    async for chunk in response.aiter_text():
                        if chunk:
                            yield chunk
        except httpx.HTTPError as e:
            raise TransportError(
                f"{method.upper()} {path} stream failed: {type(e).__name__}: {e}", path=path
            ) from e

    def __repr__(self) -> str:
        return f"<OramaTransport {self._base_url}>"


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """
    Reassemble Server-Sent Events from a line iterator and yield each
    event's data payload. Comments and non-data fields are ignored.
    """
    buffer: list[str] = []
    async for line in lines:
        if line == "":
            if buffer:
                data = "\n".join(buffer)
                buffer = []
                if data == _SSE_DONE:
                    return
                yield data
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field != "data":
            continue
        if value.startswith(" "):
            value = value[1:]
        buffer.append(value)

    if buffer:
        data = "\n".join(buffer)
        if data != _SSE_DONE:
            yield data


def _is_json_lines(content_type: str) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type in _JSON_LINE_TYPES


def _decode_json(response: httpx.Response, path: str) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as e:
        raise TransportError(f"{path} returned a non-JSON body: {e}", path=path) from e


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
