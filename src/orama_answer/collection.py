"""
collection.py — Collection Manager

Request/response plumbing for one Orama collection: documents, hooks,
segments, triggers, system prompts and tools, plus the factory for answer
sessions bound to the same collection.

Every call is a single transport request. Write operations need the write
key; reads use the read key (as bearer or ``api-key`` query parameter,
depending on the endpoint).

Usage:
    async with CollectionManager.from_settings(get_settings()) as manager:
        await manager.insert({"id": "1", "title": "Orama"})
        hits = await manager.search({"term": "orama"})
        session = manager.create_answer_session(on_state_change=render)
"""

from __future__ import annotations

import json
import time
import weakref
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

from pydantic import BaseModel

from orama_answer.exceptions import ConfigurationError, InvalidStateError, ProtocolError
from orama_answer.observability.logger import get_logger
from orama_answer.profile import Profile
from orama_answer.session.answer import AnswerSession, AnswerSessionConfig
from orama_answer.session.events import Listener
from orama_answer.session.plan import ToolHandler
from orama_answer.session.types import LLMConfig, Message
from orama_answer.transport.client import OramaTransport, SecurityLevel, Transport
from orama_answer.utils import format_duration

if TYPE_CHECKING:
    from orama_answer.config.settings import Settings

log = get_logger(__name__)

W = SecurityLevel.WRITE
R = SecurityLevel.READ
RQ = SecurityLevel.READ_QUERY


class CollectionManager:

    def __init__(
        self,
        url: str,
        collection_id: str,
        read_api_key: Optional[str] = None,
        write_api_key: Optional[str] = None,
        *,
        transport: Optional[Transport] = None,
        profile: Optional[Profile] = None,
        max_prior_messages: int = 40,
    ):
        if not collection_id:
            raise ConfigurationError("A collection id is required")
        self.url = url
        self.collection_id = collection_id
        self._read_api_key = read_api_key
        self._max_prior_messages = max_prior_messages

        self._owns_transport = transport is None
        self._transport: Transport = transport or OramaTransport(
            url, read_api_key=read_api_key, write_api_key=write_api_key
        )
        self.profile = profile or Profile(self._transport)
        self._sessions: "weakref.WeakSet[AnswerSession]" = weakref.WeakSet()

    @classmethod
    def from_settings(cls, settings: "Settings", **kwargs: Any) -> "CollectionManager":
        """Build a manager (and its transport) from a Settings instance."""
        injected = kwargs.pop("transport", None)
        transport = injected or OramaTransport.from_settings(settings)
        manager = cls(
            settings.url or "",
            settings.collection_id or "",
            read_api_key=settings.read_api_key,
            write_api_key=settings.write_api_key,
            transport=transport,
            max_prior_messages=settings.answer.max_prior_messages,
            **kwargs,
        )
        manager._owns_transport = injected is None
        return manager

    async def __aenter__(self) -> "CollectionManager":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        for session in list(self._sessions):
            await session.aclose()
        if self._owns_transport and isinstance(self._transport, OramaTransport):
            await self._transport.aclose()

    def _path(self, suffix: str, collection_id: Optional[str] = None) -> str:
        return f"/v1/collections/{collection_id or self.collection_id}/{suffix}"

    # ─────────────────────────────────────────────────────────────────────────
    # Documents
    # ─────────────────────────────────────────────────────────────────────────

    async def insert(self, documents: Sequence[Mapping[str, Any]] | Mapping[str, Any]) -> None:
        if isinstance(documents, Mapping):
            documents = [documents]
        docs = [dict(d) for d in documents]
        await self._transport.request("POST", self._path("insert"), docs, W)
        log.info("collection.inserted", collection_id=self.collection_id, count=len(docs))

    async def delete(self, document_ids: Sequence[str] | str) -> None:
        if isinstance(document_ids, str):
            document_ids = [document_ids]
        ids = list(document_ids)
        await self._transport.request("POST", self._path("delete"), ids, W)
        log.info("collection.deleted", collection_id=self.collection_id, count=len(ids))

    async def search(self, params: Mapping[str, Any]) -> dict[str, Any]:
        """Run a search and attach client-measured ``elapsed`` timing."""
        start = time.perf_counter()
        result = await self._transport.request("POST", self._path("search"), dict(params), RQ)
        elapsed_ms = round((time.perf_counter() - start) * 1000)
        return {
            **(result or {}),
            "elapsed": {"raw": elapsed_ms, "formatted": format_duration(elapsed_ms)},
        }

    # ─────────────────────────────────────────────────────────────────────────
    # Answer sessions
    # ─────────────────────────────────────────────────────────────────────────

    def create_answer_session(
        self,
        *,
        llm_config: Optional[LLMConfig] = None,
        initial_messages: Optional[Sequence[Message]] = None,
        on_state_change: Optional[Listener] = None,
        tool_handlers: Optional[Mapping[str, ToolHandler]] = None,
    ) -> AnswerSession:
        if not self._read_api_key:
            raise ConfigurationError("A read API key is required to create an answer session")

        config = AnswerSessionConfig(
            url=self.url,
            collection_id=self.collection_id,
            read_api_key=self._read_api_key,
            llm_config=llm_config,
            initial_messages=list(initial_messages or []),
            max_prior_messages=self._max_prior_messages,
        )
        session = AnswerSession(
            config,
            transport=self._transport,
            profile=self.profile,
            on_state_change=on_state_change,
            tool_handlers=tool_handlers,
        )
        self._sessions.add(session)
        return session

    # ─────────────────────────────────────────────────────────────────────────
    # Hooks
    # ─────────────────────────────────────────────────────────────────────────

    async def insert_hook(
        self, name: str, code: str, collection_id: Optional[str] = None
    ) -> dict[str, str]:
        target = collection_id or self.collection_id
        await self._transport.request(
            "POST", self._path("hooks/create", target), {"name": name, "code": code}, W
        )
        return {"hook_id": name, "collection_id": target, "code": code}

    # ─────────────────────────────────────────────────────────────────────────
    # Segments
    # ─────────────────────────────────────────────────────────────────────────

    async def insert_segment(self, segment: Mapping[str, Any]) -> Any:
        return await self._transport.request("POST", self._path("segments/insert"), dict(segment), W)

    async def get_segment(self, segment_id: str) -> Any:
        return await self._transport.request(
            "GET", self._path("segments/get"), {"segment_id": segment_id}, RQ
        )

    async def get_all_segments(self) -> Any:
        return await self._transport.request("GET", self._path("segments/all"), None, RQ)

    async def delete_segment(self, segment_id: str) -> Any:
        return await self._transport.request(
            "POST", self._path("segments/delete"), {"id": segment_id}, W
        )

    async def update_segment(self, segment: Mapping[str, Any]) -> Any:
        return await self._transport.request("POST", self._path("segments/update"), dict(segment), W)

    # ─────────────────────────────────────────────────────────────────────────
    # Triggers
    # ─────────────────────────────────────────────────────────────────────────

    async def insert_trigger(self, trigger: Mapping[str, Any]) -> Any:
        if not trigger.get("segment_id"):
            raise InvalidStateError("A trigger cannot be inserted without a segment_id")
        return await self._transport.request("POST", self._path("triggers/insert"), dict(trigger), W)

    async def get_trigger(self, trigger_id: str) -> Any:
        return await self._transport.request(
            "GET", self._path("triggers/get"), {"trigger_id": trigger_id}, RQ
        )

    async def get_all_triggers(self) -> Any:
        return await self._transport.request("GET", self._path("triggers/all"), None, RQ)

    async def delete_trigger(self, trigger_id: str) -> Any:
        return await self._transport.request(
            "POST", self._path("triggers/delete"), {"id": trigger_id}, W
        )

    async def update_trigger(self, trigger: Mapping[str, Any]) -> Any:
        return await self._transport.request("POST", self._path("triggers/update"), dict(trigger), W)

    # ─────────────────────────────────────────────────────────────────────────
    # System prompts
    # ─────────────────────────────────────────────────────────────────────────

    async def insert_system_prompt(self, prompt: Mapping[str, Any]) -> Any:
        return await self._transport.request(
            "POST", self._path("system_prompts/insert"), dict(prompt), W
        )

    async def get_system_prompt(self, prompt_id: str) -> Any:
        return await self._transport.request(
            "GET", self._path("system_prompts/get"), {"system_prompt_id": prompt_id}, R
        )

    async def get_all_system_prompts(self) -> Any:
        return await self._transport.request("GET", self._path("system_prompts/all"), None, RQ)

    async def delete_system_prompt(self, prompt_id: str) -> Any:
        return await self._transport.request(
            "POST", self._path("system_prompts/delete"), {"id": prompt_id}, W
        )

    async def update_system_prompt(self, prompt: Mapping[str, Any]) -> Any:
        return await self._transport.request(
            "POST", self._path("system_prompts/update"), dict(prompt), W
        )

    async def validate_system_prompt(self, prompt: Mapping[str, Any]) -> Any:
        return await self._transport.request(
            "POST", self._path("system_prompts/validate"), dict(prompt), W
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Tools
    # ─────────────────────────────────────────────────────────────────────────

    async def insert_tool(self, tool: Mapping[str, Any]) -> Any:
        """
        Register a tool. ``parameters`` may be JSON text, a dict, or a
        pydantic model class (sent as its JSON schema).
        """
        body = dict(tool)
        body["parameters"] = _serialize_parameters(body.get("parameters"))
        return await self._transport.request("POST", self._path("tools/insert"), body, W)

    async def get_tool(self, tool_id: str) -> Any:
        return await self._transport.request(
            "GET", self._path("tools/get"), {"tool_id": tool_id}, RQ
        )

    async def get_all_tools(self) -> Any:
        return await self._transport.request("GET", self._path("tools/all"), None, RQ)

    async def delete_tool(self, tool_id: str) -> Any:
        return await self._transport.request("POST", self._path("tools/delete"), {"id": tool_id}, W)

    async def update_tool(self, tool: Mapping[str, Any]) -> Any:
        return await self._transport.request("POST", self._path("tools/update"), dict(tool), W)

    async def execute_tools(self, body: Mapping[str, Any]) -> dict[str, Any]:
        """Ask the server which tools to run; each result's arguments are decoded from JSON."""
        response = await self._transport.request("POST", self._path("tools/run"), dict(body), R)
        results = (response or {}).get("results")
        if not results:
            return {"results": None}

        parsed = []
        for result in results:
            try:
                arguments = json.loads(result["arguments"])
            except (KeyError, TypeError, ValueError) as e:
                raise ProtocolError(
                    f"Tool result for '{result.get('name')}' has unreadable arguments: {e}"
                ) from e
            parsed.append({"name": result.get("name"), "arguments": arguments})
        return {"results": parsed}

    # ─────────────────────────────────────────────────────────────────────────
    # Profile
    # ─────────────────────────────────────────────────────────────────────────

    def get_identity(self) -> Optional[str]:
        return self.profile.get_identity()

    def get_user_id(self) -> str:
        return self.profile.get_user_id()

    def get_alias(self) -> Optional[str]:
        return self.profile.get_alias()

    async def identify(self, identity: str) -> None:
        await self.profile.identify(identity)

    async def alias(self, alias: str) -> None:
        await self.profile.alias(alias)

    def reset(self) -> None:
        """Start over as a new anonymous visitor and clear every live answer session."""
        self.profile.reset()
        sessions = list(self._sessions)
        for session in sessions:
            session.clear()
        log.info("collection.reset", collection_id=self.collection_id, sessions_cleared=len(sessions))

    def __repr__(self) -> str:
        return f"<CollectionManager {self.collection_id} @ {self.url}>"


def _serialize_parameters(parameters: Any) -> str:
    if isinstance(parameters, str):
        return parameters
    if isinstance(parameters, type) and issubclass(parameters, BaseModel):
        return json.dumps(parameters.model_json_schema())
    if isinstance(parameters, Mapping):
        return json.dumps(dict(parameters))
    raise InvalidStateError(
        "Tool parameters must be JSON text, a dict, or a pydantic model class; "
        f"got {type(parameters).__name__}"
    )
