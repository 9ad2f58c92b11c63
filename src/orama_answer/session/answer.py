"""
session/answer.py — Answer Session

The public orchestrator for conversational answers.

One ask() = one turn:
  1. Wait for every earlier turn to finish (FIFO lock)
  2. Create the Interaction (pending), append it, notify
  3. Move it to streaming, notify
  4. Stream POST /v1/collections/{id}/answer
       text / sources frames → mutate the interaction, notify
       plan frame            → hand over to the PlanExecutor
  5. Resolve to done / error (or done + aborted), notify

Pipeline failures never escape ask(): they land on Interaction.error with
state ``error``. Caller misuse (blank query, missing read key, regenerating
with no history) raises synchronously.

Each turn's pipeline runs in its own task so abort() can cancel it at any
suspension point. Cancelling the task closes the in-flight HTTP stream.

Usage:
    async with AnswerSession(config, on_state_change=render) as session:
        final = await session.ask("What is Orama?")
        async with aclosing(session.ask_stream("And how does it rank?")) as stream:
            async for snap in stream:
                print(snap.response)
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter
from contextlib import aclosing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Mapping, Optional

from pydantic import BaseModel, Field

from orama_answer.exceptions import (
    AnswerError,
    ConfigurationError,
    InvalidStateError,
    ProtocolError,
    TransportError,
)
from orama_answer.observability.logger import bind_session, clear_session, get_logger
from orama_answer.session.events import Listener, SubscriberRegistry, Subscription
from orama_answer.session.plan import PlanExecutor, ToolHandler
from orama_answer.session.protocol import (
    DoneFrame,
    ErrorFrame,
    PlanFrame,
    SourcesFrame,
    TextFrame,
    decode_frame,
)
from orama_answer.session.store import InteractionStore
from orama_answer.session.types import (
    Interaction,
    InteractionState,
    LLMConfig,
    Message,
    PlanDescriptor,
)
from orama_answer.transport.client import OramaTransport, SecurityLevel, Transport
from orama_answer.utils import create_random_string

if TYPE_CHECKING:
    from orama_answer.config.settings import Settings
    from orama_answer.profile import Profile

log = get_logger(__name__)


class AnswerSessionConfig(BaseModel):
    url: str
    collection_id: str = Field(..., min_length=1)
    read_api_key: Optional[str] = None
    llm_config: Optional[LLMConfig] = None
    initial_messages: list[Message] = Field(default_factory=list)
    max_prior_messages: int = Field(default=40, ge=0)

    @classmethod
    def from_settings(cls, settings: "Settings", **overrides: Any) -> "AnswerSessionConfig":
        values: dict[str, Any] = {
            "url": settings.url or "",
            "collection_id": settings.collection_id or "",
            "read_api_key": settings.read_api_key,
            "max_prior_messages": settings.answer.max_prior_messages,
        }
        if settings.has_llm_selection:
            values["llm_config"] = LLMConfig(
                provider=settings.answer.llm_provider,
                model=settings.answer.llm_model,
            )
        values.update(overrides)
        return cls(**values)


@dataclass
class _ActiveTurn:
    interaction: Interaction
    on_update: Optional[Callable[[Interaction], None]] = None
    task: Optional[asyncio.Task] = None
    abort_requested: bool = False


class AnswerSession:
    """
    Conversational answer session over one collection.

    Listeners (on_state_change and subscribe()) always receive the full
    tuple of interaction snapshots, never a diff.
    """

    def __init__(
        self,
        config: AnswerSessionConfig,
        *,
        transport: Optional[Transport] = None,
        profile: Optional["Profile"] = None,
        on_state_change: Optional[Listener] = None,
        tool_handlers: Optional[Mapping[str, ToolHandler]] = None,
    ):
        if not config.read_api_key:
            raise ConfigurationError("A read API key is required to create an answer session")

        self.id = f"ans_{uuid.uuid4().hex[:12]}"
        self.conversation_id = create_random_string(32)
        self._config = config
        self._profile = profile
        self._visitor_id = create_random_string(32)
        self._tool_handlers = dict(tool_handlers or {})

        self._owns_transport = transport is None
        self._transport: Transport = transport or OramaTransport(
            config.url, read_api_key=config.read_api_key
        )

        self._store = InteractionStore()
        self._subscribers = SubscriberRegistry()
        self._lock = asyncio.Lock()
        self._active: Optional[_ActiveTurn] = None
        self._closed = False

        if on_state_change is not None:
            self._subscribers.subscribe(on_state_change)

        log.debug(
            "answer_session.created",
            session_id=self.id,
            collection_id=config.collection_id,
            seed_messages=len(config.initial_messages),
        )

    @property
    def collection_id(self) -> str:
        return self._config.collection_id

    @property
    def is_busy(self) -> bool:
        return self._active is not None

    async def __aenter__(self) -> "AnswerSession":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # ─────────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────────

    async def ask(self, query: str) -> Interaction:
        """Run one turn and return the terminal snapshot of its interaction."""
        query = self._validate_query(query)
        return await self._run_turn(query)

    def ask_stream(self, query: str) -> AsyncIterator[Interaction]:
        """
        Start a turn and iterate over snapshots of its interaction, one per
        notification, ending with the terminal one.

        The query is validated here, at call time. Closing the iterator
        before the terminal snapshot aborts the turn; a bare ``break`` does
        not close an async generator, so leave early through
        ``contextlib.aclosing()`` or an explicit ``aclose()``.
        """
        query = self._validate_query(query)
        return self._stream_turn(query)

    async def regenerate_last(self) -> Interaction:
        """Re-issue the most recent query as a new interaction."""
        last = self._require_last()
        return await self._run_turn(last.query, exclude_id=last.id)

    def regenerate_last_stream(self) -> AsyncIterator[Interaction]:
        last = self._require_last()
        return self._stream_turn(last.query, exclude_id=last.id)

    def abort(self) -> None:
        """
        Cancel the active turn, if any. Idempotent and never raises.

        The interaction resolves to ``done`` with ``aborted=True`` and keeps
        whatever response text had arrived.
        """
        turn = self._active
        if turn is None or turn.abort_requested:
            return
        if turn.task is not None and turn.task.done():
            return
        turn.abort_requested = True
        log.info("answer_session.abort", session_id=self.id, interaction_id=turn.interaction.id)
        if turn.task is not None:
            turn.task.cancel()

    def subscribe(self, listener: Listener) -> Subscription:
        """Register a listener for the full interaction tuple on every state change."""
        return self._subscribers.subscribe(listener)

    def get_interactions(self) -> tuple[Interaction, ...]:
        return self._store.snapshot()

    def get_messages(self) -> list[Message]:
        """Seed messages plus the user/assistant pairs of every completed exchange."""
        return self._history()

    def clear(self) -> None:
        """Abort the active turn and drop every stored interaction."""
        self.abort()
        self._store.clear()
        log.info("answer_session.cleared", session_id=self.id)
        self._notify()

    def status_summary(self) -> dict[str, Any]:
        interactions = list(self._store)
        states = Counter(i.state.value for i in interactions)
        return {
            "session_id": self.id,
            "collection_id": self._config.collection_id,
            "interactions": len(interactions),
            "states": dict(states),
            "aborted": sum(1 for i in interactions if i.aborted),
            "active_interaction": self._active.interaction.id if self._active else None,
            "subscribers": len(self._subscribers),
            "closed": self._closed,
        }

    async def aclose(self) -> None:
        """Abort any active turn, drop subscribers and release an owned transport."""
        if self._closed:
            return
        self._closed = True
        turn = self._active
        self.abort()
        if turn is not None and turn.task is not None:
            await asyncio.gather(turn.task, return_exceptions=True)
        self._subscribers.clear()
        if self._owns_transport and isinstance(self._transport, OramaTransport):
            await self._transport.aclose()
        log.debug("answer_session.closed", session_id=self.id)

    # ─────────────────────────────────────────────────────────────────────────
    # Turn lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def _validate_query(self, query: str) -> str:
        if self._closed:
            raise InvalidStateError("Answer session is closed")
        if not isinstance(query, str) or not query.strip():
            raise InvalidStateError("Query must be a non-empty string")
        return query

    def _require_last(self) -> Interaction:
        if self._closed:
            raise InvalidStateError("Answer session is closed")
        last = self._store.last()
        if last is None:
            raise InvalidStateError("There is no interaction to regenerate")
        return last

    async def _stream_turn(
        self, query: str, exclude_id: Optional[str] = None
    ) -> AsyncIterator[Interaction]:
        updates: asyncio.Queue[Optional[Interaction]] = asyncio.Queue()
        task = asyncio.create_task(
            self._run_turn(query, on_update=updates.put_nowait, exclude_id=exclude_id)
        )
        task.add_done_callback(lambda _: updates.put_nowait(None))
        try:
            while True:
                snapshot = await updates.get()
                if snapshot is None:
                    break
                yield snapshot
            if not task.cancelled():
                task.result()
        finally:
            if not task.done():
                task.cancel()

    async def _run_turn(
        self,
        query: str,
        *,
        on_update: Optional[Callable[[Interaction], None]] = None,
        exclude_id: Optional[str] = None,
    ) -> Interaction:
        async with self._lock:
            if self._closed:
                raise InvalidStateError("Answer session is closed")

            messages = self._history(exclude_id=exclude_id)
            interaction = Interaction(id=f"int_{uuid.uuid4().hex[:12]}", query=query)
            self._store.append(interaction)
            turn = _ActiveTurn(interaction=interaction, on_update=on_update)
            self._active = turn
            self._notify(turn)

            try:
                if not turn.abort_requested:
                    interaction.transition(InteractionState.STREAMING)
                    self._notify(turn)
                await self._await_pipeline(turn, messages)
            finally:
                self._active = None
                self._notify(turn)

            log.info(
                "answer_session.turn_end",
                session_id=self.id,
                interaction_id=interaction.id,
                state=interaction.state.value,
                aborted=interaction.aborted,
                response_chars=len(interaction.response),
                duration_ms=interaction.duration_ms,
            )
            return interaction.snapshot()

    async def _await_pipeline(self, turn: _ActiveTurn, messages: list[Message]) -> None:
        """Run the pipeline task and resolve the interaction to a terminal state."""
        interaction = turn.interaction
        if turn.abort_requested:
            interaction.mark_aborted()
            return

        turn.task = asyncio.create_task(
            self._drive(turn, messages), name=f"answer-{interaction.id}"
        )
        try:
            await turn.task
        except asyncio.CancelledError:
            if not interaction.is_terminal:
                interaction.mark_aborted()
            current = asyncio.current_task()
            if not turn.abort_requested or (current is not None and current.cancelling()):
                raise
        except AnswerError as e:
            log.warning(
                "answer_session.turn_failed",
                session_id=self.id,
                interaction_id=interaction.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            interaction.fail(e)
        except Exception as e:
            log.error(
                "answer_session.turn_crashed",
                session_id=self.id,
                interaction_id=interaction.id,
                error=str(e),
                exc_info=True,
            )
            error = AnswerError(f"Unexpected {type(e).__name__}: {e}")
            error.__cause__ = e
            interaction.fail(error)
        else:
            if turn.abort_requested:
                interaction.mark_aborted()
            else:
                interaction.complete()

    async def _drive(self, turn: _ActiveTurn, messages: list[Message]) -> None:
        """The pipeline: answer stream, then the plan if the server declared one."""
        interaction = turn.interaction
        bind_session(self.id, interaction.id)
        log.info(
            "answer_session.turn_start",
            query_chars=len(interaction.query),
            prior_messages=len(messages),
        )
        try:
            plan = await self._consume_answer_stream(turn, messages)
            if plan is None:
                return

            executor = PlanExecutor(
                self._transport,
                self._config.collection_id,
                interaction,
                messages=messages,
                llm_config=self._config.llm_config,
                tool_handlers=self._tool_handlers,
                conversation_id=self.conversation_id,
            )
            async with aclosing(executor.run(plan)) as updates:
                async for _ in updates:
                    self._notify(turn)
        finally:
            clear_session()

    async def _consume_answer_stream(
        self, turn: _ActiveTurn, messages: list[Message]
    ) -> Optional[PlanDescriptor]:
        """
        Apply answer frames to the interaction. Returns the plan descriptor
        when the server hands over to a multi-step plan, else None.
        """
        interaction = turn.interaction
        stream = self._transport.stream(
            "POST",
            f"/v1/collections/{self._config.collection_id}/answer",
            self._answer_body(interaction, messages),
            SecurityLevel.READ,
        )
        async with aclosing(stream) as fragments:
            async for fragment in fragments:
                frame = decode_frame(fragment)
                if isinstance(frame, TextFrame):
                    if frame.text:
                        interaction.append_fragment(frame.text)
                        self._notify(turn)
                elif isinstance(frame, SourcesFrame):
                    interaction.set_sources(frame.sources)
                    self._notify(turn)
                elif isinstance(frame, PlanFrame):
                    if interaction.response:
                        raise ProtocolError("Plan declared after answer text had started")
                    return frame.plan
                elif isinstance(frame, DoneFrame):
                    break
                elif isinstance(frame, ErrorFrame):
                    code = f" ({frame.code})" if frame.code else ""
                    raise TransportError(f"Server error{code}: {frame.message}")
        return None

    def _answer_body(self, interaction: Interaction, messages: list[Message]) -> dict[str, Any]:
        body: dict[str, Any] = {
            "collection_id": self._config.collection_id,
            "conversation_id": self.conversation_id,
            "interaction_id": interaction.id,
            "query": interaction.query,
            "messages": [m.model_dump(mode="json") for m in messages],
            "visitor_id": self._profile.get_user_id() if self._profile else self._visitor_id,
        }
        if self._config.llm_config is not None:
            body["llm_config"] = self._config.llm_config.model_dump(mode="json")
        if self._profile is not None:
            identity = self._profile.get_identity()
            alias = self._profile.get_alias()
            if identity:
                body["identity"] = identity
            if alias:
                body["alias"] = alias
        return body

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    def _history(self, exclude_id: Optional[str] = None) -> list[Message]:
        messages = list(self._config.initial_messages)
        for interaction in self._store:
            if interaction.id == exclude_id:
                continue
            if (
                interaction.state is InteractionState.DONE
                and not interaction.aborted
                and interaction.response
            ):
                messages.append(Message.user(interaction.query))
                messages.append(Message.assistant(interaction.response))
        cap = self._config.max_prior_messages
        if len(messages) > cap:
            messages = messages[len(messages) - cap:]
        return messages

    def _notify(self, turn: Optional[_ActiveTurn] = None) -> None:
        self._subscribers.notify(self._store.snapshot())
        if turn is not None and turn.on_update is not None:
            turn.on_update(turn.interaction.snapshot())

    def __repr__(self) -> str:
        return (
            f"<AnswerSession {self.id} collection={self._config.collection_id} "
            f"interactions={len(self._store)}>"
        )
