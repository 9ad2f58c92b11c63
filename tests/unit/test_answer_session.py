"""
tests/unit/test_answer_session.py — Answer Session Tests

Covers:
  - The basic scenario: three fragments → one done interaction
  - Outbound request shape (path, security level, body)
  - Construction and call-time validation (ConfigurationError / InvalidStateError)
  - FIFO serialisation of concurrent asks, no interleaved responses
  - abort(): idempotent, never raises, resolves to done + aborted, closes the stream
  - Failure before / during the stream, error frames, protocol violations
  - Plan-based answers end to end
  - regenerate_last() and the message history sent with each ask
  - Observers: full-snapshot notifications, cancel, failing listeners
  - ask_stream(): snapshot iteration; closing the iterator aborts the turn
  - Typed frames over a real HTTP transport (NDJSON / JSON lines)
  - clear(), status_summary(), aclose()
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing

import httpx
import pytest

from orama_answer.exceptions import (
    AnswerError,
    ConfigurationError,
    InvalidStateError,
    PlanStepError,
    ProtocolError,
    TransportError,
)
from orama_answer.profile import Profile
from orama_answer.session.answer import AnswerSession, AnswerSessionConfig
from orama_answer.session.types import (
    Interaction,
    InteractionState,
    LLMConfig,
    Message,
    StepStatus,
)
from orama_answer.transport.client import OramaTransport, SecurityLevel

COLLECTION = "col-1"
ANSWER = f"/v1/collections/{COLLECTION}/answer"
SEARCH = f"/v1/collections/{COLLECTION}/search"
GENERATE = f"/v1/collections/{COLLECTION}/generate"


# ── Helpers ───────────────────────────────────────────────────────────────────

def _config(**overrides) -> AnswerSessionConfig:
    values = {
        "url": "https://orama.test",
        "collection_id": COLLECTION,
        "read_api_key": "read-key",
    }
    values.update(overrides)
    return AnswerSessionConfig(**values)


def _session(transport, **kwargs) -> AnswerSession:
    config_overrides = kwargs.pop("config", {})
    return AnswerSession(_config(**config_overrides), transport=transport, **kwargs)


# ── Basic scenario ────────────────────────────────────────────────────────────

class TestAskScenario:
    @pytest.mark.asyncio
    async def test_three_fragments(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["Orama ", "is a ", "search engine."])
        session = _session(fake_transport)

        final = await session.ask("What is Orama?")

        assert final.query == "What is Orama?"
        assert final.response == "Orama is a search engine."
        assert final.state is InteractionState.DONE
        assert final.aborted is False
        assert final.error is None
        assert session.get_interactions()[0].response == "Orama is a search engine."

    @pytest.mark.asyncio
    async def test_typed_frames(self, fake_transport):
        fake_transport.on_stream(ANSWER, [
            {"type": "sources", "sources": [{"id": "doc-1"}]},
            {"type": "text", "text": "Hello"},
            {"type": "done"},
            {"type": "text", "text": " ignored after done"},
        ])
        final = await _session(fake_transport).ask("hi")
        assert final.response == "Hello"
        assert final.sources == [{"id": "doc-1"}]
        assert fake_transport.streams_closed == 1

    @pytest.mark.asyncio
    async def test_request_shape(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["ok"])
        llm = LLMConfig(provider="fireworks", model="llama-v3")
        session = _session(
            fake_transport,
            config={"llm_config": llm, "initial_messages": [Message.system("be brief")]},
        )
        final = await session.ask("What is Orama?")

        call = fake_transport.streams[0]
        assert call.method == "POST"
        assert call.path == ANSWER
        assert call.security_level is SecurityLevel.READ
        body = call.body
        assert body["collection_id"] == COLLECTION
        assert body["conversation_id"] == session.conversation_id
        assert body["interaction_id"] == final.id
        assert body["query"] == "What is Orama?"
        assert body["messages"] == [{"role": "system", "content": "be brief"}]
        assert body["llm_config"] == {"provider": "fireworks", "model": "llama-v3"}
        assert len(body["visitor_id"]) == 32
        assert "identity" not in body

    @pytest.mark.asyncio
    async def test_profile_is_passed_explicitly(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["ok"])
        profile = Profile(fake_transport, user_id="visitor-1")
        await profile.identify("jane@example.com")
        await profile.alias("jane")

        await _session(fake_transport, profile=profile).ask("q")

        body = fake_transport.streams[0].body
        assert body["visitor_id"] == "visitor-1"
        assert body["identity"] == "jane@example.com"
        assert body["alias"] == "jane"

    @pytest.mark.asyncio
    async def test_interaction_ids_unique(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["a"]).on_stream(ANSWER, ["b"])
        session = _session(fake_transport)
        first = await session.ask("one")
        second = await session.ask("two")
        assert first.id != second.id


# ── Validation ────────────────────────────────────────────────────────────────

class TestValidation:
    def test_missing_read_key_fails_before_network(self, fake_transport):
        with pytest.raises(ConfigurationError):
            AnswerSession(_config(read_api_key=None), transport=fake_transport)
        assert fake_transport.streams == []

    @pytest.mark.asyncio
    async def test_blank_query_rejected(self, fake_transport):
        session = _session(fake_transport)
        with pytest.raises(InvalidStateError):
            await session.ask("   ")
        with pytest.raises(InvalidStateError):
            session.ask_stream("")
        assert session.get_interactions() == ()
        assert fake_transport.streams == []

    @pytest.mark.asyncio
    async def test_regenerate_on_empty_store(self, fake_transport):
        session = _session(fake_transport)
        with pytest.raises(InvalidStateError):
            await session.regenerate_last()
        with pytest.raises(InvalidStateError):
            session.regenerate_last_stream()


# ── Serialisation ─────────────────────────────────────────────────────────────

class TestSerialisation:
    @pytest.mark.asyncio
    async def test_concurrent_asks_run_in_submission_order(self, fake_transport, wait_until):
        gate = asyncio.Event()
        fake_transport.on_stream(ANSWER, ["first-a ", gate, "first-b"])
        fake_transport.on_stream(ANSWER, ["second"])
        fake_transport.on_stream(ANSWER, ["third"])
        session = _session(fake_transport)
        history = []
        session.subscribe(history.append)

        t1 = asyncio.create_task(session.ask("one"))
        t2 = asyncio.create_task(session.ask("two"))
        t3 = asyncio.create_task(session.ask("three"))
        await wait_until(lambda: session.get_interactions() and session.get_interactions()[0].response)

        # Later asks wait their turn: no interaction is created for them yet.
        assert [i.query for i in session.get_interactions()] == ["one"]
        gate.set()
        results = await asyncio.gather(t1, t2, t3)

        assert [r.query for r in results] == ["one", "two", "three"]
        assert [r.response for r in results] == ["first-a first-b", "second", "third"]
        assert [i.query for i in session.get_interactions()] == ["one", "two", "three"]

        # At every notification at most one interaction is non-terminal, and it is the last.
        for snapshot in history:
            active = [i for i in snapshot if not i.is_terminal]
            assert len(active) <= 1
            if active:
                assert active[0] is snapshot[-1]


# ── Abort ─────────────────────────────────────────────────────────────────────

class TestAbort:
    def test_abort_without_active_turn(self, fake_transport):
        session = _session(fake_transport)
        session.abort()
        session.abort()

    @pytest.mark.asyncio
    async def test_abort_mid_stream(self, fake_transport, wait_until):
        gate = asyncio.Event()
        fake_transport.on_stream(ANSWER, ["partial ", gate, "never arrives"])
        session = _session(fake_transport)

        task = asyncio.create_task(session.ask("q"))
        await wait_until(lambda: session.get_interactions() and session.get_interactions()[0].response)
        session.abort()
        session.abort()
        final = await task

        assert final.state is InteractionState.DONE
        assert final.aborted is True
        assert final.response == "partial "
        assert fake_transport.streams_closed == 1
        assert not session.is_busy
        session.abort()

    @pytest.mark.asyncio
    async def test_abort_from_listener_on_creation(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["text"])
        session = _session(fake_transport)
        session.subscribe(lambda interactions: session.abort())

        final = await session.ask("q")

        assert final.state is InteractionState.DONE
        assert final.aborted is True
        assert final.response == ""
        assert fake_transport.streams == []

    @pytest.mark.asyncio
    async def test_abort_then_next_ask_runs(self, fake_transport, wait_until):
        gate = asyncio.Event()
        fake_transport.on_stream(ANSWER, ["x", gate])
        fake_transport.on_stream(ANSWER, ["fresh"])
        session = _session(fake_transport)

        task = asyncio.create_task(session.ask("one"))
        await wait_until(lambda: session.is_busy and session.get_interactions()[0].response)
        session.abort()
        await task
        final = await session.ask("two")
        assert final.response == "fresh"
        assert [i.state for i in session.get_interactions()] == [
            InteractionState.DONE, InteractionState.DONE,
        ]

    @pytest.mark.asyncio
    async def test_caller_cancellation_resolves_interaction(self, fake_transport, wait_until):
        gate = asyncio.Event()
        fake_transport.on_stream(ANSWER, ["x", gate])
        session = _session(fake_transport)

        task = asyncio.create_task(session.ask("q"))
        await wait_until(lambda: session.is_busy and session.get_interactions()[0].response)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        last = session.get_interactions()[-1]
        assert last.is_terminal
        assert last.aborted is True


# ── Failures ──────────────────────────────────────────────────────────────────

class TestFailures:
    @pytest.mark.asyncio
    async def test_failure_before_first_fragment(self, fake_transport):
        fake_transport.on_stream(ANSWER, [TransportError("connect timeout")])
        final = await _session(fake_transport).ask("q")
        assert final.state is InteractionState.ERROR
        assert final.response == ""
        assert isinstance(final.error, TransportError)

    @pytest.mark.asyncio
    async def test_failure_mid_stream_keeps_partial_text(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["Orama ", "is ", TransportError("reset by peer")])
        final = await _session(fake_transport).ask("q")
        assert final.state is InteractionState.ERROR
        assert final.response == "Orama is "
        assert "reset by peer" in str(final.error)

    @pytest.mark.asyncio
    async def test_error_frame(self, fake_transport):
        fake_transport.on_stream(ANSWER, [{"type": "error", "message": "quota exceeded", "code": "402"}])
        final = await _session(fake_transport).ask("q")
        assert final.state is InteractionState.ERROR
        assert isinstance(final.error, TransportError)
        assert "quota exceeded" in str(final.error)

    @pytest.mark.asyncio
    async def test_unknown_frame_type(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["ok ", {"type": "mystery"}])
        final = await _session(fake_transport).ask("q")
        assert final.state is InteractionState.ERROR
        assert isinstance(final.error, ProtocolError)
        assert final.response == "ok "

    @pytest.mark.asyncio
    async def test_plan_after_text_is_protocol_error(self, fake_transport):
        fake_transport.on_stream(ANSWER, [
            "text first",
            {"type": "plan", "plan": {"steps": [{"kind": "generation"}]}},
        ])
        final = await _session(fake_transport).ask("q")
        assert final.state is InteractionState.ERROR
        assert isinstance(final.error, ProtocolError)

    @pytest.mark.asyncio
    async def test_unexpected_exception_wrapped(self, fake_transport):
        fake_transport.on_stream(ANSWER, [ValueError("bug in transport")])
        final = await _session(fake_transport).ask("q")
        assert final.state is InteractionState.ERROR
        assert type(final.error) is AnswerError
        assert isinstance(final.error.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_session_usable_after_error(self, fake_transport):
        fake_transport.on_stream(ANSWER, [TransportError("down")])
        fake_transport.on_stream(ANSWER, ["back up"])
        session = _session(fake_transport)
        await session.ask("one")
        final = await session.ask("two")
        assert final.state is InteractionState.DONE


# ── Plans ─────────────────────────────────────────────────────────────────────

class TestPlanAnswers:
    @pytest.mark.asyncio
    async def test_optional_failure_ends_done(self, fake_transport):
        fake_transport.on_stream(ANSWER, [{"type": "plan", "plan": {"steps": [
            {"kind": "retrieval"},
            {"kind": "tool_call", "name": "calc", "arguments": "{bad", "required": False},
            {"kind": "generation"},
        ]}}])
        fake_transport.on_request(SEARCH, {"hits": [{"id": "doc-1"}]})
        fake_transport.on_stream(GENERATE, ["Orama ", "is fast."])
        session = _session(fake_transport)
        history = []
        session.subscribe(history.append)

        final = await session.ask("What is Orama?")

        assert final.state is InteractionState.DONE
        assert final.response == "Orama is fast."
        assert final.sources == [{"id": "doc-1"}]
        assert [s.status for s in final.plan.steps] == [
            StepStatus.DONE, StepStatus.FAILED, StepStatus.DONE,
        ]
        # Plan step transitions were observable mid-flight.
        running = [
            snap[-1].plan.steps[1].status
            for snap in history
            if snap[-1].plan is not None
        ]
        assert StepStatus.RUNNING in running
        # The answer stream is closed once the plan takes over.
        assert fake_transport.streams_closed == 2

    @pytest.mark.asyncio
    async def test_required_failure_ends_in_error(self, fake_transport):
        fake_transport.on_stream(ANSWER, [{"type": "plan", "plan": {"steps": [
            {"kind": "retrieval"},
            {"kind": "tool_call", "name": "calc", "required": True},
        ]}}])
        fake_transport.on_request(SEARCH, {"hits": []})

        def broken(args):
            raise RuntimeError("no calculator")

        session = _session(fake_transport, tool_handlers={"calc": broken})
        final = await session.ask("2+2?")

        assert final.state is InteractionState.ERROR
        assert isinstance(final.error, PlanStepError)
        assert final.plan.current_step_index == 1
        assert final.plan.steps[1].status is StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_abort_during_plan(self, fake_transport, wait_until):
        gate = asyncio.Event()
        fake_transport.on_stream(ANSWER, [{"type": "plan", "plan": {"steps": [
            {"kind": "generation"}, {"kind": "generation"},
        ]}}])
        fake_transport.on_stream(GENERATE, ["half ", gate])
        session = _session(fake_transport)

        task = asyncio.create_task(session.ask("q"))
        await wait_until(lambda: session.is_busy and session.get_interactions()[0].response)
        session.abort()
        final = await task

        assert final.aborted is True
        assert final.state is InteractionState.DONE
        assert final.response == "half "
        assert [s.status for s in final.plan.steps] == [StepStatus.SKIPPED, StepStatus.SKIPPED]


# ── Regenerate / history ──────────────────────────────────────────────────────

class TestRegenerate:
    @pytest.mark.asyncio
    async def test_regenerate_last(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["first answer"])
        fake_transport.on_stream(ANSWER, ["second answer"])
        session = _session(fake_transport)
        prior = await session.ask("X")

        regenerated = await session.regenerate_last()

        interactions = session.get_interactions()
        assert len(interactions) == 2
        assert regenerated.query == "X"
        assert regenerated.id != prior.id
        assert interactions[0].response == "first answer"
        assert interactions[0].state is InteractionState.DONE
        assert interactions[1].response == "second answer"
        # The exchange being regenerated is not sent as context.
        assert fake_transport.streams[1].body["messages"] == []

    @pytest.mark.asyncio
    async def test_regenerate_stream(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["a"]).on_stream(ANSWER, ["b"])
        session = _session(fake_transport)
        await session.ask("X")
        snaps = [s async for s in session.regenerate_last_stream()]
        assert snaps[-1].query == "X"
        assert snaps[-1].response == "b"


class TestHistory:
    @pytest.mark.asyncio
    async def test_prior_exchanges_sent_as_messages(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["It is a search engine."])
        fake_transport.on_stream(ANSWER, [TransportError("down")])
        fake_transport.on_stream(ANSWER, ["Yes."])
        session = _session(fake_transport, config={"initial_messages": [Message.system("sys")]})

        await session.ask("What is Orama?")
        await session.ask("Failing question")
        await session.ask("Is it fast?")

        assert fake_transport.streams[2].body["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "What is Orama?"},
            {"role": "assistant", "content": "It is a search engine."},
        ]
        assert [m.content for m in session.get_messages()] == [
            "sys", "What is Orama?", "It is a search engine.", "Is it fast?", "Yes.",
        ]

    @pytest.mark.asyncio
    async def test_history_capped(self, fake_transport):
        for text in ("a1", "a2", "a3"):
            fake_transport.on_stream(ANSWER, [text])
        session = _session(fake_transport, config={"max_prior_messages": 2})
        for q in ("q1", "q2", "q3"):
            await session.ask(q)
        assert [m.content for m in session.get_messages()] == ["q3", "a3"]

    @pytest.mark.asyncio
    async def test_aborted_exchange_not_in_history(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["text"])
        session = _session(fake_transport)
        sub = session.subscribe(lambda interactions: session.abort())
        await session.ask("q")
        sub.cancel()
        assert session.get_messages() == []


# ── Observers ─────────────────────────────────────────────────────────────────

class TestObservers:
    @pytest.mark.asyncio
    async def test_full_snapshot_per_event(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["a", "b"]).on_stream(ANSWER, ["c"])
        events: list[tuple[Interaction, ...]] = []
        session = _session(fake_transport, on_state_change=events.append)

        await session.ask("one")
        first_turn = list(events)
        await session.ask("two")

        # creation, streaming, two fragments, terminal
        assert [e[-1].state for e in first_turn] == [
            InteractionState.PENDING,
            InteractionState.STREAMING,
            InteractionState.STREAMING,
            InteractionState.STREAMING,
            InteractionState.DONE,
        ]
        assert [e[-1].response for e in first_turn] == ["", "", "a", "ab", "ab"]
        # Every event during the second turn carries the whole history.
        for event in events[len(first_turn):]:
            assert [i.query for i in event] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_events_are_snapshots(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["a", "b"])
        events = []
        session = _session(fake_transport)
        session.subscribe(events.append)
        await session.ask("q")
        assert events[2][0].response == "a"
        assert events[2][0] is not events[3][0]

    @pytest.mark.asyncio
    async def test_cancelled_subscription_stops(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["a"]).on_stream(ANSWER, ["b"])
        session = _session(fake_transport)
        events = []
        sub = session.subscribe(events.append)
        await session.ask("one")
        count = len(events)
        sub.cancel()
        await session.ask("two")
        assert len(events) == count

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_turn(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["fine"])

        def broken(_):
            raise RuntimeError("UI crashed")

        final = await _session(fake_transport, on_state_change=broken).ask("q")
        assert final.state is InteractionState.DONE
        assert final.response == "fine"


# ── ask_stream ────────────────────────────────────────────────────────────────

class TestAskStream:
    @pytest.mark.asyncio
    async def test_yields_snapshots_until_terminal(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["Orama ", "is a ", "search engine."])
        session = _session(fake_transport)

        snaps = [s async for s in session.ask_stream("What is Orama?")]

        assert snaps[0].state is InteractionState.PENDING
        assert snaps[-1].state is InteractionState.DONE
        assert snaps[-1].response == "Orama is a search engine."
        assert [s.response for s in snaps[2:5]] == [
            "Orama ", "Orama is a ", "Orama is a search engine.",
        ]
        assert len({s.id for s in snaps}) == 1

    @pytest.mark.asyncio
    async def test_closing_stream_aborts_turn(self, fake_transport, wait_until):
        gate = asyncio.Event()
        fake_transport.on_stream(ANSWER, ["first ", gate, "second"])
        session = _session(fake_transport)

        async with aclosing(session.ask_stream("q")) as stream:
            async for snap in stream:
                if snap.response:
                    break
        await wait_until(lambda: not session.is_busy)

        last = session.get_interactions()[-1]
        assert last.aborted is True
        assert last.state is InteractionState.DONE
        assert last.response == "first "
        assert fake_transport.streams_closed == 1

    @pytest.mark.asyncio
    async def test_break_without_close_keeps_turn_running(self, fake_transport, wait_until):
        gate = asyncio.Event()
        fake_transport.on_stream(ANSWER, ["first ", gate, "second"])
        fake_transport.on_stream(ANSWER, ["again"])
        session = _session(fake_transport)

        stream = session.ask_stream("q")
        async for snap in stream:
            if snap.response:
                break
        for _ in range(20):
            await asyncio.sleep(0)

        assert session.is_busy
        assert session.get_interactions()[-1].state is InteractionState.STREAMING

        await stream.aclose()
        await wait_until(lambda: not session.is_busy)
        assert session.get_interactions()[-1].aborted is True

        final = await asyncio.wait_for(session.ask("again"), timeout=1.0)
        assert final.response == "again"


# ── HTTP framing end to end ───────────────────────────────────────────────────

class _Chunks(httpx.AsyncByteStream):
    def __init__(self, *chunks: bytes):
        self._chunks = chunks

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk


def _http_session(content_type: str, *chunks: bytes) -> AnswerSession:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": content_type}, stream=_Chunks(*chunks))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    transport = OramaTransport("https://orama.test", read_api_key="read-key", client=client)
    return _session(transport)


class TestHttpFraming:
    @pytest.mark.asyncio
    async def test_ndjson_frames_in_one_chunk(self):
        session = _http_session(
            "application/x-ndjson",
            b'{"type":"text","text":"Orama "}\n{"type":"text","text":"rocks"}\n{"type":"done"}\n',
        )
        final = await session.ask("q")
        assert final.state is InteractionState.DONE
        assert final.response == "Orama rocks"

    @pytest.mark.asyncio
    async def test_split_frame_reassembled(self):
        session = _http_session(
            "application/x-ndjson",
            b'{"type":"text",', b'"text":"Orama"}\n',
        )
        final = await session.ask("q")
        assert final.response == "Orama"

    @pytest.mark.asyncio
    async def test_json_error_frame_fails_turn(self):
        session = _http_session(
            "application/json",
            b'{"type":"text","text":"partial"}\n{"type":"error",', b'"message":"quota exceeded"}\n',
        )
        final = await session.ask("q")
        assert final.state is InteractionState.ERROR
        assert final.response == "partial"
        assert "quota exceeded" in str(final.error)


# ── Lifecycle ─────────────────────────────────────────────────────────────────

class TestLifecycle:
    @pytest.mark.asyncio
    async def test_clear(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["a"])
        events = []
        session = _session(fake_transport, on_state_change=events.append)
        await session.ask("q")
        session.clear()
        assert session.get_interactions() == ()
        assert events[-1] == ()

    @pytest.mark.asyncio
    async def test_clear_during_turn(self, fake_transport, wait_until):
        gate = asyncio.Event()
        fake_transport.on_stream(ANSWER, ["x", gate])
        session = _session(fake_transport)
        task = asyncio.create_task(session.ask("q"))
        await wait_until(lambda: session.is_busy and session.get_interactions()[0].response)
        session.clear()
        final = await task
        assert final.aborted is True
        assert session.get_interactions() == ()

    @pytest.mark.asyncio
    async def test_status_summary(self, fake_transport):
        fake_transport.on_stream(ANSWER, ["a"]).on_stream(ANSWER, [TransportError("x")])
        session = _session(fake_transport)
        await session.ask("one")
        await session.ask("two")
        summary = session.status_summary()
        assert summary["interactions"] == 2
        assert summary["states"] == {"done": 1, "error": 1}
        assert summary["active_interaction"] is None
        assert summary["collection_id"] == COLLECTION

    @pytest.mark.asyncio
    async def test_aclose(self, fake_transport):
        async with _session(fake_transport) as session:
            pass
        with pytest.raises(InvalidStateError):
            await session.ask("q")
        await session.aclose()
