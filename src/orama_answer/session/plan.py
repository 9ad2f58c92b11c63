"""
session/plan.py — Plan Executor

Drives a server-declared plan to completion, one step at a time, in
declared order. A step starts only once the previous one is terminal.

    retrieval   POST /v1/collections/{id}/search      (read-query)
    tool_call   local handler, else POST /tools/run   (read)
    generation  streamed POST /v1/collections/{id}/generate (read)

Failure policy:
  - non-required step fails → status ``failed``, the plan continues
  - required step fails     → later steps ``skipped``, PlanStepError raised,
                              current_step_index stays on the failed step
  - cancellation            → running and remaining steps ``skipped``

run() is an async generator yielding one PlanUpdate per state mutation so
the owning session can notify subscribers in mutation order.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Mapping, Optional, Sequence

from orama_answer.exceptions import PlanStepError, ProtocolError, TransportError
from orama_answer.observability.logger import get_logger
from orama_answer.session.protocol import (
    DoneFrame,
    ErrorFrame,
    PlanFrame,
    SourcesFrame,
    TextFrame,
    decode_frame,
    parse_plan,
)
from orama_answer.session.types import (
    GenerationResult,
    GenerationStepSpec,
    Interaction,
    LLMConfig,
    Message,
    PlanDescriptor,
    PlanExecution,
    PlanStep,
    RetrievalResult,
    RetrievalStepSpec,
    StepStatus,
    ToolCallResult,
    ToolCallStepSpec,
)
from orama_answer.transport.client import SecurityLevel, Transport

log = get_logger(__name__)

ToolHandler = Callable[[dict[str, Any]], Any]


@dataclass(frozen=True)
class PlanUpdate:
    """
    One observable change made by the executor.

    event: plan_declared | step_running | step_done | step_failed |
           sources | fragment
    """
    event: str
    step_index: Optional[int] = None
    text: Optional[str] = None


class _StepFailed(Exception):
    """Internal: a step could not produce its result."""


class PlanExecutor:

    def __init__(
        self,
        transport: Transport,
        collection_id: str,
        interaction: Interaction,
        *,
        messages: Sequence[Message] = (),
        llm_config: Optional[LLMConfig] = None,
        tool_handlers: Optional[Mapping[str, ToolHandler]] = None,
        conversation_id: Optional[str] = None,
    ):
        self._transport = transport
        self._collection_id = collection_id
        self._interaction = interaction
        self._messages = list(messages)
        self._llm_config = llm_config
        self._tool_handlers = dict(tool_handlers or {})
        self._conversation_id = conversation_id
        self._tool_results: list[ToolCallResult] = []

    def _path(self, suffix: str) -> str:
        return f"/v1/collections/{self._collection_id}/{suffix}"

    # ─────────────────────────────────────────────────────────────────────────
    # Driver
    # ─────────────────────────────────────────────────────────────────────────

    async def run(self, descriptor: PlanDescriptor | dict[str, Any]) -> AsyncIterator[PlanUpdate]:
        """
        Execute every step of ``descriptor`` against the owning interaction.

        Raises ProtocolError for an invalid descriptor and PlanStepError when
        a required step fails.
        """
        plan = PlanExecution.from_descriptor(parse_plan(descriptor))
        self._interaction.plan = plan
        log.info(
            "plan.declared",
            steps=len(plan.steps),
            kinds=[s.kind.value for s in plan.steps],
        )
        yield PlanUpdate("plan_declared")

        try:
            for step in plan.steps:
                step.status = StepStatus.RUNNING
                log.debug("plan.step_running", index=step.index, kind=step.kind.value)
                yield PlanUpdate("step_running", step.index)

                failure: Optional[Exception] = None
                try:
                    async with aclosing(self._execute(step)) as updates:
                        async for update in updates:
                            yield update
                except Exception as e:
                    # Tool handlers are caller code and may raise anything.
                    failure = e

                if failure is None:
                    step.status = StepStatus.DONE
                    log.info("plan.step_done", index=step.index, kind=step.kind.value)
                    yield PlanUpdate("step_done", step.index)
                    plan.advance()
                    continue

                step.status = StepStatus.FAILED
                step.error = str(failure)
                log.warning(
                    "plan.step_failed",
                    index=step.index,
                    kind=step.kind.value,
                    required=step.required,
                    error=step.error,
                    error_type=type(failure).__name__,
                )
                if step.required:
                    plan.skip_remaining(step.index + 1)
                    yield PlanUpdate("step_failed", step.index)
                    raise PlanStepError(step.index, step.kind.value, step.error) from failure

                yield PlanUpdate("step_failed", step.index)
                plan.advance()
        except (asyncio.CancelledError, GeneratorExit):
            plan.skip_remaining(plan.current_step_index)
            log.info("plan.cancelled", at_step=plan.current_step_index)
            raise

        log.info("plan.complete", progress=plan.progress_summary)

    async def _execute(self, step: PlanStep) -> AsyncIterator[PlanUpdate]:
        spec = step.spec
        if isinstance(spec, RetrievalStepSpec):
            async for update in self._run_retrieval(step, spec):
                yield update
        elif isinstance(spec, ToolCallStepSpec):
            await self._run_tool_call(step, spec)
        elif isinstance(spec, GenerationStepSpec):
            async for update in self._run_generation(step, spec):
                yield update
        else:
            raise _StepFailed(f"Unsupported step kind: {spec.kind}")

    # ─────────────────────────────────────────────────────────────────────────
    # Step kinds
    # ─────────────────────────────────────────────────────────────────────────

    async def _run_retrieval(
        self, step: PlanStep, spec: RetrievalStepSpec
    ) -> AsyncIterator[PlanUpdate]:
        term = spec.query or self._interaction.query
        response = await self._transport.request(
            "POST",
            self._path("search"),
            {"term": term, "limit": spec.limit},
            SecurityLevel.READ_QUERY,
        )
        hits = _extract_hits(response)
        step.result = RetrievalResult(sources=hits)
        self._interaction.set_sources(self._interaction.sources + hits)
        yield PlanUpdate("sources", step.index)

    async def _run_tool_call(self, step: PlanStep, spec: ToolCallStepSpec) -> None:
        try:
            arguments = json.loads(spec.arguments) if spec.arguments.strip() else {}
        except ValueError as e:
            raise _StepFailed(f"Invalid arguments for tool '{spec.name}': {e}") from e
        if not isinstance(arguments, dict):
            raise _StepFailed(
                f"Arguments for tool '{spec.name}' must be a JSON object, "
                f"got {type(arguments).__name__}"
            )

        handler = self._tool_handlers.get(spec.name)
        if handler is not None:
            output = handler(arguments)
            if inspect.isawaitable(output):
                output = await output
        else:
            output = await self._transport.request(
                "POST",
                self._path("tools/run"),
                {"tool_id": spec.name, "arguments": arguments},
                SecurityLevel.READ,
            )

        result = ToolCallResult(name=spec.name, arguments=arguments, output=output)
        step.result = result
        self._tool_results.append(result)

    async def _run_generation(
        self, step: PlanStep, spec: GenerationStepSpec
    ) -> AsyncIterator[PlanUpdate]:
        result = GenerationResult()
        step.result = result
        body: dict[str, Any] = {
            "interaction_id": self._interaction.id,
            "query": self._interaction.query,
            "messages": [m.model_dump(mode="json") for m in self._messages],
            "context": {
                "sources": self._interaction.sources,
                "tool_results": [
                    {"name": r.name, "arguments": r.arguments, "output": r.output}
                    for r in self._tool_results
                ],
            },
        }
        if self._conversation_id:
            body["conversation_id"] = self._conversation_id
        if spec.instructions:
            body["instructions"] = spec.instructions
        if self._llm_config is not None:
            body["llm_config"] = self._llm_config.model_dump(mode="json")

        stream = self._transport.stream(
            "POST", self._path("generate"), body, SecurityLevel.READ
        )
        async with aclosing(stream) as fragments:
            async for fragment in fragments:
                frame = decode_frame(fragment)
                if isinstance(frame, TextFrame):
                    if not frame.text:
                        continue
                    result.text += frame.text
                    self._interaction.append_fragment(frame.text)
                    yield PlanUpdate("fragment", step.index, frame.text)
                elif isinstance(frame, SourcesFrame):
                    self._interaction.set_sources(self._interaction.sources + frame.sources)
                    yield PlanUpdate("sources", step.index)
                elif isinstance(frame, DoneFrame):
                    break
                elif isinstance(frame, ErrorFrame):
                    raise TransportError(frame.message)
                elif isinstance(frame, PlanFrame):
                    raise ProtocolError("Nested plan inside a generation step")


def _extract_hits(response: Any) -> list[dict[str, Any]]:
    if response is None:
        return []
    if isinstance(response, list):
        hits = response
    elif isinstance(response, dict):
        hits = response.get("hits") or []
    else:
        raise _StepFailed(f"Unexpected search response type: {type(response).__name__}")
    return [h for h in hits if isinstance(h, dict)]
