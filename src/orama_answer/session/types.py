"""
session/types.py — Answer Session Data Models

Shared types for the answer pipeline:

  - Message / LLMConfig      pydantic wire models sent with every answer request
  - Plan step specs          pydantic models discriminated on ``kind`` (parse-time
                             validation of server-declared plans)
  - PlanStep / PlanExecution runtime plan state, mutated by the PlanExecutor
  - Interaction              one question/answer exchange, mutated by the session
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from orama_answer.exceptions import AnswerError, InvalidStateError


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Provider(str, Enum):
    OPENAI = "openai"
    FIREWORKS = "fireworks"
    TOGETHER = "together"


class InteractionState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (InteractionState.DONE, InteractionState.ERROR)


# pending < streaming < {done, error}
_STATE_RANK = {
    InteractionState.PENDING: 0,
    InteractionState.STREAMING: 1,
    InteractionState.DONE: 2,
    InteractionState.ERROR: 2,
}


class StepKind(str, Enum):
    RETRIEVAL = "retrieval"
    TOOL_CALL = "tool_call"
    GENERATION = "generation"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.DONE, StepStatus.FAILED, StepStatus.SKIPPED)


# ─────────────────────────────────────────────────────────────────────────────
# Wire models
# ─────────────────────────────────────────────────────────────────────────────


class Message(BaseModel):
    """One turn of conversational content. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)


class LLMConfig(BaseModel):
    """Per-session model selection forwarded to the answer endpoint."""

    model_config = ConfigDict(frozen=True)

    provider: Provider
    model: str = Field(..., min_length=1)


# ─────────────────────────────────────────────────────────────────────────────
# Plan step specs (tagged union on ``kind``)
# ─────────────────────────────────────────────────────────────────────────────


class RetrievalStepSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["retrieval"] = "retrieval"
    query: Optional[str] = None             # defaults to the interaction query
    limit: int = Field(default=5, ge=1)
    required: bool = False


class ToolCallStepSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["tool_call"] = "tool_call"
    name: str = Field(..., min_length=1)
    arguments: str = "{}"                   # serialized JSON, parsed at run time
    required: bool = False


class GenerationStepSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["generation"] = "generation"
    instructions: Optional[str] = None
    required: bool = True


PlanStepSpec = Annotated[
    Union[RetrievalStepSpec, ToolCallStepSpec, GenerationStepSpec],
    Field(discriminator="kind"),
]


class PlanDescriptor(BaseModel):
    """The plan a server declares in place of a direct answer stream."""

    steps: list[PlanStepSpec] = Field(..., min_length=1)


# ─────────────────────────────────────────────────────────────────────────────
# Step results
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class RetrievalResult:
    sources: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ToolCallResult:
    name: str
    arguments: dict[str, Any]
    output: Any = None


@dataclass
class GenerationResult:
    text: str = ""


StepResult = Union[RetrievalResult, ToolCallResult, GenerationResult]


# ─────────────────────────────────────────────────────────────────────────────
# Plan runtime state
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class PlanStep:
    index: int
    spec: RetrievalStepSpec | ToolCallStepSpec | GenerationStepSpec
    status: StepStatus = StepStatus.PENDING
    result: Optional[StepResult] = None
    error: Optional[str] = None

    @property
    def kind(self) -> StepKind:
        return StepKind(self.spec.kind)

    @property
    def required(self) -> bool:
        return self.spec.required


@dataclass
class PlanExecution:
    steps: list[PlanStep]
    current_step_index: int = 0

    @classmethod
    def from_descriptor(cls, descriptor: PlanDescriptor) -> "PlanExecution":
        return cls(steps=[PlanStep(index=i, spec=s) for i, s in enumerate(descriptor.steps)])

    @property
    def current_step(self) -> Optional[PlanStep]:
        if self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    @property
    def is_complete(self) -> bool:
        return self.current_step_index >= len(self.steps)

    @property
    def progress_summary(self) -> str:
        done = sum(1 for s in self.steps if s.status is StepStatus.DONE)
        return f"{done}/{len(self.steps)} steps complete"

    def advance(self) -> None:
        """Move past the current step. The step must already be terminal."""
        step = self.current_step
        if step is None:
            return
        if not step.status.is_terminal:
            raise InvalidStateError(
                f"Cannot advance past step #{step.index} while it is {step.status.value}"
            )
        self.current_step_index += 1

    def skip_remaining(self, start: int) -> None:
        for step in self.steps[start:]:
            if not step.status.is_terminal:
                step.status = StepStatus.SKIPPED

    def snapshot(self) -> "PlanExecution":
        return copy.deepcopy(self)


# ─────────────────────────────────────────────────────────────────────────────
# Interaction
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class Interaction:
    """
    One question/answer exchange.

    Only the owning AnswerSession mutates an Interaction; everything handed
    to callers is a snapshot(). ``state`` moves forward only and ``response``
    is frozen once a terminal state is reached.
    """

    id: str
    query: str
    response: str = ""
    sources: list[dict[str, Any]] = field(default_factory=list)
    state: InteractionState = InteractionState.PENDING
    plan: Optional[PlanExecution] = None
    aborted: bool = False
    error: Optional[AnswerError] = None
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def duration_ms(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return round((self.finished_at - self.created_at) * 1000, 1)

    # ── Mutations ─────────────────────────────────────────────────────────────

    def transition(self, state: InteractionState) -> None:
        state = InteractionState(state)
        if self.state.is_terminal:
            raise InvalidStateError(
                f"Interaction {self.id} is already {self.state.value}; cannot move to {state.value}"
            )
        if _STATE_RANK[state] < _STATE_RANK[self.state]:
            raise InvalidStateError(
                f"Interaction {self.id} cannot move back from {self.state.value} to {state.value}"
            )
        self.state = state
        if state.is_terminal:
            self.finished_at = time.time()

    def append_fragment(self, text: str) -> None:
        if self.state is not InteractionState.STREAMING:
            raise InvalidStateError(
                f"Cannot append to interaction {self.id} in state {self.state.value}"
            )
        self.response += text

    def set_sources(self, sources: list[dict[str, Any]]) -> None:
        if self.is_terminal:
            raise InvalidStateError(f"Interaction {self.id} is already {self.state.value}")
        self.sources = list(sources)

    def complete(self) -> None:
        self.transition(InteractionState.DONE)

    def fail(self, error: AnswerError) -> None:
        self.error = error
        self.transition(InteractionState.ERROR)

    def mark_aborted(self) -> None:
        """Resolve a cancelled interaction to ``done`` keeping its partial response."""
        self.aborted = True
        self.transition(InteractionState.DONE)

    def snapshot(self) -> "Interaction":
        return Interaction(
            id=self.id,
            query=self.query,
            response=self.response,
            sources=copy.deepcopy(self.sources),
            state=self.state,
            plan=self.plan.snapshot() if self.plan is not None else None,
            aborted=self.aborted,
            error=self.error,
            created_at=self.created_at,
            finished_at=self.finished_at,
        )
