"""
session — Conversational answer sessions.

AnswerSession is the entry point; the rest of the package is its data
model (types), history (store), observers (events), stream decoding
(protocol) and multi-step plan driver (plan).
"""

from orama_answer.session.answer import AnswerSession, AnswerSessionConfig
from orama_answer.session.events import Subscription
from orama_answer.session.plan import PlanExecutor, PlanUpdate
from orama_answer.session.store import InteractionStore
from orama_answer.session.types import (
    GenerationResult,
    Interaction,
    InteractionState,
    LLMConfig,
    Message,
    PlanExecution,
    PlanStep,
    RetrievalResult,
    Role,
    StepKind,
    StepStatus,
    ToolCallResult,
)

__all__ = [
    "AnswerSession",
    "AnswerSessionConfig",
    "Subscription",
    "PlanExecutor",
    "PlanUpdate",
    "InteractionStore",
    "Interaction",
    "InteractionState",
    "LLMConfig",
    "Message",
    "PlanExecution",
    "PlanStep",
    "Role",
    "StepKind",
    "StepStatus",
    "RetrievalResult",
    "ToolCallResult",
    "GenerationResult",
]
