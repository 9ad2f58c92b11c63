"""
orama_answer — Streaming answer sessions over an Orama collection.

    from orama_answer import CollectionManager

    manager = CollectionManager(url, collection_id, read_api_key=key)
    session = manager.create_answer_session(on_state_change=print)
    final = await session.ask("What is Orama?")
"""

from orama_answer.collection import CollectionManager
from orama_answer.exceptions import (
    AnswerError,
    ConfigurationError,
    InvalidStateError,
    OramaAnswerError,
    PlanStepError,
    ProtocolError,
    TransportError,
)
from orama_answer.profile import Profile
from orama_answer.session import (
    AnswerSession,
    AnswerSessionConfig,
    Interaction,
    InteractionState,
    LLMConfig,
    Message,
    PlanExecution,
    Subscription,
)
from orama_answer.transport import OramaTransport, SecurityLevel
from orama_answer.utils import create_random_string, format_duration

__version__ = "1.0.0"

__all__ = [
    "AnswerSession",
    "AnswerSessionConfig",
    "CollectionManager",
    "Profile",
    "Interaction",
    "InteractionState",
    "PlanExecution",
    "Message",
    "LLMConfig",
    "Subscription",
    "OramaTransport",
    "SecurityLevel",
    "OramaAnswerError",
    "ConfigurationError",
    "InvalidStateError",
    "AnswerError",
    "TransportError",
    "ProtocolError",
    "PlanStepError",
    "create_random_string",
    "format_duration",
]
