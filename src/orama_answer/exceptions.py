"""
exceptions.py — Unified Error Hierarchy

Every layer raises typed subclasses of OramaAnswerError, never bare Exception.

Import from here, not from individual modules:
    from orama_answer.exceptions import TransportError, InvalidStateError

Hierarchy:
    OramaAnswerError
    ├── ConfigurationError      raised synchronously, before any network activity
    ├── InvalidStateError       caller misuse / illegal state transition
    └── AnswerError             pipeline failure, stored on Interaction.error
        ├── TransportError
        │   └── ProtocolError
        └── PlanStepError

Errors in the AnswerError branch are never raised across the streaming
boundary: the session captures them and moves the owning Interaction to
the ``error`` state.
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class OramaAnswerError(Exception):
    """Base class for all orama_answer exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Caller-facing (synchronous)
# ─────────────────────────────────────────────────────────────────────────────

class ConfigurationError(OramaAnswerError):
    """Missing credential or invalid settings. Fails fast."""


class InvalidStateError(OramaAnswerError):
    """The public contract was misused, e.g. an empty query or regenerating with no history."""


# ─────────────────────────────────────────────────────────────────────────────
# Pipeline (captured into Interaction.error)
# ─────────────────────────────────────────────────────────────────────────────

class AnswerError(OramaAnswerError):
    """Base for failures inside the streaming / plan pipeline."""


class TransportError(AnswerError):
    """Network or HTTP failure, including error frames reported by the server."""

    def __init__(self, message: str, status_code: Optional[int] = None, path: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.path = path


class ProtocolError(TransportError):
    """The server sent a frame or plan descriptor that could not be decoded."""


class PlanStepError(AnswerError):
    """A step flagged as required failed, aborting the whole plan."""

    def __init__(self, step_index: int, kind: str, reason: str) -> None:
        self.step_index = step_index
        self.kind = kind
        self.reason = reason
        super().__init__(f"Required {kind} step #{step_index} failed: {reason}")


__all__ = [
    "OramaAnswerError",
    "ConfigurationError",
    "InvalidStateError",
    "AnswerError",
    "TransportError",
    "ProtocolError",
    "PlanStepError",
]
