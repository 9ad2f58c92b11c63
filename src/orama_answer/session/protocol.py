"""
session/protocol.py — Answer Stream Frames

Each fragment delivered by the transport decodes into one frame:

    {"type": "text", "text": "..."}           answer text to append
    {"type": "sources", "sources": [...]}     retrieved documents
    {"type": "plan", "plan": {"steps": [...]}} multi-step plan (replaces direct text)
    {"type": "done"}                          end of answer
    {"type": "error", "message": "...", "code": "..."}

A fragment that is not a JSON object carrying a ``type`` key is raw answer
text and is appended verbatim. A JSON object with an unknown ``type`` or
invalid fields raises ProtocolError.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from orama_answer.exceptions import ProtocolError
from orama_answer.session.types import PlanDescriptor


class TextFrame(BaseModel):
    type: Literal["text"] = "text"
    text: str


class SourcesFrame(BaseModel):
    type: Literal["sources"] = "sources"
    sources: list[dict[str, Any]] = Field(default_factory=list)


class PlanFrame(BaseModel):
    type: Literal["plan"] = "plan"
    plan: PlanDescriptor


class DoneFrame(BaseModel):
    type: Literal["done"] = "done"


class ErrorFrame(BaseModel):
    type: Literal["error"] = "error"
    message: str = "Unknown server error"
    code: Optional[str] = None


Frame = Annotated[
    Union[TextFrame, SourcesFrame, PlanFrame, DoneFrame, ErrorFrame],
    Field(discriminator="type"),
]

_frame_adapter: TypeAdapter[Frame] = TypeAdapter(Frame)


def decode_frame(fragment: str) -> TextFrame | SourcesFrame | PlanFrame | DoneFrame | ErrorFrame:
    """Decode one transport fragment. Raises ProtocolError on a malformed typed frame."""
    try:
        data = json.loads(fragment)
    except ValueError:
        return TextFrame(text=fragment)

    if not isinstance(data, dict) or "type" not in data:
        return TextFrame(text=fragment)

    try:
        return _frame_adapter.validate_python(data)
    except ValidationError as e:
        raise ProtocolError(
            f"Malformed '{data.get('type')}' frame: {_first_error(e)}"
        ) from e


def parse_plan(data: Any) -> PlanDescriptor:
    """Validate a plan descriptor. Unknown step kinds and bad fields raise ProtocolError."""
    if isinstance(data, PlanDescriptor):
        return data
    try:
        return PlanDescriptor.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Malformed plan descriptor: {_first_error(e)}") from e


def _first_error(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return str(e)
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"{loc}: {first.get('msg', 'invalid')}" if loc else first.get("msg", "invalid")
