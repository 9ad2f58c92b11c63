"""
profile.py — Visitor Profile

Tracks who is asking: an anonymous user id generated once per profile,
plus an optional identity and alias reported to the server. A Profile is
passed explicitly to whoever needs it (answer sessions, the collection
manager); nothing here is process-global.
"""

from __future__ import annotations

from typing import Optional

from orama_answer.exceptions import InvalidStateError
from orama_answer.observability.logger import get_logger
from orama_answer.transport.client import SecurityLevel, Transport
from orama_answer.utils import create_random_string

log = get_logger(__name__)

_USER_ID_LENGTH = 32


class Profile:

    def __init__(self, transport: Transport, user_id: Optional[str] = None):
        self._transport = transport
        self._user_id = user_id or create_random_string(_USER_ID_LENGTH)
        self._identity: Optional[str] = None
        self._alias: Optional[str] = None

    def get_user_id(self) -> str:
        return self._user_id

    def get_identity(self) -> Optional[str]:
        return self._identity

    def get_alias(self) -> Optional[str]:
        return self._alias

    async def identify(self, identity: str) -> None:
        """Report a known identity for this visitor and remember it."""
        identity = _require_text(identity, "identity")
        await self._transport.request(
            "POST",
            "/identify",
            {"visitor_id": self._user_id, "identity": identity},
            SecurityLevel.READ,
        )
        self._identity = identity
        log.info("profile.identified", user_id=self._user_id)

    async def alias(self, alias: str) -> None:
        """Report an alias for this visitor and remember it."""
        alias = _require_text(alias, "alias")
        await self._transport.request(
            "POST",
            "/alias",
            {"visitor_id": self._user_id, "alias": alias},
            SecurityLevel.READ,
        )
        self._alias = alias
        log.info("profile.aliased", user_id=self._user_id)

    def reset(self) -> None:
        """Forget identity and alias and start over as a new anonymous visitor."""
        self._identity = None
        self._alias = None
        self._user_id = create_random_string(_USER_ID_LENGTH)
        log.info("profile.reset", user_id=self._user_id)

    def __repr__(self) -> str:
        return f"<Profile user_id={self._user_id} identified={self._identity is not None}>"


def _require_text(value: str, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidStateError(f"{name} must be a non-empty string")
    return value
