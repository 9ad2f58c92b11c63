"""
utils.py — Small shared helpers
"""

from __future__ import annotations

import secrets

_RANDOM_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-$"


def create_random_string(length: int) -> str:
    return "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(length))


def format_duration(duration_ms: int | float) -> str:
    """Render a millisecond duration: ``250ms``, ``2s``, ``1.5s``."""
    if duration_ms < 1000:
        return f"{duration_ms}ms"
    seconds = duration_ms / 1000
    if seconds.is_integer():
        return f"{int(seconds)}s"
    return f"{seconds:.1f}s"
