"""
session/store.py — Interaction Store

Ordered, append-only collection of Interactions with an id index.
Only the last element is ever mutated in place; clear() is the only
destructive operation.
"""

from __future__ import annotations

from typing import Iterator, Optional

from orama_answer.exceptions import InvalidStateError
from orama_answer.session.types import Interaction


class InteractionStore:

    def __init__(self) -> None:
        self._items: list[Interaction] = []
        self._index: dict[str, Interaction] = {}

    def append(self, interaction: Interaction) -> None:
        """
        Add a new interaction at the end.

        Raises InvalidStateError if the id is already stored or the previous
        interaction has not reached a terminal state yet.
        """
        if interaction.id in self._index:
            raise InvalidStateError(f"Interaction {interaction.id} is already stored")
        last = self.last()
        if last is not None and not last.is_terminal:
            raise InvalidStateError(
                f"Interaction {last.id} is still {last.state.value}; "
                f"cannot start {interaction.id}"
            )
        self._items.append(interaction)
        self._index[interaction.id] = interaction

    def get(self, interaction_id: str) -> Optional[Interaction]:
        return self._index.get(interaction_id)

    def last(self) -> Optional[Interaction]:
        return self._items[-1] if self._items else None

    def active(self) -> Optional[Interaction]:
        """The non-terminal interaction, if one exists."""
        last = self.last()
        if last is not None and not last.is_terminal:
            return last
        return None

    def snapshot(self) -> tuple[Interaction, ...]:
        return tuple(i.snapshot() for i in self._items)

    def clear(self) -> None:
        self._items.clear()
        self._index.clear()

    def __iter__(self) -> Iterator[Interaction]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, interaction_id: object) -> bool:
        return interaction_id in self._index
