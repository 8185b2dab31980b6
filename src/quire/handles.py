"""Generation-tagged handle arenas.

A handle is an (index, generation) pair. Freeing a slot bumps its
generation, so any copy of the old handle a plugin kept around fails the
generation check instead of reaching whatever object reuses the slot.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import NamedTuple


class Handle(NamedTuple):
    index: int
    generation: int

    def __str__(self) -> str:
        return f"{self.index}v{self.generation}"


@dataclass
class _Slot[T]:
    generation: int = 0
    value: T | None = None
    occupied: bool = False


class HandleArena[T]:
    """Slot storage keyed by generation-tagged handles."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._slots: list[_Slot[T]] = []
        self._free: list[int] = []

    def __len__(self) -> int:
        return sum(1 for slot in self._slots if slot.occupied)

    def __iter__(self) -> Iterator[tuple[Handle, T]]:
        for index, slot in enumerate(self._slots):
            if slot.occupied:
                yield Handle(index, slot.generation), slot.value  # type: ignore[misc]

    def insert(self, value: T) -> Handle:
        if self._free:
            index = self._free.pop()
            slot = self._slots[index]
        else:
            index = len(self._slots)
            slot = _Slot()
            self._slots.append(slot)
        slot.value = value
        slot.occupied = True
        return Handle(index, slot.generation)

    def _slot(self, handle: object) -> _Slot[T] | None:
        if not isinstance(handle, Handle):
            return None
        if not 0 <= handle.index < len(self._slots):
            return None
        slot = self._slots[handle.index]
        if not slot.occupied or slot.generation != handle.generation:
            return None
        return slot

    def get(self, handle: object) -> T | None:
        slot = self._slot(handle)
        return None if slot is None else slot.value

    def contains(self, handle: object) -> bool:
        return self._slot(handle) is not None

    def remove(self, handle: object) -> T | None:
        slot = self._slot(handle)
        if slot is None:
            return None
        value = slot.value
        slot.value = None
        slot.occupied = False
        slot.generation += 1
        self._free.append(handle.index)  # type: ignore[union-attr]
        return value

    def find(self, value: T) -> Handle | None:
        """Return the live handle already issued for *value*, if any."""
        for handle, existing in self:
            if existing == value:
                return handle
        return None

    def clear(self) -> None:
        """Invalidate every live handle."""
        for index, slot in enumerate(self._slots):
            if slot.occupied:
                slot.value = None
                slot.occupied = False
                slot.generation += 1
                self._free.append(index)
