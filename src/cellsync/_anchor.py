"""Data anchor — plain Python structures that hold one root's cell state.

Cells are declarations; their values live here, keyed by cell key.
An absent entry in `values` means the cell is unset and reads its default.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from cellsync.cell import Cell
    from cellsync.loadable import Loadable


class Slot:
    """Observer set for one cell. Derivations hold slots as dependencies."""

    __slots__ = ("observers",)

    def __init__(self) -> None:
        self.observers: set = set()

    def _remove_observer(self, observer) -> None:
        self.observers.discard(observer)


class Anchor:
    __slots__ = ("cells", "values", "slots", "modified", "cleanups", "version")

    def __init__(self) -> None:
        self.cells: dict[str, Cell] = {}  # initialised cells
        self.values: dict[str, Loadable] = {}  # set cells only
        self.slots: dict[str, Slot] = {}
        self.modified: dict[str, None] = {}  # ordered set, since the last commit
        self.cleanups: list[Callable[[], None]] = []
        self.version = 0

    def slot(self, key: str) -> Slot:
        slot = self.slots.get(key)
        if slot is None:
            slot = self.slots[key] = Slot()
        return slot
