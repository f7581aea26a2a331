"""Snapshots — immutable point-in-time views of a root's cells."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator, Mapping

from cellsync.cell import CellInfo
from cellsync.loadable import Loadable

if TYPE_CHECKING:
    from cellsync.cell import Cell


class Snapshot:
    """Values of all initialised cells plus the set modified by the commit."""

    __slots__ = ("_cells", "_values", "_modified", "version")

    def __init__(
        self,
        cells: Mapping[str, Cell],
        values: Mapping[str, Loadable],
        modified: tuple[str, ...] = (),
        version: int = 0,
    ) -> None:
        self._cells = dict(cells)
        self._values = dict(values)
        self._modified = modified
        self.version = version

    def get_loadable(self, cell: Cell) -> Loadable:
        loadable = self._values.get(cell.key)
        return loadable if loadable is not None else Loadable.of(cell.default)

    def get_info(self, cell: Cell) -> CellInfo:
        return CellInfo(
            loadable=self.get_loadable(cell),
            is_set=cell.key in self._values,
            is_modified=cell.key in self._modified,
        )

    def modified_cells(self) -> Iterator[Cell]:
        for key in self._modified:
            cell = self._cells.get(key)
            if cell is not None:
                yield cell

    def __repr__(self) -> str:
        return f"Snapshot(version={self.version}, modified={list(self._modified)})"
