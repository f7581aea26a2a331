"""Cells — declarations of independently addressable reactive state.

A Cell is a thin handle: a key, a default and a list of effects. Values
live in a Root, so the same Cell can be used by several roots at once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, Sequence, TypeVar

if TYPE_CHECKING:
    from cellsync.loadable import Loadable
    from cellsync.root import Root

T = TypeVar("T")

Effect = Callable[["EffectContext"], "Callable[[], None] | None"]


class Cell(Generic[T]):
    """A unit of reactive state with a declared default."""

    __slots__ = ("key", "default", "effects")

    def __init__(self, key: str, default: T, effects: Sequence[Effect] = ()) -> None:
        self.key = key
        self.default = default
        self.effects = tuple(effects)

    def __repr__(self) -> str:
        return f"Cell({self.key!r}, default={self.default!r})"


@dataclass(frozen=True)
class CellInfo:
    loadable: Loadable
    is_set: bool
    is_modified: bool = False


class EffectContext(Generic[T]):
    """What an effect sees while its cell is being initialised in a root.

    set_self during initialisation seeds the starting value without marking
    the cell modified; afterwards it is an ordinary Root.set().
    """

    __slots__ = ("cell", "root", "_initializing")

    def __init__(self, cell: Cell[T], root: Root) -> None:
        self.cell = cell
        self.root = root
        self._initializing = True

    def set_self(self, value: Any) -> None:
        if self._initializing:
            self.root._seed(self.cell, value)
        else:
            self.root.set(self.cell, value)

    def reset_self(self) -> None:
        if self._initializing:
            self.root._unseed(self.cell)
        else:
            self.root.reset(self.cell)

    def get_loadable(self) -> Loadable:
        return self.root.get_loadable(self.cell)
