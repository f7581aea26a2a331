"""Reactions — side effects triggered by cell changes.

A reaction re-runs whenever a cell it read through Root.get() or
Root.get_loadable() changes. Re-runs happen when the root settles, after
the outermost transaction, so a reaction never observes half a diff.

Two flavors:
- autorun(fn): runs fn immediately, re-runs when any cell it read changes.
- reaction(data_fn, effect_fn): tracks data_fn, calls effect_fn with the new
  value only when data_fn's result changes.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from cellsync._tracking import current_derivation

T = TypeVar("T")


class Reaction:
    """A reactive side effect that re-runs when its dependencies change."""

    __slots__ = ("_fn", "_dependencies", "_disposed")

    def __init__(self, fn: Callable[[], None]) -> None:
        self._fn = fn
        self._dependencies: set = set()
        self._disposed = False

    def _untrack(self) -> None:
        for dep in self._dependencies:
            dep._remove_observer(self)
        self._dependencies.clear()

    def _run(self) -> None:
        """Re-evaluate the reaction function, re-tracking dependencies."""
        if self._disposed:
            return
        self._untrack()
        token = current_derivation.set(self)
        try:
            self._fn()
        finally:
            current_derivation.reset(token)

    def dispose(self) -> None:
        """Stop this reaction. Disconnects from all dependencies."""
        self._disposed = True
        self._untrack()

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        return f"Reaction({getattr(self._fn, '__name__', self._fn)!r}, {state})"


class _DataReaction(Reaction):
    """Internal: reaction(data_fn, effect_fn) implementation.

    Tracks data_fn's dependencies. When they change, re-runs data_fn.
    If the result differs from last time, calls effect_fn with the new value.
    """

    __slots__ = ("_effect_fn", "_last_value", "_initialized")

    def __init__(self, data_fn: Callable, effect_fn: Callable) -> None:
        super().__init__(data_fn)
        self._effect_fn = effect_fn
        self._last_value = None
        self._initialized = False

    def _track(self):
        self._untrack()
        token = current_derivation.set(self)
        try:
            return self._fn()
        finally:
            current_derivation.reset(token)

    def _run(self) -> None:
        if self._disposed:
            return
        new_value = self._track()
        if not self._initialized or new_value != self._last_value:
            self._last_value = new_value
            self._initialized = True
            self._effect_fn(new_value)


def autorun(fn: Callable[[], None]) -> Reaction:
    """Run fn immediately, then re-run whenever any cell it reads changes.

    Usage:
        log = []
        r = autorun(lambda: log.append(root.get(theme)))
        root.set(theme, "dark")
        # log == ["light", "dark"]
        r.dispose()
    """
    r = Reaction(fn)
    r._run()
    return r


def reaction(
    data_fn: Callable[[], T],
    effect_fn: Callable[[T], None],
    *,
    fire_immediately: bool = False,
) -> Reaction:
    """Track data_fn's cells; call effect_fn when the result changes.

    Usage:
        r = reaction(
            lambda: (root.get(first), root.get(last)),
            lambda names: print(*names),
        )
    """
    r = _DataReaction(data_fn, effect_fn)
    if fire_immediately:
        r._run()
    else:
        # Establish deps, but suppress the initial effect
        r._last_value = r._track()
        r._initialized = True
    return r
