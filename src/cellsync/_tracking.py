"""Dependency tracking and batching.

Uses contextvars to track which cells are read during a reaction's
evaluation, building the dependency graph automatically.

Batching: every mutation of a Root happens inside a batch. Invalidations
accumulate while the batch is open and the root settles once, when the
outermost batch exits, so derivations never see half a transaction.
"""

from __future__ import annotations

import contextvars
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from cellsync.reaction import Reaction, _DataReaction

    Derivation = Reaction | _DataReaction

# The currently-evaluating derivation.
# When set, any Root.get() call registers the cell as a dependency.
current_derivation: contextvars.ContextVar[Derivation | None] = contextvars.ContextVar(
    "current_derivation", default=None
)


class Batch:
    """Batch depth counter plus the derivations waiting for it to close."""

    __slots__ = ("depth", "pending", "_on_exit")

    def __init__(self, on_exit: Callable[[], None]) -> None:
        self.depth = 0
        self.pending: set[Derivation] = set()
        self._on_exit = on_exit

    def begin(self) -> None:
        """Enter a batching scope. Nested batches are supported."""
        self.depth += 1

    def end(self) -> None:
        """Exit a batching scope. The outermost exit settles the owner."""
        self.depth -= 1
        if self.depth == 0:
            self._on_exit()

    def schedule(self, derivation: Derivation) -> None:
        """Schedule a derivation; deferred while a batch is open."""
        if self.depth > 0:
            self.pending.add(derivation)
        else:
            derivation._run()

    def flush(self) -> None:
        """Run all pending derivations, including ones scheduled during the flush."""
        while self.pending:
            batch = list(self.pending)
            self.pending.clear()
            for derivation in batch:
                derivation._run()
