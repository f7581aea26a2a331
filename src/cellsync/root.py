"""Root — owner of cell values, transactions and commit snapshots.

Every mutation runs inside a batch. When the outermost batch exits the root
settles: pending reactions run, the changes are committed as a Snapshot
and handed to commit listeners, then deferred tasks run. Anything those
steps change is committed in turn, until nothing is left.

Thread safety: pass scheduler= (e.g. app.call_from_thread) and any set()
or future settlement from another thread is marshaled to the thread that
created the root. Without a scheduler the root assumes a single thread.
"""

from __future__ import annotations

import concurrent.futures
import functools
import logging
import threading
from collections import deque
from contextlib import contextmanager
from typing import Any, Callable, Iterator, ParamSpec, TypeVar

from cellsync._anchor import Anchor
from cellsync._tracking import Batch, current_derivation
from cellsync.cell import Cell, CellInfo, EffectContext
from cellsync.errors import CellPendingError, CellSyncError
from cellsync.loadable import DEFAULT_VALUE, Loadable, LoadableState
from cellsync.registry import Registry
from cellsync.snapshot import Snapshot

logger = logging.getLogger("cellsync.root")

P = ParamSpec("P")
R = TypeVar("R")
T = TypeVar("T")

CommitListener = Callable[[Snapshot], None]


class Root:
    """An independent store of cell values plus its sync registry."""

    def __init__(self, *, scheduler: Callable[[Callable[[], None]], Any] | None = None,
                 registry: Registry | None = None) -> None:
        self.registry = registry if registry is not None else Registry()
        self._anchor = Anchor()
        self._batch = Batch(self._settle)
        self._listeners: list[CommitListener] = []
        self._deferred: deque[Callable[[], None]] = deque()
        self._undo_logs: list[dict[str, tuple[Loadable | None, bool]]] = []
        self._settling = False
        self._scheduler = scheduler
        self._owner_thread = threading.current_thread()

    # --- Reads ---

    def get(self, cell: Cell[T]) -> T:
        """Read a settled value. Raises the stored error, or CellPendingError while loading."""
        loadable = self.get_loadable(cell)
        if loadable.state is LoadableState.HAS_VALUE:
            return loadable.contents
        if loadable.state is LoadableState.HAS_ERROR:
            error = loadable.contents
            if isinstance(error, BaseException):
                raise error
            raise CellSyncError(f"Cell {cell.key!r} holds error {error!r}")
        raise CellPendingError(cell.key, loadable.contents)

    def get_loadable(self, cell: Cell[T]) -> Loadable[T]:
        """Read the cell's Loadable. Inside a derivation, registers the dependency."""
        self._ensure(cell)
        derivation = current_derivation.get()
        if derivation is not None:
            slot = self._anchor.slot(cell.key)
            slot.observers.add(derivation)
            derivation._dependencies.add(slot)
        loadable = self._anchor.values.get(cell.key)
        return loadable if loadable is not None else Loadable.of(cell.default)

    def is_set(self, cell: Cell) -> bool:
        self._ensure(cell)
        return cell.key in self._anchor.values

    def get_info(self, cell: Cell) -> CellInfo:
        return CellInfo(
            loadable=self.get_loadable(cell),
            is_set=cell.key in self._anchor.values,
            is_modified=cell.key in self._anchor.modified,
        )

    def snapshot(self) -> Snapshot:
        """The current state, with nothing marked modified."""
        anchor = self._anchor
        return Snapshot(anchor.cells, anchor.values, (), anchor.version)

    # --- Writes ---

    def set(self, cell: Cell[T], value: T | Loadable[T] | Any) -> None:
        """Set a plain value, a Loadable, or DEFAULT_VALUE (same as reset)."""
        self.marshal(lambda: self._set_direct(cell, value))

    def reset(self, cell: Cell) -> None:
        """Return the cell to its declared default and mark it unset."""
        self.marshal(lambda: self._set_direct(cell, DEFAULT_VALUE))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Batch mutations; roll this scope's cell changes back if it raises.

        Usage:
            with root.transaction():
                root.set(first, "Ada")
                root.set(last, "Lovelace")
                # derivations and commit listeners run here, once
        """
        undo: dict[str, tuple[Loadable | None, bool]] = {}
        self._undo_logs.append(undo)
        self._batch.begin()
        try:
            yield
        except BaseException:
            self._rollback(undo)
            raise
        finally:
            self._undo_logs.pop()
            self._batch.end()

    def action(self, fn: Callable[P, R]) -> Callable[P, R]:
        """Decorator: run fn inside a transaction of this root."""

        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with self.transaction():
                return fn(*args, **kwargs)

        return wrapper

    # --- Lifecycle ---

    def subscribe(self, listener: CommitListener) -> Callable[[], None]:
        """Call listener with every committed Snapshot. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass  # already removed

        return _unsubscribe

    def defer(self, task: Callable[[], None]) -> None:
        """Run task after the current transaction has committed.

        With no transaction open, the task runs right away.
        """
        self._deferred.append(task)
        if self._batch.depth == 0:
            self._settle()

    def dispose(self) -> None:
        """Run effect cleanups (newest first) and drop commit listeners.

        A failing cleanup is logged and the remaining ones still run.
        """
        cleanups = self._anchor.cleanups
        while cleanups:
            cleanup = cleanups.pop()
            try:
                cleanup()
            except Exception:
                logger.exception("Effect cleanup %r failed", cleanup)
        self._listeners.clear()
        self._deferred.clear()

    # --- Internals used by effects ---

    def _seed(self, cell: Cell, value: Any) -> None:
        """Initial value from an effect: set, but not modified and not notified."""
        if value is DEFAULT_VALUE:
            self._unseed(cell)
            return
        loadable = value if isinstance(value, Loadable) else Loadable.of(value)
        self._anchor.values[cell.key] = loadable
        if loadable.state is LoadableState.LOADING:
            self._watch(cell, loadable)

    def _unseed(self, cell: Cell) -> None:
        self._anchor.values.pop(cell.key, None)

    # --- Threads ---

    def marshal(self, fn: Callable[[], None]) -> None:
        """Run fn on the thread that created the root.

        Called from another thread with a scheduler configured, fn is handed
        to the scheduler. Otherwise it runs right away.
        """
        if self._scheduler is not None and threading.current_thread() is not self._owner_thread:
            self._scheduler(fn)
        else:
            fn()

    # --- Internals ---

    def _ensure(self, cell: Cell) -> None:
        """Initialise a cell on first use by running its effects in one batch."""
        anchor = self._anchor
        if cell.key in anchor.cells:
            return
        anchor.cells[cell.key] = cell
        if not cell.effects:
            return
        contexts: list[EffectContext] = []
        cleanups: list[Callable[[], None]] = []
        self._batch.begin()
        try:
            for effect in cell.effects:
                ctx = EffectContext(cell, self)
                contexts.append(ctx)
                cleanup = effect(ctx)
                if cleanup is not None:
                    cleanups.append(cleanup)
        except BaseException:
            # Leave the cell uninitialised so the next access retries.
            del anchor.cells[cell.key]
            anchor.values.pop(cell.key, None)
            for cleanup in reversed(cleanups):
                cleanup()
            raise
        else:
            anchor.cleanups.extend(cleanups)
        finally:
            for ctx in contexts:
                ctx._initializing = False
            self._batch.end()

    def _set_direct(self, cell: Cell, value: Any) -> None:
        self._ensure(cell)
        if value is DEFAULT_VALUE:
            loadable = None
        else:
            loadable = value if isinstance(value, Loadable) else Loadable.of(value)
        self._batch.begin()
        try:
            self._write(cell, loadable)
        finally:
            self._batch.end()

    def _write(self, cell: Cell, loadable: Loadable | None) -> None:
        anchor = self._anchor
        key = cell.key
        old = anchor.values.get(key)
        if old is loadable or (old is not None and loadable is not None and old == loadable):
            return
        for undo in self._undo_logs:
            undo.setdefault(key, (old, key in anchor.modified))
        if loadable is None:
            del anchor.values[key]
        else:
            anchor.values[key] = loadable
        anchor.modified[key] = None
        for observer in list(anchor.slot(key).observers):
            self._batch.schedule(observer)
        if loadable is not None and loadable.state is LoadableState.LOADING:
            self._watch(cell, loadable)

    def _rollback(self, undo: dict[str, tuple[Loadable | None, bool]]) -> None:
        anchor = self._anchor
        for key, (old, was_modified) in undo.items():
            if old is None:
                anchor.values.pop(key, None)
            else:
                anchor.values[key] = old
            if was_modified:
                anchor.modified[key] = None
            else:
                anchor.modified.pop(key, None)

    def _watch(self, cell: Cell, loadable: Loadable) -> None:
        """Replace a loading value with its outcome once the future settles."""

        def _done(future) -> None:
            self.marshal(lambda: self._settle_loading(cell, loadable, future))

        loadable.contents.add_done_callback(_done)

    def _settle_loading(self, cell: Cell, loadable: Loadable, future) -> None:
        if self._anchor.values.get(cell.key) is not loadable:
            return  # superseded
        if future.cancelled():
            outcome = Loadable.error(concurrent.futures.CancelledError(cell.key))
        elif future.exception() is not None:
            outcome = Loadable.error(future.exception())
        elif future.result() is DEFAULT_VALUE:
            outcome = DEFAULT_VALUE  # no match once resolved: back to the default
        else:
            outcome = Loadable.of(future.result())
        self._set_direct(cell, outcome)

    def _settle(self) -> None:
        if self._settling:
            return
        self._settling = True
        try:
            while True:
                self._batch.flush()
                if self._anchor.modified:
                    self._commit()
                elif self._deferred:
                    self._deferred.popleft()()
                else:
                    break
        finally:
            self._settling = False

    def _commit(self) -> None:
        anchor = self._anchor
        anchor.version += 1
        modified = tuple(anchor.modified)
        anchor.modified.clear()
        snapshot = Snapshot(anchor.cells, anchor.values, modified, anchor.version)
        logger.debug("Commit %d: %s", anchor.version, ", ".join(modified))
        for listener in list(self._listeners):
            listener(snapshot)

    def __repr__(self) -> str:
        return f"Root(cells={len(self._anchor.cells)}, version={self._anchor.version})"
