"""Sync channels — diff-based, bidirectional sync between cells and storage.

Outbound: every commit of the root produces one diff of the bound items
whose cells changed, written with the channel's write function.

Inbound: diffs delivered through the channel's listen function are
validated and applied to every bound cell in one transaction. Each applied
value is remembered on the registration so the commit it causes is not
written back to storage.

Usage:
    store = MemoryStorage()
    channel = sync_channel(root, channel="prefs", write=store.write,
                           read=store.read, listen=store.listen)
    ...
    channel.dispose()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Iterable, Mapping

from cellsync.errors import UnsupportedStateError
from cellsync.loadable import DEFAULT_VALUE, DefaultValue, Loadable, LoadableState
from cellsync.registry import (
    Channel,
    Diff,
    ItemKey,
    PendingUpdate,
    ReadItem,
    Registration,
    Registry,
    Storage,
    WriteItems,
)
from cellsync.validation import validate

if TYPE_CHECKING:
    from cellsync.cell import CellInfo
    from cellsync.root import Root
    from cellsync.snapshot import Snapshot

logger = logging.getLogger("cellsync.sync")

UpdateItems = Callable[[Mapping[ItemKey, "Loadable | None"]], None]
Listen = Callable[[UpdateItems], "Callable[[], None] | None"]


# --- Outbound ---


def _is_echo(info: CellInfo, pending: PendingUpdate | None) -> bool:
    if pending is None:
        return False
    if info.is_set:
        loadable = info.loadable
        if loadable.state is not LoadableState.HAS_VALUE:
            return False
        value = pending.value
        return not isinstance(value, DefaultValue) and (loadable.contents is value or loadable.contents == value)
    return pending.value is DEFAULT_VALUE


def build_diff(registry: Registry, channel: Channel, snapshot: Snapshot) -> Diff:
    """Diff of every item bound to a cell the snapshot modified, minus echoes.

    Clears the pending-update marker of every registration it visits.
    """
    diff: Diff = {}
    for cell in snapshot.modified_cells():
        registration = registry.get(channel, cell.key)
        if registration is None:
            continue
        info = snapshot.get_info(cell)
        if _is_echo(info, registration.pending_update):
            logger.debug("Skipping echo of %r on channel %r", cell.key, channel)
        else:
            for item_key, binding in registration.item_keys.items():
                diff[item_key] = info.loadable if info.is_set or binding.sync_default else None
        registration.pending_update = None
    return diff


# --- Inbound ---


def _plan(registry: Registry, channel: Channel,
          diff: Iterable[tuple[ItemKey, Loadable | None]]) -> list[tuple[Registration, object]]:
    """Validate a whole diff before anything is applied.

    Returns (registration, value-or-DEFAULT_VALUE) pairs in delivery order.
    """
    plan: list[tuple[Registration, object]] = []
    for item_key, loadable in diff:
        for registration, binding in registry.registrations_for(channel, item_key):
            if loadable is None:
                plan.append((registration, DEFAULT_VALUE))
                continue
            validated = validate(loadable, binding.restore)
            if validated.state is LoadableState.HAS_VALUE:
                plan.append((registration, validated.contents))
            elif validated.state is LoadableState.HAS_ERROR:
                # Cells cannot hold an error from here yet; reset to the default.
                logger.warning(
                    "Item %r on channel %r has error %r; resetting %r to default",
                    item_key, channel, validated.contents, registration.cell.key,
                )
                plan.append((registration, DEFAULT_VALUE))
            elif validated.state is LoadableState.LOADING:
                raise UnsupportedStateError(
                    f"Item {item_key!r} on channel {channel!r}: cells cannot be set "
                    f"to a loading value from storage"
                )
            else:
                raise ValueError(f"Unknown loadable state: {validated.state!r}")
    return plan


def apply_diff(root: Root, channel: Channel, diff: Mapping[ItemKey, Loadable | None]) -> None:
    """Apply an inbound diff to every bound cell in one transaction."""
    registry = root.registry
    plan = _plan(registry, channel, diff.items())
    previous: dict[int, tuple[Registration, PendingUpdate | None]] = {}
    with root.transaction():
        try:
            for registration, value in plan:
                previous.setdefault(id(registration), (registration, registration.pending_update))
                registration.pending_update = PendingUpdate(value)
                if value is DEFAULT_VALUE:
                    root.reset(registration.cell)
                else:
                    root.set(registration.cell, value)
        except BaseException:
            # The transaction rolls the cells back; markers go back with them.
            for registration, marker in previous.values():
                registration.pending_update = marker
            raise
    logger.debug("Applied %d item(s) to %d cell(s) on channel %r", len(diff), len(plan), channel)


# --- Subscription ---


class SyncChannel:
    """One active synchronization subscription of a root.

    Registers the storage descriptor, writes a diff on every commit, and
    hands handle_listen to the backend's listen function.
    """

    def __init__(
        self,
        root: Root,
        channel: Channel = None,
        *,
        write: WriteItems | None = None,
        read: ReadItem | None = None,
        listen: Listen | None = None,
    ) -> None:
        self.root = root
        self.channel = channel
        self._write = write
        self._storage = Storage(write=write, read=read)
        self._unsubscribe: Callable[[], None] | None = None
        self._stop_listening: Callable[[], None] | None = None
        self._disposed = False

        # Registered before any cell of the channel initialises, so their
        # binding effects can read from it.
        root.registry.set_storage(channel, self._storage)
        if write is not None:
            self._unsubscribe = root.subscribe(self._on_commit)
        if listen is not None:
            self._stop_listening = listen(self.handle_listen)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def handle_listen(self, diff: Mapping[ItemKey, Loadable | None]) -> None:
        """Callback for the backend: apply external changes to the bound cells."""
        if self._disposed:
            return
        self.root.marshal(lambda: apply_diff(self.root, self.channel, diff))

    def _on_commit(self, snapshot: Snapshot) -> None:
        if self._disposed or self.root.registry.storage(self.channel) is not self._storage:
            return
        diff = build_diff(self.root.registry, self.channel, snapshot)
        logger.debug("Writing %d item(s) to channel %r", len(diff), self.channel)
        self._write(diff)

    def dispose(self) -> None:
        """Stop syncing: detach from commits and listen, drop the storage descriptor."""
        if self._disposed:
            return
        self._disposed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
        if self._stop_listening is not None:
            self._stop_listening()
        self.root.registry.remove_storage(self.channel, self._storage)

    def __enter__(self) -> SyncChannel:
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        return f"SyncChannel({self.channel!r}, {state})"


def sync_channel(
    root: Root,
    channel: Channel = None,
    *,
    write: WriteItems | None = None,
    read: ReadItem | None = None,
    listen: Listen | None = None,
) -> SyncChannel:
    """Start syncing root's cells bound to channel with a storage backend."""
    return SyncChannel(root, channel, write=write, read=read, listen=listen)
