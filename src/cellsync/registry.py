"""Registry — which cells are bound to which item keys, per channel.

One Registry belongs to one Root. It holds two tables:
- channel -> cell key -> Registration (written by binding effects)
- channel -> Storage (written by sync channels)

Bindings are reference counted: unregistering a cell's last item key
drops its Registration, so nothing outlives the effects that created it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Hashable, Iterator, Optional

if TYPE_CHECKING:
    from cellsync.cell import Cell
    from cellsync.loadable import DefaultValue, Loadable

logger = logging.getLogger("cellsync.registry")

Channel = Optional[Hashable]
ItemKey = str
Diff = dict[ItemKey, "Loadable | None"]
Restore = Callable[[Any], Any]
WriteItems = Callable[[Diff], None]
ReadItem = Callable[[ItemKey], "Loadable | None"]


@dataclass(frozen=True)
class ItemBinding:
    restore: Restore
    sync_default: bool = False


@dataclass(frozen=True)
class PendingUpdate:
    """The last value an inbound update applied; DEFAULT_VALUE for a reset."""

    value: Any | DefaultValue


@dataclass
class Registration:
    cell: Cell
    item_keys: dict[ItemKey, ItemBinding] = field(default_factory=dict)
    pending_update: PendingUpdate | None = None
    # Bindings per item key; several effects of one cell may share a key.
    counts: dict[ItemKey, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Storage:
    write: WriteItems | None = None
    read: ReadItem | None = None


class Registry:
    def __init__(self) -> None:
        self._tables: dict[Channel, dict[str, Registration]] = {}
        self._storages: dict[Channel, Storage] = {}

    # --- Cell registrations ---

    def channel_table(self, channel: Channel) -> dict[str, Registration]:
        """The channel's cell-key -> Registration table, created on first access."""
        table = self._tables.get(channel)
        if table is None:
            table = self._tables[channel] = {}
        return table

    def get(self, channel: Channel, cell_key: str) -> Registration | None:
        table = self._tables.get(channel)
        return table.get(cell_key) if table is not None else None

    def register(self, channel: Channel, cell: Cell, item_key: ItemKey,
                 binding: ItemBinding) -> Registration:
        """Bind item_key to cell under channel, creating the Registration if needed."""
        table = self.channel_table(channel)
        registration = table.get(cell.key)
        if registration is None:
            registration = table[cell.key] = Registration(cell=cell)
        registration.item_keys[item_key] = binding
        registration.counts[item_key] = registration.counts.get(item_key, 0) + 1
        logger.debug("Bound %r to item %r on channel %r", cell.key, item_key, channel)
        return registration

    def unregister(self, channel: Channel, cell_key: str, item_key: ItemKey) -> None:
        """Release one binding of item_key.

        The item key is unbound once every effect that bound it has released
        it, and the Registration is dropped once it has no item keys left.
        """
        table = self._tables.get(channel)
        if table is None:
            return
        registration = table.get(cell_key)
        if registration is None:
            return
        remaining = registration.counts.get(item_key, 0) - 1
        if remaining > 0:
            registration.counts[item_key] = remaining
            return
        registration.counts.pop(item_key, None)
        registration.item_keys.pop(item_key, None)
        if not registration.item_keys:
            del table[cell_key]
            logger.debug("Dropped registration %r on channel %r", cell_key, channel)

    def registrations_for(self, channel: Channel, item_key: ItemKey) -> Iterator[tuple[Registration, ItemBinding]]:
        """Every (registration, binding) bound to item_key; one key may fan out to many cells."""
        for registration in list(self.channel_table(channel).values()):
            binding = registration.item_keys.get(item_key)
            if binding is not None:
                yield registration, binding

    # --- Storage descriptors ---

    def set_storage(self, channel: Channel, storage: Storage) -> None:
        """Last registration wins."""
        self._storages[channel] = storage

    def storage(self, channel: Channel) -> Storage | None:
        return self._storages.get(channel)

    def remove_storage(self, channel: Channel, storage: Storage | None = None) -> None:
        """Remove the channel's descriptor; with storage=, only if it is still the active one."""
        current = self._storages.get(channel)
        if current is None or (storage is not None and current is not storage):
            return
        del self._storages[channel]
