"""sync_effect() — bind a cell to an item key of a sync channel.

Usage:
    theme = Cell("theme", "light", effects=[
        sync_effect(restore=lambda raw: raw if isinstance(raw, str) else None,
                    channel="prefs"),
    ])

When the cell is first used in a root, the effect registers the binding,
seeds the cell from the channel's read function and, with
sync_default=True, persists the default once it has settled.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from cellsync.cell import EffectContext
from cellsync.errors import SyncConfigurationError, SyncReadError
from cellsync.loadable import DefaultValue, Loadable, LoadableState
from cellsync.registry import Channel, ItemBinding, ItemKey
from cellsync.validation import validate

logger = logging.getLogger("cellsync.effect")


def _raise_error(item_key: ItemKey, error: Any) -> None:
    if isinstance(error, BaseException):
        raise error
    raise SyncReadError(item_key, error)


def _initialize(ctx: EffectContext, item_key: ItemKey, restore: Callable[[Any], Any],
                loadable: Any) -> None:
    if not isinstance(loadable, Loadable):
        raise SyncConfigurationError(
            f"Sync read for {item_key!r} must return a Loadable, got {type(loadable).__name__}"
        )
    if loadable.state is LoadableState.HAS_ERROR:
        _raise_error(item_key, loadable.contents)

    validated = validate(loadable, restore)
    if validated.state is LoadableState.HAS_VALUE:
        if not isinstance(validated.contents, DefaultValue):
            ctx.set_self(validated.contents)
    elif validated.state is LoadableState.HAS_ERROR:
        _raise_error(item_key, validated.contents)
    elif validated.state is LoadableState.LOADING:
        ctx.set_self(validated)
    else:
        raise ValueError(f"Unknown loadable state: {validated.state!r}")


def sync_effect(
    restore: Callable[[Any], Any],
    *,
    channel: Channel = None,
    item_key: ItemKey | None = None,
    sync_default: bool = False,
) -> Callable[[EffectContext], Callable[[], None]]:
    """Effect binding a cell to item_key (default: the cell's key) on channel.

    restore(raw) returns the typed value, None for "no match" (use the
    default), or a Loadable. sync_default=True writes the cell's default
    to storage instead of a reset marker while the cell is unset.
    """

    def effect(ctx: EffectContext) -> Callable[[], None]:
        cell = ctx.cell
        key = item_key if item_key is not None else cell.key
        registry = ctx.root.registry
        registry.register(channel, cell, key, ItemBinding(restore, sync_default))

        def cleanup() -> None:
            registry.unregister(channel, cell.key, key)

        storage = registry.storage(channel)
        if storage is not None and storage.read is not None:
            loadable = storage.read(key)
            if loadable is not None:
                try:
                    _initialize(ctx, key, restore, loadable)
                except BaseException:
                    cleanup()
                    raise

        if sync_default and storage is not None and storage.write is not None:
            write = storage.write

            def write_back() -> None:
                if registry.storage(channel) is not storage:
                    return  # channel disposed or replaced since the binding ran
                current = ctx.root.get_loadable(cell)
                if current.state is LoadableState.HAS_VALUE:
                    logger.debug("Persisting initial value of %r as %r", cell.key, key)
                    write({key: current})

            ctx.root.defer(write_back)

        return cleanup

    return effect
