"""cellsync: diff-based sync between reactive state cells and external storage."""

from importlib.metadata import version as _version

__version__ = _version("cellsync")

from cellsync.loadable import DEFAULT_VALUE, DefaultValue, Loadable, LoadableState, is_loadable
from cellsync.errors import (
    CellPendingError,
    CellSyncError,
    SyncConfigurationError,
    SyncReadError,
    UnsupportedStateError,
)
from cellsync.cell import Cell, CellInfo, EffectContext
from cellsync.snapshot import Snapshot
from cellsync.registry import ItemBinding, PendingUpdate, Registration, Registry, Storage
from cellsync.root import Root
from cellsync.reaction import Reaction, autorun, reaction
from cellsync.validation import validate
from cellsync.sync import SyncChannel, apply_diff, build_diff, sync_channel
from cellsync.effect import sync_effect
from cellsync.memory import MemoryStorage
# textual NOT auto-imported — opt-in only

__all__ = [
    "DEFAULT_VALUE",
    "DefaultValue",
    "Loadable",
    "LoadableState",
    "is_loadable",
    "CellSyncError",
    "CellPendingError",
    "SyncConfigurationError",
    "SyncReadError",
    "UnsupportedStateError",
    "Cell",
    "CellInfo",
    "EffectContext",
    "Snapshot",
    "ItemBinding",
    "PendingUpdate",
    "Registration",
    "Registry",
    "Storage",
    "Root",
    "Reaction",
    "autorun",
    "reaction",
    "validate",
    "SyncChannel",
    "apply_diff",
    "build_diff",
    "sync_channel",
    "sync_effect",
    "MemoryStorage",
]
