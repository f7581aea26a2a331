"""cellsync error hierarchy.

All cellsync-specific errors inherit from CellSyncError for easy catching.
Errors raised by storage backends are never wrapped.
"""


class CellSyncError(Exception):
    """Base error for all cellsync operations."""


class SyncConfigurationError(CellSyncError):
    """A storage read returned something that is not a Loadable."""


class SyncReadError(CellSyncError):
    """A storage read returned an error-state Loadable with a non-exception payload."""

    def __init__(self, item_key: str, payload: object) -> None:
        super().__init__(f"Storage read for {item_key!r} failed: {payload!r}")
        self.item_key = item_key
        self.payload = payload


class UnsupportedStateError(CellSyncError):
    """An inbound update tried to put a cell into the loading state."""


class CellPendingError(CellSyncError):
    """A cell was read synchronously while its value is still loading."""

    def __init__(self, key: str, future) -> None:
        super().__init__(f"Cell {key!r} is still loading")
        self.key = key
        self.future = future
