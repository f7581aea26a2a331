"""MemoryStorage — a dict-backed storage backend.

Implements the read/write/listen contract a sync channel expects. push()
stands in for a change made by someone else: it updates the items and
notifies listeners, whereas write() (the channel's own writes) does not.
"""

from __future__ import annotations

import logging
from typing import Callable, Mapping

from cellsync.loadable import Loadable

logger = logging.getLogger("cellsync.memory")

Listener = Callable[[Mapping[str, "Loadable | None"]], None]


class MemoryStorage:
    def __init__(self, items: Mapping[str, Loadable] | None = None) -> None:
        self.items: dict[str, Loadable] = dict(items) if items else {}
        self.writes: list[dict[str, Loadable | None]] = []
        self._listeners: list[Listener] = []

    def read(self, item_key: str) -> Loadable | None:
        return self.items.get(item_key)

    def write(self, diff: Mapping[str, Loadable | None]) -> None:
        self.writes.append(dict(diff))
        self._apply(diff)

    def listen(self, callback: Listener) -> Callable[[], None]:
        self._listeners.append(callback)

        def _stop() -> None:
            try:
                self._listeners.remove(callback)
            except ValueError:
                pass  # already removed

        return _stop

    def push(self, diff: Mapping[str, Loadable | None]) -> None:
        """Apply an external change and deliver it to every listener."""
        self._apply(diff)
        logger.debug("Pushing %d item(s) to %d listener(s)", len(diff), len(self._listeners))
        for callback in list(self._listeners):
            callback(dict(diff))

    def _apply(self, diff: Mapping[str, Loadable | None]) -> None:
        for item_key, loadable in diff.items():
            if loadable is None:
                self.items.pop(item_key, None)
            else:
                self.items[item_key] = loadable

    def __repr__(self) -> str:
        return f"MemoryStorage({sorted(self.items)})"
