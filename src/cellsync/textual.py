"""Textual integration for cellsync. Opt-in — requires textual.

A root built with root_for_app() marshals mutations from worker threads
(storage listeners, settling futures) onto the app thread. on_commit()
bridges committed snapshots to widgets: it skips while the app is paused
or not running and swallows NoMatches from widget queries.
"""

from contextlib import contextmanager

from textual.css.query import NoMatches

from cellsync.root import Root

# Module-owned pause state — keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend commit callbacks during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def root_for_app(app, **kwargs) -> Root:
    """A Root owned by the app thread; other threads go through call_from_thread.

    Call from the app thread, e.g. in App.on_mount.
    """
    return Root(scheduler=app.call_from_thread, **kwargs)


def on_commit(app, root: Root, callback):
    """Subscribe callback(snapshot) to root's commits, guarded for the widget tree.

    Returns the unsubscribe function.
    """

    def _guarded(snapshot) -> None:
        if not is_safe(app):
            return
        try:
            callback(snapshot)
        except NoMatches:
            pass

    return root.subscribe(_guarded)
