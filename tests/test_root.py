"""Tests for Root: reads, writes, commits, effects and lifecycle."""

import concurrent.futures
import logging
import threading

import pytest

from cellsync import DEFAULT_VALUE, Cell, CellPendingError, CellSyncError, Loadable, Root, autorun


class TestReadWrite:
    def test_default(self):
        root = Root()
        c = Cell("count", 0)
        assert root.get(c) == 0
        assert root.is_set(c) is False

    def test_set_get(self):
        root = Root()
        c = Cell("count", 0)
        root.set(c, 42)
        assert root.get(c) == 42
        assert root.is_set(c) is True

    def test_set_default_value_resets(self):
        root = Root()
        c = Cell("count", 0)
        root.set(c, 5)
        root.set(c, DEFAULT_VALUE)
        assert root.get(c) == 0
        assert root.is_set(c) is False

    def test_reset(self):
        root = Root()
        c = Cell("count", 0)
        root.set(c, 5)
        root.reset(c)
        assert root.get(c) == 0
        assert root.is_set(c) is False

    def test_set_to_default_is_still_set(self):
        root = Root()
        c = Cell("count", 0)
        root.set(c, 0)
        assert root.is_set(c) is True

    def test_roots_are_independent(self):
        a, b = Root(), Root()
        c = Cell("count", 0)
        a.set(c, 1)
        assert a.get(c) == 1
        assert b.get(c) == 0

    def test_get_error_raises(self):
        root = Root()
        c = Cell("count", 0)
        root.set(c, Loadable.error(KeyError("gone")))
        with pytest.raises(KeyError):
            root.get(c)

    def test_get_non_exception_error(self):
        root = Root()
        c = Cell("count", 0)
        root.set(c, Loadable.error("bad"))
        with pytest.raises(CellSyncError):
            root.get(c)

    def test_get_info(self):
        root = Root()
        c = Cell("count", 0)
        info = root.get_info(c)
        assert info.loadable == Loadable.of(0)
        assert info.is_set is False


class TestLoading:
    def test_pending_then_settles(self):
        root = Root()
        c = Cell("user", None)
        fut = concurrent.futures.Future()
        root.set(c, Loadable.loading(fut))
        with pytest.raises(CellPendingError):
            root.get(c)
        fut.set_result("ada")
        assert root.get(c) == "ada"

    def test_pending_failure_becomes_error(self):
        root = Root()
        c = Cell("user", None)
        fut = concurrent.futures.Future()
        root.set(c, Loadable.loading(fut))
        fut.set_exception(TimeoutError())
        assert root.get_loadable(c).has_error

    def test_superseded_future_ignored(self):
        root = Root()
        c = Cell("user", None)
        fut = concurrent.futures.Future()
        root.set(c, Loadable.loading(fut))
        root.set(c, "grace")
        fut.set_result("ada")
        assert root.get(c) == "grace"

    def test_settlement_is_committed(self):
        root = Root()
        c = Cell("user", None)
        fut = concurrent.futures.Future()
        root.set(c, Loadable.loading(fut))
        snapshots = []
        root.subscribe(snapshots.append)
        fut.set_result("ada")
        assert len(snapshots) == 1
        assert snapshots[0].get_loadable(c) == Loadable.of("ada")


class TestCommits:
    def test_commit_per_change(self):
        root = Root()
        c = Cell("count", 0)
        snapshots = []
        root.subscribe(snapshots.append)
        root.set(c, 1)
        root.set(c, 2)
        assert [s.get_loadable(c).contents for s in snapshots] == [1, 2]
        assert [s.version for s in snapshots] == [1, 2]

    def test_dedup(self):
        """Setting an equal value changes nothing and commits nothing."""
        root = Root()
        c = Cell("count", 0)
        snapshots = []
        root.subscribe(snapshots.append)
        root.set(c, 5)
        root.set(c, 5)
        assert len(snapshots) == 1

    def test_reset_unset_cell_is_noop(self):
        root = Root()
        c = Cell("count", 0)
        snapshots = []
        root.subscribe(snapshots.append)
        root.reset(c)
        assert snapshots == []

    def test_modified_cells(self):
        root = Root()
        a, b, c = Cell("a", 0), Cell("b", 0), Cell("c", 0)
        root.get(c)
        snapshots = []
        root.subscribe(snapshots.append)
        with root.transaction():
            root.set(b, 1)
            root.set(a, 1)
        assert [cell.key for cell in snapshots[0].modified_cells()] == ["b", "a"]
        assert snapshots[0].get_info(a).is_modified is True
        assert snapshots[0].get_info(c).is_modified is False

    def test_unsubscribe(self):
        root = Root()
        c = Cell("count", 0)
        snapshots = []
        unsubscribe = root.subscribe(snapshots.append)
        unsubscribe()
        unsubscribe()  # idempotent
        root.set(c, 1)
        assert snapshots == []

    def test_listener_error_propagates(self):
        root = Root()
        c = Cell("count", 0)

        def fail(snapshot):
            raise ConnectionError("backend down")

        root.subscribe(fail)
        with pytest.raises(ConnectionError):
            root.set(c, 1)
        assert root.get(c) == 1

    def test_listener_mutation_commits_again(self):
        root = Root()
        source, mirror = Cell("source", 0), Cell("mirror", 0)
        versions = []

        def copy(snapshot):
            versions.append(snapshot.version)
            root.set(mirror, snapshot.get_loadable(source).contents)

        root.subscribe(copy)
        root.set(source, 3)
        assert root.get(mirror) == 3
        assert versions == [1, 2]

    def test_snapshot_is_frozen(self):
        root = Root()
        c = Cell("count", 0)
        root.set(c, 1)
        snap = root.snapshot()
        root.set(c, 2)
        assert snap.get_loadable(c) == Loadable.of(1)
        assert list(snap.modified_cells()) == []


class TestDefer:
    def test_runs_after_commit(self):
        root = Root()
        c = Cell("count", 0)
        order = []
        root.subscribe(lambda s: order.append("commit"))
        with root.transaction():
            root.set(c, 1)
            root.defer(lambda: order.append("deferred"))
            order.append("body")
        assert order == ["body", "commit", "deferred"]

    def test_runs_immediately_outside_transaction(self):
        root = Root()
        order = []
        root.defer(lambda: order.append("deferred"))
        assert order == ["deferred"]

    def test_deferred_mutation_is_committed(self):
        root = Root()
        c = Cell("count", 0)
        versions = []
        root.subscribe(lambda s: versions.append(s.version))
        with root.transaction():
            root.set(c, 1)
            root.defer(lambda: root.set(c, 2))
        assert versions == [1, 2]
        assert root.get(c) == 2


class TestEffects:
    def test_effect_runs_once_on_first_use(self):
        root = Root()
        calls = []
        c = Cell("count", 0, effects=[lambda ctx: calls.append(ctx.cell.key)])
        root.get(c)
        root.get(c)
        root.set(c, 1)
        assert calls == ["count"]

    def test_seed_is_set_but_not_modified(self):
        root = Root()
        snapshots = []
        root.subscribe(snapshots.append)
        c = Cell("count", 0, effects=[lambda ctx: ctx.set_self(7)])
        assert root.get(c) == 7
        assert root.is_set(c) is True
        assert snapshots == []

    def test_set_self_after_init_is_a_change(self):
        root = Root()
        contexts = []
        c = Cell("count", 0, effects=[contexts.append])
        root.get(c)
        snapshots = []
        root.subscribe(snapshots.append)
        contexts[0].set_self(3)
        assert root.get(c) == 3
        assert len(snapshots) == 1
        contexts[0].reset_self()
        assert root.is_set(c) is False

    def test_failed_init_retries(self):
        root = Root()
        attempts = []

        def flaky(ctx):
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("first time")
            ctx.set_self("ok")

        c = Cell("flaky", "default", effects=[flaky])
        with pytest.raises(RuntimeError):
            root.get(c)
        assert root.get(c) == "ok"
        assert len(attempts) == 2

    def test_failed_init_runs_earlier_cleanups(self):
        root = Root()
        cleaned = []

        def ok(ctx):
            return lambda: cleaned.append("ok")

        def bad(ctx):
            raise RuntimeError("bad")

        c = Cell("c", 0, effects=[ok, bad])
        with pytest.raises(RuntimeError):
            root.get(c)
        assert cleaned == ["ok"]

    def test_dispose_runs_cleanups_newest_first(self):
        root = Root()
        cleaned = []
        a = Cell("a", 0, effects=[lambda ctx: lambda: cleaned.append("a")])
        b = Cell("b", 0, effects=[lambda ctx: lambda: cleaned.append("b")])
        root.get(a)
        root.get(b)
        root.dispose()
        assert cleaned == ["b", "a"]

    def test_dispose_logs_failing_cleanup(self, caplog):
        root = Root()
        cleaned = []

        def broken():
            raise RuntimeError("cleanup failed")

        a = Cell("a", 0, effects=[lambda ctx: lambda: cleaned.append("a")])
        b = Cell("b", 0, effects=[lambda ctx: broken])
        root.get(a)
        root.get(b)
        with caplog.at_level(logging.ERROR, logger="cellsync.root"):
            root.dispose()
        assert cleaned == ["a"]
        assert "Effect cleanup" in caplog.text


class TestScheduler:
    def test_marshals_foreign_thread_sets(self):
        queued = []
        root = Root(scheduler=queued.append)
        c = Cell("count", 0)
        t = threading.Thread(target=lambda: root.set(c, 9))
        t.start()
        t.join()
        assert root.get(c) == 0
        assert len(queued) == 1
        queued[0]()
        assert root.get(c) == 9

    def test_owner_thread_sets_are_synchronous(self):
        queued = []
        root = Root(scheduler=queued.append)
        c = Cell("count", 0)
        root.set(c, 1)
        assert queued == []
        assert root.get(c) == 1

    def test_marshal(self):
        queued, ran = [], []
        root = Root(scheduler=queued.append)
        root.marshal(lambda: ran.append("owner"))
        t = threading.Thread(target=lambda: root.marshal(lambda: ran.append("worker")))
        t.start()
        t.join()
        assert ran == ["owner"]
        queued[0]()
        assert ran == ["owner", "worker"]


class TestReactions:
    def test_autorun_tracks_cells(self):
        root = Root()
        c = Cell("count", 0)
        log = []
        autorun(lambda: log.append(root.get(c)))
        root.set(c, 1)
        assert log == [0, 1]
