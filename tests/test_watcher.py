"""Tests for watcher.py -- watched-library registry and event draining."""

import threading
import time
from pathlib import Path

from library_catalog.models import Library, LibraryPath
from library_catalog.watcher import WatchRegistry


def _library(library_id=1, root="/lib"):
    return Library(
        id=library_id,
        name=f"lib{library_id}",
        paths=[LibraryPath(id=library_id, library_id=library_id, path=Path(root))],
    )


class TestRegistration:
    def test_register_unregister(self):
        registry = WatchRegistry()
        registry.register_library(_library())
        assert registry.is_library_watched(1)
        registry.unregister_library(1)
        assert not registry.is_library_watched(1)

    def test_unregister_unknown_is_noop(self):
        WatchRegistry().unregister_library(5)

    def test_paths_for_libraries(self):
        registry = WatchRegistry()
        registry.register_library(_library(1, "/a"))
        registry.register_library(_library(2, "/b"))
        assert registry.paths_for_libraries([1, 2, 3]) == {Path("/a"), Path("/b")}


class TestEvents:
    def test_event_outside_watched_roots_dropped(self):
        registry = WatchRegistry()
        registry.register_library(_library(1, "/a"))
        registry.record_event(Path("/elsewhere/x.epub"))
        registry.record_event(Path("/a/Dune/Dune.epub"))
        assert registry.take_events() == [Path("/a/Dune/Dune.epub")]
        assert registry.take_events() == []

    def test_events_dropped_after_unregister(self):
        registry = WatchRegistry()
        registry.register_library(_library(1, "/a"))
        registry.unregister_library(1)
        registry.record_event(Path("/a/x.epub"))
        assert registry.take_events() == []


class TestWaitForDrain:
    def test_nothing_pending(self):
        assert WatchRegistry().wait_for_drain([Path("/a")], 0) is True

    def test_stuck_events_discarded_at_deadline(self):
        registry = WatchRegistry()
        registry.register_library(_library(1, "/a"))
        registry.record_event(Path("/a/x.epub"))
        assert registry.wait_for_drain([Path("/a")], 50) is False
        assert registry.take_events() == []

    def test_events_under_other_roots_ignored(self):
        registry = WatchRegistry()
        registry.register_library(_library(1, "/a"))
        registry.register_library(_library(2, "/b"))
        registry.record_event(Path("/b/y.epub"))
        assert registry.wait_for_drain([Path("/a")], 0) is True
        assert registry.take_events() == [Path("/b/y.epub")]

    def test_drains_when_consumer_delivers(self):
        registry = WatchRegistry()
        registry.register_library(_library(1, "/a"))
        registry.record_event(Path("/a/x.epub"))

        def consumer():
            time.sleep(0.05)
            registry.take_events()

        t = threading.Thread(target=consumer)
        t.start()
        assert registry.wait_for_drain([Path("/a")], 2000) is True
        t.join()
