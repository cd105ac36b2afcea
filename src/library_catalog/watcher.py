"""Filesystem-watcher coordination.

The catalog does not receive filesystem events itself; it only needs to
switch a library's watch off while it moves files so the move is not
replayed as user adds/deletes. LibraryWatcher is that narrow interface.
WatchRegistry is the in-process implementation: it tracks which libraries
are watched and which event paths are still pending delivery.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from loguru import logger

from .models import Library

log = logger.bind(stage="watcher")

_POLL_INTERVAL = 0.025


class LibraryWatcher(Protocol):
    def is_library_watched(self, library_id: int) -> bool: ...

    def unregister_library(self, library_id: int) -> None: ...

    def register_library(self, library: Library) -> None: ...

    def paths_for_libraries(self, library_ids: Iterable[int]) -> set[Path]: ...

    def wait_for_drain(self, paths: Iterable[Path], timeout_ms: int) -> bool: ...


class WatchRegistry:
    """Watched libraries plus pending (undelivered) event paths."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._watched: dict[int, list[Path]] = {}
        self._pending: set[Path] = set()

    def register_library(self, library: Library) -> None:
        with self._lock:
            self._watched[library.id] = [lp.path for lp in library.paths]
        log.debug(f"Watching library {library.id} ({len(library.paths)} roots)")

    def unregister_library(self, library_id: int) -> None:
        with self._lock:
            self._watched.pop(library_id, None)
        log.debug(f"Stopped watching library {library_id}")

    def is_library_watched(self, library_id: int) -> bool:
        with self._lock:
            return library_id in self._watched

    def paths_for_libraries(self, library_ids: Iterable[int]) -> set[Path]:
        with self._lock:
            return {p for lid in library_ids for p in self._watched.get(lid, [])}

    def record_event(self, path: Path) -> None:
        """Queue an event; dropped if no watched root contains it."""
        with self._lock:
            if any(path.is_relative_to(root) for roots in self._watched.values() for root in roots):
                self._pending.add(path)

    def take_events(self) -> list[Path]:
        """Deliver and clear all pending events."""
        with self._lock:
            events = sorted(self._pending)
            self._pending.clear()
        return events

    def wait_for_drain(self, paths: Iterable[Path], timeout_ms: int) -> bool:
        """Wait up to timeout_ms for events under paths to be delivered.

        Events still pending at the deadline are discarded. Returns True if
        the paths drained on their own.
        """
        roots = list(paths)
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            with self._lock:
                stuck = {p for p in self._pending if any(p.is_relative_to(r) for r in roots)}
                if not stuck:
                    return True
                if time.monotonic() >= deadline:
                    self._pending -= stuck
                    log.debug(f"Discarded {len(stuck)} undelivered events after {timeout_ms}ms")
                    return False
            time.sleep(_POLL_INTERVAL)
