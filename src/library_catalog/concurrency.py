"""Per-library scan exclusion.

At most one scan or rescan runs per library id at a time. A second request
for a busy library is rejected with ScanInProgressError, never queued.
Different libraries do not block each other.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from loguru import logger

from .errors import ScanInProgressError

log = logger.bind(stage="concurrency")


class ScanGuard:
    """Set of library ids with a scan in flight."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[int] = set()

    def acquire(self, library_id: int) -> None:
        with self._lock:
            if library_id in self._active:
                log.warning(f"Rejected scan for library {library_id}: already scanning")
                raise ScanInProgressError(library_id)
            self._active.add(library_id)
        log.debug(f"Scan token acquired for library {library_id}")

    def release(self, library_id: int) -> None:
        with self._lock:
            self._active.discard(library_id)
        log.debug(f"Scan token released for library {library_id}")

    def is_scanning(self, library_id: int) -> bool:
        with self._lock:
            return library_id in self._active

    @contextmanager
    def hold(self, library_id: int) -> Iterator[None]:
        """Hold the library's scan token for the duration of the block."""
        self.acquire(library_id)
        try:
            yield
        finally:
            self.release(library_id)
