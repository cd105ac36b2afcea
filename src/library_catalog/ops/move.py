"""Atomic relocation of all files of a book under a naming pattern.

Three stages, each reversible until the next one succeeds:

    stage    -- rename every source to a hidden temp sibling
    commit   -- rename every temp file to its final target
    persist  -- write new locations to the catalog in one transaction

A persist failure reverses every committed move. A stage or commit failure
reverses committed moves and puts every still-staged file back. Either way
the error is re-raised and neither the filesystem nor the catalog keeps a
partial result. Watched libraries are unregistered for the duration.
"""

from __future__ import annotations

import shutil
import time
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path

from loguru import logger

from ..catalog_db import CatalogDB
from ..config import CatalogConfig
from ..errors import BookNotFoundError, CatalogError, MoveError
from ..models import CatalogBook, CatalogFile, Library, LibraryPath, MoveResult
from ..watcher import LibraryWatcher
from .naming import resolve_pattern

log = logger.bind(stage="move")


@dataclass
class _PlannedMove:
    file: CatalogFile
    source: Path
    target: Path
    target_root: LibraryPath
    new_sub_path: str
    new_file_name: str


def move_file_with_backup(source: Path) -> Path:
    """Rename source to a hidden sibling, freeing its name. Returns the temp path."""
    temp = source.with_name(f".{source.name}.{uuid.uuid4().hex[:8]}.moving")
    log.debug(f"Stage {source} -> {temp.name}")
    shutil.move(str(source), str(temp))
    return temp


def _cleanup_empty_parents(directory: Path, stop_at: set[Path]) -> None:
    """Remove empty directories upward until a library root or a non-empty dir."""
    current = directory
    while current not in stop_at and current != current.parent:
        try:
            if current.is_dir() and not any(current.iterdir()):
                log.debug(f"Removed empty dir: {current}")
                current.rmdir()
            else:
                break
        except OSError:
            break
        current = current.parent


class FileMover:
    """Moves book files on disk and keeps the catalog in step."""

    def __init__(
        self,
        db: CatalogDB,
        config: CatalogConfig,
        watcher: LibraryWatcher | None = None,
    ) -> None:
        self.db = db
        self.config = config
        self.watcher = watcher

    # -- Public API --

    def move_book_files(
        self,
        book: CatalogBook,
        target_library_path: LibraryPath | None = None,
        pattern: str | None = None,
    ) -> MoveResult:
        """Move every file of book to its pattern-derived location.

        Returns moved=False for no-ops and aborted moves (missing sources,
        unknown roots). Raises MoveError or StoreError after a rollback.
        """
        library = self._library_for(book)
        if library is None:
            return MoveResult()
        plans = self._plan(book, library, target_library_path, pattern)
        if not plans:
            return MoveResult()
        with self._watch_paused([library]):
            return self._execute(book, library, plans)

    def move_books(
        self,
        book_ids: Iterable[int],
        target_library_path_id: int | None = None,
    ) -> dict[int, MoveResult]:
        """Bulk move. Each affected library's watch is paused once.

        A failing book is logged and reported as not moved; the rest carry on.
        """
        results: dict[int, MoveResult] = {}
        books: list[CatalogBook] = []
        for book_id in book_ids:
            try:
                books.append(self.db.require_book(book_id))
            except BookNotFoundError as e:
                log.warning(f"Skipping move: {e}")
                results[book_id] = MoveResult()

        target_root = None
        if target_library_path_id is not None:
            target_root = self.db.get_library_path(target_library_path_id)
            if target_root is None:
                log.error(f"Target library path not found: {target_library_path_id}")
                results.update({b.id: MoveResult() for b in books})
                return results

        libraries: dict[int, Library] = {}
        for book in books:
            library = libraries.get(book.library_id) or self._library_for(book)
            if library is not None:
                libraries[library.id] = library

        with self._watch_paused(libraries.values()):
            for book in books:
                library = libraries.get(book.library_id)
                if library is None:
                    results[book.id] = MoveResult()
                    continue
                try:
                    plans = self._plan(book, library, target_root, None)
                    results[book.id] = (
                        self._execute(book, library, plans) if plans else MoveResult()
                    )
                except CatalogError as e:
                    log.error(f"Move failed for book {book.id}: {e}")
                    results[book.id] = MoveResult()

        moved = sum(1 for r in results.values() if r.moved)
        log.info(f"Bulk move: {moved}/{len(results)} books moved")
        return results

    # -- Planning --

    def _library_for(self, book: CatalogBook) -> Library | None:
        try:
            return self.db.get_library(book.library_id)
        except CatalogError as e:
            log.error(f"Cannot move book {book.id}: {e}")
            return None

    def _plan(
        self,
        book: CatalogBook,
        library: Library,
        target_root: LibraryPath | None,
        pattern: str | None,
    ) -> list[_PlannedMove]:
        primary = book.primary_file
        if primary is None:
            log.warning(f"Book {book.id} has no files; nothing to move")
            return []

        current_root = library.get_path(primary.library_path_id)
        if current_root is None:
            log.error(f"Book {book.id}: root {primary.library_path_id} not in library {library.id}")
            return []
        target_root = target_root or current_root
        if target_root.library_id != library.id:
            log.error(f"Book {book.id}: target root {target_root.path} is not in library {library.id}")
            return []

        pattern = pattern or library.file_naming_pattern or self.config.file_naming_pattern

        plans: list[_PlannedMove] = []
        taken: set[Path] = set()
        primary_target_dir: Path | None = None
        for f in [primary, *book.additional_files]:
            root = library.get_path(f.library_path_id)
            if root is None:
                log.error(f"Book {book.id}: file root {f.library_path_id} not in library")
                return []
            source = f.full_path(root.path)
            relative = resolve_pattern(book, f, pattern)
            target = target_root.path / relative
            if primary_target_dir is None:
                primary_target_dir = target.parent
            elif target in taken:
                # Two files render to one name: keep the name, use the primary's folder
                target = primary_target_dir / f.file_name
            taken.add(target)

            if f is primary and target == source:
                log.debug(f"Book {book.id} already at {source}; no move needed")
                return []
            if target == source:
                continue

            new_sub = target.parent.relative_to(target_root.path).as_posix()
            plans.append(
                _PlannedMove(
                    file=f,
                    source=source,
                    target=target,
                    target_root=target_root,
                    new_sub_path="" if new_sub == "." else new_sub,
                    new_file_name=target.name,
                )
            )

        for plan in plans:
            present = plan.source.is_dir() if plan.file.folder_based else plan.source.is_file()
            if not present:
                log.error(f"Book {book.id}: source missing, aborting move: {plan.source}")
                return []
            if plan.target.exists():
                log.error(f"Book {book.id}: target already exists, aborting move: {plan.target}")
                return []
        return plans

    # -- Execution --

    @contextmanager
    def _watch_paused(self, libraries: Iterable[Library]) -> Iterator[None]:
        watcher = self.watcher
        paused = [lib for lib in libraries if watcher and watcher.is_library_watched(lib.id)]
        if not paused:
            yield
            return

        paths = watcher.paths_for_libraries([lib.id for lib in paused])
        for lib in paused:
            watcher.unregister_library(lib.id)
        try:
            watcher.wait_for_drain(paths, self.config.event_drain_ms)
            yield
        finally:
            # Let events raised by the move or its rollback arrive while still unregistered
            time.sleep(self.config.event_drain_ms / 1000)
            for lib in paused:
                watcher.register_library(lib)
            log.debug(f"Re-registered {len(paused)} libraries with watcher")

    def _execute(
        self,
        book: CatalogBook,
        library: Library,
        plans: list[_PlannedMove],
    ) -> MoveResult:
        roots = {lp.path for lp in library.paths}
        # Rollback prunes created target dirs only up to what already existed
        existing = {d for plan in plans for d in plan.target.parents if d.exists()}
        staged: list[tuple[_PlannedMove, Path]] = []
        committed: list[_PlannedMove] = []
        current = plans[0]
        try:
            for plan in plans:
                current = plan
                staged.append((plan, move_file_with_backup(plan.source)))

            while staged:
                current, temp = staged[0]
                self._commit(temp, current.target)
                staged.pop(0)
                committed.append(current)

            try:
                self._persist(book, plans)
            except Exception:
                log.error(f"Catalog update failed for book {book.id}; reverting {len(committed)} moves")
                self._revert(committed)
                committed.clear()
                self._prune_targets(plans, roots | existing)
                raise
        except OSError as e:
            log.error(f"Move failed for book {book.id}: {e}")
            self._revert(committed)
            self._prune_targets(plans, roots | existing)
            raise MoveError(f"Move failed for book {book.id}: {e}", current.source, current.target) from e
        finally:
            for plan, temp in staged:
                self._restore(temp, plan.source)

        for plan in plans:
            plan.file.library_path_id = plan.target_root.id
            plan.file.sub_path = plan.new_sub_path
            plan.file.file_name = plan.new_file_name
        book.library_path_id = plans[0].target_root.id

        for plan in plans:
            _cleanup_empty_parents(plan.source.parent, roots)

        primary = book.primary_file
        log.info(f"Moved book {book.id}: {len(plans)} files -> {plans[0].target.parent}")
        return MoveResult(
            moved=True,
            new_file_name=primary.file_name,
            new_sub_path=primary.sub_path,
        )

    def _commit(self, temp: Path, target: Path) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        log.debug(f"Commit {temp.name} -> {target}")
        shutil.move(str(temp), str(target))

    def _persist(self, book: CatalogBook, plans: list[_PlannedMove]) -> None:
        updated = [
            replace(
                plan.file,
                library_path_id=plan.target_root.id,
                sub_path=plan.new_sub_path,
                file_name=plan.new_file_name,
            )
            for plan in plans
        ]
        with self.db.transaction():
            self.db.update_file_locations(updated)
            if book.id is not None and book.library_path_id != plans[0].target_root.id:
                self.db.update_book_root(book.id, plans[0].target_root.id)

    def _revert(self, committed: list[_PlannedMove]) -> None:
        for plan in reversed(committed):
            self._restore(plan.target, plan.source)

    def _prune_targets(self, plans: list[_PlannedMove], stop_at: set[Path]) -> None:
        for plan in plans:
            _cleanup_empty_parents(plan.target.parent, stop_at)

    def _restore(self, current: Path, original: Path) -> None:
        try:
            original.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(current), str(original))
            log.debug(f"Restored {original}")
        except OSError as e:
            log.error(f"Rollback failed, file left at {current} (expected {original}): {e}")
