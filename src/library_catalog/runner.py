"""Scan runner -- orchestrates initial scans and rescans of a library."""

from __future__ import annotations

from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor

from loguru import logger

from .catalog_db import CatalogDB
from .concurrency import ScanGuard
from .config import CatalogConfig
from .errors import FingerprintError, LibraryPathError, StoreError, UnsupportedFormatError
from .fingerprint import fingerprint
from .models import DiscoveredFile, Library, ScanResult
from .ops.discovery import walk_library
from .ops.grouping import group_for_initial_scan
from .ops.reconcile import Reconciler
from .processors import ProcessorRegistry, build_catalog_file, default_registry

log = logger.bind(stage="runner")

PathKey = tuple[int, str, str]


class ScanRunner:
    """Runs scans and rescans with at most one in flight per library."""

    def __init__(
        self,
        config: CatalogConfig,
        db: CatalogDB | None = None,
        registry: ProcessorRegistry | None = None,
        guard: ScanGuard | None = None,
    ) -> None:
        self.config = config
        self.db = db or CatalogDB(config.db_path)
        self.registry = registry or default_registry()
        self.guard = guard or ScanGuard()
        self.reconciler = Reconciler(self.db, config)

    def process_library(self, library_id: int) -> ScanResult:
        """Initial scan: group every uncataloged file into new books."""
        library = self.db.get_library(library_id)
        with self.guard.hold(library_id):
            log.info(f"Scanning library {library.id} '{library.name}'")
            discovered = walk_library(library)
            result = ScanResult(discovered=len(discovered))

            new_files = self.reconciler.detect_new_files(discovered, library)
            result.new_files = len(new_files)
            groups = group_for_initial_scan(
                new_files,
                library.organization_mode,
                folder_threshold=self.config.folder_match_threshold,
                cluster_threshold=self.config.cluster_threshold,
            )
            self._create_books(groups, library, result)

        log.info(
            f"Scan of library {library.id} done: {result.books_created} books created, "
            f"{result.failed} failed"
        )
        return result

    def rescan_library(self, library_id: int) -> ScanResult:
        """Rescan: drop vanished files and books, attach or create for new files.

        Raises LibraryPathError when the walk finds nothing for a library
        that has books (roots probably unmounted).
        """
        library = self.db.get_library(library_id)
        with self.guard.hold(library_id):
            log.info(f"Rescanning library {library.id} '{library.name}'")
            discovered = walk_library(library)
            result = ScanResult(discovered=len(discovered))

            if not discovered:
                existing = self.db.count_books(library.id)
                if existing:
                    raise LibraryPathError(
                        f"Library {library.id} has {existing} books but no files were found; "
                        f"its paths may be offline",
                        [lp.path for lp in library.paths],
                    )

            self._remove_vanished(discovered, library, result)

            new_files = self.reconciler.detect_new_files(discovered, library)
            result.new_files = len(new_files)
            grouping = self.reconciler.group_for_rescan(new_files, library)
            self._attach_files(grouping.files_to_attach, library, result)
            self._create_books(grouping.new_book_groups, library, result)

        log.info(
            f"Rescan of library {library.id} done: {result.books_created} created, "
            f"{result.files_attached} attached, {result.books_deleted} books and "
            f"{result.files_deleted} files removed, {result.failed} failed"
        )
        return result

    # -- Steps --

    def _remove_vanished(
        self, discovered: list[DiscoveredFile], library: Library, result: ScanResult
    ) -> None:
        reconciler = self.reconciler
        try:
            file_ids = reconciler.detect_deleted_additional_files(discovered, library)
            result.files_deleted += reconciler.delete_removed_additional_files(file_ids)
        except StoreError as e:
            log.error(f"Failed to remove vanished additional files: {e}")
            result.failed += 1

        book_ids = reconciler.detect_deleted_book_ids(discovered, library)
        books_deleted, files_removed = reconciler.process_deleted_books(
            book_ids, discovered, library
        )
        result.books_deleted += books_deleted
        result.files_deleted += files_removed

    def _fingerprint_many(self, files: Iterable[DiscoveredFile]) -> dict[PathKey, str]:
        """Fingerprint files, in parallel when there are several.

        Files that cannot be read are logged and left out of the result.
        """
        files = list(files)

        def _one(f: DiscoveredFile) -> tuple[PathKey, str | None]:
            try:
                return f.path_key, fingerprint(f.full_path, f.folder_based)
            except FingerprintError as e:
                log.warning(f"Skipping {f.file_name}: {e}")
                return f.path_key, None

        workers = max(1, self.config.fingerprint_workers)
        if len(files) > 1 and workers > 1:
            with ThreadPoolExecutor(max_workers=min(workers, len(files))) as pool:
                pairs = list(pool.map(_one, files))
        else:
            pairs = [_one(f) for f in files]
        return {key: h for key, h in pairs if h is not None}

    def _create_books(
        self,
        groups: dict[str, list[DiscoveredFile]],
        library: Library,
        result: ScanResult,
    ) -> None:
        for group_key, files in groups.items():
            try:
                if self._create_book(files, library, result):
                    result.books_created += 1
            except (UnsupportedFormatError, StoreError) as e:
                log.error(f"Failed to create book for group {group_key}: {e}")
                result.failed += 1

    def _create_book(
        self, files: list[DiscoveredFile], library: Library, result: ScanResult
    ) -> bool:
        hashes = self._fingerprint_many(files)
        readable = [f for f in files if f.path_key in hashes]
        result.failed += len(files) - len(readable)
        if not readable:
            return False

        ordered = sorted(readable, key=lambda f: (library.format_rank(f.book_type), f.file_name))
        primary, extras = ordered[0], ordered[1:]
        processor = self.registry.get_processor_or_raise(primary.book_type)
        book = processor.process_file(primary, hashes[primary.path_key])
        for f in extras:
            book.files.append(build_catalog_file(f, hashes[f.path_key]))

        self.db.create_book(book)
        if not processor.generate_cover(book, primary):
            log.debug(f"No cover generated for book {book.id}")
        log.info(f"Created book {book.id} '{book.title}' ({len(book.files)} files)")
        return True

    def _attach_files(
        self,
        files_to_attach: dict[int, list[DiscoveredFile]],
        library: Library,
        result: ScanResult,
    ) -> None:
        for book_id, files in files_to_attach.items():
            book = self.db.get_book(book_id)
            if book is None:
                log.warning(f"Book {book_id} vanished before files could be attached")
                result.failed += len(files)
                continue

            hashes = self._fingerprint_many(files)
            ordered = sorted(files, key=lambda f: (library.format_rank(f.book_type), f.file_name))
            for f in ordered:
                file_hash = hashes.get(f.path_key)
                if file_hash is None:
                    result.failed += 1
                    continue
                promoting = not book.has_files
                catalog_file = build_catalog_file(f, file_hash, is_primary=promoting)
                try:
                    with self.db.transaction():
                        self.db.add_file(book_id, catalog_file)
                        if promoting and book.library_path_id is None:
                            self.db.update_book_root(book_id, f.root_id)
                except StoreError as e:
                    log.error(f"Failed to attach {f.file_name} to book {book_id}: {e}")
                    result.failed += 1
                    continue
                book.files.append(catalog_file)
                if promoting:
                    book.library_path_id = book.library_path_id or f.root_id
                    log.info(f"Promoted fileless book {book_id} with {f.file_name}")
                result.files_attached += 1
