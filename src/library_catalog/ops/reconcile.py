"""Rescan reconciliation -- match a fresh directory listing to the catalog.

Attach: a new file joins an existing book when it matches a fileless
placeholder by title, or a book already living in the same folder.
Create: unmatched new files are regrouped with the library's grouping mode.
Delete: a book whose primary file vanished loses only the vanished files;
it survives with a promoted primary while any file remains, and is removed
(with its cache directory) once none do.

Every effect runs in its own store transaction so one failing book does not
undo the others.
"""

from __future__ import annotations

import shutil
from collections.abc import Iterable

from loguru import logger

from ..catalog_db import CatalogDB
from ..config import CatalogConfig
from ..errors import StoreError
from ..models import (
    CatalogBook,
    CatalogFile,
    DiscoveredFile,
    GroupingResult,
    Library,
    OrganizationMode,
)
from .grouping import group_for_initial_scan
from .keys import normalize_key, similarity

log = logger.bind(stage="reconcile")


class Reconciler:
    def __init__(self, db: CatalogDB, config: CatalogConfig) -> None:
        self.db = db
        self.config = config

    # -- New files --

    def existing_path_keys(self, library: Library) -> set[tuple[int, str, str]]:
        return self.db.file_path_keys(library.id)

    def detect_new_files(
        self, discovered: Iterable[DiscoveredFile], library: Library
    ) -> list[DiscoveredFile]:
        existing = self.existing_path_keys(library)
        new_files = [f for f in discovered if f.path_key not in existing]
        log.info(f"Library {library.id}: {len(new_files)} new files")
        return new_files

    def find_matching_book(
        self,
        file: DiscoveredFile,
        library: Library,
        fileless: list[CatalogBook] | None = None,
    ) -> CatalogBook | None:
        """Existing book a new file should attach to, or None.

        Fileless placeholders win over directory matches. Root-level files
        only ever match placeholders.
        """
        if fileless is None:
            fileless = self.db.find_fileless_books(library.id)
        match = self._match_fileless(file, fileless)
        if match is not None:
            return match

        if not file.sub_path:
            return None
        in_folder = [
            b for b in self.db.find_books_in_directory(file.root_id, file.sub_path) if b.has_files
        ]
        if not in_folder:
            return None
        if library.organization_mode == OrganizationMode.BOOK_PER_FOLDER:
            return self._match_book_per_folder(file, in_folder)
        return self._match_auto_detect(file, in_folder)

    def group_for_rescan(
        self, new_files: Iterable[DiscoveredFile], library: Library
    ) -> GroupingResult:
        fileless = self.db.find_fileless_books(library.id)
        result = GroupingResult()
        unmatched: list[DiscoveredFile] = []
        for f in new_files:
            book = self.find_matching_book(f, library, fileless)
            if book is not None:
                result.files_to_attach.setdefault(book.id, []).append(f)
            else:
                unmatched.append(f)

        if unmatched:
            result.new_book_groups = group_for_initial_scan(
                unmatched,
                library.organization_mode,
                folder_threshold=self.config.folder_match_threshold,
                cluster_threshold=self.config.cluster_threshold,
            )
        log.info(
            f"Rescan grouping: {sum(len(v) for v in result.files_to_attach.values())} files "
            f"attach to {len(result.files_to_attach)} books, "
            f"{len(result.new_book_groups)} new groups"
        )
        return result

    def _match_fileless(
        self, file: DiscoveredFile, fileless: list[CatalogBook]
    ) -> CatalogBook | None:
        file_key = normalize_key(file.file_name)
        for book in fileless:
            if book.library_path_id is not None and book.library_path_id != file.root_id:
                continue
            if not book.title:
                continue
            score = similarity(file_key, normalize_key(book.title))
            if score >= self.config.fileless_match_threshold:
                log.debug(f"Matched '{file.file_name}' to fileless book {book.id} '{book.title}' ({score:.2f})")
                return book
        return None

    def _match_book_per_folder(
        self, file: DiscoveredFile, books: list[CatalogBook]
    ) -> CatalogBook | None:
        if len(books) == 1:
            return books[0]
        log.warning(
            f"BOOK_PER_FOLDER: {len(books)} books in folder '{file.sub_path}', using filename match"
        )
        file_key = normalize_key(file.file_name)
        for book in books:
            if normalize_key(book.primary_file.file_name) == file_key:
                return book
        return None

    def _match_auto_detect(
        self, file: DiscoveredFile, books: list[CatalogBook]
    ) -> CatalogBook | None:
        if len(books) == 1:
            log.debug(f"AUTO_DETECT: single book in '{file.sub_path}', attaching '{file.file_name}'")
            return books[0]

        file_key = normalize_key(file.file_name)
        best: CatalogBook | None = None
        best_score = 0.0
        for book in books:
            book_key = normalize_key(book.primary_file.file_name)
            if book_key == file_key:
                return book
            score = similarity(file_key, book_key)
            if score >= self.config.directory_match_threshold and score > best_score:
                best, best_score = book, score
        if best is not None:
            log.debug(f"AUTO_DETECT: fuzzy matched '{file.file_name}' to book {best.id} ({best_score:.2f})")
        return best

    # -- Vanished files --

    def detect_deleted_book_ids(
        self, discovered: Iterable[DiscoveredFile], library: Library
    ) -> list[int]:
        """Books with files whose primary file is no longer on disk."""
        present = {f.path_key for f in discovered}
        deleted = [
            book.id
            for book in self.db.find_books_by_library(library.id)
            if book.has_files and book.primary_file.path_key not in present
        ]
        if deleted:
            log.info(f"Library {library.id}: {len(deleted)} books lost their primary file")
        return deleted

    def process_deleted_books(
        self,
        book_ids: Iterable[int],
        discovered: Iterable[DiscoveredFile],
        library: Library,
    ) -> tuple[int, int]:
        """Drop vanished files; delete books left with none.

        Returns (books_deleted, files_removed).
        """
        present = {f.path_key for f in discovered}
        books_deleted = 0
        files_removed = 0
        for book_id in book_ids:
            try:
                with self.db.transaction():
                    book = self.db.get_book(book_id)
                    if book is None:
                        continue
                    remaining = [f for f in book.files if f.path_key in present]
                    vanished = len(book.files) - len(remaining)
                    if remaining:
                        self._promote_primary(book, remaining, library)
                        self.db.save_book(book)
                        log.info(
                            f"Book {book_id} lost {vanished} files; kept {len(remaining)} "
                            f"(primary now {book.primary_file.file_name})"
                        )
                    else:
                        self.db.delete_books([book_id])
                        books_deleted += 1
                        log.info(f"Deleted book {book_id}: no files remain")
                files_removed += vanished
            except StoreError as e:
                log.error(f"Failed to process deleted book {book_id}: {e}")
                continue
            if not remaining:
                self._remove_book_artifacts(book_id)
        return books_deleted, files_removed

    def _promote_primary(
        self, book: CatalogBook, remaining: list[CatalogFile], library: Library
    ) -> None:
        book.files = remaining
        if any(f.is_primary for f in remaining):
            return
        best = min(remaining, key=lambda f: (library.format_rank(f.book_type), f.file_name))
        best.is_primary = True

    def _remove_book_artifacts(self, book_id: int) -> None:
        cache_dir = self.config.book_cache_dir(book_id)
        if not cache_dir.exists():
            return
        try:
            shutil.rmtree(cache_dir)
            log.debug(f"Removed cache dir {cache_dir}")
        except OSError as e:
            log.warning(f"Failed to remove cache dir {cache_dir}: {e}")

    def detect_deleted_additional_files(
        self, discovered: Iterable[DiscoveredFile], library: Library
    ) -> list[int]:
        """Ids of additional-format files that vanished from disk."""
        present = {f.path_key for f in discovered}
        return [
            f.id
            for book in self.db.find_books_by_library(library.id)
            for f in book.additional_files
            if f.path_key not in present
        ]

    def delete_removed_additional_files(self, file_ids: Iterable[int]) -> int:
        ids = list(file_ids)
        if not ids:
            return 0
        with self.db.transaction():
            removed = self.db.delete_files(ids)
        log.info(f"Removed {removed} vanished additional files")
        return removed
