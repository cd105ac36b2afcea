"""Tests for ops/reconcile.py -- rescan attach, create, and delete decisions."""

import pytest

from library_catalog.catalog_db import CatalogDB
from library_catalog.config import CatalogConfig
from library_catalog.models import (
    BookFileType,
    CatalogBook,
    CatalogFile,
    DiscoveredFile,
    OrganizationMode,
    book_type_for,
)
from library_catalog.ops.reconcile import Reconciler


@pytest.fixture
def config(tmp_path):
    return CatalogConfig(
        _env_file=None,
        db_path=tmp_path / "catalog.db",
        cache_dir=tmp_path / "cache",
        log_dir=tmp_path / "logs",
        event_drain_ms=0,
    )


@pytest.fixture
def db(config):
    store = CatalogDB(config.db_path)
    yield store
    store.close()


@pytest.fixture
def library(db, tmp_path):
    return db.add_library("Books", [tmp_path / "lib", tmp_path / "lib2"])


@pytest.fixture
def reconciler(db, config):
    return Reconciler(db, config)


def _book(db, library, files, title=None, root_index=0):
    root = library.paths[root_index]
    book = CatalogBook(
        library_id=library.id,
        library_path_id=root.id,
        title=title,
        files=[
            CatalogFile(
                library_path_id=root.id,
                sub_path=sub,
                file_name=name,
                book_type=book_type_for(name),
                is_primary=(i == 0),
            )
            for i, (sub, name) in enumerate(files)
        ],
    )
    return db.create_book(book)


def _df(library, name, sub="", root_index=0):
    return DiscoveredFile(
        library_path=library.paths[root_index],
        sub_path=sub,
        file_name=name,
        book_type=book_type_for(name),
    )


class TestDetectNewFiles:
    def test_only_unknown_paths_returned(self, db, library, reconciler):
        _book(db, library, [("Dune", "Dune.epub")])
        discovered = [_df(library, "Dune.epub", "Dune"), _df(library, "Dune.pdf", "Dune")]
        new = reconciler.detect_new_files(discovered, library)
        assert [f.file_name for f in new] == ["Dune.pdf"]

    def test_same_name_other_root_is_new(self, db, library, reconciler):
        _book(db, library, [("Dune", "Dune.epub")])
        new = reconciler.detect_new_files([_df(library, "Dune.epub", "Dune", 1)], library)
        assert len(new) == 1


class TestFilelessMatching:
    def test_placeholder_gets_file(self, db, library, reconciler):
        placeholder = db.create_book(CatalogBook(library_id=library.id, title="Project Hail Mary"))
        match = reconciler.find_matching_book(_df(library, "project-hail-mary.epub"), library)
        assert match is not None
        assert match.id == placeholder.id

    def test_placeholder_wins_over_directory_match(self, db, library, reconciler):
        _book(db, library, [("Weir", "The Martian.epub")])
        placeholder = db.create_book(CatalogBook(library_id=library.id, title="Project Hail Mary"))
        match = reconciler.find_matching_book(
            _df(library, "Project Hail Mary.epub", "Weir"), library
        )
        assert match.id == placeholder.id

    def test_placeholder_in_other_root_ignored(self, db, library, reconciler):
        db.create_book(
            CatalogBook(
                library_id=library.id,
                title="Project Hail Mary",
                library_path_id=library.paths[1].id,
            )
        )
        assert reconciler.find_matching_book(_df(library, "Project Hail Mary.epub"), library) is None

    def test_dissimilar_title_ignored(self, db, library, reconciler):
        db.create_book(CatalogBook(library_id=library.id, title="Project Hail Mary"))
        assert reconciler.find_matching_book(_df(library, "Neuromancer.epub"), library) is None


class TestDirectoryMatching:
    def test_single_book_in_folder_attaches(self, db, library, reconciler):
        book = _book(db, library, [("Dune", "Dune.epub")])
        match = reconciler.find_matching_book(_df(library, "Dune.m4b", "Dune"), library)
        assert match.id == book.id

    def test_root_level_never_directory_matched(self, db, library, reconciler):
        _book(db, library, [("", "Dune.epub")])
        assert reconciler.find_matching_book(_df(library, "Dune.pdf"), library) is None

    def test_auto_detect_exact_key_among_many(self, db, library, reconciler):
        _book(db, library, [("Herbert", "Dune.epub")])
        messiah = _book(db, library, [("Herbert", "Dune Messiah.epub")])
        match = reconciler.find_matching_book(
            _df(library, "Dune Messiah.pdf", "Herbert"), library
        )
        assert match.id == messiah.id

    def test_auto_detect_fuzzy_among_many(self, db, library, reconciler):
        _book(db, library, [("Herbert", "Dune.epub")])
        children = _book(db, library, [("Herbert", "Children of Dune.epub")])
        match = reconciler.find_matching_book(
            _df(library, "Childern of Dune.pdf", "Herbert"), library
        )
        assert match.id == children.id

    def test_auto_detect_no_close_match(self, db, library, reconciler):
        _book(db, library, [("Herbert", "Dune.epub")])
        _book(db, library, [("Herbert", "Dune Messiah.epub")])
        match = reconciler.find_matching_book(
            _df(library, "The Dosadi Experiment.epub", "Herbert"), library
        )
        assert match is None

    def test_book_per_folder_single_book(self, db, tmp_path, reconciler):
        library = db.add_library(
            "Folders", [tmp_path / "folders"], organization_mode=OrganizationMode.BOOK_PER_FOLDER
        )
        book = _book(db, library, [("Anything", "Whatever.epub")])
        match = reconciler.find_matching_book(_df(library, "Unrelated.pdf", "Anything"), library)
        assert match.id == book.id

    def test_book_per_folder_many_books_exact_only(self, db, tmp_path, reconciler):
        library = db.add_library(
            "Folders", [tmp_path / "folders"], organization_mode=OrganizationMode.BOOK_PER_FOLDER
        )
        _book(db, library, [("Mixed", "Dune.epub")])
        emma = _book(db, library, [("Mixed", "Emma.epub")])
        assert reconciler.find_matching_book(_df(library, "Emma.pdf", "Mixed"), library).id == emma.id
        assert reconciler.find_matching_book(_df(library, "Emmaa.pdf", "Mixed"), library) is None


class TestGroupForRescan:
    def test_splits_attach_and_create(self, db, library, reconciler):
        book = _book(db, library, [("Dune", "Dune.epub")])
        new_files = [
            _df(library, "Dune.pdf", "Dune"),
            _df(library, "Emma.epub", "Austen"),
            _df(library, "Emma.pdf", "Austen"),
        ]
        result = reconciler.group_for_rescan(new_files, library)
        assert [f.file_name for f in result.files_to_attach[book.id]] == ["Dune.pdf"]
        assert len(result.new_book_groups) == 1
        (members,) = result.new_book_groups.values()
        assert {f.file_name for f in members} == {"Emma.epub", "Emma.pdf"}


class TestDeletedBooks:
    def test_detects_missing_primary(self, db, library, reconciler):
        book = _book(db, library, [("Dune", "Dune.epub"), ("Dune", "Dune.pdf")])
        discovered = [_df(library, "Dune.pdf", "Dune")]
        assert reconciler.detect_deleted_book_ids(discovered, library) == [book.id]

    def test_fileless_books_never_detected(self, db, library, reconciler):
        db.create_book(CatalogBook(library_id=library.id, title="Placeholder"))
        assert reconciler.detect_deleted_book_ids([], library) == []

    def test_book_survives_while_a_file_remains(self, db, library, reconciler):
        book = _book(db, library, [("Dune", "Dune.epub"), ("Dune", "Dune.pdf")])
        discovered = [_df(library, "Dune.pdf", "Dune")]
        deleted, removed = reconciler.process_deleted_books([book.id], discovered, library)
        assert (deleted, removed) == (0, 1)

        stored = db.get_book(book.id)
        assert [f.file_name for f in stored.files] == ["Dune.pdf"]
        assert stored.primary_file.is_primary is True

    def test_book_deleted_when_no_files_remain(self, db, library, reconciler, config):
        book = _book(db, library, [("Dune", "Dune.epub"), ("Dune", "Dune.pdf")])
        cache_dir = config.book_cache_dir(book.id)
        cache_dir.mkdir(parents=True)
        (cache_dir / "cover.jpg").write_bytes(b"jpeg")

        deleted, removed = reconciler.process_deleted_books([book.id], [], library)

        assert (deleted, removed) == (1, 2)
        assert db.get_book(book.id) is None
        assert not cache_dir.exists()

    def test_missing_book_id_skipped(self, library, reconciler):
        assert reconciler.process_deleted_books([999], [], library) == (0, 0)

    def test_promotes_by_default_format_order(self, db, library, reconciler):
        book = _book(
            db, library, [("Dune", "Dune.m4b"), ("Dune", "Dune.epub"), ("Dune", "Dune.pdf")]
        )
        discovered = [_df(library, "Dune.epub", "Dune"), _df(library, "Dune.pdf", "Dune")]
        reconciler.process_deleted_books([book.id], discovered, library)
        assert db.get_book(book.id).primary_file.book_type == BookFileType.PDF

    def test_promotes_by_library_priority(self, db, tmp_path, reconciler):
        library = db.add_library(
            "Prio", [tmp_path / "prio"], format_priority=[BookFileType.EPUB]
        )
        book = _book(
            db, library, [("Dune", "Dune.m4b"), ("Dune", "Dune.epub"), ("Dune", "Dune.pdf")]
        )
        discovered = [_df(library, "Dune.epub", "Dune"), _df(library, "Dune.pdf", "Dune")]
        reconciler.process_deleted_books([book.id], discovered, library)
        assert db.get_book(book.id).primary_file.book_type == BookFileType.EPUB


class TestDeletedAdditionalFiles:
    def test_removes_only_vanished_additional(self, db, library, reconciler):
        book = _book(db, library, [("Dune", "Dune.epub"), ("Dune", "Dune.pdf"), ("Dune", "Dune.m4b")])
        discovered = [_df(library, "Dune.epub", "Dune"), _df(library, "Dune.m4b", "Dune")]

        ids = reconciler.detect_deleted_additional_files(discovered, library)
        assert reconciler.delete_removed_additional_files(ids) == 1

        stored = db.get_book(book.id)
        assert sorted(f.file_name for f in stored.files) == ["Dune.epub", "Dune.m4b"]
        assert stored.primary_file.file_name == "Dune.epub"

    def test_nothing_to_remove(self, reconciler):
        assert reconciler.delete_removed_additional_files([]) == 0
