"""Tests for ops/verify.py -- fingerprint drift detection."""

import pytest

from library_catalog.catalog_db import CatalogDB
from library_catalog.fingerprint import fingerprint_file
from library_catalog.models import BookFileType, CatalogBook, CatalogFile, VerificationSummary
from library_catalog.ops.verify import print_summary, verify_file_hashes


@pytest.fixture
def db(tmp_path):
    store = CatalogDB(tmp_path / "catalog.db")
    yield store
    store.close()


@pytest.fixture
def setup(db, tmp_path):
    """Library with one book whose file is on disk; returns (db, library, book, path)."""
    root = tmp_path / "lib"
    root.mkdir()
    path = root / "Dune.epub"
    path.write_bytes(b"original")
    library = db.add_library("Books", [root])
    digest = fingerprint_file(path)
    book = db.create_book(
        CatalogBook(
            library_id=library.id,
            title="Dune",
            files=[
                CatalogFile(
                    library_path_id=library.paths[0].id,
                    sub_path="",
                    file_name="Dune.epub",
                    book_type=BookFileType.EPUB,
                    is_primary=True,
                    initial_hash=digest,
                    current_hash=digest,
                )
            ],
        )
    )
    return db, library, book, path


def _stored_file(db, book):
    return db.get_book(book.id).files[0]


class TestVerifyFileHashes:
    def test_clean_library(self, setup):
        db, library, _, _ = setup
        summary = verify_file_hashes(db, library.id)
        assert (summary.total_books, summary.mismatch_count, summary.error_count) == (1, 0, 0)

    def test_mismatch_updates_current_only(self, setup):
        db, library, book, path = setup
        original = _stored_file(db, book).initial_hash
        path.write_bytes(b"changed")

        summary = verify_file_hashes(db, library.id)

        assert summary.mismatch_count == 1
        stored = _stored_file(db, book)
        assert stored.current_hash == fingerprint_file(path)
        assert stored.initial_hash == original

    def test_overwrite_initial(self, setup):
        db, library, book, path = setup
        path.write_bytes(b"changed")
        verify_file_hashes(db, library.id, overwrite_initial=True)
        stored = _stored_file(db, book)
        assert stored.initial_hash == stored.current_hash == fingerprint_file(path)

    def test_dry_run_writes_nothing(self, setup):
        db, library, book, path = setup
        before = _stored_file(db, book).current_hash
        path.write_bytes(b"changed")

        summary = verify_file_hashes(db, library.id, dry_run=True)

        assert summary.mismatch_count == 1
        assert summary.dry_run is True
        assert _stored_file(db, book).current_hash == before

    def test_missing_file_counted_as_error(self, setup):
        db, library, _, path = setup
        path.unlink()
        summary = verify_file_hashes(db, library.id)
        assert summary.error_count == 1
        assert summary.mismatch_count == 0


class TestPrintSummary:
    def test_output(self, capsys):
        print_summary(VerificationSummary(total_books=3, mismatch_count=1, error_count=0))
        out = capsys.readouterr().out
        assert "Books checked: 3" in out
        assert "Mismatches:    1" in out
        assert "DRY-RUN" not in out

    def test_dry_run_banner(self, capsys):
        print_summary(VerificationSummary(dry_run=True))
        assert "[DRY-RUN]" in capsys.readouterr().out
