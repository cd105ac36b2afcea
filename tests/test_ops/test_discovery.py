"""Tests for ops/discovery.py -- directory walk and folder-unit detection."""

import os

import pytest

from library_catalog.errors import LibraryPathError
from library_catalog.models import BookFileType, Library, LibraryPath
from library_catalog.ops.discovery import walk_library, walk_root


def _touch(path, data=b"x"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


@pytest.fixture
def root(tmp_path):
    lib = tmp_path / "lib"
    _touch(lib / "Dune.epub")
    _touch(lib / "Herbert" / "Dune Messiah.pdf")
    _touch(lib / "Audio" / "Project Hail Mary" / "01.mp3")
    _touch(lib / "Audio" / "Project Hail Mary" / "02.mp3")
    _touch(lib / "Audio" / "Project Hail Mary" / "cover.jpg")
    _touch(lib / "Audio" / "Single.m4b")
    _touch(lib / "notes.txt")
    return LibraryPath(id=1, library_id=1, path=lib)


def _entries(found):
    return {(f.sub_path, f.file_name, f.folder_based) for f in found}


class TestWalkRoot:
    def test_finds_files_and_folder_units(self, root):
        assert _entries(walk_root(root)) == {
            ("", "Dune.epub", False),
            ("Herbert", "Dune Messiah.pdf", False),
            ("Audio", "Project Hail Mary", True),
            ("Audio", "Single.m4b", False),
        }

    def test_folder_unit_is_audiobook(self, root):
        unit = next(f for f in walk_root(root) if f.folder_based)
        assert unit.book_type == BookFileType.AUDIOBOOK
        assert unit.full_path == root.path / "Audio" / "Project Hail Mary"

    def test_ignores_hidden_and_system_entries(self, root):
        _touch(root.path / ".hidden" / "x.epub")
        _touch(root.path / "#recycle" / "y.epub")
        _touch(root.path / "@eaDir" / "z.epub")
        _touch(root.path / ".dotfile.epub")
        names = {f.file_name for f in walk_root(root)}
        assert names.isdisjoint({"x.epub", "y.epub", "z.epub", ".dotfile.epub"})

    def test_folder_with_ebooks_is_not_a_unit(self, root):
        _touch(root.path / "Mixed" / "a.mp3")
        _touch(root.path / "Mixed" / "b.mp3")
        _touch(root.path / "Mixed" / "c.epub")
        mixed = {f.file_name for f in walk_root(root) if f.sub_path == "Mixed"}
        assert mixed == {"a.mp3", "b.mp3", "c.epub"}

    def test_root_never_a_unit(self, tmp_path):
        lib = tmp_path / "lib"
        _touch(lib / "a.mp3")
        _touch(lib / "b.mp3")
        found = walk_root(LibraryPath(id=1, library_id=1, path=lib))
        assert _entries(found) == {("", "a.mp3", False), ("", "b.mp3", False)}

    def test_nested_audio_under_unit_suppressed(self, root):
        _touch(root.path / "Audio" / "Project Hail Mary" / "Extras" / "bonus.mp3")
        names = {f.file_name for f in walk_root(root)}
        assert "bonus.mp3" not in names

    def test_allowed_formats_filter(self, root):
        found = walk_root(root, frozenset({BookFileType.EPUB}))
        assert _entries(found) == {("", "Dune.epub", False)}

    def test_missing_root_raises(self, tmp_path):
        missing = LibraryPath(id=1, library_id=1, path=tmp_path / "gone")
        with pytest.raises(LibraryPathError) as exc:
            walk_root(missing)
        assert exc.value.paths == [tmp_path / "gone"]

    def test_symlink_cycle_walked_once(self, root):
        os.symlink(root.path, root.path / "Herbert" / "loop")
        found = walk_root(root)
        assert sum(1 for f in found if f.file_name == "Dune.epub") == 1


class TestWalkLibrary:
    def test_all_roots(self, tmp_path):
        _touch(tmp_path / "a" / "Dune.epub")
        _touch(tmp_path / "b" / "Emma.epub")
        library = Library(
            id=1,
            name="Books",
            paths=[
                LibraryPath(id=1, library_id=1, path=tmp_path / "a"),
                LibraryPath(id=2, library_id=1, path=tmp_path / "b"),
            ],
        )
        found = walk_library(library)
        assert {(f.root_id, f.file_name) for f in found} == {(1, "Dune.epub"), (2, "Emma.epub")}

    def test_library_allowed_formats(self, root):
        library = Library(
            id=1, name="Books", paths=[root], allowed_formats=[BookFileType.AUDIOBOOK]
        )
        assert {f.file_name for f in walk_library(library)} == {"Project Hail Mary", "Single.m4b"}
