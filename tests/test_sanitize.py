"""Tests for sanitize.py -- path component cleanup."""

from library_catalog.sanitize import sanitize_filename, sanitize_relative_path, sanitize_value


class TestSanitizeValue:
    def test_removes_illegal_chars(self):
        assert sanitize_value('Who? What: "Why"') == "Who What Why"

    def test_removes_path_separators(self):
        assert sanitize_value("AC/DC\\Live") == "ACDCLive"

    def test_collapses_whitespace(self):
        assert sanitize_value("  The   Hobbit\t") == "The Hobbit"

    def test_control_chars(self):
        assert sanitize_value("Du\x00ne") == "Dune"


class TestSanitizeFilename:
    def test_trailing_dots_removed(self):
        assert sanitize_filename("Vol. 2...") == "Vol. 2"

    def test_leading_dots_kept(self):
        assert sanitize_filename(".pdf") == ".pdf"

    def test_surrounding_space_removed(self):
        assert sanitize_filename("  Dune.epub ") == "Dune.epub"

    def test_long_name_truncated_keeps_extension(self):
        name = "a" * 300 + ".epub"
        result = sanitize_filename(name)
        assert len(result.encode("utf-8")) <= 255
        assert result.endswith(".epub")

    def test_multibyte_truncation(self):
        name = "é" * 200 + ".pdf"
        result = sanitize_filename(name)
        assert len(result.encode("utf-8")) <= 255
        assert result.endswith(".pdf")

    def test_short_name_unchanged(self):
        assert sanitize_filename("Dune.epub") == "Dune.epub"


class TestSanitizeRelativePath:
    def test_components_cleaned(self):
        assert sanitize_relative_path("Frank Herbert /Dune. /Dune.epub") == "Frank Herbert/Dune/Dune.epub"

    def test_empty_components_dropped(self):
        assert sanitize_relative_path("/Series//Title.epub") == "Series/Title.epub"

    def test_empty(self):
        assert sanitize_relative_path("") == ""
