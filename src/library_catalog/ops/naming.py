"""Naming policy -- render a book file's relative target path from a pattern.

Pattern grammar:
    {field}            placeholder, empty string when the value is missing
    {field:modifier}   first | sort | initial | upper | lower
    <...>              optional block, dropped when any placeholder inside
                       is empty
    <...|fallback>     optional block with a fallback rendered instead

Fields: title, subtitle, authors, year, series, seriesIndex, language,
currentFilename, extension.

The file's extension is appended unless the pattern places it itself via
{extension} or {currentFilename}. Folder-based units never get one.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath

from loguru import logger

from ..models import CatalogBook, CatalogFile
from ..sanitize import sanitize_relative_path, sanitize_value

log = logger.bind(stage="naming")

_PLACEHOLDER_RE = re.compile(r"\{(\w+)(?::(\w+))?\}")
# One pass over blocks and bare placeholders; substituted values are never re-read
_TOKEN_RE = re.compile(r"<([^<>]*)>|\{(\w+)(?::(\w+))?\}")
_EXTENSION_PLACEMENT_RE = re.compile(r"\{(?:extension|currentFilename)(?::\w+)?\}")
_LEADING_ARTICLE_RE = re.compile(r"^(the|a|an)\s+(.+)$", re.IGNORECASE)


def format_series_index(number: float | None) -> str:
    """3.0 -> "03", 3.5 -> "03.5", 12.5 -> "12.5"."""
    if number is None:
        return ""
    if float(number).is_integer():
        return f"{int(number):02d}"
    whole, _, frac = repr(float(number)).partition(".")
    return f"{int(whole):02d}.{frac}"


def _sort_name(name: str) -> str:
    """'Patrick Rothfuss' -> 'Rothfuss, Patrick'."""
    parts = name.split()
    if len(parts) < 2:
        return name
    return f"{parts[-1]}, {' '.join(parts[:-1])}"


def _sort_title(title: str) -> str:
    """'The Hobbit' -> 'Hobbit, The'."""
    match = _LEADING_ARTICLE_RE.match(title)
    if not match:
        return title
    return f"{match.group(2)}, {match.group(1)}"


def _initial(value: str) -> str:
    return value[:1].upper()


class _Fields:
    """Sanitized placeholder values for one (book, file) pair."""

    def __init__(self, book: CatalogBook, file: CatalogFile) -> None:
        self.authors = [a for a in (sanitize_value(a) for a in book.authors) if a]
        if file.folder_based:
            suffix, stem = "", file.file_name
        else:
            suffix, stem = PurePosixPath(file.file_name).suffix, PurePosixPath(file.file_name).stem
        self.values = {
            # Untitled books keep their file's stem as title
            "title": sanitize_value(book.title or stem),
            "subtitle": sanitize_value(book.subtitle or ""),
            "authors": ", ".join(self.authors),
            "year": str(book.published_year) if book.published_year else "",
            "series": sanitize_value(book.series_name or ""),
            "seriesIndex": format_series_index(book.series_number),
            "language": sanitize_value(book.language or ""),
            "currentFilename": sanitize_value(file.file_name),
            "extension": suffix.lstrip("."),
        }

    def resolve(self, name: str, modifier: str | None) -> str:
        value = self.values.get(name, "")
        if not value or not modifier:
            return value
        if name == "authors":
            first = self.authors[0]
            if modifier == "first":
                return first
            if modifier == "sort":
                return _sort_name(first)
            if modifier == "initial":
                return _initial(first.split()[-1])
        if modifier == "sort":
            return _sort_title(value)
        if modifier == "initial":
            return _initial(value)
        if modifier == "upper":
            return value.upper()
        if modifier == "lower":
            return value.lower()
        if modifier == "first":
            return value
        log.warning(f"Unknown pattern modifier ':{modifier}' on {{{name}}}")
        return value


def _render(template: str, fields: _Fields) -> tuple[str, bool]:
    """Substitute placeholders; also report whether any resolved empty."""
    missing = False

    def _sub(match: re.Match) -> str:
        nonlocal missing
        value = fields.resolve(match.group(1), match.group(2))
        if not value:
            missing = True
        return value

    return _PLACEHOLDER_RE.sub(_sub, template), missing


def resolve_pattern(
    book: CatalogBook,
    file: CatalogFile,
    pattern: str | None,
) -> str:
    """Render file's path relative to a library root.

    Empty patterns and patterns that render to nothing fall back to the
    file's current name.
    """
    current = file.file_name
    if not pattern or not pattern.strip():
        return current

    fields = _Fields(book, file)

    def _token(match: re.Match) -> str:
        if match.group(1) is None:
            return fields.resolve(match.group(2), match.group(3))
        primary, sep, fallback = match.group(1).partition("|")
        rendered, missing = _render(primary, fields)
        if not missing:
            return rendered
        if sep:
            return _render(fallback, fields)[0]
        return ""

    result = _TOKEN_RE.sub(_token, pattern)

    if not result.strip(" /"):
        return current

    extension = fields.values["extension"]
    if extension and not _EXTENSION_PLACEMENT_RE.search(pattern):
        result = f"{result}.{extension}"

    relative = sanitize_relative_path(result)
    log.debug(f"Resolved '{pattern}' for {current} -> {relative}")
    return relative or current
