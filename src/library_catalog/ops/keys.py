"""Grouping keys and fuzzy similarity for book file names.

A grouping key is the lower-cased, decoration-stripped form of a file name.
Two files belong to the same logical book when their keys are equal or close
enough; every comparison in grouping and reconciliation goes through here.
"""

from __future__ import annotations

import re

from loguru import logger
from rapidfuzz import fuzz

from ..models import SeriesInfo

log = logger.bind(stage="keys")

# Only these are stripped as extensions -- folder names like "Vol. 2" keep their dots
KNOWN_EXTENSIONS = frozenset(
    {
        "pdf",
        "epub",
        "cbz",
        "cbr",
        "cb7",
        "mobi",
        "azw3",
        "azw",
        "fb2",
        "m4b",
        "m4a",
        "mp3",
        "aac",
        "flac",
        "opus",
        "ogg",
    }
)

# "(pdf)", "[EPUB]", "(Audiobook)"
_FORMAT_TAG_RE = re.compile(
    r"[(\[]\s*(?:pdf|epub|mobi|azw3?|fb2|cbz|cbr|cb7|m4b|m4a|mp3|audiobook|audio)\s*[)\]]",
    re.IGNORECASE,
)

# " - George Orwell", " - J.R.R. Tolkien", " - Ursula K. Le Guin" (case-sensitive)
_TRAILING_AUTHOR_RE = re.compile(
    r"\s*[-–—]\s+(?:[A-Z](?:\.[A-Z])*\.\s+)?[A-Z][a-z]+"
    r"(?:\s+[A-Z](?:\.[A-Z])*\.?)?(?:\s+[A-Z][a-z]+)*\s*$"
)

# "Hobbit, The" -> "The Hobbit"
_ARTICLE_SUFFIX_RE = re.compile(r",\s*(The|A|An)\s*$", re.IGNORECASE)

# "book 3", "vol. 2", "volume 4", "part 1", "#4", "no. 7"
_SERIES_NUMBER_RE = re.compile(
    r"(?:\b(?:book|vol(?:ume)?\.?|part|chapter|episode|no\.?)|#)\s*(\d+)",
    re.IGNORECASE,
)

# "book1", "title 2", "title_03"
_TRAILING_NUMBER_RE = re.compile(r"[\s_-]?(\d{1,3})\s*$")

_EDITION_RE = re.compile(
    r"\b(?:"
    r"(?:tenth|first|second|third|\d+(?:st|nd|rd|th)?)\s*"
    r"(?:anniversary(?:\s*(?:edition|ed\.?))?|edition|ed\.?)"
    r"|(?:unabridged|abridged|complete|full\s*cast|deluxe|special|collector'?s?)"
    r"(?:\s*(?:edition|ed\.?))?"
    r"|audiobook|audio\s*book|ebook|e-book"
    r")(?!\w)",
    re.IGNORECASE,
)

_EMPTY_BRACKETS_RE = re.compile(r"[(\[]\s*[)\]]")
_WHITESPACE_RE = re.compile(r"\s+")

MIN_SERIES_BASE_LEN = 3


def _collapse(s: str) -> str:
    return _WHITESPACE_RE.sub(" ", s).strip()


def strip_known_extension(file_name: str) -> str:
    """Drop the extension only when it is a known book/audio format."""
    stem, dot, ext = file_name.rpartition(".")
    if dot and stem and ext.lower() in KNOWN_EXTENSIONS:
        return stem
    return file_name


def normalize_key(file_name: str) -> str:
    """Turn a file or folder name into a comparable grouping key.

    "Hobbit, The (epub) - J.R.R. Tolkien.epub" -> "the hobbit"
    "Dune - Frank Herbert.pdf" -> "dune"
    "Silo (Unabridged).m4b" -> "silo (unabridged)"
    """
    if not file_name:
        return ""

    base = strip_known_extension(file_name)
    base = base.replace("_", " ")
    base = _FORMAT_TAG_RE.sub("", base)
    base = _TRAILING_AUTHOR_RE.sub("", base)

    article = _ARTICLE_SUFFIX_RE.search(base)
    if article:
        base = f"{article.group(1)} {base[: article.start()]}"

    return _collapse(base).lower()


def split_trailing_author(name: str) -> tuple[str, str | None]:
    """Split "Dune - Frank Herbert" into ("Dune", "Frank Herbert")."""
    match = _TRAILING_AUTHOR_RE.search(name)
    if not match or match.start() == 0:
        return name.strip(), None
    author = match.group(0).strip().lstrip("-–—").strip()
    return name[: match.start()].strip(), author


def strip_edition(key: str) -> str:
    """Remove edition and format descriptors from a grouping key.

    "silo (unabridged)" -> "silo"
    "dune 40th anniversary edition" -> "dune"
    """
    result = _EDITION_RE.sub("", key)
    result = _EMPTY_BRACKETS_RE.sub("", result)
    return _collapse(result).strip(" -,:")


def similarity(a: str, b: str) -> float:
    """Normalized character-alignment similarity in [0, 1].

    LCS-based (indel) ratio: symmetric, 1.0 for identical strings,
    0.0 when either side is empty.
    """
    if not a or not b:
        return 0.0
    return fuzz.ratio(a, b) / 100.0


def extract_series_info(key: str) -> SeriesInfo | None:
    """Detect a series number ("book 3", "vol. 2", "#4") in a key.

    Returns None when no pattern matches or the remaining base title is
    too short to mean anything (avoids treating "#1" as a series).
    """
    match = _SERIES_NUMBER_RE.search(key)
    if not match:
        return None
    base_title = _collapse(_SERIES_NUMBER_RE.sub("", key)).strip(" -,:")
    if len(base_title) < MIN_SERIES_BASE_LEN:
        return None
    return SeriesInfo(base_title=base_title, number=match.group(1))


def extract_trailing_number(key: str) -> str | None:
    match = _TRAILING_NUMBER_RE.search(key)
    return match.group(1) if match else None


def has_different_trailing_numbers(key1: str, key2: str) -> bool:
    """True only when both keys end in a number and the numbers differ.

    "book" vs "book2" is left to the other heuristics.
    """
    n1 = extract_trailing_number(key1)
    n2 = extract_trailing_number(key2)
    return n1 is not None and n2 is not None and n1 != n2


def folder_name(sub_path: str) -> str:
    """Last component of a '/'-separated sub-path."""
    if not sub_path:
        return ""
    return sub_path.rstrip("/").rsplit("/", 1)[-1]


def matches_folder_name(
    file_key: str,
    folder_key: str,
    threshold: float = 0.6,
) -> bool:
    """Does a file's key refer to the same title as its folder?

    Exact, substring in either direction, the same after edition
    stripping, or similarity >= threshold on the stripped keys.
    """
    if not file_key or not folder_key:
        return False
    if file_key == folder_key:
        return True
    if file_key in folder_key or folder_key in file_key:
        return True

    file_clean = strip_edition(file_key)
    folder_clean = strip_edition(folder_key)
    if not file_clean or not folder_clean:
        return False
    if file_clean in folder_clean or folder_clean in file_clean:
        return True

    score = similarity(file_clean, folder_clean)
    if score >= threshold:
        log.debug(f"Fuzzy folder match: '{file_key}' ~ '{folder_key}' ({score:.2f})")
        return True
    return False
