"""Core enums, constants, and dataclasses for the library catalog.

Enums:
    OrganizationMode -- Grouping strategy per library (book-per-folder, auto-detect).
    BookFileType     -- Declared format of a discovered file. Declaration order
                        is the default primary-format priority.

Dataclasses:
    LibraryPath    -- A filesystem root that sub-paths are relative to.
    Library        -- A named set of roots plus grouping/naming settings.
    DiscoveredFile -- One entry found by a directory walk (ephemeral).
    CatalogFile    -- One persisted file attached to a CatalogBook.
    CatalogBook    -- The durable logical book (zero or more files).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path


class OrganizationMode(StrEnum):
    BOOK_PER_FOLDER = "book_per_folder"
    AUTO_DETECT = "auto_detect"


class BookFileType(StrEnum):
    PDF = "pdf"
    EPUB = "epub"
    CBX = "cbx"
    FB2 = "fb2"
    MOBI = "mobi"
    AZW3 = "azw3"
    AUDIOBOOK = "audiobook"


AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".mp3",
        ".m4a",
        ".m4b",
        ".flac",
        ".ogg",
        ".opus",
        ".aac",
    }
)

# Extension (with dot) -> declared format
EXTENSION_TYPES: dict[str, BookFileType] = {
    ".pdf": BookFileType.PDF,
    ".epub": BookFileType.EPUB,
    ".cbz": BookFileType.CBX,
    ".cbr": BookFileType.CBX,
    ".cb7": BookFileType.CBX,
    ".fb2": BookFileType.FB2,
    ".mobi": BookFileType.MOBI,
    ".azw3": BookFileType.AZW3,
    ".azw": BookFileType.AZW3,
    **{ext: BookFileType.AUDIOBOOK for ext in AUDIO_EXTENSIONS},
}

# Directory names that are never walked (NAS recycle bins, calibre trash)
SYSTEM_DIRS: frozenset[str] = frozenset({"#recycle", "@eaDir", ".caltrash"})


def book_type_for(file_name: str) -> BookFileType | None:
    """Return the declared format for a file name, or None if unsupported."""
    return EXTENSION_TYPES.get(Path(file_name).suffix.lower())


@dataclass
class LibraryPath:
    id: int
    library_id: int
    path: Path


@dataclass
class Library:
    id: int
    name: str
    paths: list[LibraryPath] = field(default_factory=list)
    organization_mode: OrganizationMode = OrganizationMode.AUTO_DETECT
    file_naming_pattern: str = ""
    format_priority: list[BookFileType] = field(default_factory=list)
    allowed_formats: list[BookFileType] = field(default_factory=list)
    watch: bool = False

    def get_path(self, library_path_id: int | None) -> LibraryPath | None:
        for lp in self.paths:
            if lp.id == library_path_id:
                return lp
        return None

    def format_rank(self, book_type: BookFileType) -> int:
        """Position of a format in this library's primary-format priority."""
        if self.format_priority:
            try:
                return self.format_priority.index(book_type)
            except ValueError:
                return len(self.format_priority) + list(BookFileType).index(book_type)
        return list(BookFileType).index(book_type)


@dataclass(frozen=True)
class DiscoveredFile:
    """A filesystem entry found by one directory walk."""

    library_path: LibraryPath
    sub_path: str
    file_name: str
    book_type: BookFileType
    folder_based: bool = False

    @property
    def root_id(self) -> int:
        return self.library_path.id

    @property
    def full_path(self) -> Path:
        return self.library_path.path / self.sub_path / self.file_name

    @property
    def path_key(self) -> tuple[int, str, str]:
        return (self.library_path.id, self.sub_path, self.file_name)


@dataclass
class CatalogFile:
    library_path_id: int
    sub_path: str
    file_name: str
    book_type: BookFileType
    is_primary: bool = False
    folder_based: bool = False
    size_kb: int | None = None
    initial_hash: str | None = None
    current_hash: str | None = None
    added_at: datetime | None = None
    id: int | None = None
    book_id: int | None = None

    @property
    def path_key(self) -> tuple[int, str, str]:
        return (self.library_path_id, self.sub_path, self.file_name)

    def full_path(self, root: Path) -> Path:
        return root / self.sub_path / self.file_name


@dataclass
class CatalogBook:
    library_id: int
    title: str | None = None
    subtitle: str | None = None
    authors: list[str] = field(default_factory=list)
    series_name: str | None = None
    series_number: float | None = None
    published_year: int | None = None
    language: str | None = None
    library_path_id: int | None = None
    files: list[CatalogFile] = field(default_factory=list)
    added_at: datetime | None = None
    id: int | None = None

    @property
    def has_files(self) -> bool:
        return bool(self.files)

    @property
    def primary_file(self) -> CatalogFile | None:
        if not self.files:
            return None
        for f in self.files:
            if f.is_primary:
                return f
        return self.files[0]

    @property
    def additional_files(self) -> list[CatalogFile]:
        primary = self.primary_file
        return [f for f in self.files if f is not primary]


@dataclass(frozen=True)
class SeriesInfo:
    base_title: str
    number: str


@dataclass
class GroupingResult:
    """Outcome of matching rescan files against the catalog."""

    files_to_attach: dict[int, list[DiscoveredFile]] = field(default_factory=dict)
    new_book_groups: dict[str, list[DiscoveredFile]] = field(default_factory=dict)


@dataclass
class ScanResult:
    """Counts reported by a scan or rescan run."""

    discovered: int = 0
    new_files: int = 0
    books_created: int = 0
    files_attached: int = 0
    books_deleted: int = 0
    files_deleted: int = 0
    failed: int = 0


@dataclass
class MoveResult:
    moved: bool = False
    new_file_name: str | None = None
    new_sub_path: str | None = None


@dataclass
class VerificationSummary:
    total_books: int = 0
    mismatch_count: int = 0
    error_count: int = 0
    dry_run: bool = False
