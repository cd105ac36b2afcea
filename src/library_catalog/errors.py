"""Exception hierarchy for the library catalog."""

from pathlib import Path


class CatalogError(Exception):
    """Base exception for all catalog errors."""


class StoreError(CatalogError):
    """Catalog store read/write failure."""


class LibraryNotFoundError(CatalogError):
    """No library with the requested id."""

    def __init__(self, library_id: int) -> None:
        super().__init__(f"Library not found: {library_id}")
        self.library_id = library_id


class BookNotFoundError(CatalogError):
    """No book with the requested id."""

    def __init__(self, book_id: int) -> None:
        super().__init__(f"Book not found: {book_id}")
        self.book_id = book_id


class LibraryPathError(CatalogError):
    """A library root is missing, unreadable, or appears to be offline.

    Fatal for the scan that raised it.
    """

    def __init__(self, message: str, paths: list[Path] | None = None) -> None:
        super().__init__(message)
        self.paths = paths or []


class ScanInProgressError(CatalogError):
    """Another scan or rescan already holds this library."""

    def __init__(self, library_id: int) -> None:
        super().__init__(f"Library {library_id} is already being scanned")
        self.library_id = library_id


class FingerprintError(CatalogError):
    """A file or folder could not be read for fingerprinting."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot fingerprint {path}: {reason}")
        self.path = path
        self.reason = reason


class EmptyFolderError(FingerprintError):
    """Folder fingerprint requested on a folder with no qualifying members."""

    def __init__(self, path: Path) -> None:
        super().__init__(path, "folder contains no audio files")


class MoveError(CatalogError):
    """A staged file move could not be completed."""

    def __init__(self, message: str, source: Path, target: Path) -> None:
        super().__init__(message)
        self.source = source
        self.target = target


class UnsupportedFormatError(CatalogError):
    """No processor is registered for a file format."""
