"""Format processors -- turn a discovered file into a new catalog book.

The scan runner only talks to the FileProcessor interface and looks
implementations up by BookFileType in a ProcessorRegistry. The processors
shipped here derive metadata from the file name alone; format-specific
extractors (EPUB OPF, PDF info, ComicInfo.xml, audio tags) plug in by
registering their own FileProcessor for the same types.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from loguru import logger

from .errors import UnsupportedFormatError
from .fingerprint import size_kb
from .models import BookFileType, CatalogBook, CatalogFile, DiscoveredFile
from .ops.keys import split_trailing_author, strip_known_extension

log = logger.bind(stage="processors")

_FORMAT_TAG_RE = re.compile(r"[(\[][^)\]]*[)\]]")
_YEAR_RE = re.compile(r"[(\[]((?:1[5-9]|20)\d{2})[)\]]")


def build_catalog_file(
    file: DiscoveredFile,
    file_hash: str | None,
    is_primary: bool = False,
) -> CatalogFile:
    """CatalogFile for a discovered file; both hashes start equal."""
    return CatalogFile(
        library_path_id=file.root_id,
        sub_path=file.sub_path,
        file_name=file.file_name,
        book_type=file.book_type,
        is_primary=is_primary,
        folder_based=file.folder_based,
        size_kb=size_kb(file.full_path, file.folder_based),
        initial_hash=file_hash,
        current_hash=file_hash,
    )


class FileProcessor(ABC):
    """Creates a book record from its primary file."""

    supported_types: frozenset[BookFileType] = frozenset()

    @abstractmethod
    def process_file(self, file: DiscoveredFile, file_hash: str | None) -> CatalogBook:
        """Build an unsaved CatalogBook with file as its primary file."""

    def generate_cover(self, book: CatalogBook, file: DiscoveredFile) -> bool:
        """Render a cover for book; False when the format has none to offer."""
        return False


class FilenameProcessor(FileProcessor):
    """Metadata from the file name: "Title (Year) - Author Name.ext"."""

    def process_file(self, file: DiscoveredFile, file_hash: str | None) -> CatalogBook:
        name = file.file_name if file.folder_based else strip_known_extension(file.file_name)
        name = name.replace("_", " ")

        year = None
        year_match = _YEAR_RE.search(name)
        if year_match:
            year = int(year_match.group(1))

        title, author = split_trailing_author(_FORMAT_TAG_RE.sub("", name))
        title = re.sub(r"\s+", " ", title).strip() or file.file_name

        book = CatalogBook(
            library_id=file.library_path.library_id,
            library_path_id=file.root_id,
            title=title,
            authors=[author] if author else [],
            published_year=year,
        )
        book.files.append(build_catalog_file(file, file_hash, is_primary=True))
        log.debug(f"Processed {file.file_name}: title='{title}' author={author} year={year}")
        return book


class EbookProcessor(FilenameProcessor):
    supported_types = frozenset(
        {
            BookFileType.PDF,
            BookFileType.EPUB,
            BookFileType.FB2,
            BookFileType.MOBI,
            BookFileType.AZW3,
        }
    )


class ComicProcessor(FilenameProcessor):
    supported_types = frozenset({BookFileType.CBX})


class AudiobookProcessor(FilenameProcessor):
    supported_types = frozenset({BookFileType.AUDIOBOOK})


class ProcessorRegistry:
    """Maps each BookFileType to the processor that handles it."""

    def __init__(self) -> None:
        self._processors: dict[BookFileType, FileProcessor] = {}

    def register(self, processor: FileProcessor) -> None:
        for book_type in processor.supported_types:
            self._processors[book_type] = processor

    def get_processor(self, book_type: BookFileType) -> FileProcessor | None:
        return self._processors.get(book_type)

    def get_processor_or_raise(self, book_type: BookFileType) -> FileProcessor:
        processor = self.get_processor(book_type)
        if processor is None:
            raise UnsupportedFormatError(f"No processor registered for {book_type}")
        return processor


def default_registry() -> ProcessorRegistry:
    registry = ProcessorRegistry()
    for processor in (EbookProcessor(), ComicProcessor(), AudiobookProcessor()):
        registry.register(processor)
    return registry
