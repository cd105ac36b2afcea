"""Walk library roots and produce the DiscoveredFile list for one scan.

Ebook and comic files are emitted one by one. A directory (other than the
root) holding two or more audio files and no ebooks is emitted once as a
folder-based audiobook, and audio files beneath it are not emitted again.
Dot-entries and NAS/calibre system directories are skipped.
"""

from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

from ..errors import LibraryPathError
from ..models import (
    AUDIO_EXTENSIONS,
    SYSTEM_DIRS,
    BookFileType,
    DiscoveredFile,
    Library,
    LibraryPath,
    book_type_for,
)

log = logger.bind(stage="discovery")

MIN_FOLDER_AUDIO_FILES = 2


def _ignored(name: str) -> bool:
    return name.startswith(".") or name in SYSTEM_DIRS


def _relative(path: Path, root: Path) -> str:
    rel = path.relative_to(root).as_posix()
    return "" if rel == "." else rel


def walk_library(library: Library) -> list[DiscoveredFile]:
    """Discover every supported file or folder unit under all library roots.

    Raises LibraryPathError when a root is missing or unreadable.
    """
    allowed = frozenset(library.allowed_formats)
    found: list[DiscoveredFile] = []
    for library_path in library.paths:
        found.extend(walk_root(library_path, allowed))
    log.info(f"Library {library.id}: discovered {len(found)} entries in {len(library.paths)} roots")
    return found


def walk_root(
    library_path: LibraryPath,
    allowed: frozenset[BookFileType] = frozenset(),
) -> list[DiscoveredFile]:
    root = library_path.path
    if not root.is_dir() or not os.access(root, os.R_OK | os.X_OK):
        raise LibraryPathError(f"Library root not accessible: {root}", [root])

    def _on_error(e: OSError) -> None:
        log.warning(f"Skipping unreadable entry {e.filename}: {e.strerror}")

    results: list[DiscoveredFile] = []
    folder_units: list[Path] = []
    seen_dirs: set[str] = set()

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error, followlinks=True):
        real = os.path.realpath(dirpath)
        if real in seen_dirs:
            # Symlink cycle
            dirnames[:] = []
            continue
        seen_dirs.add(real)

        current = Path(dirpath)
        dirnames[:] = sorted(d for d in dirnames if not _ignored(d))
        names = sorted(f for f in filenames if not _ignored(f))

        audio = [n for n in names if Path(n).suffix.lower() in AUDIO_EXTENSIONS]
        has_ebooks = any(
            book_type_for(n) not in (None, BookFileType.AUDIOBOOK) for n in names
        )
        if current != root and len(audio) >= MIN_FOLDER_AUDIO_FILES and not has_ebooks:
            folder_units.append(current)
            if not allowed or BookFileType.AUDIOBOOK in allowed:
                results.append(
                    DiscoveredFile(
                        library_path=library_path,
                        sub_path=_relative(current.parent, root),
                        file_name=current.name,
                        book_type=BookFileType.AUDIOBOOK,
                        folder_based=True,
                    )
                )
                log.debug(f"Folder-based audiobook: {current} ({len(audio)} tracks)")

        inside_unit = any(current.is_relative_to(u) for u in folder_units)
        sub_path = _relative(current, root)
        for name in names:
            book_type = book_type_for(name)
            if book_type is None:
                continue
            if book_type == BookFileType.AUDIOBOOK and inside_unit:
                continue
            if allowed and book_type not in allowed:
                continue
            results.append(
                DiscoveredFile(
                    library_path=library_path,
                    sub_path=sub_path,
                    file_name=name,
                    book_type=book_type,
                )
            )

    return results
