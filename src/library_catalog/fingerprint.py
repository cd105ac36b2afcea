"""Sparse content fingerprints for book files and audiobook folders.

A fingerprint samples a dozen 1 KiB blocks at exponentially spaced offsets
instead of reading the whole file. It changes when most of the content
changes, but bytes appended past the last sampled block go unnoticed. It is
an identity key, not an integrity check.
"""

import hashlib
import os
from pathlib import Path

from loguru import logger

from .errors import EmptyFolderError, FingerprintError
from .models import AUDIO_EXTENSIONS

log = logger.bind(stage="fingerprint")

BLOCK_SIZE = 1024
# Block i is read at BLOCK_SIZE << (2 * i); i = -1 maps to offset 0
_FIRST_BLOCK = -1
_LAST_BLOCK = 10


def _sample_offsets():
    for i in range(_FIRST_BLOCK, _LAST_BLOCK + 1):
        yield 0 if i < 0 else BLOCK_SIZE << (2 * i)


def fingerprint_file(path: Path) -> str:
    """Return the 32-char MD5 hex fingerprint of a regular file.

    Raises FingerprintError if the file is missing or unreadable.
    """
    log.debug(f"fingerprint_file(path={path})")
    h = hashlib.md5(usedforsecurity=False)
    try:
        size = path.stat().st_size
        with open(path, "rb") as fh:
            for offset in _sample_offsets():
                if offset > size:
                    break
                fh.seek(offset)
                h.update(fh.read(BLOCK_SIZE))
    except OSError as e:
        raise FingerprintError(path, e.strerror or str(e)) from e
    return h.hexdigest()


def list_audio_members(folder: Path) -> list[Path]:
    """Regular audio files directly inside folder, sorted by name."""
    try:
        entries = [p for p in folder.iterdir() if p.is_file()]
    except OSError as e:
        raise FingerprintError(folder, e.strerror or str(e)) from e
    members = [p for p in entries if p.suffix.lower() in AUDIO_EXTENSIONS]
    return sorted(members, key=lambda p: p.name)


def fingerprint_folder(path: Path) -> str:
    """Fingerprint a folder-based audiobook.

    Hashes only the first audio member (by name) and folds in the member
    count, so adding or removing a track changes the result.
    Raises EmptyFolderError when the folder holds no audio files.
    """
    log.debug(f"fingerprint_folder(path={path})")
    if not path.is_dir():
        raise FingerprintError(path, "not a directory")
    members = list_audio_members(path)
    if not members:
        raise EmptyFolderError(path)
    first_hash = fingerprint_file(members[0])
    h = hashlib.md5(usedforsecurity=False)
    h.update(f"{first_hash}:{len(members)}".encode())
    result = h.hexdigest()
    log.debug(f"Folder fingerprint {result} ({len(members)} members) for {path.name}")
    return result


def fingerprint(path: Path, folder_based: bool = False) -> str:
    return fingerprint_folder(path) if folder_based else fingerprint_file(path)


def file_size_kb(path: Path) -> int | None:
    """Size of a file in KiB, or None if it cannot be read."""
    try:
        return path.stat().st_size // 1024
    except OSError as e:
        log.warning(f"Failed to get file size for {path}: {e}")
        return None


def folder_size_kb(path: Path) -> int | None:
    """Total size of all regular files under a folder, in KiB."""
    if not path.is_dir():
        log.warning(f"Folder does not exist or is not a directory: {path}")
        return None
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            try:
                total += (Path(dirpath) / name).stat().st_size
            except OSError:
                continue
    return total // 1024


def size_kb(path: Path, folder_based: bool = False) -> int | None:
    return folder_size_kb(path) if folder_based else file_size_kb(path)
