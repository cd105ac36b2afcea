"""Filename sanitization for naming-policy path components."""

import re
from pathlib import Path

from loguru import logger

log = logger.bind(stage="sanitize")

_ILLEGAL_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def sanitize_value(value: str) -> str:
    """Clean a metadata value before it is placed in a path.

    Drops characters that are illegal on common filesystems (including
    path separators) and collapses whitespace.
    """
    cleaned = _ILLEGAL_CHARS.sub("", value)
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned.strip()


def sanitize_filename(filename: str) -> str:
    """Sanitize one path component (not a full path).

    Removes surrounding spaces and trailing dots (rejected by SMB/Windows
    shares), and truncates to 255 bytes preserving the extension.
    """
    sanitized = filename.strip().rstrip(".").strip()

    original_len = len(sanitized.encode('utf-8'))
    if original_len > 255:
        p = Path(sanitized)
        ext = p.suffix
        stem = p.stem
        if ext:
            while len((stem + ext).encode('utf-8')) > 255 and stem:
                stem = stem[:-1]
            sanitized = stem + ext
        else:
            while len(sanitized.encode('utf-8')) > 255 and sanitized:
                sanitized = sanitized[:-1]
        log.debug(f"Truncated filename from {original_len} to {len(sanitized.encode('utf-8'))} bytes: '{sanitized}'")

    return sanitized


def sanitize_relative_path(relative: str) -> str:
    """Sanitize each component of a '/'-separated relative path.

    Empty components (from doubled slashes or blank optional blocks) are
    dropped.
    """
    parts = [sanitize_filename(part) for part in relative.split("/")]
    return "/".join(p for p in parts if p)
