"""Re-fingerprint catalog files and record drift in current_hash.

initial_hash is only rewritten when explicitly asked to (re-baselining a
library after a bulk re-encode, for example).
"""

from __future__ import annotations

import click
from loguru import logger

from ..catalog_db import CatalogDB
from ..errors import FingerprintError, StoreError
from ..fingerprint import fingerprint
from ..models import VerificationSummary

log = logger.bind(stage="verify")


def verify_file_hashes(
    db: CatalogDB,
    library_id: int,
    dry_run: bool = False,
    overwrite_initial: bool = False,
) -> VerificationSummary:
    """Recompute every file's fingerprint in a library.

    Mismatches update current_hash (and initial_hash with overwrite_initial)
    one book per transaction. Unreadable files are counted as errors.
    """
    library = db.get_library(library_id)
    summary = VerificationSummary(dry_run=dry_run)

    for book in db.find_books_by_library(library_id):
        summary.total_books += 1
        updates: list[tuple[int, str]] = []
        for f in book.files:
            root = library.get_path(f.library_path_id)
            if root is None:
                log.warning(f"Book {book.id}: file {f.id} has unknown root {f.library_path_id}")
                summary.error_count += 1
                continue
            try:
                computed = fingerprint(f.full_path(root.path), f.folder_based)
            except FingerprintError as e:
                log.warning(f"Book {book.id}: {e}")
                summary.error_count += 1
                continue
            if computed != f.current_hash:
                log.info(f"Hash mismatch for {f.file_name}: {f.current_hash} -> {computed}")
                summary.mismatch_count += 1
                updates.append((f.id, computed))

        if not updates or dry_run:
            continue
        try:
            with db.transaction():
                for file_id, computed in updates:
                    db.update_hashes(
                        file_id,
                        computed,
                        initial_hash=computed if overwrite_initial else None,
                    )
        except StoreError as e:
            log.error(f"Failed to store hashes for book {book.id}: {e}")
            summary.error_count += 1

    log.info(
        f"Verified {summary.total_books} books: {summary.mismatch_count} mismatches, "
        f"{summary.error_count} errors{' (dry run)' if dry_run else ''}"
    )
    return summary


def print_summary(summary: VerificationSummary) -> None:
    """Print a human-readable verification summary."""
    click.echo("\nHash Verification")
    click.echo(f"{'=' * 50}")
    click.echo(f"Books checked: {summary.total_books}")
    click.echo(f"Mismatches:    {summary.mismatch_count}")
    click.echo(f"Errors:        {summary.error_count}")
    if summary.dry_run:
        click.echo("[DRY-RUN] No hashes were updated")
