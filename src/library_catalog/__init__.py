"""Library Catalog -- scan, group, reconcile, and organize book, comic, and audiobook files.

Core modules:
    config       -- Catalog configuration via pydantic-settings (.env + env vars) and
                    loguru setup (stderr + rotating catalog.log with a stage column).
    cli          -- Click CLI: add-library, scan, rescan, move, verify. CLI flags are
                    passed as kwargs to CatalogConfig (no env pollution).
    runner       -- ScanRunner: initial scan and rescan orchestration, one in flight
                    per library via ScanGuard.
    catalog_db   -- SQLite (WAL) catalog store: libraries, roots, books, book files.
                    Per-thread connections, nestable transactions.
    fingerprint  -- Sparse MD5 fingerprints for files and folder-based audiobooks.
    processors   -- FileProcessor interface and per-format registry.
    watcher      -- LibraryWatcher protocol and in-process WatchRegistry.
    concurrency  -- ScanGuard per-library scan token.
    sanitize     -- Filename sanitization for filesystem safety.

Subpackages:
    ops          -- Grouping keys, file grouping, reconciliation, naming patterns,
                    atomic moves, directory walks, hash verification.
"""
