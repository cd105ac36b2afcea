"""Catalog operations.

Submodules:
    keys       -- normalize_key / strip_edition / similarity (rapidfuzz ratio) and
                  series + trailing-number extraction. Every match compares
                  normalized keys, never raw names.
    grouping   -- Initial-scan grouping: BOOK_PER_FOLDER by folder, AUTO_DETECT
                  folder-centric (series groups, folder-name matches split by
                  trailing number, DisjointSet clustering of the rest). No fuzzy
                  merging at the library root.
    reconcile  -- Reconciler: new-file detection, fileless-book promotion,
                  directory-scoped matching, vanished file/book handling with
                  primary promotion on format loss.
    naming     -- resolve_pattern: {placeholders}, :modifiers, <optional|fallback>
                  blocks for target paths.
    move       -- FileMover: stage / commit / persist with full rollback and
                  watcher pause.
    discovery  -- walk_library: DiscoveredFile list including folder-based
                  audiobooks; skips dot-entries and NAS system dirs.
    verify     -- verify_file_hashes: re-fingerprint and record drift.
"""
