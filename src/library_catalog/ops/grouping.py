"""Partition one scan's discovered files into candidate books.

Two strategies, chosen per library:

    BOOK_PER_FOLDER -- every file sharing a (root, sub-path) is one book.
    AUTO_DETECT     -- folder-centric fuzzy grouping (default):
        root level:  exact normalized key only, never fuzzy
        sub-folder:  1. series entries whose base title matches the folder
                        get one group per number
                     2. files matching the folder name group together,
                        split by trailing number
                     3. the rest are clustered with a DisjointSet

Group keys are opaque strings used only to drive book creation; they are
never persisted. Files are sorted by name inside each bucket so the result
does not depend on walk order.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from loguru import logger

from ..models import DiscoveredFile, OrganizationMode
from .keys import (
    extract_series_info,
    extract_trailing_number,
    folder_name,
    has_different_trailing_numbers,
    matches_folder_name,
    normalize_key,
    similarity,
    strip_edition,
)

log = logger.bind(stage="grouping")

DEFAULT_FOLDER_THRESHOLD = 0.6
DEFAULT_CLUSTER_THRESHOLD = 0.7


class DisjointSet:
    """Union-find over array indices, scoped to a single grouping call."""

    def __init__(self, size: int) -> None:
        self.parent = list(range(size))
        self.rank = [0] * size

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        # Path compression
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if self.rank[ra] < self.rank[rb]:
            ra, rb = rb, ra
        self.parent[rb] = ra
        if self.rank[ra] == self.rank[rb]:
            self.rank[ra] += 1

    def groups(self) -> list[list[int]]:
        """Members of each set, sets ordered by their lowest index."""
        by_root: dict[int, list[int]] = {}
        for i in range(len(self.parent)):
            by_root.setdefault(self.find(i), []).append(i)
        return sorted(by_root.values(), key=lambda members: members[0])


def group_for_initial_scan(
    files: Iterable[DiscoveredFile],
    mode: OrganizationMode = OrganizationMode.AUTO_DETECT,
    folder_threshold: float = DEFAULT_FOLDER_THRESHOLD,
    cluster_threshold: float = DEFAULT_CLUSTER_THRESHOLD,
) -> dict[str, list[DiscoveredFile]]:
    """Group a batch of files with the library's organization mode."""
    files = list(files)
    if mode == OrganizationMode.BOOK_PER_FOLDER:
        return group_by_folder(files)
    return group_by_base_name(
        files,
        folder_threshold=folder_threshold,
        cluster_threshold=cluster_threshold,
    )


def group_by_folder(files: Iterable[DiscoveredFile]) -> dict[str, list[DiscoveredFile]]:
    result: dict[str, list[DiscoveredFile]] = {}
    count = 0
    for f in sorted(files, key=_sort_key):
        result.setdefault(f"{f.root_id}:{f.sub_path}", []).append(f)
        count += 1
    log.debug(f"BOOK_PER_FOLDER grouping: {count} files into {len(result)} groups")
    return result


def group_by_base_name(
    files: Iterable[DiscoveredFile],
    folder_threshold: float = DEFAULT_FOLDER_THRESHOLD,
    cluster_threshold: float = DEFAULT_CLUSTER_THRESHOLD,
) -> dict[str, list[DiscoveredFile]]:
    """AUTO_DETECT grouping: bucket by folder, then group inside each bucket."""
    buckets: dict[tuple[int, str], list[DiscoveredFile]] = defaultdict(list)
    for f in files:
        buckets[(f.root_id, f.sub_path)].append(f)

    result: dict[str, list[DiscoveredFile]] = {}
    for (root_id, sub_path) in sorted(buckets):
        bucket = sorted(buckets[(root_id, sub_path)], key=lambda f: f.file_name)
        if not sub_path:
            groups = _group_root_files(root_id, bucket)
        else:
            groups = _group_folder_files(
                root_id, sub_path, bucket, folder_threshold, cluster_threshold
            )
        for key, members in groups.items():
            result.setdefault(key, []).extend(members)

    log.debug(
        f"AUTO_DETECT grouping: {sum(len(v) for v in result.values())} files "
        f"into {len(result)} groups"
    )
    return result


def _sort_key(f: DiscoveredFile) -> tuple[int, str, str]:
    return f.path_key


def _group_root_files(
    root_id: int, files: list[DiscoveredFile]
) -> dict[str, list[DiscoveredFile]]:
    # No fuzzy merging at the library root: unrelated loose files are common
    groups: dict[str, list[DiscoveredFile]] = {}
    for f in files:
        groups.setdefault(f"{root_id}::{normalize_key(f.file_name)}", []).append(f)
    return groups


def _group_folder_files(
    root_id: int,
    sub_path: str,
    files: list[DiscoveredFile],
    folder_threshold: float,
    cluster_threshold: float,
) -> dict[str, list[DiscoveredFile]]:
    prefix = f"{root_id}:{sub_path}"
    folder_key = normalize_key(folder_name(sub_path))
    groups: dict[str, list[DiscoveredFile]] = {}
    unmatched: list[tuple[DiscoveredFile, str]] = []

    for f in files:
        key = normalize_key(f.file_name)

        series = extract_series_info(key)
        if series and matches_folder_name(series.base_title, folder_key, folder_threshold):
            group_key = f"{prefix}:series:{series.base_title}:{series.number}"
            log.debug(f"Series entry '{f.file_name}' -> {group_key}")
            groups.setdefault(group_key, []).append(f)
            continue

        if matches_folder_name(key, folder_key, folder_threshold):
            number = extract_trailing_number(key)
            group_key = f"{prefix}:folder:{folder_key}"
            if number:
                group_key += f":{number}"
            groups.setdefault(group_key, []).append(f)
            continue

        unmatched.append((f, key))

    if unmatched:
        groups.update(_cluster(prefix, unmatched, cluster_threshold))
    return groups


def _cluster(
    prefix: str,
    entries: list[tuple[DiscoveredFile, str]],
    threshold: float,
) -> dict[str, list[DiscoveredFile]]:
    keys = [key for _, key in entries]
    # Fall back to the raw key when edition stripping leaves nothing
    stripped = [strip_edition(key) or key for key in keys]

    ds = DisjointSet(len(entries))
    for i in range(len(entries)):
        for j in range(i + 1, len(entries)):
            if has_different_trailing_numbers(keys[i], keys[j]):
                continue
            a, b = stripped[i], stripped[j]
            if not a or not b:
                continue
            if a in b or b in a or similarity(a, b) >= threshold:
                ds.union(i, j)

    groups: dict[str, list[DiscoveredFile]] = {}
    for members in ds.groups():
        kind = "single" if len(members) == 1 else "cluster"
        group_key = f"{prefix}:{kind}:{keys[members[0]]}"
        groups.setdefault(group_key, []).extend(entries[i][0] for i in members)
    return groups
