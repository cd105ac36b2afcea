"""SQLite-backed catalog store -- libraries, roots, books, and book files.

Single WAL-mode database. Thread-safe via per-thread connections and SQLite's
built-in locking. A book_files row is unique by (root, sub-path, file name);
the UNIQUE constraint is the last line of defence against double-attaching a
file when reconciliation and the watcher race.

Every mutating method runs inside transaction(). Calls nest: only the
outermost block commits or rolls back, so callers can group several store
operations into one unit.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from .errors import BookNotFoundError, LibraryNotFoundError, StoreError
from .models import (
    BookFileType,
    CatalogBook,
    CatalogFile,
    Library,
    LibraryPath,
    OrganizationMode,
)

log = logger.bind(stage="db")

_SCHEMA = """\
PRAGMA journal_mode=WAL;
PRAGMA busy_timeout=5000;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS libraries (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    name                TEXT NOT NULL UNIQUE,
    organization_mode   TEXT NOT NULL DEFAULT 'auto_detect',
    file_naming_pattern TEXT NOT NULL DEFAULT '',
    format_priority     TEXT NOT NULL DEFAULT '',
    allowed_formats     TEXT NOT NULL DEFAULT '',
    watch               INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS library_paths (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    library_id INTEGER NOT NULL,
    path       TEXT NOT NULL,
    UNIQUE (library_id, path),
    FOREIGN KEY (library_id) REFERENCES libraries(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS books (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    library_id      INTEGER NOT NULL,
    library_path_id INTEGER,
    title           TEXT,
    subtitle        TEXT,
    authors         TEXT NOT NULL DEFAULT '[]',
    series_name     TEXT,
    series_number   REAL,
    published_year  INTEGER,
    language        TEXT,
    added_at        TEXT NOT NULL,
    FOREIGN KEY (library_id) REFERENCES libraries(id) ON DELETE CASCADE,
    FOREIGN KEY (library_path_id) REFERENCES library_paths(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS book_files (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id         INTEGER NOT NULL,
    library_path_id INTEGER NOT NULL,
    file_sub_path   TEXT NOT NULL DEFAULT '',
    file_name       TEXT NOT NULL,
    is_primary      INTEGER NOT NULL DEFAULT 0,
    folder_based    INTEGER NOT NULL DEFAULT 0,
    book_type       TEXT NOT NULL,
    size_kb         INTEGER,
    initial_hash    TEXT,
    current_hash    TEXT,
    added_at        TEXT NOT NULL,
    UNIQUE (library_path_id, file_sub_path, file_name),
    FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE,
    FOREIGN KEY (library_path_id) REFERENCES library_paths(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_books_library ON books(library_id);
CREATE INDEX IF NOT EXISTS idx_files_book ON book_files(book_id);
CREATE INDEX IF NOT EXISTS idx_files_dir ON book_files(library_path_id, file_sub_path);
"""

_TS_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _utcnow() -> str:
    return datetime.now(timezone.utc).strftime(_TS_FORMAT)


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


def _join_types(types: Iterable[BookFileType]) -> str:
    return ",".join(t.value for t in types)


def _split_types(value: str) -> list[BookFileType]:
    return [BookFileType(v) for v in value.split(",") if v]


class CatalogDB:
    """SQLite-backed catalog store.

    Thread-safe: each thread gets its own connection via threading.local().
    The database uses WAL mode for concurrent readers + single writer.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._local = threading.local()
        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create a per-thread SQLite connection."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=10.0,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            conn.execute("PRAGMA foreign_keys=ON")
            self._local.conn = conn
            self._local.depth = 0
        return conn

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        conn = self._get_conn()
        conn.executescript(_SCHEMA)
        conn.commit()

    def close(self) -> None:
        """Close the current thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one unit of work.

        Nested blocks join the outer one. sqlite3 errors surface as
        StoreError; anything else propagates unchanged after rollback.
        """
        conn = self._get_conn()
        depth = self._local.depth
        self._local.depth = depth + 1
        try:
            yield conn
        except sqlite3.Error as e:
            self._local.depth = depth
            if depth == 0:
                conn.rollback()
            raise StoreError(f"Catalog store error: {e}") from e
        except BaseException:
            self._local.depth = depth
            if depth == 0:
                conn.rollback()
            raise
        else:
            self._local.depth = depth
            if depth == 0:
                conn.commit()

    # -- Libraries --

    def add_library(
        self,
        name: str,
        paths: Iterable[Path],
        organization_mode: OrganizationMode = OrganizationMode.AUTO_DETECT,
        file_naming_pattern: str = "",
        format_priority: Iterable[BookFileType] = (),
        allowed_formats: Iterable[BookFileType] = (),
        watch: bool = False,
    ) -> Library:
        with self.transaction() as conn:
            cur = conn.execute(
                """INSERT INTO libraries
                   (name, organization_mode, file_naming_pattern,
                    format_priority, allowed_formats, watch, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    name,
                    str(organization_mode),
                    file_naming_pattern,
                    _join_types(format_priority),
                    _join_types(allowed_formats),
                    int(watch),
                    _utcnow(),
                ),
            )
            library_id = cur.lastrowid
            for p in paths:
                conn.execute(
                    "INSERT INTO library_paths (library_id, path) VALUES (?, ?)",
                    (library_id, str(p)),
                )
        log.info(f"Created library {library_id} '{name}'")
        return self.get_library(library_id)

    def get_library(self, library_id: int) -> Library:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM libraries WHERE id = ?", (library_id,)
        ).fetchone()
        if row is None:
            raise LibraryNotFoundError(library_id)
        return self._row_to_library(row, conn)

    def list_libraries(self) -> list[Library]:
        conn = self._get_conn()
        rows = conn.execute("SELECT * FROM libraries ORDER BY id").fetchall()
        return [self._row_to_library(row, conn) for row in rows]

    def get_library_path(self, library_path_id: int) -> LibraryPath | None:
        row = self._get_conn().execute(
            "SELECT * FROM library_paths WHERE id = ?", (library_path_id,)
        ).fetchone()
        if row is None:
            return None
        return LibraryPath(id=row["id"], library_id=row["library_id"], path=Path(row["path"]))

    def _row_to_library(self, row: sqlite3.Row, conn: sqlite3.Connection) -> Library:
        path_rows = conn.execute(
            "SELECT * FROM library_paths WHERE library_id = ? ORDER BY id",
            (row["id"],),
        ).fetchall()
        return Library(
            id=row["id"],
            name=row["name"],
            paths=[
                LibraryPath(id=p["id"], library_id=p["library_id"], path=Path(p["path"]))
                for p in path_rows
            ],
            organization_mode=OrganizationMode(row["organization_mode"]),
            file_naming_pattern=row["file_naming_pattern"],
            format_priority=_split_types(row["format_priority"]),
            allowed_formats=_split_types(row["allowed_formats"]),
            watch=bool(row["watch"]),
        )

    # -- Books --

    def get_book(self, book_id: int) -> CatalogBook | None:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        if row is None:
            return None
        return self._load_books([row], conn)[0]

    def require_book(self, book_id: int) -> CatalogBook:
        book = self.get_book(book_id)
        if book is None:
            raise BookNotFoundError(book_id)
        return book

    def find_books_by_library(self, library_id: int) -> list[CatalogBook]:
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT * FROM books WHERE library_id = ? ORDER BY id", (library_id,)
        ).fetchall()
        return self._load_books(rows, conn)

    def find_fileless_books(self, library_id: int) -> list[CatalogBook]:
        """Books in a library with zero attached files (placeholders)."""
        conn = self._get_conn()
        rows = conn.execute(
            """SELECT * FROM books b
               WHERE b.library_id = ?
                 AND NOT EXISTS (SELECT 1 FROM book_files f WHERE f.book_id = b.id)
               ORDER BY b.id""",
            (library_id,),
        ).fetchall()
        return self._load_books(rows, conn)

    def find_books_in_directory(
        self, library_path_id: int, sub_path: str
    ) -> list[CatalogBook]:
        """Books with at least one file directly in (root, sub-path)."""
        conn = self._get_conn()
        rows = conn.execute(
            """SELECT * FROM books b
               WHERE b.id IN (
                   SELECT book_id FROM book_files
                   WHERE library_path_id = ? AND file_sub_path = ?
               )
               ORDER BY b.id""",
            (library_path_id, sub_path),
        ).fetchall()
        return self._load_books(rows, conn)

    def count_books(self, library_id: int) -> int:
        row = self._get_conn().execute(
            "SELECT COUNT(*) AS n FROM books WHERE library_id = ?", (library_id,)
        ).fetchone()
        return row["n"]

    def create_book(self, book: CatalogBook) -> CatalogBook:
        """Insert a book and any files it already carries. Sets ids in place."""
        now = _utcnow()
        with self.transaction() as conn:
            cur = conn.execute(
                """INSERT INTO books
                   (library_id, library_path_id, title, subtitle, authors,
                    series_name, series_number, published_year, language, added_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    book.library_id,
                    book.library_path_id,
                    book.title,
                    book.subtitle,
                    json.dumps(book.authors),
                    book.series_name,
                    book.series_number,
                    book.published_year,
                    book.language,
                    now,
                ),
            )
            book.id = cur.lastrowid
            book.added_at = _parse_ts(now)
            for f in book.files:
                self._insert_file(conn, book.id, f)
        log.debug(f"Created book {book.id} '{book.title}' with {len(book.files)} files")
        return book

    def save_book(self, book: CatalogBook) -> None:
        """Persist metadata and make the stored file set match book.files.

        Files absent from book.files are deleted, files without an id are
        inserted, the rest get their primary flag refreshed.
        """
        if book.id is None:
            raise StoreError("save_book requires a persisted book")
        with self.transaction() as conn:
            conn.execute(
                """UPDATE books SET library_path_id = ?, title = ?, subtitle = ?,
                       authors = ?, series_name = ?, series_number = ?,
                       published_year = ?, language = ?
                   WHERE id = ?""",
                (
                    book.library_path_id,
                    book.title,
                    book.subtitle,
                    json.dumps(book.authors),
                    book.series_name,
                    book.series_number,
                    book.published_year,
                    book.language,
                    book.id,
                ),
            )
            keep = [f.id for f in book.files if f.id is not None]
            stored = {
                r["id"]
                for r in conn.execute(
                    "SELECT id FROM book_files WHERE book_id = ?", (book.id,)
                )
            }
            for stale in stored - set(keep):
                conn.execute("DELETE FROM book_files WHERE id = ?", (stale,))
            for f in book.files:
                if f.id is None:
                    self._insert_file(conn, book.id, f)
                else:
                    conn.execute(
                        "UPDATE book_files SET is_primary = ? WHERE id = ?",
                        (int(f.is_primary), f.id),
                    )

    def delete_books(self, book_ids: Iterable[int]) -> int:
        ids = list(book_ids)
        if not ids:
            return 0
        with self.transaction() as conn:
            conn.executemany("DELETE FROM books WHERE id = ?", [(i,) for i in ids])
        log.info(f"Deleted {len(ids)} books")
        return len(ids)

    # -- Files --

    def add_file(self, book_id: int, file: CatalogFile) -> CatalogFile:
        with self.transaction() as conn:
            self._insert_file(conn, book_id, file)
        return file

    def _insert_file(
        self, conn: sqlite3.Connection, book_id: int, file: CatalogFile
    ) -> None:
        now = _utcnow()
        cur = conn.execute(
            """INSERT INTO book_files
               (book_id, library_path_id, file_sub_path, file_name, is_primary,
                folder_based, book_type, size_kb, initial_hash, current_hash, added_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                book_id,
                file.library_path_id,
                file.sub_path,
                file.file_name,
                int(file.is_primary),
                int(file.folder_based),
                file.book_type.value,
                file.size_kb,
                file.initial_hash,
                file.current_hash,
                now,
            ),
        )
        file.id = cur.lastrowid
        file.book_id = book_id
        file.added_at = _parse_ts(now)

    def find_file_by_path_key(
        self, library_path_id: int, sub_path: str, file_name: str
    ) -> CatalogFile | None:
        row = self._get_conn().execute(
            """SELECT * FROM book_files
               WHERE library_path_id = ? AND file_sub_path = ? AND file_name = ?""",
            (library_path_id, sub_path, file_name),
        ).fetchone()
        return self._row_to_file(row) if row else None

    def file_path_keys(self, library_id: int) -> set[tuple[int, str, str]]:
        """(root, sub-path, file name) of every file in a library."""
        rows = self._get_conn().execute(
            """SELECT f.library_path_id, f.file_sub_path, f.file_name
               FROM book_files f JOIN books b ON b.id = f.book_id
               WHERE b.library_id = ?""",
            (library_id,),
        ).fetchall()
        return {(r[0], r[1], r[2]) for r in rows}

    def delete_files(self, file_ids: Iterable[int]) -> int:
        ids = list(file_ids)
        if not ids:
            return 0
        with self.transaction() as conn:
            conn.executemany("DELETE FROM book_files WHERE id = ?", [(i,) for i in ids])
        log.debug(f"Deleted {len(ids)} book files")
        return len(ids)

    def update_file_locations(self, files: Iterable[CatalogFile]) -> None:
        """Write root, sub-path, and file name for every file in one unit."""
        with self.transaction() as conn:
            for f in files:
                conn.execute(
                    """UPDATE book_files
                       SET library_path_id = ?, file_sub_path = ?, file_name = ?
                       WHERE id = ?""",
                    (f.library_path_id, f.sub_path, f.file_name, f.id),
                )

    def update_book_root(self, book_id: int, library_path_id: int) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE books SET library_path_id = ? WHERE id = ?",
                (library_path_id, book_id),
            )

    def update_hashes(
        self,
        file_id: int,
        current_hash: str,
        initial_hash: str | None = None,
    ) -> None:
        with self.transaction() as conn:
            if initial_hash is None:
                conn.execute(
                    "UPDATE book_files SET current_hash = ? WHERE id = ?",
                    (current_hash, file_id),
                )
            else:
                conn.execute(
                    """UPDATE book_files SET current_hash = ?, initial_hash = ?
                       WHERE id = ?""",
                    (current_hash, initial_hash, file_id),
                )

    # -- Row mapping --

    def _load_books(
        self, rows: list[sqlite3.Row], conn: sqlite3.Connection
    ) -> list[CatalogBook]:
        books = [self._row_to_book(r) for r in rows]
        if not books:
            return books
        by_id = {b.id: b for b in books}
        placeholders = ",".join("?" * len(by_id))
        file_rows = conn.execute(
            f"""SELECT * FROM book_files WHERE book_id IN ({placeholders})
                ORDER BY is_primary DESC, id""",
            list(by_id),
        ).fetchall()
        for fr in file_rows:
            by_id[fr["book_id"]].files.append(self._row_to_file(fr))
        return books

    @staticmethod
    def _row_to_book(row: sqlite3.Row) -> CatalogBook:
        return CatalogBook(
            id=row["id"],
            library_id=row["library_id"],
            library_path_id=row["library_path_id"],
            title=row["title"],
            subtitle=row["subtitle"],
            authors=json.loads(row["authors"]),
            series_name=row["series_name"],
            series_number=row["series_number"],
            published_year=row["published_year"],
            language=row["language"],
            added_at=_parse_ts(row["added_at"]),
        )

    @staticmethod
    def _row_to_file(row: sqlite3.Row) -> CatalogFile:
        return CatalogFile(
            id=row["id"],
            book_id=row["book_id"],
            library_path_id=row["library_path_id"],
            sub_path=row["file_sub_path"],
            file_name=row["file_name"],
            is_primary=bool(row["is_primary"]),
            folder_based=bool(row["folder_based"]),
            book_type=BookFileType(row["book_type"]),
            size_kb=row["size_kb"],
            initial_hash=row["initial_hash"],
            current_hash=row["current_hash"],
            added_at=_parse_ts(row["added_at"]),
        )
