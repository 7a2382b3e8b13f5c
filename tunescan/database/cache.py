"""Durable cache of scan records keyed by canonical path."""

import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator

from .connection import Database
from .models import CacheStats, ScanRecord

logger = logging.getLogger(__name__)

RECORD_COLUMNS = (
    "canonical_path",
    "file_name",
    "size_bytes",
    "last_modified_ms",
    "title",
    "artist",
    "album",
    "album_artist",
    "genre",
    "year",
    "track_number",
    "duration_ms",
    "bitrate",
    "sample_rate",
    "scan_timestamp_ms",
    "external_id",
    "is_valid",
)

_UPSERT_SQL = f"""
    INSERT OR REPLACE INTO scanned_media_cache ({", ".join(RECORD_COLUMNS)})
    VALUES ({", ".join(":" + c for c in RECORD_COLUMNS)})
"""

# SQLite's default limit on host parameters is 999 on older builds
_MAX_PARAMS = 900

CacheListener = Callable[[], None]


class CacheStore:
    """Queries and atomic mutations over the ``scanned_media_cache`` table.

    Every mutating call runs in a single transaction, so readers sharing the
    database never see half of a batch. Listeners registered with
    :meth:`add_listener` are called after each committed mutation.
    """

    def __init__(self, database: Database, page_size: int = 500) -> None:
        self.db = database
        self.page_size = page_size
        self._listeners: list[CacheListener] = []

    # -- change notification -------------------------------------------------

    def add_listener(self, listener: CacheListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: CacheListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("Cache listener failed")

    # -- reads ---------------------------------------------------------------

    def get(self, path: str) -> ScanRecord | None:
        """Point lookup by canonical path, valid or not."""
        with self.db.reading() as conn:
            row = conn.execute(
                "SELECT * FROM scanned_media_cache WHERE canonical_path = ?", (path,)
            ).fetchone()
        return _row_to_record(row) if row else None

    def get_many(self, paths: Iterable[str], valid_only: bool = True) -> dict[str, ScanRecord]:
        """Batch lookup by canonical path."""
        path_list = list(paths)
        found: dict[str, ScanRecord] = {}
        valid_clause = "is_valid = 1 AND " if valid_only else ""
        with self.db.reading() as conn:
            for chunk in _chunks(path_list, _MAX_PARAMS):
                placeholders = ",".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT * FROM scanned_media_cache "
                    f"WHERE {valid_clause}canonical_path IN ({placeholders})",
                    chunk,
                ).fetchall()
                for row in rows:
                    found[row["canonical_path"]] = _row_to_record(row)
        return found

    def get_by_external_id(self, external_id: int) -> ScanRecord | None:
        with self.db.reading() as conn:
            row = conn.execute(
                "SELECT * FROM scanned_media_cache WHERE external_id = ? LIMIT 1",
                (external_id,),
            ).fetchone()
        return _row_to_record(row) if row else None

    def get_all(self, valid_only: bool = True) -> Iterator[ScanRecord]:
        """Stream records ordered by title, one page at a time."""
        # Keyset pagination: each page is a separate read, so a long stream
        # never holds the connection lock while the caller consumes rows.
        valid_clause = "is_valid = 1" if valid_only else "1 = 1"
        first_page_sql = f"""
            SELECT *, COALESCE(title, '') AS sort_title FROM scanned_media_cache
            WHERE {valid_clause}
            ORDER BY sort_title, canonical_path
            LIMIT ?
        """
        next_page_sql = f"""
            SELECT *, COALESCE(title, '') AS sort_title FROM scanned_media_cache
            WHERE {valid_clause} AND (COALESCE(title, ''), canonical_path) > (?, ?)
            ORDER BY sort_title, canonical_path
            LIMIT ?
        """
        cursor_key: tuple[str, str] | None = None
        while True:
            with self.db.reading() as conn:
                if cursor_key is None:
                    rows = conn.execute(first_page_sql, (self.page_size,)).fetchall()
                else:
                    rows = conn.execute(next_page_sql, (*cursor_key, self.page_size)).fetchall()
            for row in rows:
                yield _row_to_record(row)
            if len(rows) < self.page_size:
                return
            cursor_key = (rows[-1]["sort_title"], rows[-1]["canonical_path"])

    def search(self, query: str) -> list[ScanRecord]:
        """Valid records whose title, artist or album contains ``query``."""
        pattern = f"%{_escape_like(query)}%"
        with self.db.reading() as conn:
            rows = conn.execute(
                r"""
                SELECT * FROM scanned_media_cache
                WHERE is_valid = 1 AND (
                    title LIKE ? ESCAPE '\'
                    OR artist LIKE ? ESCAPE '\'
                    OR album LIKE ? ESCAPE '\'
                )
                ORDER BY COALESCE(title, ''), canonical_path
                """,
                (pattern, pattern, pattern),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def get_modified_since(self, timestamp_ms: int) -> list[ScanRecord]:
        with self.db.reading() as conn:
            rows = conn.execute(
                """
                SELECT * FROM scanned_media_cache
                WHERE last_modified_ms > ? AND is_valid = 1
                ORDER BY last_modified_ms
                """,
                (timestamp_ms,),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def valid_paths_under(self, prefix: str) -> set[str]:
        """Valid canonical paths lexically under ``prefix``.

        Matching is on whole path segments and case-sensitive, so ``/music``
        does not own ``/music2/a.mp3``.
        """
        base = prefix if prefix.endswith("/") else prefix + "/"
        with self.db.reading() as conn:
            rows = conn.execute(
                """
                SELECT canonical_path FROM scanned_media_cache
                WHERE is_valid = 1
                  AND (canonical_path = ? OR substr(canonical_path, 1, ?) = ?)
                """,
                (prefix, len(base), base),
            ).fetchall()
        return {row["canonical_path"] for row in rows}

    def valid_count(self) -> int:
        with self.db.reading() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM scanned_media_cache WHERE is_valid = 1"
            ).fetchone()
        return row[0]

    def stats(self) -> CacheStats:
        with self.db.reading() as conn:
            row = conn.execute(
                """
                SELECT
                    SUM(CASE WHEN is_valid = 1 THEN 1 ELSE 0 END) AS valid,
                    SUM(CASE WHEN is_valid = 0 THEN 1 ELSE 0 END) AS invalid,
                    SUM(CASE WHEN is_valid = 1 THEN size_bytes ELSE 0 END) AS total_bytes,
                    MAX(scan_timestamp_ms) AS last_scan_ms
                FROM scanned_media_cache
                """
            ).fetchone()
        return CacheStats(
            valid=row["valid"] or 0,
            invalid=row["invalid"] or 0,
            total_bytes=row["total_bytes"] or 0,
            last_scan_ms=row["last_scan_ms"],
        )

    # -- writes --------------------------------------------------------------

    def upsert(self, record: ScanRecord) -> None:
        self.upsert_batch([record])

    def upsert_batch(self, records: Iterable[ScanRecord]) -> int:
        """Insert or replace records by canonical path in one transaction."""
        rows = [_record_to_params(r) for r in records]
        if not rows:
            return 0
        with self.db.transaction() as conn:
            conn.executemany(_UPSERT_SQL, rows)
        logger.debug("Upserted %d records", len(rows))
        self._notify()
        return len(rows)

    def invalidate(self, path: str) -> None:
        self.invalidate_batch([path])

    def invalidate_batch(self, paths: Iterable[str]) -> int:
        """Soft-delete records; rows stay until purged."""
        path_list = list(paths)
        if not path_list:
            return 0
        changed = 0
        with self.db.transaction() as conn:
            for chunk in _chunks(path_list, _MAX_PARAMS):
                placeholders = ",".join("?" for _ in chunk)
                cursor = conn.execute(
                    f"UPDATE scanned_media_cache SET is_valid = 0 "
                    f"WHERE canonical_path IN ({placeholders})",
                    chunk,
                )
                changed += cursor.rowcount
        logger.debug("Invalidated %d records", changed)
        self._notify()
        return changed

    def set_external_id(self, path: str, external_id: int | None) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE scanned_media_cache SET external_id = ? WHERE canonical_path = ?",
                (external_id, path),
            )
        self._notify()

    def purge_invalid(self, older_than_ms: int) -> int:
        """Hard-delete soft-invalidated records last written before ``older_than_ms``."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM scanned_media_cache WHERE is_valid = 0 AND scan_timestamp_ms < ?",
                (older_than_ms,),
            )
            purged = cursor.rowcount
        if purged:
            logger.info("Purged %d invalid cache entries", purged)
            self._notify()
        return purged

    def delete(self, path: str) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM scanned_media_cache WHERE canonical_path = ?", (path,))
        self._notify()

    def clear_all(self) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM scanned_media_cache")
        logger.info("Cache cleared")
        self._notify()


def _row_to_record(row: sqlite3.Row) -> ScanRecord:
    values = {column: row[column] for column in RECORD_COLUMNS}
    values["is_valid"] = bool(values["is_valid"])
    return ScanRecord(**values)


def _record_to_params(record: ScanRecord) -> dict:
    params = {column: getattr(record, column) for column in RECORD_COLUMNS}
    params["is_valid"] = 1 if record.is_valid else 0
    return params


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _chunks(items: list[str], size: int) -> Iterator[list[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]
