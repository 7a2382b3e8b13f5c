"""Database schema definition."""

import sqlite3

SCHEMA_SQL = """
-- Last-known scan result per audio file, keyed by canonical path
CREATE TABLE IF NOT EXISTS scanned_media_cache (
    canonical_path TEXT PRIMARY KEY NOT NULL,
    file_name TEXT NOT NULL,
    size_bytes INTEGER NOT NULL CHECK (size_bytes >= 0),
    last_modified_ms INTEGER NOT NULL,

    -- Tag metadata (NULL = unknown)
    title TEXT,
    artist TEXT,
    album TEXT,
    album_artist TEXT,
    genre TEXT,
    year INTEGER,
    track_number INTEGER,
    duration_ms INTEGER,
    bitrate INTEGER,
    sample_rate INTEGER,

    -- Bookkeeping
    scan_timestamp_ms INTEGER NOT NULL,
    external_id INTEGER,
    is_valid INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_cache_last_modified ON scanned_media_cache(last_modified_ms);
CREATE INDEX IF NOT EXISTS idx_cache_is_valid ON scanned_media_cache(is_valid);
CREATE INDEX IF NOT EXISTS idx_cache_title ON scanned_media_cache(title);
CREATE INDEX IF NOT EXISTS idx_cache_external_id
    ON scanned_media_cache(external_id) WHERE external_id IS NOT NULL;

-- Registered scan roots (user-added roots and enabled-flag overrides)
CREATE TABLE IF NOT EXISTS scan_roots (
    root_key TEXT PRIMARY KEY NOT NULL,
    kind TEXT NOT NULL,
    display_name TEXT NOT NULL,
    is_user_root INTEGER NOT NULL DEFAULT 0,
    is_enabled INTEGER NOT NULL DEFAULT 1,
    added_at_ms INTEGER NOT NULL
);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """Create schema and run migrations."""
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='scanned_media_cache'"
    )
    cache_exists = cursor.fetchone() is not None

    if cache_exists:
        migrate_add_external_id_column(conn)

    conn.executescript(SCHEMA_SQL)
    conn.commit()


def migrate_add_external_id_column(conn: sqlite3.Connection) -> None:
    """Add external_id to caches created before the external index link existed."""
    cursor = conn.execute("PRAGMA table_info(scanned_media_cache)")
    existing_columns = {row[1] for row in cursor.fetchall()}

    if "external_id" not in existing_columns:
        conn.execute("ALTER TABLE scanned_media_cache ADD COLUMN external_id INTEGER")
        conn.commit()
