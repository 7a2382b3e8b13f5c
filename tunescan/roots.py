"""Registry of the locations a scan covers."""

import logging
import os
import time
from pathlib import Path

from tunescan.database.connection import Database
from tunescan.database.models import RootKind, ScanRoot

logger = logging.getLogger(__name__)


class RootRegistryError(Exception):
    """Raised for operations on roots the registry does not know."""


def well_known_music_dirs() -> list[Path]:
    """System locations that usually hold music."""
    home = Path.home()
    candidates = []
    xdg_music = os.environ.get("XDG_MUSIC_DIR")
    if xdg_music:
        candidates.append(Path(os.path.expandvars(xdg_music)).expanduser())
    candidates.extend([home / "Music", home / "Downloads"])

    seen: set[str] = set()
    unique = []
    for path in candidates:
        key = os.path.abspath(path)
        if key not in seen:
            seen.add(key)
            unique.append(path)
    return unique


def normalize_root_key(handle: str | Path) -> tuple[RootKind, str]:
    """Classify a handle and return it in the form used as its registry key.

    Anything with a URI scheme is an opaque document-tree handle and kept as
    given; everything else is a filesystem path made absolute.
    """
    text = str(handle)
    if "://" in text:
        return RootKind.DOCUMENT_TREE, text
    return RootKind.FILESYSTEM, os.path.abspath(os.path.expanduser(text))


class RootRegistry:
    """Default and user-added scan roots with their enabled flags.

    Default roots are derived from well-known locations on every call and
    filtered to those that exist right now. User roots and enabled-flag
    overrides live in the ``scan_roots`` table.
    """

    def __init__(self, database: Database, default_locations: list[Path] | None = None) -> None:
        self.db = database
        self._default_locations = default_locations

    def _default_keys(self) -> list[str]:
        locations = (
            self._default_locations
            if self._default_locations is not None
            else well_known_music_dirs()
        )
        return [normalize_root_key(p)[1] for p in locations]

    def default_roots(self) -> list[ScanRoot]:
        overrides = self._enabled_overrides()
        roots = []
        for key in self._default_keys():
            if not Path(key).is_dir():
                continue
            roots.append(
                ScanRoot.filesystem(key, is_default=True, is_enabled=overrides.get(key, True))
            )
        return roots

    def user_roots(self) -> list[ScanRoot]:
        with self.db.reading() as conn:
            rows = conn.execute(
                """
                SELECT root_key, kind, display_name, is_enabled FROM scan_roots
                WHERE is_user_root = 1
                ORDER BY added_at_ms, root_key
                """
            ).fetchall()
        roots = []
        for row in rows:
            kind = RootKind(row["kind"])
            enabled = bool(row["is_enabled"])
            if kind is RootKind.FILESYSTEM:
                root = ScanRoot.filesystem(
                    row["root_key"], display_name=row["display_name"], is_enabled=enabled
                )
            else:
                root = ScanRoot.document_tree(
                    row["root_key"], display_name=row["display_name"], is_enabled=enabled
                )
            roots.append(root)
        return roots

    def list_roots(self) -> list[ScanRoot]:
        defaults = self.default_roots()
        default_keys = {r.key for r in defaults}
        return defaults + [r for r in self.user_roots() if r.key not in default_keys]

    def enabled_roots(self) -> list[ScanRoot]:
        return [root for root in self.list_roots() if root.is_enabled]

    def get(self, root_key: str) -> ScanRoot | None:
        for root in self.list_roots():
            if root.key == root_key:
                return root
        return None

    def add_user_root(self, handle: str | Path, display_name: str | None = None) -> ScanRoot:
        """Register a root; re-adding a known handle changes nothing."""
        kind, key = normalize_root_key(handle)
        name = display_name or key.rstrip("/").rsplit("/", 1)[-1] or key
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO scan_roots
                (root_key, kind, display_name, is_user_root, is_enabled, added_at_ms)
                VALUES (?, ?, ?, 1, 1, ?)
                ON CONFLICT(root_key) DO UPDATE SET is_user_root = 1
                WHERE is_user_root = 0
                """,
                (key, kind.value, name, int(time.time() * 1000)),
            )
        if cursor.rowcount:
            logger.info("Added scan root %s", key)
        root = self.get(key)
        if root is None:
            raise RootRegistryError(f"Scan root was not stored: {key}")
        return root

    def remove_user_root(self, handle: str | Path) -> bool:
        """Forget a user root and its enabled flag. Cached records are untouched."""
        _, key = normalize_root_key(handle)
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM scan_roots WHERE root_key = ? AND is_user_root = 1", (key,)
            )
        removed = cursor.rowcount > 0
        if removed:
            logger.info("Removed scan root %s", key)
        return removed

    def set_enabled(self, root_key: str | Path, enabled: bool) -> None:
        _, key = normalize_root_key(root_key)
        if key in self._default_keys():
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO scan_roots
                    (root_key, kind, display_name, is_user_root, is_enabled, added_at_ms)
                    VALUES (?, ?, ?, 0, ?, ?)
                    ON CONFLICT(root_key) DO UPDATE SET is_enabled = excluded.is_enabled
                    """,
                    (
                        key,
                        RootKind.FILESYSTEM.value,
                        Path(key).name,
                        1 if enabled else 0,
                        int(time.time() * 1000),
                    ),
                )
            return

        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE scan_roots SET is_enabled = ? WHERE root_key = ? AND is_user_root = 1",
                (1 if enabled else 0, key),
            )
        if cursor.rowcount == 0:
            raise RootRegistryError(f"Unknown scan root: {key}")

    def rename_user_root(self, handle: str | Path, display_name: str) -> None:
        _, key = normalize_root_key(handle)
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE scan_roots SET display_name = ? WHERE root_key = ? AND is_user_root = 1",
                (display_name, key),
            )
        if cursor.rowcount == 0:
            raise RootRegistryError(f"Unknown scan root: {key}")

    def has_user_roots(self) -> bool:
        with self.db.reading() as conn:
            row = conn.execute("SELECT 1 FROM scan_roots WHERE is_user_root = 1 LIMIT 1").fetchone()
        return row is not None

    def clear_user_roots(self) -> None:
        """Drop every user root and every enabled-flag override."""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM scan_roots")

    def _enabled_overrides(self) -> dict[str, bool]:
        with self.db.reading() as conn:
            rows = conn.execute(
                "SELECT root_key, is_enabled FROM scan_roots WHERE is_user_root = 0"
            ).fetchall()
        return {row["root_key"]: bool(row["is_enabled"]) for row in rows}
