"""Tests for the scan record cache."""

# pylint: disable=redefined-outer-name

from pathlib import Path

import pytest

from tunescan.database import CacheStore, Database, ScanRecord


@pytest.fixture
def store(tmp_path: Path):
    """A cache store over a fresh database."""
    db = Database(tmp_path / "cache.db")
    db.connect()
    yield CacheStore(db, page_size=3)
    db.close()


def _record(path: str, **overrides) -> ScanRecord:
    values = {
        "canonical_path": path,
        "file_name": path.rsplit("/", 1)[-1],
        "size_bytes": 1000,
        "last_modified_ms": 1_000,
        "scan_timestamp_ms": 5_000,
        "title": path.rsplit("/", 1)[-1],
    }
    values.update(overrides)
    return ScanRecord(**values)


class TestUpsertAndGet:
    """Tests for writes and point lookups."""

    def test_get_missing_returns_none(self, store: CacheStore):
        assert store.get("/music/none.mp3") is None

    def test_upsert_then_get(self, store: CacheStore):
        record = _record("/music/a.mp3", artist="Artist", year=2001, duration_ms=180_000)
        store.upsert(record)

        assert store.get("/music/a.mp3") == record

    def test_upsert_replaces_by_path(self, store: CacheStore):
        store.upsert(_record("/music/a.mp3", title="Old"))
        store.upsert(_record("/music/a.mp3", title="New", size_bytes=2000))

        record = store.get("/music/a.mp3")
        assert record is not None
        assert record.title == "New"
        assert record.size_bytes == 2000
        assert store.valid_count() == 1

    def test_upsert_batch_returns_count(self, store: CacheStore):
        count = store.upsert_batch([_record(f"/music/{i}.mp3") for i in range(5)])

        assert count == 5
        assert store.valid_count() == 5

    def test_upsert_batch_empty_is_noop(self, store: CacheStore):
        assert store.upsert_batch([]) == 0

    def test_get_many_skips_invalid_by_default(self, store: CacheStore):
        store.upsert_batch([_record("/music/a.mp3"), _record("/music/b.mp3", is_valid=False)])

        assert set(store.get_many(["/music/a.mp3", "/music/b.mp3"])) == {"/music/a.mp3"}
        assert set(store.get_many(["/music/a.mp3", "/music/b.mp3"], valid_only=False)) == {
            "/music/a.mp3",
            "/music/b.mp3",
        }

    def test_get_many_handles_large_input(self, store: CacheStore):
        paths = [f"/music/{i:05d}.mp3" for i in range(2000)]
        store.upsert_batch(_record(p) for p in paths[::2])

        found = store.get_many(paths)
        assert len(found) == 1000

    def test_get_by_external_id(self, store: CacheStore):
        store.upsert(_record("/music/a.mp3", external_id=42))

        record = store.get_by_external_id(42)
        assert record is not None
        assert record.canonical_path == "/music/a.mp3"
        assert store.get_by_external_id(7) is None

    def test_set_external_id(self, store: CacheStore):
        store.upsert(_record("/music/a.mp3"))
        store.set_external_id("/music/a.mp3", 9)

        record = store.get("/music/a.mp3")
        assert record is not None
        assert record.external_id == 9


class TestInvalidateAndPurge:
    """Tests for soft deletion and retention."""

    def test_invalidate_keeps_row(self, store: CacheStore):
        store.upsert(_record("/music/a.mp3"))
        store.invalidate("/music/a.mp3")

        record = store.get("/music/a.mp3")
        assert record is not None
        assert record.is_valid is False
        assert store.valid_count() == 0

    def test_invalidate_batch_counts_changed_rows(self, store: CacheStore):
        store.upsert_batch([_record("/music/a.mp3"), _record("/music/b.mp3")])

        assert store.invalidate_batch(["/music/a.mp3", "/music/missing.mp3"]) == 1

    def test_purge_removes_only_old_invalid_rows(self, store: CacheStore):
        store.upsert_batch(
            [
                _record("/music/old-invalid.mp3", is_valid=False, scan_timestamp_ms=1_000),
                _record("/music/new-invalid.mp3", is_valid=False, scan_timestamp_ms=9_000),
                _record("/music/old-valid.mp3", scan_timestamp_ms=1_000),
            ]
        )

        purged = store.purge_invalid(older_than_ms=5_000)

        assert purged == 1
        assert store.get("/music/old-invalid.mp3") is None
        assert store.get("/music/new-invalid.mp3") is not None
        assert store.get("/music/old-valid.mp3") is not None

    def test_delete_and_clear(self, store: CacheStore):
        store.upsert_batch([_record("/music/a.mp3"), _record("/music/b.mp3")])

        store.delete("/music/a.mp3")
        assert store.get("/music/a.mp3") is None

        store.clear_all()
        assert store.stats().valid == 0


class TestQueries:
    """Tests for listing and search."""

    def test_get_all_orders_by_title_across_pages(self, store: CacheStore):
        titles = ["delta", "alpha", "echo", "charlie", "bravo", "foxtrot", "golf"]
        store.upsert_batch(_record(f"/music/{t}.mp3", title=t) for t in titles)

        assert [r.title for r in store.get_all()] == sorted(titles)

    def test_get_all_pages_with_duplicate_titles(self, store: CacheStore):
        store.upsert_batch(_record(f"/music/{i}.mp3", title="same") for i in range(7))

        paths = [r.canonical_path for r in store.get_all()]
        assert paths == sorted(paths)
        assert len(paths) == 7

    def test_get_all_excludes_invalid(self, store: CacheStore):
        store.upsert_batch([_record("/music/a.mp3"), _record("/music/b.mp3", is_valid=False)])

        assert [r.canonical_path for r in store.get_all()] == ["/music/a.mp3"]
        assert len(list(store.get_all(valid_only=False))) == 2

    def test_search_matches_title_artist_album(self, store: CacheStore):
        store.upsert_batch(
            [
                _record("/music/1.mp3", title="Blue Train"),
                _record("/music/2.mp3", title="So What", artist="Miles Davis"),
                _record("/music/3.mp3", title="Naima", album="Giant Steps"),
                _record("/music/4.mp3", title="Other"),
            ]
        )

        assert {r.canonical_path for r in store.search("blue")} == {"/music/1.mp3"}
        assert {r.canonical_path for r in store.search("DAVIS")} == {"/music/2.mp3"}
        assert {r.canonical_path for r in store.search("giant")} == {"/music/3.mp3"}

    def test_search_escapes_wildcards(self, store: CacheStore):
        store.upsert_batch(
            [_record("/music/1.mp3", title="100% Pure"), _record("/music/2.mp3", title="1000")]
        )

        assert [r.title for r in store.search("100%")] == ["100% Pure"]
        assert store.search("_") == []

    def test_search_excludes_invalid(self, store: CacheStore):
        store.upsert(_record("/music/1.mp3", title="Gone", is_valid=False))

        assert store.search("Gone") == []

    def test_get_modified_since(self, store: CacheStore):
        store.upsert_batch(
            [
                _record("/music/a.mp3", last_modified_ms=100),
                _record("/music/b.mp3", last_modified_ms=300),
            ]
        )

        assert [r.canonical_path for r in store.get_modified_since(200)] == ["/music/b.mp3"]

    def test_valid_paths_under_respects_segments(self, store: CacheStore):
        store.upsert_batch(
            [
                _record("/music/a.mp3"),
                _record("/music/sub/b.mp3"),
                _record("/music2/c.mp3"),
                _record("/music/gone.mp3", is_valid=False),
            ]
        )

        assert store.valid_paths_under("/music") == {"/music/a.mp3", "/music/sub/b.mp3"}

    def test_valid_paths_under_document_tree_prefix(self, store: CacheStore):
        store.upsert_batch(
            [_record("tree://music/a.mp3"), _record("tree://musicbox/b.mp3")]
        )

        assert store.valid_paths_under("tree://music") == {"tree://music/a.mp3"}

    def test_stats(self, store: CacheStore):
        store.upsert_batch(
            [
                _record("/music/a.mp3", size_bytes=100, scan_timestamp_ms=10),
                _record("/music/b.mp3", size_bytes=200, scan_timestamp_ms=20),
                _record("/music/c.mp3", size_bytes=400, is_valid=False, scan_timestamp_ms=30),
            ]
        )

        stats = store.stats()
        assert stats.valid == 2
        assert stats.invalid == 1
        assert stats.total_bytes == 300
        assert stats.last_scan_ms == 30

    def test_stats_of_empty_cache(self, store: CacheStore):
        stats = store.stats()
        assert stats.valid == 0
        assert stats.last_scan_ms is None


class TestListeners:
    """Tests for change notification."""

    def test_listener_called_after_write(self, store: CacheStore):
        calls = []
        store.add_listener(lambda: calls.append(store.valid_count()))

        store.upsert(_record("/music/a.mp3"))

        assert calls == [1]

    def test_removed_listener_not_called(self, store: CacheStore):
        calls = []

        def listener():
            calls.append(1)

        store.add_listener(listener)
        store.remove_listener(listener)
        store.upsert(_record("/music/a.mp3"))

        assert calls == []

    def test_failing_listener_does_not_break_write(self, store: CacheStore):
        def listener():
            raise RuntimeError("boom")

        store.add_listener(listener)
        store.upsert(_record("/music/a.mp3"))

        assert store.valid_count() == 1
