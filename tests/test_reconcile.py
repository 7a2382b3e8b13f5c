"""Tests for per-root reconciliation."""

# pylint: disable=redefined-outer-name

import os
import threading
from pathlib import Path

import pytest

from tunescan.database import (
    CacheStore,
    Database,
    FileCandidate,
    ScanRecord,
    ScanRoot,
    TrackMetadata,
)
from tunescan.scanner.enumerator import PathEnumerator
from tunescan.scanner.events import CancellationToken
from tunescan.scanner.reconcile import ReconciliationEngine, needs_update


class FakeExtractor:
    """Returns canned tags and records which files were decoded."""

    name = "fake"

    def __init__(
        self,
        tags: dict[str, TrackMetadata] | None = None,
        broken: set[str] | None = None,
    ):
        self.tags = tags or {}
        self.broken = broken or set()
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def extract(self, handle):
        name = handle.canonical_path.rsplit("/", 1)[-1]
        with self._lock:
            self.calls.append(name)
        if name in self.broken:
            raise ValueError("corrupt frame header")
        return self.tags.get(name, TrackMetadata())


class FakeIndex:
    """External index with fixed ids."""

    def __init__(self, ids: dict[str, int]):
        self.ids = ids

    def lookup(self, canonical_path: str) -> int | None:
        return self.ids.get(canonical_path.rsplit("/", 1)[-1])


@pytest.fixture
def store(tmp_path: Path):
    db = Database(tmp_path / "cache.db")
    db.connect()
    yield CacheStore(db)
    db.close()


@pytest.fixture
def music(tmp_path: Path) -> Path:
    root = tmp_path / "music"
    root.mkdir()
    for name in ["a.mp3", "b.mp3", "c.mp3"]:
        (root / name).write_bytes(b"x" * 10)
        os.utime(root / name, (1000, 1000))
    return root


def _engine(store: CacheStore, extractor: FakeExtractor, **kwargs) -> ReconciliationEngine:
    kwargs.setdefault("clock", lambda: 50_000)
    return ReconciliationEngine(store, extractor, PathEnumerator(), **kwargs)


def _run(engine: ReconciliationEngine, root: ScanRoot, **kwargs):
    candidates = list(engine.enumerator.enumerate(root))
    kwargs.setdefault("writer", engine.store.upsert_batch)
    return engine.reconcile(root, candidates, engine.known_paths(root), **kwargs)


class TestNeedsUpdate:
    """Tests for the size/mtime change heuristic."""

    def _existing(self, size: int = 10, modified: int = 1000) -> ScanRecord:
        return ScanRecord("/m/a.mp3", "a.mp3", size, modified, scan_timestamp_ms=1)

    def test_new_file(self):
        assert needs_update(FileCandidate("/m/a.mp3", "a.mp3", 10, 1000), None)

    def test_unchanged(self):
        assert not needs_update(FileCandidate("/m/a.mp3", "a.mp3", 10, 1000), self._existing())

    def test_newer_mtime(self):
        assert needs_update(FileCandidate("/m/a.mp3", "a.mp3", 10, 1001), self._existing())

    def test_size_change(self):
        assert needs_update(FileCandidate("/m/a.mp3", "a.mp3", 11, 1000), self._existing())

    def test_older_mtime_same_size_is_unchanged(self):
        assert not needs_update(FileCandidate("/m/a.mp3", "a.mp3", 10, 900), self._existing())


class TestReconciliationEngine:
    """Tests for ReconciliationEngine.reconcile."""

    def test_first_scan_adds_everything(self, store: CacheStore, music: Path):
        extractor = FakeExtractor({"a.mp3": TrackMetadata(title="Alpha", artist="Band")})
        result = _run(_engine(store, extractor), ScanRoot.filesystem(str(music)))

        assert (result.added, result.updated, result.unchanged) == (3, 0, 0)
        assert result.removed_paths == []
        assert sorted(extractor.calls) == ["a.mp3", "b.mp3", "c.mp3"]

        record = store.get(str(music / "a.mp3"))
        assert record is not None
        assert record.title == "Alpha"
        assert record.artist == "Band"
        assert record.size_bytes == 10
        assert record.last_modified_ms == 1_000_000
        assert record.scan_timestamp_ms == 50_000

    def test_title_falls_back_to_file_name(self, store: CacheStore, music: Path):
        _run(_engine(store, FakeExtractor()), ScanRoot.filesystem(str(music)))

        record = store.get(str(music / "b.mp3"))
        assert record is not None
        assert record.title == "b.mp3"
        assert record.artist is None

    def test_second_scan_skips_unchanged_files(self, store: CacheStore, music: Path):
        root = ScanRoot.filesystem(str(music))
        _run(_engine(store, FakeExtractor()), root)

        extractor = FakeExtractor()
        result = _run(_engine(store, extractor), root)

        assert (result.added, result.updated, result.unchanged) == (0, 0, 3)
        assert result.upserts == []
        assert extractor.calls == []

    def test_modified_file_is_updated(self, store: CacheStore, music: Path):
        root = ScanRoot.filesystem(str(music))
        _run(_engine(store, FakeExtractor()), root)
        (music / "b.mp3").write_bytes(b"y" * 20)
        os.utime(music / "b.mp3", (2000, 2000))

        extractor = FakeExtractor({"b.mp3": TrackMetadata(title="Bravo")})
        result = _run(_engine(store, extractor), root)

        assert (result.added, result.updated, result.unchanged) == (0, 1, 2)
        assert extractor.calls == ["b.mp3"]
        record = store.get(str(music / "b.mp3"))
        assert record is not None
        assert record.title == "Bravo"
        assert record.size_bytes == 20

    def test_missing_files_are_reported_not_written(self, store: CacheStore, music: Path):
        root = ScanRoot.filesystem(str(music))
        _run(_engine(store, FakeExtractor()), root)
        (music / "c.mp3").unlink()

        result = _run(_engine(store, FakeExtractor()), root)

        assert result.removed_paths == [str(music / "c.mp3")]
        assert result.outcome.removed == 1
        record = store.get(str(music / "c.mp3"))
        assert record is not None
        assert record.is_valid

    def test_extraction_failure_still_caches_file(self, store: CacheStore, music: Path):
        extractor = FakeExtractor(broken={"a.mp3"})
        result = _run(_engine(store, extractor), ScanRoot.filesystem(str(music)))

        assert result.added == 3
        assert result.extraction_failures == 1
        record = store.get(str(music / "a.mp3"))
        assert record is not None
        assert record.title == "a.mp3"
        assert record.is_valid

    def test_writes_in_batches(self, store: CacheStore, music: Path):
        for name in ["d.mp3", "e.mp3"]:
            (music / name).write_bytes(b"x")
        batches: list[int] = []

        def writer(records):
            batches.append(len(records))
            store.upsert_batch(records)

        engine = _engine(store, FakeExtractor(), batch_size=2)
        _run(engine, ScanRoot.filesystem(str(music)), writer=writer)

        assert batches == [2, 2, 1]

    def test_on_file_called_per_candidate(self, store: CacheStore, music: Path):
        seen: list[str] = []
        root = ScanRoot.filesystem(str(music))
        _run(_engine(store, FakeExtractor()), root)

        _run(_engine(store, FakeExtractor()), root, on_file=lambda c: seen.append(c.display_name))

        assert seen == ["a.mp3", "b.mp3", "c.mp3"]

    def test_cancelled_before_start(self, store: CacheStore, music: Path):
        token = CancellationToken()
        token.cancel()
        extractor = FakeExtractor()

        result = _run(_engine(store, extractor), ScanRoot.filesystem(str(music)), cancel=token)

        assert result.cancelled
        assert result.added == 0
        assert result.removed_paths == []
        assert extractor.calls == []

    def test_cancel_skips_removal_detection(self, store: CacheStore, music: Path):
        root = ScanRoot.filesystem(str(music))
        _run(_engine(store, FakeExtractor()), root)
        (music / "a.mp3").unlink()
        token = CancellationToken()

        result = _run(
            _engine(store, FakeExtractor()), root, cancel=token, on_file=lambda _: token.cancel()
        )

        assert result.cancelled
        assert result.removed_paths == []

    def test_external_id_assigned_on_add(self, store: CacheStore, music: Path):
        engine = _engine(store, FakeExtractor(), external_index=FakeIndex({"a.mp3": 11}))
        _run(engine, ScanRoot.filesystem(str(music)))

        record = store.get(str(music / "a.mp3"))
        assert record is not None
        assert record.external_id == 11
        assert store.get_by_external_id(11) == record

    def test_external_id_backfilled_for_unchanged(self, store: CacheStore, music: Path):
        root = ScanRoot.filesystem(str(music))
        _run(_engine(store, FakeExtractor()), root)

        extractor = FakeExtractor()
        engine = _engine(store, extractor, external_index=FakeIndex({"b.mp3": 22}))
        result = _run(engine, root)

        assert result.unchanged == 3
        assert extractor.calls == []
        record = store.get(str(music / "b.mp3"))
        assert record is not None
        assert record.external_id == 22

    def test_failing_external_index_is_ignored(self, store: CacheStore, music: Path):
        class BrokenIndex:
            """Index that is unavailable."""

            def lookup(self, canonical_path):
                raise RuntimeError("index offline")

        result = _run(
            _engine(store, FakeExtractor(), external_index=BrokenIndex()),
            ScanRoot.filesystem(str(music)),
        )

        assert result.added == 3
        assert store.get(str(music / "a.mp3")).external_id is None  # type: ignore[union-attr]

    def test_known_paths_scoped_to_root(self, store: CacheStore, tmp_path: Path):
        store.upsert_batch(
            [
                ScanRecord("/lib/music/a.mp3", "a.mp3", 1, 1, scan_timestamp_ms=1),
                ScanRecord("/lib/music2/b.mp3", "b.mp3", 1, 1, scan_timestamp_ms=1),
            ]
        )
        engine = _engine(store, FakeExtractor())

        assert engine.known_paths(ScanRoot.filesystem("/lib/music")) == {"/lib/music/a.mp3"}
