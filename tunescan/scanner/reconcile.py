"""Diffing enumerated files against the cache for one root."""

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Protocol

from tunescan.database.cache import CacheStore
from tunescan.database.models import (
    FileCandidate,
    ScanOutcome,
    ScanRecord,
    ScanRoot,
    TrackMetadata,
)
from tunescan.extractor.base import (
    ExtractionFailure,
    ExtractionResult,
    MetadataExtractor,
    safe_extract,
)
from tunescan.scanner.enumerator import PathEnumerator
from tunescan.scanner.events import CancellationToken

logger = logging.getLogger(__name__)


class ExternalIndex(Protocol):
    """System media index that records may link to by numeric id."""

    def lookup(self, canonical_path: str) -> int | None:
        """Numeric id of the file in the external index, if it has one."""


@dataclass
class ReconcileResult:
    """What a root's scan changes in the cache."""

    upserts: list[ScanRecord] = field(default_factory=list)
    removed_paths: list[str] = field(default_factory=list)
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    extraction_failures: int = 0
    cancelled: bool = False

    @property
    def outcome(self) -> ScanOutcome:
        return ScanOutcome(added=self.added, updated=self.updated, removed=len(self.removed_paths))


def needs_update(candidate: FileCandidate, existing: ScanRecord | None) -> bool:
    """Size/mtime change heuristic.

    A file rewritten with the same size and a same-or-older mtime counts as
    unchanged; no content hashing is done.
    """
    if existing is None:
        return True
    if candidate.last_modified_ms > existing.last_modified_ms:
        return True
    return candidate.size_bytes != existing.size_bytes


def now_ms() -> int:
    return int(time.time() * 1000)


class ReconciliationEngine:
    """Decides insert/update/skip per file and which cached files are gone.

    Tag extraction runs on a bounded thread pool; records are handed to the
    ``writer`` from the calling thread only, one batch at a time.
    """

    def __init__(
        self,
        store: CacheStore,
        extractor: MetadataExtractor,
        enumerator: PathEnumerator,
        external_index: ExternalIndex | None = None,
        workers: int = 4,
        batch_size: int = 200,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.extractor = extractor
        self.enumerator = enumerator
        self.external_index = external_index
        self.workers = max(1, workers)
        self.batch_size = max(1, batch_size)
        self.clock = clock

    def known_paths(self, root: ScanRoot) -> set[str]:
        """Valid cached paths that belong to ``root``."""
        return self.store.valid_paths_under(root.path_prefix)

    def reconcile(
        self,
        root: ScanRoot,
        candidates: Sequence[FileCandidate],
        known_paths: set[str],
        *,
        cancel: CancellationToken | None = None,
        on_file: Callable[[FileCandidate], None] | None = None,
        writer: Callable[[list[ScanRecord]], object] | None = None,
    ) -> ReconcileResult:
        result = ReconcileResult()

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="tag-extract") as pool:
            for start in range(0, len(candidates), self.batch_size):
                chunk = candidates[start : start + self.batch_size]
                batch = self._process_chunk(root, chunk, pool, result, cancel, on_file)
                if batch:
                    if writer is not None:
                        writer(batch)
                    result.upserts.extend(batch)
                if result.cancelled:
                    break

        if result.cancelled:
            logger.info("Reconciliation of %s cancelled; removals not computed", root.key)
            return result

        current = {c.canonical_path for c in candidates}
        result.removed_paths = sorted(known_paths - current)

        logger.info(
            "Reconciled %s: %d added, %d updated, %d unchanged, %d removed",
            root.key,
            result.added,
            result.updated,
            result.unchanged,
            len(result.removed_paths),
        )
        return result

    def _process_chunk(
        self,
        root: ScanRoot,
        chunk: Sequence[FileCandidate],
        pool: ThreadPoolExecutor,
        result: ReconcileResult,
        cancel: CancellationToken | None,
        on_file: Callable[[FileCandidate], None] | None,
    ) -> list[ScanRecord]:
        existing_by_path = self.store.get_many(c.canonical_path for c in chunk)
        batch: list[ScanRecord] = []
        pending: list[tuple[FileCandidate, ScanRecord | None, Future[ExtractionResult]]] = []

        for candidate in chunk:
            if cancel is not None and cancel.cancelled:
                result.cancelled = True
                break

            existing = existing_by_path.get(candidate.canonical_path)
            if not needs_update(candidate, existing):
                result.unchanged += 1
                backfilled = self._backfill_external_id(existing)
                if backfilled is not None:
                    batch.append(backfilled)
                if on_file:
                    on_file(candidate)
                continue

            pending.append((candidate, existing, pool.submit(self._extract, root, candidate)))

        for candidate, existing, future in pending:
            if cancel is not None and cancel.cancelled:
                result.cancelled = True
            # Extractions already running finish and are kept; queued ones are dropped
            if result.cancelled and future.cancel():
                continue
            batch.append(self._build_record(candidate, existing, future.result(), result))
            if existing is None:
                result.added += 1
            else:
                result.updated += 1
            if on_file:
                on_file(candidate)

        return batch

    def _extract(self, root: ScanRoot, candidate: FileCandidate) -> ExtractionResult:
        try:
            handle = self.enumerator.file_handle(root, candidate)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("Cannot open %s: %s", candidate.canonical_path, e)
            return ExtractionFailure(candidate.canonical_path, f"{type(e).__name__}: {e}")
        return safe_extract(self.extractor, handle)

    def _build_record(
        self,
        candidate: FileCandidate,
        existing: ScanRecord | None,
        extracted: ExtractionResult,
        result: ReconcileResult,
    ) -> ScanRecord:
        metadata: TrackMetadata | None
        if isinstance(extracted, ExtractionFailure):
            logger.warning(
                "Caching %s without tags: %s", candidate.canonical_path, extracted.reason
            )
            result.extraction_failures += 1
            metadata = None
        else:
            metadata = extracted

        external_id = existing.external_id if existing is not None else None
        if external_id is None:
            external_id = self._lookup_external_id(candidate.canonical_path)

        return ScanRecord.from_candidate(candidate, metadata, self.clock(), external_id)

    def _backfill_external_id(self, existing: ScanRecord | None) -> ScanRecord | None:
        if existing is None or existing.external_id is not None or self.external_index is None:
            return None
        external_id = self._lookup_external_id(existing.canonical_path)
        if external_id is None:
            return None
        return replace(existing, external_id=external_id)

    def _lookup_external_id(self, canonical_path: str) -> int | None:
        if self.external_index is None:
            return None
        try:
            return self.external_index.lookup(canonical_path)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.debug("External index lookup failed for %s: %s", canonical_path, e)
            return None
