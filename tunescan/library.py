"""The caller-facing media library: scanning, state, search and scheduling."""

import logging
import threading
from collections.abc import Callable, Iterator
from datetime import timedelta
from typing import Self

from tunescan.config import Config
from tunescan.database import CacheStore, Database, ScanOutcome, ScanRecord
from tunescan.extractor import MetadataExtractor, MutagenExtractor
from tunescan.roots import RootRegistry
from tunescan.scanner import (
    DocumentTree,
    ExternalIndex,
    PathEnumerator,
    ReconciliationEngine,
    ScanOrchestrator,
    ScanStateStream,
)
from tunescan.scanner.events import CancellationToken, Subscription
from tunescan.scheduler import BATTERY_NOT_LOW, ScheduleController, SchedulingFacility

logger = logging.getLogger(__name__)

ResultsCallback = Callable[[list[ScanRecord]], None]


class LiveQuery:
    """Search results that refresh when the cache changes.

    Callbacks run on the thread that committed the change, so they should
    hand work off rather than do it inline.
    """

    def __init__(self, store: CacheStore, query: str) -> None:
        self.store = store
        self.query = query
        self._lock = threading.Lock()
        self._results: list[ScanRecord] | None = None
        self._callbacks: list[ResultsCallback] = []
        self._closed = False
        self.version = 0
        store.add_listener(self._on_change)

    def results(self) -> list[ScanRecord]:
        with self._lock:
            if self._results is None:
                self._results = self.store.search(self.query)
            return list(self._results)

    def subscribe(self, callback: ResultsCallback) -> Callable[[], None]:
        """Call ``callback`` with the current results now and after every change."""
        with self._lock:
            self._callbacks.append(callback)
        callback(self.results())

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def close(self) -> None:
        self._closed = True
        self.store.remove_listener(self._on_change)
        with self._lock:
            self._callbacks.clear()

    def _on_change(self) -> None:
        if self._closed:
            return
        with self._lock:
            self._results = None
            self.version += 1
            callbacks = list(self._callbacks)
        if callbacks:
            results = self.results()
            for callback in callbacks:
                callback(results)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class MediaLibrary:
    """Wires the cache, root registry, scanner and scheduler together."""

    def __init__(
        self,
        config: Config | None = None,
        extractor: MetadataExtractor | None = None,
        documents: DocumentTree | None = None,
        external_index: ExternalIndex | None = None,
        facility: SchedulingFacility | None = None,
    ) -> None:
        self.config = config or Config()
        scanner_config = self.config.scanner

        self.db = Database(self.config.database_path)
        self.store = CacheStore(self.db)
        self.registry = RootRegistry(self.db, self.config.default_roots)
        self.enumerator = PathEnumerator(documents, max_path_length=scanner_config.max_path_length)
        self.engine = ReconciliationEngine(
            self.store,
            extractor or MutagenExtractor(),
            self.enumerator,
            external_index=external_index,
            workers=scanner_config.extraction_workers,
            batch_size=scanner_config.write_batch_size,
        )
        self.orchestrator = ScanOrchestrator(
            self.store,
            self.registry,
            self.engine,
            retention_ms=scanner_config.retention_ms,
            stream=ScanStateStream(scanner_config.state_buffer_size),
        )
        self.scheduler = ScheduleController(
            self.orchestrator,
            facility,
            default_interval=timedelta(hours=scanner_config.scan_interval_hours),
        )

    def start(self) -> None:
        self.db.connect()
        self.orchestrator.start()

    def stop(self) -> None:
        self.scheduler.cancel_periodic()
        self.orchestrator.stop()
        self.db.close()

    def __enter__(self) -> Self:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    # -- scanning ------------------------------------------------------------

    def scan_all(
        self,
        cancel: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ScanOutcome:
        return self.orchestrator.scan_all(cancel=cancel, timeout=timeout)

    @property
    def scan_state(self) -> ScanStateStream:
        return self.orchestrator.stream

    def subscribe(self, buffer_size: int | None = None) -> Subscription:
        return self.orchestrator.subscribe(buffer_size)

    def cancel_scan(self) -> bool:
        return self.orchestrator.cancel()

    def scan_now(self) -> None:
        self.scheduler.trigger_now()

    def schedule_auto(self, interval: timedelta | None = None) -> bool:
        return self.scheduler.schedule_periodic(interval, constraints=(BATTERY_NOT_LOW,))

    def cancel_auto(self) -> bool:
        return self.scheduler.cancel_periodic()

    # -- cache queries -------------------------------------------------------

    def search(self, query: str) -> LiveQuery:
        return LiveQuery(self.store, query)

    def get(self, path: str) -> ScanRecord | None:
        return self.store.get(path)

    def get_all(self, valid_only: bool = True) -> Iterator[ScanRecord]:
        return self.store.get_all(valid_only)

    def cached_count(self) -> int:
        return self.store.valid_count()

    def clear_cache(self) -> None:
        self.store.clear_all()
