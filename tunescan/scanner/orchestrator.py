"""Runs a full library scan across every enabled root."""

import logging
import threading
import time
from collections.abc import Callable

from tunescan.database.cache import CacheStore
from tunescan.database.connection import CacheStoreError
from tunescan.database.models import FileCandidate, ScanOutcome, ScanRoot
from tunescan.roots import RootRegistry
from tunescan.scanner.events import (
    Cancelled,
    CancellationToken,
    Complete,
    Error,
    Idle,
    Progress,
    Scanning,
    ScanState,
    ScanStateStream,
    Subscription,
)
from tunescan.scanner.reconcile import ReconciliationEngine, now_ms

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_MS = 7 * 24 * 60 * 60 * 1000


class ScanError(Exception):
    """Base class for scan run failures."""


class ScanInProgressError(ScanError):
    """Raised when a scan is triggered while another one is running."""


class ScanCancelledError(ScanError):
    """Raised when a run stops early on cancellation or deadline."""

    def __init__(self, reason: str, outcome: ScanOutcome) -> None:
        super().__init__(reason)
        self.reason = reason
        self.outcome = outcome


class ScanFailedError(ScanError):
    """Raised when the cache store fails and the run cannot continue."""


class ScanOrchestrator:
    """Drives reconciliation root by root and publishes scan states.

    Only one run is in flight at a time; a trigger during a run is rejected
    with :class:`ScanInProgressError`. The instance has an explicit
    lifecycle: :meth:`start` before scanning, :meth:`stop` to cancel any
    running scan and close the state stream.
    """

    def __init__(
        self,
        store: CacheStore,
        registry: RootRegistry,
        engine: ReconciliationEngine,
        retention_ms: int = DEFAULT_RETENTION_MS,
        stream: ScanStateStream | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.registry = registry
        self.engine = engine
        self.enumerator = engine.enumerator
        self.retention_ms = retention_ms
        self.stream = stream or ScanStateStream()
        self.clock = clock
        self._run_lock = threading.Lock()
        self._token: CancellationToken | None = None
        self._started = False

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        self._started = True
        self.stream.publish(Idle())
        logger.debug("Scan orchestrator started")

    def stop(self, timeout: float | None = 30.0) -> None:
        """Cancel a running scan, wait for it to wind down, close the stream."""
        self._started = False
        self.cancel()
        acquired = self._run_lock.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._run_lock.release()
        else:
            logger.warning("Scan did not stop within %.1fs", timeout)
        self.stream.close()
        logger.debug("Scan orchestrator stopped")

    @property
    def started(self) -> bool:
        return self._started

    @property
    def is_scanning(self) -> bool:
        return self._run_lock.locked()

    @property
    def state(self) -> ScanState:
        return self.stream.value

    def subscribe(self, buffer_size: int | None = None) -> Subscription:
        return self.stream.subscribe(buffer_size)

    def cancel(self) -> bool:
        """Request the running scan to stop. Returns False when idle."""
        token = self._token
        if token is None:
            return False
        token.cancel()
        return True

    # -- scanning ------------------------------------------------------------

    def scan_all(
        self,
        cancel: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ScanOutcome:
        """Scan every enabled root and return the aggregate outcome.

        ``timeout`` (seconds) is a cooperative deadline checked between files.
        """
        if not self._started:
            raise ScanError("Scan orchestrator is not started")
        if not self._run_lock.acquire(blocking=False):
            raise ScanInProgressError("A scan is already running")

        token = cancel or CancellationToken()
        if timeout is not None:
            deadline = time.monotonic() + timeout
            token.deadline = deadline if token.deadline is None else min(token.deadline, deadline)
        self._token = token

        try:
            self.stream.publish(Scanning())
            started = time.monotonic()
            try:
                outcome = self._run(token)
            except ScanCancelledError as e:
                logger.info(
                    "Scan cancelled (%s) after %d added, %d updated",
                    e.reason,
                    e.outcome.added,
                    e.outcome.updated,
                )
                self.stream.publish(Cancelled(e.outcome.added, e.outcome.updated, e.reason))
                self._prune()
                raise
            except CacheStoreError as e:
                logger.error("Scan failed: %s", e)
                self.stream.publish(Error(str(e)))
                self._prune()
                raise ScanFailedError(str(e)) from e
            except Exception as e:
                logger.exception("Scan failed unexpectedly")
                reason = f"{type(e).__name__}: {e}"
                self.stream.publish(Error(reason))
                self._prune()
                raise ScanFailedError(reason) from e

            logger.info(
                "Scan complete in %.1fs: %d added, %d updated, %d removed",
                time.monotonic() - started,
                outcome.added,
                outcome.updated,
                outcome.removed,
            )
            self.stream.publish(Complete(outcome.added, outcome.updated, outcome.removed))
            self._prune()
            return outcome
        finally:
            self._token = None
            self.stream.publish(Idle())
            self._run_lock.release()

    def _run(self, token: CancellationToken) -> ScanOutcome:
        outcome = ScanOutcome()
        planned = [
            (root, self._enumerate(root, token, outcome))
            for root in self.registry.enabled_roots()
        ]

        total = sum(len(candidates) for _, candidates in planned)
        current = 0

        def on_file(candidate: FileCandidate) -> None:
            nonlocal current
            current += 1
            self.stream.publish(Progress(current, total, candidate.display_name))

        for root, candidates in planned:
            known_paths = self.engine.known_paths(root)
            result = self.engine.reconcile(
                root,
                candidates,
                known_paths,
                cancel=token,
                on_file=on_file,
                writer=self.store.upsert_batch,
            )
            outcome.added += result.added
            outcome.updated += result.updated
            if result.cancelled:
                raise ScanCancelledError(token.reason, outcome)
            if result.removed_paths:
                self.store.invalidate_batch(result.removed_paths)
                outcome.removed += len(result.removed_paths)

        return outcome

    def _enumerate(
        self,
        root: ScanRoot,
        token: CancellationToken,
        outcome: ScanOutcome,
    ) -> list[FileCandidate]:
        """Candidates of ``root``; an unreadable root has none."""
        candidates: list[FileCandidate] = []
        try:
            if not self.enumerator.can_read(root):
                logger.warning("Root %s is not readable, treating it as empty", root.key)
                return candidates
            for candidate in self.enumerator.enumerate(root):
                if token.cancelled:
                    raise ScanCancelledError(token.reason, outcome)
                candidates.append(candidate)
        except ScanCancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Enumeration of %s failed, treating it as empty: %s", root.key, e)
            return []

        logger.info("Found %d audio files under %s", len(candidates), root.key)
        return candidates

    def _prune(self) -> None:
        cutoff = self.clock() - self.retention_ms
        try:
            self.store.purge_invalid(cutoff)
        except CacheStoreError as e:
            logger.error("Cache pruning failed: %s", e)
