"""Manual and periodic scan triggers."""

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Protocol

from tunescan.scanner.orchestrator import (
    ScanCancelledError,
    ScanError,
    ScanInProgressError,
    ScanOrchestrator,
)

logger = logging.getLogger(__name__)

WORK_NAME_PERIODIC = "media_scanner_periodic"
WORK_NAME_ONETIME = "media_scanner_onetime"


@dataclass(frozen=True)
class Constraint:
    """A condition the scheduling facility should honor before running a job.

    The scanner never interprets constraints; ``check`` is only a hint for
    facilities that can evaluate the condition in-process.
    """

    name: str
    check: Callable[[], bool] | None = field(default=None, compare=False)


BATTERY_NOT_LOW = Constraint("battery_not_low")

Job = Callable[[], None]


class SchedulingFacility(Protocol):
    """Best-effort job runner; no timing guarantees beyond eventual execution."""

    def enqueue(self, name: str, job: Job) -> None:
        """Run ``job`` once, soon."""

    def enqueue_unique_periodic(
        self,
        name: str,
        interval: timedelta,
        constraints: Sequence[Constraint],
        job: Job,
    ) -> bool:
        """Schedule ``job`` every ``interval``; keep an existing schedule of the same name.

        Returns True when a new schedule was created.
        """

    def cancel_unique(self, name: str) -> bool:
        """Cancel the named schedule; False if there was none."""

    def is_scheduled(self, name: str) -> bool:
        """Whether a schedule with this name is active."""


class _PeriodicJob:
    def __init__(
        self,
        name: str,
        interval: timedelta,
        constraints: Sequence[Constraint],
        job: Job,
    ) -> None:
        self.name = name
        self.interval = interval
        self.constraints = tuple(constraints)
        self.job = job
        self.stopped = threading.Event()
        self.thread = threading.Thread(target=self._loop, name=f"periodic-{name}", daemon=True)

    def _loop(self) -> None:
        while not self.stopped.is_set():
            if self._constraints_met():
                _run_job(self.name, self.job)
            self.stopped.wait(self.interval.total_seconds())

    def _constraints_met(self) -> bool:
        for constraint in self.constraints:
            if constraint.check is None:
                continue
            try:
                met = constraint.check()
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.warning("Constraint %s could not be evaluated: %s", constraint.name, e)
                met = False
            if not met:
                logger.info("Skipping %s run: constraint %s not met", self.name, constraint.name)
                return False
        return True


def _run_job(name: str, job: Job) -> None:
    try:
        job()
    except Exception:  # pylint: disable=broad-exception-caught
        logger.exception("Scheduled job %s failed", name)


class ThreadingFacility:
    """Runs jobs on daemon threads; periodic jobs run right away, then every interval."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._periodic: dict[str, _PeriodicJob] = {}
        self._one_time: list[threading.Thread] = []

    def enqueue(self, name: str, job: Job) -> None:
        thread = threading.Thread(target=_run_job, args=(name, job), name=name, daemon=True)
        with self._lock:
            self._one_time = [t for t in self._one_time if t.is_alive()]
            self._one_time.append(thread)
        thread.start()

    def enqueue_unique_periodic(
        self,
        name: str,
        interval: timedelta,
        constraints: Sequence[Constraint],
        job: Job,
    ) -> bool:
        with self._lock:
            existing = self._periodic.get(name)
            if existing is not None and not existing.stopped.is_set():
                return False
            periodic = _PeriodicJob(name, interval, constraints, job)
            self._periodic[name] = periodic
        periodic.thread.start()
        return True

    def cancel_unique(self, name: str) -> bool:
        with self._lock:
            periodic = self._periodic.pop(name, None)
        if periodic is None:
            return False
        periodic.stopped.set()
        return True

    def is_scheduled(self, name: str) -> bool:
        with self._lock:
            periodic = self._periodic.get(name)
            return periodic is not None and not periodic.stopped.is_set()

    def join(self, timeout: float | None = None) -> None:
        """Wait for one-time jobs started so far."""
        with self._lock:
            threads = list(self._one_time)
        for thread in threads:
            thread.join(timeout)

    def shutdown(self) -> None:
        with self._lock:
            names = list(self._periodic)
        for name in names:
            self.cancel_unique(name)


class ScheduleController:
    """Caller-facing triggers that hand scan runs to a scheduling facility."""

    def __init__(
        self,
        orchestrator: ScanOrchestrator,
        facility: SchedulingFacility | None = None,
        default_interval: timedelta = timedelta(hours=6),
    ) -> None:
        self.orchestrator = orchestrator
        self.facility = facility or ThreadingFacility()
        self.default_interval = default_interval

    def trigger_now(self) -> None:
        """Fire-and-forget single run."""
        self.facility.enqueue(WORK_NAME_ONETIME, self._run_scan)
        logger.debug("One-time scan requested")

    def schedule_periodic(
        self,
        interval: timedelta | None = None,
        constraints: Sequence[Constraint] = (BATTERY_NOT_LOW,),
    ) -> bool:
        created = self.facility.enqueue_unique_periodic(
            WORK_NAME_PERIODIC,
            interval or self.default_interval,
            constraints,
            self._run_scan,
        )
        if created:
            logger.debug("Periodic scan scheduled every %s", interval or self.default_interval)
        else:
            logger.debug("Periodic scan already scheduled, keeping existing schedule")
        return created

    def cancel_periodic(self) -> bool:
        cancelled = self.facility.cancel_unique(WORK_NAME_PERIODIC)
        if cancelled:
            logger.debug("Periodic scan cancelled")
        return cancelled

    def is_scheduled(self) -> bool:
        return self.facility.is_scheduled(WORK_NAME_PERIODIC)

    def _run_scan(self) -> None:
        try:
            self.orchestrator.scan_all()
        except ScanInProgressError:
            logger.info("Scan already running, skipping triggered run")
        except ScanCancelledError as e:
            logger.info("Triggered scan cancelled: %s", e.reason)
        except ScanError as e:
            logger.error("Triggered scan failed: %s", e)
