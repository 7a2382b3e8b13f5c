"""Tests for scan scheduling."""

import threading
from datetime import timedelta
from unittest.mock import Mock

import pytest

from tunescan.database import ScanOutcome
from tunescan.scanner import ScanCancelledError, ScanFailedError, ScanInProgressError
from tunescan.scheduler import (
    BATTERY_NOT_LOW,
    WORK_NAME_ONETIME,
    WORK_NAME_PERIODIC,
    Constraint,
    ScheduleController,
    ThreadingFacility,
)


class RecordingFacility:
    """Scheduling facility that only records what was asked of it."""

    def __init__(self):
        self.one_time = []
        self.periodic = {}

    def enqueue(self, name, job):
        self.one_time.append((name, job))

    def enqueue_unique_periodic(self, name, interval, constraints, job):
        if name in self.periodic:
            return False
        self.periodic[name] = (interval, tuple(constraints), job)
        return True

    def cancel_unique(self, name):
        return self.periodic.pop(name, None) is not None

    def is_scheduled(self, name):
        return name in self.periodic


class TestScheduleController:
    """Tests for ScheduleController triggers."""

    def test_trigger_now_enqueues_one_time_scan(self):
        orchestrator = Mock()
        facility = RecordingFacility()
        controller = ScheduleController(orchestrator, facility)

        controller.trigger_now()

        [(name, job)] = facility.one_time
        assert name == WORK_NAME_ONETIME
        job()
        orchestrator.scan_all.assert_called_once_with()

    def test_schedule_periodic_defaults(self):
        facility = RecordingFacility()
        controller = ScheduleController(Mock(), facility)

        assert controller.schedule_periodic()

        interval, constraints, _ = facility.periodic[WORK_NAME_PERIODIC]
        assert interval == timedelta(hours=6)
        assert constraints == (BATTERY_NOT_LOW,)
        assert controller.is_scheduled()

    def test_schedule_periodic_keeps_existing(self):
        facility = RecordingFacility()
        controller = ScheduleController(Mock(), facility)
        controller.schedule_periodic(timedelta(hours=1))

        assert not controller.schedule_periodic(timedelta(hours=2))

        interval, _, _ = facility.periodic[WORK_NAME_PERIODIC]
        assert interval == timedelta(hours=1)

    def test_cancel_periodic(self):
        facility = RecordingFacility()
        controller = ScheduleController(Mock(), facility)
        controller.schedule_periodic()

        assert controller.cancel_periodic()
        assert not controller.is_scheduled()
        assert not controller.cancel_periodic()

    @pytest.mark.parametrize(
        "error",
        [
            ScanInProgressError("busy"),
            ScanCancelledError("cancelled", ScanOutcome()),
            ScanFailedError("disk full"),
        ],
    )
    def test_triggered_scan_errors_are_contained(self, error):
        orchestrator = Mock()
        orchestrator.scan_all.side_effect = error
        facility = RecordingFacility()
        ScheduleController(orchestrator, facility).trigger_now()

        _, job = facility.one_time[0]
        job()

        orchestrator.scan_all.assert_called_once()


class TestThreadingFacility:
    """Tests for the thread-backed scheduling facility."""

    def test_enqueue_runs_job(self):
        facility = ThreadingFacility()
        ran = threading.Event()

        facility.enqueue("job", ran.set)
        facility.join(5)

        assert ran.is_set()

    def test_failing_job_is_logged_not_raised(self):
        facility = ThreadingFacility()

        def job():
            raise RuntimeError("boom")

        facility.enqueue("job", job)
        facility.join(5)

    def test_periodic_runs_immediately(self):
        facility = ThreadingFacility()
        ran = threading.Event()

        assert facility.enqueue_unique_periodic("tick", timedelta(hours=1), (), ran.set)
        try:
            assert ran.wait(5)
            assert facility.is_scheduled("tick")
        finally:
            facility.shutdown()

        assert not facility.is_scheduled("tick")

    def test_periodic_is_unique(self):
        facility = ThreadingFacility()
        try:
            assert facility.enqueue_unique_periodic("tick", timedelta(hours=1), (), lambda: None)
            assert not facility.enqueue_unique_periodic(
                "tick", timedelta(hours=1), (), lambda: None
            )
        finally:
            facility.shutdown()

    def test_periodic_repeats(self):
        facility = ThreadingFacility()
        count = 0
        done = threading.Event()

        def job():
            nonlocal count
            count += 1
            if count >= 3:
                done.set()

        facility.enqueue_unique_periodic("tick", timedelta(milliseconds=10), (), job)
        try:
            assert done.wait(5)
        finally:
            facility.cancel_unique("tick")

    def test_unmet_constraint_skips_run(self):
        facility = ThreadingFacility()
        checked = threading.Event()
        job = Mock()

        def battery_ok():
            checked.set()
            return False

        constraint = Constraint("battery_not_low", battery_ok)
        facility.enqueue_unique_periodic("tick", timedelta(hours=1), (constraint,), job)
        try:
            assert checked.wait(5)
        finally:
            facility.shutdown()

        job.assert_not_called()

    def test_cancel_unknown(self):
        assert not ThreadingFacility().cancel_unique("nothing")
