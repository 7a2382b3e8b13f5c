"""Scan states, the broadcast stream that carries them, and cancellation."""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    """No scan is running."""


@dataclass(frozen=True)
class Scanning:
    """A scan was triggered and is enumerating roots."""


@dataclass(frozen=True)
class Progress:
    current: int
    total: int
    file_name: str


@dataclass(frozen=True)
class Complete:
    added: int
    updated: int
    removed: int


@dataclass(frozen=True)
class Error:
    reason: str


@dataclass(frozen=True)
class Cancelled:
    """The run stopped early; batches written before the stop are kept."""

    added: int
    updated: int
    reason: str = "cancelled"


ScanState = Idle | Scanning | Progress | Complete | Error | Cancelled

TERMINAL_STATES = (Complete, Error, Cancelled)


class Subscription:
    """One observer's view of a :class:`ScanStateStream`.

    Events are buffered in a bounded deque; when the observer falls behind,
    the oldest events are dropped so the publisher never blocks.
    """

    def __init__(self, stream: "ScanStateStream", maxlen: int) -> None:
        self._stream = stream
        self._events: deque[ScanState] = deque(maxlen=maxlen)
        self._cond = threading.Condition()
        self._closed = False
        self.dropped = 0

    def _push(self, state: ScanState) -> None:
        with self._cond:
            if self._closed:
                return
            if len(self._events) == self._events.maxlen:
                self.dropped += 1
            self._events.append(state)
            self._cond.notify_all()

    def get(self, timeout: float | None = None) -> ScanState | None:
        """Next event, or None on timeout or once closed and drained."""
        with self._cond:
            if not self._events and not self._closed:
                self._cond.wait(timeout)
            if self._events:
                return self._events.popleft()
            return None

    def drain(self) -> list[ScanState]:
        with self._cond:
            events = list(self._events)
            self._events.clear()
            return events

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        self._stream.unsubscribe(self)

    def __iter__(self):
        while True:
            state = self.get()
            if state is None:
                if self._closed:
                    return
                continue
            yield state

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class ScanStateStream:
    """Broadcasts scan states to any number of subscribers.

    New subscribers first receive the current state, so a late observer still
    learns whether a scan is running.
    """

    def __init__(self, buffer_size: int = 256) -> None:
        self.buffer_size = buffer_size
        self._lock = threading.Lock()
        self._subscribers: list[Subscription] = []
        self._value: ScanState = Idle()

    @property
    def value(self) -> ScanState:
        return self._value

    def subscribe(self, buffer_size: int | None = None) -> Subscription:
        subscription = Subscription(self, buffer_size or self.buffer_size)
        with self._lock:
            subscription._push(self._value)  # pylint: disable=protected-access
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def publish(self, state: ScanState) -> None:
        with self._lock:
            self._value = state
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription._push(state)  # pylint: disable=protected-access

    def close(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription.close()


class CancellationToken:
    """Cooperative stop signal, checked between files.

    An optional deadline (``time.monotonic()`` seconds) behaves like a
    cancel request that fires on its own.
    """

    def __init__(self, deadline: float | None = None) -> None:
        self._event = threading.Event()
        self.deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.deadline_passed

    @property
    def deadline_passed(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def reason(self) -> str:
        if self.deadline_passed and not self._event.is_set():
            return "deadline exceeded"
        return "cancelled"
