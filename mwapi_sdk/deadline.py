from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, wait
from typing import TypeVar

from .exceptions import RequestCancelled

_WAIT_POLL_SECONDS = 0.05

T = TypeVar("T")


class Deadline:
    """Caller-owned cancellation signal with an optional time limit.

    Pass one instance to any client call (and share it between threads if
    needed). ``cancel()`` abandons outstanding network I/O right away: the call
    raises ``RequestCancelled`` while the exchange finishes in the background.
    Expiry of ``timeout`` behaves the same way.
    """

    def __init__(self, timeout: float | None = None) -> None:
        if timeout is not None and timeout < 0:
            raise ValueError("timeout must be >= 0 when provided")
        self._expires_at = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set() or self.expired

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def check(self) -> None:
        if self._cancelled.is_set():
            raise RequestCancelled("request cancelled by caller")
        if self.expired:
            raise RequestCancelled("request deadline exceeded")

    def wait(self, event: threading.Event) -> None:
        """Block until ``event`` is set, raising if cancelled first."""
        while not event.wait(_WAIT_POLL_SECONDS):
            self.check()

    def result(self, future: Future[T]) -> T:
        """Wait for ``future``, raising if cancelled before it completes."""
        while not wait([future], _WAIT_POLL_SECONDS, return_when=FIRST_COMPLETED).done:
            self.check()
        return future.result()


def wait_for(event: threading.Event, deadline: Deadline | None) -> None:
    if deadline is None:
        event.wait()
        return
    deadline.wait(event)


def request_timeout(default_seconds: float, deadline: Deadline | None) -> float:
    if deadline is None:
        return default_seconds
    deadline.check()
    remaining = deadline.remaining()
    if remaining is None:
        return default_seconds
    return min(default_seconds, remaining)
