import threading
import time


class FetchCancelled(Exception):
    pass


class FetchTimeout(Exception):
    pass


class CancelToken:
    """Shutdown event combined with an optional per-attempt deadline.

    Shutdown wins over the deadline, so a long timeout never masks a stop request.
    """

    def __init__(self, stop_event=None, timeout_seconds=None, *, clock=None):
        self._stop_event = stop_event or threading.Event()
        self._clock = clock or time.monotonic
        self._deadline = None
        if timeout_seconds is not None:
            self._deadline = self._clock() + float(timeout_seconds)

    @property
    def stop_event(self):
        return self._stop_event

    def linked(self, timeout_seconds):
        return CancelToken(self._stop_event, timeout_seconds, clock=self._clock)

    def is_stopped(self):
        return self._stop_event.is_set()

    def is_expired(self):
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self, default=None):
        if self._deadline is None:
            return default
        left = max(0.0, self._deadline - self._clock())
        return left if default is None else min(left, default)

    def check(self):
        if self.is_stopped():
            raise FetchCancelled("shutdown requested")
        if self.is_expired():
            raise FetchTimeout("timeout")

    def wait(self, seconds):
        """Sleep up to seconds; returns True when shutdown fired meanwhile."""
        if seconds <= 0:
            return self._stop_event.is_set()
        return self._stop_event.wait(seconds)
