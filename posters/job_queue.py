import logging
import threading
from collections import deque
from dataclasses import dataclass

_DEFAULT_CAPACITY = 2000
_DEFAULT_POLL_INTERVAL_SECONDS = 1.0


@dataclass(frozen=True)
class FetchJob:
    item_id: int
    title: str
    year: int | None = None
    category: str | None = None
    force_refresh: bool = False
    attempt_count: int = 0
    entity_id: int | None = None
    retro_log_file: str | None = None


def build_fetch_job(release, *, force_refresh=False, retro_log_file=None):
    return FetchJob(
        item_id=release.id,
        title=release.title_clean or release.title or "",
        year=release.year,
        category=release.unified_category,
        force_refresh=force_refresh,
        attempt_count=0,
        entity_id=release.entity_id,
        retro_log_file=retro_log_file,
    )


class PosterFetchQueue:
    """Single-consumer FIFO of fetch jobs, deduplicated by item id and bounded."""

    def __init__(self, capacity=_DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._items = deque()
        self._pending_ids = set()
        self._cond = threading.Condition()

    @property
    def capacity(self):
        return self._capacity

    @property
    def count(self):
        with self._cond:
            return len(self._items)

    def __len__(self):
        return self.count

    def enqueue(self, job):
        if job is None or not job.item_id or job.item_id <= 0:
            return False
        with self._cond:
            if job.item_id in self._pending_ids:
                return True
            if len(self._items) >= self._capacity:
                logging.warning(
                    "Poster fetch queue full (%s); rejected item %s",
                    self._capacity,
                    job.item_id,
                )
                return False
            self._items.append(job)
            self._pending_ids.add(job.item_id)
            self._cond.notify()
            return True

    def dequeue(self, stop_event, poll_interval_seconds=_DEFAULT_POLL_INTERVAL_SECONDS):
        """Block until a job is available; returns None once stop_event is set."""
        with self._cond:
            while not self._items:
                if stop_event.is_set():
                    return None
                self._cond.wait(poll_interval_seconds)
            if stop_event.is_set():
                return None
            job = self._items.popleft()
            self._pending_ids.discard(job.item_id)
            return job

    def clear_pending(self):
        with self._cond:
            cleared = len(self._items)
            self._items.clear()
            self._pending_ids.clear()
        if cleared:
            logging.info("Poster fetch queue cleared (%s pending)", cleared)
        return cleared

    def wake(self):
        with self._cond:
            self._cond.notify_all()
