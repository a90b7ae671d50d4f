import enum
import json
import logging
import random
import threading
import time
from dataclasses import dataclass

from . import score_policy as policy
from .cancel import CancelToken, FetchCancelled, FetchTimeout
from .categories import parse_category, to_media_type
from .job_queue import build_fetch_job
from .retro_log import RetroFetchLogEntry

MAX_ATTEMPTS = policy.MAX_ATTEMPTS
REQUEST_TIMEOUT_SECONDS = 60
REFRESH_TTL_SECONDS = 30 * 24 * 60 * 60
MIN_INTERVAL_SECONDS = 0.25
MAX_ITEM_DURATION_SECONDS = 60
RETRY_DELAYS_SECONDS = policy.RETRY_DELAYS_SECONDS
_MAX_REASON_LENGTH = 200


class AttemptState(enum.Enum):
    ATTEMPT = "attempt"
    SUCCESS = "success"
    RETRY = "retry"
    TERMINAL_FAILURE = "terminal_failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class JobOutcome:
    item_id: int
    status: str
    attempts: int = 0
    reason: str | None = None


def _log_event(level, payload):
    message = json.dumps(payload, sort_keys=True, default=str)
    getattr(logging, level)(message)


def format_exception_reason(exc):
    return f"exception: {type(exc).__name__}: {exc}"[:_MAX_REASON_LENGTH]


def build_retro_entry(release, job, reason):
    category = release.category_name or release.unified_category or "unknown"
    media_type = release.media_type or to_media_type(parse_category(release.unified_category)) or "unknown"
    title = job.title or release.title_clean or release.title or ""
    year = release.year if release.year is not None else job.year
    query = f"{title} ({year})" if year else title
    return RetroFetchLogEntry(
        category=category,
        media_type=media_type,
        provider=release.poster_provider,
        query=query,
        reason=reason or release.poster_last_error or "unknown",
    )


class PosterFetchWorker(threading.Thread):
    """Single consumer of the poster fetch queue.

    Each job runs through a small retry state machine: up to MAX_ATTEMPTS
    attempts, each bounded by REQUEST_TIMEOUT_SECONDS, the whole job bounded by
    MAX_ITEM_DURATION_SECONDS, with a global minimum interval between attempts.
    """

    def __init__(
        self,
        queue,
        service,
        releases,
        retro_log=None,
        *,
        file_store=None,
        stop_event=None,
        clock=None,
        now=None,
        wait=None,
        rng=None,
    ):
        super().__init__(daemon=True, name="poster-fetch-worker")
        self.queue = queue
        self.service = service
        self.releases = releases
        self.retro_log = retro_log
        self.file_store = file_store or service.file_store
        self.stop_event = stop_event or threading.Event()
        self._clock = clock or time.monotonic
        self._now = now or time.time
        self._wait = wait or self.stop_event.wait
        self._rng = rng or random.Random()
        self._interval_lock = threading.Lock()
        self._last_attempt_started = None

    def stop(self):
        self.stop_event.set()
        self.queue.wake()

    def run(self):
        logging.info("Poster fetch worker started")
        while not self.stop_event.is_set():
            job = self.queue.dequeue(self.stop_event)
            if job is None:
                continue
            try:
                outcome = self.process_job(job)
            except Exception:
                logging.exception("Poster fetch worker failed for item %s", job.item_id)
                continue
            _log_event(
                "info" if outcome.status != "failed" else "warning",
                {
                    "event": "poster_job_finished",
                    "item_id": outcome.item_id,
                    "status": outcome.status,
                    "attempts": outcome.attempts,
                    "reason": outcome.reason,
                },
            )
        logging.info("Poster fetch worker stopped")

    def process_job(self, job):
        release = self.releases.get_for_poster(job.item_id)
        if release is None:
            logging.warning("Poster job skipped: release %s not found", job.item_id)
            return JobOutcome(job.item_id, "skipped", 0, "release not found")
        if not job.force_refresh and self._is_fresh(release):
            logging.debug("Poster job skipped: release %s refreshed recently", job.item_id)
            return JobOutcome(job.item_id, "skipped", 0, "fresh")

        started = self._clock()
        attempt = job.attempt_count
        state = AttemptState.ATTEMPT
        reason = None
        while state is AttemptState.ATTEMPT:
            attempt += 1
            state, reason = self._run_attempt(job, attempt)
            if state is AttemptState.RETRY:
                state, reason = self._next_after_retry(job, attempt, started, reason)

        if state is AttemptState.SUCCESS:
            return JobOutcome(job.item_id, "success", attempt)
        if state is AttemptState.CANCELLED:
            return JobOutcome(job.item_id, "cancelled", attempt, "cancelled")
        self._append_retro_row(job, reason)
        return JobOutcome(job.item_id, "failed", attempt, reason)

    def _is_fresh(self, release):
        if not release.poster_file or not release.poster_last_attempt_ts:
            return False
        if not self.file_store.exists(release.poster_file):
            return False
        return self._now() - release.poster_last_attempt_ts < REFRESH_TTL_SECONDS

    def _throttle(self):
        with self._interval_lock:
            if self._last_attempt_started is not None:
                delay = MIN_INTERVAL_SECONDS - (self._clock() - self._last_attempt_started)
                if delay > 0:
                    self._wait(delay)
            self._last_attempt_started = self._clock()

    def _audit_failure(self, item_id, reason):
        self.releases.update_poster_attempt_failure(item_id, None, None, None, None, reason)

    def _run_attempt(self, job, attempt):
        self._throttle()
        if self.stop_event.is_set():
            return AttemptState.CANCELLED, None
        token = CancelToken(self.stop_event, REQUEST_TIMEOUT_SECONDS, clock=self._clock)
        try:
            result = self.service.fetch_poster(
                job.item_id,
                cancel=token,
                log_single=False,
                skip_if_exists=not job.force_refresh,
            )
        except FetchCancelled:
            return AttemptState.CANCELLED, None
        except FetchTimeout:
            self._audit_failure(job.item_id, "timeout")
            return AttemptState.RETRY, "timeout"
        except Exception as exc:
            if token.is_stopped():
                return AttemptState.CANCELLED, None
            if token.is_expired():
                self._audit_failure(job.item_id, "timeout")
                return AttemptState.RETRY, "timeout"
            reason = format_exception_reason(exc)
            logging.warning("Poster fetch attempt %s for item %s raised: %s", attempt, job.item_id, reason)
            self._audit_failure(job.item_id, reason)
            return AttemptState.RETRY, reason

        if result.ok:
            return AttemptState.SUCCESS, None
        if policy.should_retry(result.status_code):
            return AttemptState.RETRY, result.error
        return AttemptState.TERMINAL_FAILURE, result.error

    def _next_after_retry(self, job, attempt, started, reason):
        if attempt >= MAX_ATTEMPTS:
            return AttemptState.TERMINAL_FAILURE, reason
        if self._clock() - started >= MAX_ITEM_DURATION_SECONDS:
            self._audit_failure(job.item_id, "time budget exceeded")
            return AttemptState.TERMINAL_FAILURE, "time budget exceeded"
        jitter_ms = self._rng.randint(*policy.JITTER_MS_RANGE)
        delay = policy.backoff_delay(attempt, jitter_ms)
        logging.info("Poster fetch retry %s/%s for item %s in %.2fs", attempt + 1, MAX_ATTEMPTS, job.item_id, delay)
        if self._wait(delay) or self.stop_event.is_set():
            return AttemptState.CANCELLED, reason
        return AttemptState.ATTEMPT, reason

    def _append_retro_row(self, job, reason):
        if not job.retro_log_file or self.retro_log is None:
            return
        release = self.releases.get_for_poster(job.item_id)
        if release is None:
            return
        self.retro_log.append_failure(job.retro_log_file, build_retro_entry(release, job, reason))


def enqueue_releases(queue, releases, release_ids, *, force_refresh=False, retro_log_file=None):
    """Queue fetch jobs for the given release ids; returns (queued, rejected)."""
    queued = 0
    rejected = 0
    for release_id in release_ids:
        release = releases.get_for_poster(release_id)
        if release is None:
            rejected += 1
            continue
        job = build_fetch_job(release, force_refresh=force_refresh, retro_log_file=retro_log_file)
        if queue.enqueue(job):
            queued += 1
        else:
            rejected += 1
    return queued, rejected


def start_retro_fetch(queue, releases, retro_log, limit=None):
    log_file = retro_log.create_log()
    ids = releases.list_ids_missing_posters(limit)
    queued, rejected = enqueue_releases(queue, releases, ids, retro_log_file=log_file)
    logging.info("Retro fetch started: %s queued, %s rejected, log %s", queued, rejected, log_file)
    return {"logFile": log_file, "total": len(ids), "queued": queued, "rejected": rejected}
