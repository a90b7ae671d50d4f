import logging
import os
import sqlite3
import threading
from dataclasses import dataclass

from .activity import ActivityLog
from .config import normalize_poster_config
from .fetch_service import PosterFetchService
from .file_store import PosterFileStore
from .job_queue import PosterFetchQueue
from .match_cache import PosterMatchCache, ensure_poster_matches_table
from .paths import ensure_dir
from .providers.registry import build_provider_set
from .release_store import ReleaseStore, ensure_releases_table
from .retro_log import RetroFetchLogService
from .worker import PosterFetchWorker


@dataclass
class PosterRuntime:
    paths: object
    config: dict
    releases: ReleaseStore
    match_cache: PosterMatchCache
    file_store: PosterFileStore
    retro_log: RetroFetchLogService
    service: PosterFetchService
    queue: PosterFetchQueue
    worker: PosterFetchWorker
    stop_event: threading.Event

    def start(self):
        if not self.worker.is_alive():
            self.worker.start()

    def stop(self, timeout=10):
        self.worker.stop()
        if self.worker.is_alive():
            self.worker.join(timeout)
            if self.worker.is_alive():
                logging.warning("Poster fetch worker did not stop within %ss", timeout)


def init_db(db_path):
    ensure_dir(os.path.dirname(os.path.abspath(db_path)))
    with sqlite3.connect(db_path) as conn:
        ensure_releases_table(conn)
        ensure_poster_matches_table(conn)


def build_runtime(paths, config=None, *, providers=None, session=None, queue_capacity=2000):
    """Wire stores, providers, the fetch service, queue and worker for one process."""
    config = normalize_poster_config(config or {})
    init_db(paths.db_path)
    ensure_dir(paths.posters_dir)
    releases = ReleaseStore(paths.db_path)
    match_cache = PosterMatchCache(paths.db_path)
    file_store = PosterFileStore(paths.posters_dir)
    retro_log = RetroFetchLogService(paths.retro_log_dir)
    service = PosterFetchService(
        releases=releases,
        match_cache=match_cache,
        file_store=file_store,
        providers=providers or build_provider_set(config, session=session),
        activity=ActivityLog(),
    )
    queue = PosterFetchQueue(queue_capacity)
    stop_event = threading.Event()
    worker = PosterFetchWorker(
        queue,
        service,
        releases,
        retro_log,
        file_store=file_store,
        stop_event=stop_event,
    )
    return PosterRuntime(
        paths=paths,
        config=config,
        releases=releases,
        match_cache=match_cache,
        file_store=file_store,
        retro_log=retro_log,
        service=service,
        queue=queue,
        worker=worker,
        stop_event=stop_event,
    )
