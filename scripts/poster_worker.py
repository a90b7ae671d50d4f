#!/usr/bin/env python3
"""
Poster resolver command line.
- Fetch posters synchronously for given release ids (--fetch).
- Queue every release missing a poster with a fresh retro-fetch CSV log (--retro).
- Run the background worker until interrupted (--serve).
"""

import os
import sys

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

import argparse
import json
import logging
import signal

from posters.cancel import CancelToken, FetchCancelled, FetchTimeout
from posters.config import load_config, validate_config
from posters.fetch_service import FetchResult
from posters.paths import CONFIG_DIR, DATA_DIR, LOG_DIR, build_resolver_paths, ensure_dir, resolve_config_path
from posters.runtime import build_runtime
from posters.worker import REQUEST_TIMEOUT_SECONDS, enqueue_releases, start_retro_fetch


def _setup_logging(log_dir):
    ensure_dir(log_dir)
    logging.basicConfig(
        filename=os.path.join(log_dir, "posters.log"),
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    console.setLevel(logging.INFO)
    logging.getLogger("").addHandler(console)


def _load_config(config_arg):
    config_path = resolve_config_path(config_arg)
    if not os.path.exists(config_path):
        if config_arg:
            raise FileNotFoundError(config_path)
        logging.info("No config at %s; using defaults and environment", config_path)
        return {}
    config = load_config(config_path)
    errors = validate_config(config)
    if errors:
        raise ValueError("; ".join(errors))
    return config


def _drain(runtime):
    """Process queued jobs in the calling thread until the queue is empty or a stop is requested."""
    outcomes = []
    while runtime.queue.count and not runtime.stop_event.is_set():
        job = runtime.queue.dequeue(runtime.stop_event, poll_interval_seconds=0.1)
        if job is None:
            break
        try:
            outcomes.append(runtime.worker.process_job(job))
        except Exception:
            logging.exception("Poster job failed for item %s", job.item_id)
    return outcomes


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", default=None)
    parser.add_argument("--fetch", type=int, nargs="+", metavar="ID", help="Fetch posters synchronously and print the results.")
    parser.add_argument("--enqueue", type=int, nargs="+", metavar="ID", help="Queue release ids and process them.")
    parser.add_argument("--refresh", action="store_true", help="Force a refresh of queued ids, ignoring the TTL.")
    parser.add_argument("--retro", action="store_true", help="Queue every release missing a poster with a retro-fetch log.")
    parser.add_argument("--limit", type=int, default=None, help="Cap the number of releases queued by --retro.")
    parser.add_argument("--serve", action="store_true", help="Run the background worker until interrupted.")
    parser.add_argument("--clear-cache", action="store_true", help="Delete local posters and match cache rows, then exit.")
    args = parser.parse_args()

    ensure_dir(DATA_DIR)
    ensure_dir(CONFIG_DIR)
    ensure_dir(LOG_DIR)
    _setup_logging(LOG_DIR)

    try:
        config = _load_config(args.config)
    except FileNotFoundError as exc:
        logging.error("Config file not found: %s", exc)
        sys.exit(2)
    except (ValueError, json.JSONDecodeError) as exc:
        logging.error("Invalid config: %s", exc)
        sys.exit(2)

    runtime = build_runtime(build_resolver_paths(), config)

    def _handle_signal(signum, _frame):
        runtime.stop_event.set()
        runtime.queue.wake()
        logging.warning("Signal %s received; stopping after current operation", signum)

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    if args.clear_cache:
        cleared = runtime.service.clear_poster_cache()
        print(json.dumps({"deletedFiles": cleared}))
        logging.shutdown()
        return

    exit_code = 0
    if args.fetch:
        for release_id in args.fetch:
            if runtime.stop_event.is_set():
                break
            cancel = CancelToken(runtime.stop_event, REQUEST_TIMEOUT_SECONDS)
            try:
                result = runtime.service.fetch_poster(release_id, cancel=cancel, skip_if_exists=not args.refresh)
            except FetchCancelled:
                exit_code = 1
                break
            except FetchTimeout:
                logging.warning("Poster fetch timed out for release %s", release_id)
                result = FetchResult(False, 504, {"error": "timeout"}, None)
            print(json.dumps({"releaseId": release_id, "status": result.status_code, **result.body}, sort_keys=True))
            if not result.ok:
                exit_code = 1

    if args.enqueue:
        queued, rejected = enqueue_releases(
            runtime.queue, runtime.releases, args.enqueue, force_refresh=args.refresh
        )
        logging.info("Queued %s releases (%s rejected)", queued, rejected)
    if args.retro:
        summary = start_retro_fetch(runtime.queue, runtime.releases, runtime.retro_log, args.limit)
        print(json.dumps(summary, sort_keys=True))

    if args.serve:
        runtime.start()
        while not runtime.stop_event.wait(1.0):
            pass
        runtime.stop()
    elif runtime.queue.count:
        outcomes = _drain(runtime)
        failed = sum(1 for outcome in outcomes if outcome.status == "failed")
        logging.info("Processed %s poster jobs (%s failed)", len(outcomes), failed)
        if failed:
            exit_code = 1

    if runtime.stop_event.is_set():
        logging.warning("Stopped by signal")
        logging.shutdown()
        sys.exit(130)

    logging.shutdown()
    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
