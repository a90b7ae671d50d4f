#!/usr/bin/env python3
import functools
import json
import logging
import mimetypes
import os

import anyio
import requests
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from posters.cancel import CancelToken, FetchCancelled, FetchTimeout
from posters.config import load_config, validate_config
from posters.fetch_service import FetchResult
from posters.job_queue import build_fetch_job
from posters.paths import CONFIG_DIR, DATA_DIR, LOG_DIR, build_resolver_paths, ensure_dir, resolve_config_path
from posters.providers.http import ProviderError
from posters.runtime import build_runtime
from posters.worker import REQUEST_TIMEOUT_SECONDS, enqueue_releases, start_retro_fetch

APP_NAME = "Poster Resolver API"
API_PREFIX = "/api/posters"


def _env_or_default(name, default):
    value = os.environ.get(name)
    return value if value else default


def _setup_logging(log_dir):
    ensure_dir(log_dir)
    root = logging.getLogger("")
    log_path = os.path.join(log_dir, "posters.log")
    root.setLevel(logging.INFO)
    has_file = False
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            if os.path.abspath(getattr(handler, "baseFilename", "")) == os.path.abspath(log_path):
                has_file = True
                break
    if not has_file:
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        file_handler.setLevel(logging.INFO)
        root.addHandler(file_handler)


def _read_config_or_default(config_path):
    if not os.path.exists(config_path):
        logging.info("Config not found at %s; using defaults and environment", config_path)
        return {}
    try:
        config = load_config(config_path)
    except (json.JSONDecodeError, OSError) as exc:
        logging.error("Failed to read config %s: %s", config_path, exc)
        return {}
    errors = validate_config(config)
    if errors:
        logging.error("Invalid config %s: %s", config_path, "; ".join(errors))
        return {}
    return config


class ReleaseIdsRequest(BaseModel):
    ids: list[int]


class RefreshBulkRequest(BaseModel):
    ids: list[int] | None = None
    limit: int | None = None


class ManualPosterRequest(BaseModel):
    provider: str
    provider_id: str
    poster_path: str | None = None
    url: str | None = None


class RetroFetchRequest(BaseModel):
    limit: int | None = None


app = FastAPI(title=APP_NAME)


@app.on_event("startup")
async def startup():
    if getattr(app.state, "runtime", None) is None:
        ensure_dir(DATA_DIR)
        ensure_dir(CONFIG_DIR)
        ensure_dir(LOG_DIR)
        _setup_logging(LOG_DIR)
        try:
            config_path = resolve_config_path(os.environ.get("POSTER_RESOLVER_CONFIG"))
        except ValueError as exc:
            logging.error("Invalid config override: %s", exc)
            config_path = resolve_config_path(None)
        app.state.runtime = build_runtime(build_resolver_paths(), _read_config_or_default(config_path))
    app.state.runtime.start()
    logging.info("Poster fetch worker running")


@app.on_event("shutdown")
async def shutdown():
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        await anyio.to_thread.run_sync(runtime.stop)


def _runtime():
    return app.state.runtime


def _require_release(release_id):
    release = _runtime().releases.get_for_poster(release_id)
    if release is None:
        raise HTTPException(status_code=404, detail="release not found")
    return release


def _result_response(result):
    status_code = result.status_code if result.status_code >= 100 else 502
    return JSONResponse(status_code=status_code, content=result.body)


def _fetch_sync(release_id):
    runtime = _runtime()
    cancel = CancelToken(runtime.stop_event, REQUEST_TIMEOUT_SECONDS)
    try:
        return runtime.service.fetch_poster(release_id, cancel=cancel)
    except FetchTimeout:
        logging.warning("Synchronous poster fetch timed out for %s", release_id)
        return FetchResult(False, 504, {"error": "timeout"}, None)
    except FetchCancelled:
        logging.warning("Synchronous poster fetch cancelled for %s", release_id)
        return FetchResult(False, 503, {"error": "cancelled"}, None)
    except (ProviderError, requests.RequestException) as exc:
        logging.warning("Synchronous poster fetch failed for %s: %s", release_id, exc)
        return FetchResult(False, 0, {"error": str(exc) or exc.__class__.__name__}, None)


def _iter_file(path, chunk_size=1024 * 1024):
    with open(path, "rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            yield chunk


@app.get(f"{API_PREFIX}/release/{{release_id}}")
async def api_release_poster(release_id: int):
    release = _require_release(release_id)
    path = _runtime().file_store.resolve(release.poster_file) if release.poster_file else None
    if not path or not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="poster not found")
    media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return StreamingResponse(_iter_file(path), media_type=media_type)


@app.post(f"{API_PREFIX}/release/{{release_id}}/fetch")
async def api_fetch_release(release_id: int):
    result = await anyio.to_thread.run_sync(functools.partial(_fetch_sync, release_id))
    return _result_response(result)


@app.post(f"{API_PREFIX}/release/{{release_id}}/enqueue", status_code=202)
async def api_enqueue_release(release_id: int):
    release = _require_release(release_id)
    queued = _runtime().queue.enqueue(build_fetch_job(release))
    if not queued:
        raise HTTPException(status_code=503, detail="poster queue is full")
    return {"queued": True, "pending": _runtime().queue.count}


@app.post(f"{API_PREFIX}/{{release_id}}/refresh", status_code=202)
async def api_refresh_release(release_id: int):
    release = _require_release(release_id)
    queued = _runtime().queue.enqueue(build_fetch_job(release, force_refresh=True))
    if not queued:
        raise HTTPException(status_code=503, detail="poster queue is full")
    return {"queued": True, "forceRefresh": True, "pending": _runtime().queue.count}


@app.post(f"{API_PREFIX}/releases/fetch", status_code=202)
async def api_enqueue_releases(payload: ReleaseIdsRequest):
    runtime = _runtime()
    queued, rejected = enqueue_releases(runtime.queue, runtime.releases, payload.ids)
    return {"queued": queued, "rejected": rejected, "pending": runtime.queue.count}


@app.post(f"{API_PREFIX}/refresh-bulk", status_code=202)
async def api_refresh_bulk(payload: RefreshBulkRequest):
    runtime = _runtime()
    if payload.limit is not None and payload.limit <= 0:
        raise HTTPException(status_code=400, detail="limit must be positive")
    ids = payload.ids
    if ids is None:
        ids = runtime.releases.list_ids_missing_posters(payload.limit)
    elif payload.limit:
        ids = ids[: payload.limit]
    queued, rejected = enqueue_releases(runtime.queue, runtime.releases, ids, force_refresh=True)
    return {"queued": queued, "rejected": rejected, "pending": runtime.queue.count}


def _save_manual(release_id, payload):
    service = _runtime().service
    provider = (payload.provider or "").strip().lower()
    if provider == "tmdb":
        return service.save_manual_tmdb_poster(release_id, int(payload.provider_id), payload.poster_path)
    if provider == "igdb":
        return service.save_manual_igdb_poster(release_id, int(payload.provider_id), payload.url)
    if provider == "theaudiodb":
        return service.save_manual_theaudiodb_poster(release_id, payload.provider_id, payload.url)
    raise ValueError("provider must be tmdb, igdb, or theaudiodb")


@app.post(f"{API_PREFIX}/release/{{release_id}}/manual")
async def api_manual_poster(release_id: int, payload: ManualPosterRequest):
    _require_release(release_id)
    try:
        poster_url = await anyio.to_thread.run_sync(functools.partial(_save_manual, release_id, payload))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (ProviderError, requests.RequestException) as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if not poster_url:
        raise HTTPException(status_code=502, detail="manual poster download failed")
    return {"ok": True, "posterUrl": poster_url}


@app.post(f"{API_PREFIX}/retro-fetch", status_code=202)
async def api_retro_fetch(payload: RetroFetchRequest | None = None):
    runtime = _runtime()
    limit = payload.limit if payload else None
    if limit is not None and limit <= 0:
        raise HTTPException(status_code=400, detail="limit must be positive")
    return start_retro_fetch(runtime.queue, runtime.releases, runtime.retro_log, limit)


@app.post(f"{API_PREFIX}/retro-fetch/stop")
async def api_retro_fetch_stop():
    cleared = _runtime().queue.clear_pending()
    return {"cleared": cleared}


@app.get(f"{API_PREFIX}/queue/status")
async def api_queue_status():
    runtime = _runtime()
    return {
        "pending": runtime.queue.count,
        "capacity": runtime.queue.capacity,
        "workerAlive": runtime.worker.is_alive(),
    }


@app.post(f"{API_PREFIX}/cache/clear")
async def api_cache_clear():
    runtime = _runtime()
    runtime.queue.clear_pending()
    cleared = await anyio.to_thread.run_sync(runtime.service.clear_poster_cache)
    return {"deletedFiles": cleared}


@app.get(f"{API_PREFIX}/stats")
async def api_stats():
    runtime = _runtime()
    missing = await anyio.to_thread.run_sync(runtime.releases.list_ids_missing_posters)
    return {
        "localPosters": runtime.service.local_poster_count(),
        "missingPosters": len(missing),
        "pending": runtime.queue.count,
    }


if __name__ == "__main__":
    import uvicorn

    host = _env_or_default("POSTER_RESOLVER_HOST", "127.0.0.1")
    port = int(_env_or_default("POSTER_RESOLVER_PORT", "8000"))
    uvicorn.run("api.main:app", host=host, port=port, reload=False)
