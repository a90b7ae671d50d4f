import json
import os

DEFAULT_POSTER_CONFIG = {
    "tmdb_api_key": "",
    "tvmaze_enabled": True,
    "fanart_api_key": "",
    "igdb_client_id": "",
    "igdb_client_secret": "",
    "theaudiodb_api_key": "",
    "google_books_api_key": "",
    "comicvine_api_key": "",
    "request_timeout_seconds": 20,
    "user_agent": "poster-resolver/1.0",
}

_STRING_KEYS = {
    "tmdb_api_key",
    "fanart_api_key",
    "igdb_client_id",
    "igdb_client_secret",
    "theaudiodb_api_key",
    "google_books_api_key",
    "comicvine_api_key",
    "user_agent",
}

_ENV_OVERRIDES = {
    "tmdb_api_key": "POSTER_RESOLVER_TMDB_API_KEY",
    "fanart_api_key": "POSTER_RESOLVER_FANART_API_KEY",
    "igdb_client_id": "POSTER_RESOLVER_IGDB_CLIENT_ID",
    "igdb_client_secret": "POSTER_RESOLVER_IGDB_CLIENT_SECRET",
    "theaudiodb_api_key": "POSTER_RESOLVER_THEAUDIODB_API_KEY",
    "google_books_api_key": "POSTER_RESOLVER_GOOGLE_BOOKS_API_KEY",
    "comicvine_api_key": "POSTER_RESOLVER_COMICVINE_API_KEY",
}


def load_config(path):
    with open(path, "r") as f:
        return json.load(f)


def validate_config(config):
    errors = []
    if not isinstance(config, dict):
        return ["config must be a JSON object"]
    providers = config.get("providers")
    if providers is not None and not isinstance(providers, dict):
        errors.append("providers must be an object")
        return errors
    for key, value in (providers or {}).items():
        if key not in DEFAULT_POSTER_CONFIG:
            errors.append(f"providers.{key} is not a known setting")
        elif key in _STRING_KEYS and value is not None and not isinstance(value, str):
            errors.append(f"providers.{key} must be a string")
    return errors


def normalize_poster_config(config, environ=None):
    environ = os.environ if environ is None else environ
    normalized = dict(DEFAULT_POSTER_CONFIG)
    if isinstance(config, dict):
        raw = config.get("providers")
        if isinstance(raw, dict):
            for key in DEFAULT_POSTER_CONFIG:
                if key in raw and raw[key] is not None:
                    normalized[key] = raw[key]
    for key, env_name in _ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            normalized[key] = value
    for key in _STRING_KEYS:
        if not isinstance(normalized.get(key), str):
            normalized[key] = DEFAULT_POSTER_CONFIG[key]
        normalized[key] = normalized[key].strip()
    if not isinstance(normalized.get("tvmaze_enabled"), bool):
        normalized["tvmaze_enabled"] = DEFAULT_POSTER_CONFIG["tvmaze_enabled"]
    timeout = normalized.get("request_timeout_seconds")
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        normalized["request_timeout_seconds"] = DEFAULT_POSTER_CONFIG["request_timeout_seconds"]
    return normalized
