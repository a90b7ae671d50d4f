import os
from dataclasses import dataclass
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _env_path(name, default):
    value = os.environ.get(name)
    if value:
        return os.path.abspath(value)
    return os.path.abspath(default)


# Base directories for all file access. Override via env for container mounts.
CONFIG_DIR = _env_path("POSTER_RESOLVER_CONFIG_DIR", PROJECT_ROOT / "config")
DATA_DIR = _env_path("POSTER_RESOLVER_DATA_DIR", PROJECT_ROOT / "data")
POSTERS_DIR = _env_path("POSTER_RESOLVER_POSTERS_DIR", Path(DATA_DIR) / "posters")
LOG_DIR = _env_path("POSTER_RESOLVER_LOG_DIR", PROJECT_ROOT / "logs")


@dataclass(frozen=True)
class ResolverPaths:
    log_dir: str
    db_path: str
    posters_dir: str
    retro_log_dir: str


def ensure_dir(path):
    if path:
        os.makedirs(path, exist_ok=True)


def resolve_config_path(path):
    if not path:
        resolved = os.path.join(CONFIG_DIR, "config.json")
    elif os.path.isabs(path):
        resolved = os.path.abspath(path)
    else:
        resolved = os.path.abspath(os.path.join(CONFIG_DIR, path))
    if not _is_within_base(resolved, CONFIG_DIR):
        raise ValueError(f"Config path must be within CONFIG_DIR: {CONFIG_DIR}")
    return resolved


def _is_within_base(path, base_dir):
    real = os.path.realpath(path)
    base = os.path.realpath(base_dir)
    return os.path.commonpath([real, base]) == base


def resolve_file_in_dir(name, base_dir):
    """Return the absolute path of a bare file name inside base_dir, or None.

    Only plain file names are accepted: no separators, no parent references.
    """
    if not name or not base_dir:
        return None
    candidate = str(name).strip()
    if not candidate or os.path.isabs(candidate):
        return None
    if os.path.basename(candidate) != candidate or ".." in candidate:
        return None
    resolved = os.path.abspath(os.path.join(base_dir, candidate))
    if not _is_within_base(resolved, base_dir):
        return None
    return resolved


def build_resolver_paths():
    db_path = os.path.join(DATA_DIR, "database", "posters.sqlite")
    return ResolverPaths(
        log_dir=LOG_DIR,
        db_path=db_path,
        posters_dir=POSTERS_DIR,
        retro_log_dir=os.path.join(LOG_DIR, "retro-fetch"),
    )
