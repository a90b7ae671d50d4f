import hashlib
import json
import logging
import sqlite3
import time
from dataclasses import dataclass, fields, replace


@dataclass(frozen=True)
class TitleKey:
    media_type: str
    normalized_title: str
    year: int | None = None
    season: int | None = None
    episode: int | None = None


@dataclass(frozen=True)
class MatchIds:
    tmdb_id: int | None = None
    tvdb_id: int | None = None
    tvmaze_id: int | None = None
    igdb_id: int | None = None
    imdb_id: str | None = None

    def has_any(self):
        if any(value for value in (self.tmdb_id, self.tvdb_id, self.tvmaze_id, self.igdb_id)):
            return True
        return bool(self.imdb_id and self.imdb_id.strip())

    def overlaps(self, other):
        if other is None:
            return False
        for name in ("tmdb_id", "tvdb_id", "tvmaze_id", "igdb_id"):
            mine = getattr(self, name)
            theirs = getattr(other, name)
            if mine is not None and theirs is not None and mine == theirs:
                return True
        if self.imdb_id and other.imdb_id:
            return self.imdb_id.strip().lower() == other.imdb_id.strip().lower()
        return False

    def merge(self, other):
        """Fill fields missing here from other."""
        if other is None:
            return self
        updates = {}
        for field in fields(self):
            if getattr(self, field.name) is None and getattr(other, field.name) is not None:
                updates[field.name] = getattr(other, field.name)
        return replace(self, **updates) if updates else self


@dataclass(frozen=True)
class MatchCacheEntry:
    fingerprint: str
    media_type: str
    normalized_title: str
    year: int | None
    season: int | None
    episode: int | None
    ids: MatchIds | None
    confidence: float
    match_source: str
    poster_file: str | None = None
    poster_provider: str | None = None
    poster_provider_id: str | None = None
    poster_lang: str | None = None
    poster_size: str | None = None
    created_ts: int | None = None
    last_seen_ts: int | None = None
    last_attempt_ts: int | None = None
    last_error: str | None = None

    @classmethod
    def from_row(cls, row):
        return cls(
            fingerprint=row["fingerprint"],
            media_type=row["media_type"],
            normalized_title=row["normalized_title"],
            year=row["year"],
            season=row["season"],
            episode=row["episode"],
            ids=deserialize_ids(row["ids_json"]),
            confidence=float(row["confidence"] or 0.0),
            match_source=row["match_source"],
            poster_file=row["poster_file"],
            poster_provider=row["poster_provider"],
            poster_provider_id=row["poster_provider_id"],
            poster_lang=row["poster_lang"],
            poster_size=row["poster_size"],
            created_ts=row["created_ts"],
            last_seen_ts=row["last_seen_ts"],
            last_attempt_ts=row["last_attempt_ts"],
            last_error=row["last_error"],
        )


def _unix_now():
    return int(time.time())


def _part(value):
    return "null" if value is None else str(value)


def build_fingerprint(title_key):
    raw = "|".join(
        [
            title_key.media_type or "",
            title_key.normalized_title or "",
            _part(title_key.year),
            _part(title_key.season),
            _part(title_key.episode),
        ]
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def serialize_ids(ids):
    if ids is None or not ids.has_any():
        return None
    payload = {
        "tmdbId": ids.tmdb_id,
        "tvdbId": ids.tvdb_id,
        "tvmazeId": ids.tvmaze_id,
        "igdbId": ids.igdb_id,
        "imdbId": ids.imdb_id,
    }
    return json.dumps({key: value for key, value in payload.items() if value is not None}, sort_keys=True)


def _as_int(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def deserialize_ids(raw):
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    imdb = data.get("imdbId")
    return MatchIds(
        tmdb_id=_as_int(data.get("tmdbId")),
        tvdb_id=_as_int(data.get("tvdbId")),
        tvmaze_id=_as_int(data.get("tvmazeId")),
        igdb_id=_as_int(data.get("igdbId")),
        imdb_id=imdb if isinstance(imdb, str) and imdb.strip() else None,
    )


def ensure_poster_matches_table(conn):
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS poster_matches (
            fingerprint TEXT PRIMARY KEY,
            media_type TEXT NOT NULL,
            normalized_title TEXT NOT NULL,
            year INTEGER,
            season INTEGER,
            episode INTEGER,
            ids_json TEXT,
            confidence REAL NOT NULL DEFAULT 0,
            match_source TEXT NOT NULL,
            poster_file TEXT,
            poster_provider TEXT,
            poster_provider_id TEXT,
            poster_lang TEXT,
            poster_size TEXT,
            created_ts INTEGER NOT NULL,
            last_seen_ts INTEGER NOT NULL,
            last_attempt_ts INTEGER,
            last_error TEXT
        )
        """
    )
    existing = {row[1] for row in cur.execute("PRAGMA table_info(poster_matches)").fetchall()}
    columns = {
        "ids_json": "ids_json TEXT",
        "poster_lang": "poster_lang TEXT",
        "poster_size": "poster_size TEXT",
        "last_attempt_ts": "last_attempt_ts INTEGER",
        "last_error": "last_error TEXT",
    }
    for name, ddl in columns.items():
        if name not in existing:
            cur.execute(f"ALTER TABLE poster_matches ADD COLUMN {ddl}")
            logging.warning("Migrated poster_matches: added column %s", name)
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_poster_matches_title "
        "ON poster_matches (media_type, normalized_title, year)"
    )
    conn.commit()


class PosterMatchCache:
    def __init__(self, db_path, *, clock=None):
        self.db_path = db_path
        self._clock = clock or _unix_now

    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def try_get(self, fingerprint):
        if not fingerprint:
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM poster_matches WHERE fingerprint=? LIMIT 1",
                (fingerprint,),
            ).fetchone()
        return MatchCacheEntry.from_row(row) if row else None

    def try_get_by_title_key(self, media_type, normalized_title, year=None):
        if not media_type or not normalized_title:
            return None
        media = media_type.lower()
        with self._connect() as conn:
            if year is not None:
                row = conn.execute(
                    """
                    SELECT * FROM poster_matches
                    WHERE lower(media_type)=? AND normalized_title=? AND year=?
                    ORDER BY confidence DESC, last_seen_ts DESC
                    LIMIT 1
                    """,
                    (media, normalized_title, year),
                ).fetchone()
                if row:
                    return MatchCacheEntry.from_row(row)
            row = conn.execute(
                """
                SELECT * FROM poster_matches
                WHERE lower(media_type)=? AND normalized_title=?
                ORDER BY confidence DESC, last_seen_ts DESC
                LIMIT 1
                """,
                (media, normalized_title),
            ).fetchone()
        return MatchCacheEntry.from_row(row) if row else None

    def upsert(self, entry):
        if not entry.fingerprint:
            raise ValueError("fingerprint is required")
        now = self._clock()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO poster_matches (
                    fingerprint, media_type, normalized_title, year, season, episode,
                    ids_json, confidence, match_source, poster_file, poster_provider,
                    poster_provider_id, poster_lang, poster_size, created_ts, last_seen_ts,
                    last_attempt_ts, last_error
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(fingerprint) DO UPDATE SET
                    media_type=excluded.media_type,
                    normalized_title=excluded.normalized_title,
                    year=excluded.year,
                    season=excluded.season,
                    episode=excluded.episode,
                    ids_json=COALESCE(excluded.ids_json, poster_matches.ids_json),
                    confidence=CASE
                        WHEN excluded.confidence > 0 THEN excluded.confidence
                        ELSE poster_matches.confidence
                    END,
                    match_source=COALESCE(excluded.match_source, poster_matches.match_source),
                    poster_file=COALESCE(excluded.poster_file, poster_matches.poster_file),
                    poster_provider=COALESCE(excluded.poster_provider, poster_matches.poster_provider),
                    poster_provider_id=COALESCE(excluded.poster_provider_id, poster_matches.poster_provider_id),
                    poster_lang=COALESCE(excluded.poster_lang, poster_matches.poster_lang),
                    poster_size=COALESCE(excluded.poster_size, poster_matches.poster_size),
                    last_seen_ts=excluded.last_seen_ts,
                    last_attempt_ts=COALESCE(excluded.last_attempt_ts, poster_matches.last_attempt_ts),
                    last_error=excluded.last_error
                """,
                (
                    entry.fingerprint,
                    entry.media_type or "unknown",
                    entry.normalized_title or "",
                    entry.year,
                    entry.season,
                    entry.episode,
                    serialize_ids(entry.ids),
                    float(entry.confidence or 0.0),
                    entry.match_source or "unknown",
                    entry.poster_file,
                    entry.poster_provider,
                    entry.poster_provider_id,
                    entry.poster_lang,
                    entry.poster_size,
                    entry.created_ts or now,
                    now,
                    entry.last_attempt_ts,
                    entry.last_error,
                ),
            )

    def touch_seen(self, fingerprint):
        with self._connect() as conn:
            conn.execute(
                "UPDATE poster_matches SET last_seen_ts=? WHERE fingerprint=?",
                (self._clock(), fingerprint),
            )

    def record_attempt(self, fingerprint):
        now = self._clock()
        with self._connect() as conn:
            conn.execute(
                "UPDATE poster_matches SET last_attempt_ts=?, last_seen_ts=? WHERE fingerprint=?",
                (now, now, fingerprint),
            )

    def record_error(self, fingerprint, reason):
        now = self._clock()
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE poster_matches
                SET last_error=?, last_attempt_ts=?, last_seen_ts=?
                WHERE fingerprint=?
                """,
                (reason, now, now, fingerprint),
            )

    def clear(self):
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM poster_matches")
            return cur.rowcount
