import logging
import sqlite3
import time
from dataclasses import dataclass, fields

_EXT_FIELDS = (
    "title",
    "overview",
    "tagline",
    "genres",
    "release_date",
    "runtime_minutes",
    "rating",
    "votes",
    "directors",
    "writers",
    "cast",
)


def _unix_now():
    return int(time.time())


def ensure_releases_table(conn):
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS releases (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_id INTEGER,
            entity_id INTEGER,
            title TEXT NOT NULL,
            title_clean TEXT,
            year INTEGER,
            season INTEGER,
            episode INTEGER,
            category_name TEXT,
            unified_category TEXT,
            media_type TEXT,
            tmdb_id INTEGER,
            tvdb_id INTEGER,
            poster_path TEXT,
            poster_file TEXT,
            poster_provider TEXT,
            poster_provider_id TEXT,
            poster_lang TEXT,
            poster_size TEXT,
            poster_hash TEXT,
            poster_updated_at_ts INTEGER,
            poster_last_attempt_ts INTEGER,
            poster_last_error TEXT,
            ext_provider TEXT,
            ext_provider_id TEXT,
            ext_title TEXT,
            ext_overview TEXT,
            ext_tagline TEXT,
            ext_genres TEXT,
            ext_release_date TEXT,
            ext_runtime_minutes INTEGER,
            ext_rating REAL,
            ext_votes INTEGER,
            ext_directors TEXT,
            ext_writers TEXT,
            ext_cast TEXT,
            ext_updated_at_ts INTEGER
        )
        """
    )
    existing = {row[1] for row in cur.execute("PRAGMA table_info(releases)").fetchall()}
    columns = {
        "poster_lang": "poster_lang TEXT",
        "poster_size": "poster_size TEXT",
        "poster_hash": "poster_hash TEXT",
        "poster_last_attempt_ts": "poster_last_attempt_ts INTEGER",
        "poster_last_error": "poster_last_error TEXT",
        "ext_tagline": "ext_tagline TEXT",
        "ext_directors": "ext_directors TEXT",
        "ext_writers": "ext_writers TEXT",
        "ext_cast": "ext_cast TEXT",
    }
    for name, ddl in columns.items():
        if name not in existing:
            cur.execute(f"ALTER TABLE releases ADD COLUMN {ddl}")
            logging.warning("Migrated releases: added column %s", name)
    cur.execute("CREATE INDEX IF NOT EXISTS idx_releases_title_clean ON releases (lower(title_clean))")
    conn.commit()


@dataclass(frozen=True)
class ReleaseForPoster:
    id: int
    source_id: int | None
    entity_id: int | None
    title: str
    title_clean: str | None
    year: int | None
    season: int | None
    episode: int | None
    category_name: str | None
    unified_category: str | None
    media_type: str | None
    tmdb_id: int | None
    tvdb_id: int | None
    poster_path: str | None
    poster_file: str | None
    poster_provider: str | None
    poster_provider_id: str | None
    poster_lang: str | None
    poster_size: str | None
    poster_hash: str | None
    poster_updated_at_ts: int | None
    poster_last_attempt_ts: int | None
    poster_last_error: str | None
    ext_provider: str | None = None
    ext_provider_id: str | None = None
    ext_title: str | None = None
    ext_overview: str | None = None
    ext_tagline: str | None = None
    ext_genres: str | None = None
    ext_release_date: str | None = None
    ext_runtime_minutes: int | None = None
    ext_rating: float | None = None
    ext_votes: int | None = None
    ext_directors: str | None = None
    ext_writers: str | None = None
    ext_cast: str | None = None

    @classmethod
    def from_row(cls, row):
        keys = set(row.keys())
        return cls(**{field.name: row[field.name] for field in fields(cls) if field.name in keys})


class ReleaseStore:
    def __init__(self, db_path, *, clock=None):
        self.db_path = db_path
        self._clock = clock or _unix_now

    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def add_release(
        self,
        *,
        title,
        title_clean=None,
        year=None,
        season=None,
        episode=None,
        category_name=None,
        unified_category=None,
        media_type=None,
        tmdb_id=None,
        tvdb_id=None,
        source_id=None,
        entity_id=None,
    ):
        if not title or not str(title).strip():
            raise ValueError("title is required")
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO releases (
                    source_id, entity_id, title, title_clean, year, season, episode,
                    category_name, unified_category, media_type, tmdb_id, tvdb_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    source_id,
                    entity_id,
                    title,
                    title_clean,
                    year,
                    season,
                    episode,
                    category_name,
                    unified_category,
                    media_type,
                    tmdb_id,
                    tvdb_id,
                ),
            )
            return cur.lastrowid

    def get_for_poster(self, release_id):
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM releases WHERE id=?", (release_id,)).fetchone()
        return ReleaseForPoster.from_row(row) if row else None

    def list_ids_missing_posters(self, limit=None):
        query = "SELECT id FROM releases WHERE poster_file IS NULL OR poster_file = '' ORDER BY id"
        params = ()
        if limit:
            query += " LIMIT ?"
            params = (int(limit),)
        with self._connect() as conn:
            return [row["id"] for row in conn.execute(query, params).fetchall()]

    def save_poster(self, release_id, tmdb_id, source_path, local_file):
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE releases
                SET tmdb_id=COALESCE(?, tmdb_id),
                    poster_path=COALESCE(?, poster_path),
                    poster_file=?,
                    poster_updated_at_ts=?
                WHERE id=?
                """,
                (tmdb_id, source_path, local_file, self._clock(), release_id),
            )

    def save_tvdb_id(self, release_id, tvdb_id):
        if not tvdb_id or tvdb_id <= 0:
            return
        with self._connect() as conn:
            conn.execute("UPDATE releases SET tvdb_id=? WHERE id=?", (tvdb_id, release_id))

    def save_tmdb_id(self, release_id, tmdb_id):
        if not tmdb_id or tmdb_id <= 0:
            return
        with self._connect() as conn:
            conn.execute("UPDATE releases SET tmdb_id=? WHERE id=?", (tmdb_id, release_id))

    def update_external_details(self, release_id, provider, provider_id, **details):
        unknown = set(details) - set(_EXT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown external detail fields: {sorted(unknown)}")
        assignments = ", ".join(f"ext_{name}=COALESCE(?, ext_{name})" for name in _EXT_FIELDS)
        values = [details.get(name) for name in _EXT_FIELDS]
        with self._connect() as conn:
            conn.execute(
                f"""
                UPDATE releases
                SET ext_provider=?, ext_provider_id=?, {assignments}, ext_updated_at_ts=?
                WHERE id=?
                """,
                [provider, provider_id, *values, self._clock(), release_id],
            )

    def update_poster_attempt_success(self, release_id, provider, provider_id, lang, size, poster_hash):
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE releases
                SET poster_provider=?,
                    poster_provider_id=?,
                    poster_lang=?,
                    poster_size=?,
                    poster_hash=?,
                    poster_last_attempt_ts=?,
                    poster_last_error=NULL
                WHERE id=?
                """,
                (provider, provider_id, lang, size, poster_hash, self._clock(), release_id),
            )

    def update_poster_attempt_failure(self, release_id, provider, provider_id, lang, size, error):
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE releases
                SET poster_provider=COALESCE(?, poster_provider),
                    poster_provider_id=COALESCE(?, poster_provider_id),
                    poster_lang=COALESCE(?, poster_lang),
                    poster_size=COALESCE(?, poster_size),
                    poster_last_attempt_ts=?,
                    poster_last_error=?
                WHERE id=?
                """,
                (provider, provider_id, lang, size, self._clock(), error, release_id),
            )

    def get_poster_for_title_clean(self, exclude_id, raw_title, normalized_title, media_type=None, year=None):
        """Find another release with the same cleaned title that already has a poster.

        Exact year first, then a one-year tolerance when a year is known.
        """
        if not raw_title:
            return None
        base = """
            SELECT * FROM releases
            WHERE id <> ?
              AND title_clean IS NOT NULL
              AND (lower(title_clean) = lower(?) OR (? IS NOT NULL AND lower(title_clean) = lower(?)))
              AND (? IS NULL OR lower(media_type) = lower(?))
              AND poster_file IS NOT NULL
              AND poster_file <> ''
        """
        order = " ORDER BY poster_updated_at_ts DESC, id DESC LIMIT 1"
        alt = normalized_title or None
        params = [exclude_id, raw_title, alt, alt, media_type, media_type]
        with self._connect() as conn:
            row = conn.execute(
                base + " AND (? IS NULL OR year = ?)" + order,
                params + [year, year],
            ).fetchone()
            if row is None and year is not None:
                row = conn.execute(
                    base + " AND year BETWEEN ? AND ?" + order,
                    params + [year - 1, year + 1],
                ).fetchone()
        return ReleaseForPoster.from_row(row) if row else None

    def clear_all_poster_references(self):
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE releases
                SET poster_file=NULL, poster_updated_at_ts=NULL
                WHERE poster_file IS NOT NULL AND poster_file <> ''
                """
            )
            return cur.rowcount
