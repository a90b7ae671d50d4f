from dataclasses import dataclass

from .http import ProviderClient, parse_year

_API_BASE = "https://api.themoviedb.org/3"
_IMAGE_BASE = "https://image.tmdb.org/t/p"
_PREFERRED_POSTER_LANGS = ("fr", "en", "es", "it")


@dataclass(frozen=True)
class TmdbSearchResult:
    tmdb_id: int
    title: str
    original_title: str | None
    poster_path: str | None
    media_type: str
    year: int | None
    original_language: str | None


@dataclass(frozen=True)
class TmdbDetails:
    title: str | None
    overview: str | None
    tagline: str | None
    genres: str | None
    release_date: str | None
    runtime_minutes: int | None
    rating: float | None
    votes: int | None


def _kind(media_type):
    return "tv" if media_type == "series" else "movie"


class TmdbClient(ProviderClient):
    provider_name = "tmdb"

    def __init__(self, api_key, **kwargs):
        super().__init__(**kwargs)
        self._api_key = (api_key or "").strip()

    @property
    def enabled(self):
        return bool(self._api_key)

    def _params(self, **extra):
        params = {"api_key": self._api_key}
        params.update({key: value for key, value in extra.items() if value is not None})
        return params

    def _search(self, kind, title, year, cancel, limit):
        if not self.enabled or not title or not title.strip():
            return []
        year_param = "first_air_date_year" if kind == "tv" else "year"
        extra = {"query": title.strip(), "include_adult": "false"}
        if year is not None and 1800 <= year <= 2100:
            extra[year_param] = year
        data = self._get_json(f"{_API_BASE}/search/{kind}", cancel=cancel, params=self._params(**extra))
        results = []
        for item in (data or {}).get("results") or []:
            tmdb_id = item.get("id") or 0
            if tmdb_id <= 0:
                continue
            if kind == "tv":
                name = item.get("name") or item.get("title") or ""
                original = item.get("original_name") or item.get("original_title")
                year_value = parse_year(item.get("first_air_date"))
            else:
                name = item.get("title") or item.get("name") or ""
                original = item.get("original_title") or item.get("original_name")
                year_value = parse_year(item.get("release_date"))
            if not name.strip():
                continue
            results.append(
                TmdbSearchResult(
                    tmdb_id=tmdb_id,
                    title=name.strip(),
                    original_title=(original or "").strip() or None,
                    poster_path=item.get("poster_path"),
                    media_type="series" if kind == "tv" else "movie",
                    year=year_value,
                    original_language=item.get("original_language"),
                )
            )
            if len(results) >= limit:
                break
        return results

    def search_movie_list(self, title, year=None, cancel=None, limit=10):
        return self._search("movie", title, year, cancel, limit)

    def search_tv_list(self, title, year=None, cancel=None, limit=10):
        return self._search("tv", title, year, cancel, limit)

    def get_preferred_poster_path(self, tmdb_id, media_type, cancel=None):
        if not self.enabled or not tmdb_id or tmdb_id <= 0:
            return None
        data = self._get_json(
            f"{_API_BASE}/{_kind(media_type)}/{tmdb_id}/images",
            cancel=cancel,
            params=self._params(include_image_language="fr,en,es,it,null"),
        )
        posters = [item for item in (data or {}).get("posters") or [] if item.get("file_path")]
        if not posters:
            return None
        posters.sort(
            key=lambda item: (
                item.get("vote_count") or 0,
                item.get("vote_average") or 0,
                (item.get("width") or 0) * (item.get("height") or 0),
            ),
            reverse=True,
        )
        for lang in _PREFERRED_POSTER_LANGS:
            for item in posters:
                if (item.get("iso_639_1") or "").strip().lower() == lang:
                    return item["file_path"]
        for item in posters:
            code = (item.get("iso_639_1") or "").strip().lower()
            if not code or code == "null":
                return item["file_path"]
        return posters[0]["file_path"]

    def download_poster_w500(self, poster_path, cancel=None):
        if not poster_path:
            return None
        return self.download_image(f"{_IMAGE_BASE}/w500{poster_path}", cancel=cancel)

    def get_tvdb_id(self, tmdb_id, cancel=None):
        if not self.enabled or not tmdb_id or tmdb_id <= 0:
            return None
        data = self._get_json(f"{_API_BASE}/tv/{tmdb_id}/external_ids", cancel=cancel, params=self._params())
        tvdb_id = (data or {}).get("tvdb_id") or 0
        return tvdb_id if tvdb_id > 0 else None

    def get_tv_tmdb_id_by_tvdb_id(self, tvdb_id, cancel=None):
        if not self.enabled or not tvdb_id or tvdb_id <= 0:
            return None
        data = self._get_json(
            f"{_API_BASE}/find/{tvdb_id}",
            cancel=cancel,
            params=self._params(external_source="tvdb_id"),
        )
        for item in (data or {}).get("tv_results") or []:
            if (item.get("id") or 0) > 0:
                return item["id"]
        return None

    def get_details(self, tmdb_id, media_type, cancel=None):
        if not self.enabled or not tmdb_id or tmdb_id <= 0:
            return None
        data = self._get_json(f"{_API_BASE}/{_kind(media_type)}/{tmdb_id}", cancel=cancel, params=self._params())
        if not data:
            return None
        genres = ", ".join(g.get("name") for g in data.get("genres") or [] if g.get("name")) or None
        runtime = data.get("runtime")
        if runtime is None:
            episode_runtimes = data.get("episode_run_time") or []
            runtime = episode_runtimes[0] if episode_runtimes else None
        return TmdbDetails(
            title=data.get("title") or data.get("name"),
            overview=data.get("overview") or None,
            tagline=data.get("tagline") or None,
            genres=genres,
            release_date=data.get("release_date") or data.get("first_air_date") or None,
            runtime_minutes=runtime,
            rating=data.get("vote_average"),
            votes=data.get("vote_count"),
        )
