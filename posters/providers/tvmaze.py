from dataclasses import dataclass

from .http import ProviderClient, parse_year

_API_BASE = "https://api.tvmaze.com"


@dataclass(frozen=True)
class TvMazeShow:
    id: int
    name: str
    premiered_year: int | None
    imdb_id: str | None
    tvdb_id: int | None
    image_medium: str | None
    image_original: str | None


def _show_from_json(data):
    if not isinstance(data, dict):
        return None
    show_id = data.get("id") or 0
    name = (data.get("name") or "").strip()
    if show_id <= 0 or not name:
        return None
    externals = data.get("externals") or {}
    image = data.get("image") or {}
    return TvMazeShow(
        id=show_id,
        name=name,
        premiered_year=parse_year(data.get("premiered")),
        imdb_id=externals.get("imdb") or None,
        tvdb_id=externals.get("thetvdb") or None,
        image_medium=image.get("medium") or None,
        image_original=image.get("original") or None,
    )


class TvMazeClient(ProviderClient):
    provider_name = "tvmaze"

    def __init__(self, enabled=True, **kwargs):
        super().__init__(**kwargs)
        self._enabled = bool(enabled)

    @property
    def enabled(self):
        return self._enabled

    def search_shows(self, query, cancel=None):
        if not self.enabled or not query or not query.strip():
            return []
        data = self._get_json(f"{_API_BASE}/search/shows", cancel=cancel, params={"q": query.strip()})
        shows = []
        for item in data or []:
            show = _show_from_json((item or {}).get("show"))
            if show:
                shows.append(show)
        return shows

    def get_show(self, show_id, cancel=None):
        if not self.enabled or not show_id or show_id <= 0:
            return None
        return _show_from_json(self._get_json(f"{_API_BASE}/shows/{show_id}", cancel=cancel))
