from dataclasses import dataclass

from .http import ProviderClient, parse_year

_API_BASE = "https://comicvine.gamespot.com/api"


@dataclass(frozen=True)
class ComicVineResult:
    id: int
    name: str
    image_url: str | None
    year: int | None
    description: str | None


class ComicVineClient(ProviderClient):
    provider_name = "comicvine"

    def __init__(self, api_key, **kwargs):
        super().__init__(**kwargs)
        self._api_key = (api_key or "").strip()

    @property
    def enabled(self):
        return bool(self._api_key)

    def search(self, title, year=None, cancel=None):
        if not self.enabled or not title or not title.strip():
            return None
        data = self._get_json(
            f"{_API_BASE}/search/",
            cancel=cancel,
            params={
                "api_key": self._api_key,
                "format": "json",
                "resources": "issue,volume",
                "query": title.strip(),
                "limit": 10,
            },
        )
        results = [r for r in (_result_from_json(item) for item in (data or {}).get("results") or []) if r]
        if not results:
            return None
        if year is not None:
            for result in results:
                if result.year == year:
                    return result
        return results[0]


def _result_from_json(item):
    if not isinstance(item, dict):
        return None
    result_id = item.get("id") or 0
    name = (item.get("name") or (item.get("volume") or {}).get("name") or "").strip()
    if result_id <= 0 or not name:
        return None
    image = item.get("image") or {}
    return ComicVineResult(
        id=result_id,
        name=name,
        image_url=image.get("original_url") or image.get("super_url") or image.get("medium_url") or None,
        year=parse_year(item.get("start_year") or item.get("cover_date")),
        description=item.get("deck") or None,
    )
