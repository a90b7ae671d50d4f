from dataclasses import dataclass

from .http import ProviderClient

_API_BASE = "https://api.jikan.moe/v4"


@dataclass(frozen=True)
class JikanAnime:
    mal_id: int
    title: str
    image_url: str | None
    synopsis: str | None
    genres: str | None
    year: int | None
    score: float | None


class JikanClient(ProviderClient):
    provider_name = "jikan"

    def search_anime(self, title, year=None, cancel=None):
        if not title or not title.strip():
            return None
        data = self._get_json(f"{_API_BASE}/anime", cancel=cancel, params={"q": title.strip(), "limit": 10})
        results = []
        for item in (data or {}).get("data") or []:
            anime = _anime_from_json(item)
            if anime:
                results.append(anime)
        if not results:
            return None
        if year is not None:
            for anime in results:
                if anime.year == year:
                    return anime
        return results[0]


def _anime_from_json(item):
    if not isinstance(item, dict):
        return None
    mal_id = item.get("mal_id") or 0
    title = (item.get("title") or item.get("title_english") or "").strip()
    if mal_id <= 0 or not title:
        return None
    images = (item.get("images") or {}).get("jpg") or {}
    genres = ", ".join(g.get("name") for g in item.get("genres") or [] if g.get("name")) or None
    year = item.get("year")
    if year is None:
        start = ((item.get("aired") or {}).get("prop") or {}).get("from") or {}
        year = start.get("year")
    return JikanAnime(
        mal_id=mal_id,
        title=title,
        image_url=images.get("large_image_url") or images.get("image_url") or None,
        synopsis=item.get("synopsis") or None,
        genres=genres,
        year=year,
        score=item.get("score"),
    )
