from dataclasses import dataclass

from .http import ProviderClient, parse_year

_API_BASE = "https://www.googleapis.com/books/v1"


@dataclass(frozen=True)
class GoogleBook:
    volume_id: str
    title: str
    thumbnail_url: str | None
    authors: str | None
    description: str | None
    published_date: str | None
    year: int | None


class GoogleBooksClient(ProviderClient):
    provider_name = "googlebooks"

    def __init__(self, api_key=None, **kwargs):
        super().__init__(**kwargs)
        self._api_key = (api_key or "").strip()

    def search(self, title, isbn=None, cancel=None):
        query = f"isbn:{isbn}" if isbn else f"intitle:{(title or '').strip()}"
        if query.endswith(":"):
            return None
        params = {"q": query, "maxResults": 10}
        if self._api_key:
            params["key"] = self._api_key
        data = self._get_json(f"{_API_BASE}/volumes", cancel=cancel, params=params)
        for item in (data or {}).get("items") or []:
            book = _book_from_json(item)
            if book:
                return book
        return None


def _book_from_json(item):
    if not isinstance(item, dict) or not item.get("id"):
        return None
    info = item.get("volumeInfo") or {}
    links = info.get("imageLinks") or {}
    thumbnail = links.get("thumbnail") or links.get("smallThumbnail")
    if thumbnail and thumbnail.startswith("http://"):
        thumbnail = "https://" + thumbnail[len("http://"):]
    published = info.get("publishedDate") or None
    return GoogleBook(
        volume_id=item["id"],
        title=info.get("title") or "",
        thumbnail_url=thumbnail or None,
        authors=", ".join(info.get("authors") or []) or None,
        description=info.get("description") or None,
        published_date=published,
        year=parse_year(published),
    )
