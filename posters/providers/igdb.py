import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from .http import ProviderClient, ProviderError

_API_BASE = "https://api.igdb.com/v4"
_TOKEN_URL = "https://id.twitch.tv/oauth2/token"
_IMAGE_BASE = "https://images.igdb.com/igdb/image/upload"


@dataclass(frozen=True)
class IgdbGame:
    id: int
    name: str
    cover_url: str | None
    year: int | None
    summary: str | None
    genres: str | None
    rating: float | None


def cover_url_for(image_id, size="cover_big"):
    if not image_id:
        return None
    return f"{_IMAGE_BASE}/t_{size}/{image_id}.jpg"


def _escape_query(value):
    return value.replace("\\", " ").replace('"', " ").strip()


class IgdbClient(ProviderClient):
    provider_name = "igdb"

    def __init__(self, client_id, client_secret, **kwargs):
        super().__init__(**kwargs)
        self._client_id = (client_id or "").strip()
        self._client_secret = (client_secret or "").strip()
        self._token = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    @property
    def enabled(self):
        return bool(self._client_id and self._client_secret)

    def _access_token(self, cancel=None):
        with self._token_lock:
            if self._token and time.time() < self._token_expires_at - 60:
                return self._token
            response = self._request(
                "POST",
                _TOKEN_URL,
                cancel=cancel,
                params={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "client_credentials",
                },
            )
            if response.status_code != 200:
                raise ProviderError(self.provider_name, response.status_code, "IGDB token request failed")
            payload = response.json()
            self._token = payload.get("access_token")
            self._token_expires_at = time.time() + float(payload.get("expires_in") or 0)
            logging.info("IGDB access token refreshed")
            return self._token

    def _query(self, endpoint, body, cancel=None):
        token = self._access_token(cancel)
        return self._get_json(
            f"{_API_BASE}/{endpoint}",
            cancel=cancel,
            method="POST",
            data=body.encode("utf-8"),
            headers={"Client-ID": self._client_id, "Authorization": f"Bearer {token}"},
        )

    def search_game(self, query, year=None, cancel=None):
        """First search hit, preferring one released in year when a year is given."""
        if not self.enabled or not query or not query.strip():
            return None
        body = (
            f'search "{_escape_query(query)}"; '
            "fields name,cover.image_id,first_release_date,summary,genres.name,total_rating; limit 10;"
        )
        games = [game for game in map(_game_from_json, self._query("games", body, cancel) or []) if game]
        if year is not None:
            for game in games:
                if game.year == year:
                    return game
        return games[0] if games else None

    def get_game(self, igdb_id, cancel=None):
        if not self.enabled or not igdb_id or igdb_id <= 0:
            return None
        body = (
            "fields name,cover.image_id,first_release_date,summary,genres.name,total_rating; "
            f"where id = {int(igdb_id)}; limit 1;"
        )
        for item in self._query("games", body, cancel) or []:
            return _game_from_json(item)
        return None


def _game_from_json(item):
    if not isinstance(item, dict):
        return None
    game_id = item.get("id") or 0
    name = (item.get("name") or "").strip()
    if game_id <= 0 or not name:
        return None
    year = None
    released = item.get("first_release_date")
    if released:
        year = datetime.fromtimestamp(int(released), tz=timezone.utc).year
    genres = ", ".join(g.get("name") for g in item.get("genres") or [] if g.get("name")) or None
    rating = item.get("total_rating")
    return IgdbGame(
        id=game_id,
        name=name,
        cover_url=cover_url_for((item.get("cover") or {}).get("image_id")),
        year=year,
        summary=item.get("summary") or None,
        genres=genres,
        rating=round(rating / 10.0, 1) if rating is not None else None,
    )
