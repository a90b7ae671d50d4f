from .http import ProviderClient

_API_BASE = "https://webservice.fanart.tv/v3"


def _pick_poster(items, preferred_langs):
    candidates = [item for item in items or [] if item.get("url")]
    if not candidates:
        return None
    candidates.sort(key=lambda item: int(item.get("likes") or 0), reverse=True)
    for lang in preferred_langs:
        if not lang:
            continue
        for item in candidates:
            if (item.get("lang") or "").lower() == lang.lower():
                return item["url"]
    return candidates[0]["url"]


class FanartClient(ProviderClient):
    provider_name = "fanart"

    def __init__(self, api_key, **kwargs):
        super().__init__(**kwargs)
        self._api_key = (api_key or "").strip()

    @property
    def enabled(self):
        return bool(self._api_key)

    def get_movie_poster_url(self, tmdb_id, original_language=None, cancel=None):
        if not self.enabled or not tmdb_id or tmdb_id <= 0:
            return None
        data = self._get_json(f"{_API_BASE}/movies/{tmdb_id}", cancel=cancel, params={"api_key": self._api_key})
        return _pick_poster((data or {}).get("movieposter"), (original_language, "fr", "en", "00"))

    def get_tv_poster_url(self, tvdb_id, lang=None, cancel=None):
        if not self.enabled or not tvdb_id or tvdb_id <= 0:
            return None
        data = self._get_json(f"{_API_BASE}/tv/{tvdb_id}", cancel=cancel, params={"api_key": self._api_key})
        return _pick_poster((data or {}).get("tvposter"), (lang, "fr", "en", "00"))
