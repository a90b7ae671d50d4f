from dataclasses import dataclass

from .http import ProviderClient, parse_year

_API_BASE = "https://www.theaudiodb.com/api/v1/json"


@dataclass(frozen=True)
class AudioDbResult:
    id: str
    title: str
    artist: str | None
    image_url: str | None
    year: int | None
    genre: str | None


class TheAudioDbClient(ProviderClient):
    provider_name = "theaudiodb"

    def __init__(self, api_key, **kwargs):
        super().__init__(**kwargs)
        self._api_key = (api_key or "").strip()

    @property
    def enabled(self):
        return bool(self._api_key)

    def _url(self, endpoint):
        return f"{_API_BASE}/{self._api_key}/{endpoint}"

    def search(self, artist, title, year=None, cancel=None):
        if not self.enabled or not title or not title.strip():
            return None
        if artist:
            album = self._search_album(artist, title, year, cancel)
            if album:
                return album
            track = self._search_track(artist, title, cancel)
            if track:
                return track
        return self._search_artist(artist or title, cancel)

    def _search_album(self, artist, title, year, cancel):
        data = self._get_json(self._url("searchalbum.php"), cancel=cancel, params={"s": artist, "a": title})
        albums = [item for item in (data or {}).get("album") or [] if item.get("idAlbum")]
        if not albums:
            return None
        chosen = albums[0]
        if year is not None:
            for item in albums:
                if parse_year(item.get("intYearReleased")) == year:
                    chosen = item
                    break
        return AudioDbResult(
            id=str(chosen["idAlbum"]),
            title=chosen.get("strAlbum") or title,
            artist=chosen.get("strArtist") or artist,
            image_url=chosen.get("strAlbumThumb") or None,
            year=parse_year(chosen.get("intYearReleased")),
            genre=chosen.get("strGenre") or None,
        )

    def _search_track(self, artist, title, cancel):
        data = self._get_json(self._url("searchtrack.php"), cancel=cancel, params={"s": artist, "t": title})
        for item in (data or {}).get("track") or []:
            if not item.get("idTrack"):
                continue
            return AudioDbResult(
                id=str(item["idTrack"]),
                title=item.get("strTrack") or title,
                artist=item.get("strArtist") or artist,
                image_url=item.get("strTrackThumb") or None,
                year=None,
                genre=item.get("strGenre") or None,
            )
        return None

    def _search_artist(self, name, cancel):
        data = self._get_json(self._url("search.php"), cancel=cancel, params={"s": name})
        for item in (data or {}).get("artists") or []:
            if not item.get("idArtist"):
                continue
            return AudioDbResult(
                id=str(item["idArtist"]),
                title=item.get("strArtist") or name,
                artist=item.get("strArtist") or name,
                image_url=item.get("strArtistThumb") or None,
                year=parse_year(item.get("intFormedYear")),
                genre=item.get("strGenre") or None,
            )
        return None
