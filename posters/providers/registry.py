from dataclasses import dataclass

import requests

from .comicvine import ComicVineClient
from .fanart import FanartClient
from .googlebooks import GoogleBooksClient
from .igdb import IgdbClient
from .jikan import JikanClient
from .theaudiodb import TheAudioDbClient
from .tmdb import TmdbClient
from .tvmaze import TvMazeClient


@dataclass(frozen=True)
class ProviderSet:
    tmdb: object
    tvmaze: object
    fanart: object
    igdb: object
    jikan: object
    theaudiodb: object
    googlebooks: object
    comicvine: object


def build_provider_set(config, session=None):
    """Construct every provider client from a normalized poster config."""
    session = session or requests.Session()
    common = {
        "session": session,
        "timeout": config["request_timeout_seconds"],
        "user_agent": config["user_agent"],
    }
    return ProviderSet(
        tmdb=TmdbClient(config["tmdb_api_key"], **common),
        tvmaze=TvMazeClient(enabled=config["tvmaze_enabled"], **common),
        fanart=FanartClient(config["fanart_api_key"], **common),
        igdb=IgdbClient(config["igdb_client_id"], config["igdb_client_secret"], **common),
        jikan=JikanClient(**common),
        theaudiodb=TheAudioDbClient(config["theaudiodb_api_key"], **common),
        googlebooks=GoogleBooksClient(config["google_books_api_key"], **common),
        comicvine=ComicVineClient(config["comicvine_api_key"], **common),
    )
