FILM = "film"
SERIE = "serie"
EMISSION = "emission"
SPECTACLE = "spectacle"
ANIMATION = "animation"
ANIME = "anime"
AUDIO = "audio"
BOOK = "book"
COMIC = "comic"
GAME = "game"
OTHER = "other"

ALL_CATEGORIES = {FILM, SERIE, EMISSION, SPECTACLE, ANIMATION, ANIME, AUDIO, BOOK, COMIC, GAME, OTHER}

_ALIASES = {
    "jeuwindows": GAME,
    "jeu_windows": GAME,
    "jeu windows": GAME,
    "autre": OTHER,
    "series": SERIE,
    "movie": FILM,
}

_MEDIA_TYPES = {
    FILM: "movie",
    SPECTACLE: "movie",
    ANIMATION: "movie",
    SERIE: "series",
    EMISSION: "series",
    GAME: "game",
    ANIME: "anime",
    AUDIO: "audio",
    BOOK: "book",
    COMIC: "comic",
}


def parse_category(value):
    if not value:
        return OTHER
    key = str(value).strip().lower()
    if key in ALL_CATEGORIES:
        return key
    return _ALIASES.get(key, OTHER)


def to_media_type(category):
    return _MEDIA_TYPES.get(parse_category(category), "unknown")
