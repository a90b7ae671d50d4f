import logging

from . import categories


def fetch_game(core, context, cancel):
    return core.fetch_game_branch(context, cancel)


def fetch_anime(core, context, cancel):
    return core.fetch_anime_branch(context, cancel)


def fetch_audio(core, context, cancel):
    return core.fetch_audio_branch(context, cancel)


def fetch_generic(core, context, cancel):
    return core.fetch_generic_branch(context, cancel)


def fetch_video(core, context, cancel):
    return core.fetch_video_branch(context, cancel)


DEFAULT_STRATEGIES = {
    categories.GAME: fetch_game,
    categories.ANIME: fetch_anime,
    categories.AUDIO: fetch_audio,
    categories.BOOK: fetch_generic,
    categories.COMIC: fetch_generic,
}


class PosterMatchingOrchestrator:
    """Routes a fetch to the strategy registered for the release category.

    Unregistered categories (film, series, shows, other) use the video strategy.
    """

    def __init__(self, strategies=None, default_strategy=fetch_video):
        self._strategies = dict(DEFAULT_STRATEGIES)
        if strategies:
            self._strategies.update(strategies)
        self._default = default_strategy

    def register(self, category, strategy):
        if not callable(strategy):
            raise ValueError("strategy must be callable")
        tag = str(category or "").strip().lower()
        if not tag:
            raise ValueError("category is required")
        self._strategies[tag] = strategy
        logging.info("Poster strategy registered for category %s", tag)

    def resolve(self, category):
        tag = str(category or "").strip().lower()
        if tag in self._strategies:
            return self._strategies[tag]
        return self._strategies.get(categories.parse_category(tag), self._default)

    def fetch_poster(self, core, context, cancel):
        return self.resolve(context.category_tag or context.category)(core, context, cancel)
