import logging
import time
from dataclasses import dataclass, field

import requests

from . import categories
from . import score_policy as policy
from .activity import ActivityLog
from .cancel import CancelToken
from .file_store import infer_extension_from_url, sanitize_for_file, sha256_hex, sniff_image_extension
from .match_cache import MatchCacheEntry, MatchIds, TitleKey, build_fingerprint
from .providers.http import ProviderError
from .scoring import rank_candidates, score_candidate, score_tvmaze_candidate
from .strategies import PosterMatchingOrchestrator
from .titles import clean_title, evaluate_ambiguity, extract_isbn, normalize_title, parse_audio_query, sanitize_game_query

_BEST_EFFORT_ERRORS = (ProviderError, requests.RequestException)


@dataclass(frozen=True)
class FetchResult:
    ok: bool
    status_code: int
    body: dict = field(default_factory=dict)
    source_id: int | None = None

    @property
    def error(self):
        return (self.body or {}).get("error")


@dataclass(frozen=True)
class RoutingContext:
    release: object
    title: str
    raw_title: str
    normalized_title: str
    year: int | None
    season: int | None
    episode: int | None
    category: str
    category_tag: str
    media_type: str
    known_ids: MatchIds
    ambiguity: object
    title_key: TitleKey
    fingerprint: str
    log_single: bool = True

    @property
    def release_id(self):
        return self.release.id

    @property
    def source_id(self):
        return self.release.source_id


def poster_url(release_id):
    return f"/api/posters/release/{release_id}"


def infer_igdb_size(cover_url):
    lower = (cover_url or "").lower()
    if "cover_big" in lower:
        return "cover_big"
    if "t_cover" in lower:
        return "cover"
    return None


def _positive(value):
    return value if value and value > 0 else None


def _unix_now():
    return int(time.time())


class PosterFetchService:
    """Resolves, downloads and records the poster of a single release."""

    def __init__(
        self,
        *,
        releases,
        match_cache,
        file_store,
        providers,
        orchestrator=None,
        activity=None,
        clock=None,
    ):
        self.releases = releases
        self.match_cache = match_cache
        self.file_store = file_store
        self.providers = providers
        self.orchestrator = orchestrator or PosterMatchingOrchestrator()
        self.activity = activity or ActivityLog()
        self._clock = clock or _unix_now

    # ------------------------------------------------------------------ entry

    def fetch_poster(self, release_id, cancel=None, log_single=True, skip_if_exists=True):
        cancel = cancel or CancelToken()
        cancel.check()
        release = self.releases.get_for_poster(release_id)
        if release is None:
            self.releases.update_poster_attempt_failure(release_id, None, None, None, None, "release not found")
            return FetchResult(False, 404, {"error": "release not found"}, None)

        if skip_if_exists and release.poster_file and self.file_store.exists(release.poster_file):
            self.releases.update_poster_attempt_success(
                release.id,
                release.poster_provider,
                release.poster_provider_id,
                release.poster_lang,
                release.poster_size,
                release.poster_hash,
            )
            return self._ok(release, release.poster_file, cached=True)

        title = clean_title(release.title_clean)
        if not title:
            self.releases.update_poster_attempt_failure(release.id, None, None, None, None, "title_clean missing")
            return FetchResult(False, 400, {"error": "title_clean missing (sync first?)"}, release.source_id)

        context = self.build_context(release, title, log_single)

        result = self._try_cache_reuse(context, cancel)
        if result is not None:
            return result

        result = self._try_same_title_reuse(context)
        if result is not None:
            return result

        cancel.check()
        return self.orchestrator.fetch_poster(self, context, cancel)

    def build_context(self, release, title, log_single=True):
        category_tag = str(release.unified_category or "").strip().lower()
        category = categories.parse_category(category_tag)
        media_type = release.media_type or categories.to_media_type(category)
        if category == categories.EMISSION:
            media_type = "series"
        normalized = normalize_title(title)
        ambiguity = evaluate_ambiguity(normalized, media_type, release.year)
        title_key = TitleKey(
            media_type=media_type,
            normalized_title=normalized,
            year=release.year,
            season=release.season,
            episode=release.episode,
        )
        return RoutingContext(
            release=release,
            title=title,
            raw_title=(release.title_clean or "").strip() or title,
            normalized_title=normalized,
            year=release.year,
            season=release.season,
            episode=release.episode,
            category=category,
            category_tag=category_tag,
            media_type=media_type,
            known_ids=MatchIds(tmdb_id=_positive(release.tmdb_id), tvdb_id=_positive(release.tvdb_id)),
            ambiguity=ambiguity,
            title_key=title_key,
            fingerprint=build_fingerprint(title_key),
            log_single=log_single,
        )

    # ---------------------------------------------------------------- helpers

    def _ok(self, release, poster_file, **extra):
        body = {
            "ok": True,
            "posterFile": poster_file,
            "posterUrl": poster_url(release.id),
        }
        body.update(extra)
        return FetchResult(True, 200, body, release.source_id)

    def _fail(self, context, status_code, reason, provider=None):
        self.releases.update_poster_attempt_failure(context.release_id, provider, None, None, None, reason)
        self.match_cache.record_error(context.fingerprint, reason)
        self._log(context, "warning", "Poster fetch failed", {"reason": reason, "provider": provider})
        return FetchResult(False, status_code, {"error": reason}, context.source_id)

    def _log(self, context, level, message, data=None):
        if not context.log_single:
            return
        payload = {
            "releaseId": context.release_id,
            "title": context.title,
            "year": context.year,
            "mediaType": context.media_type,
        }
        payload.update(data or {})
        self.activity.add(context.source_id, level, "poster_fetch", message, payload)

    def _write_poster(self, file_name, data, cancel):
        cancel.check()
        self.file_store.write(file_name, data)
        return sha256_hex(data)

    def _resolve_tmdb_from_tvdb(self, tvdb_id, cancel):
        tmdb = self.providers.tmdb
        if not tvdb_id or not tmdb.enabled:
            return None
        try:
            return tmdb.get_tv_tmdb_id_by_tvdb_id(tvdb_id, cancel)
        except _BEST_EFFORT_ERRORS as exc:
            logging.warning("TMDB lookup by tvdb id %s failed: %s", tvdb_id, exc)
            return None

    def _extension_for(self, data, url, fallback=".jpg"):
        return sniff_image_extension(data) or infer_extension_from_url(url, fallback)

    def _remember(
        self,
        context,
        *,
        ids,
        confidence,
        match_source,
        poster_file=None,
        provider=None,
        provider_id=None,
        lang=None,
        size=None,
    ):
        now = self._clock()
        self.match_cache.upsert(
            MatchCacheEntry(
                fingerprint=context.fingerprint,
                media_type=context.media_type,
                normalized_title=context.normalized_title,
                year=context.year,
                season=context.season,
                episode=context.episode,
                ids=ids,
                confidence=confidence,
                match_source=match_source,
                poster_file=poster_file,
                poster_provider=provider,
                poster_provider_id=provider_id,
                poster_lang=lang,
                poster_size=size,
                created_ts=now,
                last_seen_ts=now,
                last_attempt_ts=now,
                last_error=None,
            )
        )

    def _finish_success(
        self,
        context,
        *,
        poster_file,
        poster_hash,
        provider,
        provider_id,
        size,
        confidence,
        match_source=None,
        ids=None,
        lang=None,
        **extra,
    ):
        self.releases.update_poster_attempt_success(
            context.release_id, provider, provider_id, lang, size, poster_hash
        )
        self._remember(
            context,
            ids=ids,
            confidence=confidence,
            match_source=match_source or provider,
            poster_file=poster_file,
            provider=provider,
            provider_id=provider_id,
            lang=lang,
            size=size,
        )
        self._log(
            context,
            "info",
            "Poster fetched",
            {"provider": provider, "providerId": provider_id, "posterFile": poster_file},
        )
        return self._ok(context.release, poster_file, provider=provider, **extra)

    # ------------------------------------------------------------ reuse paths

    def _try_cache_reuse(self, context, cancel):
        entry = self.match_cache.try_get(context.fingerprint)
        if entry is None and context.year is None:
            candidate = self.match_cache.try_get_by_title_key(context.media_type, context.normalized_title, None)
            if policy.accept_title_key_fallback(candidate, context.ambiguity, context.known_ids):
                entry = candidate
        if entry is None:
            return None

        self.match_cache.touch_seen(entry.fingerprint)
        ids = entry.ids or MatchIds()
        if entry.poster_file and self.file_store.exists(entry.poster_file):
            tmdb_id = ids.tmdb_id
            if not tmdb_id and context.media_type == "series":
                tmdb_id = self._resolve_tmdb_from_tvdb(ids.tvdb_id, cancel)
            self.releases.save_poster(context.release_id, tmdb_id, None, entry.poster_file)
            self.releases.save_tmdb_id(context.release_id, tmdb_id)
            self.releases.save_tvdb_id(context.release_id, ids.tvdb_id)
            data = self.file_store.read_bytes(entry.poster_file)
            self.releases.update_poster_attempt_success(
                context.release_id,
                entry.poster_provider or entry.match_source,
                entry.poster_provider_id,
                entry.poster_lang,
                entry.poster_size,
                sha256_hex(data) if data else None,
            )
            self._log(context, "info", "Poster reused from match cache", {"fingerprint": entry.fingerprint})
            return self._ok(context.release, entry.poster_file, cached=True, matchSource=entry.match_source)

        self.match_cache.record_error(entry.fingerprint, "cached poster missing")
        tvmaze = self.providers.tvmaze
        if ids.tvmaze_id and tvmaze.enabled:
            self.match_cache.record_attempt(entry.fingerprint)
            show = tvmaze.get_show(ids.tvmaze_id, cancel)
            if show is not None:
                confidence = policy.adjust_confidence(
                    max(entry.confidence, policy.TVMAZE_RECOVERY_FLOOR), context.ambiguity, context.category
                )
                return self._persist_tvmaze_show(context, show, confidence, cancel, extra_ids=ids)
        return None

    def _try_same_title_reuse(self, context):
        if not policy.allow_same_title_reuse(context.ambiguity, context.media_type, context.year):
            return None
        # Matched against the stored title_clean, so accents must be kept.
        other = self.releases.get_poster_for_title_clean(
            context.release_id,
            context.raw_title,
            context.normalized_title,
            context.media_type,
            context.year,
        )
        if other is None or not self.file_store.exists(other.poster_file):
            return None
        other_ids = MatchIds(tmdb_id=_positive(other.tmdb_id), tvdb_id=_positive(other.tvdb_id))
        if context.ambiguity.is_ambiguous and not context.known_ids.overlaps(other_ids):
            self._log(context, "info", "Same-title reuse rejected", {"candidateReleaseId": other.id})
            return None

        self.releases.save_poster(context.release_id, other_ids.tmdb_id, other.poster_path, other.poster_file)
        if other.ext_overview:
            self.releases.update_external_details(
                context.release_id,
                other.ext_provider or other.poster_provider or "reuse",
                other.ext_provider_id or other.poster_provider_id or str(other.id),
                title=other.ext_title,
                overview=other.ext_overview,
                tagline=other.ext_tagline,
                genres=other.ext_genres,
                release_date=other.ext_release_date,
                runtime_minutes=other.ext_runtime_minutes,
                rating=other.ext_rating,
                votes=other.ext_votes,
                directors=other.ext_directors,
                writers=other.ext_writers,
                cast=other.ext_cast,
            )
        poster_hash = other.poster_hash
        if not poster_hash:
            data = self.file_store.read_bytes(other.poster_file)
            poster_hash = sha256_hex(data) if data else None
        self.releases.update_poster_attempt_success(
            context.release_id,
            other.poster_provider,
            other.poster_provider_id,
            other.poster_lang,
            other.poster_size,
            poster_hash,
        )
        self.releases.save_tvdb_id(context.release_id, other_ids.tvdb_id)
        ids = context.known_ids.merge(other_ids)
        self._remember(
            context,
            ids=ids,
            confidence=policy.reuse_confidence(context.ambiguity, ids),
            match_source="reuse",
            poster_file=other.poster_file,
            provider=other.poster_provider,
            provider_id=other.poster_provider_id,
            lang=other.poster_lang,
            size=other.poster_size,
        )
        self._log(context, "info", "Poster reused from release", {"fromReleaseId": other.id})
        return self._ok(context.release, other.poster_file, reused=True, fromReleaseId=other.id)

    # ---------------------------------------------------------- video branch

    def fetch_video_branch(self, context, cancel):
        if context.category == categories.GAME:
            return self.fetch_game_branch(context, cancel)

        tvmaze = self.providers.tvmaze
        use_tvmaze = context.category == categories.EMISSION or policy.should_use_tvmaze(
            context.category, context.ambiguity
        )
        if tvmaze.enabled and context.media_type == "series" and use_tvmaze:
            result = self._fetch_from_tvmaze(context, cancel)
            if result is not None:
                return result
            self._log(context, "info", "fallbackUsed", {"from": "tvmaze", "to": "tmdb"})
        return self._fetch_from_tmdb(context, cancel)

    def _fetch_from_tvmaze(self, context, cancel):
        if policy.skip_tvmaze(context.category, context.ambiguity, context.year):
            return None
        shows = self.providers.tvmaze.search_shows(context.title, cancel)
        scored = rank_candidates(
            [
                (show, score_tvmaze_candidate(context.title, context.year, context.category, show, context.known_ids))
                for show in shows
            ],
            context.year,
        )
        if not scored:
            return None
        best, score = scored[0]
        threshold = policy.tvmaze_threshold(context.category, context.ambiguity)
        if not policy.is_tvmaze_match_acceptable(score, threshold, context.ambiguity, context.year, best.premiered_year):
            self._log(context, "info", "TVmaze candidate rejected", {"score": round(score, 3), "threshold": threshold})
            return None
        confidence = policy.adjust_confidence(score, context.ambiguity, context.category)
        return self._persist_tvmaze_show(context, best, confidence, cancel)

    def _persist_tvmaze_show(self, context, show, confidence, cancel, extra_ids=None):
        image_url = show.image_original or show.image_medium
        if not image_url:
            return None
        data = self.providers.tvmaze.download_image(image_url, cancel)
        if not data:
            return None
        size = "original" if image_url == show.image_original else "medium"
        poster_file = f"tvmaze-{show.id}-{size}{infer_extension_from_url(image_url, '.jpg')}"
        poster_hash = self._write_poster(poster_file, data, cancel)

        tvdb_id = show.tvdb_id or context.known_ids.tvdb_id or (extra_ids.tvdb_id if extra_ids else None)
        tmdb_id = context.known_ids.tmdb_id or (extra_ids.tmdb_id if extra_ids else None)
        if not tmdb_id:
            tmdb_id = self._resolve_tmdb_from_tvdb(tvdb_id, cancel)

        self.releases.save_poster(context.release_id, tmdb_id, image_url, poster_file)
        self.releases.save_tvdb_id(context.release_id, tvdb_id)
        self.releases.save_tmdb_id(context.release_id, tmdb_id)
        ids = MatchIds(tmdb_id=tmdb_id, tvdb_id=tvdb_id, tvmaze_id=show.id, imdb_id=show.imdb_id).merge(extra_ids)
        return self._finish_success(
            context,
            poster_file=poster_file,
            poster_hash=poster_hash,
            provider="tvmaze",
            provider_id=str(show.id),
            size=size,
            confidence=confidence,
            ids=ids,
        )

    def _collect_tmdb_candidates(self, context, cancel):
        tmdb = self.providers.tmdb
        if context.category == categories.EMISSION:
            searches = [tmdb.search_tv_list]
        elif context.media_type == "series":
            searches = [tmdb.search_tv_list, tmdb.search_movie_list]
        else:
            searches = [tmdb.search_movie_list, tmdb.search_tv_list]
        candidates = []
        seen = set()
        for search in searches:
            years = [context.year, None] if context.year is not None else [None]
            for year in years:
                for candidate in search(context.title, year, cancel, policy.CANDIDATE_LIMIT):
                    if candidate.tmdb_id <= 0 or candidate.tmdb_id in seen:
                        continue
                    seen.add(candidate.tmdb_id)
                    candidates.append(candidate)
        return candidates

    def _fetch_from_tmdb(self, context, cancel):
        tmdb = self.providers.tmdb
        scored_any = rank_candidates(
            [
                (
                    candidate,
                    score_candidate(
                        context.title,
                        context.year,
                        context.category,
                        candidate.title,
                        candidate.original_title,
                        candidate.year,
                        candidate.media_type,
                    ),
                )
                for candidate in self._collect_tmdb_candidates(context, cancel)
            ],
            context.year,
        )
        scored_poster = [item for item in scored_any if item[0].poster_path]
        strong = policy.tmdb_strong_threshold(context.ambiguity)
        allow_weak = policy.allow_weak_match(context.ambiguity, context.year)

        def _acceptable(item):
            candidate, score = item
            return policy.is_tmdb_match_acceptable(
                context.title, context.year, context.category, context.ambiguity, candidate, score, allow_weak, strong
            )

        poster_match = scored_poster[0] if scored_poster and _acceptable(scored_poster[0]) else None
        ids_match = scored_any[0] if scored_any and _acceptable(scored_any[0]) else None
        self._log(
            context,
            "info",
            "providerAttempted",
            {
                "provider": "tmdb",
                "threshold": strong,
                "totalCandidates": len(scored_any),
                "bestScore": round(scored_any[0][1], 3) if scored_any else None,
            },
        )

        tvdb_id = context.known_ids.tvdb_id
        if context.media_type == "series" and ids_match is not None and not tvdb_id:
            tvdb_id = tmdb.get_tvdb_id(ids_match[0].tmdb_id, cancel)
            if tvdb_id:
                self.releases.save_tvdb_id(context.release_id, tvdb_id)

        if poster_match is not None:
            result = self._save_tmdb_match(context, poster_match, tvdb_id, cancel)
            if result is not None:
                return result

        ids_score = None
        if ids_match is not None:
            candidate, ids_score = ids_match
            self._remember(
                context,
                ids=MatchIds(tmdb_id=candidate.tmdb_id, tvdb_id=tvdb_id),
                confidence=policy.adjust_confidence(ids_score, context.ambiguity, context.category),
                match_source="tmdb",
            )
        return self._fetch_from_fanart(context, ids_match, tvdb_id, ids_score, cancel)

    def _save_tmdb_match(self, context, match, tvdb_id, cancel):
        candidate, score = match
        tmdb = self.providers.tmdb
        poster_path = candidate.poster_path
        try:
            poster_path = tmdb.get_preferred_poster_path(candidate.tmdb_id, candidate.media_type, cancel) or poster_path
        except _BEST_EFFORT_ERRORS:
            logging.warning("TMDB images lookup failed for %s; using search poster", candidate.tmdb_id)
        data = tmdb.download_poster_w500(poster_path, cancel)
        if not data:
            return None
        poster_file = f"tmdb-{candidate.tmdb_id}-w500.jpg"
        poster_hash = self._write_poster(poster_file, data, cancel)
        self.releases.save_poster(context.release_id, candidate.tmdb_id, poster_path, poster_file)
        self._update_details_from_tmdb(context, candidate.tmdb_id, candidate.media_type, cancel)
        return self._finish_success(
            context,
            poster_file=poster_file,
            poster_hash=poster_hash,
            provider="tmdb",
            provider_id=str(candidate.tmdb_id),
            size="w500",
            confidence=policy.adjust_confidence(score, context.ambiguity, context.category),
            ids=MatchIds(tmdb_id=candidate.tmdb_id, tvdb_id=tvdb_id),
        )

    def _update_details_from_tmdb(self, context, tmdb_id, media_type, cancel):
        try:
            details = self.providers.tmdb.get_details(tmdb_id, media_type, cancel)
        except _BEST_EFFORT_ERRORS:
            logging.warning("TMDB details lookup failed for %s", tmdb_id)
            return
        if details is None:
            return
        self.releases.update_external_details(
            context.release_id,
            "tmdb",
            str(tmdb_id),
            title=details.title,
            overview=details.overview,
            tagline=details.tagline,
            genres=details.genres,
            release_date=details.release_date,
            runtime_minutes=details.runtime_minutes,
            rating=details.rating,
            votes=details.votes,
        )

    def _fetch_from_fanart(self, context, ids_match, tvdb_id, ids_score, cancel):
        tmdb = self.providers.tmdb
        candidate = ids_match[0] if ids_match else None
        tmdb_id = candidate.tmdb_id if candidate else context.known_ids.tmdb_id
        is_series = context.media_type == "series"
        if is_series and not tvdb_id and tmdb_id:
            tvdb_id = tmdb.get_tvdb_id(tmdb_id, cancel)
            if tvdb_id:
                self.releases.save_tvdb_id(context.release_id, tvdb_id)
        if not tmdb_id:
            return self._fail(context, 404, "no tmdb match", "tmdb")
        if is_series and not tvdb_id:
            return self._fail(context, 404, "missing tvdb id", "fanart")

        fanart = self.providers.fanart
        if is_series:
            url = fanart.get_tv_poster_url(tvdb_id, None, cancel)
        else:
            url = fanart.get_movie_poster_url(tmdb_id, candidate.original_language if candidate else None, cancel)
        if not url:
            return self._fail(context, 404, "no fanart match", "fanart")
        data = fanart.download_image(url, cancel)
        if not data:
            return self._fail(context, 502, "fanart poster download failed", "fanart")

        poster_file = f"fanart-{tmdb_id}{self._extension_for(data, url)}"
        poster_hash = self._write_poster(poster_file, data, cancel)
        self.releases.save_poster(context.release_id, tmdb_id, url, poster_file)
        self.releases.save_tmdb_id(context.release_id, tmdb_id)
        self._update_details_from_tmdb(
            context, tmdb_id, candidate.media_type if candidate else context.media_type, cancel
        )
        provider_id = str(tvdb_id if is_series else tmdb_id)
        base = ids_score if ids_score is not None else policy.FANART_DEFAULT_CONFIDENCE
        return self._finish_success(
            context,
            poster_file=poster_file,
            poster_hash=poster_hash,
            provider="fanart",
            provider_id=provider_id,
            size="original",
            confidence=policy.adjust_confidence(base, context.ambiguity, context.category),
            ids=MatchIds(tmdb_id=tmdb_id, tvdb_id=tvdb_id),
        )

    # ----------------------------------------------------------- other branches

    def fetch_game_branch(self, context, cancel):
        igdb = self.providers.igdb
        game = igdb.search_game(sanitize_game_query(context.title), context.year, cancel=cancel)
        if game is None or not game.cover_url:
            return self._fail(context, 404, "no igdb match", "igdb")
        data = igdb.download_image(game.cover_url, cancel)
        if not data:
            return self._fail(context, 502, "igdb cover download failed", "igdb")
        poster_file = f"igdb-{game.id}-cover.jpg"
        poster_hash = self._write_poster(poster_file, data, cancel)
        self.releases.save_poster(context.release_id, None, game.cover_url, poster_file)
        self._update_details_from_game(context.release_id, game)
        return self._finish_success(
            context,
            poster_file=poster_file,
            poster_hash=poster_hash,
            provider="igdb",
            provider_id=str(game.id),
            size=infer_igdb_size(game.cover_url),
            confidence=policy.GAME_CONFIDENCE,
            ids=MatchIds(igdb_id=game.id),
        )

    def _update_details_from_game(self, release_id, game):
        self.releases.update_external_details(
            release_id,
            "igdb",
            str(game.id),
            title=game.name,
            overview=game.summary,
            genres=game.genres,
            release_date=f"{game.year}-01-01" if game.year else None,
            rating=game.rating,
        )

    def fetch_anime_branch(self, context, cancel):
        jikan = self.providers.jikan
        anime = jikan.search_anime(context.title, context.year, cancel=cancel)
        if anime is None:
            return self._fail(context, 404, "no jikan match", "jikan")
        if not anime.image_url:
            return self._fail(context, 404, "missing jikan image", "jikan")
        data = jikan.download_image(anime.image_url, cancel)
        if not data:
            return self._fail(context, 502, "jikan image download failed", "jikan")
        poster_file = f"jikan-{anime.mal_id}{self._extension_for(data, anime.image_url)}"
        poster_hash = self._write_poster(poster_file, data, cancel)
        self.releases.save_poster(context.release_id, None, anime.image_url, poster_file)
        self.releases.update_external_details(
            context.release_id,
            "jikan",
            str(anime.mal_id),
            title=anime.title,
            overview=anime.synopsis,
            genres=anime.genres,
            release_date=f"{anime.year}-01-01" if anime.year else None,
            rating=anime.score,
        )
        return self._finish_success(
            context,
            poster_file=poster_file,
            poster_hash=poster_hash,
            provider="jikan",
            provider_id=str(anime.mal_id),
            size="original",
            confidence=policy.ANIME_CONFIDENCE,
        )

    def fetch_audio_branch(self, context, cancel):
        audiodb = self.providers.theaudiodb
        artist, title = parse_audio_query(context.title)
        result = audiodb.search(artist, title, context.year, cancel=cancel)
        if result is None:
            return self._fail(context, 404, "no theaudiodb match", "theaudiodb")
        if not result.image_url:
            return self._fail(context, 404, "missing theaudiodb image", "theaudiodb")
        data = audiodb.download_image(result.image_url, cancel)
        if not data:
            return self._fail(context, 502, "theaudiodb image download failed", "theaudiodb")
        poster_file = f"theaudiodb-{sanitize_for_file(result.id)}{self._extension_for(data, result.image_url)}"
        poster_hash = self._write_poster(poster_file, data, cancel)
        self.releases.save_poster(context.release_id, None, result.image_url, poster_file)
        self.releases.update_external_details(
            context.release_id,
            "theaudiodb",
            result.id,
            title=result.title,
            genres=result.genre,
            release_date=f"{result.year}-01-01" if result.year else None,
        )
        return self._finish_success(
            context,
            poster_file=poster_file,
            poster_hash=poster_hash,
            provider="theaudiodb",
            provider_id=result.id,
            size="original",
            confidence=policy.AUDIO_CONFIDENCE,
        )

    def fetch_generic_branch(self, context, cancel):
        if context.category == categories.BOOK:
            return self._fetch_book(context, cancel)
        if context.category == categories.COMIC:
            return self._fetch_comic(context, cancel)
        return self._fail(context, 400, "unsupported generic category")

    def _fetch_book(self, context, cancel):
        books = self.providers.googlebooks
        isbn = extract_isbn(context.title)
        book = books.search(context.title, isbn, cancel=cancel)
        if book is None:
            return self._fail(context, 404, "no google books match", "googlebooks")
        if not book.thumbnail_url:
            return self._fail(context, 404, "missing google books image", "googlebooks")
        data = books.download_image(book.thumbnail_url, cancel)
        if not data:
            return self._fail(context, 502, "google books image download failed", "googlebooks")
        extension = self._extension_for(data, book.thumbnail_url)
        poster_file = f"googlebooks-{sanitize_for_file(book.volume_id)}{extension}"
        poster_hash = self._write_poster(poster_file, data, cancel)
        self.releases.save_poster(context.release_id, None, book.thumbnail_url, poster_file)
        self.releases.update_external_details(
            context.release_id,
            "googlebooks",
            book.volume_id,
            title=book.title or None,
            overview=book.description,
            release_date=book.published_date,
            writers=book.authors,
        )
        return self._finish_success(
            context,
            poster_file=poster_file,
            poster_hash=poster_hash,
            provider="googlebooks",
            provider_id=book.volume_id,
            size="thumb",
            confidence=policy.GENERIC_CONFIDENCE,
            isbn=isbn,
        )

    def _fetch_comic(self, context, cancel):
        comicvine = self.providers.comicvine
        comic = comicvine.search(context.title, context.year, cancel=cancel)
        if comic is None:
            return self._fail(context, 404, "no comic vine match", "comicvine")
        if not comic.image_url:
            return self._fail(context, 404, "missing comic vine image", "comicvine")
        data = comicvine.download_image(comic.image_url, cancel)
        if not data:
            return self._fail(context, 502, "comic vine image download failed", "comicvine")
        poster_file = f"comicvine-{comic.id}{self._extension_for(data, comic.image_url)}"
        poster_hash = self._write_poster(poster_file, data, cancel)
        self.releases.save_poster(context.release_id, None, comic.image_url, poster_file)
        self.releases.update_external_details(
            context.release_id,
            "comicvine",
            str(comic.id),
            title=comic.name,
            overview=comic.description,
            release_date=f"{comic.year}-01-01" if comic.year else None,
        )
        return self._finish_success(
            context,
            poster_file=poster_file,
            poster_hash=poster_hash,
            provider="comicvine",
            provider_id=str(comic.id),
            size="original",
            confidence=policy.GENERIC_CONFIDENCE,
        )

    # ------------------------------------------------------ manual and cache

    def _save_manual(self, release_id, *, provider, provider_id, file_name, source_path, data, size, tmdb_id=None):
        self.file_store.write(file_name, data)
        self.releases.save_poster(release_id, tmdb_id, source_path, file_name)
        self.releases.update_poster_attempt_success(release_id, provider, provider_id, None, size, sha256_hex(data))
        self.activity.add(
            None,
            "info",
            "poster_fetch",
            f"Poster set manually ({provider})",
            {"releaseId": release_id, "providerId": provider_id, "posterFile": file_name},
        )
        return f"{poster_url(release_id)}?v={self._clock()}"

    def save_manual_tmdb_poster(self, release_id, tmdb_id, poster_path, cancel=None):
        if not tmdb_id or tmdb_id <= 0 or not poster_path:
            return None
        data = self.providers.tmdb.download_poster_w500(poster_path, cancel)
        if not data:
            return None
        extension = infer_extension_from_url(f"https://image.tmdb.org{poster_path}", ".jpg")
        url = self._save_manual(
            release_id,
            provider="tmdb",
            provider_id=str(tmdb_id),
            file_name=f"tmdb-{tmdb_id}-manual{extension}",
            source_path=poster_path,
            data=data,
            size="w500",
            tmdb_id=tmdb_id,
        )
        release = self.releases.get_for_poster(release_id)
        if release is not None:
            try:
                details = self.providers.tmdb.get_details(tmdb_id, release.media_type or "movie", cancel)
            except _BEST_EFFORT_ERRORS:
                details = None
                logging.warning("TMDB details lookup failed for %s", tmdb_id)
            if details is not None:
                self.releases.update_external_details(
                    release_id,
                    "tmdb",
                    str(tmdb_id),
                    title=details.title,
                    overview=details.overview,
                    tagline=details.tagline,
                    genres=details.genres,
                    release_date=details.release_date,
                    runtime_minutes=details.runtime_minutes,
                    rating=details.rating,
                    votes=details.votes,
                )
        return url

    def save_manual_igdb_poster(self, release_id, igdb_id, cover_url, cancel=None):
        if not igdb_id or igdb_id <= 0 or not cover_url:
            return None
        igdb = self.providers.igdb
        data = igdb.download_image(cover_url, cancel)
        if not data:
            return None
        url = self._save_manual(
            release_id,
            provider="igdb",
            provider_id=str(igdb_id),
            file_name=f"igdb-{igdb_id}-manual.jpg",
            source_path=cover_url,
            data=data,
            size=infer_igdb_size(cover_url),
        )
        try:
            game = igdb.get_game(igdb_id, cancel)
        except _BEST_EFFORT_ERRORS:
            game = None
            logging.warning("IGDB details lookup failed for %s", igdb_id)
        if game is not None:
            self._update_details_from_game(release_id, game)
        return url

    def save_manual_theaudiodb_poster(self, release_id, provider_id, poster_url_value, cancel=None):
        if not poster_url_value:
            return None
        data = self.providers.theaudiodb.download_image(poster_url_value, cancel)
        if not data:
            return None
        normalized_id = sanitize_for_file(provider_id)
        return self._save_manual(
            release_id,
            provider="theaudiodb",
            provider_id=(provider_id or "").strip() or normalized_id,
            file_name=f"theaudiodb-{normalized_id}-manual{infer_extension_from_url(poster_url_value, '.jpg')}",
            source_path=poster_url_value,
            data=data,
            size="original",
        )

    def local_poster_count(self):
        return self.file_store.count()

    def clear_poster_cache(self):
        cleared = self.file_store.clear()
        self.releases.clear_all_poster_references()
        self.match_cache.clear()
        logging.info("Poster cache cleared (%s files)", cleared)
        return cleared
