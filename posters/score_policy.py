"""Pure accept/reject and confidence rules shared by the fetch branches."""

from . import categories
from .categories import to_media_type
from .titles import count_significant_token_overlap

MAX_ATTEMPTS = 3
RETRY_DELAYS_SECONDS = (2.0, 5.0, 15.0)
JITTER_MS_RANGE = (200, 800)

TVMAZE_THRESHOLD = 0.55
TVMAZE_STRICT_THRESHOLD = 0.65
COMMON_TITLE_THRESHOLD = 0.75
TMDB_STRONG_THRESHOLD = 0.50
TMDB_AMBIGUOUS_THRESHOLD = 0.65
TMDB_WEAK_THRESHOLD = 0.25
AMBIGUOUS_NO_YEAR_OVERRIDE = 0.85
TITLE_KEY_MIN_CONFIDENCE = 0.80
TITLE_KEY_AMBIGUOUS_MIN_CONFIDENCE = 0.90

GAME_CONFIDENCE = 0.85
ANIME_CONFIDENCE = 0.70
AUDIO_CONFIDENCE = 0.65
GENERIC_CONFIDENCE = 0.65
TVMAZE_RECOVERY_FLOOR = 0.6
FANART_DEFAULT_CONFIDENCE = 0.5
CANDIDATE_LIMIT = 10


def _clamp(value, low, high):
    return max(low, min(high, value))


def should_retry(status_code):
    return status_code >= 500 or status_code in (408, 429, 0)


def backoff_delay(attempt, jitter_ms):
    index = _clamp(attempt - 1, 0, len(RETRY_DELAYS_SECONDS) - 1)
    return RETRY_DELAYS_SECONDS[index] + jitter_ms / 1000.0


def should_use_tvmaze(category, ambiguity):
    if category == categories.EMISSION:
        return (
            not ambiguity.is_ambiguous
            and not ambiguity.is_likely_channel_or_program
            and ambiguity.significant_token_count >= 2
        )
    if category == categories.SERIE:
        return not ambiguity.is_likely_channel_or_program and ambiguity.significant_token_count >= 2
    return False


def skip_tvmaze(category, ambiguity, year):
    if category == categories.EMISSION:
        return False
    if ambiguity.significant_token_count < 2:
        return True
    return ambiguity.is_common_title and year is None


def tvmaze_threshold(category, ambiguity):
    if ambiguity.is_ambiguous or category == categories.EMISSION:
        return TVMAZE_STRICT_THRESHOLD
    return TVMAZE_THRESHOLD


def is_tvmaze_match_acceptable(score, threshold, ambiguity, year, candidate_year):
    if score < threshold:
        return False
    if ambiguity.is_common_title:
        if year is None or candidate_year != year:
            return False
        return score >= COMMON_TITLE_THRESHOLD
    return True


def tmdb_strong_threshold(ambiguity):
    threshold = TMDB_AMBIGUOUS_THRESHOLD if ambiguity.is_ambiguous else TMDB_STRONG_THRESHOLD
    if ambiguity.is_common_title:
        threshold = max(threshold, COMMON_TITLE_THRESHOLD)
    return threshold


def allow_weak_match(ambiguity, year):
    return not ambiguity.is_ambiguous and not ambiguity.is_common_title and year is not None


def is_weak_match_acceptable(title, year, category, candidate, score):
    if score < TMDB_WEAK_THRESHOLD:
        return False
    if year is None or candidate.year is None or candidate.year != year:
        return False
    expected = to_media_type(category)
    if expected and expected != "unknown" and expected.lower() != (candidate.media_type or "").lower():
        return False
    return count_significant_token_overlap(title, candidate.title, candidate.original_title) > 0


def is_tmdb_match_acceptable(title, year, category, ambiguity, candidate, score, allow_weak, strong_threshold):
    if candidate is None or not candidate.tmdb_id or candidate.tmdb_id <= 0:
        return False
    if ambiguity.is_common_title:
        if year is None or candidate.year is None or candidate.year != year:
            return False
        if score < COMMON_TITLE_THRESHOLD:
            return False
    if ambiguity.is_ambiguous:
        if score < strong_threshold:
            return False
        if year is None:
            overlap = count_significant_token_overlap(title, candidate.title, candidate.original_title)
            if overlap < 2 and score < AMBIGUOUS_NO_YEAR_OVERRIDE:
                return False
    if score >= strong_threshold:
        return True
    return allow_weak and is_weak_match_acceptable(title, year, category, candidate, score)


def adjust_confidence(score, ambiguity, category):
    if ambiguity.is_ambiguous:
        score -= 0.1
    if category == categories.EMISSION:
        score -= 0.05
    return _clamp(score, 0.0, 1.0)


def reuse_confidence(ambiguity, ids):
    confidence = 0.55 if ambiguity.is_ambiguous else 0.75
    if ids is not None and ids.has_any():
        confidence += 0.1
    return _clamp(confidence, 0.0, 0.95)


def accept_title_key_fallback(entry, ambiguity, known_ids):
    """Gate for reusing a cache row matched by title only (no year known)."""
    if entry is None:
        return False
    overlap = known_ids is not None and entry.ids is not None and known_ids.overlaps(entry.ids)
    if not (entry.confidence >= TITLE_KEY_MIN_CONFIDENCE or overlap):
        return False
    if ambiguity.is_ambiguous and not (entry.confidence >= TITLE_KEY_AMBIGUOUS_MIN_CONFIDENCE or overlap):
        return False
    return True


def allow_same_title_reuse(ambiguity, media_type, year):
    if ambiguity.is_likely_channel_or_program:
        return False
    if year is None and media_type == "series" and ambiguity.significant_token_count < 4:
        return False
    if year is None and ambiguity.is_ambiguous:
        return False
    return True
