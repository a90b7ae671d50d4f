from rapidfuzz.distance import JaroWinkler

from .categories import to_media_type
from .titles import evaluate_ambiguity, normalize_title, significant_tokens

_YEAR_EXACT_BONUS = 0.12
_YEAR_NEAR_BONUS = 0.05
_YEAR_MISMATCH_PENALTY = -0.12
_MEDIA_TYPE_DELTA = 0.08
_COMMON_WITH_YEAR_PENALTY = 0.08
_COMMON_NO_YEAR_PENALTY = 0.2
_CHANNEL_PENALTY = 0.35
_FEW_TOKENS_PENALTY = 0.05
_CONTAINMENT_FLOOR = 0.75
_TVMAZE_ID_BONUS = 0.15


def clamp01(value):
    if value < 0:
        return 0.0
    if value > 1:
        return 1.0
    return float(value)


def _split_packed_uppercase(normalized, raw):
    if not normalized or not raw or not raw.strip():
        return None
    if " " in normalized:
        return None
    trimmed = raw.strip()
    if len(trimmed) < 4 or len(trimmed) > 6 or " " in trimmed:
        return None
    if not (trimmed.isalpha() and trimmed.isupper()):
        return None
    if len(normalized) < 4:
        return None
    return f"{normalized[:-1]} {normalized[-1]}"


def title_similarity(a, b, raw_a=None, raw_b=None):
    if not a or not b or not a.strip() or not b.strip():
        return 0.0
    if a == b:
        return 1.0
    tokens_a = a.split()
    tokens_b = b.split()
    if not tokens_a or not tokens_b:
        return 0.0

    set_a = set(tokens_a)
    set_b = set(tokens_b)
    score = (2.0 * len(set_a & set_b)) / (len(set_a) + len(set_b))

    compact_a = "".join(tokens_a)
    compact_b = "".join(tokens_b)
    if score < 0.5 and (compact_b in compact_a or compact_a in compact_b):
        score = max(score, _CONTAINMENT_FLOOR)

    if 0.35 <= score <= 0.65 or len(significant_tokens(a)) <= 3 or len(significant_tokens(b)) <= 3:
        score = max(score, JaroWinkler.similarity(compact_a, compact_b))

    split_a = _split_packed_uppercase(a, raw_a)
    if split_a:
        score = max(score, title_similarity(split_a, b))
    split_b = _split_packed_uppercase(b, raw_b)
    if split_b:
        score = max(score, title_similarity(a, split_b))
    return score


def score_candidate(
    query_title,
    query_year,
    query_category,
    candidate_title,
    candidate_original_title,
    candidate_year,
    candidate_media_type,
):
    norm_query = normalize_title(query_title)
    title_score = max(
        title_similarity(norm_query, normalize_title(candidate_title), query_title, candidate_title),
        title_similarity(
            norm_query,
            normalize_title(candidate_original_title),
            query_title,
            candidate_original_title,
        ),
    )
    score = title_score

    if query_year is not None and candidate_year is not None:
        diff = abs(int(query_year) - int(candidate_year))
        if diff == 0:
            score += _YEAR_EXACT_BONUS
        elif diff == 1:
            score += _YEAR_NEAR_BONUS
        else:
            score += _YEAR_MISMATCH_PENALTY

    expected_media_type = to_media_type(query_category) if query_category else None
    if expected_media_type and expected_media_type != "unknown" and candidate_media_type:
        if expected_media_type.lower() == candidate_media_type.lower():
            score += _MEDIA_TYPE_DELTA
        else:
            score -= _MEDIA_TYPE_DELTA

    ambiguity = evaluate_ambiguity(norm_query, expected_media_type or candidate_media_type, query_year)
    if ambiguity.is_common_title:
        score -= _COMMON_WITH_YEAR_PENALTY if query_year is not None else _COMMON_NO_YEAR_PENALTY
    if ambiguity.is_likely_channel_or_program:
        score -= _CHANNEL_PENALTY
    if ambiguity.significant_token_count <= 1:
        score -= _FEW_TOKENS_PENALTY
    return clamp01(score)


def score_tvmaze_candidate(query_title, query_year, query_category, show, known_ids):
    score = score_candidate(
        query_title,
        query_year,
        query_category,
        show.name,
        None,
        show.premiered_year,
        "series",
    )
    if known_ids is not None:
        bonus = 0.0
        if show.tvdb_id and known_ids.tvdb_id and show.tvdb_id == known_ids.tvdb_id:
            bonus = _TVMAZE_ID_BONUS
        if show.imdb_id and known_ids.imdb_id and show.imdb_id.strip().lower() == known_ids.imdb_id.strip().lower():
            bonus = max(bonus, _TVMAZE_ID_BONUS)
        score += bonus
    return clamp01(score)


def rank_candidates(scored, query_year):
    """Sort (candidate, score) pairs by score, then exact year match, best first."""
    def _key(item):
        candidate, score = item
        year = getattr(candidate, "year", None)
        if year is None:
            year = getattr(candidate, "premiered_year", None)
        year_match = 1 if query_year is not None and year == query_year else 0
        return (score, year_match)

    return sorted(scored, key=_key, reverse=True)
