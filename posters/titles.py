import re
import unicodedata
from dataclasses import dataclass

_BRACKET_RE = re.compile(r"\[[^\]]*\]")
_PARENS_RE = re.compile(r"\([^\)]*\)")
_SEASON_EPISODE_RE = re.compile(r"\bS\d{1,2}E\d{1,3}\b", re.IGNORECASE)
_ALT_SEASON_EPISODE_RE = re.compile(r"\b\d{1,2}x\d{1,3}\b")
_SEASON_ONLY_RE = re.compile(r"\bS\d{1,2}\b|\b(season|saison)\s*\d{1,2}\b", re.IGNORECASE)
_YEAR_RE = re.compile(r"\b(19\d{2}|20\d{2})\b")
_TAGS_RE = re.compile(
    r"\b(2160p|1080p|720p|480p|4k|8k|hdr10|hdr|dv|dovi|x264|x265|h\.?264|h\.?265|hevc|av1|xvid|divx"
    r"|aac|dts|truehd|atmos|webrip|web[- .]?dl|bluray|bdrip|brrip|dvdrip|hdtv|remux|proper|repack"
    r"|extended|uncut|limited|complete|collection|pack)\b",
    re.IGNORECASE,
)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")
_ISBN_RE = re.compile(r"\b(?:97[89]\d{10}|\d{9}[\dXx])\b")

_AUDIO_SEPARATORS = (" - ", " – ", " — ", " | ", " : ")

_STOP_WORDS = frozenset(
    # English
    "the and with from into over under without of to in on for by a an is it its at as be but or not "
    "this that was are "
    # French
    "le la les des du de au aux un une et ou en sur dans ce cette ces son sa ses mon ma mes ton ta tes "
    "leur leurs qui que quoi dont avec pour par sans sous vers chez entre comme mais donc car ni ne pas "
    "plus moins tres bien tout tous "
    # German
    "der die das den dem des ein eine einer eines einem einen und oder aber doch wenn weil dass ob als "
    "wie wo was wer mit von zu bei nach vor aus um auf an im am ist sind war waren hat haben wird "
    "werden kann konnen nicht auch noch nur schon sehr mehr viel alle alles "
    # Spanish
    "el los lo las unos unas y o pero sino porque cual quien donde cuando como con sin para por sobre "
    "del al se su sus mi mis tu tus es son esta este esto eso ese no si muy mas menos todo todos nada "
    # Italian
    "il gli i uno ed ma che chi cui dove per tra fra di da della dei delle nel nella non molto poco "
    "tutto tutti questo quello "
    # Portuguese
    "os um uma uns umas ao aos do dos da das nas em sem ate desde contra eu ele ela nos vos eles elas "
    "meu minha seu sua nao sim muito pouco bem mal".split()
)

_COMMON_TITLES = {"ca", "red", "mama"}
_CHANNEL_TOKENS = {
    "tf1", "m6", "c8", "w9", "tfx", "gulli", "nrj12", "nrj",
    "france2", "france3", "france4", "france5", "franceinfo",
    "canal", "canalplus", "arte", "bfm", "lci", "rmc",
}

_GAME_NOISE = {"build", "fix", "patch", "update", "hotfix"}
_GAME_NOISE_PREFIXES = ("build", "patch", "update", "hotfix")
_GAME_OS = {"win", "windows", "linux", "mac", "osx", "macos"}
_GAME_OS_PREFIXES = ("windows", "win", "linux")


@dataclass(frozen=True)
class TitleAmbiguity:
    is_ambiguous: bool
    is_likely_channel_or_program: bool
    is_common_title: bool
    significant_token_count: int
    reasons: tuple = ()


def remove_diacritics(value):
    if not value:
        return value or ""
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return unicodedata.normalize("NFC", stripped)


def clean_title(value):
    if not value:
        return ""
    trimmed = value.strip().rstrip("-. ")
    return remove_diacritics(trimmed).strip()


def looks_like_packed_uppercase(raw):
    trimmed = (raw or "").strip()
    if len(trimmed) < 4 or len(trimmed) > 6:
        return False
    if any(ch in trimmed for ch in " ._-"):
        return False
    return trimmed.isalpha() and trimmed.isupper()


def normalize_title(value):
    if not value or not value.strip():
        return ""
    raw = value.strip()
    text = _BRACKET_RE.sub(" ", raw)
    text = _PARENS_RE.sub(" ", text)
    for ch in "._-+":
        text = text.replace(ch, " ")
    text = _SEASON_EPISODE_RE.sub(" ", text)
    text = _ALT_SEASON_EPISODE_RE.sub(" ", text)
    text = _SEASON_ONLY_RE.sub(" ", text)
    text = _YEAR_RE.sub(" ", text)
    text = _TAGS_RE.sub(" ", text)
    text = remove_diacritics(text.lower())
    text = _NON_ALNUM_RE.sub(" ", text)
    if looks_like_packed_uppercase(raw):
        compact = _WHITESPACE_RE.sub("", text)
        if 4 <= len(compact) <= 6:
            text = f"{compact[:-1]} {compact[-1]}"
    return _WHITESPACE_RE.sub(" ", text).strip()


def tokenize(value):
    normalized = normalize_title(value)
    if not normalized:
        return []
    return normalized.split()


def significant_tokens(value):
    return [token for token in tokenize(value) if len(token) > 2 and token not in _STOP_WORDS]


def count_significant_token_overlap(query, candidate, original_candidate=None):
    query_tokens = set(significant_tokens(query))
    if not query_tokens:
        return 0
    overlap = len(query_tokens & set(significant_tokens(candidate)))
    if original_candidate and original_candidate.strip():
        overlap = max(overlap, len(query_tokens & set(significant_tokens(original_candidate))))
    return overlap


def _looks_letter_separated(normalized, significant):
    if not normalized:
        return False
    tokens = normalized.split()
    if not tokens:
        return False
    if "".join(tokens) in _CHANNEL_TOKENS:
        return True
    if len(tokens) <= 3 and all(len(token) <= 2 for token in tokens):
        if any(any(ch.isdigit() for ch in token) for token in tokens):
            return True
        if all(len(token) == 1 for token in tokens):
            return True
    if not significant and len(tokens) <= 2:
        return True
    return any(token in _CHANNEL_TOKENS for token in tokens)


def _is_common_token(token):
    if not token:
        return False
    return token in _COMMON_TITLES or len(token) <= 3


def evaluate_ambiguity(normalized_title, media_type, year):
    normalized = normalize_title(normalized_title)
    significant = significant_tokens(normalized)
    token_count = len(significant)
    is_series = (media_type or "").lower() == "series"
    year_missing = year is None
    is_very_short = len(normalized) <= 3
    is_common = token_count == 1 and _is_common_token(significant[0])
    is_letter_separated = _looks_letter_separated(normalized, significant)

    reasons = []
    if is_very_short:
        reasons.append("very-short")
    if is_letter_separated:
        reasons.append("letters-separated")
    if is_common:
        reasons.append("common-title")
    if is_series and year_missing and token_count < 2:
        reasons.append("series-no-year-few-tokens")
    if token_count == 1 and (year_missing or is_common):
        reasons.append("single-token")

    return TitleAmbiguity(
        is_ambiguous=bool(reasons),
        is_likely_channel_or_program=is_letter_separated,
        is_common_title=is_common,
        significant_token_count=token_count,
        reasons=tuple(reasons),
    )


def _is_game_noise(token):
    if token in _GAME_NOISE:
        return True
    for prefix in _GAME_NOISE_PREFIXES:
        rest = token[len(prefix):]
        if token.startswith(prefix) and rest and rest.isdigit():
            return True
    return False


def _is_game_os(token):
    if token in _GAME_OS:
        return True
    for prefix in _GAME_OS_PREFIXES:
        rest = token[len(prefix):]
        if token.startswith(prefix) and rest and rest.isdigit():
            return True
    return False


def _is_year_token(token):
    return len(token) == 4 and token.isdigit() and token[:2] in {"19", "20"}


def _is_trailing_build_token(token):
    if not any(ch.isdigit() for ch in token):
        return False
    return _is_year_token(token) or len(token) >= 3


def sanitize_game_query(title):
    """Strip release noise (build/patch numbers, OS tags, years) from a game title."""
    if not title or not title.strip():
        return title
    spaced = "".join(ch if ch.isalnum() else " " for ch in title)
    tokens = []
    for token in spaced.split():
        lower = token.lower()
        if _is_game_noise(lower) or _is_game_os(lower) or _is_year_token(lower):
            continue
        tokens.append(token)
    while tokens and _is_trailing_build_token(tokens[-1]):
        tokens.pop()
    result = " ".join(tokens)
    return result if result.strip() else title


def parse_audio_query(value):
    """Split "artist - title" style queries; returns (artist or None, title)."""
    raw = (value or "").strip()
    if not raw:
        return None, ""
    for separator in _AUDIO_SEPARATORS:
        idx = raw.find(separator)
        if idx <= 0 or idx >= len(raw) - len(separator):
            continue
        artist = raw[:idx].strip()
        title = raw[idx + len(separator):].strip()
        if artist and title:
            return artist, title
    return None, raw


def extract_isbn(value):
    if not value or not value.strip():
        return None
    match = _ISBN_RE.search(value.replace("-", ""))
    if not match:
        return None
    return match.group(0)
