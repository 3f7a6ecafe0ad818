"""Artifact key derivation.

Keys are pure functions of (request text, locale):

    sino-pulse/v1/{locale}/{normalized_request}.json

No timestamps, no randomness. The same request always lands on the same
object, which is what lets the archive act as a cache.
"""

import re

DEFAULT_DATA_FOLDER = "sino-pulse/v1"
DEFAULT_LOCALE = "en"
INDEX_FILENAME = "library_index.json"
EMPTY_SLUG = "untitled"

# Anything that is not a-z, 0-9, underscore or a CJK ideograph is dropped
_DISALLOWED_CHARS = re.compile(r"[^a-z0-9_\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")
_WHITESPACE = re.compile(r"\s+")
_REPEATED_SEPARATOR = re.compile(r"_+")
_LOCALE_DISALLOWED = re.compile(r"[^a-z0-9-]")


def normalize_request(text: str) -> str:
    """Normalize free-text request into a filename-safe slug.

    "GDP per capita" -> "gdp_per_capita"; "人均 GDP" -> "人均_gdp".
    Blank input yields EMPTY_SLUG rather than an empty path segment.
    """
    slug = _WHITESPACE.sub("_", (text or "").strip().lower())
    slug = _DISALLOWED_CHARS.sub("", slug)
    slug = _REPEATED_SEPARATOR.sub("_", slug).strip("_")
    return slug or EMPTY_SLUG


def normalize_locale(locale: str) -> str:
    cleaned = _LOCALE_DISALLOWED.sub("", (locale or "").strip().lower())
    return cleaned or DEFAULT_LOCALE


def derive_key(request_text: str, locale: str, folder: str = DEFAULT_DATA_FOLDER) -> str:
    """Return the storage key for a request/locale pair."""
    return f"{folder.strip('/')}/{normalize_locale(locale)}/{normalize_request(request_text)}.json"


def index_key(folder: str = DEFAULT_DATA_FOLDER) -> str:
    return f"{folder.strip('/')}/{INDEX_FILENAME}"


def locale_prefix(locale: str, folder: str = DEFAULT_DATA_FOLDER) -> str:
    return f"{folder.strip('/')}/{normalize_locale(locale)}/"


def slug_from_key(key: str) -> str:
    """Filename without folder and .json suffix."""
    filename = key.rsplit("/", 1)[-1]
    if filename.endswith(".json"):
        filename = filename[: -len(".json")]
    return filename


def locale_from_key(key: str) -> str | None:
    """Locale segment of an artifact key, or None for keys outside the layout."""
    parts = key.strip("/").split("/")
    if len(parts) < 2:
        return None
    return parts[-2]


def title_from_slug(slug: str) -> str:
    """Prettify a slug for display: underscores to spaces, capitalised words."""
    words = [w for w in slug.split("_") if w]
    return " ".join(w[:1].upper() + w[1:] for w in words)
