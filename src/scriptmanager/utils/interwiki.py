"""Wiki host and interwiki prefix helpers."""

import re
from urllib.parse import parse_qs, unquote, urlsplit

PROJECT_MAP = {
    "wiktionary": "wikt",
    "wikibooks": "b",
    "wikiquote": "q",
    "wikisource": "s",
    "wikinews": "n",
    "wikiversity": "v",
    "wikivoyage": "voyage",
}

_LANG_PROJECT_RGX = re.compile(
    r"^([a-z-]{2,10})\.(wikipedia|wiktionary|wikibooks|wikiquote|wikisource|wikinews|wikiversity|wikivoyage)$"
)
_WIKIMEDIA_PROJECT_RGX = re.compile(r"^(commons|meta|species|wikidata|mediawiki)\.wikimedia$")
# Projects served from their own second-level domain
_STANDALONE_PREFIXES = {"mediawiki": "mw", "wikidata": "d"}


def normalize_host(host: str | None) -> str:
    """Strip scheme and path from a host; ``mediawiki.org`` lives at ``www.mediawiki.org``."""
    clean = re.sub(r"/.*$", "", re.sub(r"^https?://", "", (host or "").strip(), flags=re.IGNORECASE))
    if clean.lower() == "mediawiki.org":
        return "www.mediawiki.org"
    return clean


def wiki_fragment(host: str | None) -> str:
    """``en.wikipedia.org`` -> ``en.wikipedia``."""
    return re.sub(r"\.org$", "", normalize_host(host), flags=re.IGNORECASE)


def get_project_prefix(wiki: str | None) -> str | None:
    """Interwiki prefix for a wiki fragment such as ``en.wikipedia`` (``w:en``)."""
    if not wiki or not isinstance(wiki, str):
        return None
    normalized = re.sub(r"^www\.", "", wiki.lower())
    if match := _LANG_PROJECT_RGX.match(normalized):
        lang, project = match.groups()
        if project == "wikipedia":
            return f"w:{lang}"
        return f"{PROJECT_MAP.get(project, project)}:{lang}"
    if match := _WIKIMEDIA_PROJECT_RGX.match(normalized):
        prefix = match.group(1)
        return "c" if prefix == "commons" else prefix
    return _STANDALONE_PREFIXES.get(normalized)


def url_to_interwiki(url: str | None) -> str | None:
    """Turn a wiki URL into an interwiki link title, or None if it is not one.

    Both ``index.php?title=X`` and ``/wiki/X`` URLs are understood.
    """
    if not url:
        return None
    parts = urlsplit(url if "//" in url else f"//{url}")
    prefix = get_project_prefix(wiki_fragment(parts.hostname or ""))
    title = (parse_qs(parts.query).get("title") or [""])[0]
    if not title and parts.path.startswith("/wiki/"):
        title = unquote(parts.path[len("/wiki/") :])
    if not prefix or not title:
        return None
    return f"{prefix}:{title}"
