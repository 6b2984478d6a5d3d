"""Edit summaries and documentation links for backlinks."""

import logging
import re
from collections.abc import Awaitable, Callable

from scriptmanager.config import ScriptManagerConfig, Strings
from scriptmanager.imports import Import, ImportType
from scriptmanager.utils.interwiki import normalize_host, url_to_interwiki

logger = logging.getLogger("scriptmanager.summary")

DOCUMENTATION_PATTERNS = [
    re.compile(r"@documentation\s+([^\s*]+)", re.IGNORECASE),
    re.compile(r"Documentation:\s*(\S+)"),
    re.compile(r"@see\s+([^\s*]+)", re.IGNORECASE),
]


def build_link_title(imp: Import, config: ScriptManagerConfig) -> str:
    """Title an edit summary or backlink should link to; see ``Import.link_title``."""
    return imp.link_title(config)


def with_summary_tag(text: str, summary_tag: str) -> str:
    return f"{text} {summary_tag}" if summary_tag else text


def build_summary(
    target: str, summary_key: str, description: str, strings: Strings, config: ScriptManagerConfig
) -> str:
    """Edit summary for a change on a target page.

    The cross-site target and English-only wikis always get the English
    message. Elsewhere the site-language message wins over the user-language
    one, and English is the last resort.
    """
    fallback = strings.fallback.get(summary_key) or summary_key
    if config.is_global(target) or config.is_english_only_host():
        message = fallback
    elif summary_key in strings.site:
        message = strings.site[summary_key] or summary_key
    elif summary_key in strings.current:
        message = strings.current[summary_key] or summary_key
    else:
        message = fallback
    return with_summary_tag(message.replace("$1", description or "", 1), config.summary_tag)


def summary_for(imp: Import, summary_key: str, config: ScriptManagerConfig) -> str:
    return build_summary(imp.target, summary_key, imp.description(config, wikitext=True), config.strings, config)


def extract_documentation_reference(text: str) -> str | None:
    for pattern in DOCUMENTATION_PATTERNS:
        if match := pattern.search(text or ""):
            return match.group(1)
    return None


def _reference_to_title(reference: str) -> str | None:
    if "//" in reference:
        return url_to_interwiki(reference)
    return reference


SourceFetcher = Callable[[str, str], Awaitable[str]]
"""``async fetch(host, title) -> text`` returning a script's raw source."""


class DocumentationResolver:
    """Finds the documentation page a script links from its header comment.

    Lookups are best effort: every failure resolves to None so that an edit
    is never blocked by it.
    """

    def __init__(self, fetch_source: SourceFetcher, config: ScriptManagerConfig):
        self.fetch_source = fetch_source
        self.config = config

    async def resolve(self, imp: Import) -> str | None:
        if imp.type == ImportType.URL or not imp.page:
            return None
        host = normalize_host(f"{imp.wiki}.org" if imp.type == ImportType.CROSS_WIKI else self.config.server_name)
        try:
            text = await self.fetch_source(host, imp.page)
        except Exception as e:
            logger.warning(f"Failed to resolve documentation link for {imp.page} on {host}: {e}")
            return None
        reference = extract_documentation_reference((text or "")[: self.config.doc_scan_limit])
        if not reference:
            return None
        title = _reference_to_title(reference)
        logger.debug(f"Documentation link for {imp.page}: {reference} -> {title}")
        return title

    async def annotate(self, imp: Import) -> Import:
        """Copy of the import carrying its documentation link, if one was found."""
        if imp.doc_interwiki:
            return imp
        title = await self.resolve(imp)
        return imp.model_copy(update={"doc_interwiki": title}) if title else imp
