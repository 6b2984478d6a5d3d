"""The Import model: one script or stylesheet reference declared on a target page.

Two statement shapes are recognized on a line, each optionally commented out:

    importScript('User:Foo/bar.js');
    mw.loader.load('//en.wikipedia.org/w/index.php?title=User:Foo/bar.js&action=raw&ctype=text/javascript');

Serialization always produces the second (canonical) shape.
"""

import re
from enum import IntEnum
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict, model_validator

from scriptmanager.config import ScriptManagerConfig
from scriptmanager.utils.escape import escape_js_comment, escape_js_string, unescape_js_string
from scriptmanager.utils.interwiki import get_project_prefix, normalize_host

URL_RGX = re.compile(r"^(?:https?:)?//(.+?)\.org/w/index\.php\?.*?title=(.+?(?:&|$))")
IMPORT_RGX = re.compile(r"""^\s*(//)?\s*importScript\s*\(\s*(['"])\s*(.+?)\s*\2\s*\)\s*;?""")
LOADER_RGX = re.compile(
    r"""^\s*(//)?\s*mw\s*\.\s*loader\s*\.\s*load\s*\(\s*(['"])\s*(.+?)\s*\2\s*"""
    r"""(?:,\s*(['"])\s*(?:text/css|application/css|text/javascript|application/javascript)\s*\4\s*)?\)\s*;?"""
)
_CSS_PATH_RGX = re.compile(r"\.css$", re.IGNORECASE)


class ImportType(IntEnum):
    LOCAL = 0
    CROSS_WIKI = 1
    URL = 2


def _decode_title(value: str) -> str:
    return unquote(re.sub(r"&$", "", value))


def _normalize_wiki(wiki: str | None) -> str:
    return re.sub(r"^www\.", "", (wiki or "").lower())


def _strip_scheme(url: str) -> str:
    return re.sub(r"^https?:", "", url, flags=re.IGNORECASE)


class Import(BaseModel):
    """A reference to a script, by wiki page (local or on another wiki) or by URL."""

    model_config = ConfigDict(frozen=True)

    page: str | None = None
    wiki: str | None = None
    url: str | None = None
    target: str = "common"
    disabled: bool = False
    doc_interwiki: str | None = None
    """Documentation link title found in the script's own header, if any."""

    @model_validator(mode="after")
    def _check_reference(self) -> "Import":
        if bool(self.page) == bool(self.url):
            raise ValueError("Exactly one of page and url must be set")
        if self.wiki and not self.page:
            raise ValueError("A source wiki can only be set together with a page")
        return self

    @property
    def type(self) -> ImportType:
        if self.url:
            return ImportType.URL
        if self.wiki:
            return ImportType.CROSS_WIKI
        return ImportType.LOCAL

    # --- Construction ---

    @classmethod
    def of_local(cls, page: str, target: str = "common", disabled: bool = False) -> "Import":
        return cls(page=page, target=target, disabled=disabled)

    @classmethod
    def of_url(cls, url: str, target: str = "common", disabled: bool = False) -> "Import":
        """Build an import from a loader URL, decomposing ``index.php?title=`` URLs into wiki and page."""
        if match := URL_RGX.match(url or ""):
            wiki, page = _decode_title(match.group(1)), _decode_title(match.group(2))
            if page:
                return cls(page=page, wiki=wiki, target=target, disabled=disabled)
        return cls(url=url, target=target, disabled=disabled)

    @classmethod
    def from_statement(cls, line: str, target: str = "common") -> "Import | None":
        """Parse one line; returns None if it is not a recognized statement."""
        line = line or ""
        if match := IMPORT_RGX.match(line):
            return cls.of_local(unescape_js_string(match.group(3)), target, bool(match.group(1)))
        if match := LOADER_RGX.match(line):
            return cls.of_url(unescape_js_string(match.group(3)), target, bool(match.group(1)))
        return None

    def with_target(self, target: str) -> "Import":
        return self.model_copy(update={"target": target})

    def with_disabled(self, disabled: bool) -> "Import":
        return self.model_copy(update={"disabled": disabled})

    # --- Identity ---

    @property
    def key(self) -> str:
        if self.type == ImportType.LOCAL:
            return f"local:{self.target}:{self.page}"
        if self.type == ImportType.CROSS_WIKI:
            return f"remote:{self.target}:{self.wiki}:{self.page}"
        return f"url:{self.target}:{self.url}"

    @property
    def identity(self) -> str:
        return self.key.lower()

    @property
    def display_name(self) -> str:
        return self.url if self.type == ImportType.URL else self.page

    def source_wiki(self, config: ScriptManagerConfig) -> str:
        """Wiki fragment the script is loaded from; local pages load from the current wiki."""
        return self.wiki if self.wiki else config.current_wiki_fragment

    def same_reference(self, other: "Import", config: ScriptManagerConfig) -> bool:
        """True if both imports load the same script, regardless of target and disabled state."""
        if self.type == ImportType.URL and other.type == ImportType.URL:
            return self.url == other.url
        if self.type == ImportType.URL or other.type == ImportType.URL:
            # Page loader URLs on hosts the URL grammar does not decompose
            url, page_import = (self.url, other) if self.url else (other.url, self)
            return _strip_scheme(url).lower() == _strip_scheme(page_import.to_loader_url(config.server_name)).lower()
        return self.page.lower() == other.page.lower() and _normalize_wiki(self.source_wiki(config)) == _normalize_wiki(
            other.source_wiki(config)
        )

    # --- Serialization ---

    def to_loader_url(self, server_name: str) -> str:
        if self.type == ImportType.URL:
            url = self.url
        else:
            host = normalize_host(f"{self.wiki}.org" if self.type == ImportType.CROSS_WIKI else server_name)
            ctype = "text/css" if self.is_css else "text/javascript"
            url = f"//{host}/w/index.php?title={self.page}&action=raw&ctype={ctype}"
        return re.sub(r"//mediawiki\.org\b", "//www.mediawiki.org", url, flags=re.IGNORECASE)

    @property
    def is_css(self) -> bool:
        path = self.page if self.page else urlsplit(self.url).path
        return bool(_CSS_PATH_RGX.search(path))

    def load_call(self, config: ScriptManagerConfig) -> str:
        """The bare canonical call, without disabled prefix or backlink."""
        type_arg = ", 'text/css'" if self.is_css else ""
        return f"mw.loader.load('{escape_js_string(self.to_loader_url(config.server_name))}'{type_arg});"

    def link_title(self, config: ScriptManagerConfig) -> str:
        """Wiki link title used in backlinks and edit summaries.

        A documentation link from the script header wins. Cross-wiki scripts
        from another wiki get that wiki's interwiki prefix, and local scripts
        installed on the cross-site target get the current wiki's prefix.
        """
        if not self.page:
            return ""
        if self.doc_interwiki:
            return self.doc_interwiki
        if self.type == ImportType.CROSS_WIKI:
            current = config.target_wiki_fragment(self.target).lower()
            source = self.wiki.lower()
            same_wiki = bool(current) and (current.startswith(source) or source.startswith(current))
            if not same_wiki and (prefix := get_project_prefix(self.wiki)):
                return f"{prefix}:{self.page}"
            return self.page
        if config.is_global(self.target) and (prefix := get_project_prefix(config.current_wiki_fragment)):
            return f"{prefix}:{self.page}"
        return self.page

    def backlink_label(self, config: ScriptManagerConfig) -> str:
        if config.is_global(self.target):
            return config.strings.fallback.get("label-backlink", "label-backlink")
        return config.strings.translate("label-backlink")

    def to_statement(self, config: ScriptManagerConfig) -> str:
        prefix = "//" if self.disabled else ""
        suffix = ""
        if self.type != ImportType.URL:
            suffix = f" // {self.backlink_label(config)} [[{escape_js_comment(self.link_title(config))}]]"
        return f"{prefix}{self.load_call(config)}{suffix}"

    def description(self, config: ScriptManagerConfig, wikitext: bool = True) -> str:
        if wikitext and self.type != ImportType.URL:
            return f"[[{self.link_title(config)}]]"
        return self.display_name


def parse_lines(lines: list[str], target: str) -> list[tuple[int, Import]]:
    """Recognized statements in a list of lines, with their line indexes."""
    return [(index, imp) for index, line in enumerate(lines) if (imp := Import.from_statement(line, target))]
