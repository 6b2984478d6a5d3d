"""Configuration models and config file loading."""

import json
import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel

from scriptmanager.utils.interwiki import wiki_fragment
from scriptmanager.utils.serialize import recursive_merge

builtin_config_dir = Path(__file__).parent
DEFAULT_CONFIG_FILE = builtin_config_dir / "default.yaml"


class Strings(BaseModel):
    fallback: dict[str, str] = {}
    """English strings. Always used for the cross-site target."""
    current: dict[str, str] = {}
    """Strings in the user's interface language."""
    site: dict[str, str] = {}
    """Site-language overrides; they win over ``current`` for edit summaries."""

    def translate(self, key: str, default: str | None = None) -> str:
        return self.current.get(key) or self.fallback.get(key) or (key if default is None else default)


class ScriptManagerConfig(BaseModel):
    server_name: str = os.getenv("SCRIPTMANAGER_SERVER", "")
    """Host of the wiki the user pages live on, e.g. ``en.wikipedia.org``."""
    user_name: str = os.getenv("SCRIPTMANAGER_USER", "")
    user_namespace: str = "User"
    """Localized name of the user namespace on the current wiki."""
    targets: list[str] = ["common", "global", "monobook", "minerva", "vector", "vector-2022", "timeless"]
    default_target: str = "common"
    global_target: str = "global"
    """The cross-site target, stored on the global wiki instead of the current one."""
    global_wiki_fragment: str = "meta.wikimedia"
    summary_tag: str = ""
    """Appended to every edit summary."""
    doc_scan_limit: int = 2000
    """Number of leading characters of a script searched for a documentation link."""
    capture_fallback_delay_ms: int = 5000
    english_only_hosts: list[str] = ["mediawiki.org", "wikidata.org"]
    strings: Strings = Strings()

    def is_global(self, target: str | None) -> bool:
        return (target or self.default_target) == self.global_target

    def target_title(self, target: str | None) -> str:
        """Title of the user script page backing a target."""
        target = target or self.default_target
        if self.is_global(target):
            return f"User:{self.user_name}/{target}.js"
        return f"{self.user_namespace}:{self.user_name}/{target}.js"

    @property
    def current_wiki_fragment(self) -> str:
        return wiki_fragment(self.server_name)

    def target_wiki_fragment(self, target: str | None) -> str:
        if self.is_global(target):
            return self.global_wiki_fragment
        return self.current_wiki_fragment

    def is_english_only_host(self) -> bool:
        return any(
            re.search(rf"(^|\.){re.escape(host)}$", self.server_name, re.IGNORECASE)
            for host in self.english_only_hosts
        )


def get_config_path(config_spec: str | Path) -> Path:
    """Resolve a config name or path to an existing YAML file."""
    config_spec = Path(config_spec)
    if config_spec.suffix != ".yaml":
        config_spec = config_spec.with_suffix(".yaml")
    candidates = [
        config_spec,
        Path(os.getenv("SCRIPTMANAGER_CONFIG_DIR", ".")) / config_spec,
        builtin_config_dir / config_spec,
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    raise FileNotFoundError(f"Could not find config file for {config_spec} (tried: {candidates})")


def _key_value_spec_to_nested_dict(config_spec: str) -> dict:
    """``scriptmanager.server_name=en.wikipedia.org`` -> nested dict."""
    key, value = config_spec.split("=", 1)
    try:
        value = json.loads(value)
    except json.JSONDecodeError:
        pass
    keys = key.split(".")
    result: dict = {}
    current = result
    for k in keys[:-1]:
        current[k] = {}
        current = current[k]
    current[keys[-1]] = value
    return result


def get_config_from_spec(config_spec: str | Path) -> dict:
    if isinstance(config_spec, str) and "=" in config_spec:
        return _key_value_spec_to_nested_dict(config_spec)
    path = get_config_path(config_spec)
    return yaml.safe_load(path.read_text()) or {}


def load_config(*config_specs: str | Path, **overrides) -> ScriptManagerConfig:
    """Build a config from the builtin defaults, the given specs and keyword overrides.

    Later specs win; overrides set to ``UNSET`` are ignored.
    """
    specs = (DEFAULT_CONFIG_FILE, *config_specs)
    merged = recursive_merge(*(get_config_from_spec(spec) for spec in specs), {"scriptmanager": overrides})
    return ScriptManagerConfig(**merged.get("scriptmanager", {}))
