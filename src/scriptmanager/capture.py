"""Capture wrapper codec.

A capture wrapper is a generated block at the end of a target page that holds
one or more load calls and, at runtime, lets an external listener intercept
them before they run:

    // SM-CAPTURE-START
    (function () {
        const smCaptureItems = [
            // SM-CAPTURE-ITEM-START
            { key: "...", name: "...", fn: function scriptsToManage() { mw.loader.load(...); } }
            // SM-CAPTURE-ITEM-END
        ];
        ...
    })();
    // SM-CAPTURE-END

The wrapper is always regenerated from its item list, so editing it never
accumulates formatting changes.
"""

import json
import logging
import re

from jinja2 import StrictUndefined, Template
from pydantic import BaseModel

from scriptmanager.config import ScriptManagerConfig
from scriptmanager.exceptions import CodecMismatch
from scriptmanager.imports import Import

logger = logging.getLogger("scriptmanager.capture")

CAPTURE_BLOCK_START = "// SM-CAPTURE-START"
CAPTURE_BLOCK_END = "// SM-CAPTURE-END"
CAPTURE_ITEM_START = "// SM-CAPTURE-ITEM-START"
CAPTURE_ITEM_END = "// SM-CAPTURE-ITEM-END"

CAPTURE_BLOCK_START_RGX = re.compile(r"^\s*//\s*SM-CAPTURE-START\b")
CAPTURE_BLOCK_END_RGX = re.compile(r"^\s*//\s*SM-CAPTURE-END\b")
CAPTURE_ITEM_START_RGX = re.compile(r"^\s*//\s*SM-CAPTURE-ITEM-START\b")
CAPTURE_ITEM_END_RGX = re.compile(r"^\s*//\s*SM-CAPTURE-ITEM-END\b")
CAPTURE_KEY_LINE_RGX = re.compile(r'key:\s*("(?:\\.|[^"])*")\s*,?\s*$')
CAPTURE_NAME_LINE_RGX = re.compile(r'name:\s*("(?:\\.|[^"])*")\s*,?\s*$')
LOADER_LOAD_LINE_RGX = re.compile(r"(mw\s*\.\s*loader\s*\.\s*load\s*\(.*\)\s*;)\s*$")

WRAPPER_TEMPLATE = Template(
    """\
{{ block_start }}
(function () {
\tconst smCaptureItems = [
{% for item in items %}
\t\t{{ item_start }}
\t\t{
\t\t\tkey: {{ item.key_json }},
\t\t\tname: {{ item.name_json }},
\t\t\tfn: function scriptsToManage() {
\t\t\t\t{{ item.load_call }}
\t\t\t}
\t\t}{% if not loop.last %},{% endif %}

\t\t{{ item_end }}
{% endfor %}
\t];
\tlet smCaptured = false;
\tlet smCaptureEnabled = false;
\ttry {
\t\tconst smRawSettings = mw && mw.user && mw.user.options && typeof mw.user.options.get === 'function'
\t\t\t? mw.user.options.get('userjs-sm-settings')
\t\t\t: '';
\t\tif (smRawSettings) {
\t\t\tconst smParsedSettings = JSON.parse(smRawSettings);
\t\t\tsmCaptureEnabled = Boolean(smParsedSettings && smParsedSettings.captureEnabled === true);
\t\t}
\t} catch {}
\tif (!smCaptureEnabled) {
\t\tsmCaptureItems.forEach(function (item) {
\t\t\titem.fn();
\t\t});
\t\treturn;
\t}
\tif (!mw || typeof mw.hook !== 'function') {
\t\tsmCaptureItems.forEach(function (item) {
\t\t\titem.fn();
\t\t});
\t\treturn;
\t}
\tconst smCapturePayload = smCaptureItems.map(function (item) {
\t\treturn {
\t\t\tkey: item.key,
\t\t\tname: item.name,
\t\t\tfn: function () {
\t\t\t\tsmCaptured = true;
\t\t\t\titem.fn();
\t\t\t}
\t\t};
\t});
\tmw.hook('scriptManager.capture').fire({ items: smCapturePayload });
\tsetTimeout(function () {
\t\tif (!smCaptured) {
\t\t\tsmCaptureItems.forEach(function (item) {
\t\t\t\titem.fn();
\t\t\t});
\t\t}
\t}, {{ fallback_delay_ms }});
})();
{{ block_end }}""",
    undefined=StrictUndefined,
    trim_blocks=True,
    autoescape=False,
)


class CaptureItem(BaseModel):
    key: str = ""
    name: str = ""
    load_call: str

    @property
    def signature(self) -> str:
        return self.key.strip() or normalize_load_call(self.load_call)


def normalize_load_call(call: str | None) -> str:
    return re.sub(r"\s+", "", call or "")


def extract_load_call(line: str) -> str:
    match = LOADER_LOAD_LINE_RGX.search(line or "")
    return match.group(1) if match else ""


def _parse_json_string(token: str) -> str:
    try:
        parsed = json.loads(token)
    except json.JSONDecodeError as e:
        raise CodecMismatch(f"Invalid JSON string token {token!r}") from e
    if not isinstance(parsed, str):
        raise CodecMismatch(f"Expected a JSON string, got {token!r}")
    return parsed


# --- Decoding ---


def _find_ranges(lines: list[str], start_rgx: re.Pattern, end_rgx: re.Pattern, lo: int, hi: int):
    ranges = []
    open_start = -1
    for index in range(lo, hi + 1):
        if start_rgx.match(lines[index]):
            if open_start >= 0:
                logger.warning(f"Unterminated capture marker at line {open_start + 1}, ignoring it")
            open_start = index
        elif open_start >= 0 and end_rgx.match(lines[index]):
            ranges.append((open_start, index))
            open_start = -1
    if open_start >= 0:
        logger.warning(f"Unterminated capture marker at line {open_start + 1}, ignoring it")
    return ranges


def find_blocks(lines: list[str]) -> list[tuple[int, int]]:
    """Inclusive ``(start, end)`` line ranges of complete capture wrappers."""
    return _find_ranges(lines, CAPTURE_BLOCK_START_RGX, CAPTURE_BLOCK_END_RGX, 0, len(lines) - 1)


def block_line_indexes(lines: list[str]) -> set[int]:
    return {index for start, end in find_blocks(lines) for index in range(start, end + 1)}


def _parse_item(lines: list[str], start: int, end: int) -> CaptureItem:
    key = name = load_call = ""
    for line in lines[start : end + 1]:
        if not key and (match := CAPTURE_KEY_LINE_RGX.search(line)):
            key = _parse_json_string(match.group(1))
        if not name and (match := CAPTURE_NAME_LINE_RGX.search(line)):
            name = _parse_json_string(match.group(1))
        if not load_call:
            load_call = extract_load_call(line)
    if not load_call:
        raise CodecMismatch(f"No load call in capture item at lines {start + 1}-{end + 1}")
    return CaptureItem(key=key, name=name, load_call=load_call)


def _parse_block(lines: list[str], start: int, end: int) -> list[CaptureItem]:
    items = []
    for item_start, item_end in _find_ranges(lines, CAPTURE_ITEM_START_RGX, CAPTURE_ITEM_END_RGX, start, end):
        try:
            items.append(_parse_item(lines, item_start, item_end))
        except CodecMismatch as e:
            logger.warning(f"Skipping capture item: {e}")
    if items:
        return items
    # Older wrappers hold a single load call without item markers
    try:
        return [_parse_item(lines, start, end)]
    except CodecMismatch as e:
        logger.warning(f"Skipping capture block at lines {start + 1}-{end + 1}: {e}")
        return []


def dedupe(items: list[CaptureItem]) -> list[CaptureItem]:
    """Drop items whose signature was already seen; the first occurrence wins."""
    seen = set()
    result = []
    for item in items:
        signature = item.signature
        if not signature or signature in seen:
            continue
        seen.add(signature)
        result.append(item)
    return result


def decode(lines: list[str]) -> list[CaptureItem]:
    """All captured items of a page, in document order."""
    items = []
    for start, end in find_blocks(lines):
        items.extend(_parse_block(lines, start, end))
    return dedupe(items)


# --- Encoding ---


def render(items: list[CaptureItem], fallback_delay_ms: int = 5000) -> list[str]:
    """Lines of a capture wrapper holding ``items`` in order. Depends on nothing but its arguments."""
    text = WRAPPER_TEMPLATE.render(
        block_start=CAPTURE_BLOCK_START,
        block_end=CAPTURE_BLOCK_END,
        item_start=CAPTURE_ITEM_START,
        item_end=CAPTURE_ITEM_END,
        items=[
            {
                "key_json": json.dumps(item.key, ensure_ascii=False),
                "name_json": json.dumps(item.name, ensure_ascii=False),
                "load_call": item.load_call.strip(),
            }
            for item in items
        ],
        fallback_delay_ms=fallback_delay_ms,
    )
    return text.split("\n")


def build_item(imp: Import, name: str | None, config: ScriptManagerConfig) -> CaptureItem:
    fallback_name = imp.display_name.replace("_", " ") or config.strings.translate(
        "capture-default-name", "Captured script"
    )
    return CaptureItem(key=imp.key, name=(name or "").strip() or fallback_name, load_call=imp.load_call(config))


def same_item(item: CaptureItem, imp: Import, config: ScriptManagerConfig) -> bool:
    """True if a captured item loads the given import."""
    if item.key and item.key.lower() == imp.identity:
        return True
    if normalize_load_call(item.load_call) == normalize_load_call(imp.load_call(config)):
        return True
    parsed = Import.from_statement(item.load_call, imp.target)
    return parsed is not None and parsed.same_reference(imp, config)


def append_wrapper(lines: list[str], items: list[CaptureItem], fallback_delay_ms: int = 5000) -> list[str]:
    """Trailing blank lines removed, then the wrapper after one blank line (nothing if no items)."""
    result = list(lines)
    while result and not result[-1].strip():
        result.pop()
    if not items:
        return result
    if result:
        result.append("")
    result.extend(render(items, fallback_delay_ms))
    return result


def replace_wrapper(
    lines: list[str], drop: set[int], items: list[CaptureItem], fallback_delay_ms: int = 5000
) -> list[str]:
    """Re-render the wrapper where the first block sits, dropping the other blocks and the ``drop`` lines.

    With no items left the blocks are removed, together with the trailing blank lines they leave behind.
    """
    blocks = find_blocks(lines)
    covered = block_line_indexes(lines) | drop
    if not items or not blocks:
        kept = [line for index, line in enumerate(lines) if index not in covered]
        return append_wrapper(kept, items, fallback_delay_ms)
    first_start = blocks[0][0]
    result = []
    for index, line in enumerate(lines):
        if index == first_start:
            result.extend(render(items, fallback_delay_ms))
        elif index not in covered:
            result.append(line)
    return result
