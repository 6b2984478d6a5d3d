"""Escaping helpers for the embedded statement grammar."""

import re

_JS_STRING_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    "\r": "\\r",
    "\n": "\\n",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}
_JS_STRING_ESCAPE_RGX = re.compile("[\\\\'\r\n\u2028\u2029]")

_JS_STRING_UNESCAPES = {
    '"': '"',
    "'": "'",
    "\\": "\\",
    "n": "\n",
    "r": "\r",
    "u2028": "\u2028",
    "u2029": "\u2029",
}
_JS_STRING_UNESCAPE_RGX = re.compile(r"""\\(u2028|u2029|["'\\nr])""")


def escape_js_string(text: str | None) -> str:
    """Escape text for a single-quoted JS string literal."""
    return _JS_STRING_ESCAPE_RGX.sub(lambda m: _JS_STRING_ESCAPES[m.group(0)], text or "")


def unescape_js_string(text: str | None) -> str:
    """Reverse the quote, backslash and line-terminator escapes of a JS string literal.

    Any other backslash sequence is left as it is.
    """
    return _JS_STRING_UNESCAPE_RGX.sub(lambda m: _JS_STRING_UNESCAPES[m.group(1)], text or "")


def escape_js_comment(text: str | None) -> str:
    """Make text safe to embed inside a line or block comment."""
    return (
        (text or "")
        .replace("\\", "\\\\")
        .replace("\r", "\\r")
        .replace("\n", "\\n")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
        .replace("*/", "*\\/")
    )


def escape_regex(text: str | None) -> str:
    return re.escape(text or "")
