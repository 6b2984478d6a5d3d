import logging

from scriptmanager.capture import CaptureItem, block_line_indexes, decode
from scriptmanager.imports import Import, parse_lines

logger = logging.getLogger("scriptmanager.store")


class ImportStore:
    """Per-session cache of target page texts, keyed by target name.

    Entries are filled on read and dropped by the engine after every edit, so
    the next read fetches the page again.
    """

    def __init__(self):
        self._texts: dict[str, str] = {}

    def get(self, target: str) -> str | None:
        return self._texts.get(target)

    def put(self, target: str, text: str) -> None:
        self._texts[target] = text

    def invalidate(self, target: str | None = None) -> None:
        """Drop one entry, or all of them."""
        if target is None:
            self._texts.clear()
        else:
            self._texts.pop(target, None)
        logger.debug(f"Invalidated cached text of {target or 'all targets'}")

    def __contains__(self, target: str) -> bool:
        return target in self._texts

    def imports(self, target: str) -> list[Import]:
        """Plain statements of a cached target, excluding those inside capture wrappers."""
        lines = (self._texts.get(target) or "").split("\n")
        skip = block_line_indexes(lines)
        return [imp for index, imp in parse_lines(lines, target) if index not in skip]

    def captured(self, target: str) -> list[CaptureItem]:
        return decode((self._texts.get(target) or "").split("\n"))
