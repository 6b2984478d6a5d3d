"""ScriptEngine: edits the import statements on a user's target pages.

Every mutation follows the same steps:
1. Take the lock for ``<target>:<script>``
2. Fetch the current page text and split it into lines
3. Parse every line and compute the new line list
4. Submit an edit only if the text changed
5. Drop the cached text of the target

Lines that are not recognized statements are never modified.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable

from scriptmanager.capture import (
    CaptureItem,
    append_wrapper,
    block_line_indexes,
    build_item,
    decode,
    find_blocks,
    replace_wrapper,
    same_item,
)
from scriptmanager.config import ScriptManagerConfig
from scriptmanager.exceptions import MoveIncompleteError, NotFoundError
from scriptmanager.imports import Import, ImportType, parse_lines
from scriptmanager.services import EditRequest, ServiceRegistry, WikiEditService
from scriptmanager.store import ImportStore
from scriptmanager.summary import DocumentationResolver, build_summary, summary_for
from scriptmanager.utils.escape import escape_regex
from scriptmanager.utils.lock import ScriptLock

logger = logging.getLogger("scriptmanager.engine")

_DISABLED_LINE_RGX = re.compile(r"^\s*//")


def _legacy_title_rgx(page: str) -> re.Pattern:
    variants = {page, page.replace(" ", "_")}
    alternatives = "|".join(escape_regex(variant) for variant in sorted(variants))
    return re.compile(rf"title=(?:{alternatives})(?=[&'\"\s)]|$)", re.IGNORECASE)


class ScriptEngine:
    def __init__(
        self,
        config: ScriptManagerConfig,
        services: ServiceRegistry,
        *,
        store: ImportStore | None = None,
        lock: ScriptLock | None = None,
        resolver: DocumentationResolver | None = None,
    ):
        self.config = config
        self.services = services
        self.store = store if store is not None else ImportStore()
        self.lock = lock if lock is not None else ScriptLock()
        self.resolver = resolver

    # --- Transport ---

    def _service(self, target: str) -> WikiEditService:
        return self.services.for_target(target, self.config)

    async def _fetch(self, target: str) -> list[str]:
        text = await self._service(target).get_text(self.config.target_title(target))
        self.store.put(target, text)
        return text.split("\n")

    async def _submit(
        self, target: str, summary: str, *, text: str | None = None, appendtext: str | None = None
    ) -> None:
        title = self.config.target_title(target)
        request = EditRequest(title=title, summary=summary, text=text, appendtext=appendtext)
        try:
            await self._service(target).post_edit(request)
        finally:
            self.store.invalidate(target)
        logger.info(f"Edited {title}: {summary}")

    async def _commit(self, target: str, summary: str, old_lines: list[str], new_lines: list[str]) -> bool:
        old_text, new_text = "\n".join(old_lines), "\n".join(new_lines)
        if old_text == new_text:
            logger.debug(f"No changes on {self.config.target_title(target)}")
            return False
        await self._submit(target, summary, text=new_text)
        return True

    def _lock_key(self, target: str, name: str) -> str:
        return f"{target}:{name}"

    async def _locked(self, imp: Import, action: Callable[[], Awaitable[bool]]) -> bool:
        return await self.lock.run(self._lock_key(imp.target, imp.display_name), action)

    async def _annotate(self, imp: Import) -> Import:
        if self.resolver is None:
            return imp
        return await self.resolver.annotate(imp)

    # --- Matching ---

    def _match_plain(self, lines: list[str], imp: Import, skip: set[int] = frozenset()) -> list[int]:
        """Indexes of the lines outside ``skip`` that load the given script."""
        matches = [
            index
            for index, parsed in parse_lines(lines, imp.target)
            if index not in skip and parsed.same_reference(imp, self.config)
        ]
        if matches or imp.type != ImportType.CROSS_WIKI:
            return matches
        # Hand-written statements the grammar does not cover
        title_rgx = _legacy_title_rgx(imp.page)
        matches = [
            index
            for index, line in enumerate(lines)
            if index not in skip
            and "mw.loader.load" in line
            and title_rgx.search(line)
            and Import.from_statement(line, imp.target) is None
        ]
        if matches:
            logger.debug(f"Matched {len(matches)} unrecognized line(s) for {imp.page} by title")
        return matches

    def _is_installed(self, lines: list[str], imp: Import) -> bool:
        if self._match_plain(lines, imp):
            return True
        return any(same_item(item, imp, self.config) for item in decode(lines))

    # --- Reads ---

    async def get_text(self, target: str, refresh: bool = False) -> str:
        if refresh or target not in self.store:
            await self._fetch(target)
        return self.store.get(target) or ""

    async def list_imports(self, target: str, refresh: bool = False) -> list[Import]:
        await self.get_text(target, refresh)
        return self.store.imports(target)

    async def list_captured(self, target: str, refresh: bool = False) -> list[CaptureItem]:
        await self.get_text(target, refresh)
        return self.store.captured(target)

    async def load_all(self, targets: list[str] | None = None, refresh: bool = False) -> dict[str, list[Import]]:
        """Plain imports of every target, fetched concurrently."""
        targets = targets or self.config.targets
        results = await asyncio.gather(*(self.list_imports(target, refresh) for target in targets))
        return dict(zip(targets, results))

    async def targets_for_script(self, page: str) -> list[str]:
        """Targets that import a page, in configured order."""
        page = page.lower()
        loaded = await self.load_all()
        return [
            target
            for target, imports in loaded.items()
            if any(imp.page is not None and imp.page.lower() == page for imp in imports)
        ]

    # --- Mutations ---

    async def install(self, imp: Import) -> bool:
        """Append the statement for a script unless the target already loads it."""
        return await self._locked(imp, lambda: self._install(imp))

    async def _install(self, imp: Import) -> bool:
        lines = await self._fetch(imp.target)
        if self._is_installed(lines, imp):
            logger.debug(f"{imp.display_name} is already installed on {imp.target}")
            return False
        imp = await self._annotate(imp)
        statement = imp.to_statement(self.config)
        old_text = "\n".join(lines)
        kept = list(lines)
        while kept and not kept[-1].strip():
            kept.pop()
        content = "\n".join(kept)
        new_text = f"{content}\n{statement}\n" if content else f"{statement}\n"
        summary = summary_for(imp, "summary-install", self.config)
        # Sent as an append whenever that yields the same text
        if not old_text or (old_text.endswith("\n") and new_text.startswith(old_text)):
            await self._submit(imp.target, summary, appendtext=new_text[len(old_text) :])
        else:
            await self._submit(imp.target, summary, text=new_text)
        return True

    async def uninstall(self, imp: Import) -> bool:
        """Remove every line loading the script, plain or captured."""
        return await self._locked(imp, lambda: self._uninstall(imp))

    async def _uninstall(self, imp: Import) -> bool:
        lines = await self._fetch(imp.target)
        blocks = block_line_indexes(lines)
        matches = set(self._match_plain(lines, imp, blocks))
        items = decode(lines)
        remaining = [item for item in items if not same_item(item, imp, self.config)]
        if not matches and len(remaining) == len(items):
            raise NotFoundError(f"{imp.display_name} is not installed on {imp.target}", title=imp.display_name)
        if len(remaining) == len(items):
            new_lines = [line for index, line in enumerate(lines) if index not in matches]
        else:
            new_lines = replace_wrapper(lines, matches, remaining, self.config.capture_fallback_delay_ms)
        return await self._commit(imp.target, summary_for(imp, "summary-uninstall", self.config), lines, new_lines)

    async def set_disabled(self, imp: Import, disabled: bool) -> bool:
        """Comment out (or back in) every plain line loading the script."""
        return await self._locked(imp, lambda: self._set_disabled(imp, disabled))

    async def _set_disabled(self, imp: Import, disabled: bool) -> bool:
        lines = await self._fetch(imp.target)
        matches = self._match_plain(lines, imp, block_line_indexes(lines))
        if not matches:
            raise NotFoundError(f"{imp.display_name} is not installed on {imp.target}", title=imp.display_name)
        new_lines = list(lines)
        for index in matches:
            line = lines[index]
            is_disabled = bool(_DISABLED_LINE_RGX.match(line))
            if disabled and not is_disabled:
                new_lines[index] = re.sub(r"^(\s*)", r"\1//", line, count=1)
            elif not disabled and is_disabled:
                new_lines[index] = re.sub(r"^(\s*)// ?", r"\1", line, count=1)
        summary_key = "summary-disable" if disabled else "summary-enable"
        return await self._commit(imp.target, summary_for(imp, summary_key, self.config), lines, new_lines)

    async def disable(self, imp: Import) -> bool:
        return await self.set_disabled(imp, True)

    async def enable(self, imp: Import) -> bool:
        return await self.set_disabled(imp, False)

    async def move(self, imp: Import, new_target: str) -> bool:
        """Install the script on ``new_target``, then uninstall it from its current target.

        The two edits are not atomic. If the second one fails the script stays
        on both targets and ``MoveIncompleteError`` is raised.
        """
        if new_target == imp.target:
            return False
        return await self._locked(imp, lambda: self._move(imp, new_target))

    async def _move(self, imp: Import, new_target: str) -> bool:
        lines = await self._fetch(imp.target)
        if not self._is_installed(lines, imp):
            raise NotFoundError(f"{imp.display_name} is not installed on {imp.target}", title=imp.display_name)
        await self.install(imp.with_target(new_target))
        try:
            await self._uninstall(imp)
        except Exception as e:
            logger.error(f"Moved {imp.display_name} to {new_target} but could not remove it from {imp.target}: {e}")
            raise MoveIncompleteError(
                f"{imp.display_name} was installed on {new_target} but is still on {imp.target}",
                source_target=imp.target,
                new_target=new_target,
            ) from e
        logger.info(f"Moved {imp.display_name} from {imp.target} to {new_target}")
        return True

    async def normalize(self, target: str) -> bool:
        """Rewrite every plain statement of a target into its canonical form."""
        return await self.lock.run(self._lock_key(target, ""), lambda: self._normalize(target))

    async def _normalize(self, target: str) -> bool:
        lines = await self._fetch(target)
        blocks = block_line_indexes(lines)
        parsed = [(index, imp) for index, imp in parse_lines(lines, target) if index not in blocks]
        annotated = await asyncio.gather(*(self._annotate(imp) for _, imp in parsed))
        new_lines = list(lines)
        for (index, _), imp in zip(parsed, annotated):
            new_lines[index] = imp.to_statement(self.config)
        summary = build_summary(target, "summary-normalize", "", self.config.strings, self.config)
        return await self._commit(target, summary, lines, new_lines)

    # --- Capture ---

    async def capture(self, imp: Import, name: str | None = None) -> bool:
        """Move the script's plain lines into the capture wrapper at the end of the page."""
        return await self._locked(imp, lambda: self._capture(imp, name))

    async def _capture(self, imp: Import, name: str | None) -> bool:
        lines = await self._fetch(imp.target)
        blocks = block_line_indexes(lines)
        matches = set(self._match_plain(lines, imp, blocks))
        items = decode(lines)
        existing = [item for item in items if same_item(item, imp, self.config)]
        if not matches and not existing:
            raise NotFoundError(f"{imp.display_name} is not installed on {imp.target}", title=imp.display_name)
        preserved = [item for item in items if not same_item(item, imp, self.config)]
        item = build_item(imp, name or (existing[0].name if existing else None), self.config)
        drop = matches | blocks
        new_lines = [line for index, line in enumerate(lines) if index not in drop]
        new_lines = append_wrapper(new_lines, preserved + [item], self.config.capture_fallback_delay_ms)
        return await self._commit(imp.target, summary_for(imp, "summary-capture", self.config), lines, new_lines)

    async def decapture(self, imp: Import) -> bool:
        """Take the script out of the capture wrapper and load it with a plain statement again."""
        return await self._locked(imp, lambda: self._decapture(imp))

    async def _decapture(self, imp: Import) -> bool:
        lines = await self._fetch(imp.target)
        if not find_blocks(lines):
            raise NotFoundError(f"No capture wrapper on {imp.target}", title=imp.display_name)
        items = decode(lines)
        remaining = [item for item in items if not same_item(item, imp, self.config)]
        if len(remaining) == len(items):
            raise NotFoundError(f"{imp.display_name} is not captured on {imp.target}", title=imp.display_name)
        blocks = block_line_indexes(lines)
        new_lines = [line for index, line in enumerate(lines) if index not in blocks]
        while new_lines and not new_lines[-1].strip():
            new_lines.pop()
        if not self._match_plain(new_lines, imp):
            plain = await self._annotate(imp.with_disabled(False))
            new_lines.append(plain.to_statement(self.config))
        new_lines = append_wrapper(new_lines, remaining, self.config.capture_fallback_delay_ms)
        return await self._commit(imp.target, summary_for(imp, "summary-decapture", self.config), lines, new_lines)

