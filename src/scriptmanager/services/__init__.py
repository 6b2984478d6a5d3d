"""Wiki edit transport: the service protocol and an in-memory backend."""

import logging
from typing import Protocol

from pydantic import BaseModel, model_validator

from scriptmanager.config import ScriptManagerConfig

logger = logging.getLogger("scriptmanager.services")


class EditRequest(BaseModel):
    """One page edit. Exactly one of ``text`` (full replacement) and ``appendtext`` is set."""

    title: str
    summary: str
    text: str | None = None
    appendtext: str | None = None

    @model_validator(mode="after")
    def _check_payload(self) -> "EditRequest":
        if (self.text is None) == (self.appendtext is None):
            raise ValueError("Exactly one of text and appendtext must be set")
        return self


class WikiEditService(Protocol):
    """Fetches and saves wiki pages."""

    async def get_text(self, title: str) -> str:
        """Current wikitext of a page, or an empty string if it does not exist."""
        ...

    async def post_edit(self, request: EditRequest) -> None:
        """Save an edit. Raises ``TransportFailure`` on failure."""
        ...


class ServiceRegistry:
    """Picks the service for a target: the cross-site target lives on another wiki."""

    def __init__(self, primary: WikiEditService, cross_site: WikiEditService | None = None):
        self.primary = primary
        self.cross_site = cross_site or primary

    def for_target(self, target: str, config: ScriptManagerConfig) -> WikiEditService:
        if config.is_global(target):
            return self.cross_site
        return self.primary


class InMemoryEditService:
    """Dict-backed service that records every edit request.

    Used by the tests and by ``--dry-run`` runs, where it is seeded with the
    real page texts and never writes back.
    """

    def __init__(self, pages: dict[str, str] | None = None):
        self.pages: dict[str, str] = dict(pages or {})
        self.requests: list[EditRequest] = []
        self.fetches: list[str] = []

    async def get_text(self, title: str) -> str:
        self.fetches.append(title)
        return self.pages.get(title, "")

    async def post_edit(self, request: EditRequest) -> None:
        self.requests.append(request)
        if request.appendtext is not None:
            self.pages[request.title] = self.pages.get(request.title, "") + request.appendtext
        else:
            self.pages[request.title] = request.text
        logger.debug(f"Recorded edit of {request.title}: {request.summary}")


class DryRunEditService(InMemoryEditService):
    """Reads pages through another service but only records edits.

    Pages edited during the run are served from the local copy afterwards, so
    a sequence of operations sees its own changes.
    """

    def __init__(self, source: WikiEditService):
        super().__init__()
        self.source = source

    async def get_text(self, title: str) -> str:
        if title not in self.pages:
            self.pages[title] = await self.source.get_text(title)
        return await super().get_text(title)
