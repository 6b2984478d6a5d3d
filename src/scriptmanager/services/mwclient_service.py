"""``mwclient``-backed wiki edit service."""

import asyncio
import logging

import mwclient
from mwclient.errors import MwClientError

from scriptmanager.exceptions import TransportFailure
from scriptmanager.services import EditRequest

logger = logging.getLogger("scriptmanager.services.mwclient")


def _parse_site_url(site_url: str) -> tuple[str, str]:
    """Split a site URL or bare host into ``(host, scheme)``."""
    if site_url.startswith("https://"):
        return site_url[8:].rstrip("/"), "https"
    if site_url.startswith("http://"):
        return site_url[7:].rstrip("/"), "http"
    return site_url.lstrip("/").rstrip("/"), "https"


class MWClientEditService:
    """Async ``WikiEditService`` over the blocking ``mwclient`` API.

    The site connection and login happen on first use. Every call runs in a
    worker thread; ``mwclient`` and network errors surface as ``TransportFailure``.
    """

    def __init__(self, host: str, user_name: str = "", password: str = "", *, path: str = "/w/"):
        self.host, self.scheme = _parse_site_url(host)
        self.user_name = user_name
        self.password = password
        self.path = path
        self._site: mwclient.Site | None = None

    def _get_site(self) -> mwclient.Site:
        if self._site is None:
            site = mwclient.Site(self.host, scheme=self.scheme, path=self.path)
            if self.user_name and self.password:
                site.login(self.user_name, self.password)
                logger.info(f"Logged in to {self.host} as {self.user_name}")
            self._site = site
        return self._site

    def _get_text_sync(self, title: str) -> str:
        page = self._get_site().pages[title]
        return page.text() if page.exists else ""

    def _post_edit_sync(self, request: EditRequest) -> None:
        page = self._get_site().pages[request.title]
        if request.appendtext is not None:
            page.append(request.appendtext, summary=request.summary)
        else:
            page.edit(request.text, summary=request.summary)

    async def get_text(self, title: str) -> str:
        try:
            return await asyncio.to_thread(self._get_text_sync, title)
        except (MwClientError, OSError) as e:
            logger.error(f"Failed to fetch {title} from {self.host}: {e}")
            raise TransportFailure(f"Failed to fetch {title} from {self.host}: {e}") from e

    async def post_edit(self, request: EditRequest) -> None:
        try:
            await asyncio.to_thread(self._post_edit_sync, request)
        except (MwClientError, OSError) as e:
            logger.error(f"Failed to save {request.title} on {self.host}: {e}")
            raise TransportFailure(f"Failed to save {request.title} on {self.host}: {e}") from e
        logger.info(f"Saved {request.title} on {self.host}")


async def fetch_raw_page(host: str, title: str) -> str:
    """Source of a page on any wiki, read anonymously. Used for documentation lookups."""
    return await MWClientEditService(host).get_text(title)
