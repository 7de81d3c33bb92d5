"""Connection to a running browser and its page targets."""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit, urlunsplit

import httpx

from pagedriver.config import DriverConfig
from pagedriver.connection import Connection
from pagedriver.errors import PageDriverError, ProtocolError
from pagedriver.page import Page

logger = logging.getLogger(__name__)


class BrowserConnectionError(PageDriverError):
    """The DevTools endpoint could not be reached or understood."""


async def resolve_ws_endpoint(browser_url: str, *, timeout: float = 10.0) -> str:
    """Turn a DevTools HTTP endpoint into the browser's websocket URL.

    ``ws://`` and ``wss://`` URLs are returned unchanged.
    """
    scheme = urlsplit(browser_url).scheme
    if scheme in ("ws", "wss"):
        return browser_url
    version_url = browser_url.rstrip("/") + "/json/version"
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(version_url)
            response.raise_for_status()
            info = response.json()
    except httpx.HTTPError as e:
        raise BrowserConnectionError(
            f"Failed to reach DevTools endpoint at {version_url}: {e}"
        ) from e
    except ValueError as e:
        raise BrowserConnectionError(f"Invalid response from {version_url}") from e
    ws_url = info.get("webSocketDebuggerUrl")
    if not ws_url:
        raise BrowserConnectionError(f"No webSocketDebuggerUrl in {version_url} response")
    logger.debug("Resolved %s to %s", browser_url, ws_url)
    return ws_url


def page_ws_url(browser_ws_url: str, target_id: str) -> str:
    """Websocket URL of a page target served by the same browser."""
    parts = urlsplit(browser_ws_url)
    return urlunsplit((parts.scheme, parts.netloc, f"/devtools/page/{target_id}", "", ""))


class Browser:
    """A running browser; opens one connection per page it creates."""

    def __init__(self, connection: Connection, *, config: DriverConfig | None = None):
        self.config = config or DriverConfig()
        self._connection = connection
        self._pages: dict[str, Page] = {}

    @classmethod
    async def connect(
        cls, browser_url: str | None = None, *, config: DriverConfig | None = None
    ) -> Browser:
        """Attach to the browser at ``browser_url`` (HTTP or websocket)."""
        config = config or DriverConfig.from_env()
        ws_url = await resolve_ws_endpoint(browser_url or config.browser_url)
        connection = await Connection.connect(
            ws_url,
            max_size=config.max_message_size,
            command_timeout=config.command_timeout,
        )
        return cls(connection, config=config)

    @property
    def ws_endpoint(self) -> str:
        return self._connection.url

    def is_connected(self) -> bool:
        return not self._connection.closed

    def pages(self) -> list[Page]:
        return list(self._pages.values())

    async def version(self) -> dict:
        return await self._connection.send("Browser.getVersion")

    async def new_page(self, url: str | None = None) -> Page:
        """Open a new tab; if ``url`` is given, navigate it to network idle."""
        result = await self._connection.send("Target.createTarget", {"url": "about:blank"})
        target_id = result["targetId"]
        connection = await Connection.connect(
            page_ws_url(self._connection.url, target_id),
            max_size=self.config.max_message_size,
            command_timeout=self.config.command_timeout,
        )
        page = await Page.create(
            connection, target_id=target_id, config=self.config, browser=self
        )
        self._pages[target_id] = page
        if url:
            await page.goto(url)
        return page

    async def _close_page(self, page: Page) -> None:
        self._pages.pop(page.target_id, None)
        if self._connection.closed:
            return
        try:
            await self._connection.send("Target.closeTarget", {"targetId": page.target_id})
        except ProtocolError as e:
            logger.warning("Could not close target %s: %s", page.target_id, e)

    async def close(self) -> None:
        """Close every page opened by this browser object, then disconnect."""
        await asyncio.gather(*(page.close() for page in self.pages()))
        await self._connection.close()
