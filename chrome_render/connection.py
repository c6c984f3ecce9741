"""
Connections to running Chromium instances, and the tabs and CDP sessions opened on them.

Every generation works in its own tab (a fresh browser context with one page)
with its own CDP session, so concurrent generations against the same browser
never see each other's events. The tab and session are always closed by the
generation that opened them; a browser this module merely connected to is
only disconnected from, never terminated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from chrome_render.browser_launcher import start_playwright, stop_playwright
from chrome_render.errors import ConnectionLostError, TargetCrashedError

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, CDPSession, Page, Playwright

    from chrome_render.generation_state import GenerationState

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 9222


@dataclass(frozen=True)
class Endpoint:
    """Remote debugging endpoint of a running Chromium."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @classmethod
    def of(cls, host: str | None, port: int | None) -> Endpoint:
        return cls(host=host or DEFAULT_HOST, port=port or DEFAULT_PORT)

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass
class Tab:
    """A browsing context opened for exactly one generation."""

    context: BrowserContext
    page: Page
    closed: bool = False


class ConnectedBrowser:
    """A CDP connection to a browser owned by someone else."""

    def __init__(self, playwright: Playwright, browser: Browser, endpoint: Endpoint) -> None:
        self.playwright = playwright
        self.browser = browser
        self.endpoint = endpoint
        self._disconnected = False

    async def disconnect(self) -> None:
        """Drop the connection, leaving the browser itself running. Idempotent."""
        if self._disconnected:
            return
        self._disconnected = True

        try:
            await self.browser.close()
        except Exception as e:  # noqa: BLE001
            logger.warning("Error disconnecting from %s: %s", self.endpoint.url, e)

        await stop_playwright(self.playwright)


class ConnectionManager:
    """Opens and closes connections, tabs and CDP sessions."""

    async def connect(self, endpoint: Endpoint) -> ConnectedBrowser:
        logger.debug("Connecting to Chromium at %s", endpoint.url)
        playwright = await start_playwright()
        try:
            browser = await playwright.chromium.connect_over_cdp(endpoint.url)
        except BaseException:
            await stop_playwright(playwright)
            raise
        logger.info("Connected to Chromium %s at %s", browser.version, endpoint.url)
        return ConnectedBrowser(playwright, browser, endpoint)

    async def open_tab(self, browser: Browser) -> Tab:
        context = await browser.new_context()
        try:
            page = await context.new_page()
        except BaseException:
            await self._close_quietly(context)
            raise
        return Tab(context=context, page=page)

    async def open_session(self, tab: Tab) -> CDPSession:
        return await tab.context.new_cdp_session(tab.page)

    async def close_session(self, session: CDPSession | None, state: GenerationState) -> None:
        if session is None or _connection_lost(state):
            return
        try:
            await session.detach()
        except Exception as e:  # noqa: BLE001
            logger.debug("CDP session already detached: %s", e)

    async def close_tab(self, tab: Tab | None, state: GenerationState) -> None:
        """Close ``tab`` unless it is already closed or the connection is gone. Never raises."""
        if tab is None or tab.closed:
            return
        tab.closed = True
        if _connection_lost(state):
            logger.debug("Skipping tab close, connection already lost")
            return

        try:
            await tab.page.close()
        except Exception as e:  # noqa: BLE001
            logger.warning("Error closing page: %s", e)
        await self._close_quietly(tab.context)

    @staticmethod
    async def _close_quietly(context: BrowserContext) -> None:
        try:
            await context.close()
        except Exception as e:  # noqa: BLE001
            logger.warning("Error closing context: %s", e)


def _connection_lost(state: GenerationState) -> bool:
    """True when the browser itself is gone and closing anything would only hit a dead connection."""
    condition = state.exit_condition
    return isinstance(condition, ConnectionLostError) and not isinstance(condition, TargetCrashedError)
