"""
Chromium process lifecycle for generations that do not target a running browser.

A ``LaunchedBrowser`` owns both the Playwright driver and the Chromium process
it started, and ``kill()`` tears down both. Browsers reached through an
existing endpoint are never launched or killed here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from playwright.async_api import async_playwright

if TYPE_CHECKING:
    from playwright.async_api import Browser, Playwright

logger = logging.getLogger(__name__)

DEFAULT_CHROME_FLAGS = (
    "--disable-gpu",
    "--hide-scrollbars",
)


async def start_playwright() -> Playwright:
    """
    Start the Playwright driver process.

    The start runs shielded from cancellation: when the caller is cancelled while
    the driver is still starting, the start is awaited to completion and the
    driver stopped again before the cancellation propagates.
    """
    starting = asyncio.ensure_future(async_playwright().start())
    try:
        return await asyncio.shield(starting)
    except asyncio.CancelledError:
        try:
            playwright = await starting
        except Exception as e:  # noqa: BLE001
            logger.debug("Playwright driver failed to start: %s", e)
        else:
            await stop_playwright(playwright)
        raise


async def stop_playwright(playwright: Playwright) -> None:
    try:
        await playwright.stop()
    except Exception as e:  # noqa: BLE001
        logger.warning("Error stopping Playwright: %s", e)


@dataclass
class LaunchConfig:
    """
    Launch parameters.

    Attributes:
        chrome_path: Explicit Chromium executable; Playwright's bundled Chromium when None.
        chrome_flags: Additional flags, merged after the default flags.
    """

    chrome_path: str | None = None
    chrome_flags: list[str] = field(default_factory=list)

    def flags(self) -> list[str]:
        """Default flags followed by caller flags, without duplicates."""
        merged: list[str] = []
        for flag in (*DEFAULT_CHROME_FLAGS, *self.chrome_flags):
            if flag == "--headless":
                continue  # headless mode is requested through Playwright itself
            if flag not in merged:
                merged.append(flag)
        return merged


class LaunchedBrowser:
    """Handle to a Chromium process launched for one generation."""

    def __init__(self, playwright: Playwright, browser: Browser) -> None:
        self.playwright = playwright
        self.browser = browser
        self._killed = False

    @property
    def killed(self) -> bool:
        return self._killed

    async def kill(self) -> None:
        """Terminate the browser and stop the driver. Safe to call repeatedly."""
        if self._killed:
            return
        self._killed = True

        try:
            await self.browser.close()
        except Exception as e:  # noqa: BLE001
            logger.warning("Error closing launched Chromium: %s", e)

        await stop_playwright(self.playwright)

        logger.debug("Launched Chromium stopped")


class BrowserLauncher:
    """Starts Chromium processes through Playwright."""

    async def launch(self, config: LaunchConfig) -> LaunchedBrowser:
        """
        Launch a headless Chromium.

        Raises:
            Exception: Whatever Playwright raised (missing binary, crash on start). The
                driver started for this launch is stopped before the error propagates.
        """
        logger.info("Launching Chromium browser process via Playwright...")
        playwright = await start_playwright()
        try:
            browser = await playwright.chromium.launch(
                headless=True,
                executable_path=config.chrome_path,
                args=config.flags(),
            )
        except BaseException as e:  # includes cancellation by the generation deadline
            logger.error("Failed to launch Chromium: %s", e)
            await stop_playwright(playwright)
            raise

        logger.info("Chromium %s launched", browser.version)
        return LaunchedBrowser(playwright, browser)

    async def kill(self, handle: LaunchedBrowser | None) -> None:
        if handle is not None:
            await handle.kill()
