"""
Generation orchestrator: HTML or URL in, base64 PDF or screenshot out.

A generation runs as a pipeline task (launch or connect, open a tab, prepare,
navigate, wait for the completion trigger, capture) raced against the exit
signals recorded in its ``GenerationState``: the overall deadline, loss of the
browser connection, a crashed or closed page, and a failed main document. The
first outcome wins. When an exit signal wins, the pipeline is cancelled and
awaited so that it can close its session, its tab and, if it launched one,
the browser, before the recorded error is raised.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from playwright.async_api import Error as PlaywrightError

from chrome_render.browser_launcher import BrowserLauncher, LaunchConfig, LaunchedBrowser
from chrome_render.capture import OutputCapture
from chrome_render.connection import ConnectedBrowser, ConnectionManager, Endpoint, Tab
from chrome_render.create_options import CreateOptions, ScreenshotOptions
from chrome_render.create_result import CreateResult
from chrome_render.errors import ConnectionLostError, GenerationTimeoutError, TargetCrashedError
from chrome_render.generation_state import GenerationState
from chrome_render.navigation import NavigationController, is_url
from chrome_render.sanitization import sanitize_html_for_logging, sanitize_url_for_logging

if TYPE_CHECKING:
    from playwright.async_api import Browser

logger = logging.getLogger(__name__)

# Seconds a failed protocol call waits for the browser's "disconnected" event,
# which Playwright may deliver after the call itself has been rejected.
DISCONNECT_GRACE = 0.5


class Generator(ABC):
    """
    Single-use orchestrator for one ``create()`` call.

    Args:
        html: A URL (http, https, file or data scheme) or an inline HTML document.
        options: Generation options; defaults are used when None.
        launcher: Starts Chromium when no running browser is configured.
        connections: Connects to a running Chromium and manages tabs and sessions.
    """

    def __init__(
        self,
        html: str,
        options: CreateOptions | None = None,
        *,
        launcher: BrowserLauncher | None = None,
        connections: ConnectionManager | None = None,
    ) -> None:
        self.html = html
        self.options = options or CreateOptions()
        self.launcher = launcher or BrowserLauncher()
        self.connections = connections or ConnectionManager()

    async def create(self) -> CreateResult:
        """
        Run the generation to its single terminal outcome.

        Raises:
            GenerationTimeoutError: The deadline elapsed first.
            ConnectionLostError: The browser connection dropped or the page crashed.
            PageNavigationError: The main document failed to load.
            CompletionTriggerTimeoutError: The completion trigger timed out.
            CompletionTriggerError: The completion trigger failed inside the page.
        """
        state = GenerationState()
        deadline = self._arm_deadline(state)
        try:
            state.raise_if_exited()
            return await self._arbitrate(state)
        finally:
            if deadline is not None:
                deadline.cancel()

    def _arm_deadline(self, state: GenerationState) -> asyncio.TimerHandle | None:
        timeout = self.options.timeout
        if timeout is None:
            return None
        if timeout <= 0:
            state.fail(GenerationTimeoutError())
            return None
        return asyncio.get_running_loop().call_later(timeout / 1000, self._on_deadline, state)

    def _on_deadline(self, state: GenerationState) -> None:
        if state.fail(GenerationTimeoutError()):
            logger.warning("Generation timed out after %s ms", self.options.timeout)

    async def _arbitrate(self, state: GenerationState) -> CreateResult:
        pipeline = asyncio.ensure_future(self._run(state))
        exited = asyncio.ensure_future(state.exited())
        try:
            await asyncio.wait({pipeline, exited}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            pipeline.cancel()
            await asyncio.wait({pipeline})
            raise
        finally:
            exited.cancel()

        if pipeline.done():
            error = pipeline.exception()
            if error is None:
                return pipeline.result()
            state.fail(error)
            raise state.exit_condition or error

        # Only the exit condition can have completed the wait here
        logger.debug("Exit condition won the race, cancelling the generation: %s", state.exit_condition)
        pipeline.cancel()
        await asyncio.wait({pipeline})
        if not pipeline.cancelled() and pipeline.exception() is not None:
            logger.debug("Generation ended with a superseded error: %s", pipeline.exception())
        raise exited.result()

    async def _run(self, state: GenerationState) -> CreateResult:
        launched: LaunchedBrowser | None = None
        connected: ConnectedBrowser | None = None
        try:
            if self.options.uses_running_browser:
                connected = await self.connections.connect(Endpoint.of(self.options.host, self.options.port))
                browser = connected.browser
            else:
                launched = await self.launcher.launch(LaunchConfig(self.options.chrome_path, list(self.options.chrome_flags)))
                browser = launched.browser

            disconnected = self._watch_browser(browser, state)
            state.raise_if_exited()
            return await self._generate_in_tab(browser, state, disconnected)
        finally:
            if connected is not None:
                await connected.disconnect()
            await self.launcher.kill(launched)

    def _watch_browser(self, browser: Browser, state: GenerationState) -> asyncio.Event:
        disconnected = asyncio.Event()

        def on_disconnected(_: Browser) -> None:
            disconnected.set()
            if state.fail(ConnectionLostError()):
                logger.warning("Connection to Chromium lost")

        browser.on("disconnected", on_disconnected)
        if not browser.is_connected():
            on_disconnected(browser)
        return disconnected

    def _watch_page(self, browser: Browser, tab: Tab, state: GenerationState) -> None:
        def on_crash(_: Any) -> None:
            if state.fail(TargetCrashedError()):
                logger.warning("Page crashed")

        def on_close(_: Any) -> None:
            if tab.closed:
                return
            # Pages also close when the whole connection goes away
            error = TargetCrashedError() if browser.is_connected() else ConnectionLostError()
            if state.fail(error):
                logger.warning("Page closed unexpectedly: %s", error)

        tab.page.on("crash", on_crash)
        tab.page.on("close", on_close)

    async def _generate_in_tab(self, browser: Browser, state: GenerationState, disconnected: asyncio.Event) -> CreateResult:
        tab: Tab | None = None
        session = None
        try:
            tab = await self.connections.open_tab(browser)
            self._watch_page(browser, tab, state)
            session = await self.connections.open_session(tab)

            navigation = NavigationController(session, state, self.options, self._device_metrics())
            await navigation.prepare()
            await navigation.navigate(self.html)

            trigger = self.options.completion_trigger
            if trigger is not None:
                await trigger.wait(session)
                state.raise_if_exited()

            data = await self._capture(OutputCapture(session, state))
            state.settle()
            return CreateResult(data=data, response=state.main_response)
        except Exception as e:
            if isinstance(e, PlaywrightError) and state.exit_condition is None:
                await self._wait_for_disconnect(disconnected)
            # Recorded before cleanup so that closing the tab or browser cannot supersede it.
            state.fail(e)
            raise
        finally:
            await self.connections.close_session(session, state)
            await self.connections.close_tab(tab, state)

    @staticmethod
    async def _wait_for_disconnect(disconnected: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(disconnected.wait(), timeout=DISCONNECT_GRACE)
        except TimeoutError:
            return

    def _device_metrics(self) -> dict[str, Any] | None:
        return None

    @abstractmethod
    async def _capture(self, capture: OutputCapture) -> str: ...

    def describe_target(self) -> str:
        return sanitize_url_for_logging(self.html) if is_url(self.html) else sanitize_html_for_logging(self.html)


class PDFGenerator(Generator):
    """Prints the loaded page with ``Page.printToPDF``."""

    async def _capture(self, capture: OutputCapture) -> str:
        return await capture.print_to_pdf(self.options.print_options)


class ScreenshotGenerator(Generator):
    """Captures the loaded page with ``Page.captureScreenshot``."""

    @property
    def screenshot_options(self) -> ScreenshotOptions:
        return self.options.screenshot_options or ScreenshotOptions()

    def _device_metrics(self) -> dict[str, Any] | None:
        return self.screenshot_options.resolved_device_metrics()

    async def _capture(self, capture: OutputCapture) -> str:
        return await capture.capture_screenshot(self.screenshot_options)


async def create(html: str, options: CreateOptions | None = None) -> CreateResult:
    """Generate a PDF from a URL or inline HTML."""
    generator = PDFGenerator(html, options)
    logger.info("Generating PDF from %s", generator.describe_target())
    result = await generator.create()
    logger.info("PDF generated successfully, %d base64 characters", len(result.data))
    return result


async def create_screenshot(html: str, options: CreateOptions | None = None) -> CreateResult:
    """Capture a screenshot of a URL or inline HTML."""
    generator = ScreenshotGenerator(html, options)
    logger.info("Capturing screenshot of %s", generator.describe_target())
    result = await generator.create()
    logger.info("Screenshot captured successfully, %d base64 characters", len(result.data))
    return result
