"""
Page preparation and navigation over a CDP session.

``NavigationController.prepare()`` enables the protocol domains, installs the
network and runtime observers and applies request-level options. After that,
``navigate()`` either loads a URL or injects inline HTML into the main frame
and returns once the page has loaded.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from chrome_render.create_result import ResponseInfo
from chrome_render.errors import PageNavigationError
from chrome_render.sanitization import sanitize_html_for_logging, sanitize_url_for_logging

if TYPE_CHECKING:
    from playwright.async_api import CDPSession

    from chrome_render.create_options import CreateOptions
    from chrome_render.generation_state import GenerationState

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"^(https?|file|data):", re.IGNORECASE)


def is_url(target: str) -> bool:
    """Return True when ``target`` starts with a navigable scheme; anything else is inline HTML."""
    return URL_PATTERN.match(target) is not None


class NavigationController:
    """
    Drives one tab from a blank page to a loaded document.

    Args:
        session: CDP session bound to the generation's tab.
        state: Control state of the generation; receives the main request and failures.
        options: Generation options (cache, cookies, headers, observers, trigger).
        device_metrics: ``Emulation.setDeviceMetricsOverride`` parameters, for screenshots.
    """

    def __init__(
        self,
        session: CDPSession,
        state: GenerationState,
        options: CreateOptions,
        device_metrics: dict[str, Any] | None = None,
    ) -> None:
        self.session = session
        self.state = state
        self.options = options
        self.device_metrics = device_metrics
        self.main_frame_id: str | None = None

    async def prepare(self) -> None:
        """Enable domains, install observers and apply request options. Checkpoints after every call."""
        await self._send("Page.enable")
        await self._send("Network.enable")
        await self._send("Runtime.enable")
        if self.device_metrics is not None:
            await self._send("DOM.enable")

        frame_tree = await self._send("Page.getFrameTree")
        self.main_frame_id = frame_tree["frameTree"]["frame"]["id"]

        if self.options.clear_cache:
            logger.debug("Clearing browser cache")
            await self._send("Network.clearBrowserCache")

        self._install_observers()

        if self.options.extra_http_headers:
            await self._send("Network.setExtraHTTPHeaders", {"headers": dict(self.options.extra_http_headers)})
        if self.device_metrics is not None:
            await self._send("Emulation.setDeviceMetricsOverride", self.device_metrics)
        if self.options.cookies:
            await self._send("Network.setCookies", {"cookies": list(self.options.cookies)})

        trigger = self.options.completion_trigger
        if trigger is not None:
            await trigger.init(self.session)
            self.state.raise_if_exited()

    async def navigate(self, target: str) -> None:
        """Load ``target`` (URL or inline HTML) and return once the page load event has been seen."""
        self.state.raise_if_exited()
        load_fired = self._event_future("Page.loadEventFired")
        trigger = self.options.completion_trigger
        if trigger is not None:
            trigger.document_started(self.main_frame_id, awaits_loader=is_url(target))
        try:
            if is_url(target):
                await self._navigate_to_url(target, load_fired)
            else:
                await self._set_document_content(target, load_fired)
        finally:
            if not load_fired.done():
                load_fired.cancel()
        self.state.raise_if_exited()

    async def _navigate_to_url(self, url: str, load_fired: asyncio.Future[Any]) -> None:
        logger.debug("Navigating to %s", sanitize_url_for_logging(url))
        command = asyncio.ensure_future(self.session.send("Page.navigate", {"url": url}))
        try:
            await asyncio.wait({command, load_fired}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not command.done():
                command.add_done_callback(_consume_result)

        # The acknowledgment and the load event may arrive in either order; both are needed.
        ack = await command
        trigger = self.options.completion_trigger
        if trigger is not None:
            trigger.document_committed(ack.get("loaderId"))
        if ack.get("errorText"):
            logger.warning("Navigation to %s failed: %s", sanitize_url_for_logging(url), ack["errorText"])
            self.state.fail(PageNavigationError())
        self.state.raise_if_exited()
        await load_fired

    async def _set_document_content(self, html: str, load_fired: asyncio.Future[Any]) -> None:
        logger.debug("Setting document content to %s", sanitize_html_for_logging(html))
        command = asyncio.ensure_future(
            self.session.send("Page.setDocumentContent", {"frameId": self.main_frame_id, "html": html}),
        )
        try:
            await asyncio.wait({command, load_fired}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not command.done():
                command.add_done_callback(_consume_result)
        if command.done():
            command.result()

    def _install_observers(self) -> None:
        self.session.on("Network.requestWillBeSent", self._on_request_will_be_sent)
        self.session.on("Network.loadingFailed", self._on_loading_failed)
        self.session.on("Network.responseReceived", self._on_response_received)

        if self.options.runtime_console_handler is not None:
            self.session.on("Runtime.consoleAPICalled", _guarded(self.options.runtime_console_handler))
        if self.options.runtime_exception_handler is not None:
            self.session.on("Runtime.exceptionThrown", _guarded(self.options.runtime_exception_handler))

    def _on_request_will_be_sent(self, event: dict[str, Any]) -> None:
        if event.get("type") == "Document" and event.get("frameId") == self.main_frame_id:
            self.state.track_main_request(event["requestId"])

    def _on_loading_failed(self, event: dict[str, Any]) -> None:
        if self.state.is_main_request(event.get("requestId")):
            logger.warning("Main document failed to load: %s", event.get("errorText"))
            self.state.fail(PageNavigationError())

    def _on_response_received(self, event: dict[str, Any]) -> None:
        if self.state.is_main_request(event.get("requestId")):
            self.state.main_response = ResponseInfo.from_cdp(event.get("response") or {})
            logger.debug("Main document response: %d %s", self.state.main_response.status, sanitize_url_for_logging(self.state.main_response.url))

    def _event_future(self, event_name: str) -> asyncio.Future[Any]:
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        def on_event(event: dict[str, Any]) -> None:
            if not future.done():
                future.set_result(event)

        self.session.once(event_name, on_event)
        return future

    async def _send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        self.state.raise_if_exited()
        result = await self.session.send(method, params)
        self.state.raise_if_exited()
        return result


def _guarded(handler: Callable[[dict[str, Any]], None]) -> Callable[[dict[str, Any]], None]:
    """Wrap a caller-supplied observer so its failures are logged instead of breaking the event loop."""

    def call(event: dict[str, Any]) -> None:
        try:
            handler(event)
        except Exception:
            logger.exception("Runtime event handler raised")

    return call


def _consume_result(task: asyncio.Future[Any]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Late navigation command failure ignored: %s", task.exception())
