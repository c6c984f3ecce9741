"""The single terminal CDP call of a generation: print to PDF or capture a screenshot."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from playwright.async_api import CDPSession

    from chrome_render.create_options import ScreenshotOptions
    from chrome_render.generation_state import GenerationState

logger = logging.getLogger(__name__)


class OutputCapture:
    """
    Issues the terminal capture call and returns Chromium's base64 payload untouched.

    The exit condition is checked right before and right after the call: the
    call can take long enough for a timeout or disconnect to happen meanwhile,
    in which case its result is discarded.
    """

    def __init__(self, session: CDPSession, state: GenerationState) -> None:
        self.session = session
        self.state = state

    async def print_to_pdf(self, print_options: dict[str, Any]) -> str:
        return await self._capture("Page.printToPDF", dict(print_options))

    async def capture_screenshot(self, screenshot_options: ScreenshotOptions) -> str:
        if screenshot_options.full_page:
            await self._fit_viewport_to_body(screenshot_options.resolved_device_metrics())
        return await self._capture("Page.captureScreenshot", dict(screenshot_options.capture_options))

    async def _fit_viewport_to_body(self, device_metrics: dict[str, Any]) -> None:
        self.state.raise_if_exited()
        document = await self.session.send("DOM.getDocument")
        body = await self.session.send(
            "DOM.querySelector",
            {"nodeId": document["root"]["nodeId"], "selector": "body"},
        )
        box = await self.session.send("DOM.getBoxModel", {"nodeId": body["nodeId"]})
        height = box["model"]["height"]
        logger.debug("Full page capture, resizing viewport height to %d", height)
        self.state.raise_if_exited()
        await self.session.send("Emulation.setDeviceMetricsOverride", {**device_metrics, "height": height})

    async def _capture(self, method: str, params: dict[str, Any]) -> str:
        self.state.raise_if_exited()
        result = await self.session.send(method, params)
        self.state.raise_if_exited()
        data: str = result["data"]
        logger.debug("%s returned %d base64 characters", method, len(data))
        return data
