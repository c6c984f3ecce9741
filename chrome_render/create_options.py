"""Caller-facing generation options."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from chrome_render.completion_trigger import CompletionTrigger

DEFAULT_DEVICE_METRICS: dict[str, Any] = {
    "width": 1920,
    "height": 1080,
    "deviceScaleFactor": 0,
    "mobile": False,
}


@dataclass
class ScreenshotOptions:
    """
    Options for image generation.

    Attributes:
        device_metrics: ``Emulation.setDeviceMetricsOverride`` parameters merged over 1920x1080.
        full_page: Resize the visible area to the body height before capturing.
        capture_options: Passed unchanged to ``Page.captureScreenshot`` (format, quality, clip, ...).
    """

    device_metrics: dict[str, Any] = field(default_factory=dict)
    full_page: bool = False
    capture_options: dict[str, Any] = field(default_factory=dict)

    def resolved_device_metrics(self) -> dict[str, Any]:
        return {**DEFAULT_DEVICE_METRICS, **self.device_metrics}


@dataclass
class CreateOptions:
    """
    Options for a single ``create()`` call.

    Attributes:
        host: Host of an already running Chromium. If host and port are both unset, Chromium is launched.
        port: Remote debugging port of an already running Chromium.
        chrome_path: Explicit Chromium binary used when launching.
        chrome_flags: Extra command line flags used when launching.
        print_options: ``Page.printToPDF`` parameters (landscape, printBackground, paperWidth, ...).
        screenshot_options: Image generation options; defaults are used when None.
        completion_trigger: Strategy to wait for before capturing the page.
        timeout: Overall deadline in milliseconds; None disables the deadline.
        clear_cache: Clear the browser cache before navigating.
        cookies: ``Network.setCookies`` cookie params (name, value, domain/url, path, ...).
        extra_http_headers: Headers sent with every request of the page.
        runtime_console_handler: Receives ``Runtime.consoleAPICalled`` events.
        runtime_exception_handler: Receives ``Runtime.exceptionThrown`` events.
    """

    host: str | None = None
    port: int | None = None
    chrome_path: str | None = None
    chrome_flags: list[str] = field(default_factory=list)
    print_options: dict[str, Any] = field(default_factory=dict)
    screenshot_options: ScreenshotOptions | None = None
    completion_trigger: CompletionTrigger | None = None
    timeout: float | None = None
    clear_cache: bool = False
    cookies: list[dict[str, Any]] = field(default_factory=list)
    extra_http_headers: dict[str, str] = field(default_factory=dict)
    runtime_console_handler: Callable[[dict[str, Any]], None] | None = None
    runtime_exception_handler: Callable[[dict[str, Any]], None] | None = None

    @property
    def uses_running_browser(self) -> bool:
        return bool(self.host or self.port)
