"""
Completion triggers: strategies that decide when a page has finished rendering.

A trigger is handed to ``CreateOptions.completion_trigger``. The generator calls
``init()`` once before navigating and ``wait()`` once after the page load event;
capture only happens after ``wait()`` returns. Every trigger that can time out
raises ``CompletionTriggerTimeoutError`` carrying its own ``timeout_message``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from chrome_render.errors import CompletionTriggerError, CompletionTriggerTimeoutError

if TYPE_CHECKING:
    from playwright.async_api import CDPSession

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 1000
DEFAULT_TIMEOUT_MESSAGE = "CompletionTrigger timed out."
DEFAULT_CALLBACK_NAME = "htmlPdfCb"
DEFAULT_VARIABLE_NAME = "htmlPdfDone"
DEFAULT_LIFECYCLE_EVENT = "firstMeaningfulPaint"


class CompletionTrigger(ABC):
    """
    Base class for all completion triggers.

    Args:
        timeout: Milliseconds until the trigger gives up (default 1000).
        timeout_message: Message of the error raised on timeout.
    """

    def __init__(self, timeout: float | None = None, timeout_message: str | None = None) -> None:
        self.timeout = DEFAULT_TIMEOUT_MS if timeout is None else timeout
        self.timeout_message = timeout_message or DEFAULT_TIMEOUT_MESSAGE

    async def init(self, session: CDPSession) -> None:  # noqa: B027
        """Hook that runs before navigation. No-op by default."""

    def document_started(self, frame_id: str | None, *, awaits_loader: bool = False) -> None:  # noqa: B027
        """Hook called right before the generated document is navigated to. No-op by default."""

    def document_committed(self, loader_id: str | None) -> None:  # noqa: B027
        """Hook called with the loader of a URL navigation once Chromium acknowledged it. No-op by default."""

    @abstractmethod
    async def wait(self, session: CDPSession) -> Any:
        """Return once the page signals readiness; raise on timeout or error."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(timeout={self.timeout})"


class InPageTrigger(CompletionTrigger):
    """
    A trigger whose readiness signal is a promise evaluated inside the page.

    Subclasses provide ``readiness_script()``: a JavaScript statement that calls
    ``resolve()`` once ready. It is wrapped into a promise that rejects with
    ``timeout_message`` after ``timeout`` milliseconds.
    """

    @abstractmethod
    def readiness_script(self) -> str: ...

    def expression(self) -> str:
        return f"""
            new Promise((resolve, reject) => {{
              {self.readiness_script()}
              setTimeout(() => reject({json.dumps(self.timeout_message)}), {json.dumps(self.timeout)});
            }})"""

    async def wait(self, session: CDPSession) -> dict[str, Any]:
        logger.debug("Waiting for %r", self)
        result = await session.send(
            "Runtime.evaluate",
            {"expression": self.expression(), "awaitPromise": True},
        )
        exception_details = result.get("exceptionDetails")
        if exception_details:
            raise self._to_error(result.get("result") or {}, exception_details)
        return result

    def _to_error(self, remote_object: dict[str, Any], exception_details: dict[str, Any]) -> Exception:
        if remote_object.get("value") == self.timeout_message:
            return CompletionTriggerTimeoutError(self.timeout_message)
        exception = exception_details.get("exception") or {}
        text = exception.get("description") or remote_object.get("value") or exception_details.get("text")
        return CompletionTriggerError(str(text))


class Timer(CompletionTrigger):
    """Waits a fixed number of milliseconds; never touches the page."""

    def __init__(self, timeout: float) -> None:
        super().__init__(timeout)

    async def wait(self, session: CDPSession | None = None) -> None:
        await asyncio.sleep(self.timeout / 1000)


class Event(InPageTrigger):
    """
    Waits for a DOM event to fire once.

    Args:
        event: Name of the event to listen for.
        css_selector: Element to listen on; defaults to ``document.body``.
    """

    def __init__(self, event: str, css_selector: str | None = None, timeout: float | None = None, timeout_message: str | None = None) -> None:
        super().__init__(timeout, timeout_message)
        self.event = event
        self.css_selector = css_selector

    def readiness_script(self) -> str:
        target = f"document.querySelector({json.dumps(self.css_selector)})" if self.css_selector else "document.body"
        return f"{target}.addEventListener({json.dumps(self.event)}, () => resolve(), {{ once: true }});"


class Callback(InPageTrigger):
    """Waits for the page to call a global function (``htmlPdfCb`` by default)."""

    def __init__(self, callback_name: str | None = None, timeout: float | None = None, timeout_message: str | None = None) -> None:
        super().__init__(timeout, timeout_message)
        self.callback_name = callback_name or DEFAULT_CALLBACK_NAME

    def readiness_script(self) -> str:
        return f"window[{json.dumps(self.callback_name)}] = () => resolve();"


class Element(InPageTrigger):
    """Waits for an element matching ``css_selector`` to be inserted under ``document.body``."""

    def __init__(self, css_selector: str, timeout: float | None = None, timeout_message: str | None = None) -> None:
        super().__init__(timeout, timeout_message)
        self.css_selector = css_selector

    def readiness_script(self) -> str:
        selector = json.dumps(self.css_selector)
        return f"""new MutationObserver((mutations, observer) => {{
                const inserted = mutations.some((mutation) => [...mutation.addedNodes].some(
                  (node) => node.nodeType === Node.ELEMENT_NODE && (node.matches({selector}) || node.querySelector({selector}))));
                if (inserted) {{
                  observer.disconnect();
                  resolve();
                }}
              }}).observe(document.body, {{ childList: true, subtree: true }});"""


class Variable(InPageTrigger):
    """
    Waits for a global variable (``htmlPdfDone`` by default) to become ``true``.

    Resolves immediately when the variable is already ``true``, so a page that
    sets the flag before the watcher attaches is not missed.
    """

    def __init__(self, variable_name: str | None = None, timeout: float | None = None, timeout_message: str | None = None) -> None:
        super().__init__(timeout, timeout_message)
        self.variable_name = variable_name or DEFAULT_VARIABLE_NAME

    def readiness_script(self) -> str:
        name = json.dumps(self.variable_name)
        return f"""if (window[{name}] === true) {{
                resolve();
                return;
              }}
              let current = window[{name}];
              Object.defineProperty(window, {name}, {{
                configurable: true,
                get: () => current,
                set: (value) => {{
                  current = value;
                  if (value === true) resolve();
                }},
              }});"""


class LifecycleEvent(CompletionTrigger):
    """
    Waits for a Chromium page lifecycle event, e.g. ``firstContentfulPaint`` or ``networkIdle``.

    Lifecycle events are enabled in ``init()`` because the event may fire
    before ``wait()`` gets a chance to subscribe. Enabling them replays the
    milestones of the blank page the tab starts on, so only events of the
    main frame seen after ``document_started()`` count, and for URL
    navigations only those of the loader passed to ``document_committed()``.
    """

    def __init__(self, event_name: str | None = None, timeout: float | None = None, timeout_message: str | None = None) -> None:
        super().__init__(timeout, timeout_message)
        self.event_name = event_name or DEFAULT_LIFECYCLE_EVENT
        self._fired: asyncio.Future[None] | None = None
        self._started = False
        self._frame_id: str | None = None
        self._awaits_loader = False
        self._loader_id: str | None = None
        self._uncommitted: list[dict[str, Any]] = []

    async def init(self, session: CDPSession) -> None:
        self._fired = asyncio.get_running_loop().create_future()
        self._started = False
        self._uncommitted = []
        session.on("Page.lifecycleEvent", self._on_lifecycle_event)
        await session.send("Page.setLifecycleEventsEnabled", {"enabled": True})

    def document_started(self, frame_id: str | None, *, awaits_loader: bool = False) -> None:
        self._started = True
        self._frame_id = frame_id
        self._awaits_loader = awaits_loader
        self._loader_id = None

    def document_committed(self, loader_id: str | None) -> None:
        self._loader_id = loader_id
        self._awaits_loader = False
        uncommitted, self._uncommitted = self._uncommitted, []
        for event in uncommitted:
            self._on_lifecycle_event(event)

    def _on_lifecycle_event(self, event: dict[str, Any]) -> None:
        if not self._started or event.get("name") != self.event_name:
            return
        if self._frame_id is not None and event.get("frameId", self._frame_id) != self._frame_id:
            return
        if self._awaits_loader:
            self._uncommitted.append(event)
            return
        if self._loader_id is not None and event.get("loaderId") != self._loader_id:
            logger.debug("Ignoring lifecycle event %s of loader %s", self.event_name, event.get("loaderId"))
            return
        if self._fired is not None and not self._fired.done():
            logger.debug("Lifecycle event %s fired", self.event_name)
            self._fired.set_result(None)

    async def wait(self, session: CDPSession) -> None:
        if self._fired is None:
            raise RuntimeError("LifecycleEvent.init() must run before wait()")
        try:
            await asyncio.wait_for(asyncio.shield(self._fired), timeout=self.timeout / 1000)
        except TimeoutError:
            raise CompletionTriggerTimeoutError(self.timeout_message) from None
