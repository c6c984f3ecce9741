import contextlib
import logging
import platform
import time
from collections.abc import AsyncGenerator
from importlib.metadata import version as package_version
from typing import Annotated, Literal

from fastapi import Depends, FastAPI, Query, Request, Response
from pydantic import BaseModel

from chrome_render.browser_launcher import BrowserLauncher, LaunchConfig
from chrome_render.completion_trigger import Callback, CompletionTrigger, Element, Event, LifecycleEvent, Timer, Variable
from chrome_render.config import ServiceConfig, get_service_config
from chrome_render.connection import ConnectionManager, Endpoint
from chrome_render.create_options import CreateOptions, ScreenshotOptions
from chrome_render.create_result import CreateResult
from chrome_render.errors import (
    CompletionTriggerError,
    CompletionTriggerTimeoutError,
    ConnectionLostError,
    GenerationTimeoutError,
    PageNavigationError,
)
from chrome_render.generators import create, create_screenshot
from chrome_render.metrics_server import MetricsServer, get_metrics_port, is_metrics_server_enabled
from chrome_render.prometheus_metrics import track_generation, update_chromium_info
from chrome_render.sanitization import sanitize_for_logging
from chrome_render.schemas import HealthSchema, VersionSchema


@contextlib.asynccontextmanager
async def lifespan(app_instance: FastAPI) -> AsyncGenerator[None]:  # noqa: ARG001
    """
    Resolve the service configuration once at startup and run the metrics server alongside the API.

    No browser is kept between requests: every conversion launches or connects
    on its own and releases everything it opened before responding.
    """
    config = get_service_config()
    metrics_server = MetricsServer(get_metrics_port()) if is_metrics_server_enabled() else None
    if metrics_server is not None:
        await metrics_server.start()
    logger.info("Chrome render service ready, Chromium %s", config.endpoint_description)

    yield

    if metrics_server is not None:
        try:
            await metrics_server.stop()
        except Exception as e:  # noqa: BLE001
            logger.error("Error stopping metrics server: %s", e)


logger = logging.getLogger(__name__)

app = FastAPI(
    title="Chrome Render Service API",
    version="1.0.0",
    openapi_url="/static/openapi.json",
    docs_url="/api/docs",
    openapi_version="3.1.0",
    lifespan=lifespan,
)


async def check_chromium(config: ServiceConfig) -> str | None:
    """
    Connect to (or launch) Chromium once and return its version, None if that fails.

    Version strings look like "HeadlessChrome/131.0.6778.69"; only the number is returned.
    """
    try:
        if config.uses_running_browser:
            connected = await ConnectionManager().connect(Endpoint.of(config.chrome_host, config.chrome_port))
            try:
                version_string = connected.browser.version
            finally:
                await connected.disconnect()
        else:
            launcher = BrowserLauncher()
            launched = await launcher.launch(LaunchConfig(config.chrome_path, list(config.chrome_flags or [])))
            try:
                version_string = launched.browser.version
            finally:
                await launcher.kill(launched)
    except Exception as e:  # noqa: BLE001
        logger.error("Chromium health check failed: %s", e)
        return None

    chromium_version = version_string.split("/")[1] if "/" in version_string else version_string
    update_chromium_info(chromium_version)
    return chromium_version


@app.get(
    "/health",
    summary="Health check",
    description="Returns health status. Use ?detailed=true for a JSON response.",
    operation_id="getHealth",
    tags=["meta"],
    response_model=None,
    responses={
        200: {
            "content": {
                "text/plain": {"example": "OK"},
                "application/json": {"schema": HealthSchema.model_json_schema()},
            },
            "description": "Service is healthy",
        },
        503: {
            "content": {
                "text/plain": {"example": "Service Unavailable"},
                "application/json": {"schema": HealthSchema.model_json_schema()},
            },
            "description": "Chromium cannot be reached or launched",
        },
    },
)
async def health(
    config: Annotated[ServiceConfig, Depends(get_service_config)],
    detailed: bool = Query(False, description="Return detailed JSON response"),
) -> Response:
    """
    Health check endpoint that verifies Chromium can be reached.

    Returns:
        - Simple mode: 200 with "OK" text or 503 with "Service Unavailable" text
        - Detailed mode: 200/503 with JSON containing status and browser info
    """
    chromium_version = await check_chromium(config)
    healthy = chromium_version is not None

    if detailed:
        health_response = HealthSchema(
            status="healthy" if healthy else "unhealthy",
            version=config.service_version or "unknown",
            chromium_reachable=healthy,
            chromium_version=chromium_version,
            endpoint=config.endpoint_description,
        )
        return Response(
            content=health_response.model_dump_json(),
            media_type="application/json",
            status_code=200 if healthy else 503,
        )

    if healthy:
        return Response("OK", media_type="text/plain", status_code=200)
    return Response("Service Unavailable", media_type="text/plain", status_code=503)


@app.get(
    "/version",
    response_model=VersionSchema,
    summary="Service version information",
    description="Returns versions of Python, Playwright, the service itself, build timestamp, and Chromium.",
    operation_id="getVersion",
    tags=["meta"],
)
async def version(config: Annotated[ServiceConfig, Depends(get_service_config)]) -> dict[str, str | None]:
    """
    Get version information
    """
    logger.info("Version endpoint called")
    version_info = {
        "python": platform.python_version(),
        "playwright": package_version("playwright"),
        "chromeRenderService": config.service_version,
        "timestamp": config.build_timestamp,
        "chromium": await check_chromium(config),
    }
    logger.debug("Version info: %s", version_info)
    return version_info


class RenderOptions(BaseModel):
    """
    Options shared by PDF and image conversion.

    Attributes:
        encoding: Text encoding used to decode the request body when the content type names no charset.
        timeout: Overall deadline in milliseconds; the configured RENDER_TIMEOUT_MS when omitted.
        completion_trigger: Name of the completion trigger to wait for before capturing.
        trigger_arg: Trigger argument: event name, callback name, CSS selector, variable name or lifecycle event.
        trigger_timeout: Trigger timeout in milliseconds (the wait time for 'timer').
        file_name: The filename suggested in the Content-Disposition header.
    """

    encoding: str = "utf-8"
    timeout: int | None = None
    completion_trigger: Literal["timer", "event", "callback", "element", "variable", "lifecycle"] | None = None
    trigger_arg: str | None = None
    trigger_timeout: int | None = None
    file_name: str | None = None

    def build_trigger(self) -> CompletionTrigger | None:
        """
        Raises:
            ValueError: If the chosen trigger needs an argument that is missing.
        """
        name = self.completion_trigger
        if name is None:
            return None
        if name == "timer":
            return Timer(self.trigger_timeout if self.trigger_timeout is not None else 1000)
        if name == "event":
            if not self.trigger_arg:
                raise ValueError("'event' trigger requires trigger_arg with the event name")
            return Event(self.trigger_arg, timeout=self.trigger_timeout)
        if name == "callback":
            return Callback(self.trigger_arg, timeout=self.trigger_timeout)
        if name == "element":
            if not self.trigger_arg:
                raise ValueError("'element' trigger requires trigger_arg with a CSS selector")
            return Element(self.trigger_arg, timeout=self.trigger_timeout)
        if name == "variable":
            return Variable(self.trigger_arg, timeout=self.trigger_timeout)
        return LifecycleEvent(self.trigger_arg, timeout=self.trigger_timeout)

    def create_options(self, config: ServiceConfig) -> CreateOptions:
        return CreateOptions(
            host=config.chrome_host,
            port=config.chrome_port,
            chrome_path=config.chrome_path,
            chrome_flags=list(config.chrome_flags or []),
            completion_trigger=self.build_trigger(),
            timeout=self.timeout if self.timeout is not None else config.render_timeout_ms,
        )


class PdfOptions(BaseModel):
    """
    ``Page.printToPDF`` parameters exposed over HTTP.

    Attributes:
        landscape: Paper orientation.
        print_background: Print background graphics.
        scale: Scale of the webpage rendering (0.1-2).
        paper_width: Paper width in inches.
        paper_height: Paper height in inches.
    """

    landscape: bool = False
    print_background: bool = False
    scale: float | None = None
    paper_width: float | None = None
    paper_height: float | None = None

    def to_print_options(self) -> dict[str, bool | float]:
        print_options: dict[str, bool | float] = {"landscape": self.landscape, "printBackground": self.print_background}
        if self.scale is not None:
            print_options["scale"] = self.scale
        if self.paper_width is not None:
            print_options["paperWidth"] = self.paper_width
        if self.paper_height is not None:
            print_options["paperHeight"] = self.paper_height
        return print_options


class ImageOptions(BaseModel):
    """
    Screenshot parameters exposed over HTTP.

    Attributes:
        width: Viewport width in CSS pixels.
        height: Viewport height in CSS pixels.
        full_page: Capture the whole body instead of the viewport.
        format: Image format, png or jpeg.
        quality: JPEG quality (0-100); ignored for png.
    """

    width: int = 1920
    height: int = 1080
    full_page: bool = False
    format: Literal["png", "jpeg"] = "png"
    quality: int | None = None

    def to_screenshot_options(self) -> ScreenshotOptions:
        capture_options: dict[str, str | int] = {"format": self.format}
        if self.format == "jpeg" and self.quality is not None:
            capture_options["quality"] = self.quality
        return ScreenshotOptions(
            device_metrics={"width": self.width, "height": self.height},
            full_page=self.full_page,
            capture_options=capture_options,
        )


def get_render_options(
    encoding: str = Query(
        "utf-8",
        title="Encoding",
        description="Text encoding used to decode the request body (e.g., utf-8).",
    ),
    timeout: int | None = Query(
        None,
        title="Timeout",
        description="Overall deadline in milliseconds. Defaults to RENDER_TIMEOUT_MS.",
        ge=0,
    ),
    completion_trigger: Literal["timer", "event", "callback", "element", "variable", "lifecycle"] | None = Query(
        None,
        title="Completion Trigger",
        description="Wait for this signal before capturing the page.",
    ),
    trigger_arg: str | None = Query(
        None,
        title="Trigger Argument",
        description="Event name, callback name, CSS selector, variable name or lifecycle event, depending on the trigger.",
    ),
    trigger_timeout: int | None = Query(
        None,
        title="Trigger Timeout",
        description="Trigger timeout in milliseconds (default 1000).",
        ge=0,
    ),
    file_name: str | None = Query(
        None,
        title="Output File Name",
        description="Filename suggested in the Content-Disposition header.",
    ),
) -> RenderOptions:
    return RenderOptions(
        encoding=encoding,
        timeout=timeout,
        completion_trigger=completion_trigger,
        trigger_arg=trigger_arg,
        trigger_timeout=trigger_timeout,
        file_name=file_name,
    )


def get_pdf_options(
    landscape: bool = Query(False, title="Landscape", description="Paper orientation."),
    print_background: bool = Query(False, title="Print Background", description="Print background graphics."),
    scale: float | None = Query(None, title="Scale", description="Scale of the webpage rendering.", ge=0.1, le=2),
    paper_width: float | None = Query(None, title="Paper Width", description="Paper width in inches.", gt=0),
    paper_height: float | None = Query(None, title="Paper Height", description="Paper height in inches.", gt=0),
) -> PdfOptions:
    return PdfOptions(
        landscape=landscape,
        print_background=print_background,
        scale=scale,
        paper_width=paper_width,
        paper_height=paper_height,
    )


def get_image_options(
    width: int = Query(1920, title="Width", description="Viewport width in CSS pixels.", ge=1, le=16384),
    height: int = Query(1080, title="Height", description="Viewport height in CSS pixels.", ge=1, le=16384),
    full_page: bool = Query(False, title="Full Page", description="Capture the full body height."),
    format: Literal["png", "jpeg"] = Query("png", title="Format", description="Image format."),  # noqa: A002
    quality: int | None = Query(None, title="Quality", description="JPEG quality.", ge=0, le=100),
) -> ImageOptions:
    return ImageOptions(width=width, height=height, full_page=full_page, format=format, quality=quality)


CONVERSION_RESPONSES: dict[int | str, dict] = {
    400: {"content": {"text/plain": {}}, "description": "Invalid Input"},
    422: {"content": {"text/plain": {}}, "description": "Completion trigger timed out or failed"},
    500: {"content": {"text/plain": {}}, "description": "Internal Conversion Error"},
    502: {"content": {"text/plain": {}}, "description": "Page navigation failed"},
    503: {"content": {"text/plain": {}}, "description": "Connection to Chromium lost"},
    504: {"content": {"text/plain": {}}, "description": "Conversion timed out"},
}


@app.post(
    "/convert/html",
    responses={200: {"content": {"application/pdf": {}}, "description": "PDF file generated from the provided HTML or URL"}, **CONVERSION_RESPONSES},
    summary="Convert HTML to PDF",
    description="Accepts raw HTML or a URL in the request body and returns a PDF printed by Chromium.",
    operation_id="convert_html_post",
    tags=["convert"],
)
async def convert_html(
    request: Request,
    render: Annotated[RenderOptions, Depends(get_render_options)],
    pdf: Annotated[PdfOptions, Depends(get_pdf_options)],
    config: Annotated[ServiceConfig, Depends(get_service_config)],
) -> Response:
    """
    Convert HTML content (or the page at a URL) from the request body to a PDF document.
    """
    start_time = time.time()
    logger.info("HTML to PDF conversion requested")
    try:
        with track_generation("pdf"):
            html = await __read_body(request, render.encoding)
            options = render.create_options(config)
            options.print_options = pdf.to_print_options()
            result = await create(html, options)
    except Exception as e:
        return __handle_conversion_error(e, "PDF")

    logger.info("PDF conversion finished in %.0f ms", (time.time() - start_time) * 1000)
    return __create_response(result, "application/pdf", render.file_name or "converted-document.pdf")


@app.post(
    "/convert/html-to-image",
    responses={200: {"content": {"image/png": {}, "image/jpeg": {}}, "description": "Screenshot of the provided HTML or URL"}, **CONVERSION_RESPONSES},
    summary="Convert HTML to image",
    description="Accepts raw HTML or a URL in the request body and returns a screenshot taken by Chromium.",
    operation_id="convert_html_to_image_post",
    tags=["convert"],
)
async def convert_html_to_image(
    request: Request,
    render: Annotated[RenderOptions, Depends(get_render_options)],
    image: Annotated[ImageOptions, Depends(get_image_options)],
    config: Annotated[ServiceConfig, Depends(get_service_config)],
) -> Response:
    """
    Capture a screenshot of HTML content (or the page at a URL) from the request body.
    """
    start_time = time.time()
    logger.info("HTML to image conversion requested")
    try:
        with track_generation("image"):
            html = await __read_body(request, render.encoding)
            options = render.create_options(config)
            options.screenshot_options = image.to_screenshot_options()
            result = await create_screenshot(html, options)
    except Exception as e:
        return __handle_conversion_error(e, "image")

    logger.info("Image conversion finished in %.0f ms", (time.time() - start_time) * 1000)
    return __create_response(result, f"image/{image.format}", render.file_name or f"screenshot.{image.format}")


async def __read_body(request: Request, encoding: str) -> str:
    raw: bytes = await request.body()
    logger.debug("Received body of size: %d bytes", len(raw))
    charset = __get_encoding(request, encoding)
    logger.debug("Using encoding: %s", charset)
    return raw.decode(charset)


def __get_encoding(request: Request, encoding: str | None) -> str:
    ct = request.headers.get("content-type", "")
    charset = None
    with contextlib.suppress(Exception):
        if "charset=" in ct:
            charset = ct.split("charset=", 1)[1].split(";", 1)[0].strip()
    return charset or encoding or "utf-8"


def __create_response(result: CreateResult, media_type: str, file_name: str) -> Response:
    logger.debug("Creating response with filename: %s", file_name)
    response = Response(result.to_bytes(), media_type=media_type, status_code=200)
    response.headers.append("Content-Disposition", f"attachment; filename={file_name}")
    response.headers.append("Python-Version", platform.python_version())
    if result.response is not None:
        response.headers.append("Source-Status", str(result.response.status))
    return response


def __handle_conversion_error(e: Exception, kind: str) -> Response:
    if isinstance(e, GenerationTimeoutError):
        return __process_error(e, f"{kind} conversion timed out", 504)
    if isinstance(e, PageNavigationError):
        return __process_error(e, "Page navigation failed", 502)
    if isinstance(e, (CompletionTriggerTimeoutError, CompletionTriggerError)):
        return __process_error(e, "Completion trigger did not fire", 422)
    if isinstance(e, ConnectionLostError):
        return __process_error(e, "Connection to Chromium lost", 503)
    if isinstance(e, (UnicodeDecodeError, LookupError)):
        return __process_error(e, "Cannot decode request body", 400)
    if isinstance(e, ValueError):
        return __process_error(e, "Invalid conversion options", 400)
    return __process_error(e, f"Unexpected error due converting to {kind}", 500)


def __process_error(e: Exception, err_msg: str, status: int) -> Response:
    logger.exception("%s: %s", err_msg, sanitize_for_logging(str(e)))
    return Response(err_msg + ": " + str(e), media_type="text/plain", status_code=status)
