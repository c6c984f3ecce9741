"""
Dedicated metrics server for the Prometheus metrics endpoint.

The render API and ``/metrics`` listen on different ports so that the metrics
endpoint can be isolated at the network level.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os

import uvicorn
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

logger = logging.getLogger(__name__)

MIN_VALID_PORT = 1024
MAX_VALID_PORT = 65535
DEFAULT_METRICS_PORT = 9180
STARTUP_TIMEOUT_SECONDS = 10.0

metrics_app = FastAPI(
    title="Chrome Render Metrics",
    version="1.0.0",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)


@metrics_app.get("/metrics")
async def metrics() -> Response:
    """
    Expose conversion counters, durations and in-progress gauges in Prometheus text format.
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def get_metrics_port() -> int:
    """
    Metrics server port from METRICS_PORT (default: 9180).

    Falls back to the default if the value is not a valid unprivileged port.
    """
    port_str = os.environ.get("METRICS_PORT", str(DEFAULT_METRICS_PORT))
    try:
        port = int(port_str)
    except ValueError:
        logger.warning("Invalid METRICS_PORT value '%s', using default: %d", port_str, DEFAULT_METRICS_PORT)
        return DEFAULT_METRICS_PORT
    if not (MIN_VALID_PORT <= port <= MAX_VALID_PORT):
        logger.warning("METRICS_PORT must be between %d and %d, using default: %d", MIN_VALID_PORT, MAX_VALID_PORT, DEFAULT_METRICS_PORT)
        return DEFAULT_METRICS_PORT
    return port


def is_metrics_server_enabled() -> bool:
    """True if METRICS_SERVER_ENABLED is unset or truthy."""
    return os.environ.get("METRICS_SERVER_ENABLED", "true").lower() in ("true", "1", "yes", "on")


class MetricsServer:
    """
    Runs ``metrics_app`` on its own uvicorn server inside the service's event loop.

    Args:
        port: Port to listen on (default: 9180).
    """

    def __init__(self, port: int = DEFAULT_METRICS_PORT) -> None:
        self.port = port
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None
        self._started = False

    async def start(self) -> None:
        """Start the metrics server in the background and wait until it accepts connections."""
        if self._started:
            logger.warning("Metrics server already started")
            return

        config = uvicorn.Config(app=metrics_app, host="", port=self.port, log_level="warning")
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve())

        loop = asyncio.get_running_loop()
        start_time = loop.time()
        while not self._server.started:
            if loop.time() - start_time > STARTUP_TIMEOUT_SECONDS:
                logger.error("Metrics server failed to start within %s seconds", STARTUP_TIMEOUT_SECONDS)
                self._started = True
                await self.stop()
                raise TimeoutError(f"Metrics server failed to start within {STARTUP_TIMEOUT_SECONDS} seconds")
            await asyncio.sleep(0.01)

        self._started = True
        logger.info("Metrics server started on port %d", self.port)

    async def stop(self) -> None:
        if not self._started:
            return

        if self._server:
            self._server.should_exit = True

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except TimeoutError:
                self._task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._task

        self._started = False
        logger.info("Metrics server stopped")

    @property
    def is_running(self) -> bool:
        return self._started
