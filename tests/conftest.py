"""Pytest configuration and fixtures for chrome-render-service tests."""

import subprocess
import threading
import time
from collections.abc import Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import httpx
import pytest
from playwright.sync_api import sync_playwright

from tests.chromium_utils import ExternalChromium, free_port


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom command-line options to pytest."""
    parser.addoption(
        "--save-test-outputs",
        action="store_true",
        default=False,
        help="Save test output files (PDFs, images, etc.) to disk for manual inspection",
    )


@pytest.fixture
def save_test_outputs(request: pytest.FixtureRequest) -> bool:
    """Fixture to check if test outputs should be saved to disk."""
    return request.config.getoption("--save-test-outputs")


@pytest.fixture(scope="session")
def chromium_executable() -> str:
    """Path of the Chromium build installed by ``playwright install chromium``."""
    with sync_playwright() as playwright:
        return playwright.chromium.executable_path


@pytest.fixture
def external_chromium(chromium_executable: str, tmp_path: Path) -> Iterator[ExternalChromium]:
    """A headless Chromium started outside of Playwright, reachable over its remote debugging port."""
    port = free_port()
    process = subprocess.Popen(
        [
            chromium_executable,
            "--headless",
            "--no-sandbox",
            "--disable-gpu",
            "--no-first-run",
            f"--remote-debugging-port={port}",
            f"--user-data-dir={tmp_path / 'chromium-profile'}",
            "about:blank",
        ],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    chromium = ExternalChromium("127.0.0.1", port, process)
    try:
        deadline = time.monotonic() + 15
        while True:
            try:
                httpx.get(f"http://127.0.0.1:{port}/json/version", timeout=1).raise_for_status()
                break
            except httpx.HTTPError:
                if time.monotonic() > deadline or not chromium.is_running():
                    raise RuntimeError("External Chromium did not open its debugging port") from None
                time.sleep(0.1)
        yield chromium
    finally:
        chromium.kill()


NETWORK_IDLE_PAGE = """<html><body><h1>Waiting for data</h1><script>
window.addEventListener("load", () => setTimeout(() => {
  fetch("/delayed").then(() => document.body.insertAdjacentHTML("beforeend", "<p>network settled</p>"));
}, 100));
</script></body></html>"""


class _PageHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        if self.path == "/slow":
            time.sleep(5)
        elif self.path == "/delayed":
            time.sleep(1)
        status = 404 if self.path == "/missing" else 200
        if self.path == "/network-idle":
            body = NETWORK_IDLE_PAGE.encode()
        else:
            body = f"<html><body><h1>Served {self.path}</h1></body></html>".encode()
        try:
            self.send_response(status)
            self.send_header("Content-Type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
        except (BrokenPipeError, ConnectionResetError):
            pass

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        pass


@pytest.fixture(scope="session")
def http_server() -> Iterator[str]:
    """Base URL of a local HTTP server serving small HTML pages (``/slow`` answers after 5 s, ``/delayed`` after 1 s, ``/missing`` is a 404, ``/network-idle`` fetches ``/delayed`` after load)."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), _PageHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
