"""
Service configuration resolved from environment variables.

Every ``None`` field of ``ServiceConfig`` is read from its environment variable;
out-of-range values fall back to the default with a warning.
"""

from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass

from chrome_render.connection import DEFAULT_HOST, DEFAULT_PORT

logger = logging.getLogger(__name__)

DEFAULT_RENDER_TIMEOUT_MS = 30000


@dataclass
class ServiceConfig:
    """
    Configuration of the HTTP service.

    Attributes:
        chrome_host: Host of a running Chromium (CHROME_HOST). Chromium is launched per request when unset.
        chrome_port: Remote debugging port of a running Chromium (CHROME_PORT, 1-65535).
        chrome_path: Chromium executable used for launching (CHROME_PATH).
        chrome_flags: Extra launch flags, shell-quoted (CHROME_FLAGS).
        render_timeout_ms: Default deadline of a conversion in milliseconds (RENDER_TIMEOUT_MS, 100-600000, default 30000).
        service_version: Reported service version (CHROME_RENDER_SERVICE_VERSION).
        build_timestamp: Reported build timestamp (CHROME_RENDER_SERVICE_BUILD_TIMESTAMP).
    """

    chrome_host: str | None = None
    chrome_port: int | None = None
    chrome_path: str | None = None
    chrome_flags: list[str] | None = None
    render_timeout_ms: int | None = None
    service_version: str | None = None
    build_timestamp: str | None = None

    def __post_init__(self) -> None:
        self.chrome_host = self.chrome_host or os.environ.get("CHROME_HOST") or None
        self.chrome_port = self._validate_port(self.chrome_port)
        self.chrome_path = self.chrome_path or os.environ.get("CHROME_PATH") or None
        if self.chrome_flags is None:
            self.chrome_flags = shlex.split(os.environ.get("CHROME_FLAGS", ""))
        self.render_timeout_ms = _validate_int_config(
            value=self.render_timeout_ms,
            env_var="RENDER_TIMEOUT_MS",
            default=DEFAULT_RENDER_TIMEOUT_MS,
            min_value=100,
            max_value=600000,
        )
        self.service_version = self.service_version or os.environ.get("CHROME_RENDER_SERVICE_VERSION")
        self.build_timestamp = self.build_timestamp or os.environ.get("CHROME_RENDER_SERVICE_BUILD_TIMESTAMP")

    @staticmethod
    def _validate_port(value: int | None) -> int | None:
        if value is None and os.environ.get("CHROME_PORT") is None:
            return None
        return _validate_int_config(value=value, env_var="CHROME_PORT", default=DEFAULT_PORT, min_value=1, max_value=65535)

    @property
    def uses_running_browser(self) -> bool:
        return bool(self.chrome_host or self.chrome_port)

    @property
    def endpoint_description(self) -> str:
        if not self.uses_running_browser:
            return "launched per request"
        return f"{self.chrome_host or DEFAULT_HOST}:{self.chrome_port or DEFAULT_PORT}"


def _validate_int_config(
    value: int | None,
    env_var: str,
    default: int,
    min_value: int,
    max_value: int,
) -> int:
    """
    Validate an integer configuration parameter.

    Args:
        value: Value to validate or None to read from env.
        env_var: Environment variable name.
        default: Default value if env var not set or invalid.
        min_value: Minimum valid value (inclusive).
        max_value: Maximum valid value (inclusive).

    Returns:
        Validated integer configuration value.
    """
    if value is None:
        value = _parse_int(os.environ.get(env_var), default)
    else:
        value = int(value)

    if not (min_value <= value <= max_value):
        logger.warning("%s must be between %s and %s, using default: %s", env_var, min_value, max_value, default)
        return default

    return value


def _parse_int(value: str | None, default: int) -> int:
    """Parse a string to int with a default fallback."""
    try:
        return int(value) if value is not None else default
    except (ValueError, TypeError):
        return default


# Global singleton instance
_service_config: ServiceConfig | None = None


def get_service_config() -> ServiceConfig:
    """
    Get the global ServiceConfig singleton instance.

    Note:
        This is intended for dependency injection in FastAPI endpoints.
    """
    global _service_config  # noqa: PLW0603
    if _service_config is None:
        _service_config = ServiceConfig()
        logger.info("Chromium endpoint: %s, render timeout: %d ms", _service_config.endpoint_description, _service_config.render_timeout_ms)
    return _service_config
