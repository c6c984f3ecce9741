"""Result of a generation: the base64 payload reported by Chromium plus response metadata."""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from chrome_render.sanitization import sanitize_path_for_logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResponseInfo:
    """
    Metadata of the main document response (``Network.Response`` subset).

    Attributes:
        url: Final URL of the main document.
        status: HTTP status code.
        status_text: HTTP status text.
        mime_type: Resource MIME type.
        headers: Response headers as reported by Chromium.
    """

    url: str
    status: int
    status_text: str = ""
    mime_type: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_cdp(cls, response: dict[str, Any]) -> ResponseInfo:
        return cls(
            url=response.get("url", ""),
            status=int(response.get("status", 0)),
            status_text=response.get("statusText", ""),
            mime_type=response.get("mimeType", ""),
            headers=dict(response.get("headers") or {}),
        )


@dataclass(frozen=True)
class CreateResult:
    """
    Immutable generation result.

    Attributes:
        data: Base64 data exactly as returned by ``Page.printToPDF`` / ``Page.captureScreenshot``.
        response: Main document response, None when the input was inline HTML.
    """

    data: str
    response: ResponseInfo | None = None

    def to_base64(self) -> str:
        return self.data

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.data)

    def to_stream(self) -> io.BytesIO:
        return io.BytesIO(self.to_bytes())

    def to_file(self, filename: str | Path) -> None:
        """
        Write the decoded payload to ``filename``.

        Raises:
            OSError: If the file cannot be written (e.g. the directory does not exist).
        """
        path = Path(filename)
        payload = self.to_bytes()
        path.write_bytes(payload)
        logger.debug("Wrote %d bytes to %s", len(payload), sanitize_path_for_logging(str(path)))
