"""Helpers that keep user-supplied documents, URLs and paths safe to log."""

import re
from pathlib import Path
from urllib.parse import urlparse

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")


def sanitize_for_logging(text: str, max_length: int = 1000) -> str:
    """Sanitize text for safe logging.

    Newlines become spaces, remaining control characters are dropped and the
    result is truncated to ``max_length`` with a ``...[truncated]`` marker.

    Args:
        text: The input text; non-strings are converted with ``str()``.
        max_length: Maximum length of the returned text (before the marker).

    Returns:
        str: The sanitized text.

    """
    if not isinstance(text, str):
        text = str(text)

    text = text.replace("\n", " ").replace("\r", " ")
    text = _CONTROL_CHARS.sub("", text)

    if len(text) > max_length:
        text = text[:max_length] + "...[truncated]"

    return text


def sanitize_url_for_logging(url: str | None) -> str:
    """Sanitize a URL for logging by dropping credentials, query and fragment.

    ``data:`` URLs only keep their media type since the payload may be a whole document.

    Args:
        url: The URL to sanitize. If None, returns 'None'.

    Returns:
        str: The sanitized URL.

    """
    if url is None:
        return "None"

    try:
        parsed = urlparse(url)
        if parsed.scheme.lower() == "data":
            media_type = parsed.path.split(",", 1)[0]
            return sanitize_for_logging(f"data:{media_type},...", max_length=100)
        safe_url = f"{parsed.scheme}://{parsed.hostname or ''}"
        if parsed.port:
            safe_url += f":{parsed.port}"
        safe_url += parsed.path or "/"
        return sanitize_for_logging(safe_url, max_length=200)
    except ValueError:
        return sanitize_for_logging(url, max_length=200)


def sanitize_html_for_logging(html: str) -> str:
    """Describe an inline HTML document by its size and a short prefix."""
    return f"<inline html, {len(html)} chars: {sanitize_for_logging(html, max_length=60)}>"


def sanitize_path_for_logging(path: str | None) -> str:
    """Show only the file name of ``path``; directories may contain user data."""
    if path is None:
        return "None"
    return sanitize_for_logging(Path(path).name, max_length=100)
