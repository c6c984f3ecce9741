"""Exceptions raised by the document generators."""


class GenerationError(Exception):
    """Base class for every terminal generation failure."""

    message = "create() failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)

    def __str__(self) -> str:
        return str(self.args[0])


class GenerationTimeoutError(GenerationError):
    """The overall operation deadline elapsed before a result was produced."""

    message = "create() timed out."


class PageNavigationError(GenerationError):
    """The main document request failed to load."""

    message = "create() page navigate failed."


class ConnectionLostError(GenerationError):
    """The CDP connection to Chromium dropped in the middle of a generation."""

    message = "create() connection lost."


class CompletionTriggerTimeoutError(GenerationError):
    """A completion trigger elapsed; carries the trigger's own message."""

    message = "CompletionTrigger timed out."


class CompletionTriggerError(GenerationError):
    """The in-page expression of a completion trigger threw."""

    message = "CompletionTrigger failed."


class TargetCrashedError(ConnectionLostError):
    """The tab crashed or was closed by another client while the browser connection stayed up."""
