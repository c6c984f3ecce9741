"""
Per-request control state shared between the generation pipeline and the
asynchronous failure signals racing against it.

The state is created fresh by every ``Generator.create()`` call and is kept
apart from ``CreateOptions`` so that caller configuration is never used to
carry run-time arbitration flags.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from chrome_render.create_result import ResponseInfo

logger = logging.getLogger(__name__)


@dataclass
class GenerationState:
    """
    Run-time state of a single generation.

    Attributes:
        main_request_id: Network request id of the top-level document (first one seen).
        main_response: Response metadata of the main request, once received.
        exit_condition: The terminal error of this run. Set at most once, never reset.
        settled: True once the arbiter has accepted an outcome; later signals are ignored.
    """

    main_request_id: str | None = None
    main_response: ResponseInfo | None = None
    exit_condition: BaseException | None = None
    settled: bool = False
    _exited: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def fail(self, error: BaseException) -> bool:
        """
        Record ``error`` as the exit condition unless an outcome already exists.

        Returns:
            True if the error became the exit condition, False if it was superseded.
        """
        if self.settled or self.exit_condition is not None:
            logger.debug("Ignoring superseded exit signal: %s", error)
            return False
        logger.debug("Exit condition recorded: %s", error)
        self.exit_condition = error
        self._exited.set()
        return True

    def settle(self) -> None:
        """Mark the run as finished; no exit condition can be recorded afterwards."""
        self.settled = True

    def raise_if_exited(self) -> None:
        """Checkpoint: raise the recorded exit condition, if any."""
        if self.exit_condition is not None:
            raise self.exit_condition

    def track_main_request(self, request_id: str) -> None:
        if self.main_request_id is None:
            self.main_request_id = request_id

    def is_main_request(self, request_id: str | None) -> bool:
        return request_id is not None and request_id == self.main_request_id

    async def exited(self) -> BaseException:
        """Wait until an exit condition is recorded and return it."""
        await self._exited.wait()
        if self.exit_condition is None:
            raise RuntimeError("Exit signalled without an exit condition")
        return self.exit_condition
