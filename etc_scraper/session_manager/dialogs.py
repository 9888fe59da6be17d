"""Automatic acceptance of native dialogs raised by the portal.

The CSV export is gated behind a ``confirm()``. While it is open, Chrome
holds back the reply to the ``Runtime.evaluate`` that clicked the export
link, so the dialog has to be answered from a task that runs independently of
the navigator's pending command.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

from ..constants import DIALOG_OPENING_EVENT
from ..errors import DialogTimeoutError, InvalidStateError, ProtocolConnectionError, ScrapeError
from ..models.session import DialogEvent
from .protocol import EventStream, ProtocolError, ProtocolSession

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class DialogInterceptor:
    """Accepts every dialog the page opens, for the lifetime of a session."""

    def __init__(self, grace: float = 10.0):
        self._grace = grace
        self._handle: Optional[ProtocolSession] = None
        self._stream: Optional[EventStream] = None
        self._task: Optional[asyncio.Task] = None
        self._failure: Optional[asyncio.Future] = None
        self.handled: list[DialogEvent] = []

    @property
    def installed(self) -> bool:
        return self._task is not None

    @property
    def failure(self) -> Optional[asyncio.Future]:
        """Resolves with the ScrapeError that makes the session unusable."""
        return self._failure

    def install(self, handle: ProtocolSession):
        """Subscribe to dialog events and start answering them. Returns at once."""
        if self._task is not None:
            raise InvalidStateError("dialog interceptor is already installed")
        self._handle = handle
        self._stream = handle.subscribe(DIALOG_OPENING_EVENT)
        self._failure = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(), name="dialog-interceptor")
        logger.info("[DIALOG] Interceptor installed.")

    async def uninstall(self):
        if self._task is None:
            return
        task, self._task = self._task, None
        if self._stream:
            self._stream.close()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        if self._failure and not self._failure.done():
            self._failure.cancel()
        elif self._failure and not self._failure.cancelled():
            self._failure.exception()  # mark retrieved
        logger.info(f"[DIALOG] Interceptor removed after {len(self.handled)} dialog(s).")

    async def _run(self):
        async for params in self._stream:
            event = DialogEvent.from_params(params, self._respond)
            logger.info(f"[DIALOG] {event.kind} opened: {event.message!r}")
            try:
                await asyncio.wait_for(event.accept(), timeout=self._grace)
            except asyncio.TimeoutError:
                self._fail(DialogTimeoutError(
                    f"{event.kind} dialog not resolved within {self._grace}s: {event.message!r}"
                ))
                return
            except ProtocolError as e:
                self._fail(ProtocolConnectionError(f"Failed to answer {event.kind} dialog: {e}"))
                return
            self.handled.append(event)
            logger.info(f"[DIALOG] {event.kind} accepted.")

    async def _respond(self, accept: bool):
        await self._handle.send_command("Page.handleJavaScriptDialog", {"accept": accept})

    def _fail(self, error: ScrapeError):
        logger.error(f"[DIALOG] {error}")
        if self._failure and not self._failure.done():
            self._failure.set_exception(error)
