"""Scrape session state machine: one browser, one pass, one typed outcome."""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from typing import Awaitable, Callable, Optional

from ..errors import (
    ArtifactIOError,
    InvalidStateError,
    ProtocolConnectionError,
    ScrapeError,
    ScrapeTimeoutError,
)
from ..models.session import (
    Credentials,
    DownloadArtifact,
    LifecycleState,
    ScrapeConfig,
    mask_user_id,
)
from .browser import launch_browser
from .dialogs import DialogInterceptor
from .downloads import DownloadWatcher, export_lock
from .navigator import NavigationDriver
from .protocol import ProtocolError, ProtocolSession

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

Connector = Callable[[ScrapeConfig], Awaitable[ProtocolSession]]

STEPS = (
    "initialize",
    "login",
    "open_search_criteria",
    "submit_search",
    "trigger_export",
    "await_download",
)

STATE_ORDER = (
    LifecycleState.UNINITIALIZED,
    LifecycleState.READY,
    LifecycleState.AUTHENTICATED,
    LifecycleState.EXPORTING,
    LifecycleState.AWAITING_DOWNLOAD,
    LifecycleState.COMPLETE,
)


class ScrapeSession:
    """Owns one browser for one scrape and sequences every step against it.

    ``run()`` is the whole pass. The individual steps are public so callers
    and tests can drive them one at a time; calling one out of order raises
    InvalidStateError without touching the browser.
    """

    def __init__(
        self,
        credentials: Credentials,
        config: Optional[ScrapeConfig] = None,
        connector: Connector = launch_browser,
    ):
        self.config = config or ScrapeConfig()
        self.user_id = credentials.user_id
        self._credentials: Optional[Credentials] = credentials
        self._connector = connector
        self._handle: Optional[ProtocolSession] = None
        self._driver: Optional[NavigationDriver] = None
        self._interceptor = DialogInterceptor(grace=self.config.dialog_grace)
        self._watcher = DownloadWatcher(poll_interval=self.config.poll_interval)
        self._step_index = 0
        self._started_after: Optional[float] = None
        self._suggested_name: Optional[str] = None
        self._export_lock: Optional[asyncio.Lock] = None
        self.state = LifecycleState.UNINITIALIZED
        self.artifact: Optional[DownloadArtifact] = None

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def masked_user_id(self) -> str:
        return mask_user_id(self.user_id)

    # ── Whole pass ──────────────────────────────────────────────────────────

    async def run(self) -> DownloadArtifact:
        """Run every step under the session deadline, then tear down.

        On failure the session moves to FAILED, the browser is closed, and the
        first error is re-raised. Anything that is not already a ScrapeError
        is wrapped in one, with the original chained.
        """
        logger.info(f"[SESSION] Starting scrape for {self.masked_user_id}")
        try:
            artifact = await asyncio.wait_for(self._sequence(), timeout=self.config.timeout)
        except asyncio.TimeoutError:
            error = ScrapeTimeoutError(
                f"Session exceeded {self.config.timeout}s", phase=self._current_step()
            )
            await self._abort(error)
            raise error from None
        except ScrapeError as e:
            await self._abort(e)
            raise
        except Exception as e:
            error = _typed(e, self._current_step())
            await self._abort(error)
            raise error from e
        except BaseException:
            self._mark_failed()
            await self.close()
            raise

        await self.close()
        logger.info(f"[SESSION] Scrape complete: {artifact.source_name}")
        return artifact

    async def _sequence(self) -> DownloadArtifact:
        await self.initialize()
        await self.login()
        await self.open_search_criteria()
        await self.submit_search()
        await self.trigger_export()
        return await self.await_download()

    async def _abort(self, error: ScrapeError):
        logger.error(f"[SESSION] Scrape failed ({error.kind}): {error}")
        self._mark_failed()
        await self.close()

    def _mark_failed(self):
        if not self.state.is_terminal:
            self._set_state(LifecycleState.FAILED)

    # ── Steps ───────────────────────────────────────────────────────────────

    async def initialize(self):
        """Connect, install the dialog interceptor, and route downloads."""
        self._begin("initialize")
        try:
            self.config.download_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArtifactIOError(
                f"Cannot use download directory {self.config.download_dir}: {e}", phase="initialize"
            ) from e
        try:
            self._handle = await self._connector(self.config)
        except ProtocolError as e:
            raise ProtocolConnectionError(f"Could not open browser: {e}", phase="initialize") from e

        await self._step("initialize", self._prepare_page())
        self._driver = NavigationDriver(self._handle, self.config)
        self._advance(LifecycleState.READY)

    async def _prepare_page(self):
        # The interceptor must be listening before anything can raise a dialog.
        self._interceptor.install(self._handle)
        await self._handle.send_command("Page.enable")
        await self._handle.send_command(
            "Page.setDownloadBehavior",
            {"behavior": "allow", "downloadPath": str(self.config.download_dir.resolve())},
        )

    async def login(self):
        self._begin("login")
        await self._step("login", self._driver.login(self._credentials))
        self._credentials = None
        self._advance(LifecycleState.AUTHENTICATED)

    async def open_search_criteria(self):
        self._begin("open_search_criteria")
        await self._step("open_search_criteria", self._driver.open_search_criteria())
        self._advance(LifecycleState.AUTHENTICATED)

    async def submit_search(self):
        self._begin("submit_search")
        await self._step("submit_search", self._driver.submit_search())
        self._advance(LifecycleState.AUTHENTICATED)

    async def trigger_export(self):
        self._begin("trigger_export")
        await self._hold_download_dir()
        self._set_state(LifecycleState.EXPORTING)
        self._started_after = time.time()
        self._suggested_name = await self._step("trigger_export", self._driver.trigger_export())
        self._advance(LifecycleState.AWAITING_DOWNLOAD)

    async def await_download(self) -> DownloadArtifact:
        self._begin("await_download")
        try:
            self.artifact = await self._step(
                "await_download",
                self._watcher.await_download(
                    self.config.download_dir,
                    started_after=self._started_after,
                    timeout=self.config.download_timeout,
                    user_id=self.user_id,
                    suggested_name=self._suggested_name,
                ),
            )
        finally:
            self._release_download_dir()
        self._advance(LifecycleState.COMPLETE)
        return self.artifact

    async def close(self):
        """Tear the browser down. Safe to call repeatedly and after a failure."""
        self._release_download_dir()
        handle, self._handle = self._handle, None
        if handle is None:
            return
        self._driver = None
        await self._interceptor.uninstall()
        try:
            await handle.close()
        except Exception as e:
            logger.warning(f"[SESSION] Error closing browser: {e}")

    async def _hold_download_dir(self):
        # Held from the export click until the download is renamed, so only
        # one session at a time expects a new file in this directory.
        lock = export_lock(self.config.download_dir)
        if lock.locked():
            logger.info("[SESSION] Download directory busy, waiting for the other export...")
        await lock.acquire()
        self._export_lock = lock

    def _release_download_dir(self):
        lock, self._export_lock = self._export_lock, None
        if lock is not None:
            lock.release()

    # ── Ordering and state ──────────────────────────────────────────────────

    def _current_step(self) -> str:
        return STEPS[min(self._step_index, len(STEPS) - 1)]

    def _begin(self, step: str):
        if self.state.is_terminal:
            raise InvalidStateError(f"Cannot {step}: session is {self.state.value}", phase=step)
        expected = STEPS[self._step_index]
        if step != expected:
            raise InvalidStateError(f"Cannot {step} before {expected}", phase=step)
        if step != "initialize" and self._handle is None:
            raise InvalidStateError(f"Cannot {step}: session is closed", phase=step)

    def _advance(self, state: LifecycleState):
        self._step_index += 1
        self._set_state(state)

    def _set_state(self, state: LifecycleState):
        if state == self.state:
            return
        if self.state.is_terminal:
            raise InvalidStateError(f"Session already {self.state.value}")
        if state != LifecycleState.FAILED and STATE_ORDER.index(state) < STATE_ORDER.index(self.state):
            raise InvalidStateError(f"Cannot move from {self.state.value} back to {state.value}")
        logger.info(f"[SESSION] {self.state.value} -> {state.value}")
        self.state = state

    async def _step(self, phase: str, work: Awaitable):
        """Run one step, racing it against a dialog that could not be answered.

        Protocol failures escaping the step become ProtocolConnectionError;
        every ScrapeError leaves tagged with ``phase``.
        """
        task = asyncio.ensure_future(work)
        waiters = {task}
        failure = self._interceptor.failure
        if failure is not None:
            waiters.add(failure)

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise

        try:
            if task not in done:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                raise failure.exception()
            return task.result()
        except ScrapeError as e:
            if e.phase is None:
                e.phase = phase
            raise
        except ProtocolError as e:
            raise ProtocolConnectionError(str(e), phase=phase) from e


def _typed(error: Exception, phase: str) -> ScrapeError:
    """Wrap a failure no step mapped, so callers only ever see ScrapeError."""
    if isinstance(error, OSError):
        return ArtifactIOError(f"Filesystem error: {error}", phase=phase)
    return ScrapeError(f"Unexpected {type(error).__name__}: {error}", phase=phase)
