"""Playwright Chromium launch and CDP session management."""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    CDPSession,
    Dialog,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from ..models.session import ScrapeConfig
from .protocol import CommandFailed, CommandTimeout, ConnectionLost, ProtocolSession

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

CLOSED_MARKERS = ("has been closed", "Target closed", "Connection closed", "Browser closed")


class BrowserSession(ProtocolSession):
    """One Chromium instance with a single page, driven over a raw CDP session."""

    def __init__(
        self,
        headless: bool = True,
        executable_path: Optional[str] = None,
        navigation_timeout: float = 30.0,
    ):
        super().__init__()
        self._headless = headless
        self._executable_path = executable_path
        self._navigation_timeout_ms = navigation_timeout * 1000
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._cdp: Optional[CDPSession] = None
        self._connected = False

    @property
    def is_running(self) -> bool:
        return self._connected and self._cdp is not None

    async def start(self):
        """Launch Chromium, open a page and attach a CDP session to it."""
        logger.info(f"Launching Chromium (headless={self._headless})...")
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                executable_path=self._executable_path,
            )
            self._browser.on("disconnected", self._on_disconnected)
            self._connected = True

            self._context = await self._browser.new_context(
                viewport={"width": 1280, "height": 800},
            )
            self._page = await self._context.new_page()
            self._page.set_default_timeout(self._navigation_timeout_ms)
            # Playwright auto-dismisses dialogs when no listener is registered.
            # Answering them is the dialog interceptor's job, over CDP.
            self._page.on("dialog", self._leave_dialog_open)
            self._cdp = await self._context.new_cdp_session(self._page)
        except PlaywrightError as e:
            raise ConnectionLost(f"Failed to launch browser: {e}") from e

        logger.info("Browser ready.")

    def _on_disconnected(self, _browser: Browser):
        if self._connected:
            logger.warning("Browser disconnected.")
        self._connected = False
        self._close_streams()

    def _leave_dialog_open(self, dialog: Dialog):
        logger.debug(f"Dialog seen by Playwright: {dialog.type}")

    def _listen(self, kind: str):
        if self._cdp is None:
            raise ConnectionLost("CDP session is not open")
        self._cdp.on(kind, lambda params: self._emit(kind, params))

    def _translate(self, e: Exception, what: str) -> Exception:
        message = str(e)
        if isinstance(e, PlaywrightTimeoutError):
            return CommandTimeout(f"{what}: {message}")
        if not self._connected or any(marker in message for marker in CLOSED_MARKERS):
            return ConnectionLost(f"{what}: {message}")
        return CommandFailed(f"{what}: {message}")

    async def send_command(self, method: str, params: Optional[dict] = None) -> dict:
        if not self.is_running:
            raise ConnectionLost(f"{method}: browser is not running")
        try:
            return await self._cdp.send(method, params or {})
        except PlaywrightError as e:
            raise self._translate(e, method) from e

    async def evaluate_script(self, source: str) -> Any:
        reply = await self.send_command(
            "Runtime.evaluate",
            {"expression": source, "returnByValue": True, "awaitPromise": True},
        )
        details = reply.get("exceptionDetails")
        if details:
            text = details.get("exception", {}).get("description") or details.get("text", "")
            raise CommandFailed(f"Script error: {text}")
        return reply.get("result", {}).get("value")

    async def navigate(self, url: str):
        if not self.is_running:
            raise ConnectionLost(f"navigate {url}: browser is not running")
        try:
            await self._page.goto(
                url, wait_until="domcontentloaded", timeout=self._navigation_timeout_ms
            )
        except PlaywrightTimeoutError as e:
            logger.warning(f"Navigation timeout, trying with longer wait: {e}")
            try:
                await self._page.goto(
                    url, wait_until="commit", timeout=self._navigation_timeout_ms * 2
                )
            except PlaywrightError as retry_error:
                raise self._translate(retry_error, f"navigate {url}") from retry_error
        except PlaywrightError as e:
            raise self._translate(e, f"navigate {url}") from e

    async def close(self):
        """Detach from the page and shut the browser down."""
        logger.info("Stopping browser session...")
        self._close_streams()

        try:
            if self._cdp:
                await self._cdp.detach()
        except PlaywrightError as e:
            logger.debug(f"Error detaching CDP session: {e}")
        finally:
            self._cdp = None

        try:
            if self._context:
                await self._context.close()
            if self._browser:
                await self._browser.close()
        except PlaywrightError as e:
            logger.warning(f"Error closing browser: {e}")
        finally:
            self._connected = False
            self._context = None
            self._page = None
            self._browser = None

        try:
            if self._playwright:
                await self._playwright.stop()
        finally:
            self._playwright = None

        logger.info("Browser session stopped.")


async def launch_browser(config: ScrapeConfig) -> BrowserSession:
    """Default connector: a fresh browser per scrape session."""
    session = BrowserSession(
        headless=config.headless,
        executable_path=config.executable_path,
        navigation_timeout=config.navigation_timeout,
    )
    try:
        await session.start()
    except ConnectionLost:
        await session.close()
        raise
    return session
