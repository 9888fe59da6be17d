"""Script-driven navigation through the portal's login, search and export pages."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Awaitable, Callable, Optional

from ..constants import (
    DOWNLOAD_BEGIN_EVENT,
    ETC_MEISAI_URL,
    POST_LOGIN_MARKER,
    QUERIES,
    RESULTS_READY_JS,
)
from ..errors import AuthenticationError, ElementNotFoundError, ScrapeTimeoutError
from ..models.page import ElementQuery
from ..models.session import Credentials, ScrapeConfig
from .protocol import CommandFailed, CommandTimeout, ProtocolSession

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

# Applies one action to the first element matching the predicate.
# Returns false when nothing matches.
ELEMENT_ACTION_JS = """(function(req) {
    var q = req.query;
    var nodes = document.getElementsByTagName(q.tag || '*');
    for (var i = 0; i < nodes.length; i++) {
        var el = nodes[i];
        var ok = true;
        for (var k in q.attrs) {
            if (el.getAttribute(k) !== q.attrs[k]) { ok = false; break; }
        }
        if (!ok) continue;
        for (var k in q.attr_contains) {
            var v = el.getAttribute(k);
            if (v === null || v.indexOf(q.attr_contains[k]) < 0) { ok = false; break; }
        }
        if (!ok) continue;
        var text = el.textContent || el.value || '';
        for (var j = 0; j < q.text_contains.length; j++) {
            if (text.indexOf(q.text_contains[j]) < 0) { ok = false; break; }
        }
        if (!ok) continue;
        if (q.text_any.length) {
            var any = false;
            for (var j = 0; j < q.text_any.length; j++) {
                if (text.indexOf(q.text_any[j]) >= 0) { any = true; break; }
            }
            if (!any) continue;
        }
        if (req.action === 'click') {
            el.click();
        } else if (req.action === 'set_value') {
            el.value = req.value;
            el.dispatchEvent(new Event('input', {bubbles: true}));
            el.dispatchEvent(new Event('change', {bubbles: true}));
        }
        return true;
    }
    return false;
})"""


def element_script(query: ElementQuery, action: str, value: Optional[str] = None) -> str:
    """Build the page script for ``action`` ("exists", "click", "set_value")."""
    request = {"action": action, "query": query.predicate()}
    if value is not None:
        request["value"] = value
    return f"{ELEMENT_ACTION_JS}({json.dumps(request, ensure_ascii=False)})"


class NavigationDriver:
    """Moves one page from the portal's top page to a started CSV export."""

    def __init__(self, handle: ProtocolSession, config: ScrapeConfig):
        self._handle = handle
        self._config = config

    # ── Element capabilities ────────────────────────────────────────────────

    async def exists(self, query: ElementQuery) -> bool:
        return bool(await self._handle.evaluate_script(element_script(query, "exists")))

    async def set_value(self, query: ElementQuery, value: str):
        found = await self._handle.evaluate_script(element_script(query, "set_value", value))
        if not found:
            raise ElementNotFoundError(f"No element for {query.describe()}")

    async def click(self, query: ElementQuery, timeout: Optional[float] = None):
        """Click the element once it renders, waiting up to ``timeout``.

        Only a missing element is retried. Once the click script has been
        sent, a failed reply (the click navigated and destroyed the execution
        context) counts as clicked, so a button is never pressed twice.
        """
        script = element_script(query, "click")

        async def clicked() -> bool:
            if not await self.exists(query):
                return False
            try:
                return bool(await self._handle.evaluate_script(script))
            except CommandFailed as e:
                logger.debug(f"Reply to click on {query.name} lost: {e}")
                return True

        wait = self._config.element_wait if timeout is None else timeout
        if not await self._wait_until(clicked, wait):
            raise ElementNotFoundError(f"No element for {query.describe()} after {wait}s")
        logger.debug(f"Clicked {query.name}")

    async def wait_for(self, query: ElementQuery, timeout: Optional[float] = None) -> bool:
        wait = self._config.element_wait if timeout is None else timeout
        return await self._wait_until(lambda: self.exists(query), wait)

    async def _wait_until(self, check: Callable[[], Awaitable[bool]], timeout: float) -> bool:
        """Poll ``check`` until it is true or ``timeout`` elapses.

        A script failing mid-navigation (destroyed execution context) counts
        as "not yet"; a lost connection propagates.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            try:
                if await check():
                    return True
            except CommandFailed as e:
                logger.debug(f"Check failed, retrying: {e}")
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self._config.poll_interval)

    async def _navigate(self, url: str):
        try:
            await self._handle.navigate(url)
        except CommandTimeout as e:
            raise ScrapeTimeoutError(f"Navigation to {url} timed out: {e}") from e

    # ── Steps ───────────────────────────────────────────────────────────────

    async def login(self, credentials: Credentials):
        """Fill the login form by script and confirm the post-login menu renders."""
        logger.info(f"[LOGIN] Logging in as {credentials.masked_user_id}...")
        await self._navigate(ETC_MEISAI_URL)
        await self.click(QUERIES["login_link"])

        if not await self.wait_for(QUERIES["login_user_id"]):
            raise ElementNotFoundError(f"Login form did not render: {QUERIES['login_user_id'].describe()}")
        await self.set_value(QUERIES["login_user_id"], credentials.user_id)
        await self.set_value(QUERIES["login_password"], credentials.password.get_secret_value())
        await self.click(QUERIES["login_button"])

        if not await self.wait_for(POST_LOGIN_MARKER, self._config.login_timeout):
            raise AuthenticationError(
                f"Post-login marker {POST_LOGIN_MARKER.name} not found "
                f"within {self._config.login_timeout}s; credentials rejected?"
            )
        logger.info("[LOGIN] Authenticated.")

    async def open_search_criteria(self):
        logger.info("[SEARCH] Opening search criteria...")
        await self.click(QUERIES["search_criteria_link"])

    async def submit_search(self):
        """Select all usage records, save, search, and wait for the results page."""
        for name in ("all_usage_option", "save_settings_button"):
            try:
                await self.click(QUERIES[name])
            except ElementNotFoundError:
                logger.warning(f"[SEARCH] {name} not present, keeping saved setting.")

        await self.click(QUERIES["search_button"])
        logger.info("[SEARCH] Search submitted, waiting for results...")

        async def results_ready() -> bool:
            return bool(await self._handle.evaluate_script(RESULTS_READY_JS))

        if not await self._wait_until(results_ready, self._config.results_timeout):
            raise ScrapeTimeoutError(
                f"Results page did not finish loading within {self._config.results_timeout}s"
            )
        logger.info("[SEARCH] Results ready.")

    async def trigger_export(self) -> str:
        """Click the CSV export link and wait until the browser starts the download.

        The click's reply can be held back by the confirmation dialog, so the
        whole sequence is bounded by ``export_timeout``. Returns the file name
        the browser suggested.
        """
        logger.info("[EXPORT] Requesting CSV export...")
        began = self._handle.subscribe(DOWNLOAD_BEGIN_EVENT)
        try:
            event = await asyncio.wait_for(
                self._click_and_wait(began), timeout=self._config.export_timeout
            )
        except asyncio.TimeoutError:
            raise ScrapeTimeoutError(
                f"Export was not accepted within {self._config.export_timeout}s"
            ) from None
        finally:
            began.close()

        filename = event.get("suggestedFilename", "")
        logger.info(f"[EXPORT] Download started: {filename or '(unnamed)'}")
        return filename

    async def _click_and_wait(self, began) -> dict:
        await self.click(QUERIES["csv_export_link"])
        return await began.next()
