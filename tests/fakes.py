"""Scriptable stand-in for the portal behind a CDP session."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

from etc_scraper.constants import QUERIES, RESULTS_READY_JS
from etc_scraper.models.session import ScrapeConfig
from etc_scraper.session_manager.navigator import ELEMENT_ACTION_JS
from etc_scraper.session_manager.protocol import CommandFailed, ConnectionLost, ProtocolSession

QUERY_NAMES = {json.dumps(q.predicate(), sort_keys=True): name for name, q in QUERIES.items()}

DIALOG_MESSAGE = "CSVファイルをダウンロードしますか？"


def fast_config(download_dir: Path, **overrides) -> ScrapeConfig:
    values = dict(
        download_dir=download_dir,
        headless=True,
        timeout=5.0,
        element_wait=0.2,
        login_timeout=0.2,
        results_timeout=0.2,
        export_timeout=1.0,
        dialog_grace=0.1,
        download_timeout=1.0,
        poll_interval=0.01,
    )
    values.update(overrides)
    return ScrapeConfig(**values)


class FakePortal(ProtocolSession):
    """Plays the portal's page flow in memory.

    Elements appear as the flow advances (top page → login form → menu →
    search form → results). Clicking the export link opens a confirm dialog
    and holds the click's reply until ``Page.handleJavaScriptDialog`` arrives,
    like Chrome does. Once answered, the download begins and ``report_name``
    is written into the directory given by ``Page.setDownloadBehavior``.
    """

    def __init__(
        self,
        user_id: str = "user01",
        password: str = "s3cret",
        results_ready: bool = True,
        resolve_dialog: bool = True,
        dialog_delay: float = 0.0,
        begin_download: bool = True,
        report_name: Optional[str] = "report.csv",
        report_content: bytes = "利用年月日,料金\n2024/01/01,1200\n".encode("utf-8"),
        file_delay: float = 0.05,
        missing: tuple[str, ...] = (),
        reply_lost_on: tuple[str, ...] = (),
    ):
        super().__init__()
        self.user_id = user_id
        self.password = password
        self.results_ready = results_ready
        self.resolve_dialog = resolve_dialog
        self.dialog_delay = dialog_delay
        self.begin_download = begin_download
        self.report_name = report_name
        self.report_content = report_content
        self.file_delay = file_delay
        self.missing = set(missing)
        self.reply_lost_on = set(reply_lost_on)

        self.commands: list[tuple[str, dict]] = []
        self.navigations: list[str] = []
        self.clicks: list[str] = []
        self.values: dict[str, str] = {}
        self.events: list[str] = []
        self.close_calls = 0
        self.connect_calls = 0
        self.download_path: Optional[Path] = None
        self.fail_methods: set[str] = set()

        self._page = "blank"
        self._dialog_answered = asyncio.Event()

    async def connect(self, config: ScrapeConfig) -> FakePortal:
        self.connect_calls += 1
        return self

    # ── ProtocolSession ─────────────────────────────────────────────────────

    async def send_command(self, method: str, params: Optional[dict] = None) -> dict:
        params = params or {}
        self.commands.append((method, params))
        if method in self.fail_methods:
            raise ConnectionLost(f"{method}: connection dropped")
        if method == "Page.setDownloadBehavior":
            self.download_path = Path(params["downloadPath"])
        elif method == "Page.handleJavaScriptDialog":
            if not self.resolve_dialog:
                await asyncio.Event().wait()  # the page never lets go
            self.events.append("dialog_handled")
            self._dialog_answered.set()
        return {}

    async def navigate(self, url: str):
        if "navigate" in self.fail_methods:
            raise ConnectionLost(f"navigate {url}: connection dropped")
        self.navigations.append(url)
        self._page = "top"

    async def evaluate_script(self, source: str) -> Any:
        if source == RESULTS_READY_JS:
            return self._page == "results" and self.results_ready
        assert source.startswith(ELEMENT_ACTION_JS), source
        request = json.loads(source[len(ELEMENT_ACTION_JS) + 1:-1])
        name = QUERY_NAMES[json.dumps(request["query"], sort_keys=True)]
        if not self._visible(name):
            return False

        action = request["action"]
        if action == "set_value":
            self.values[name] = request["value"]
        elif action == "click":
            self.clicks.append(name)
            await self._on_click(name)
            if name in self.reply_lost_on:
                raise CommandFailed("Execution context was destroyed, most likely because of a navigation")
        return True

    async def close(self):
        self.close_calls += 1
        self._close_streams()

    # ── Page flow ───────────────────────────────────────────────────────────

    def _visible(self, name: str) -> bool:
        if name in self.missing:
            return False
        pages = {
            "login_link": {"top"},
            "login_user_id": {"login"},
            "login_password": {"login"},
            "login_button": {"login"},
            "search_criteria_link": {"menu"},
            "all_usage_option": {"criteria"},
            "save_settings_button": {"criteria"},
            "search_button": {"criteria"},
            "csv_export_link": {"results"},
        }
        return self._page in pages[name]

    async def _on_click(self, name: str):
        if name == "login_link":
            self._page = "login"
        elif name == "login_button":
            ok = (
                self.values.get("login_user_id") == self.user_id
                and self.values.get("login_password") == self.password
            )
            self._page = "menu" if ok else "login"
        elif name == "search_criteria_link":
            self._page = "criteria"
        elif name == "search_button":
            self._page = "results"
        elif name == "csv_export_link":
            await self._export()

    async def _export(self):
        if self.dialog_delay:
            await asyncio.sleep(self.dialog_delay)
        self.events.append("dialog_opened")
        self._emit(
            "Page.javascriptDialogOpening",
            {"type": "confirm", "message": DIALOG_MESSAGE, "defaultPrompt": ""},
        )
        await self._dialog_answered.wait()
        self.events.append("export_click_returned")

        if self.begin_download:
            self._emit(
                "Page.downloadWillBegin",
                {"guid": "g-1", "url": "https://example.invalid/csv", "suggestedFilename": self.report_name},
            )
        if self.report_name:
            asyncio.get_running_loop().call_later(self.file_delay, self._write_report)

    def _write_report(self):
        (self.download_path / self.report_name).write_bytes(self.report_content)
