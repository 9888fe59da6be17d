"""Models for scrape session state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, SecretStr

from ..config import (
    BROWSER_HEADLESS,
    CHROME_PATH,
    DIALOG_GRACE,
    DOWNLOAD_DIR,
    DOWNLOAD_TIMEOUT,
    ELEMENT_WAIT,
    EXPORT_TIMEOUT,
    LOGIN_TIMEOUT,
    NAVIGATION_TIMEOUT,
    POLL_INTERVAL,
    RESULTS_TIMEOUT,
    SCRAPE_TIMEOUT,
)


class LifecycleState(str, Enum):
    """Where a session is in its single pass from launch to teardown."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    AUTHENTICATED = "authenticated"
    EXPORTING = "exporting"
    AWAITING_DOWNLOAD = "awaiting_download"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (LifecycleState.COMPLETE, LifecycleState.FAILED)


class Credentials(BaseModel):
    """Portal login pair. The password never renders in repr or logs."""

    user_id: str
    password: SecretStr

    @property
    def masked_user_id(self) -> str:
        return mask_user_id(self.user_id)


def mask_user_id(user_id: str) -> str:
    if len(user_id) <= 2:
        return "*" * len(user_id)
    return user_id[:2] + "*" * (len(user_id) - 2)


class ScrapeConfig(BaseModel):
    """Per-session browser and timeout settings (all durations in seconds)."""

    download_dir: Path = DOWNLOAD_DIR
    headless: bool = BROWSER_HEADLESS
    executable_path: Optional[str] = CHROME_PATH

    timeout: float = SCRAPE_TIMEOUT  # overall session deadline
    navigation_timeout: float = NAVIGATION_TIMEOUT
    element_wait: float = ELEMENT_WAIT
    login_timeout: float = LOGIN_TIMEOUT
    results_timeout: float = RESULTS_TIMEOUT
    export_timeout: float = EXPORT_TIMEOUT
    dialog_grace: float = DIALOG_GRACE
    download_timeout: float = DOWNLOAD_TIMEOUT
    poll_interval: float = POLL_INTERVAL


@dataclass
class DialogEvent:
    """A native dialog raised by the page, answerable exactly once."""

    kind: str  # alert, confirm, prompt, beforeunload
    message: str
    default_prompt: str
    _respond: Callable[[bool], Awaitable[None]]

    @classmethod
    def from_params(cls, params: dict, respond: Callable[[bool], Awaitable[None]]) -> DialogEvent:
        return cls(
            kind=params.get("type", "alert"),
            message=params.get("message", ""),
            default_prompt=params.get("defaultPrompt", ""),
            _respond=respond,
        )

    async def accept(self):
        await self._respond(True)

    async def dismiss(self):
        await self._respond(False)


class DownloadArtifact(BaseModel):
    """A completed download after the deterministic rename."""

    source_name: str
    path: Path
    size: int
