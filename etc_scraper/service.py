"""In-process call surface: one request in, one CSV (or one typed error) out."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from .errors import ArtifactIOError, ScrapeError
from .models.scrape import ScrapeFailure, ScrapeOutcome, ScrapeRequest, ScrapeResult
from .models.session import Credentials, ScrapeConfig, mask_user_id
from .session_manager.browser import launch_browser
from .session_manager.lifecycle import Connector, ScrapeSession

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class ScraperService:
    """Runs scrape requests, each in its own browser session."""

    def __init__(self, base_config: Optional[ScrapeConfig] = None, connector: Connector = launch_browser):
        self._base_config = base_config or ScrapeConfig()
        self._connector = connector

    async def call(self, request: ScrapeRequest) -> ScrapeResult:
        """Scrape for one account. Raises ScrapeError on any failure."""
        logger.info(f"Scrape request received: user_id={mask_user_id(request.user_id)}")
        config = request.to_config(self._base_config)
        session = ScrapeSession(request.credentials(), config, connector=self._connector)
        artifact = await session.run()

        try:
            result = ScrapeResult.from_artifact(artifact)
        except OSError as e:
            raise ArtifactIOError(f"Could not read {artifact.path.name}: {e}", phase="complete") from e

        logger.info(f"Scrape finished: {artifact.source_name}, size={result.size} bytes")
        return result

    async def execute(self, request: ScrapeRequest) -> ScrapeOutcome:
        """Like ``call`` but folds failures into the returned outcome."""
        try:
            result = await self.call(request)
        except ScrapeError as e:
            return ScrapeOutcome(
                ok=False, user_id=request.user_id, failure=ScrapeFailure.from_error(e)
            )
        return ScrapeOutcome(ok=True, user_id=request.user_id, csv_path=result.csv_path)


async def scrape_async(
    credentials: Credentials,
    download_path: Path,
    headless: bool = True,
    timeout: Optional[float] = None,
    connector: Connector = launch_browser,
) -> ScrapeResult:
    request = ScrapeRequest(
        user_id=credentials.user_id,
        password=credentials.password,
        download_path=download_path,
        headless=headless,
        timeout=timeout,
    )
    return await ScraperService(connector=connector).call(request)


def scrape(
    credentials: Credentials,
    download_path: Path,
    headless: bool = True,
    timeout: Optional[float] = None,
    connector: Connector = launch_browser,
) -> ScrapeResult:
    """Fetch the statement CSV for ``credentials`` into ``download_path``.

    Blocks until the file is on disk as ``<user_id>_<name>.csv``. Raises a
    ScrapeError subclass naming the failed phase otherwise.
    """
    return asyncio.run(scrape_async(credentials, download_path, headless, timeout, connector))
