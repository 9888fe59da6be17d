"""Scrape HTTP service.

Runs as a lightweight local web server in front of ScraperService, so other
processes can request a statement CSV without embedding a browser.

Endpoints:
    POST /scrape   - Scrape one account, return the CSV location
    GET  /status   - Return request counters
"""

from __future__ import annotations

import logging
import sys

from aiohttp import web
from pydantic import ValidationError

from ..config import SERVICE_HOST, SERVICE_PORT, ensure_dirs
from ..errors import ScrapeError
from ..models.scrape import ScrapeFailure, ScrapeRequest
from ..service import ScraperService

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

ERROR_STATUS = {
    "authentication": 401,
    "not_found": 404,
    "invalid_state": 409,
    "connection": 502,
    "timeout": 504,
    "download_timeout": 504,
    "io": 500,
}


class ServiceStats:
    def __init__(self):
        self.running = 0
        self.completed = 0
        self.failed = 0

    def to_dict(self) -> dict:
        return {"running": self.running, "completed": self.completed, "failed": self.failed}


# ── HTTP Handlers ────────────────────────────────────────────────────────────


async def handle_scrape(request: web.Request) -> web.Response:
    service: ScraperService = request.app["service"]
    stats: ServiceStats = request.app["stats"]

    try:
        body = await request.json()
        scrape_request = ScrapeRequest(**body)
    except (ValueError, TypeError, ValidationError) as e:
        return web.json_response({"ok": False, "error": f"Invalid request: {e}"}, status=400)

    stats.running += 1
    try:
        result = await service.call(scrape_request)
    except ScrapeError as e:
        stats.failed += 1
        failure = ScrapeFailure.from_error(e)
        return web.json_response(
            {"ok": False, **failure.model_dump()},
            status=ERROR_STATUS.get(e.kind, 500),
        )
    finally:
        stats.running -= 1

    stats.completed += 1
    return web.json_response(result.to_json(include_content=scrape_request.include_content))


async def handle_status(request: web.Request) -> web.Response:
    stats: ServiceStats = request.app["stats"]
    return web.json_response(stats.to_dict())


# ── App Factory ──────────────────────────────────────────────────────────────


def create_app(service: ScraperService | None = None) -> web.Application:
    app = web.Application()
    app["service"] = service or ScraperService()
    app["stats"] = ServiceStats()

    app.router.add_post("/scrape", handle_scrape)
    app.router.add_get("/status", handle_status)

    return app


def main():
    """Run the scrape service as a standalone HTTP service."""
    ensure_dirs()
    app = create_app()
    logger.info(f"Scrape service starting on {SERVICE_HOST}:{SERVICE_PORT}")
    web.run_app(app, host=SERVICE_HOST, port=SERVICE_PORT)


if __name__ == "__main__":
    main()
