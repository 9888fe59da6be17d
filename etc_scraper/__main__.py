"""Command line entry point.

    python -m etc_scraper          scrape every account from the environment
    python -m etc_scraper serve    run the scrape HTTP service
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .config import DOWNLOAD_DIR, ETC_ACCOUNTS, ETC_PASSWORD, ETC_USERNAME
from .models.scrape import ScrapeOutcome, ScrapeRequest
from .service import ScraperService

logging.basicConfig(
    stream=sys.stderr,
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("etc-scraper")


def load_accounts(accounts_json: str = ETC_ACCOUNTS, username: str = ETC_USERNAME, password: str = ETC_PASSWORD) -> list[dict]:
    """Accounts from ETC_ACCOUNTS (JSON list), else ETC_USERNAME/ETC_PASSWORD."""
    if accounts_json:
        accounts = json.loads(accounts_json)
        if not isinstance(accounts, list):
            raise ValueError("ETC_ACCOUNTS must be a JSON list of {user_id, password} objects")
        return accounts
    if username and password:
        return [{"user_id": username, "password": password}]
    return []


async def run_accounts(service: ScraperService, accounts: list[dict], headless: bool | None) -> list[ScrapeOutcome]:
    """Scrape each account in turn; one browser session per account."""
    outcomes = []
    for account in accounts:
        request = ScrapeRequest(
            user_id=account["user_id"],
            password=account["password"],
            download_path=DOWNLOAD_DIR,
            headless=headless,
        )
        outcomes.append(await service.execute(request))
    return outcomes


def format_outcome(outcome: ScrapeOutcome) -> str:
    if outcome.ok:
        return f"OK    {outcome.csv_path}"
    failure = outcome.failure
    return f"FAIL  {failure.kind} during {failure.phase}: {failure.error}"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="etc_scraper")
    parser.add_argument("command", nargs="?", default="scrape", choices=["scrape", "serve"])
    parser.add_argument("--headed", action="store_true", help="show the browser window")
    args = parser.parse_args(argv)

    if args.command == "serve":
        from .session_manager.manager import main as serve

        serve()
        return 0

    accounts = load_accounts()
    if not accounts:
        logger.error("Set ETC_ACCOUNTS or ETC_USERNAME/ETC_PASSWORD.")
        return 2

    headless = False if args.headed else None
    outcomes = asyncio.run(run_accounts(ScraperService(), accounts, headless))
    for index, outcome in enumerate(outcomes, start=1):
        print(f"[{index}/{len(outcomes)}] {format_outcome(outcome)}")
    return 0 if all(o.ok for o in outcomes) else 1


if __name__ == "__main__":
    sys.exit(main())
