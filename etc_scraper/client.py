"""Client helpers for the scrape HTTP service."""

from __future__ import annotations

from typing import Optional

import httpx

from .config import SERVICE_URL


async def _call_service(
    method: str,
    path: str,
    json_body: dict | None = None,
    base_url: str = SERVICE_URL,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """Make a request to the scrape service."""
    url = f"{base_url}{path}"
    try:
        async with httpx.AsyncClient(timeout=300.0, transport=transport) as client:
            if method == "GET":
                resp = await client.get(url)
            else:
                resp = await client.post(url, json=json_body or {})
            return resp.json()

    except httpx.ConnectError:
        return {
            "ok": False,
            "error": f"Scrape service is not reachable at {base_url}. "
            "Start it with: python -m etc_scraper serve",
        }
    except httpx.TimeoutException:
        return {"ok": False, "error": "Scrape service timed out. The portal may be slow."}
    except ValueError as e:
        return {"ok": False, "error": f"Scrape service returned invalid JSON: {e}"}


async def request_scrape(
    user_id: str,
    password: str,
    download_path: Optional[str] = None,
    headless: Optional[bool] = None,
    timeout: Optional[float] = None,
    include_content: bool = False,
    base_url: str = SERVICE_URL,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """Ask the scrape service to fetch the statement CSV for one account.

    Returns the service's JSON: ``{"ok": True, "csv_path": ..., "size": ...}``
    on success, or ``{"ok": False, "error": ..., "kind": ..., "phase": ...}``.
    """
    body: dict = {"user_id": user_id, "password": password, "include_content": include_content}
    if download_path is not None:
        body["download_path"] = download_path
    if headless is not None:
        body["headless"] = headless
    if timeout is not None:
        body["timeout"] = timeout
    return await _call_service("POST", "/scrape", body, base_url=base_url, transport=transport)


async def service_status(
    base_url: str = SERVICE_URL,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    return await _call_service("GET", "/status", base_url=base_url, transport=transport)
