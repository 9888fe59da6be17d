"""Application configuration loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Credentials
ETC_USERNAME = os.getenv("ETC_USERNAME", "")
ETC_PASSWORD = os.getenv("ETC_PASSWORD", "")
ETC_ACCOUNTS = os.getenv("ETC_ACCOUNTS", "")  # JSON: [{"user_id": ..., "password": ...}]

# Paths
DOWNLOAD_DIR = Path(os.getenv("DOWNLOAD_DIR", "./downloads"))

# Browser
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "true").lower() == "true"
CHROME_PATH = os.getenv("CHROME_PATH") or os.getenv("CHROMIUM_PATH") or None

# Timeouts (seconds)
SCRAPE_TIMEOUT = float(os.getenv("SCRAPE_TIMEOUT", "180"))
NAVIGATION_TIMEOUT = float(os.getenv("NAVIGATION_TIMEOUT", "30"))
ELEMENT_WAIT = float(os.getenv("ELEMENT_WAIT", "10"))
LOGIN_TIMEOUT = float(os.getenv("LOGIN_TIMEOUT", "15"))
RESULTS_TIMEOUT = float(os.getenv("RESULTS_TIMEOUT", "30"))
EXPORT_TIMEOUT = float(os.getenv("EXPORT_TIMEOUT", "30"))
DIALOG_GRACE = float(os.getenv("DIALOG_GRACE", "10"))
DOWNLOAD_TIMEOUT = float(os.getenv("DOWNLOAD_TIMEOUT", "30"))
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "0.5"))

# HTTP service
SERVICE_HOST = os.getenv("SERVICE_HOST", "127.0.0.1")
SERVICE_PORT = int(os.getenv("SERVICE_PORT", "8025"))
SERVICE_URL = f"http://{SERVICE_HOST}:{SERVICE_PORT}"


def ensure_dirs(download_dir: Path = DOWNLOAD_DIR):
    """Create the download directory if it doesn't exist."""
    download_dir.mkdir(parents=True, exist_ok=True)
