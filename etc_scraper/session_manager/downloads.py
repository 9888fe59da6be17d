"""Bounded wait for the browser's out-of-band CSV write, then the user-id rename."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
import re
import sys
import weakref
from pathlib import Path
from typing import Optional

from ..constants import DOWNLOAD_PATTERN, PARTIAL_DOWNLOAD_SUFFIXES
from ..errors import ArtifactIOError, DownloadTimeoutError, InvalidStateError
from ..models.session import DownloadArtifact

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

LONG_PATH_PREFIX = "\\\\?\\"
LONG_UNC_PREFIX = "\\\\?\\UNC\\"


def normalize_download_path(path: str) -> Path:
    """Strip the Windows extended-length prefix Chrome may report."""
    if path.startswith(LONG_UNC_PREFIX):
        path = "\\\\" + path[len(LONG_UNC_PREFIX):]
    elif path.startswith(LONG_PATH_PREFIX):
        path = path[len(LONG_PATH_PREFIX):]
    return Path(path)


def artifact_name(user_id: str, original: str) -> str:
    safe_id = re.sub(r"[^\w.-]", "_", user_id)
    return f"{safe_id}_{original}"


def is_partial(name: str) -> bool:
    return name.lower().endswith(PARTIAL_DOWNLOAD_SUFFIXES)


def matches_suggested(name: str, suggested: str) -> bool:
    """True for ``suggested`` itself or Chrome's ``name (N).ext`` variant of it."""
    if name == suggested:
        return True
    stem, ext = os.path.splitext(suggested)
    return re.fullmatch(re.escape(stem) + r" \(\d+\)" + re.escape(ext), name) is not None


_export_locks: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()


def export_lock(directory: Path) -> asyncio.Lock:
    """The lock serializing exports into ``directory`` on the running loop."""
    locks = _export_locks.setdefault(asyncio.get_running_loop(), {})
    return locks.setdefault(Path(directory).resolve(), asyncio.Lock())


class DownloadWatcher:
    """Polls a directory for a finished download newer than a start time."""

    def __init__(self, poll_interval: float = 0.5, pattern: str = DOWNLOAD_PATTERN):
        self._poll_interval = poll_interval
        self._pattern = pattern.lower()
        self._polling = False

    async def await_download(
        self,
        directory: Path,
        started_after: float,
        timeout: float,
        user_id: str,
        suggested_name: Optional[str] = None,
    ) -> DownloadArtifact:
        """Wait for a stable file and rename it to ``<user_id>_<name>``.

        With ``suggested_name`` only that file (or its uniquified variant) is
        accepted; otherwise any matching file not already carrying this
        user's prefix. Raises DownloadTimeoutError when nothing stabilizes
        within ``timeout`` and ArtifactIOError when the directory cannot be
        read or the rename fails.
        """
        if self._polling:
            raise InvalidStateError("a download poll is already running")
        self._polling = True
        try:
            found = await self._poll(directory, started_after, timeout, user_id, suggested_name)
        finally:
            self._polling = False
        return self._finalize(found, user_id)

    async def _poll(
        self,
        directory: Path,
        started_after: float,
        timeout: float,
        user_id: str,
        suggested_name: Optional[str],
    ) -> Path:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        previous: dict[Path, int] = {}
        wanted = suggested_name or self._pattern
        logger.info(f"[DOWNLOAD] Waiting up to {timeout}s for {wanted} in {directory}")

        while True:
            current = self._scan(directory, started_after, user_id, suggested_name)
            stable = [path for path, size in current.items() if previous.get(path) == size]
            if stable:
                return max(stable, key=_mtime)
            previous = current

            if loop.time() >= deadline:
                raise DownloadTimeoutError(
                    f"No completed download of {wanted} in {directory} within {timeout}s"
                )
            await asyncio.sleep(self._poll_interval)

    def _accepts(self, name: str, user_id: str, suggested_name: Optional[str]) -> bool:
        if is_partial(name):
            return False
        if suggested_name:
            return matches_suggested(name, suggested_name)
        if name.startswith(artifact_name(user_id, "")):
            return False  # already delivered to this user
        return fnmatch.fnmatch(name.lower(), self._pattern)

    def _scan(
        self,
        directory: Path,
        started_after: float,
        user_id: str,
        suggested_name: Optional[str],
    ) -> dict[Path, int]:
        """Sizes of candidate files: finished, matching, and new enough."""
        sizes: dict[Path, int] = {}
        try:
            entries = list(os.scandir(directory))
        except FileNotFoundError:
            return sizes
        except OSError as e:
            raise ArtifactIOError(f"Cannot read download directory {directory}: {e}") from e

        for entry in entries:
            if not self._accepts(entry.name, user_id, suggested_name):
                continue
            try:
                if not entry.is_file():
                    continue
                stat = entry.stat()
            except FileNotFoundError:
                continue  # renamed or removed between listing and stat
            if stat.st_mtime < started_after or stat.st_size == 0:
                continue
            sizes[Path(entry.path)] = stat.st_size
        return sizes

    def _finalize(self, found: Path, user_id: str) -> DownloadArtifact:
        source = normalize_download_path(str(found))
        target = source.with_name(artifact_name(user_id, source.name))
        try:
            size = source.stat().st_size
            os.replace(source, target)
        except OSError as e:
            raise ArtifactIOError(f"Could not rename {source.name}: {e}") from e

        logger.info(f"[DOWNLOAD] {source.name} complete ({size} bytes), renamed with user prefix.")
        return DownloadArtifact(source_name=source.name, path=target, size=size)


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0
