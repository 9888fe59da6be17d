"""Tests for the download watcher."""

import asyncio
import os
import time

import pytest

from etc_scraper.errors import ArtifactIOError, DownloadTimeoutError, InvalidStateError
from etc_scraper.session_manager.downloads import (
    DownloadWatcher,
    artifact_name,
    is_partial,
    matches_suggested,
    normalize_download_path,
)


def _age(path, seconds):
    past = time.time() - seconds
    os.utime(path, (past, past))


class TestDownloadWatcher:
    @pytest.mark.asyncio
    async def test_times_out_on_empty_directory(self, tmp_path):
        watcher = DownloadWatcher(poll_interval=0.01)
        with pytest.raises(DownloadTimeoutError):
            await watcher.await_download(tmp_path, time.time(), timeout=0.1, user_id="u1")

    @pytest.mark.asyncio
    async def test_missing_directory_counts_as_empty(self, tmp_path):
        watcher = DownloadWatcher(poll_interval=0.01)
        with pytest.raises(DownloadTimeoutError):
            await watcher.await_download(tmp_path / "nope", time.time(), timeout=0.05, user_id="u1")

    @pytest.mark.asyncio
    async def test_rejects_file_older_than_start(self, tmp_path):
        stale = tmp_path / "report.csv"
        stale.write_text("old,data\n")
        _age(stale, 3600)

        watcher = DownloadWatcher(poll_interval=0.01)
        with pytest.raises(DownloadTimeoutError):
            await watcher.await_download(tmp_path, time.time(), timeout=0.1, user_id="u1")
        assert stale.exists()
        assert not (tmp_path / "u1_report.csv").exists()

    @pytest.mark.asyncio
    async def test_picks_new_file_next_to_stale_one(self, tmp_path):
        stale = tmp_path / "old.csv"
        stale.write_text("old\n")
        _age(stale, 3600)
        started = time.time()

        async def write_later():
            await asyncio.sleep(0.05)
            (tmp_path / "report.csv").write_text("new\n")

        writer = asyncio.create_task(write_later())
        watcher = DownloadWatcher(poll_interval=0.01)
        artifact = await watcher.await_download(tmp_path, started, timeout=1.0, user_id="u1")
        await writer

        assert artifact.path == tmp_path / "u1_report.csv"
        assert artifact.source_name == "report.csv"
        assert artifact.size == 4
        assert artifact.path.read_text() == "new\n"
        assert stale.exists()

    @pytest.mark.asyncio
    async def test_ignores_partial_downloads(self, tmp_path):
        (tmp_path / "report.csv.crdownload").write_text("partial")
        watcher = DownloadWatcher(poll_interval=0.01)
        with pytest.raises(DownloadTimeoutError):
            await watcher.await_download(tmp_path, time.time() - 10, timeout=0.1, user_id="u1")

    @pytest.mark.asyncio
    async def test_ignores_other_extensions(self, tmp_path):
        (tmp_path / "notes.txt").write_text("hello")
        watcher = DownloadWatcher(poll_interval=0.01)
        with pytest.raises(DownloadTimeoutError):
            await watcher.await_download(tmp_path, time.time() - 10, timeout=0.1, user_id="u1")

    @pytest.mark.asyncio
    async def test_waits_for_size_to_settle(self, tmp_path):
        target = tmp_path / "report.csv"
        target.write_text("a")
        started = time.time() - 10

        async def grow():
            for chunk in ("b", "c", "d"):
                await asyncio.sleep(0.01)
                with target.open("a") as f:
                    f.write(chunk)

        grower = asyncio.create_task(grow())
        watcher = DownloadWatcher(poll_interval=0.05)
        artifact = await watcher.await_download(tmp_path, started, timeout=2.0, user_id="u1")
        await grower

        assert artifact.path.read_text() == "abcd"

    @pytest.mark.asyncio
    async def test_only_one_poll_at_a_time(self, tmp_path):
        watcher = DownloadWatcher(poll_interval=0.01)
        first = asyncio.create_task(
            watcher.await_download(tmp_path, time.time(), timeout=0.2, user_id="u1")
        )
        await asyncio.sleep(0.02)
        with pytest.raises(InvalidStateError):
            await watcher.await_download(tmp_path, time.time(), timeout=0.2, user_id="u1")
        with pytest.raises(DownloadTimeoutError):
            await first

    @pytest.mark.asyncio
    async def test_unreadable_directory_is_io_error(self, tmp_path):
        not_a_dir = tmp_path / "downloads"
        not_a_dir.write_text("")
        watcher = DownloadWatcher(poll_interval=0.01)
        with pytest.raises(ArtifactIOError):
            await watcher.await_download(not_a_dir, time.time(), timeout=0.1, user_id="u1")

    @pytest.mark.asyncio
    async def test_suggested_name_ignores_other_downloads(self, tmp_path):
        (tmp_path / "other.csv").write_text("someone else\n")
        started = time.time() - 10

        async def write_later():
            await asyncio.sleep(0.05)
            (tmp_path / "report.csv").write_text("mine\n")

        writer = asyncio.create_task(write_later())
        watcher = DownloadWatcher(poll_interval=0.01)
        artifact = await watcher.await_download(
            tmp_path, started, timeout=1.0, user_id="u1", suggested_name="report.csv"
        )
        await writer

        assert artifact.path.read_text() == "mine\n"
        assert (tmp_path / "other.csv").exists()

    @pytest.mark.asyncio
    async def test_suggested_name_accepts_uniquified_copy(self, tmp_path):
        (tmp_path / "report (1).csv").write_text("mine\n")
        watcher = DownloadWatcher(poll_interval=0.01)
        artifact = await watcher.await_download(
            tmp_path, time.time() - 10, timeout=1.0, user_id="u1", suggested_name="report.csv"
        )
        assert artifact.path.name == "u1_report (1).csv"

    @pytest.mark.asyncio
    async def test_skips_files_already_delivered(self, tmp_path):
        (tmp_path / "u1_report.csv").write_text("delivered\n")
        watcher = DownloadWatcher(poll_interval=0.01)
        with pytest.raises(DownloadTimeoutError):
            await watcher.await_download(tmp_path, time.time() - 10, timeout=0.1, user_id="u1")
        assert (tmp_path / "u1_report.csv").exists()

    @pytest.mark.asyncio
    async def test_rename_failure_is_io_error(self, tmp_path):
        (tmp_path / "report.csv").write_text("x,y\n")
        (tmp_path / "u1_report.csv").mkdir()  # rename target is a directory

        watcher = DownloadWatcher(poll_interval=0.01)
        with pytest.raises(ArtifactIOError):
            await watcher.await_download(tmp_path, time.time() - 10, timeout=1.0, user_id="u1")


class TestNaming:
    def test_artifact_name_prefixes_user(self):
        assert artifact_name("user01", "report.csv") == "user01_report.csv"

    def test_artifact_name_sanitizes_separators(self):
        assert artifact_name("a/b\\c", "r.csv") == "a_b_c_r.csv"

    def test_strips_long_path_prefix(self):
        assert str(normalize_download_path("\\\\?\\C:\\dl\\r.csv")) == "C:\\dl\\r.csv"

    def test_strips_long_unc_prefix(self):
        assert str(normalize_download_path("\\\\?\\UNC\\srv\\share\\r.csv")) == "\\\\srv\\share\\r.csv"

    def test_plain_path_unchanged(self, tmp_path):
        assert normalize_download_path(str(tmp_path / "r.csv")) == tmp_path / "r.csv"

    def test_matches_suggested(self):
        assert matches_suggested("report.csv", "report.csv")
        assert matches_suggested("report (2).csv", "report.csv")
        assert not matches_suggested("report2.csv", "report.csv")
        assert not matches_suggested("bob_report.csv", "report.csv")

    def test_partial_suffixes(self):
        assert is_partial("r.csv.crdownload")
        assert is_partial("R.CSV.PART")
        assert not is_partial("r.csv")
