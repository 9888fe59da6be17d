"""Pydantic models for scrape requests and their outcomes."""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, SecretStr

from ..errors import ScrapeError
from .session import Credentials, DownloadArtifact, ScrapeConfig


class ScrapeRequest(BaseModel):
    """One "fetch the statement CSV for this account" request."""

    user_id: str = Field(min_length=1)
    password: SecretStr
    download_path: Optional[Path] = None
    headless: Optional[bool] = None
    timeout: Optional[float] = Field(default=None, gt=0)  # seconds
    include_content: bool = False

    def credentials(self) -> Credentials:
        return Credentials(user_id=self.user_id, password=self.password)

    def to_config(self, base: Optional[ScrapeConfig] = None) -> ScrapeConfig:
        """Overlay the request's settings on a base config."""
        base = base or ScrapeConfig()
        update: dict = {}
        if self.download_path is not None:
            update["download_dir"] = self.download_path
        if self.headless is not None:
            update["headless"] = self.headless
        if self.timeout is not None:
            update["timeout"] = self.timeout
        return base.model_copy(update=update)


class ScrapeResult(BaseModel):
    """Successful scrape: the renamed CSV and its raw bytes."""

    csv_path: Path
    size: int
    csv_content: bytes = b""

    @classmethod
    def from_artifact(cls, artifact: DownloadArtifact) -> ScrapeResult:
        content = artifact.path.read_bytes()
        return cls(csv_path=artifact.path, size=len(content), csv_content=content)

    def to_json(self, include_content: bool = False) -> dict:
        data = {"ok": True, "csv_path": str(self.csv_path), "size": self.size}
        if include_content:
            data["content_base64"] = base64.b64encode(self.csv_content).decode("ascii")
        return data


class ScrapeFailure(BaseModel):
    """Serializable form of a ScrapeError."""

    kind: str
    error: str
    phase: Optional[str] = None

    @classmethod
    def from_error(cls, error: ScrapeError) -> ScrapeFailure:
        return cls(kind=error.kind, error=error.message, phase=error.phase)


class ScrapeOutcome(BaseModel):
    """Tagged result of one call: a CSV path or exactly one failure."""

    ok: bool
    user_id: str = ""
    csv_path: Optional[Path] = None
    failure: Optional[ScrapeFailure] = None
