"""
Pydantic models for the GitHub releases REST API payloads the registry serves.
Only the fields the pipeline needs are declared; everything else is ignored.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GitHubAsset(BaseModel):
    """A file attached to a GitHub release."""

    model_config = ConfigDict(extra="ignore")

    name: str
    browser_download_url: str
    size: Optional[int] = None
    digest: Optional[str] = None


class GitHubRelease(BaseModel):
    """One entry of ``GET /repos/{owner}/{repo}/releases``."""

    model_config = ConfigDict(extra="ignore")

    tag_name: str
    name: Optional[str] = None
    draft: bool = False
    prerelease: bool = False
    published_at: Optional[datetime] = None
    assets: List[GitHubAsset] = Field(default_factory=list)
