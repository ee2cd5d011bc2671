"""
Pydantic model for library and CLI configuration.
Provides robust validation for all settings.
"""

import os
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_REGISTRY_URL = (
    "https://api.github.com/repos/theseus-rs/postgresql-binaries/releases"
)

_GITHUB_REPO_REGEX = re.compile(
    r"^https?://(?:www\.)?github\.com/(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+?)(?:\.git)?/?$"
)


def github_api_releases_url(url: str) -> str:
    """
    Converts a ``https://github.com/<owner>/<repo>`` URL to its releases API
    endpoint. Any other URL is returned unchanged.
    """
    match = _GITHUB_REPO_REGEX.match(url.strip())
    if not match:
        return url.strip()
    return (
        f"https://api.github.com/repos/{match.group('owner')}/"
        f"{match.group('repo')}/releases"
    )


def default_cache_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("LOCALAPPDATA", "~\\AppData\\Local"))
    else:
        base_dir = Path(os.getenv("XDG_CACHE_HOME", "~/.cache"))
    return base_dir.expanduser() / "pg-archive"


class ArchiveConfig(BaseModel):
    """A validated configuration model for the archive pipeline."""

    # Registry
    registry_url: str = DEFAULT_REGISTRY_URL
    github_token: Optional[str] = Field(default=None, repr=False)

    # Network
    timeout: float = 300.0
    connect_timeout: float = 15.0
    read_timeout: float = 90.0  # idle limit while streaming archives
    max_retries: int = 2
    retry_base_delay: float = 1.0
    chunk_size: int = 262144  # 256 KB

    # Cache
    cache_dir: Path = Field(default_factory=default_cache_dir)
    use_cache: bool = True

    # Resolution and extraction
    include_prerelease: bool = False
    strip_components: int = 1

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("registry_url")
    @classmethod
    def validate_registry_url(cls, v: str) -> str:
        """Accepts GitHub repository URLs and rewrites them to the API endpoint."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Registry URL must be an http(s) URL.")
        return github_api_releases_url(v)

    @field_validator("github_token")
    @classmethod
    def validate_token(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @field_validator("max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0 or v > 10:
            raise ValueError("Max retries must be between 0 and 10.")
        return v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v < 1024:
            raise ValueError("Chunk size must be at least 1024 bytes.")
        return v

    @field_validator("strip_components")
    @classmethod
    def validate_strip_components(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Strip components cannot be negative.")
        return v

    @field_validator("cache_dir", mode="before")
    @classmethod
    def expand_cache_dir(cls, v):
        if isinstance(v, str):
            v = Path(v)
        return v.expanduser() if isinstance(v, Path) else v

    @model_validator(mode="after")
    def validate_timeouts(self) -> "ArchiveConfig":
        """Ensures the timeouts are positive and consistent."""
        if self.timeout <= 0 or self.connect_timeout <= 0 or self.read_timeout <= 0:
            raise ValueError("Timeouts must be positive.")
        if self.connect_timeout > self.timeout:
            raise ValueError("Connect timeout cannot exceed the total timeout.")
        return self

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        return set(cls.model_fields)
