"""
Release Registry Layer.

This package handles all communication with the remote release registry and
maps its payloads onto release and asset descriptors.
"""

from .client import ReleaseIndexClient
from .schema import GitHubAsset, GitHubRelease

__all__ = ["GitHubAsset", "GitHubRelease", "ReleaseIndexClient"]
