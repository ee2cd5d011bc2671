"""
Core pipeline logic.

The resolver and locator are pure functions over release descriptors; the
`ArchivePipeline` ties them to the registry client, the cache, the
downloader and the extractor.
"""

from .locator import ABI_PREFERENCE, locate
from .pipeline import ArchivePipeline, get_archive, install
from .resolver import resolve

__all__ = ["ABI_PREFERENCE", "ArchivePipeline", "get_archive", "install", "locate", "resolve"]
