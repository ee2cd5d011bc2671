"""
Storage Layer.

This package handles everything that touches the local filesystem: the
archive cache, safe extraction into a destination directory, and the
configuration file.
"""

from .cache import ArchiveCache, CacheEntry
from .config_manager import ConfigManager
from .extractor import ArchiveFormat, Extractor, detect_format, extract

__all__ = [
    "ArchiveCache",
    "ArchiveFormat",
    "CacheEntry",
    "ConfigManager",
    "Extractor",
    "detect_format",
    "extract",
]
