"""
Transfer Layer.

This package is responsible for retrieving archive payloads over the network
and checking them against their published content digests.
"""

from .downloader import Downloader
from .integrity import DIGEST_ALGORITHM, calculate_digest, verify_digest

__all__ = ["DIGEST_ALGORITHM", "Downloader", "calculate_digest", "verify_digest"]
