"""
Helper functions for formatting data into human-readable strings.
"""

from datetime import datetime
from typing import Optional


def format_size(bytes_size: Optional[int]) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 MB')."""
    if not bytes_size or bytes_size <= 0:
        return "0 B"
    size = float(bytes_size)
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{size:.1f} {units[i]}"


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_date(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d") if value else "-"


def short_digest(digest: Optional[str], length: int = 12) -> str:
    if not digest:
        return "-"
    return digest if len(digest) <= length else f"{digest[:length]}…"
