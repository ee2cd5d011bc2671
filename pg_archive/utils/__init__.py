"""
Small shared helpers: deadlines and human-readable formatting.
"""

from .deadline import Deadline
from .formatting import format_date, format_duration, format_size, short_digest

__all__ = ["Deadline", "format_date", "format_duration", "format_size", "short_digest"]
