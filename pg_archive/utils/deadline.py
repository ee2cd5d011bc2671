"""
Caller-supplied deadlines and cancellation signals, checked at network I/O
boundaries.
"""

import threading
import time
from typing import Optional

import aiohttp

from pg_archive.exceptions import DeadlineExceeded, OperationCancelled


class Deadline:
    """
    A point in time after which network operations must stop, optionally
    paired with a cancellation event that another thread may set.

    Usage:
        deadline = Deadline(timeout=120)
        deadline.check("registry fetch")
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self._expires_at = time.monotonic() + timeout if timeout is not None else None
        self._cancel_event = cancel_event

    @classmethod
    def never(cls) -> "Deadline":
        return cls()

    def remaining(self) -> Optional[float]:
        """Seconds left before expiry, or None when there is no deadline."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, stage: str) -> None:
        """
        Raises if the operation must not continue.

        Raises:
            OperationCancelled: If the cancellation event is set.
            DeadlineExceeded: If the deadline has passed.
        """
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise OperationCancelled(f"Cancelled before {stage}.")
        if self.expired:
            raise DeadlineExceeded(f"Deadline exceeded before {stage}.")

    def client_timeout(self, total: float, connect: float) -> aiohttp.ClientTimeout:
        """Builds an aiohttp timeout that never outlives this deadline."""
        remaining = self.remaining()
        if remaining is not None:
            total = min(total, remaining)
            connect = min(connect, total)
        return aiohttp.ClientTimeout(total=total, sock_connect=connect)

    def stream_timeout(self, connect: float, read: float) -> aiohttp.ClientTimeout:
        """
        Builds an aiohttp timeout for long payload streams: only this deadline
        bounds the whole transfer, the socket limits bound stalls.
        """
        remaining = self.remaining()
        if remaining is not None:
            connect = min(connect, remaining)
            read = min(read, remaining)
        return aiohttp.ClientTimeout(total=remaining, sock_connect=connect, sock_read=read)
