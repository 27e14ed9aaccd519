"""Cancellation and deadline signal for backing-store calls.

The overlay adds no timeout or retry logic of its own. A Deadline is created
by the caller, handed to a HashmapFs operation and forwarded unchanged to
every backing-store call that operation makes. Stores call check() before
doing work.
"""

from __future__ import annotations

import threading
import time

from hashmap.errors import OperationCancelledError


class Deadline:
    """Cancellation token with an optional monotonic expiry.

    Thread-safe: cancel() may be called from any thread.

    Example:
        deadline = Deadline.after(5.0)
        fs.list("photos", deadline=deadline)
    """

    def __init__(self, expires_at: float | None = None) -> None:
        """Initialize the deadline.

        Args:
            expires_at: time.monotonic() value after which the deadline is
                expired. None means no expiry (cancellation only).
        """
        self._expires_at = expires_at
        self._cancelled = threading.Event()

    @classmethod
    def after(cls, seconds: float) -> Deadline:
        """Create a deadline that expires `seconds` from now."""
        return cls(time.monotonic() + seconds)

    @property
    def expires_at(self) -> float | None:
        return self._expires_at

    def cancel(self) -> None:
        """Cancel every operation holding this deadline."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> float | None:
        """Seconds left before expiry, or None if there is no expiry."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def check(self) -> None:
        """Raise if the deadline is cancelled or expired.

        Raises:
            OperationCancelledError: If cancel() was called or the expiry passed.
        """
        if self._cancelled.is_set():
            raise OperationCancelledError("Operation cancelled")
        if self.expired:
            raise OperationCancelledError("Deadline exceeded")


def check_deadline(deadline: Deadline | None) -> None:
    """Check an optional deadline."""
    if deadline is not None:
        deadline.check()
