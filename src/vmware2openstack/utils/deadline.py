"""Deadline and cancellation shared by one reconciliation run."""

from __future__ import annotations

import threading
import time
from typing import Optional

from vmware2openstack.exceptions import CancelledError


class Deadline:
    """An optional expiry time plus a cancel flag.

    One instance is passed down through volume resolution, port
    reconciliation and the instance wait. ``child()`` narrows the expiry
    while sharing the cancel flag, so cancelling the parent also stops
    every child.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        _expires_at: Optional[float] = None,
    ):
        self._event = cancel_event or threading.Event()
        if _expires_at is not None:
            self.expires_at: Optional[float] = _expires_at
        elif timeout is not None:
            self.expires_at = time.monotonic() + timeout
        else:
            self.expires_at = None

    def child(self, timeout: float) -> "Deadline":
        """Return a deadline expiring after ``timeout`` or with this one."""
        expires_at = time.monotonic() + timeout
        if self.expires_at is not None:
            expires_at = min(expires_at, self.expires_at)
        return Deadline(cancel_event=self._event, _expires_at=expires_at)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left, ``None`` when unbounded, never negative."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def check(self, instance_id: Optional[str] = None) -> None:
        """Raise CancelledError if cancelled or expired."""
        if self.cancelled:
            raise CancelledError("Reconciliation cancelled", instance_id=instance_id)
        if self.expired:
            raise CancelledError("Reconciliation deadline exceeded", instance_id=instance_id)

    def timeout_for(self, limit: float) -> float:
        """Per-request timeout: ``limit`` capped by the time remaining."""
        remaining = self.remaining()
        if remaining is None:
            return limit
        return max(0.001, min(limit, remaining))

    def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds`` or until expiry. Returns False if cancelled."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        return not self._event.wait(max(0.0, seconds))
