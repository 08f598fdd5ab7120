"""Cooperative cancellation tokens.

A ``CancellationToken`` is what callers hand to every generation call to be
able to stop it: either explicitly via :meth:`CancellationToken.cancel` or
implicitly through a deadline. Tokens are thread-safe; child tokens inherit
cancellation from their parent.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional

from .exceptions import CancelledError

DEADLINE_REASON = "deadline exceeded"


class CancellationToken:
    """Cancellation signal with an optional deadline."""

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        parent: Optional["CancellationToken"] = None,
    ) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None
        self._callbacks: List[Callable[[], None]] = []
        self._children: List[CancellationToken] = []
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        if parent is not None:
            parent.link_child(self)

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested or the deadline has passed."""
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel(DEADLINE_REASON)
            return True
        return False

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (``None`` when there is none)."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self, reason: Optional[str] = None) -> None:
        """Request cancellation; fires callbacks and cascades to children."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason or "operation cancelled"
            self._event.set()
            callbacks = list(self._callbacks)
            children = list(self._children)
            self._callbacks.clear()
        for callback in callbacks:
            callback()
        for child in children:
            child.cancel(self._reason)

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once on cancellation (immediately if already)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def link_child(self, token: "CancellationToken") -> "CancellationToken":
        with self._lock:
            self._children.append(token)
            already = self._event.is_set()
        if already:
            token.cancel(self._reason)
        return token

    def child(self, *, timeout: Optional[float] = None) -> "CancellationToken":
        return CancellationToken(timeout=timeout, parent=self)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; return ``cancelled``."""
        remaining = self.remaining()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)
        self._event.wait(timeout)
        return self.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledError(self._reason or "operation cancelled")

    def __repr__(self) -> str:  # pragma: no cover - introspection aid
        return (
            f"CancellationToken(cancelled={self._event.is_set()}, "
            f"reason={self._reason!r}, deadline={self._deadline!r})"
        )


__all__ = ["CancellationToken", "DEADLINE_REASON"]
