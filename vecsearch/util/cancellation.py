"""
Caller-initiated cancellation for long running operations (reseed, query).
"""

import threading
from typing import Optional

from ..core.errors import OperationCancelled


class CancellationToken:
    """Thread-safe cancellation flag shared between a caller and a worker."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; returns True early if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "cancelled")


def check_cancelled(token: Optional[CancellationToken]) -> None:
    """Raise OperationCancelled if token is set. A None token never cancels."""
    if token is not None:
        token.raise_if_cancelled()
