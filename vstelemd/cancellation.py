"""
Cooperative cancellation for the scan, validate, backup and delete pipeline.
"""

import threading
from typing import Optional

from .errors import OperationCancelled


class CancellationToken:
    """Thread-safe cancellation flag checked between pipeline steps."""

    def __init__(self):
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "Cancelled by user"):
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self, step: str = ""):
        """Raise OperationCancelled if cancel() has been called."""
        if self._event.is_set():
            message = self._reason or "Operation cancelled"
            if step:
                message = f"{message} before {step}"
            raise OperationCancelled(message)


def check_cancelled(token: Optional[CancellationToken], step: str = ""):
    """Helper for code paths where the token is optional."""
    if token is not None:
        token.raise_if_cancelled(step)
