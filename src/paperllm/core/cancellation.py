from __future__ import annotations
import threading
from typing import Optional


class CancellationToken:
    """
    Cooperative cancellation flag shared between a stream and its owner.
    Streams poll ``cancelled`` at every line boundary and stop quietly.
    Safe to cancel from another thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled}, reason={self._reason!r})"
