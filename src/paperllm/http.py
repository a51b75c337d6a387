"""Shared ``httpx.Client`` for all provider adapters and file clients.

One pooled client is created lazily and reused; ``httpx.Client`` is safe
for concurrent use across threads. Per-request timeouts come from each
provider's configuration, so the pooled client carries no default timeout
beyond a connect bound.
"""

from __future__ import annotations

import atexit
import threading
from typing import Optional

import httpx

_CLIENT: Optional[httpx.Client] = None
_LOCK = threading.Lock()


def get_http_client() -> httpx.Client:
    global _CLIENT
    if _CLIENT is not None:
        return _CLIENT
    with _LOCK:
        if _CLIENT is None:
            _CLIENT = httpx.Client(timeout=httpx.Timeout(60.0, connect=10.0))
        return _CLIENT


def close_http_client() -> None:
    """Close the pooled client; the next ``get_http_client`` builds a fresh one."""
    global _CLIENT
    with _LOCK:
        if _CLIENT is not None:
            _CLIENT.close()
        _CLIENT = None


atexit.register(close_http_client)

__all__ = ["get_http_client", "close_http_client"]
