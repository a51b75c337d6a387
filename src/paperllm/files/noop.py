from __future__ import annotations
from typing import Optional


class NoopFileClient:
    """For providers without file support: nothing is uploaded or deleted."""

    def ensure_file_id(self, existing_file_id: Optional[str] = None, file_path: Optional[str] = None) -> Optional[str]:
        return None

    def delete_file_if_needed(self, file_id: Optional[str] = None) -> None:
        return None
