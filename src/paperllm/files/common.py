from __future__ import annotations
from pathlib import Path
from typing import Callable, Optional
import mimetypes

import httpx

from paperllm.core.errors import HTTPStatusError, InvalidRequest
from paperllm.providers.streaming import clean, parse_error_message


def resolve_file_id(
    existing_file_id: Optional[str],
    file_path: Optional[str],
    upload: Callable[[Path], str],
) -> Optional[str]:
    if clean(existing_file_id):
        return existing_file_id
    if clean(file_path):
        return upload(Path(str(file_path)).expanduser())
    return None


def read_local_file(path: Path) -> bytes:
    if not path.is_file():
        raise InvalidRequest(f"File not found: {path}")
    return path.read_bytes()


def guess_mime_type(path: Path, fallback: str = "application/octet-stream") -> str:
    mime, _ = mimetypes.guess_type(path.name)
    return mime or fallback


def raise_for_status(response: httpx.Response) -> None:
    if not response.is_success:
        raise HTTPStatusError(response.status_code, parse_error_message(response.content))
