"""Resumable upload for providers that process files before they can be used.

Three steps: start a session (the upload URL comes back in a response
header), send the bytes with ``upload, finalize``, then poll the file
resource until its state becomes ACTIVE.
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, Optional
import logging
import time

import httpx
from pydantic import BaseModel

from paperllm.config_loader import ProviderConfiguration
from paperllm.core.errors import DecodingFailure, RemoteError, UploadTimeout
from paperllm.files.common import guess_mime_type, raise_for_status, read_local_file, resolve_file_id
from paperllm.http import get_http_client
from paperllm.providers.streaming import clean, decode_payload, ensure_http_endpoint, transport_errors
from paperllm.secrets.sources import CredentialSource, build_credential_source

logger = logging.getLogger(__name__)

UPLOAD_URL_HEADER = "x-goog-upload-url"
FAILED_STATES = {"FAILED", "ERROR", "CANCELLED"}


class _FileResource(BaseModel):
    name: Optional[str] = None
    uri: Optional[str] = None
    state: Optional[str] = None


class _UploadResponse(BaseModel):
    file: Optional[_FileResource] = None


def normalize_state(state: Optional[str]) -> str:
    """``"State.ACTIVE"`` / ``"active"`` / ``"ACTIVE"`` -> ``"ACTIVE"``."""
    return (state or "").rsplit(".", 1)[-1].strip().upper()


def resource_name(reference: str) -> str:
    """Map a file URI (or bare id) back to its ``files/<id>`` resource name."""
    ref = reference.strip().split("?", 1)[0].rstrip("/")
    idx = ref.rfind("files/")
    if idx >= 0:
        return ref[idx:]
    return f"files/{ref}"


class ResumableUploadFileClient:
    def __init__(
        self,
        config: ProviderConfiguration,
        *,
        credentials: Optional[CredentialSource] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        ensure_http_endpoint(config.upload_endpoint or "")
        ensure_http_endpoint(config.files_endpoint)
        self.config = config
        self.credentials = credentials or build_credential_source(config)
        self.http = http_client or get_http_client()

    def ensure_file_id(self, existing_file_id: Optional[str] = None, file_path: Optional[str] = None) -> Optional[str]:
        return resolve_file_id(existing_file_id, file_path, self.upload)

    def file_uri(self, name: str) -> str:
        return f"{self.config.files_endpoint.rstrip('/')}/{name}"

    def upload(self, path: Path) -> str:
        data = read_local_file(path)
        api_key = self.credentials.load_credential()
        mime = guess_mime_type(path, self.config.attachment_mime_type)

        upload_url = self._start(path.name, len(data), mime, api_key)
        name = self._finalize(upload_url, data, api_key)
        return self._wait_until_active(name, api_key)

    def _auth(self, api_key: str) -> Dict[str, str]:
        return {"x-goog-api-key": api_key}

    def _start(self, display_name: str, size: int, mime: str, api_key: str) -> str:
        headers = {
            **self._auth(api_key),
            "X-Goog-Upload-Protocol": "resumable",
            "X-Goog-Upload-Command": "start",
            "X-Goog-Upload-Header-Content-Length": str(size),
            "X-Goog-Upload-Header-Content-Type": mime,
            "Content-Type": "application/json",
        }
        with transport_errors():
            response = self.http.post(
                self.config.upload_endpoint or "",
                headers=headers,
                json={"file": {"display_name": display_name}},
                timeout=self.config.timeout_seconds,
            )
        raise_for_status(response)
        upload_url = response.headers.get(UPLOAD_URL_HEADER)
        if not upload_url:
            raise RemoteError("Upload session URL missing from response.")
        logger.debug("upload session started for %s (%d bytes)", display_name, size)
        return upload_url

    def _finalize(self, upload_url: str, data: bytes, api_key: str) -> str:
        headers = {
            **self._auth(api_key),
            "X-Goog-Upload-Offset": "0",
            "X-Goog-Upload-Command": "upload, finalize",
        }
        with transport_errors():
            response = self.http.post(upload_url, headers=headers, content=data, timeout=self.config.timeout_seconds)
        raise_for_status(response)
        uploaded = decode_payload(_UploadResponse, response.text)
        if uploaded.file is None or not uploaded.file.name:
            raise DecodingFailure("Upload response has no file name.")
        return uploaded.file.name

    def _wait_until_active(self, name: str, api_key: str) -> str:
        url = self.file_uri(name)
        attempts = max(1, self.config.poll_max_attempts)
        for attempt in range(1, attempts + 1):
            with transport_errors():
                response = self.http.get(url, headers=self._auth(api_key), timeout=self.config.timeout_seconds)
            raise_for_status(response)
            state = normalize_state(decode_payload(_FileResource, response.text).state)
            logger.debug("file %s state %s (poll %d/%d)", name, state or "?", attempt, attempts)

            if state == "ACTIVE":
                return self.file_uri(name)
            if state in FAILED_STATES:
                raise RemoteError(f"File processing {state.lower()}: {name}")
            if attempt < attempts:
                time.sleep(self.config.poll_interval_seconds)

        raise UploadTimeout(f"File {name} was still processing after {attempts} checks.")

    def delete_file_if_needed(self, file_id: Optional[str] = None) -> None:
        file_id = clean(file_id)
        if not file_id:
            return
        api_key = self.credentials.load_credential()
        url = self.file_uri(resource_name(file_id))
        with transport_errors():
            response = self.http.delete(url, headers=self._auth(api_key), timeout=self.config.timeout_seconds)
        if response.status_code == 404:
            logger.debug("file %s already deleted", file_id)
            return
        raise_for_status(response)
