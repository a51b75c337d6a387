from __future__ import annotations
from pathlib import Path
from typing import Callable, Dict, Optional
import logging

import httpx
from pydantic import BaseModel

from paperllm.config_loader import ProviderConfiguration
from paperllm.core.errors import DecodingFailure
from paperllm.files.common import guess_mime_type, raise_for_status, read_local_file, resolve_file_id
from paperllm.http import get_http_client
from paperllm.providers.anthropic_adapter import DEFAULT_VERSION, FILES_BETA
from paperllm.providers.streaming import clean, decode_payload, ensure_http_endpoint, transport_errors
from paperllm.secrets.sources import CredentialSource, build_credential_source

logger = logging.getLogger(__name__)

AuthHeaders = Callable[[str], Dict[str, str]]


class _UploadedFile(BaseModel):
    id: str


class DirectUploadFileClient:
    """
    Single multipart POST of the file bytes (plus an optional ``purpose``
    field); the provider answers synchronously with the file id.
    """

    def __init__(
        self,
        config: ProviderConfiguration,
        *,
        auth_headers: AuthHeaders,
        purpose: Optional[str] = None,
        credentials: Optional[CredentialSource] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        ensure_http_endpoint(config.files_endpoint)
        self.config = config
        self.auth_headers = auth_headers
        self.purpose = purpose
        self.credentials = credentials or build_credential_source(config)
        self.http = http_client or get_http_client()

    def ensure_file_id(self, existing_file_id: Optional[str] = None, file_path: Optional[str] = None) -> Optional[str]:
        return resolve_file_id(existing_file_id, file_path, self.upload)

    def upload(self, path: Path) -> str:
        data = read_local_file(path)
        headers = self.auth_headers(self.credentials.load_credential())
        files = {"file": (path.name, data, guess_mime_type(path, self.config.attachment_mime_type))}
        form = {"purpose": self.purpose} if self.purpose else None

        logger.debug("uploading %s (%d bytes) to %s", path.name, len(data), self.config.files_endpoint)
        with transport_errors():
            response = self.http.post(
                self.config.files_endpoint,
                headers=headers,
                files=files,
                data=form,
                timeout=self.config.timeout_seconds,
            )
        raise_for_status(response)
        uploaded = decode_payload(_UploadedFile, response.text)
        if not uploaded.id:
            raise DecodingFailure("Upload response has an empty id.")
        return uploaded.id

    def delete_file_if_needed(self, file_id: Optional[str] = None) -> None:
        file_id = clean(file_id)
        if not file_id:
            return
        headers = self.auth_headers(self.credentials.load_credential())
        url = f"{self.config.files_endpoint.rstrip('/')}/{file_id}"
        with transport_errors():
            response = self.http.delete(url, headers=headers, timeout=self.config.timeout_seconds)
        if response.status_code == 404:
            logger.debug("file %s already deleted", file_id)
            return
        raise_for_status(response)


def openai_file_client(
    config: ProviderConfiguration,
    *,
    credentials: Optional[CredentialSource] = None,
    http_client: Optional[httpx.Client] = None,
) -> DirectUploadFileClient:
    return DirectUploadFileClient(
        config,
        auth_headers=lambda key: {"Authorization": f"Bearer {key}"},
        purpose="user_data",
        credentials=credentials,
        http_client=http_client,
    )


def anthropic_file_client(
    config: ProviderConfiguration,
    *,
    credentials: Optional[CredentialSource] = None,
    http_client: Optional[httpx.Client] = None,
) -> DirectUploadFileClient:
    version = config.api_version or DEFAULT_VERSION
    return DirectUploadFileClient(
        config,
        auth_headers=lambda key: {
            "x-api-key": key,
            "anthropic-version": version,
            "anthropic-beta": FILES_BETA,
        },
        credentials=credentials,
        http_client=http_client,
    )
