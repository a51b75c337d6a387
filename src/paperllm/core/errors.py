from __future__ import annotations
from typing import Optional


class ProviderError(Exception):
    """Base class for every failure surfaced by the inference layer.

    Callers branch on the subclass (or ``kind``), never on message text.
    """

    kind = "provider_error"


class MissingCredential(ProviderError):
    kind = "missing_credential"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(
            detail or "Missing API key. Store it in the keyring or set the provider environment key."
        )


class InvalidCredential(ProviderError):
    kind = "invalid_credential"

    def __init__(self):
        super().__init__("API key is empty or invalid.")


class CredentialStoreFailure(ProviderError):
    kind = "credential_store_failure"

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Credential store error: {code}.")


class InvalidRequest(ProviderError):
    kind = "invalid_request"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid request: {reason}")


class InvalidEndpoint(ProviderError):
    kind = "invalid_endpoint"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid endpoint: {value}")


class HTTPStatusError(ProviderError):
    kind = "http_status"

    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = int(status_code)
        self.message = message
        if message:
            text = f"LLM request failed ({self.status_code}): {message}"
        else:
            text = f"LLM request failed with status {self.status_code}."
        super().__init__(text)


class DecodingFailure(ProviderError):
    kind = "decoding"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Failed to decode response: {reason}")


class RemoteError(ProviderError):
    """The provider reported a failure (inside a 2xx stream, or while processing a file)."""

    kind = "remote_error"

    def __init__(self, message: str, *, timed_out: bool = False):
        self.message = message
        self.timed_out = timed_out
        super().__init__(f"LLM error: {message}")


class UploadTimeout(RemoteError):
    def __init__(self, message: str = "File processing timed out."):
        super().__init__(message, timed_out=True)


class EmptyResponse(ProviderError):
    kind = "empty_response"

    def __init__(self):
        super().__init__("LLM returned an empty response.")
