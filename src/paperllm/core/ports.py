from __future__ import annotations
from typing import Protocol, Iterator, Optional

from .cancellation import CancellationToken
from .models import LLMRequest, LLMResponse, StreamEvent


class LLMClient(Protocol):
    """
    Interface the session layer uses to talk to any provider family.
    """

    model: str

    def send(self, request: LLMRequest, cancel_token: Optional[CancellationToken] = None) -> LLMResponse:
        """
        Drain the stream and return the final response.
        Raises EmptyResponse when no Completed event arrives.
        """
        ...

    def stream(self, request: LLMRequest, cancel_token: Optional[CancellationToken] = None) -> Iterator[StreamEvent]:
        """
        Lazy, finite, non-restartable sequence: TextDelta* then one Completed.
        Failures raise a ProviderError; a cancelled stream just ends.
        """
        ...


class FileAttachmentClient(Protocol):
    def ensure_file_id(self, existing_file_id: Optional[str] = None, file_path: Optional[str] = None) -> Optional[str]:
        """
        Return existing_file_id unchanged if set, else upload file_path if given, else None.
        """
        ...

    def delete_file_if_needed(self, file_id: Optional[str] = None) -> None:
        """
        No-op for empty input; a provider 404 counts as already deleted.
        """
        ...
