from __future__ import annotations
from dataclasses import replace
from typing import Iterator, Callable, Optional
import logging
import threading
import uuid

from .cancellation import CancellationToken
from .models import LLMRequest, StreamEvent
from .ports import FileAttachmentClient, LLMClient

logger = logging.getLogger(__name__)


class StreamHandle:
    """One in-flight stream: an opaque id, its cancellation token and the events."""

    def __init__(
        self,
        stream_id: str,
        events: Iterator[StreamEvent],
        token: CancellationToken,
        on_finish: Callable[["StreamHandle"], None],
    ):
        self.stream_id = stream_id
        self.token = token
        self._events = events
        self._on_finish = on_finish

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        self.token.cancel(reason)

    def __iter__(self) -> Iterator[StreamEvent]:
        try:
            for event in self._events:
                yield event
        finally:
            close = getattr(self._events, "close", None)
            if close is not None:
                close()
            self._on_finish(self)


class StreamingSession:
    """
    Caller-side controller for one document conversation.

    Keeps at most one active stream: starting a new one cancels the previous
    handle first. Also owns the attached document's file reference; the
    reference is only deleted when ``detach`` is called.
    """

    def __init__(self, client: LLMClient, files: Optional[FileAttachmentClient] = None, *, document_id: str = ""):
        self.client = client
        self.files = files
        self.document_id = document_id
        self.file_reference: Optional[str] = None
        self._active: Optional[StreamHandle] = None
        self._lock = threading.Lock()

    @property
    def active_stream_id(self) -> Optional[str]:
        with self._lock:
            return self._active.stream_id if self._active else None

    def request(self, user_prompt: str, *, context: Optional[str] = None, selection: Optional[str] = None) -> LLMRequest:
        return LLMRequest(
            document_id=self.document_id,
            user_prompt=user_prompt,
            context=context,
            file_reference=self.file_reference,
            selection=selection,
        )

    def start(self, request: LLMRequest) -> StreamHandle:
        self.cancel()
        if self.file_reference and not request.file_reference:
            request = replace(request, file_reference=self.file_reference)

        token = CancellationToken()
        events = self.client.stream(request, cancel_token=token)
        handle = StreamHandle(uuid.uuid4().hex, events, token, self._finished)
        with self._lock:
            self._active = handle
        logger.debug("stream %s started", handle.stream_id)
        return handle

    def cancel(self, stream_id: Optional[str] = None) -> bool:
        """Cancel the active stream (only if it matches ``stream_id`` when given)."""
        with self._lock:
            handle = self._active
            if handle is None or (stream_id is not None and handle.stream_id != stream_id):
                return False
            self._active = None
        handle.cancel()
        logger.debug("stream %s cancelled", handle.stream_id)
        return True

    def _finished(self, handle: StreamHandle) -> None:
        with self._lock:
            if self._active is handle:
                self._active = None

    def attach(self, file_path: str) -> Optional[str]:
        """Upload ``file_path`` unless a reference is already held; returns the reference."""
        if self.files is None:
            return None
        self.file_reference = self.files.ensure_file_id(self.file_reference, file_path)
        return self.file_reference

    def detach(self) -> None:
        if self.files is not None:
            self.files.delete_file_if_needed(self.file_reference)
        self.file_reference = None
