# src/paperllm/providers/anthropic_adapter.py
from __future__ import annotations
from typing import Any, Dict, Iterator, List, Optional
import logging

import httpx
from pydantic import BaseModel

from paperllm.config_loader import ProviderConfiguration
from paperllm.core.cancellation import CancellationToken
from paperllm.core.errors import InvalidRequest, RemoteError
from paperllm.core.models import LLMRequest, LLMResponse, StreamEvent, TextDelta
from paperllm.http import get_http_client
from paperllm.providers.streaming import (
    RESEARCH_PREAMBLE,
    clean,
    completed,
    decode_payload,
    drain,
    ensure_http_endpoint,
    is_cancelled,
    iter_lines,
    open_event_stream,
    quoted_section,
    validate_prompt,
)
from paperllm.secrets.sources import CredentialSource, build_credential_source

logger = logging.getLogger(__name__)

FILES_BETA = "files-api-2025-04-14"
DEFAULT_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 1024


class _ErrorDetail(BaseModel):
    message: Optional[str] = None


class _Delta(BaseModel):
    type: Optional[str] = None
    text: Optional[str] = None


class MessagesStreamEvent(BaseModel):
    type: str
    delta: Optional[_Delta] = None
    error: Optional[_ErrorDetail] = None


class MessagesAdapter:
    """
    Streaming client for the Messages API (``POST /v1/messages``, SSE).

    Events arrive as blocks: an ``event:`` line, one or more ``data:`` lines,
    then a blank line. Data lines are buffered and the block is decoded when
    the blank line arrives (and once more when the body ends, for a block the
    server did not terminate).
    """

    def __init__(
        self,
        config: ProviderConfiguration,
        *,
        credentials: Optional[CredentialSource] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        ensure_http_endpoint(config.endpoint)
        self.config = config
        self.model = config.model
        self.credentials = credentials or build_credential_source(config)
        self.http = http_client or get_http_client()

    def send(self, request: LLMRequest, cancel_token: Optional[CancellationToken] = None) -> LLMResponse:
        return drain(self.stream(request, cancel_token))

    def stream(self, request: LLMRequest, cancel_token: Optional[CancellationToken] = None) -> Iterator[StreamEvent]:
        self._validate(request)
        api_key = self.credentials.load_credential()
        headers = {
            "x-api-key": api_key,
            "anthropic-version": self.config.api_version or DEFAULT_VERSION,
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if clean(request.file_reference):
            headers["anthropic-beta"] = FILES_BETA
        return self._events(headers, self._build_body(request, stream=True), cancel_token)

    def _validate(self, request: LLMRequest) -> None:
        validate_prompt(request)
        if not (clean(request.selection) or clean(request.context) or clean(request.file_reference)):
            raise InvalidRequest("Selection is empty and no context was provided.")

    def _build_system_prompt(self, request: LLMRequest) -> Optional[str]:
        sections = []
        selection = clean(request.selection)
        if selection:
            sections.append(quoted_section("Selected passage", selection))
        context = clean(request.context)
        if context:
            sections.append(quoted_section("Additional context", context))
        if not sections:
            return None
        return RESEARCH_PREAMBLE + "\n\n" + "\n\n".join(sections)

    def _build_body(self, request: LLMRequest, *, stream: bool) -> Dict[str, Any]:
        file_id = clean(request.file_reference)
        content: Any
        if file_id:
            content = [
                {"type": "document", "source": {"type": "file", "file_id": file_id}},
                {"type": "text", "text": request.user_prompt},
            ]
        else:
            content = request.user_prompt

        body: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.config.max_output_tokens or DEFAULT_MAX_TOKENS,
            "messages": [{"role": "user", "content": content}],
            "stream": stream,
        }
        system = self._build_system_prompt(request)
        if system:
            body["system"] = system
        return body

    def _events(
        self,
        headers: Dict[str, str],
        body: Dict[str, Any],
        cancel_token: Optional[CancellationToken],
    ) -> Iterator[StreamEvent]:
        if is_cancelled(cancel_token):
            return
        accumulated = ""
        pending: List[str] = []
        stopped = False

        def flush() -> Iterator[StreamEvent]:
            nonlocal accumulated, stopped
            payloads = list(pending)
            pending.clear()
            for payload in payloads:
                if payload == "[DONE]":
                    continue
                event = decode_payload(MessagesStreamEvent, payload)
                if event.type == "ping":
                    continue
                if event.type == "content_block_delta":
                    delta = event.delta
                    if delta is not None and delta.type == "text_delta" and delta.text:
                        accumulated += delta.text
                        yield TextDelta(delta.text)
                elif event.type == "message_stop":
                    yield completed(accumulated)
                    stopped = True
                    return
                elif event.type == "error":
                    message = event.error.message if event.error is not None else None
                    raise RemoteError(message or "Claude error.")
                # message_start, content_block_start/stop, message_delta carry no text

        with open_event_stream(
            self.http, self.config.endpoint, headers=headers, body=body, timeout=self.config.timeout_seconds
        ) as response:
            for line in iter_lines(response, cancel_token):
                if not line:
                    yield from flush()
                    if stopped:
                        logger.debug("message stop (%d chars)", len(accumulated))
                        return
                    continue
                if line.startswith("data:"):
                    pending.append(line[len("data:"):].strip())
                # "event:" lines and SSE comments are ignored; the type lives in the JSON

        if is_cancelled(cancel_token):
            return

        yield from flush()
        if stopped:
            return
        yield completed(accumulated)
