# src/paperllm/providers/openai_adapter.py
from __future__ import annotations
from typing import Any, Dict, Iterator, Optional
import logging

import httpx
from pydantic import BaseModel

from paperllm.config_loader import ProviderConfiguration
from paperllm.core.cancellation import CancellationToken
from paperllm.core.errors import RemoteError
from paperllm.core.models import LLMRequest, LLMResponse, StreamEvent, TextDelta
from paperllm.http import get_http_client
from paperllm.providers.streaming import (
    RESEARCH_PREAMBLE,
    clean,
    completed,
    data_payload,
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


class _ErrorDetail(BaseModel):
    message: Optional[str] = None


class _ResponseObject(BaseModel):
    error: Optional[_ErrorDetail] = None


class ResponsesStreamEvent(BaseModel):
    type: str
    delta: Optional[str] = None
    text: Optional[str] = None
    message: Optional[str] = None
    error: Optional[_ErrorDetail] = None
    response: Optional[_ResponseObject] = None

    def error_message(self) -> Optional[str]:
        if self.error is not None and self.error.message:
            return self.error.message
        if self.response is not None and self.response.error is not None:
            return self.response.error.message
        return self.message


class ResponsesAdapter:
    """
    Streaming client for the Responses API (``POST /v1/responses``, SSE).

    Each event is one ``data:`` line carrying a JSON object with a ``type``.
    Only the output-text, completion and failure events matter here;
    anything else is skipped.
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
        validate_prompt(request)
        api_key = self.credentials.load_credential()
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        return self._events(headers, self._build_body(request, stream=True), cancel_token)

    def _build_instructions(self, request: LLMRequest) -> Optional[str]:
        sections = []
        selection = clean(request.selection)
        if selection:
            sections.append(quoted_section("Selected passage", selection))
        context = clean(request.context)
        if context:
            sections.append(quoted_section("Context", context))
        if not sections:
            return None
        return RESEARCH_PREAMBLE + "\n\n" + "\n\n".join(sections)

    def _build_body(self, request: LLMRequest, *, stream: bool) -> Dict[str, Any]:
        body: Dict[str, Any] = {"model": self.model, "stream": stream}

        file_id = clean(request.file_reference)
        if file_id:
            body["input"] = [{
                "role": "user",
                "content": [
                    {"type": "input_file", "file_id": file_id},
                    {"type": "input_text", "text": request.user_prompt},
                ],
            }]
        else:
            body["input"] = request.user_prompt

        instructions = self._build_instructions(request)
        if instructions:
            body["instructions"] = instructions
        if request.document_id:
            body["metadata"] = {"document_id": request.document_id}
        if self.config.max_output_tokens:
            body["max_output_tokens"] = self.config.max_output_tokens
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
        final_text: Optional[str] = None

        with open_event_stream(
            self.http, self.config.endpoint, headers=headers, body=body, timeout=self.config.timeout_seconds
        ) as response:
            for line in iter_lines(response, cancel_token):
                payload = data_payload(line)
                if not payload or payload == "[DONE]":
                    continue

                event = decode_payload(ResponsesStreamEvent, payload)
                if event.type == "response.output_text.delta":
                    if event.delta:
                        accumulated += event.delta
                        yield TextDelta(event.delta)
                elif event.type == "response.output_text.done":
                    if event.text:
                        final_text = event.text
                elif event.type == "response.completed":
                    logger.debug("response completed (%d chars)", len(final_text or accumulated))
                    yield completed(final_text or accumulated)
                    return
                elif event.type in ("response.failed", "error"):
                    raise RemoteError(event.error_message() or "Response failed.")

        if is_cancelled(cancel_token):
            return
        yield completed(final_text or accumulated)
