# src/paperllm/providers/gemini_adapter.py
from __future__ import annotations
from typing import Any, Dict, Iterator, List, Optional, Tuple
import logging

import httpx
from pydantic import BaseModel, Field

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


class _Part(BaseModel):
    text: Optional[str] = None


class _Content(BaseModel):
    parts: Optional[List[_Part]] = None


class _Candidate(BaseModel):
    content: Optional[_Content] = None
    finish_reason: Optional[str] = Field(default=None, alias="finishReason")


class _PromptFeedback(BaseModel):
    block_reason: Optional[str] = Field(default=None, alias="blockReason")


class _ErrorDetail(BaseModel):
    message: Optional[str] = None


class GenerateContentChunk(BaseModel):
    candidates: Optional[List[_Candidate]] = None
    prompt_feedback: Optional[_PromptFeedback] = Field(default=None, alias="promptFeedback")
    error: Optional[_ErrorDetail] = None

    def first_candidate(self) -> Optional[_Candidate]:
        return self.candidates[0] if self.candidates else None

    def text(self) -> str:
        candidate = self.first_candidate()
        if candidate is None or candidate.content is None or not candidate.content.parts:
            return ""
        return "".join(p.text for p in candidate.content.parts if p.text)


def merge_text(accumulated: str, text: str) -> Tuple[str, str]:
    """
    Fold one chunk's full text into the accumulator; returns (delta, accumulated).

    Chunks that repeat what was already seen and extend it only contribute the
    new suffix. A chunk that does not extend the accumulator is taken whole.
    """
    if text.startswith(accumulated):
        return text[len(accumulated):], text
    return text, accumulated + text


class GenerateContentAdapter:
    """
    Streaming client for ``models/{model}:streamGenerateContent?alt=sse``.

    Every ``data:`` line is a complete GenerateContentResponse. A non-empty
    ``finishReason`` on the first candidate ends the stream.
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
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        return self._events(headers, self._build_body(request), cancel_token)

    def stream_url(self) -> str:
        return f"{self.config.endpoint.rstrip('/')}/{self.model}:streamGenerateContent"

    def _build_prompt(self, request: LLMRequest) -> str:
        sections = []
        selection = clean(request.selection)
        if selection:
            sections.append(quoted_section("Selected passage", selection))
        context = clean(request.context)
        if context:
            sections.append(quoted_section("Context", context))
        if not sections:
            return request.user_prompt
        return (
            RESEARCH_PREAMBLE + "\n\n" + "\n\n".join(sections)
            + "\n\nUser question:\n" + request.user_prompt
        )

    def _build_body(self, request: LLMRequest) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = []
        file_uri = clean(request.file_reference)
        if file_uri:
            parts.append({"file_data": {"mime_type": self.config.attachment_mime_type, "file_uri": file_uri}})
        parts.append({"text": self._build_prompt(request)})

        body: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        if self.config.max_output_tokens and self.config.max_output_tokens > 0:
            body["generationConfig"] = {"maxOutputTokens": self.config.max_output_tokens}
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

        with open_event_stream(
            self.http,
            self.stream_url(),
            headers=headers,
            body=body,
            params={"alt": "sse"},
            timeout=self.config.timeout_seconds,
        ) as response:
            for line in iter_lines(response, cancel_token):
                payload = data_payload(line)
                if not payload:
                    continue
                if payload == "[DONE]":
                    break

                chunk = decode_payload(GenerateContentChunk, payload)
                if chunk.error is not None:
                    raise RemoteError(chunk.error.message or "Gemini error.")

                text = chunk.text()
                if text:
                    delta, accumulated = merge_text(accumulated, text)
                    if delta:
                        yield TextDelta(delta)

                candidate = chunk.first_candidate()
                if candidate is not None and candidate.finish_reason:
                    logger.debug("finish reason %s (%d chars)", candidate.finish_reason, len(accumulated))
                    yield completed(accumulated)
                    return

                feedback = chunk.prompt_feedback
                if candidate is None and feedback is not None and feedback.block_reason:
                    raise RemoteError(f"Prompt blocked: {feedback.block_reason}")

        if is_cancelled(cancel_token):
            return
        yield completed(accumulated)
