"""Helpers shared by the provider adapters.

Each adapter owns its own framing; everything here is the part of the
request/response cycle that is identical across providers: request
validation, opening the HTTP stream with status/transport error mapping,
line iteration with cooperative cancellation, and envelope decoding.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional, Type, TypeVar
from urllib.parse import urlsplit
import json
import logging

import httpx
from pydantic import BaseModel, ValidationError

from paperllm.core.cancellation import CancellationToken
from paperllm.core.errors import (
    DecodingFailure,
    EmptyResponse,
    HTTPStatusError,
    InvalidEndpoint,
    InvalidRequest,
    RemoteError,
)
from paperllm.core.models import Completed, LLMRequest, LLMResponse, StreamEvent

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=BaseModel)

RESEARCH_PREAMBLE = (
    "You are a research assistant helping the user read a paper.\n"
    "Use the provided context from the paper when answering."
)


def ensure_http_endpoint(url: str) -> str:
    scheme = urlsplit(url or "").scheme.lower()
    if scheme not in ("http", "https"):
        raise InvalidEndpoint(url)
    return url


def clean(value: Optional[str]) -> str:
    return (value or "").strip()


def validate_prompt(request: LLMRequest) -> None:
    if not clean(request.user_prompt):
        raise InvalidRequest("Prompt is empty.")


def quoted_section(title: str, text: str) -> str:
    return f'{title}:\n"""\n{text}\n"""'


def parse_error_message(body: bytes) -> Optional[str]:
    """Pull ``error.message`` out of an error body, else return the raw text."""
    if not body:
        return None
    try:
        data = json.loads(body)
    except ValueError:
        data = None
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
    text = body.decode("utf-8", errors="replace").strip()
    return text or None


def decode_payload(envelope: Type[E], payload: str) -> E:
    try:
        return envelope.model_validate_json(payload)
    except ValidationError as e:
        errors = e.errors(include_url=False)
        reason = errors[0]["msg"] if errors else str(e)
        raise DecodingFailure(f"{envelope.__name__}: {reason}") from e


def data_payload(line: str) -> Optional[str]:
    """Return the payload of an SSE ``data:`` line, or None for any other line."""
    if not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()


@contextmanager
def transport_errors() -> Iterator[None]:
    try:
        yield
    except httpx.TimeoutException as e:
        raise RemoteError("Request timed out.", timed_out=True) from e
    except httpx.DecodingError as e:
        raise DecodingFailure(f"Response body could not be decoded: {e}") from e
    except httpx.TransportError as e:
        raise RemoteError(f"Transport error: {e}") from e
    except httpx.HTTPError as e:
        raise RemoteError(f"HTTP error: {e}") from e
    except httpx.InvalidURL as e:
        # e.g. a malformed upload session URL handed back by the provider
        raise RemoteError(f"Invalid URL: {e}") from e


@contextmanager
def open_event_stream(
    client: httpx.Client,
    url: str,
    *,
    headers: Dict[str, str],
    body: Dict[str, Any],
    timeout: float,
    params: Optional[Dict[str, str]] = None,
) -> Iterator[httpx.Response]:
    """
    POST ``body`` and yield the streaming response once a 2xx status is seen.
    Non-2xx responses are read in full and raised as HTTPStatusError.
    """
    with transport_errors():
        with client.stream("POST", url, headers=headers, json=body, params=params, timeout=timeout) as response:
            if not response.is_success:
                data = response.read()
                logger.debug("stream request to %s failed with %s", url, response.status_code)
                raise HTTPStatusError(response.status_code, parse_error_message(data))
            logger.debug("stream opened: %s", url)
            yield response


def iter_lines(response: httpx.Response, cancel_token: Optional[CancellationToken]) -> Iterator[str]:
    """Stripped body lines; stops early (without error) once the token is cancelled."""
    for line in response.iter_lines():
        if is_cancelled(cancel_token):
            logger.debug("stream cancelled: %s", cancel_token.reason if cancel_token else None)
            return
        yield line.strip()


def is_cancelled(cancel_token: Optional[CancellationToken]) -> bool:
    return cancel_token is not None and cancel_token.cancelled


def completed(text: str) -> Completed:
    if not text:
        raise EmptyResponse()
    return Completed(LLMResponse(reply_text=text))


def drain(events: Iterable[StreamEvent]) -> LLMResponse:
    final: Optional[LLMResponse] = None
    for event in events:
        if isinstance(event, Completed):
            final = event.response
    if final is None:
        raise EmptyResponse()
    return final
