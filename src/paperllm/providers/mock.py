from __future__ import annotations
from typing import Iterator, List, Optional
import time

from paperllm.core.cancellation import CancellationToken
from paperllm.core.models import Completed, LLMRequest, LLMResponse, StreamEvent, TextDelta
from paperllm.providers.streaming import drain, is_cancelled, validate_prompt


def _chunked(text: str, size: int) -> List[str]:
    if size <= 0:
        return [text]
    return [text[i:i + size] for i in range(0, len(text), size)]


class MockProvider:
    """
    Offline stub that describes the request it received.
    Streaming yields fixed-size chunks with a small delay to simulate tokens.
    """
    model = "mock-lorem"

    def __init__(self, chunk_delay: float = 0.12, chunk_size: int = 18):
        self.chunk_delay = float(chunk_delay)
        self.chunk_size = int(chunk_size)

    def send(self, request: LLMRequest, cancel_token: Optional[CancellationToken] = None) -> LLMResponse:
        return drain(self.stream(request, cancel_token))

    def stream(self, request: LLMRequest, cancel_token: Optional[CancellationToken] = None) -> Iterator[StreamEvent]:
        validate_prompt(request)
        reply = (
            f"Mock response for: {request.user_prompt}\n"
            f"Context length: {len(request.context or '')}\n"
            f"File id attached: {request.file_reference or 'none'}"
        )

        def gen() -> Iterator[StreamEvent]:
            for piece in _chunked(reply, self.chunk_size):
                if self.chunk_delay > 0:
                    time.sleep(self.chunk_delay)
                if is_cancelled(cancel_token):
                    return
                yield TextDelta(piece)
            yield Completed(LLMResponse(reply_text=reply))
        return gen()
