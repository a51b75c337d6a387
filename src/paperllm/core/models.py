from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class LLMRequest:
    """
    One call into a provider. The caller assembles prompt and context;
    this layer never builds conversation history.
    """
    document_id: str
    user_prompt: str
    context: Optional[str] = None
    file_reference: Optional[str] = None
    # highlighted passage, used by providers that want a selection or context
    selection: Optional[str] = None


@dataclass(frozen=True)
class LLMResponse:
    reply_text: str


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class Completed:
    response: LLMResponse


StreamEvent = Union[TextDelta, Completed]
