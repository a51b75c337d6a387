from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

import httpx

from paperllm.config_loader import ProviderConfiguration, load_provider_config
from paperllm.core.ports import FileAttachmentClient, LLMClient
from paperllm.files.direct import anthropic_file_client, openai_file_client
from paperllm.files.noop import NoopFileClient
from paperllm.files.resumable import ResumableUploadFileClient
from paperllm.providers.anthropic_adapter import MessagesAdapter
from paperllm.providers.gemini_adapter import GenerateContentAdapter
from paperllm.providers.mock import MockProvider
from paperllm.providers.openai_adapter import ResponsesAdapter
from paperllm.secrets.sources import CredentialSource


class ModelFamily(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    MOCK = "mock"

    @classmethod
    def parse(cls, name: Union[str, "ModelFamily"]) -> "ModelFamily":
        if isinstance(name, ModelFamily):
            return name
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            raise KeyError(f"Provider '{name}' not registered") from None


@dataclass(frozen=True)
class ProviderPair:
    client: LLMClient
    files: FileAttachmentClient


def build_provider(
    family: Union[str, ModelFamily],
    config: Optional[ProviderConfiguration] = None,
    *,
    credentials: Optional[CredentialSource] = None,
    http_client: Optional[httpx.Client] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ProviderPair:
    """
    The one place a provider family is mapped to its streaming client and
    file client. ``config`` defaults to the layered configuration for the
    family (``overrides`` being the YAML ``providers.<family>`` mapping).
    """
    fam = ModelFamily.parse(family)
    if config is None:
        config = load_provider_config(fam.value, overrides)
    deps = {"credentials": credentials, "http_client": http_client}

    if fam is ModelFamily.OPENAI:
        return ProviderPair(ResponsesAdapter(config, **deps), openai_file_client(config, **deps))
    if fam is ModelFamily.ANTHROPIC:
        return ProviderPair(MessagesAdapter(config, **deps), anthropic_file_client(config, **deps))
    if fam is ModelFamily.GEMINI:
        return ProviderPair(GenerateContentAdapter(config, **deps), ResumableUploadFileClient(config, **deps))
    return ProviderPair(MockProvider(), NoopFileClient())
