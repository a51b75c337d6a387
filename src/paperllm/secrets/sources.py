# src/paperllm/secrets/sources.py

from __future__ import annotations
from typing import Protocol, Iterable, List, Sequence, Union, TYPE_CHECKING
import logging
import os

import keyring
from keyring.errors import KeyringError

from paperllm.core.errors import (
    CredentialStoreFailure,
    InvalidCredential,
    MissingCredential,
    ProviderError,
)

if TYPE_CHECKING:
    from paperllm.config_loader import ProviderConfiguration

logger = logging.getLogger(__name__)


class CredentialSource(Protocol):
    def load_credential(self) -> str: ...


class CredentialStore(CredentialSource, Protocol):
    def save_credential(self, value: str) -> None: ...


def _store_error_code(exc: Exception) -> str:
    code = getattr(exc, "errno", None) or getattr(exc, "code", None)
    return str(code) if code else type(exc).__name__


class KeyringCredentialSource:
    """Secret stored in the system keyring under (service, account)."""

    def __init__(self, service: str, account: str):
        self.service = service
        self.account = account

    def load_credential(self) -> str:
        try:
            value = keyring.get_password(self.service, self.account)
        except KeyringError as e:
            logger.debug("keyring lookup failed for service=%s: %s", self.service, type(e).__name__)
            raise CredentialStoreFailure(_store_error_code(e)) from e
        if value is None:
            raise MissingCredential()
        value = value.strip()
        if not value:
            raise InvalidCredential()
        return value


class KeyringCredentialStore(KeyringCredentialSource):
    def save_credential(self, value: str) -> None:
        trimmed = (value or "").strip()
        if not trimmed:
            raise InvalidCredential()
        try:
            # set_password replaces an existing item for the same (service, account)
            keyring.set_password(self.service, self.account, trimmed)
        except KeyringError as e:
            raise CredentialStoreFailure(_store_error_code(e)) from e


class EnvCredentialSource:
    def __init__(self, env_key: str):
        self.env_key = env_key

    def load_credential(self) -> str:
        value = (os.getenv(self.env_key) or "").strip()
        if not value:
            raise MissingCredential()
        return value


class CompositeCredentialSource:
    """
    Try each source in order and return the first credential found.
    When every source fails, the last observed error is raised.
    """

    def __init__(self, sources: Sequence[CredentialSource]):
        self.sources = list(sources)

    def load_credential(self) -> str:
        last_error: ProviderError = MissingCredential()
        for src in self.sources:
            try:
                return src.load_credential()
            except ProviderError as e:
                last_error = e
        raise last_error


_ALLOWED_METHODS = {"env", "keyring"}
DEFAULT_METHODS = ("keyring", "env")


def _normalise_methods(method: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(method, str):
        methods = [method]
    else:
        methods = list(method)
    norm = []
    for m in methods:
        key = str(m).strip().lower()
        if key not in _ALLOWED_METHODS:
            raise ValueError(f"Unknown secrets method '{m}'. Allowed: {sorted(_ALLOWED_METHODS)}")
        if key not in norm:
            norm.append(key)
    return norm


def build_credential_source(
    config: "ProviderConfiguration",
    method: Union[str, Iterable[str]] = DEFAULT_METHODS,
) -> CompositeCredentialSource:
    sources: List[CredentialSource] = []
    for name in _normalise_methods(method):
        if name == "keyring":
            sources.append(KeyringCredentialSource(config.keychain_service, config.keychain_account))
        elif name == "env":
            sources.append(EnvCredentialSource(config.env_key))
    return CompositeCredentialSource(sources)
