# src/paperllm/config_loader.py

from __future__ import annotations
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
import logging
import os

import yaml

logger = logging.getLogger(__name__)

KNOWN_FAMILIES = ("openai", "anthropic", "gemini", "mock")


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ProviderConfiguration:
    family: str
    endpoint: str
    model: str
    timeout_seconds: float
    keychain_service: str
    keychain_account: str
    env_key: str
    files_endpoint: str = ""
    upload_endpoint: Optional[str] = None
    max_output_tokens: Optional[int] = None
    api_version: Optional[str] = None
    attachment_mime_type: str = "application/pdf"
    poll_interval_seconds: float = 2.0
    poll_max_attempts: int = 30


_COMMON: Dict[str, Any] = {
    "timeout_seconds": 60.0,
    "keychain_account": "api-key",
}

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "openai": {
        **_COMMON,
        "endpoint": "https://api.openai.com/v1/responses",
        "model": "gpt-4o",
        "keychain_service": "LLMPaperReadingHelper.OpenAI",
        "env_key": "OPENAI_API_KEY",
        "files_endpoint": "https://api.openai.com/v1/files",
    },
    "anthropic": {
        **_COMMON,
        "endpoint": "https://api.anthropic.com/v1/messages",
        "model": "claude-sonnet-4-5-20250929",
        "keychain_service": "LLMPaperReadingHelper.Claude",
        "env_key": "ANTHROPIC_API_KEY",
        "files_endpoint": "https://api.anthropic.com/v1/files",
        "api_version": "2023-06-01",
        "max_output_tokens": 1024,
    },
    "gemini": {
        **_COMMON,
        "endpoint": "https://generativelanguage.googleapis.com/v1beta/models",
        "model": "gemini-2.5-pro",
        "keychain_service": "LLMPaperReadingHelper.Gemini",
        "env_key": "GEMINI_API_KEY",
        "files_endpoint": "https://generativelanguage.googleapis.com/v1beta",
        "upload_endpoint": "https://generativelanguage.googleapis.com/upload/v1beta/files",
        "max_output_tokens": 1024,
    },
    "mock": {
        **_COMMON,
        "endpoint": "mock://local",
        "model": "mock-lorem",
        "keychain_service": "LLMPaperReadingHelper.Mock",
        "env_key": "MOCK_API_KEY",
    },
}

# environment suffix -> (field, parser)
_ENV_FIELDS = {
    "API_ENDPOINT": ("endpoint", str),
    "MODEL": ("model", str),
    "TIMEOUT": ("timeout_seconds", float),
    "MAX_TOKENS": ("max_output_tokens", int),
    "VERSION": ("api_version", str),
    "KEYCHAIN_SERVICE": ("keychain_service", str),
    "KEYCHAIN_ACCOUNT": ("keychain_account", str),
    "FILES_ENDPOINT": ("files_endpoint", str),
    "UPLOAD_ENDPOINT": ("upload_endpoint", str),
}

_NUMERIC = {"timeout_seconds": float, "max_output_tokens": int,
            "poll_interval_seconds": float, "poll_max_attempts": int}


def _require(d: Dict[str, Any], dotted: str, typ: type) -> Any:
    cur: Any = d
    for k in dotted.split("."):
        if not isinstance(cur, dict) or k not in cur:
            raise ConfigError(f"Missing config key: {dotted}")
        cur = cur[k]
    if typ is bool and not isinstance(cur, bool):
        raise ConfigError(f"'{dotted}' must be a boolean")
    if typ is str and not isinstance(cur, str):
        raise ConfigError(f"'{dotted}' must be a string")
    return cur


def _optional(d: Dict[str, Any], dotted: str, typ: type) -> Any:
    try:
        return _require(d, dotted, typ)
    except ConfigError as e:
        if str(e).startswith("Missing config key"):
            return None
        raise


def load_config(path: Path) -> Dict[str, Any]:
    if not path or not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    raw = yaml.safe_load(path.read_text())
    if not isinstance(raw, dict) or not raw:
        raise ConfigError(f"Config is empty or invalid YAML: {path}")

    _require(raw, "model.provider", str)
    _optional(raw, "model.name", str)
    _optional(raw, "logging.level", str)

    provider = str(raw["model"]["provider"]).lower()
    if provider not in KNOWN_FAMILIES:
        raise ConfigError(f"Unknown model.provider '{provider}' (expected one of {', '.join(KNOWN_FAMILIES)}).")
    raw["model"]["provider"] = provider

    providers = raw.get("providers")
    if providers is not None and not isinstance(providers, dict):
        raise ConfigError("'providers' must be a mapping")
    return raw


def _coerce_yaml(family: str, key: str, value: Any) -> Any:
    if key in _NUMERIC:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"'providers.{family}.{key}' must be a number")
        return _NUMERIC[key](value)
    if not isinstance(value, str):
        raise ConfigError(f"'providers.{family}.{key}' must be a string")
    return value


def load_provider_config(
    family: str,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ProviderConfiguration:
    """
    Resolve one provider's settings: built-in defaults, then the YAML
    ``providers.<family>`` mapping, then <PREFIX>_* environment variables.
    """
    family = family.lower()
    if family not in DEFAULTS:
        raise ConfigError(f"Unknown provider family '{family}'")
    env = os.environ if environ is None else environ
    allowed = {f.name for f in fields(ProviderConfiguration)} - {"family"}

    values: Dict[str, Any] = dict(DEFAULTS[family])

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key not in allowed:
            logger.warning("Ignoring unknown setting providers.%s.%s", family, key)
            continue
        values[key] = _coerce_yaml(family, key, value)

    prefix = family.upper()
    for suffix, (key, parse) in _ENV_FIELDS.items():
        raw = env.get(f"{prefix}_{suffix}")
        if raw is None or raw == "":
            continue
        try:
            values[key] = parse(raw)
        except ValueError:
            logger.warning("Ignoring unparseable %s_%s=%r", prefix, suffix, raw)

    return ProviderConfiguration(family=family, **values)
