from __future__ import annotations
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import httpx
from dotenv import load_dotenv

from .config_loader import ConfigError, KNOWN_FAMILIES, load_config, load_provider_config
from .providers.registry import build_provider
from .secrets.sources import DEFAULT_METHODS, build_credential_source

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None, *, verbose: bool = False) -> None:
    if verbose:
        resolved = logging.DEBUG
    else:
        resolved = getattr(logging, str(level or "WARNING").upper(), logging.WARNING)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    if verbose:
        logging.getLogger("paperllm").setLevel(logging.DEBUG)
    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(max(resolved, logging.WARNING))


def build_app(
    config_path: Optional[Path] = None,
    *,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    http_client: Optional[httpx.Client] = None,
    verbose: bool = False,
) -> Dict[str, Any]:
    """
    Composition root: load .env and YAML, resolve the provider configuration
    layers, build the credential chain and the client/file-client pair.
    ``verbose`` keeps debug logging on regardless of ``logging.level``.
    Returns: dict with cfg, family, provider_config, client, files.
    """
    load_dotenv()
    if config_path is not None:
        cfg = load_config(config_path)
    else:
        cfg = {"model": {"provider": "openai"}}

    level = (cfg.get("logging") or {}).get("level")
    if level:
        resolved = logging.getLevelName(str(level).upper())
        if not isinstance(resolved, int):
            raise ConfigError(f"Invalid logging.level '{level}'")
        if not verbose:
            logging.getLogger("paperllm").setLevel(resolved)

    if provider:
        family = str(provider).lower()
        if family not in KNOWN_FAMILIES:
            raise ConfigError(f"Unknown model.provider '{family}' (expected one of {', '.join(KNOWN_FAMILIES)}).")
        cfg["model"]["provider"] = family
    family = cfg["model"]["provider"]

    overrides = dict(((cfg.get("providers") or {}).get(family)) or {})
    yaml_model = cfg["model"].get("name")
    if yaml_model and "model" not in overrides:
        overrides["model"] = yaml_model
    provider_config = load_provider_config(family, overrides)
    if model:
        provider_config = replace(provider_config, model=model)

    secrets_cfg = cfg.get("secrets") or {}
    try:
        credentials = build_credential_source(provider_config, secrets_cfg.get("method", DEFAULT_METHODS))
    except ValueError as e:
        raise ConfigError(str(e)) from e

    pair = build_provider(family, provider_config, credentials=credentials, http_client=http_client)
    return {
        "cfg": cfg,
        "family": family,
        "provider_config": provider_config,
        "client": pair.client,
        "files": pair.files,
    }
