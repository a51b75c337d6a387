# tests/unit/test_config_loader.py

from __future__ import annotations
import sys
from pathlib import Path
import pytest
from textwrap import dedent

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from paperllm.config_loader import ConfigError, load_config, load_provider_config  # type: ignore


def write_yaml(p: Path, text: str) -> Path:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(dedent(text).lstrip("\n").rstrip() + "\n", encoding="utf-8")
    return p


def test_load_config_ok(tmp_path: Path):
    cfg = write_yaml(
        tmp_path / "config" / "default.yaml",
        """
        model: { provider: GEMINI, name: gemini-2.5-flash }
        logging: { level: debug }
        providers:
          gemini: { timeout_seconds: 30 }
        """,
    )
    data = load_config(cfg)
    assert data["model"]["provider"] == "gemini"   # normalised
    assert data["providers"]["gemini"]["timeout_seconds"] == 30


def test_load_config_missing_key(tmp_path: Path):
    cfg = write_yaml(
        tmp_path / "config" / "default.yaml",
        """
        model: { name: gpt-4o-mini }         # missing provider
        """,
    )
    with pytest.raises(ConfigError):
        load_config(cfg)


def test_load_config_type_error(tmp_path: Path):
    cfg = write_yaml(
        tmp_path / "config" / "default.yaml",
        """
        model: { provider: openai, name: 4 }   # wrong type
        """,
    )
    with pytest.raises(ConfigError):
        load_config(cfg)


def test_load_config_unknown_provider(tmp_path: Path):
    cfg = write_yaml(tmp_path / "c.yaml", "model: { provider: llama }")
    with pytest.raises(ConfigError):
        load_config(cfg)


def test_load_config_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_provider_defaults():
    openai = load_provider_config("openai", environ={})
    assert openai.endpoint == "https://api.openai.com/v1/responses"
    assert openai.model == "gpt-4o"
    assert openai.timeout_seconds == 60.0
    assert (openai.keychain_service, openai.keychain_account) == ("LLMPaperReadingHelper.OpenAI", "api-key")

    claude = load_provider_config("anthropic", environ={})
    assert claude.api_version == "2023-06-01"
    assert claude.max_output_tokens == 1024

    gemini = load_provider_config("Gemini", environ={})
    assert gemini.family == "gemini"
    assert gemini.upload_endpoint == "https://generativelanguage.googleapis.com/upload/v1beta/files"


def test_yaml_overrides_then_environment_wins():
    config = load_provider_config(
        "anthropic",
        {"model": "claude-from-yaml", "timeout_seconds": 15, "max_output_tokens": None},
        environ={"ANTHROPIC_MODEL": "claude-from-env", "ANTHROPIC_MAX_TOKENS": "2048"},
    )
    assert config.model == "claude-from-env"
    assert config.timeout_seconds == 15.0
    assert config.max_output_tokens == 2048


def test_unparseable_env_value_is_ignored():
    config = load_provider_config("openai", environ={"OPENAI_TIMEOUT": "soon", "OPENAI_MODEL": ""})
    assert config.timeout_seconds == 60.0
    assert config.model == "gpt-4o"


def test_unknown_override_is_ignored_and_bad_type_rejected():
    config = load_provider_config("gemini", {"colour": "blue"}, environ={})
    assert not hasattr(config, "colour")

    with pytest.raises(ConfigError):
        load_provider_config("gemini", {"poll_max_attempts": "many"}, environ={})
    with pytest.raises(ConfigError):
        load_provider_config("gemini", {"endpoint": 42}, environ={})


def test_unknown_family():
    with pytest.raises(ConfigError):
        load_provider_config("llama", environ={})
