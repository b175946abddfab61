"""Tests for config/config_loader.py."""

from pathlib import Path

import pytest
import yaml

from config.config_loader import (
    AppConfig,
    GatewayConfig,
    ModelConfig,
    PromptsConfig,
    RoleProfile,
    load_config,
)


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    settings = {
        "defaults": {
            "roles": ["ceo", "cfo"],
            "max_rounds": 2,
            "output_dir": "./output",
            "provider": "claude",
        },
        "models": {
            "claude": {
                "sdk": "anthropic",
                "model": "claude-sonnet-4-20250514",
                "api_key_env": "TEST_CLAUDE_KEY",
                "max_tokens": 4000,
            }
        },
        "prompts": {
            "agent": "You are the {title} of {company}. {context}",
            "synthesis": "SCENARIO: {scenario}\n{perspectives}",
        },
        "personas": {
            "ceo": {"title": "CEO", "personality": "Visionary", "expertise": ["strategy"]},
        },
        "role_providers": {"cfo": "openai"},
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    return path


def test_load_config_returns_app_config(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config, AppConfig)


def test_load_config_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.defaults.roles == ["ceo", "cfo"]
    assert config.defaults.max_rounds == 2
    assert config.defaults.auto_conclusion is True
    assert config.defaults.provider == "claude"
    # facilitator falls back to the default provider
    assert config.defaults.facilitator == "claude"
    assert config.defaults.company_name == "the company"
    assert isinstance(config.defaults.output_dir, Path)


def test_load_config_optional_sections_default(minimal_settings):
    config = load_config(minimal_settings)
    assert config.gateway == GatewayConfig()
    assert config.gateway.timeout_sec == 30.0
    assert config.evidence.top_k == 5
    assert config.evidence.watchlists == {}
    assert config.audit.retention_days == 30
    assert config.inbox.dir == Path("./inbox")
    assert config.prompts.demo_responses == {}


def test_load_config_models(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config.models["claude"], ModelConfig)
    assert config.models["claude"].model == "claude-sonnet-4-20250514"
    assert config.models["claude"].temperature == 0.7
    assert config.models["claude"].base_url is None


def test_load_config_prompts_and_personas(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config.prompts, PromptsConfig)
    assert "{company}" in config.prompts.agent
    assert config.prompts.personas["ceo"] == RoleProfile("CEO", "Visionary", ["strategy"])


def test_load_config_role_providers(minimal_settings):
    assert load_config(minimal_settings).role_providers == {"cfo": "openai"}


def test_load_config_available_providers_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_CLAUDE_KEY", "sk-test-key")
    config = load_config(minimal_settings)
    assert "claude" in config.available_providers


def test_load_config_no_available_providers_without_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_CLAUDE_KEY", "   ")
    config = load_config(minimal_settings)
    assert config.available_providers == set()


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_shipped_settings(app_config):
    """The bundled settings.yaml covers every executive role."""
    roles = ("ceo", "cfo", "cto", "hr")
    assert set(app_config.defaults.roles) == set(roles)
    assert set(app_config.prompts.personas) == set(roles)
    assert set(app_config.prompts.demo_responses) == set(roles)
    assert app_config.prompts.personas["hr"].title == "CHRO"
    assert set(app_config.models) == {"gemini", "claude", "openai"}
    for placeholder in ("{title}", "{company}", "{scenario}", "{context}"):
        assert placeholder in app_config.prompts.agent
    for placeholder in ("{scenario}", "{documents}", "{perspectives}"):
        assert placeholder in app_config.prompts.synthesis
