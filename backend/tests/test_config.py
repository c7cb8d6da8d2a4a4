"""Tests for sync, mapping and LLM configuration loading."""

import pytest

from config.llm_config import LLMConfig, LLMProvider, load_llm_config
from config.sync_config import MappingConfig, SyncConfig, load_mapping_config, load_sync_config
from mailsync.errors import CompletionError
from mailsync.llm_providers import (
    AnthropicProvider,
    OpenAIProvider,
    get_completion_provider,
)

# ============================================================================
# SYNC / MAPPING
# ============================================================================


def test_sync_config_defaults():
    config = load_sync_config()

    assert config.lookback_days == 30
    assert config.max_results == 100
    assert config.raw_content_limit == 5000
    assert config.prompt_body_limit == 3000
    assert config.min_sync_interval_minutes == 60
    assert config.max_attempts == 3


def test_sync_config_from_environment(monkeypatch):
    monkeypatch.setenv("EMAIL_SYNC_LOOKBACK_DAYS", "7")
    monkeypatch.setenv("EMAIL_SYNC_CONNECTION_DELAY", "2.5")
    monkeypatch.setenv("EMAIL_SYNC_STALE_AFTER_MINUTES", "10")

    config = load_sync_config()

    assert config.lookback_days == 7
    assert config.connection_delay_seconds == 2.5
    assert config.stale_after_minutes == 10


@pytest.mark.parametrize(
    "kwargs",
    [
        {"lookback_days": 0},
        {"max_results": -1},
        {"connection_delay_seconds": -0.1},
        {"stale_after_minutes": 0},
        {"max_attempts": 0},
    ],
)
def test_sync_config_validation(kwargs):
    with pytest.raises(ValueError):
        SyncConfig(**kwargs)


def test_mapping_config_defaults():
    config = load_mapping_config()

    assert config.min_users_for_global_trust == 3
    assert config.min_confidence_for_global == 70
    assert config.seed_confidence == 50
    assert config.agreement_bonus == 5
    assert config.disagreement_penalty == 10
    assert config.flip_floor == 30


def test_mapping_config_from_environment(monkeypatch):
    monkeypatch.setenv("MERCHANT_MAPPING_MIN_USERS", "5")
    monkeypatch.setenv("MERCHANT_MAPPING_MIN_CONFIDENCE", "80")

    config = load_mapping_config()

    assert config.min_users_for_global_trust == 5
    assert config.min_confidence_for_global == 80


@pytest.mark.parametrize(
    "kwargs",
    [
        {"flip_floor": 50},
        {"seed_confidence": 120},
        {"disagreement_penalty": 0},
        {"min_users_for_global_trust": 0},
    ],
)
def test_mapping_config_validation(kwargs):
    with pytest.raises(ValueError):
        MappingConfig(**kwargs)


# ============================================================================
# LLM
# ============================================================================


def test_llm_not_configured_without_key():
    assert load_llm_config() is None


def test_llm_defaults_to_openai(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.delenv("LLM_PROVIDER", raising=False)
    monkeypatch.delenv("LLM_MODEL", raising=False)

    config = load_llm_config()

    assert config.provider is LLMProvider.OPENAI
    assert config.model == "gpt-4o-mini"
    assert config.api_key == "sk-test"


def test_llm_anthropic_provider(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "anthropic")
    monkeypatch.setenv("LLM_API_KEY", "sk-ant-test")
    monkeypatch.delenv("LLM_MODEL", raising=False)

    config = load_llm_config()

    assert config.provider is LLMProvider.ANTHROPIC
    assert config.model.startswith("claude")


def test_llm_invalid_provider(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "deepseek")

    with pytest.raises(ValueError, match="Invalid LLM_PROVIDER"):
        load_llm_config()


def test_llm_model_must_match_provider():
    with pytest.raises(ValueError, match="Invalid OpenAI model"):
        LLMConfig(provider=LLMProvider.OPENAI, model="claude-3-5-haiku-20241022", api_key="k")


def test_llm_temperature_out_of_range(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("LLM_TEMPERATURE", "1.5")

    with pytest.raises(ValueError, match="LLM_TEMPERATURE"):
        load_llm_config()


def test_completion_provider_requires_configuration():
    with pytest.raises(CompletionError, match="not configured"):
        get_completion_provider()


@pytest.mark.parametrize(
    "provider, model, expected",
    [
        (LLMProvider.OPENAI, "gpt-4o-mini", OpenAIProvider),
        (LLMProvider.ANTHROPIC, "claude-3-5-haiku-20241022", AnthropicProvider),
    ],
)
def test_completion_provider_factory(provider, model, expected):
    instance = get_completion_provider(LLMConfig(provider=provider, model=model, api_key="test-key"))

    assert isinstance(instance, expected)
    assert instance.model == model


def test_provider_cost_uses_model_pricing():
    provider = OpenAIProvider(api_key="test-key", model="gpt-4o-mini")

    assert provider.calculate_cost(1000, 1000) == pytest.approx(0.00075)
