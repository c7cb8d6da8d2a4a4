"""
Completion Service Configuration
Reads the provider, model and limits for the completion service that turns
bank notification emails into structured purchases.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from dotenv import load_dotenv

load_dotenv(override=False)


class LLMProvider(str, Enum):
    """Completion providers the email parser can talk to"""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


# Cheap, fast models are enough for single-notification extraction
DEFAULT_MODELS = {
    LLMProvider.ANTHROPIC: "claude-3-5-haiku-20241022",
    LLMProvider.OPENAI: "gpt-4o-mini",
}

MODEL_PREFIXES = {
    LLMProvider.ANTHROPIC: ("claude",),
    LLMProvider.OPENAI: ("gpt-", "o1", "o3", "o4"),
}

PROVIDER_LABELS = {
    LLMProvider.ANTHROPIC: "Anthropic",
    LLMProvider.OPENAI: "OpenAI",
}

PROVIDER_API_KEY_VARS = {
    LLMProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
    LLMProvider.OPENAI: "OPENAI_API_KEY",
}


@dataclass
class LLMConfig:
    """Settings handed to a completion provider"""

    provider: LLMProvider
    model: str
    api_key: str
    api_base_url: Optional[str] = None
    timeout: int = 30
    max_tokens: int = 500
    temperature: float = 0.1
    debug: bool = False

    def __post_init__(self):
        if not self.api_key:
            raise ValueError(f"API key required for provider: {self.provider.value}")
        if self.timeout <= 0:
            raise ValueError("LLM_TIMEOUT must be greater than 0")
        if self.max_tokens <= 0:
            raise ValueError("LLM_MAX_TOKENS must be greater than 0")
        if not 0 <= self.temperature <= 1:
            raise ValueError("LLM_TEMPERATURE must be between 0 and 1")
        if not self.model.startswith(MODEL_PREFIXES[self.provider]):
            raise ValueError(f"Invalid {PROVIDER_LABELS[self.provider]} model: {self.model}")


def _parse_provider(value: str) -> LLMProvider:
    try:
        return LLMProvider(value)
    except ValueError:
        choices = ", ".join(p.value for p in LLMProvider)
        raise ValueError(f"Invalid LLM_PROVIDER: {value}. Must be one of: {choices}") from None


def load_llm_config() -> Optional[LLMConfig]:
    """
    Load completion service settings from the environment.

    Environment Variables:
    - LLM_PROVIDER: anthropic|openai (default: openai)
    - LLM_MODEL: Model name (default depends on provider)
    - LLM_API_KEY: API key (falls back to ANTHROPIC_API_KEY / OPENAI_API_KEY)
    - LLM_API_BASE_URL: Custom API endpoint (optional)
    - LLM_TIMEOUT: Request timeout in seconds (default: 30)
    - LLM_MAX_TOKENS: Completion token cap (default: 500)
    - LLM_TEMPERATURE: Sampling temperature (default: 0.1)
    - LLM_DEBUG: Log prompts and replies (default: false)

    Returns:
        LLMConfig object, or None when no API key is available
    """
    provider = _parse_provider(os.getenv("LLM_PROVIDER", LLMProvider.OPENAI.value).strip().lower())

    api_key = (
        os.getenv("LLM_API_KEY", "").strip()
        or os.getenv(PROVIDER_API_KEY_VARS[provider], "").strip()
    )
    # Without a key the parser cannot run; callers treat this as "not configured"
    if not api_key:
        return None

    return LLMConfig(
        provider=provider,
        model=os.getenv("LLM_MODEL", "").strip() or DEFAULT_MODELS[provider],
        api_key=api_key,
        api_base_url=os.getenv("LLM_API_BASE_URL") or None,
        timeout=int(os.getenv("LLM_TIMEOUT", "30")),
        max_tokens=int(os.getenv("LLM_MAX_TOKENS", "500")),
        temperature=float(os.getenv("LLM_TEMPERATURE", "0.1")),
        debug=os.getenv("LLM_DEBUG", "false").lower() == "true",
    )
