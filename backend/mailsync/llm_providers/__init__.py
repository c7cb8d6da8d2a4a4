"""Completion service providers used by the email parser"""

from typing import Optional

from config.llm_config import LLMConfig, LLMProvider, load_llm_config

from ..errors import CompletionError
from .anthropic_provider import AnthropicProvider
from .base_provider import BaseLLMProvider, LLMResponse
from .openai_provider import OpenAIProvider

PROVIDERS = {
    LLMProvider.ANTHROPIC: AnthropicProvider,
    LLMProvider.OPENAI: OpenAIProvider,
}


def get_completion_provider(config: Optional[LLMConfig] = None) -> BaseLLMProvider:
    """
    Build the configured completion provider.

    Args:
        config: LLM configuration; loaded from the environment when omitted

    Raises:
        CompletionError: when no provider is configured
    """
    config = config or load_llm_config()
    if config is None:
        raise CompletionError("Completion service is not configured (missing LLM API key)")

    provider_class = PROVIDERS[config.provider]
    return provider_class(
        api_key=config.api_key,
        model=config.model,
        timeout=config.timeout,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        debug=config.debug,
        api_base_url=config.api_base_url,
    )


__all__ = [
    "BaseLLMProvider",
    "LLMResponse",
    "AnthropicProvider",
    "OpenAIProvider",
    "PROVIDERS",
    "get_completion_provider",
]
