"""
Anthropic Provider Implementation
Uses Claude models via Anthropic API
"""

from typing import Optional

import anthropic

from ..errors import CompletionError
from .base_provider import BaseLLMProvider, LLMResponse


class AnthropicProvider(BaseLLMProvider):
    """Anthropic Claude LLM provider implementation"""

    PRICING = {
        "claude-3-5-sonnet": {"input": 0.003, "output": 0.015},
        "claude-3-5-haiku": {"input": 0.0008, "output": 0.004},
        "claude-3-opus": {"input": 0.015, "output": 0.075},
        "claude-3-haiku": {"input": 0.00025, "output": 0.00125},
    }
    DEFAULT_PRICING = {"input": 0.003, "output": 0.015}

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-haiku-20241022",
        timeout: int = 30,
        max_tokens: int = 500,
        temperature: float = 0.1,
        debug: bool = False,
        api_base_url: Optional[str] = None,
    ):
        super().__init__(api_key, model, timeout, max_tokens, temperature, debug)
        self.client = anthropic.Anthropic(
            api_key=api_key, base_url=api_base_url, timeout=timeout, max_retries=1
        )

    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        messages = [{"role": "user", "content": prompt}]

        kwargs = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": messages,
            "timeout": self.timeout,
        }

        if system_prompt:
            kwargs["system"] = system_prompt

        try:
            response = self.client.messages.create(**kwargs)
        except anthropic.APITimeoutError as e:
            raise CompletionError(f"Anthropic request timed out after {self.timeout}s") from e
        except anthropic.APIError as e:
            raise CompletionError(f"Anthropic API error: {e}") from e

        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not content.strip():
            raise CompletionError("Anthropic returned an empty completion")

        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens

        return LLMResponse(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost=self.calculate_cost(input_tokens, output_tokens),
        )
