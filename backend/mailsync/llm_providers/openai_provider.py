"""
OpenAI Provider Implementation
Uses GPT models via OpenAI API with JSON response format
"""

from typing import Optional

import openai
from openai import OpenAI

from ..errors import CompletionError
from .base_provider import BaseLLMProvider, LLMResponse


class OpenAIProvider(BaseLLMProvider):
    """OpenAI GPT LLM provider implementation"""

    PRICING = {
        "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
        "gpt-4o": {"input": 0.0025, "output": 0.010},
        "gpt-4-turbo": {"input": 0.010, "output": 0.030},
        "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
    }
    DEFAULT_PRICING = {"input": 0.00015, "output": 0.0006}

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: int = 30,
        max_tokens: int = 500,
        temperature: float = 0.1,
        debug: bool = False,
        api_base_url: Optional[str] = None,
    ):
        super().__init__(api_key, model, timeout, max_tokens, temperature, debug)
        self.client = OpenAI(api_key=api_key, base_url=api_base_url, timeout=timeout, max_retries=1)

    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
                timeout=self.timeout,
            )
        except openai.APITimeoutError as e:
            raise CompletionError(f"OpenAI request timed out after {self.timeout}s") from e
        except openai.APIError as e:
            raise CompletionError(f"OpenAI API error: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise CompletionError("OpenAI returned an empty completion")

        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        return LLMResponse(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost=self.calculate_cost(input_tokens, output_tokens),
        )
