"""
Base LLM Provider Abstract Class
Defines the interface that all completion providers must follow
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class LLMResponse:
    """Simple response from LLM completion"""

    content: str  # The text content of the response
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0  # Cost in USD


class BaseLLMProvider(ABC):
    """Abstract base class for LLM providers"""

    # Per-1k-token prices keyed by model name fragment, most specific first
    PRICING: dict[str, dict[str, float]] = {}
    DEFAULT_PRICING = {"input": 0.0, "output": 0.0}

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: int = 30,
        max_tokens: int = 500,
        temperature: float = 0.1,
        debug: bool = False,
    ):
        """
        Initialize LLM provider.

        Args:
            api_key: API key for the provider
            model: Model name/ID
            timeout: Request timeout in seconds, applied to every call
            max_tokens: Completion token cap
            temperature: Sampling temperature
            debug: Enable debug logging
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.debug = debug

    @property
    def name(self) -> str:
        return self.__class__.__name__.replace("Provider", "").lower()

    @abstractmethod
    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        """
        Simple completion API for single prompt.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt

        Returns:
            LLMResponse with content and token/cost info

        Raises:
            CompletionError: kind "transient" when the service is unreachable,
                times out, is rate limited or replies with empty content
        """

    def calculate_cost(self, tokens_in: int, tokens_out: int) -> float:
        """
        Calculate estimated cost for a request.

        Args:
            tokens_in: Input tokens
            tokens_out: Output tokens

        Returns:
            Estimated cost in USD
        """
        costs = self.DEFAULT_PRICING
        for model_name, model_costs in self.PRICING.items():
            if model_name in self.model.lower():
                costs = model_costs
                break

        return (tokens_in / 1000) * costs["input"] + (tokens_out / 1000) * costs["output"]
