"""
Anthropic Messages API adapter (plain HTTP via httpx).
"""

import time
from typing import Any, Optional, Tuple

import httpx

from ai_resilience.core.errors import ProviderError
from ai_resilience.core.models import AIRequest, AIResponse, TokenUsage
from ai_resilience.core.pricing import ANTHROPIC_PRICING, PricingTable, calculate_cost
from .base import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, AIProvider, ProviderConfig

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-3-sonnet-20240229"

MODEL_ALIASES = {
    "claude-3-sonnet": "claude-3-sonnet-20240229",
    "claude-3-haiku": "claude-3-haiku-20240307",
    "claude-3-opus": "claude-3-opus-20240229",
}


def resolve_model(model: str) -> str:
    """Map a short model name to a dated Anthropic model id."""
    if model in MODEL_ALIASES.values():
        return model
    return MODEL_ALIASES.get(model, DEFAULT_MODEL)


class AnthropicProvider(AIProvider):
    """Messages API calls against Anthropic."""

    def __init__(
        self,
        config: ProviderConfig,
        http_client: Optional[httpx.Client] = None,
        pricing: Optional[PricingTable] = None
    ):
        super().__init__(config)
        # A client passed in belongs to the caller and is never closed here.
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.Client()
        self.pricing = pricing or ANTHROPIC_PRICING

    def complete(self, request: AIRequest, timeout_s: float) -> AIResponse:
        start = time.monotonic()
        model = resolve_model(request.model)

        headers = {
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        payload = {
            "model": model,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE,
            "messages": [{"role": "user", "content": request.prompt}],
        }

        try:
            response = self.http_client.post(
                f"{self.config.base_url.rstrip('/')}/messages",
                json=payload,
                headers=headers,
                timeout=timeout_s,
            )
        except httpx.TimeoutException:
            raise ProviderError(self.name, f"request timed out after {timeout_s}s")
        except httpx.HTTPError as e:
            raise ProviderError(self.name, str(e))

        if response.is_error:
            raise ProviderError(
                self.name,
                f"{response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            raise ProviderError(self.name, "Invalid response format from Anthropic API")

        try:
            content, usage = self._parse_body(data)
        except (TypeError, ValueError, AttributeError, KeyError):
            raise ProviderError(self.name, "Invalid response format from Anthropic API")
        if not content.strip():
            raise ProviderError(self.name, "Invalid response format from Anthropic API")

        tokens_used = None
        cost = None
        if usage is not None:
            tokens_used = usage.total_tokens
            cost = calculate_cost(self.pricing, model, usage)

        return AIResponse(
            correlation_id=request.correlation_id,
            content=content,
            model=request.model,
            processing_time_ms=int((time.monotonic() - start) * 1000),
            success=True,
            tokens_used=tokens_used,
            cost=cost,
            provider=self.name,
            finish_reason=data.get("stop_reason"),
        )

    @staticmethod
    def _parse_body(data: Any) -> Tuple[str, Optional[TokenUsage]]:
        """Pull the text and token usage out of a Messages API body.

        Raises:
            TypeError: If the body does not have the Messages API shape
        """
        if not isinstance(data, dict) or not isinstance(data.get("content"), list):
            raise TypeError("response body has no content list")

        parts = []
        for block in data["content"]:
            if not isinstance(block, dict) or block.get("type", "text") != "text":
                continue
            text = block.get("text") or ""
            if not isinstance(text, str):
                raise TypeError("text block is not a string")
            parts.append(text)

        usage_data = data.get("usage")
        if not isinstance(usage_data, dict):
            return "".join(parts), None

        prompt_tokens = usage_data.get("input_tokens") or 0
        completion_tokens = usage_data.get("output_tokens") or 0
        if not isinstance(prompt_tokens, int) or not isinstance(completion_tokens, int):
            raise TypeError("token counts are not integers")
        return "".join(parts), TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)

    def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client:
            self.http_client.close()
