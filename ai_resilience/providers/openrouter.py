"""
OpenRouter adapter.

OpenRouter speaks the OpenAI chat-completions protocol, so the adapter drives
it through the official OpenAI client pointed at the OpenRouter base URL.
"""

import time
from typing import Any, Dict, Optional

import openai
import structlog
from openai import OpenAI

from ai_resilience.core.errors import ProviderError
from ai_resilience.core.models import AIRequest, AIResponse, TokenUsage
from ai_resilience.core.pricing import OPENROUTER_PRICING, PricingTable, calculate_cost
from .base import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, AIProvider, ProviderConfig

logger = structlog.get_logger(__name__)

DEFAULT_HEADERS = {
    "HTTP-Referer": "https://supportsignal.com.au",
    "X-Title": "SupportSignal AI Integration",
}


class OpenRouterProvider(AIProvider):
    """Chat completions against OpenRouter."""

    def __init__(self, config: ProviderConfig, pricing: Optional[PricingTable] = None):
        super().__init__(config)
        self.pricing = pricing or OPENROUTER_PRICING
        # Failover is the manager's job; the SDK must not retry on its own.
        self.client = OpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            default_headers=DEFAULT_HEADERS,
            max_retries=0,
        )

    def complete(self, request: AIRequest, timeout_s: float) -> AIResponse:
        start = time.monotonic()

        params: Dict[str, Any] = {
            "model": request.model,
            "messages": [{"role": "user", "content": request.prompt}],
            "temperature": request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "timeout": timeout_s,
        }
        if request.output_schema:
            params["response_format"] = {
                "type": "json_schema",
                "json_schema": request.output_schema,
            }

        try:
            response = self.client.chat.completions.create(**params)
        except openai.APIStatusError as e:
            raise ProviderError(self.name, f"{e.status_code} - {e.message}", status_code=e.status_code)
        except openai.APITimeoutError:
            raise ProviderError(self.name, f"request timed out after {timeout_s}s")
        except openai.APIError as e:
            raise ProviderError(self.name, str(e))

        if not response.choices or response.choices[0].message is None:
            raise ProviderError(self.name, "Invalid response format from OpenRouter API")

        choice = response.choices[0]
        content = choice.message.content
        if not content or not content.strip():
            raise ProviderError(self.name, "OpenRouter returned an empty completion")

        tokens_used = None
        cost = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
            )
            tokens_used = response.usage.total_tokens or usage.total_tokens
            cost = calculate_cost(self.pricing, request.model, usage)

        if choice.finish_reason and choice.finish_reason != "stop":
            logger.warning(
                "completion_not_stopped",
                correlation_id=request.correlation_id,
                finish_reason=choice.finish_reason,
            )

        return AIResponse(
            correlation_id=request.correlation_id,
            content=content,
            model=request.model,
            processing_time_ms=int((time.monotonic() - start) * 1000),
            success=True,
            tokens_used=tokens_used,
            cost=cost,
            provider=self.name,
            finish_reason=choice.finish_reason,
        )

    def close(self) -> None:
        self.client.close()
