"""
Multi-provider request manager.

Admission order for one logical request:
1. Rate limit - per caller key, checked once per request
2. Cost limit - the shared daily budget must not be exhausted
3. Circuit breaker - per provider; an open breaker skips that provider without I/O

Candidates are the enabled providers supporting the requested model, in
priority order, followed by those supporting the configured fallback model.
Ordinary failures come back as ``AIResponse(success=False)``; only wiring
defects and caller cancellation raise.
"""

import threading
import time
from dataclasses import asdict, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

from ai_resilience.providers.base import AIProvider
from .circuit_breaker import CircuitBreaker, CircuitBreakerMetrics
from .cost_tracker import CostTracker
from .errors import ConfigurationError, ProviderError, RequestCancelled
from .models import AIRequest, AIResponse, FailureReason, generate_correlation_id
from .rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)

ANONYMOUS_KEY = "anonymous"


class MultiProviderManager:
    """Routes requests across providers with admission control and failover."""

    def __init__(
        self,
        providers: Iterable[AIProvider],
        rate_limiter: RateLimiter,
        cost_tracker: CostTracker,
        breakers: Optional[Dict[str, CircuitBreaker]] = None,
        fallback_model: Optional[str] = None,
        timeout_s: float = 30.0
    ):
        """
        Args:
            providers: Provider adapters; sorted by priority here
            rate_limiter: Shared per-caller limiter
            cost_tracker: Shared daily cost ledger
            breakers: Circuit breakers keyed by provider name; missing ones
                are created with default thresholds
            fallback_model: Model tried after the requested one fails everywhere
            timeout_s: Timeout for each outbound provider call

        Raises:
            ValueError: If timeout_s is not positive
        """
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")

        self.providers: List[AIProvider] = sorted(providers, key=lambda p: p.priority)
        self.rate_limiter = rate_limiter
        self.cost_tracker = cost_tracker
        self.fallback_model = fallback_model
        self.timeout_s = timeout_s

        self.breakers: Dict[str, CircuitBreaker] = dict(breakers or {})
        for provider in self.providers:
            self.breakers.setdefault(provider.name, CircuitBreaker(provider.name))

    def _models_to_try(self, model: str) -> List[str]:
        models = [model]
        if self.fallback_model and self.fallback_model != model:
            models.append(self.fallback_model)
        return models

    def _candidates(self, model: str) -> List[Tuple[str, AIProvider]]:
        candidates = []
        for model_to_try in self._models_to_try(model):
            for provider in self.providers:
                if provider.enabled and provider.supports_model(model_to_try):
                    candidates.append((model_to_try, provider))
        return candidates

    @staticmethod
    def _raise_if_cancelled(cancel_event: Optional[threading.Event], correlation_id: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("request_cancelled", correlation_id=correlation_id)
            raise RequestCancelled(correlation_id)

    def send_request(
        self,
        request: AIRequest,
        rate_limit_key: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> AIResponse:
        """Send ``request`` through admission control and provider failover.

        Args:
            request: The request to send
            rate_limit_key: Caller key for rate limiting; defaults to
                ``metadata["user_id"]`` or ``"anonymous"``
            cancel_event: Set by the caller to abandon the request

        Returns:
            The first successful provider response, or a failed response
            describing the last failure

        Raises:
            ConfigurationError: If no enabled providers are configured
            RequestCancelled: If ``cancel_event`` is set before a result is
                accepted; nothing is recorded for the abandoned call
        """
        if not request.correlation_id:
            request = replace(request, correlation_id=generate_correlation_id())
        correlation_id = request.correlation_id

        enabled = [p.name for p in self.providers if p.enabled]
        if not enabled:
            logger.error("no_providers_configured", correlation_id=correlation_id)
            raise ConfigurationError(
                "No AI providers configured. Check the provider API keys in the configuration."
            )

        start = time.monotonic()

        def _elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        key = rate_limit_key or request.metadata.get("user_id") or ANONYMOUS_KEY
        if not self.rate_limiter.is_allowed(key):
            return AIResponse.failure(
                request,
                "Rate limit exceeded. Please try again later.",
                FailureReason.RATE_LIMITED,
            )

        if not self.cost_tracker.is_within_daily_limit():
            logger.warning(
                "daily_cost_limit_exceeded",
                correlation_id=correlation_id,
                total_cost=self.cost_tracker.get_metrics().total_cost,
                daily_limit=self.cost_tracker.daily_limit,
            )
            return AIResponse.failure(
                request,
                "Daily AI cost limit exceeded. Please try again tomorrow.",
                FailureReason.COST_LIMIT_EXCEEDED,
            )

        candidates = self._candidates(request.model)
        if not candidates:
            logger.error(
                "no_provider_for_model",
                correlation_id=correlation_id,
                model=request.model,
                fallback_model=self.fallback_model,
            )
            return AIResponse.failure(
                request,
                f"No enabled provider supports model {request.model}",
                FailureReason.NO_PROVIDER_FOR_MODEL,
            )

        last_error = ""
        last_reason = FailureReason.PROVIDER_ERROR
        last_provider = None

        for attempt_number, (model, provider) in enumerate(candidates, start=1):
            breaker = self.breakers[provider.name]
            if not breaker.can_execute():
                logger.warning(
                    "circuit_open_skipping_provider",
                    correlation_id=correlation_id,
                    provider=provider.name,
                    model=model,
                )
                last_error = f"Circuit breaker open for provider {provider.name}"
                last_reason = FailureReason.CIRCUIT_OPEN
                last_provider = provider.name
                continue

            self._raise_if_cancelled(cancel_event, correlation_id)
            logger.info(
                "provider_attempt",
                correlation_id=correlation_id,
                provider=provider.name,
                model=model,
                attempt=attempt_number,
                is_fallback_model=model != request.model,
            )

            try:
                response = provider.complete(request.with_model(model), self.timeout_s)
            except ProviderError as e:
                self._raise_if_cancelled(cancel_event, correlation_id)
                breaker.record_failure()
                last_error = str(e)
                last_reason = FailureReason.PROVIDER_ERROR
                last_provider = provider.name
                logger.warning(
                    "provider_failed",
                    correlation_id=correlation_id,
                    provider=provider.name,
                    model=model,
                    error=last_error,
                    status_code=e.status_code,
                )
                continue
            except Exception as e:
                # Anything else an adapter raises still counts as a provider failure.
                self._raise_if_cancelled(cancel_event, correlation_id)
                breaker.record_failure()
                last_error = f"{provider.name} unexpected error: {e}"
                last_reason = FailureReason.PROVIDER_ERROR
                last_provider = provider.name
                logger.error(
                    "provider_failed_unexpectedly",
                    correlation_id=correlation_id,
                    provider=provider.name,
                    model=model,
                    error=str(e),
                    exc_info=True,
                )
                continue

            self._raise_if_cancelled(cancel_event, correlation_id)
            breaker.record_success()
            self.cost_tracker.track_request(response.cost)
            logger.info(
                "provider_succeeded",
                correlation_id=correlation_id,
                provider=provider.name,
                model=model,
                used_fallback_model=model != request.model,
                processing_time_ms=response.processing_time_ms,
                tokens_used=response.tokens_used,
                cost=response.cost,
            )
            return response

        logger.error(
            "all_providers_failed",
            correlation_id=correlation_id,
            requested_model=request.model,
            fallback_model=self.fallback_model,
            providers=enabled,
            last_error=last_error,
        )
        return AIResponse.failure(
            request,
            f"All providers failed for model {request.model}"
            f" (fallback: {self.fallback_model or 'none'}). Last error: {last_error}",
            last_reason,
            processing_time_ms=_elapsed_ms(),
            provider=last_provider,
        )

    def get_provider_status(self) -> List[Dict[str, Any]]:
        """Configuration and breaker state of every provider."""
        return [
            {
                "name": provider.name,
                "enabled": provider.enabled,
                "priority": provider.priority,
                "models": list(provider.config.models),
                "circuit_state": self.breakers[provider.name].state.value,
            }
            for provider in self.providers
        ]

    def get_available_models(self) -> List[str]:
        """Distinct models across enabled providers, in priority order."""
        models: Dict[str, None] = {}
        for provider in self.providers:
            if provider.enabled:
                for model in provider.config.models:
                    models.setdefault(model, None)
        return list(models)

    def get_breaker_metrics(self) -> Dict[str, CircuitBreakerMetrics]:
        return {name: breaker.get_metrics() for name, breaker in self.breakers.items()}

    def close(self) -> None:
        """Close every provider adapter."""
        for provider in self.providers:
            provider.close()

    def check_connectivity(self, model: str) -> Dict[str, Any]:
        """Send a tiny test prompt and summarise the outcome."""
        test_request = AIRequest(
            correlation_id=f"test-{int(time.time() * 1000)}",
            model=model,
            prompt='Test message - respond with "OK"',
            temperature=0.1,
            max_tokens=10,
            metadata={"test": True},
        )
        response = self.send_request(test_request, rate_limit_key="connectivity-check")
        result = asdict(response)
        result["failure_reason"] = response.failure_reason.value if response.failure_reason else None
        result["response_preview"] = response.content[:100] if response.success else None
        return result
