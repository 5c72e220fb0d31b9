"""
Unit tests for the multi-provider request manager.

Providers are in-process fakes that replay scripted outcomes.
"""

import threading

import httpx
import pytest

from ai_resilience.core.circuit_breaker import CircuitBreaker, CircuitState
from ai_resilience.core.cost_tracker import CostTracker
from ai_resilience.core.errors import ConfigurationError, ProviderError, RequestCancelled
from ai_resilience.core.manager import MultiProviderManager
from ai_resilience.core.models import AIRequest, AIResponse, FailureReason
from ai_resilience.core.rate_limiter import RateLimiter
from ai_resilience.providers.anthropic import AnthropicProvider
from ai_resilience.providers.base import AIProvider, ProviderConfig


class FakeProvider(AIProvider):
    """Replays ``outcomes``: a string is returned as content, an exception is raised."""

    def __init__(self, name, models, priority=1, enabled=True, outcomes=None, cost=0.01, on_call=None):
        super().__init__(ProviderConfig(
            name=name, api_key="k", base_url="http://fake", models=models,
            priority=priority, enabled=enabled
        ))
        self.outcomes = list(outcomes or ["ok"])
        self.cost = cost
        self.on_call = on_call
        self.calls = []

    def complete(self, request, timeout_s):
        self.calls.append(request)
        if self.on_call:
            self.on_call()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return AIResponse(
            correlation_id=request.correlation_id,
            content=outcome,
            model=request.model,
            processing_time_ms=12,
            success=True,
            tokens_used=30,
            cost=self.cost,
            provider=self.name,
        )


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def _request(model="openai/gpt-4o", **metadata):
    return AIRequest(correlation_id="ai-1-test", model=model, prompt="hello", metadata=metadata)


def _manager(providers, max_requests=100, daily_limit=10.0, fallback_model=None, breakers=None):
    return MultiProviderManager(
        providers,
        rate_limiter=RateLimiter(window_ms=60000, max_requests=max_requests),
        cost_tracker=CostTracker(daily_limit=daily_limit),
        breakers=breakers,
        fallback_model=fallback_model,
        timeout_s=5.0
    )


class TestRouting:
    """Test provider selection and failover."""

    def test_primary_success(self):
        primary = FakeProvider("primary", ["openai/gpt-4o"], priority=1, outcomes=["first"])
        secondary = FakeProvider("secondary", ["openai/gpt-4o"], priority=2)
        manager = _manager([secondary, primary])

        response = manager.send_request(_request())

        assert response.success is True
        assert response.content == "first"
        assert response.provider == "primary"
        assert secondary.calls == []

    def test_fails_over_to_next_provider(self):
        primary = FakeProvider("primary", ["openai/gpt-4o"], priority=1,
                               outcomes=[ProviderError("primary", "500 - boom", status_code=500)])
        secondary = FakeProvider("secondary", ["openai/gpt-4o"], priority=2, outcomes=["rescued"])
        manager = _manager([primary, secondary])

        response = manager.send_request(_request())

        assert response.success is True
        assert response.provider == "secondary"
        assert manager.breakers["primary"].get_metrics().failure_count == 1
        assert manager.breakers["secondary"].get_metrics().failure_count == 0

    @pytest.mark.parametrize("body", [
        {"content": [{"type": "text", "text": None}]},
        {"content": [{"type": "text", "text": "hi"}], "usage": {"input_tokens": "many", "output_tokens": 5}},
        {"content": [{"type": "text", "text": 42}]},
        {"content": "hi"},
        ["not", "an", "object"],
    ])
    def test_malformed_anthropic_payload_fails_over(self, body):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)))
        anthropic = AnthropicProvider(
            ProviderConfig(name="Anthropic", api_key="k", base_url="https://api.anthropic.com/v1",
                           models=["claude-3-sonnet"], priority=1),
            http_client=client,
        )
        backup = FakeProvider("backup", ["claude-3-sonnet"], priority=2, outcomes=["rescued"])
        manager = _manager([anthropic, backup])

        response = manager.send_request(_request(model="claude-3-sonnet"))

        assert response.success is True
        assert response.provider == "backup"
        assert manager.breakers["Anthropic"].get_metrics().failure_count == 1

    def test_unexpected_adapter_exception_counts_as_failure(self):
        broken = FakeProvider("broken", ["openai/gpt-4o"], priority=1,
                              outcomes=[AttributeError("'str' object has no attribute 'get'")])
        secondary = FakeProvider("secondary", ["openai/gpt-4o"], priority=2, outcomes=["rescued"])
        manager = _manager([broken, secondary])

        response = manager.send_request(_request())

        assert response.success is True
        assert response.provider == "secondary"
        assert manager.breakers["broken"].get_metrics().failure_count == 1

    def test_unexpected_exception_on_last_provider_is_a_failed_response(self):
        manager = _manager([FakeProvider("a", ["openai/gpt-4o"], outcomes=[TypeError("bad payload")])])

        response = manager.send_request(_request())

        assert response.success is False
        assert response.failure_reason == FailureReason.PROVIDER_ERROR
        assert "a unexpected error: bad payload" in response.error
        assert manager.breakers["a"].get_metrics().failure_count == 1

    def test_fallback_model_used_after_requested_model_fails(self):
        gpt4o = FakeProvider("a", ["openai/gpt-4o"], outcomes=[ProviderError("a", "down")])
        mini = FakeProvider("b", ["openai/gpt-4o-mini"], priority=2, outcomes=["from fallback"])
        manager = _manager([gpt4o, mini], fallback_model="openai/gpt-4o-mini")

        response = manager.send_request(_request())

        assert response.success is True
        assert response.model == "openai/gpt-4o-mini"
        assert mini.calls[0].model == "openai/gpt-4o-mini"

    def test_disabled_provider_is_never_called(self):
        disabled = FakeProvider("disabled", ["openai/gpt-4o"], priority=1, enabled=False)
        enabled = FakeProvider("enabled", ["openai/gpt-4o"], priority=2)
        manager = _manager([disabled, enabled])

        response = manager.send_request(_request())

        assert response.provider == "enabled"
        assert disabled.calls == []

    def test_all_providers_fail(self):
        a = FakeProvider("a", ["openai/gpt-4o"], outcomes=[ProviderError("a", "first")])
        b = FakeProvider("b", ["openai/gpt-4o"], priority=2, outcomes=[ProviderError("b", "second")])
        manager = _manager([a, b], fallback_model="openai/gpt-4o-mini")

        response = manager.send_request(_request())

        assert response.success is False
        assert response.content == ""
        assert response.failure_reason == FailureReason.PROVIDER_ERROR
        assert "All providers failed for model openai/gpt-4o" in response.error
        assert "fallback: openai/gpt-4o-mini" in response.error
        assert "b API error: second" in response.error
        assert response.provider == "b"

    def test_no_provider_for_model(self):
        manager = _manager([FakeProvider("a", ["openai/gpt-4o"])])

        response = manager.send_request(_request(model="mistral/large"))

        assert response.success is False
        assert response.failure_reason == FailureReason.NO_PROVIDER_FOR_MODEL

    def test_no_enabled_providers_is_a_configuration_error(self):
        manager = _manager([FakeProvider("a", ["openai/gpt-4o"], enabled=False)])

        with pytest.raises(ConfigurationError):
            manager.send_request(_request())

    def test_missing_correlation_id_is_generated(self):
        manager = _manager([FakeProvider("a", ["openai/gpt-4o"])])
        request = AIRequest(correlation_id="", model="openai/gpt-4o", prompt="hi")

        response = manager.send_request(request)

        assert response.correlation_id.startswith("ai-")

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            MultiProviderManager([], RateLimiter(), CostTracker(), timeout_s=0)


class TestAdmissionControl:
    """Test rate and cost limits."""

    def test_rate_limited(self):
        provider = FakeProvider("a", ["openai/gpt-4o"])
        manager = _manager([provider], max_requests=1)

        assert manager.send_request(_request(user_id="u1")).success is True
        response = manager.send_request(_request(user_id="u1"))

        assert response.success is False
        assert response.failure_reason == FailureReason.RATE_LIMITED
        assert len(provider.calls) == 1

    def test_rate_limit_key_overrides_user_id(self):
        manager = _manager([FakeProvider("a", ["openai/gpt-4o"])], max_requests=1)

        manager.send_request(_request(user_id="u1"), rate_limit_key="shared")
        response = manager.send_request(_request(user_id="u2"), rate_limit_key="shared")

        assert response.failure_reason == FailureReason.RATE_LIMITED

    def test_rate_limit_checked_once_per_request(self):
        failing = [
            FakeProvider(name, ["openai/gpt-4o"], priority=i, outcomes=[ProviderError(name, "x")])
            for i, name in enumerate(["a", "b", "c"])
        ]
        manager = _manager(failing, max_requests=2)

        manager.send_request(_request(user_id="u1"))

        assert manager.rate_limiter.remaining("u1") == 1

    def test_cost_limit_exceeded(self):
        provider = FakeProvider("a", ["openai/gpt-4o"], cost=6.0)
        manager = _manager([provider], daily_limit=5.0)

        assert manager.send_request(_request()).success is True
        response = manager.send_request(_request())

        assert response.success is False
        assert response.failure_reason == FailureReason.COST_LIMIT_EXCEEDED
        assert len(provider.calls) == 1

    def test_successful_cost_is_tracked(self):
        manager = _manager([FakeProvider("a", ["openai/gpt-4o"], cost=0.25)])

        manager.send_request(_request())
        manager.send_request(_request())

        metrics = manager.cost_tracker.get_metrics()
        assert metrics.total_cost == pytest.approx(0.5)
        assert metrics.request_count == 2

    def test_failed_requests_are_not_charged(self):
        manager = _manager([FakeProvider("a", ["openai/gpt-4o"], outcomes=[ProviderError("a", "x")])])

        manager.send_request(_request())

        assert manager.cost_tracker.get_metrics().request_count == 0


class TestCircuitBreaking:
    """Test breaker integration."""

    def test_open_circuit_skips_provider_without_calling_it(self):
        clock = FakeClock(1000.0)
        breaker = CircuitBreaker("a", failure_threshold=1, reset_timeout_ms=60000, clock=clock)
        breaker.record_failure()
        a = FakeProvider("a", ["openai/gpt-4o"], priority=1)
        b = FakeProvider("b", ["openai/gpt-4o"], priority=2, outcomes=["from b"])
        manager = _manager([a, b], breakers={"a": breaker})

        response = manager.send_request(_request())

        assert response.provider == "b"
        assert a.calls == []

    def test_every_circuit_open(self):
        clock = FakeClock(1000.0)
        breaker = CircuitBreaker("a", failure_threshold=1, clock=clock)
        breaker.record_failure()
        manager = _manager([FakeProvider("a", ["openai/gpt-4o"])], breakers={"a": breaker})

        response = manager.send_request(_request())

        assert response.success is False
        assert response.failure_reason == FailureReason.CIRCUIT_OPEN

    def test_repeated_failures_open_circuit(self):
        provider = FakeProvider("a", ["openai/gpt-4o"], outcomes=[ProviderError("a", "down")])
        breaker = CircuitBreaker("a", failure_threshold=2)
        manager = _manager([provider], breakers={"a": breaker})

        manager.send_request(_request())
        manager.send_request(_request())
        response = manager.send_request(_request())

        assert breaker.state == CircuitState.OPEN
        assert response.failure_reason == FailureReason.CIRCUIT_OPEN
        assert len(provider.calls) == 2

    def test_default_breakers_created(self):
        manager = _manager([FakeProvider("a", ["openai/gpt-4o"])])

        assert manager.breakers["a"].failure_threshold == 5


class TestCancellation:
    """Test cooperative cancellation."""

    def test_cancelled_before_dispatch(self):
        provider = FakeProvider("a", ["openai/gpt-4o"])
        manager = _manager([provider])
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(RequestCancelled):
            manager.send_request(_request(), cancel_event=cancel)

        assert provider.calls == []

    def test_cancelled_during_call_records_nothing(self):
        cancel = threading.Event()
        provider = FakeProvider("a", ["openai/gpt-4o"], cost=1.0, on_call=cancel.set)
        manager = _manager([provider])

        with pytest.raises(RequestCancelled):
            manager.send_request(_request(), cancel_event=cancel)

        assert manager.cost_tracker.get_metrics().request_count == 0
        metrics = manager.breakers["a"].get_metrics()
        assert metrics.failure_count == 0
        assert metrics.state == CircuitState.CLOSED

    def test_cancelled_during_failing_call_records_no_failure(self):
        cancel = threading.Event()
        provider = FakeProvider("a", ["openai/gpt-4o"], outcomes=[ProviderError("a", "x")], on_call=cancel.set)
        manager = _manager([provider])

        with pytest.raises(RequestCancelled):
            manager.send_request(_request(), cancel_event=cancel)

        assert manager.breakers["a"].get_metrics().failure_count == 0


class TestMonitoring:
    """Test status and connectivity helpers."""

    def test_provider_status_in_priority_order(self):
        manager = _manager([
            FakeProvider("b", ["m2"], priority=2),
            FakeProvider("a", ["m1"], priority=1, enabled=False),
        ])

        status = manager.get_provider_status()

        assert [s["name"] for s in status] == ["a", "b"]
        assert status[0]["enabled"] is False
        assert status[1]["circuit_state"] == "CLOSED"

    def test_available_models_from_enabled_providers(self):
        manager = _manager([
            FakeProvider("a", ["m1", "m2"], priority=1),
            FakeProvider("b", ["m2", "m3"], priority=2),
            FakeProvider("c", ["m4"], priority=3, enabled=False),
        ])

        assert manager.get_available_models() == ["m1", "m2", "m3"]

    def test_breaker_metrics(self):
        manager = _manager([FakeProvider("a", ["m1"])])

        metrics = manager.get_breaker_metrics()

        assert metrics["a"].state == CircuitState.CLOSED

    def test_close_closes_every_provider(self):
        closed = []

        class ClosingProvider(FakeProvider):
            def close(self):
                closed.append(self.name)

        manager = _manager([ClosingProvider("b", ["m1"], priority=2), ClosingProvider("a", ["m1"])])

        manager.close()

        assert closed == ["a", "b"]

    def test_check_connectivity(self):
        provider = FakeProvider("a", ["openai/gpt-4o"], outcomes=["OK"])
        manager = _manager([provider])

        result = manager.check_connectivity("openai/gpt-4o")

        assert result["success"] is True
        assert result["response_preview"] == "OK"
        assert result["failure_reason"] is None
        assert provider.calls[0].max_tokens == 10

    def test_check_connectivity_failure(self):
        manager = _manager([FakeProvider("a", ["openai/gpt-4o"])])

        result = manager.check_connectivity("unknown/model")

        assert result["success"] is False
        assert result["response_preview"] is None
        assert result["failure_reason"] == "no_provider_for_model"
