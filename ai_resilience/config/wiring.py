"""
Builds the runtime object graph from a validated configuration.
"""

import os
from typing import Callable, List, Mapping, Optional

import structlog

from ai_resilience.core.circuit_breaker import CircuitBreaker
from ai_resilience.core.cost_tracker import CostTracker
from ai_resilience.core.manager import MultiProviderManager
from ai_resilience.core.operations import AIOperations
from ai_resilience.core.rate_limiter import RateLimiter
from ai_resilience.providers import PROVIDER_TYPES, AIProvider, ProviderConfig
from ai_resilience.storage.db import DEFAULT_DB_PATH
from ai_resilience.storage.repository import SQLiteAuditLog, SQLitePromptStore
from .loader import OrchestratorConfig

logger = structlog.get_logger(__name__)


def build_providers(
    config: OrchestratorConfig,
    environ: Optional[Mapping[str, str]] = None
) -> List[AIProvider]:
    """Instantiate one adapter per configured provider.

    A provider whose API key variable is unset or empty is kept but disabled.
    """
    environ = os.environ if environ is None else environ
    providers = []
    for settings in config.providers:
        api_key = environ.get(settings.api_key_env, "")
        enabled = settings.enabled and bool(api_key)
        if settings.enabled and not api_key:
            logger.warning(
                "provider_disabled_missing_key",
                provider=settings.name,
                api_key_env=settings.api_key_env,
            )
        provider_cls = PROVIDER_TYPES[settings.type.value]
        providers.append(provider_cls(ProviderConfig(
            name=settings.name,
            api_key=api_key,
            base_url=settings.base_url,
            models=list(settings.models),
            priority=settings.priority,
            enabled=enabled,
        )))
    return providers


def build_manager(
    config: OrchestratorConfig,
    environ: Optional[Mapping[str, str]] = None,
    clock: Optional[Callable[[], float]] = None
) -> MultiProviderManager:
    """Wire limiter, cost tracker, breakers and adapters into a manager.

    Args:
        config: Validated configuration
        environ: Source of API keys; defaults to ``os.environ``
        clock: Millisecond clock shared by the limiter and breakers
    """
    providers = build_providers(config, environ)
    breakers = {
        provider.name: CircuitBreaker(
            provider.name,
            failure_threshold=config.circuit_breaker.failure_threshold,
            success_threshold=config.circuit_breaker.success_threshold,
            reset_timeout_ms=config.circuit_breaker.reset_timeout_ms,
            clock=clock,
        )
        for provider in providers
    }
    manager = MultiProviderManager(
        providers,
        rate_limiter=RateLimiter(
            window_ms=config.rate_limit.window_ms,
            max_requests=config.rate_limit.max_requests,
            clock=clock,
        ),
        cost_tracker=CostTracker(daily_limit=config.daily_cost_limit),
        breakers=breakers,
        fallback_model=config.fallback_model,
        timeout_s=config.request_timeout_s,
    )
    logger.info(
        "manager_configured",
        providers=[p.name for p in providers if p.enabled],
        disabled=[p.name for p in providers if not p.enabled],
        default_model=config.default_model,
        fallback_model=config.fallback_model,
    )
    return manager


def build_operations(
    config: OrchestratorConfig,
    db_path: str = DEFAULT_DB_PATH,
    environ: Optional[Mapping[str, str]] = None
) -> AIOperations:
    """Operation facade backed by the SQLite prompt store and audit log."""
    return AIOperations(
        manager=build_manager(config, environ),
        prompt_store=SQLitePromptStore(db_path),
        audit_log=SQLiteAuditLog(db_path),
        default_model=config.default_model,
    )
