"""
Configuration management and loading.

Loads orchestration settings from YAML with strict validation: unknown keys,
missing required keys and non-positive limits are all rejected so that a
typo can never silently disable a rate or cost limit.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


class ProviderType(Enum):
    """Supported provider adapters."""
    OPENROUTER = "openrouter"
    ANTHROPIC = "anthropic"


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-user fixed-window limit."""
    window_ms: int = 60000
    max_requests: int = 20

    def __post_init__(self):
        if self.window_ms <= 0:
            raise ValueError("rate_limit.window_ms must be > 0")
        if self.max_requests <= 0:
            raise ValueError("rate_limit.max_requests must be > 0")


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds shared by every provider's breaker."""
    failure_threshold: int = 5
    success_threshold: int = 3
    reset_timeout_ms: int = 60000

    def __post_init__(self):
        if self.failure_threshold <= 0:
            raise ValueError("circuit_breaker.failure_threshold must be > 0")
        if self.success_threshold <= 0:
            raise ValueError("circuit_breaker.success_threshold must be > 0")
        if self.reset_timeout_ms <= 0:
            raise ValueError("circuit_breaker.reset_timeout_ms must be > 0")


@dataclass(frozen=True)
class ProviderSettings:
    """One provider entry. The API key itself lives in the environment."""
    name: str
    type: ProviderType
    api_key_env: str
    base_url: str
    models: List[str]
    priority: int = 1
    enabled: bool = True


@dataclass(frozen=True)
class OrchestratorConfig:
    """Complete orchestration configuration."""
    default_model: str
    daily_cost_limit: float
    providers: List[ProviderSettings]
    fallback_model: Optional[str] = None
    request_timeout_s: float = 30.0
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)

    def __post_init__(self):
        if self.daily_cost_limit <= 0:
            raise ValueError("daily_cost_limit must be > 0")
        if self.request_timeout_s <= 0:
            raise ValueError("request_timeout_s must be > 0")


_TOP_LEVEL_KEYS = {
    'default_model', 'fallback_model', 'request_timeout_s', 'daily_cost_limit',
    'rate_limit', 'circuit_breaker', 'providers'
}
_PROVIDER_KEYS = {'name', 'type', 'api_key_env', 'base_url', 'models', 'priority', 'enabled'}


def load_config(path: str) -> OrchestratorConfig:
    """Load and validate orchestration configuration from a YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated OrchestratorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    return parse_config(raw_config)


def parse_config(raw_config: Dict[str, Any]) -> OrchestratorConfig:
    """Validate an already-parsed configuration mapping."""
    unknown_keys = set(raw_config.keys()) - _TOP_LEVEL_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    for required in ('default_model', 'daily_cost_limit', 'providers'):
        if required not in raw_config:
            raise ValueError(f"Missing required '{required}'")

    default_model = raw_config['default_model']
    if not isinstance(default_model, str) or not default_model.strip():
        raise ValueError("'default_model' must be a non-empty string")

    fallback_model = raw_config.get('fallback_model')
    if fallback_model is not None and (not isinstance(fallback_model, str) or not fallback_model.strip()):
        raise ValueError("'fallback_model' must be a non-empty string")

    daily_cost_limit = _number(raw_config['daily_cost_limit'], 'daily_cost_limit')
    request_timeout_s = _number(raw_config.get('request_timeout_s', 30.0), 'request_timeout_s')

    rate_limit = RateLimitConfig(**_section(
        raw_config.get('rate_limit', {}), 'rate_limit', {'window_ms', 'max_requests'}
    ))
    circuit_breaker = CircuitBreakerConfig(**_section(
        raw_config.get('circuit_breaker', {}),
        'circuit_breaker',
        {'failure_threshold', 'success_threshold', 'reset_timeout_ms'}
    ))

    providers_data = raw_config['providers']
    if not isinstance(providers_data, list) or not providers_data:
        raise ValueError("'providers' must be a non-empty list")

    providers = [
        _parse_provider(entry, f"providers[{index}]")
        for index, entry in enumerate(providers_data)
    ]
    names = [p.name for p in providers]
    if len(set(names)) != len(names):
        raise ValueError(f"Provider names must be unique: {names}")

    return OrchestratorConfig(
        default_model=default_model,
        fallback_model=fallback_model,
        request_timeout_s=request_timeout_s,
        daily_cost_limit=daily_cost_limit,
        rate_limit=rate_limit,
        circuit_breaker=circuit_breaker,
        providers=providers
    )


def _number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    return float(value)


def _section(data: Any, path: str, allowed_keys: set) -> Dict[str, int]:
    """Validate a flat section of positive integers."""
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    for key, value in data.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'{key}' in {path} must be an integer")
    return dict(data)


def _parse_provider(data: Any, path: str) -> ProviderSettings:
    """Parse and validate a single provider entry.

    Raises:
        ValueError: If the entry is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a dictionary")

    unknown_keys = set(data.keys()) - _PROVIDER_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    for required in ('name', 'type', 'api_key_env', 'base_url', 'models'):
        if required not in data:
            raise ValueError(f"Missing required '{required}' in {path}")

    type_str = data['type']
    if not isinstance(type_str, str):
        raise ValueError(f"'type' in {path} must be a string")
    try:
        provider_type = ProviderType(type_str.lower())
    except ValueError:
        valid_types = [t.value for t in ProviderType]
        raise ValueError(f"'type' in {path} must be one of: {valid_types}")

    models = data['models']
    if not isinstance(models, list) or not models or not all(isinstance(m, str) for m in models):
        raise ValueError(f"'models' in {path} must be a non-empty list of strings")

    priority = data.get('priority', 1)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValueError(f"'priority' in {path} must be an integer")

    enabled = data.get('enabled', True)
    if not isinstance(enabled, bool):
        raise ValueError(f"'enabled' in {path} must be true or false")

    return ProviderSettings(
        name=str(data['name']),
        type=provider_type,
        api_key_env=str(data['api_key_env']),
        base_url=str(data['base_url']),
        models=list(models),
        priority=priority,
        enabled=enabled
    )
