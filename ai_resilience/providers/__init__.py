"""
Provider adapters for the request manager.
"""

from .anthropic import AnthropicProvider
from .base import AIProvider, ProviderConfig
from .openrouter import OpenRouterProvider

__all__ = ["AIProvider", "AnthropicProvider", "OpenRouterProvider", "ProviderConfig"]

PROVIDER_TYPES = {
    "openrouter": OpenRouterProvider,
    "anthropic": AnthropicProvider,
}
