"""ai-router: Provider implementations."""

from ai_router.providers.anthropic import AnthropicProvider
from ai_router.providers.base import BaseProvider, HTTPProvider, Provider, RateLimiter
from ai_router.providers.gemini import GeminiProvider
from ai_router.providers.local import LocalProvider
from ai_router.providers.openai import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "GeminiProvider",
    "HTTPProvider",
    "LocalProvider",
    "OpenAIProvider",
    "Provider",
    "RateLimiter",
]
