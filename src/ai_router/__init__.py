"""
ai-router: Multi-backend AI request router.

Score-based provider selection across local and hosted models, usage and
budget tracking, single-hop fallback, and local inference tuning.

Quickstart::

    from ai_router import AIRouter, AIRequest

    router = AIRouter.from_environment()

    async with router:
        response = await router.generate_response(
            AIRequest("How do I list hidden files?"),
            {"prioritize_cost": True},
        )
        print(response.provider_id, response.text)
"""

from ai_router.config import RouterOptions, default_provider_configs
from ai_router.events import EventEmitter
from ai_router.exceptions import (
    GenerationError,
    InitializationError,
    NoProvidersAvailable,
    RateLimitExceeded,
    RouterError,
)
from ai_router.models import (
    AIRequest,
    AIResponse,
    Budget,
    Capabilities,
    ProviderConfig,
    ProviderKind,
    ProviderState,
    QualityTier,
    RateLimit,
    RequestContext,
    SelectionCriteria,
    SelectionReason,
    SelectionResult,
)
from ai_router.optimizer import PerformanceOptimizer
from ai_router.providers import (
    AnthropicProvider,
    BaseProvider,
    GeminiProvider,
    LocalProvider,
    OpenAIProvider,
    Provider,
)
from ai_router.router import AIRouter, create_provider, register_provider
from ai_router.selector import ProviderSelector
from ai_router.usage import UsageTracker

__version__ = "0.1.0"

__all__ = [
    # Core
    "AIRouter",
    "RouterOptions",
    "AIRequest",
    "AIResponse",
    "RequestContext",
    "ProviderConfig",
    "ProviderKind",
    "ProviderState",
    "Capabilities",
    "RateLimit",
    "QualityTier",
    "SelectionCriteria",
    "SelectionReason",
    "SelectionResult",
    "Budget",
    "default_provider_configs",
    # Providers
    "Provider",
    "BaseProvider",
    "LocalProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "GeminiProvider",
    "create_provider",
    "register_provider",
    # Components
    "ProviderSelector",
    "UsageTracker",
    "PerformanceOptimizer",
    "EventEmitter",
    "ResponseCache",
    # Errors
    "RouterError",
    "InitializationError",
    "GenerationError",
    "RateLimitExceeded",
    "NoProvidersAvailable",
]


def __getattr__(name: str) -> object:
    """Lazy import for optional dependencies."""
    if name == "ResponseCache":
        from ai_router.cache import ResponseCache

        return ResponseCache
    raise AttributeError(f"module 'ai_router' has no attribute {name!r}")
