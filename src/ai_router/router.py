"""
ai-router: Main AIRouter class, the dispatcher.

Owns the provider registry and usage tracker, and wires selection,
execution, accounting, fallback and events into one call.

Dispatch algorithm:
1. Check the response cache (low-temperature requests) -> return if hit
2. Merge criteria over the router defaults and select a provider
3. Execute the chosen provider; record the attempt in usage
4. On failure, if fallback is allowed, execute the first alternative
   exactly once and record it
5. If the fallback also fails, raise the primary provider's error
6. On success: attach response metadata, cache, emit response_generated
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING, Any, Mapping

from ai_router.config import RouterOptions, default_provider_configs
from ai_router.events import (
    INITIALIZED,
    PROVIDER_SWITCHED,
    RESPONSE_GENERATED,
    EventEmitter,
)
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
    BenchmarkReport,
    BudgetStatus,
    CheckOutcome,
    ProviderBenchmark,
    ProviderConfig,
    ProviderKind,
    ProviderStatus,
    ProviderTestReport,
    ProviderTestResult,
    Recommendation,
    SelectionCriteria,
    SelectionResult,
    UsageReport,
)
from ai_router.optimizer import PerformanceOptimizer
from ai_router.prompt import build_enhanced_prompt
from ai_router.providers.anthropic import AnthropicProvider
from ai_router.providers.gemini import GeminiProvider
from ai_router.providers.local import LocalProvider
from ai_router.providers.openai import OpenAIProvider
from ai_router.selector import ProviderSelector
from ai_router.usage import CostSummary, UsageTracker

if TYPE_CHECKING:
    from ai_router.cache import ResponseCache
    from ai_router.providers.base import Provider

logger = logging.getLogger(__name__)

CACHEABLE_MAX_TEMPERATURE = 0.3

TEST_PROMPT = 'Test response - say "OK" if working'

BENCHMARK_PROMPTS = (
    "Explain the ls command",
    "How do I commit changes in git?",
    "Debug this npm install error",
    "Show me how to create a React component",
    "What does this bash script do?",
)


# Provider factory: backend kind -> provider class
_PROVIDER_REGISTRY: dict[ProviderKind, type] = {
    ProviderKind.LOCAL: LocalProvider,
    ProviderKind.OPENAI: OpenAIProvider,
    ProviderKind.DEEPSEEK: OpenAIProvider,
    ProviderKind.QWEN: OpenAIProvider,
    ProviderKind.ANTHROPIC: AnthropicProvider,
    ProviderKind.GOOGLE: GeminiProvider,
}


def create_provider(
    config: ProviderConfig, optimizer: PerformanceOptimizer | None = None
) -> Provider:
    """Instantiate the provider class registered for ``config.kind``.

    Raises:
        ValueError: If no class is registered for the kind.
    """
    provider_class = _PROVIDER_REGISTRY.get(config.kind)
    if provider_class is None:
        raise ValueError(
            f"Unknown provider kind '{config.kind}'. "
            f"Available: {[k.value for k in _PROVIDER_REGISTRY]}"
        )
    if issubclass(provider_class, LocalProvider):
        return provider_class(config, optimizer=optimizer)
    return provider_class(config)


def register_provider(kind: ProviderKind, provider_class: type) -> None:
    """Register the class used for a backend kind.

    Example::

        from ai_router import register_provider, ProviderKind
        from ai_router.providers import OpenAIProvider

        class AzureOpenAIProvider(OpenAIProvider):
            def _headers(self):
                return {"api-key": self.config.api_key or "",
                        "Content-Type": "application/json"}

        register_provider(ProviderKind.OPENAI, AzureOpenAIProvider)
    """
    _PROVIDER_REGISTRY[kind] = provider_class


class AIRouter:
    """Multi-backend AI request router.

    Quickstart::

        router = AIRouter.from_environment()

        async with router:
            response = await router.generate_response(
                AIRequest("How do I undo the last git commit?")
            )
            print(response.provider_id, response.text)

    Full configuration::

        router = AIRouter(RouterOptions(
            default_criteria=SelectionCriteria(prioritize_cost=True),
            budgets={"claude-sonnet": Budget(daily=5.0, monthly=50.0)},
            usage_path=".ai-router/usage.json",
        ))
        router.add_provider(ProviderConfig(id="local", kind=ProviderKind.LOCAL,
                                           model="qwen2.5:3b"))
        router.add_provider(ProviderConfig(id="gpt", kind=ProviderKind.OPENAI,
                                           model="gpt-4o-mini", api_key="sk-...",
                                           cost_per_1k_tokens=0.00015))
        router.enable_cache()
        router.events.on("budget_alert", notify_user)

        async with router:
            response = await router.generate_response(
                request, {"require_local": True}
            )
    """

    def __init__(
        self,
        options: RouterOptions | None = None,
        optimizer: PerformanceOptimizer | None = None,
        events: EventEmitter | None = None,
    ) -> None:
        self.options = options or RouterOptions()
        self.events = events or EventEmitter()
        self.optimizer = optimizer or PerformanceOptimizer()
        self.selector = ProviderSelector()
        self._usage = UsageTracker(
            budgets=self.options.budgets,
            persistence_path=self.options.usage_path,
            events=self.events,
        )
        self._providers: dict[str, Provider] = {}
        self._cache: ResponseCache | None = None
        self._initialized = False

    @classmethod
    def from_environment(
        cls,
        env: Mapping[str, str] | None = None,
        options: RouterOptions | None = None,
        optimizer: PerformanceOptimizer | None = None,
    ) -> AIRouter:
        """Router with the stock provider catalog configured from ``env``."""
        router = cls(options=options, optimizer=optimizer)
        for config in default_provider_configs(env):
            router.add_provider(config)
        return router

    # ──────────────────────────────────────────────────────────────────────
    # Provider Management
    # ──────────────────────────────────────────────────────────────────────

    def add_provider(self, provider: ProviderConfig | Provider) -> AIRouter:
        """Register a provider from its config, or a ready-made instance.

        Returns:
            self (for method chaining).

        Raises:
            ValueError: If the id is already registered or the kind is unknown.
        """
        if isinstance(provider, ProviderConfig):
            provider = create_provider(provider, optimizer=self.optimizer)

        if provider.id in self._providers:
            raise ValueError(f"Provider '{provider.id}' is already registered")

        self._providers[provider.id] = provider
        logger.info(
            f"Registered provider '{provider.id}': "
            f"{provider.config.kind.value}/{provider.config.model}"
        )
        return self

    def remove_provider(self, provider_id: str) -> Provider:
        """Unregister a provider and return it (the caller owns its teardown).

        Raises:
            KeyError: If the provider is not registered.
        """
        if provider_id not in self._providers:
            raise KeyError(f"Provider '{provider_id}' is not registered")
        provider = self._providers.pop(provider_id)
        logger.info(f"Removed provider '{provider_id}'")
        return provider

    @property
    def providers(self) -> list[Provider]:
        return list(self._providers.values())

    def get_provider(self, provider_id: str) -> Provider:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise KeyError(f"Provider '{provider_id}' is not registered") from None

    @property
    def usage(self) -> UsageTracker:
        return self._usage

    # ──────────────────────────────────────────────────────────────────────
    # Optional Features
    # ──────────────────────────────────────────────────────────────────────

    def enable_cache(
        self,
        similarity_threshold: float = 0.92,
        db_path: str = ":memory:",
        ttl_hours: float = 24,
        max_entries: int = 10000,
        embedding_model: str = "all-MiniLM-L6-v2",
        semantic: bool = True,
    ) -> AIRouter:
        """Enable response caching for requests with temperature <= 0.3.

        Semantic matching requires: pip install ai-router[cache]

        Returns:
            self (for method chaining).
        """
        from ai_router.cache import ResponseCache

        self._cache = ResponseCache(
            db_path=db_path,
            similarity_threshold=similarity_threshold,
            ttl_hours=ttl_hours,
            max_entries=max_entries,
            embedding_model=embedding_model,
            semantic=semantic,
        )
        logger.info(
            f"Response cache enabled (threshold={similarity_threshold}, "
            f"ttl={ttl_hours}h, max={max_entries})"
        )
        return self

    # ──────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────────

    def _startup_targets(self) -> list[Provider]:
        enabled = self.options.enabled_providers
        return [
            p
            for p in self._providers.values()
            if p.config.enabled and (enabled is None or p.id in enabled)
        ]

    async def _initialize_provider(self, provider: Provider) -> bool:
        if not provider.is_available():
            logger.warning(
                f"{provider.config.display_name} not available "
                "(missing API key or model file)"
            )
            return False
        await provider.initialize()
        logger.info(f"{provider.config.display_name} ready")
        return True

    async def initialize(self) -> None:
        """Initialize every enabled, available provider concurrently.

        Failures are logged and leave the provider out of rotation.

        Raises:
            NoProvidersAvailable: If no provider could be brought up.
        """
        if self._initialized:
            return

        targets = self._startup_targets()
        results = await asyncio.gather(
            *(self._initialize_provider(p) for p in targets), return_exceptions=True
        )

        success_count = failure_count = skipped_count = 0
        for provider, result in zip(targets, results):
            if result is True:
                success_count += 1
            elif result is False:
                skipped_count += 1
            else:
                failure_count += 1
                logger.warning(f"Failed to initialize provider '{provider.id}': {result}")

        logger.info(
            f"AIRouter: {success_count} provider(s) ready, {failure_count} failed, "
            f"{skipped_count} unavailable"
        )
        if success_count == 0:
            raise NoProvidersAvailable("No AI providers could be initialized")

        self._initialized = True
        self.events.emit(
            INITIALIZED,
            {
                "success_count": success_count,
                "failure_count": failure_count,
                "skipped_count": skipped_count,
            },
        )

    async def shutdown(self) -> None:
        """Destroy every provider and close the cache."""
        for provider in self._providers.values():
            try:
                await provider.destroy()
            except Exception as e:
                logger.warning(f"Error destroying provider '{provider.id}': {e}")

        if self._cache is not None:
            with contextlib.suppress(Exception):
                self._cache.close()
            self._cache = None

        await self.usage.flush()
        self._initialized = False
        logger.info("AIRouter shut down")

    async def __aenter__(self) -> AIRouter:
        await self.initialize()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.shutdown()

    # ──────────────────────────────────────────────────────────────────────
    # Core API
    # ──────────────────────────────────────────────────────────────────────

    def _criteria(
        self, criteria: SelectionCriteria | Mapping[str, Any] | None
    ) -> SelectionCriteria:
        return self.options.default_criteria.merged(
            dict(criteria) if isinstance(criteria, Mapping) else criteria
        )

    def select_provider(
        self,
        request: AIRequest,
        criteria: SelectionCriteria | Mapping[str, Any] | None = None,
    ) -> SelectionResult:
        """Select a provider without executing the request.

        Raises:
            NoProvidersAvailable: If no provider can serve the request.
        """
        return self.selector.select(
            request,
            self._criteria(criteria),
            self._providers.values(),
            self._usage.get_metrics(),
        )

    async def generate_response(
        self,
        request: AIRequest,
        criteria: SelectionCriteria | Mapping[str, Any] | None = None,
    ) -> AIResponse:
        """Route ``request`` to the best provider, with a single fallback hop.

        Args:
            request: The request to serve.
            criteria: Overrides merged over the router's default criteria,
                either a ``SelectionCriteria`` or a dict of its fields.

        Returns:
            AIResponse with ``provider_id``, measured ``response_time_ms``,
            ``context_used`` and ``enhanced_prompt`` filled in.

        Raises:
            NoProvidersAvailable: If no provider can be selected.
            GenerationError: The primary provider's error, when it failed and
                no fallback was permitted or the fallback also failed.
        """
        merged = self._criteria(criteria)
        enhanced_prompt = build_enhanced_prompt(request)

        cached = self._cache_lookup(request, enhanced_prompt)
        if cached is not None:
            self.events.emit(RESPONSE_GENERATED, {"response": cached, "selection": None})
            return cached

        selection = self.selector.select(
            request, merged, self._providers.values(), self._usage.get_metrics()
        )
        primary = self._providers[selection.provider_id]

        try:
            response = await self._execute(primary, request, enhanced_prompt)
        except RouterError as primary_error:
            alternative = (
                self._providers.get(selection.alternatives[0].provider_id)
                if merged.allow_fallback and selection.alternatives
                else None
            )
            if alternative is None:
                raise

            logger.warning(
                f"Provider '{primary.id}' failed ({primary_error}); "
                f"falling back to '{alternative.id}'"
            )
            try:
                response = await self._execute(
                    alternative, request, enhanced_prompt, fallback=True
                )
            except RouterError as fallback_error:
                logger.error(
                    f"Fallback provider '{alternative.id}' also failed: {fallback_error}"
                )
                raise primary_error from fallback_error

        self._cache_store(request, enhanced_prompt, response)
        self.events.emit(
            RESPONSE_GENERATED, {"response": response, "selection": selection}
        )
        return response

    async def _execute(
        self,
        provider: Provider,
        request: AIRequest,
        enhanced_prompt: str,
        fallback: bool = False,
    ) -> AIResponse:
        """Run one provider attempt and record it, successful or not."""
        start = time.perf_counter()
        try:
            response = await provider.generate_response(request)
            if not response.text.strip():
                raise GenerationError("Provider returned an empty response", provider.id)
        except Exception as e:
            failed = AIResponse(
                text="",
                model=provider.config.model,
                provider_id=provider.id,
                response_time_ms=(time.perf_counter() - start) * 1000,
            )
            self._usage.track_request(provider.id, request, failed, success=False)
            if isinstance(e, RouterError):
                raise
            raise GenerationError(f"Generation failed: {e}", provider.id) from e

        response.provider_id = provider.id
        response.response_time_ms = (time.perf_counter() - start) * 1000
        response.context_used = not request.context.is_empty
        response.enhanced_prompt = enhanced_prompt
        response.fallback = fallback
        self._usage.track_request(provider.id, request, response, success=True)
        return response

    @staticmethod
    def _cache_key(request: AIRequest, enhanced_prompt: str) -> str:
        return f"{request.system_prompt or ''}\n{enhanced_prompt}"

    def _cacheable(self, request: AIRequest) -> bool:
        return (
            self._cache is not None
            and request.temperature is not None
            and request.temperature <= CACHEABLE_MAX_TEMPERATURE
        )

    def _cache_lookup(self, request: AIRequest, enhanced_prompt: str) -> AIResponse | None:
        if not self._cacheable(request):
            return None
        hit = self._cache.lookup(self._cache_key(request, enhanced_prompt))
        if hit is None:
            return None
        response, similarity = hit
        response.context_used = not request.context.is_empty
        response.enhanced_prompt = enhanced_prompt
        logger.debug(f"Cache hit (similarity={similarity:.3f})")
        return response

    def _cache_store(
        self, request: AIRequest, enhanced_prompt: str, response: AIResponse
    ) -> None:
        if self._cacheable(request):
            self._cache.store(self._cache_key(request, enhanced_prompt), response)

    # ──────────────────────────────────────────────────────────────────────
    # Usage & Budgets
    # ──────────────────────────────────────────────────────────────────────

    def get_usage_report(self, period: str = "week") -> UsageReport:
        return self._usage.generate_report(period)

    def get_cost_summary(self) -> CostSummary:
        return self._usage.get_cost_summary()

    def set_budget(
        self,
        provider_id: str,
        daily: float | None = None,
        weekly: float | None = None,
        monthly: float | None = None,
    ) -> None:
        self._usage.set_budget(provider_id, daily=daily, weekly=weekly, monthly=monthly)

    def get_budget_status(self, provider_id: str) -> BudgetStatus | None:
        return self._usage.get_budget_status(provider_id)

    # ──────────────────────────────────────────────────────────────────────
    # Observability & Diagnostics
    # ──────────────────────────────────────────────────────────────────────

    def get_status(self) -> dict[str, ProviderStatus]:
        """Status copies for every registered provider."""
        return {pid: p.get_status() for pid, p in self._providers.items()}

    def get_provider_statuses(self) -> list[ProviderStatus]:
        """Status copies in registration order."""
        return [p.get_status() for p in self._providers.values()]

    def get_system_status(self) -> dict[str, Any]:
        ready = [p for p in self._providers.values() if p.get_status().is_selectable]
        summary = self._usage.get_cost_summary()
        status: dict[str, Any] = {
            "initialized": self._initialized,
            "total_providers": len(self._providers),
            "ready_providers": len(ready),
            "local_providers": sum(1 for p in ready if p.config.is_local),
            "external_providers": sum(1 for p in ready if not p.config.is_local),
            "total_cost": round(summary.total, 6),
            "requests_today": self._usage.requests_today(),
            "system": self.optimizer.get_system_capabilities(),
        }
        if self._cache is not None:
            status["cache"] = self._cache.get_stats()
        return status

    def get_provider_recommendation(self, request: AIRequest) -> Recommendation:
        return self.selector.recommend(request, self._providers.values())

    async def switch_provider(self, from_id: str | None, to_id: str) -> None:
        """Make sure ``to_id`` is ready and announce the switch.

        Raises:
            KeyError: If ``to_id`` is not registered.
            InitializationError: If the target cannot be initialized.
        """
        target = self.get_provider(to_id)
        if not target.get_status().is_selectable:
            await target.initialize()
        logger.info(f"Switched provider: {from_id} -> {to_id}")
        self.events.emit(PROVIDER_SWITCHED, {"from": from_id, "to": to_id})

    async def health_check(self) -> dict[str, bool]:
        providers = list(self._providers.values())
        results = await asyncio.gather(
            *(p.health_check() for p in providers), return_exceptions=True
        )
        return {p.id: result is True for p, result in zip(providers, results)}

    async def test_all_providers(self) -> ProviderTestReport:
        """Smoke-test every registered provider with a minimal request.

        Unready providers are initialized first when available. Results are
        not recorded in usage.
        """
        report = ProviderTestReport(total=len(self._providers))
        request = AIRequest(prompt=TEST_PROMPT, max_tokens=10, temperature=0.1)

        for provider in self._providers.values():
            if not provider.get_status().is_selectable:
                if not provider.is_available():
                    report.results.append(
                        ProviderTestResult(provider.id, CheckOutcome.UNAVAILABLE)
                    )
                    continue
                try:
                    await provider.initialize()
                except InitializationError as e:
                    report.available += 1
                    report.failed += 1
                    report.results.append(
                        ProviderTestResult(provider.id, CheckOutcome.FAIL, error=str(e))
                    )
                    continue

            report.available += 1
            start = time.perf_counter()
            try:
                await provider.generate_response(request)
            except RouterError as e:
                report.failed += 1
                report.results.append(
                    ProviderTestResult(
                        provider.id,
                        CheckOutcome.FAIL,
                        response_time_ms=(time.perf_counter() - start) * 1000,
                        error=str(e),
                    )
                )
                continue

            report.working += 1
            report.results.append(
                ProviderTestResult(
                    provider.id,
                    CheckOutcome.PASS,
                    response_time_ms=(time.perf_counter() - start) * 1000,
                )
            )

        logger.info(
            f"Provider test: {report.working}/{report.available} working, "
            f"{report.total - report.available} unavailable"
        )
        return report

    async def _benchmark_one(self, provider: Provider) -> ProviderBenchmark:
        total_ms = 0.0
        total_tokens = 0
        successes = 0

        for prompt in BENCHMARK_PROMPTS:
            request = AIRequest(prompt=prompt, max_tokens=100)
            for attempt in range(2):
                start = time.perf_counter()
                try:
                    response = await provider.generate_response(request)
                except RateLimitExceeded as e:
                    if attempt == 0:
                        await asyncio.sleep(e.retry_after)
                        continue
                    break
                except RouterError as e:
                    logger.debug(f"Benchmark prompt failed on '{provider.id}': {e}")
                    break
                total_ms += (time.perf_counter() - start) * 1000
                total_tokens += response.tokens
                successes += 1
                break

        return ProviderBenchmark(
            provider_id=provider.id,
            average_response_time_ms=total_ms / successes if successes else 0.0,
            tokens_per_second=total_tokens / (total_ms / 1000) if total_ms else 0.0,
            cost_per_1k_tokens=provider.config.cost_per_1k_tokens,
            reliability=successes / len(BENCHMARK_PROMPTS),
        )

    async def benchmark_providers(self) -> BenchmarkReport:
        """Run a fixed prompt set against every ready provider.

        Providers are benchmarked concurrently, prompts sequentially. Results
        are not recorded in usage.
        """
        ready = [p for p in self._providers.values() if p.get_status().is_selectable]
        results = list(await asyncio.gather(*(self._benchmark_one(p) for p in ready)))

        report = BenchmarkReport(results=results)
        answered = [r for r in results if r.reliability > 0]
        if answered:
            report.fastest = min(answered, key=lambda r: r.average_response_time_ms).provider_id
            report.cheapest = min(answered, key=lambda r: r.cost_per_1k_tokens).provider_id
        if results:
            report.most_reliable = max(results, key=lambda r: r.reliability).provider_id
        return report
