"""
ai-router: Multi-criteria provider selection.

Scoring is purely additive integer-ish points:

- Capabilities: +20 code generation, +15 function calling, +10 streaming
- Speed (if prioritized): +50 / +30 / +10 for estimates under 0.5s / 2s / 5s
- Cost (if prioritized): +40 free, +30 / +20 / +10 under $0.001 / $0.01 / $0.1
- Quality (if prioritized): the provider's quality tier (40 / 35 / 25 / 15)
- Reliability (with history): +20 x (1 - error rate), +10 if average < 1s
- Locality: +15 for any local provider

The selector holds no state; usage history is passed in read-only.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from ai_router.exceptions import NoProvidersAvailable
from ai_router.models import (
    AIRequest,
    Alternative,
    QualityTier,
    Recommendation,
    SelectionCriteria,
    SelectionReason,
    SelectionResult,
    UsageMetrics,
)
from ai_router.providers.base import DEFAULT_OUTPUT_TOKENS, Provider

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 3
NETWORK_LATENCY_MS = 200
PROCESSING_OVERHEAD_MS = 100
UNKNOWN_SPEED_ESTIMATE_MS = 5000
SPEED_REASON_THRESHOLD_MS = 500
SIMPLE_QUERY_MAX_CHARS = 100
CODE_HINTS = ("code", "script", "function", "debug", "error")


def estimate_response_time(provider: Provider, request: AIRequest) -> int:
    """Estimated latency in ms: generation time + network + overhead."""
    tps = provider.config.capabilities.tokens_per_second
    if tps <= 0:
        return UNKNOWN_SPEED_ESTIMATE_MS
    output_tokens = request.max_tokens or DEFAULT_OUTPUT_TOKENS
    estimate = output_tokens / tps * 1000
    if not provider.config.is_local:
        estimate += NETWORK_LATENCY_MS
    estimate += PROCESSING_OVERHEAD_MS
    return round(estimate)


class ProviderSelector:
    """Scores and ranks ready providers for a request.

    Example::

        selector = ProviderSelector()
        result = selector.select(
            request,
            SelectionCriteria(prioritize_speed=True),
            router.providers,
            usage_tracker.get_metrics(),
        )
        print(result.provider_id, result.reason, result.alternatives)
    """

    def select(
        self,
        request: AIRequest,
        criteria: SelectionCriteria,
        providers: Iterable[Provider],
        usage_metrics: Mapping[str, UsageMetrics] | None = None,
    ) -> SelectionResult:
        """Pick a primary provider plus up to 3 ranked alternatives.

        Args:
            request: The request being routed.
            criteria: Fully merged selection criteria.
            providers: Registered providers; only ready/busy ones are considered.
            usage_metrics: Per-provider history for reliability scoring.

        Returns:
            SelectionResult for the best-scoring candidate.

        Raises:
            NoProvidersAvailable: If no provider is ready, or all candidates
                were filtered out and fallback is not allowed.
        """
        metrics = usage_metrics or {}
        ready = [p for p in providers if p.get_status().is_selectable]
        if not ready:
            raise NoProvidersAvailable("No AI providers are ready")

        if request.provider:
            for provider in ready:
                if provider.id == request.provider:
                    return SelectionResult(
                        provider_id=provider.id,
                        reason=SelectionReason.USER_SPECIFIED,
                        estimated_cost=provider.get_cost_estimate(request),
                        estimated_response_time_ms=estimate_response_time(
                            provider, request
                        ),
                    )
            logger.debug(
                f"Requested provider '{request.provider}' is not ready; selecting by score"
            )

        candidates = ready
        if criteria.require_local:
            candidates = [p for p in candidates if p.config.is_local]
        candidates = [
            p
            for p in candidates
            if p.get_cost_estimate(request) <= criteria.max_cost_per_request
        ]

        restored = False
        if not candidates:
            if not criteria.allow_fallback:
                raise NoProvidersAvailable("No providers meet the selection criteria")
            candidates = ready
            restored = True

        order = {p.id: i for i, p in enumerate(candidates)}
        scored = [
            (self.score(p, request, criteria, metrics.get(p.id)), p) for p in candidates
        ]
        scored.sort(key=lambda sp: (-sp[0], -sp[1].config.priority, order[sp[1].id]))

        best_score, best = scored[0]
        reason = (
            SelectionReason.FALLBACK
            if restored
            else self.selection_reason(best, request, criteria)
        )
        alternatives = [
            Alternative(
                provider_id=p.id,
                reason=self.selection_reason(p, request, criteria),
                estimated_cost=p.get_cost_estimate(request),
                estimated_response_time_ms=estimate_response_time(p, request),
            )
            for _, p in scored[1 : 1 + MAX_ALTERNATIVES]
        ]

        logger.debug(
            f"Selected '{best.id}' (score={best_score:.1f}, reason={reason.value}) "
            f"over {len(scored) - 1} candidate(s)"
        )
        return SelectionResult(
            provider_id=best.id,
            reason=reason,
            estimated_cost=best.get_cost_estimate(request),
            estimated_response_time_ms=estimate_response_time(best, request),
            score=best_score,
            alternatives=alternatives,
        )

    def score(
        self,
        provider: Provider,
        request: AIRequest,
        criteria: SelectionCriteria,
        metrics: UsageMetrics | None = None,
    ) -> float:
        config = provider.config
        caps = config.capabilities
        score = 0.0

        if caps.code_generation:
            score += 20
        if caps.function_calling:
            score += 15
        if caps.streaming:
            score += 10

        if criteria.prioritize_speed:
            estimated = estimate_response_time(provider, request)
            if estimated < 500:
                score += 50
            elif estimated < 2000:
                score += 30
            elif estimated < 5000:
                score += 10

        if criteria.prioritize_cost:
            cost = provider.get_cost_estimate(request)
            if cost == 0:
                score += 40
            elif cost < 0.001:
                score += 30
            elif cost < 0.01:
                score += 20
            elif cost < 0.1:
                score += 10

        if criteria.prioritize_quality:
            score += int(config.quality_tier or QualityTier.STANDARD)

        if metrics is not None and metrics.total_requests > 0:
            score += 20 * (1 - metrics.error_rate)
            if metrics.average_response_time_ms < 1000:
                score += 10

        if config.is_local:
            score += 15

        return score

    @staticmethod
    def selection_reason(
        provider: Provider, request: AIRequest, criteria: SelectionCriteria
    ) -> SelectionReason:
        """The dominant reason this provider would be chosen."""
        config = provider.config
        if criteria.require_local and config.is_local:
            return SelectionReason.LOCAL_REQUIRED
        if (
            criteria.prioritize_speed
            and estimate_response_time(provider, request) < SPEED_REASON_THRESHOLD_MS
        ):
            return SelectionReason.SPEED
        if criteria.prioritize_cost and provider.get_cost_estimate(request) == 0:
            return SelectionReason.COST
        if criteria.prioritize_quality and (config.quality_tier or 0) >= QualityTier.FRONTIER:
            return SelectionReason.QUALITY
        return SelectionReason.AVAILABILITY

    def recommend(
        self, request: AIRequest, providers: Iterable[Provider]
    ) -> Recommendation:
        """Heuristic recommendation by query shape.

        Short prompts go to the fastest local model, code-related prompts to
        a code-specialised remote model, everything else to the highest
        quality tier.
        """
        ready = [p for p in providers if p.get_status().is_selectable]
        if not ready:
            return Recommendation(primary=None, reasoning="No providers are ready")

        prompt = request.prompt.lower()
        is_simple = len(request.prompt) < SIMPLE_QUERY_MAX_CHARS
        is_code = bool(request.context.command) or any(h in prompt for h in CODE_HINTS)

        local = sorted(
            (p for p in ready if p.config.is_local),
            key=lambda p: -p.config.capabilities.tokens_per_second,
        )
        remote = [p for p in ready if not p.config.is_local]

        def others(primary: Provider, pool: list[Provider]) -> list[str]:
            return [p.id for p in pool if p.id != primary.id][:MAX_ALTERNATIVES]

        if is_simple and local:
            cheap = sorted(remote, key=lambda p: p.config.cost_per_1k_tokens)
            return Recommendation(
                primary=local[0].id,
                fallback=others(local[0], cheap),
                reasoning="Fast local model optimal for simple queries",
            )

        coders = sorted(
            (p for p in remote if p.config.capabilities.code_generation),
            key=lambda p: ("coder" not in p.config.model, p.config.cost_per_1k_tokens),
        )
        if is_code and coders and "coder" in coders[0].config.model:
            return Recommendation(
                primary=coders[0].id,
                fallback=others(coders[0], coders + local),
                reasoning=f"{coders[0].config.display_name} specialized for programming tasks",
            )

        by_quality = sorted(
            ready, key=lambda p: (-(p.config.quality_tier or 0), -p.config.priority)
        )
        best = by_quality[0]
        return Recommendation(
            primary=best.id,
            fallback=others(best, by_quality),
            reasoning=f"{best.config.display_name} provides the highest quality responses",
        )
