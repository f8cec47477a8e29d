"""
ai-router multi-provider routing: local model with hosted fallbacks.

Sends cheap everyday questions to the local model, quality-sensitive
ones to the best hosted model, and keeps an eye on spend with budgets.

Prerequisites:
    pip install ai-router
    ollama pull qwen2.5:3b
    export ANTHROPIC_API_KEY=...  OPENAI_API_KEY=...
"""

import asyncio
import logging
import os

from ai_router import (
    AIRequest,
    AIRouter,
    Budget,
    Capabilities,
    ProviderConfig,
    ProviderKind,
    RateLimit,
    RequestContext,
    RouterOptions,
)
from ai_router.events import BUDGET_ALERT


async def main():
    logging.basicConfig(level=logging.INFO)

    router = AIRouter(RouterOptions(
        budgets={"claude-sonnet": Budget(daily=2.0, monthly=20.0)},
        usage_path=".ai-router/usage.json",
    ))

    router.add_provider(ProviderConfig(
        id="local",
        kind=ProviderKind.LOCAL,
        model="qwen2.5:3b",
        capabilities=Capabilities(code_generation=True, tokens_per_second=40),
        priority=95,
    ))
    router.add_provider(ProviderConfig(
        id="claude-sonnet",
        kind=ProviderKind.ANTHROPIC,
        model="claude-3-5-sonnet-20241022",
        capabilities=Capabilities(streaming=True, function_calling=True,
                                  code_generation=True, tokens_per_second=45),
        cost_per_1k_tokens=0.003,
        rate_limit=RateLimit(requests_per_minute=50),
        api_key=os.environ.get("ANTHROPIC_API_KEY"),
        priority=88,
    ))
    router.add_provider(ProviderConfig(
        id="gpt-4o-mini",
        kind=ProviderKind.OPENAI,
        model="gpt-4o-mini",
        capabilities=Capabilities(streaming=True, function_calling=True,
                                  code_generation=True, tokens_per_second=50),
        cost_per_1k_tokens=0.00015,
        rate_limit=RateLimit(requests_per_minute=1000),
        api_key=os.environ.get("OPENAI_API_KEY"),
        priority=70,
    ))

    router.events.on(BUDGET_ALERT, lambda alert: print(
        f"!! {alert.provider_id} at {alert.percentage_used:.0f}% of {alert.type.value} budget"
    ))

    async with router:
        # Everyday question → free local model
        quick = await router.generate_response(
            AIRequest(
                "Why did this fail?",
                context=RequestContext(
                    command="git push", shell="zsh",
                    last_output="! [rejected] main -> main (fetch first)",
                ),
            ),
            {"prioritize_cost": True},
        )
        print(f"[COST] {quick.provider_id}: {quick.text[:80]}")

        # Quality-sensitive question → best hosted model, local as fallback
        deep = await router.generate_response(
            AIRequest("Design a zero-downtime migration plan for a Postgres column rename"),
            {"prioritize_quality": True, "prioritize_speed": False},
        )
        print(f"[QUALITY] {deep.provider_id} (fallback={deep.fallback}): {deep.text[:80]}")

        print(f"\nRecommendation: {router.get_provider_recommendation(AIRequest('debug my script'))}")
        print(f"\nUsage today: {router.get_usage_report('today')}")
        print(f"\nBudget: {router.get_budget_status('claude-sonnet')}")
        print(f"\nSystem: {router.get_system_status()}")


if __name__ == "__main__":
    asyncio.run(main())
