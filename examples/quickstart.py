"""
ai-router quickstart: Minimal example.

Prerequisites:
    pip install ai-router
    export OPENAI_API_KEY=sk-...      # any vendor key, or a local model
"""

import asyncio

from ai_router import AIRequest, AIRouter, NoProvidersAvailable


async def main():
    router = AIRouter.from_environment()

    try:
        async with router:
            response = await router.generate_response(
                AIRequest("How do I find files larger than 100MB?")
            )
            print(f"Response: {response.text}")
            print(f"Provider: {response.provider_id} ({response.model})")
            print(f"Latency: {response.response_time_ms:.0f}ms, cost: ${response.cost:.5f}")
    except NoProvidersAvailable as e:
        print(f"Error: {e}")


if __name__ == "__main__":
    asyncio.run(main())
