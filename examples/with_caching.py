"""
ai-router response caching example.

Demonstrates how the response cache avoids redundant provider calls for
repeated and similar low-temperature questions. Semantic matching uses
sentence-transformer embeddings.

Prerequisites:
    pip install ai-router[cache]
    export OPENAI_API_KEY=sk-...
"""

import asyncio

from ai_router import AIRequest, AIRouter


async def main():
    router = AIRouter.from_environment()

    # - Requests with temperature <= 0.3 are cached
    # - Cache hit if cosine similarity >= 0.92
    # - Entries expire after 24 hours
    router.enable_cache(
        similarity_threshold=0.92,
        ttl_hours=24,
        max_entries=5000,
    )

    async with router:
        r1 = await router.generate_response(
            AIRequest("How do I undo the last git commit?", temperature=0.1)
        )
        print(f"First call:  {r1.text[:60]}...")
        print(f"  Cached: {r1.cached}, Latency: {r1.response_time_ms:.0f}ms")

        # Exact same prompt, cache hit
        r2 = await router.generate_response(
            AIRequest("How do I undo the last git commit?", temperature=0.1)
        )
        print(f"\nSecond call: {r2.text[:60]}...")
        print(f"  Cached: {r2.cached}, Cost: ${r2.cost:.5f}")

        # Semantically similar, should also hit
        r3 = await router.generate_response(
            AIRequest("How can I revert my most recent git commit?", temperature=0.1)
        )
        print(f"\nSimilar call: {r3.text[:60]}...")
        print(f"  Cached: {r3.cached}")

        # Default temperature, never cached
        r4 = await router.generate_response(AIRequest("How do I undo the last git commit?"))
        print(f"\nDefault temp: cached={r4.cached}")

        print(f"\nCache stats: {router.get_system_status().get('cache', {})}")


if __name__ == "__main__":
    asyncio.run(main())
