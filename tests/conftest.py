"""Shared test fixtures and mock providers for ai-router tests."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import pytest

from ai_router.exceptions import GenerationError
from ai_router.models import (
    AIRequest,
    AIResponse,
    Capabilities,
    ProviderConfig,
    ProviderKind,
    RateLimit,
)
from ai_router.providers.base import BaseProvider


class MockProvider(BaseProvider):
    """Configurable mock provider for testing.

    By default, returns successful responses. Can be configured to fail,
    delay, or return custom text, and to look local or remote to the
    selector.
    """

    def __init__(
        self,
        provider_id: str = "mock",
        response_text: str = "Mock response",
        should_fail: bool = False,
        error_message: str = "Mock error",
        tokens: int = 20,
        local: bool = False,
        cost_per_1k_tokens: float = 0.0,
        tokens_per_second: float = 50.0,
        priority: int = 50,
        delay_seconds: float = 0.0,
        available: bool = True,
        code_generation: bool = False,
        model: str | None = None,
        rate_limit: RateLimit | None = None,
    ) -> None:
        super().__init__(
            ProviderConfig(
                id=provider_id,
                kind=ProviderKind.LOCAL if local else ProviderKind.OPENAI,
                model=model or f"{provider_id}-model",
                capabilities=Capabilities(
                    code_generation=code_generation,
                    tokens_per_second=tokens_per_second,
                ),
                cost_per_1k_tokens=cost_per_1k_tokens,
                priority=priority,
                rate_limit=rate_limit,
            )
        )
        self.response_text = response_text
        self.should_fail = should_fail
        self.error_message = error_message
        self.tokens = tokens
        self.delay_seconds = delay_seconds
        self.available = available
        self.call_count = 0
        self.last_request: AIRequest | None = None
        self.destroyed = False

    def is_available(self) -> bool:
        return self.available

    async def _generate(self, request: AIRequest) -> AIResponse:
        self.call_count += 1
        self.last_request = request

        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        if self.should_fail:
            raise GenerationError(self.error_message, self.id)

        return AIResponse(
            text=self.response_text,
            model=self.config.model,
            tokens=self.tokens,
        )

    async def _teardown(self) -> None:
        self.destroyed = True


class FailNTimesProvider(MockProvider):
    """Provider that fails the first N calls, then succeeds."""

    def __init__(self, fail_count: int = 3, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.fail_count = fail_count

    async def _generate(self, request: AIRequest) -> AIResponse:
        if self.call_count < self.fail_count:
            self.call_count += 1
            self.last_request = request
            raise GenerationError(
                f"Failure {self.call_count}/{self.fail_count}", self.id
            )
        return await super()._generate(request)


class FakeClock:
    """Settable clock for usage tracking tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


async def ready(*providers: MockProvider) -> list[MockProvider]:
    """Initialize providers and return them."""
    for provider in providers:
        await provider.initialize()
    return list(providers)


def make_request(prompt: str = "Hello", **kwargs: Any) -> AIRequest:
    return AIRequest(prompt=prompt, **kwargs)


@pytest.fixture
def mock_provider() -> MockProvider:
    """A successful, uninitialized mock provider."""
    return MockProvider()


@pytest.fixture
def failing_provider() -> MockProvider:
    """A consistently failing, uninitialized mock provider."""
    return MockProvider(provider_id="failing", should_fail=True)


@pytest.fixture
def clock() -> FakeClock:
    """Wednesday, 2024-03-13 12:00 local time."""
    return FakeClock(datetime(2024, 3, 13, 12, 0, 0))
