"""
ai-router: Provider protocol and shared lifecycle.

Any backend can be integrated by implementing the ``Provider`` protocol.
Built-in providers subclass ``BaseProvider``, which owns the lifecycle
state machine, rate limiting and cost estimation, and only implement the
``_setup`` / ``_generate`` / ``_teardown`` / ``_ping`` hooks.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from typing import Any, Callable, Protocol, runtime_checkable

import aiohttp

from ai_router.exceptions import GenerationError, InitializationError, RateLimitExceeded
from ai_router.extract import extract_commands, extract_suggestions
from ai_router.models import (
    AIRequest,
    AIResponse,
    ProviderConfig,
    ProviderState,
    ProviderStatus,
    RateLimit,
)

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_TOKENS = 256


@runtime_checkable
class Provider(Protocol):
    """Protocol defining the interface the router needs from a backend.

    Providers never write usage records; the router does that.
    """

    config: ProviderConfig

    @property
    def id(self) -> str: ...

    def is_available(self) -> bool:
        """Whether credentials / model files are present. No I/O beyond existence checks."""
        ...

    async def initialize(self) -> None:
        """Open clients / load the model. Idempotent on a ready provider.

        Raises:
            InitializationError: If the provider cannot be brought up.
        """
        ...

    async def generate_response(self, request: AIRequest) -> AIResponse:
        """Generate a response. Only valid while ready (or busy).

        Raises:
            RateLimitExceeded: If called before the minimum interval elapsed.
            GenerationError: If the backend failed.
        """
        ...

    def get_cost_estimate(self, request: AIRequest) -> float: ...

    def get_rate_limit(self) -> RateLimit | None: ...

    def get_status(self) -> ProviderStatus: ...

    async def destroy(self) -> None: ...

    async def health_check(self) -> bool: ...


class RateLimiter:
    """Minimum-interval limiter that rejects instead of waiting.

    A call earlier than ``60 / requests_per_minute`` seconds after the last
    accepted call raises ``RateLimitExceeded`` immediately.
    """

    def __init__(
        self, limit: RateLimit, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.limit = limit
        self._clock = clock
        self._last_request: float | None = None
        self._lock = threading.Lock()

    def acquire(self, provider_id: str | None = None) -> None:
        with self._lock:
            now = self._clock()
            if self._last_request is not None:
                remaining = self.limit.min_interval - (now - self._last_request)
                if remaining > 0:
                    raise RateLimitExceeded(
                        f"Rate limit exceeded. Wait {math.ceil(remaining)}s",
                        provider_id,
                        retry_after=remaining,
                    )
            self._last_request = now

    def reset(self) -> None:
        with self._lock:
            self._last_request = None


class BaseProvider:
    """Shared lifecycle for built-in providers.

    State transitions::

        unloaded -> loading -> ready <-> busy
        loading | ready | busy -> error
        any -> unloaded            (destroy)

    ``busy`` means at least one request is in flight; the provider remains
    selectable while busy since dispatch is not serialized per provider.
    """

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config
        self._status = ProviderStatus(id=config.id, capabilities=config.capabilities)
        self._rate_limiter = RateLimiter(config.rate_limit) if config.rate_limit else None

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def is_local(self) -> bool:
        return self.config.is_local

    @property
    def state(self) -> ProviderState:
        return self._status.state

    def get_status(self) -> ProviderStatus:
        """Read-only copy of the current status."""
        return self._status.snapshot()

    def get_rate_limit(self) -> RateLimit | None:
        return self.config.rate_limit

    def is_available(self) -> bool:
        return True

    def get_cost_estimate(self, request: AIRequest) -> float:
        """Estimate USD cost from prompt length and requested output tokens.

        Zero for local providers and providers without a price.
        """
        if self.config.is_local or not self.config.cost_per_1k_tokens:
            return 0.0
        tokens = request.estimated_prompt_tokens + (
            request.max_tokens or DEFAULT_OUTPUT_TOKENS
        )
        return tokens / 1000 * self.config.cost_per_1k_tokens

    def cost_for_tokens(self, tokens: int) -> float:
        if self.config.is_local:
            return 0.0
        return tokens / 1000 * self.config.cost_per_1k_tokens

    # ──────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        if self._status.is_selectable:
            return

        if not self.is_available():
            raise InitializationError(
                f"{self.config.display_name} is not available "
                "(missing API key or model file)",
                self.id,
            )

        self._status.state = ProviderState.LOADING
        self._status.error_message = None
        start = time.perf_counter()
        try:
            await self._setup()
        except InitializationError as e:
            self._mark_error(e.message)
            raise
        except Exception as e:
            self._mark_error(str(e))
            raise InitializationError(f"Initialization failed: {e}", self.id) from e

        self._status.load_time_ms = (time.perf_counter() - start) * 1000
        self._status.state = ProviderState.READY
        logger.info(
            f"Provider '{self.id}' ready in {self._status.load_time_ms:.0f}ms"
        )

    async def generate_response(self, request: AIRequest) -> AIResponse:
        if not self._status.is_selectable:
            raise GenerationError(
                f"Provider not ready (state={self._status.state.value})", self.id
            )

        if self._rate_limiter is not None:
            self._rate_limiter.acquire(self.id)

        self._status.in_flight += 1
        self._status.state = ProviderState.BUSY
        start = time.perf_counter()
        try:
            response = await self._generate(request)
        except RateLimitExceeded:
            self._release()
            raise
        except GenerationError as e:
            self._release(error=e.message)
            raise
        except Exception as e:
            self._release(error=str(e))
            raise GenerationError(f"Generation failed: {e}", self.id) from e

        self._release()
        if not response.response_time_ms:
            response.response_time_ms = (time.perf_counter() - start) * 1000
        if not response.model:
            response.model = self.config.model
        if not response.cost and response.tokens:
            response.cost = self.cost_for_tokens(response.tokens)
        response.provider_id = self.id
        if not response.suggestions:
            response.suggestions = extract_suggestions(response.text)
        if not response.commands:
            response.commands = extract_commands(response.text)
        return response

    async def destroy(self) -> None:
        try:
            await self._teardown()
        finally:
            self._status.state = ProviderState.UNLOADED
            self._status.in_flight = 0
            if self._rate_limiter is not None:
                self._rate_limiter.reset()
        logger.info(f"Provider '{self.id}' destroyed")

    async def health_check(self) -> bool:
        if not self._status.is_selectable:
            return False
        return await self._ping()

    def _release(self, error: str | None = None) -> None:
        self._status.in_flight = max(0, self._status.in_flight - 1)
        self._status.last_used = time.time()
        if error is not None:
            self._mark_error(error)
        elif self._status.state is ProviderState.BUSY and self._status.in_flight == 0:
            self._status.state = ProviderState.READY

    def _mark_error(self, message: str) -> None:
        self._status.state = ProviderState.ERROR
        self._status.error_message = message
        logger.warning(f"Provider '{self.id}' entered error state: {message}")

    # ──────────────────────────────────────────────────────────────────────
    # Hooks
    # ──────────────────────────────────────────────────────────────────────

    async def _setup(self) -> None:
        """Bring up clients / load the model."""

    async def _generate(self, request: AIRequest) -> AIResponse:
        raise NotImplementedError

    async def _teardown(self) -> None:
        """Release clients / unload the model."""

    async def _ping(self) -> bool:
        return True


class HTTPProvider(BaseProvider):
    """Base for providers that talk JSON over HTTP through aiohttp."""

    default_base_url = ""

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        self.base_url = (config.base_url or self.default_base_url).rstrip("/")
        self._session: aiohttp.ClientSession | None = None

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _get_session(self) -> aiohttp.ClientSession:
        """Lazily create and return the aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self._headers())
        return self._session

    async def _setup(self) -> None:
        await self._get_session()

    async def _teardown(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post_json(
        self, url: str, payload: dict[str, Any], timeout: float
    ) -> dict[str, Any]:
        """POST ``payload`` and return the decoded JSON body.

        Raises:
            RateLimitExceeded: On HTTP 429.
            GenerationError: On any other non-200 status, timeout or
                connection failure.
        """
        session = await self._get_session()
        try:
            client_timeout = aiohttp.ClientTimeout(total=timeout)
            async with session.post(url, json=payload, timeout=client_timeout) as resp:
                if resp.status == 200:
                    return await resp.json()

                error_text = await resp.text()
                if resp.status == 429:
                    raise RateLimitExceeded(
                        f"HTTP 429: {error_text[:200]}",
                        self.id,
                        retry_after=_retry_after(resp.headers),
                    )
                raise GenerationError(
                    f"HTTP {resp.status}: {error_text[:200]}", self.id
                )
        except asyncio.TimeoutError as e:
            raise GenerationError(f"Timeout after {timeout}s", self.id) from e
        except aiohttp.ClientError as e:
            raise GenerationError(f"Connection error: {e}", self.id) from e

    async def _get_ok(self, url: str, timeout: float = 5) -> bool:
        session = await self._get_session()
        try:
            client_timeout = aiohttp.ClientTimeout(total=timeout)
            async with session.get(url, timeout=client_timeout) as resp:
                return resp.status == 200
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.debug(f"Health check for '{self.id}' failed: {e}")
            return False

    def _messages(self, prompt: str, system_prompt: str | None) -> list[dict[str, str]]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages


def _retry_after(headers: Any) -> float:
    try:
        return float(headers.get("Retry-After", 0))
    except (TypeError, ValueError, AttributeError):
        return 0.0
