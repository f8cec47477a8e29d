"""
ai-router: On-device inference provider.

Talks to a local Ollama-compatible server through the native ``/api/chat``
endpoint, which honours runtime options the router tunes per model
(``num_thread``, ``num_batch``) and ``keep_alive`` residency. When a
``model_path`` is configured, the provider is only available if that file
exists, mirroring a model that must be present on disk before it can be
served.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from ai_router.exceptions import InitializationError
from ai_router.models import AIRequest, AIResponse, ProviderConfig
from ai_router.optimizer import PerformanceOptimizer
from ai_router.prompt import build_enhanced_prompt
from ai_router.providers.base import HTTPProvider

logger = logging.getLogger(__name__)

WARMUP_TIMEOUT = 180


class LocalProvider(HTTPProvider):
    """Local inference through an Ollama-compatible server.

    Requests are passed through the ``PerformanceOptimizer`` before dispatch
    (token / temperature caps for the model's tier) and every successful
    latency is fed back so thread counts track the machine's real speed.

    Example::

        config = ProviderConfig(id="gpt-oss-20b", kind=ProviderKind.LOCAL,
                                model="gpt-oss:20b")
        provider = LocalProvider(config)
        await provider.initialize()          # warms the model
        response = await provider.generate_response(AIRequest("list files"))
    """

    default_base_url = "http://localhost:11434"

    def __init__(
        self,
        config: ProviderConfig,
        optimizer: PerformanceOptimizer | None = None,
        keep_alive: int = -1,
    ) -> None:
        """Initialize the local provider.

        Args:
            config: Provider configuration (``kind`` must be local).
            optimizer: Shared optimizer; a private one is created if omitted.
            keep_alive: Model residency time in seconds. -1 = permanent.
        """
        super().__init__(config)
        self.optimizer = optimizer or PerformanceOptimizer()
        self.keep_alive = keep_alive

    def is_available(self) -> bool:
        if self.config.model_path:
            return os.path.exists(self.config.model_path)
        return True

    async def _setup(self) -> None:
        if not await self.warmup():
            raise InitializationError(
                f"Local model '{self.config.model}' failed to load", self.id
            )

    def _options(self, request: AIRequest) -> dict[str, Any]:
        options: dict[str, Any] = {}
        options.update(self.config.extra_options)
        options.update(self.optimizer.runtime_options(self.id))
        if request.temperature is not None:
            options["temperature"] = request.temperature
        options["num_predict"] = request.max_tokens or self.config.max_tokens
        return options

    async def _generate(self, request: AIRequest) -> AIResponse:
        request = self.optimizer.optimize_request(request, self.id)

        payload = {
            "model": self.config.model,
            "messages": self._messages(
                build_enhanced_prompt(request), request.system_prompt
            ),
            "options": self._options(request),
            "keep_alive": self.keep_alive,
            "stream": False,
        }

        data = await self._post_json(
            f"{self.base_url}/api/chat", payload, request.timeout
        )
        content = data.get("message", {}).get("content", "")
        tokens = data.get("eval_count", 0) + data.get("prompt_eval_count", 0)

        return AIResponse(
            text=content.strip(),
            model=self.config.model,
            tokens=tokens,
            cost=0.0,
        )

    async def generate_response(self, request: AIRequest) -> AIResponse:
        response = await super().generate_response(request)
        self.optimizer.adjust_profile_based_on_performance(
            self.id, response.response_time_ms
        )
        return response

    async def warmup(self) -> bool:
        """Pre-load the model into server memory.

        Sends a 1-token generation so the model is resident before the
        first real request.

        Returns:
            True if warmup succeeded.
        """
        payload = {
            "model": self.config.model,
            "prompt": "hi",
            "keep_alive": self.keep_alive,
            "options": {"num_predict": 1, **self.optimizer.runtime_options(self.id)},
            "stream": False,
        }
        try:
            await self._post_json(f"{self.base_url}/api/generate", payload, WARMUP_TIMEOUT)
        except Exception as e:
            logger.warning(f"Local model warmup failed for {self.config.model}: {e}")
            return False
        logger.info(f"Local model warmed up: {self.config.model}")
        return True

    async def _ping(self) -> bool:
        return await self._get_ok(f"{self.base_url}/api/tags")
