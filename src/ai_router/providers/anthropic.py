"""ai-router: Anthropic Messages API provider."""

from __future__ import annotations

from typing import Any

from ai_router.models import AIRequest, AIResponse
from ai_router.prompt import build_enhanced_prompt
from ai_router.providers.base import HTTPProvider
from ai_router.providers.openai import DEFAULT_SYSTEM_PROMPT

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(HTTPProvider):
    """Claude models through ``POST /messages``.

    The system prompt travels in the top-level ``system`` field rather than
    as a message; token usage is ``input_tokens + output_tokens``.
    """

    default_base_url = "https://api.anthropic.com/v1"

    def is_available(self) -> bool:
        return bool(self.config.api_key)

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["x-api-key"] = self.config.api_key or ""
        headers["anthropic-version"] = ANTHROPIC_VERSION
        return headers

    async def _generate(self, request: AIRequest) -> AIResponse:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": request.max_tokens or self.config.max_tokens,
            "temperature": 0.7 if request.temperature is None else request.temperature,
            "system": request.system_prompt or DEFAULT_SYSTEM_PROMPT,
            "messages": [
                {"role": "user", "content": build_enhanced_prompt(request)}
            ],
            **self.config.extra_options,
        }

        data = await self._post_json(
            f"{self.base_url}/messages", payload, request.timeout
        )
        text = "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        tokens = usage.get("input_tokens", 0) + usage.get("output_tokens", 0)

        return AIResponse(
            text=text.strip(),
            model=data.get("model", self.config.model),
            tokens=tokens,
        )

    async def _ping(self) -> bool:
        # No cheap unauthenticated endpoint; a configured key is the signal.
        return self.is_available()
