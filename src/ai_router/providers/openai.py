"""
ai-router: OpenAI-compatible chat completions provider.

Serves every vendor that exposes a ``/chat/completions`` endpoint:
- OpenAI (gpt-4o, gpt-4o-mini)
- DeepSeek (deepseek-coder)
- Qwen via DashScope compatible mode (qwen2.5-coder)
"""

from __future__ import annotations

import logging
from typing import Any

from ai_router.models import AIRequest, AIResponse, ProviderConfig, ProviderKind
from ai_router.prompt import build_enhanced_prompt
from ai_router.providers.base import HTTPProvider

logger = logging.getLogger(__name__)

DEFAULT_BASE_URLS = {
    ProviderKind.OPENAI: "https://api.openai.com/v1",
    ProviderKind.DEEPSEEK: "https://api.deepseek.com/v1",
    ProviderKind.QWEN: "https://dashscope.aliyuncs.com/compatible-mode/v1",
}

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert terminal assistant. Give concise, accurate answers "
    "and prefer runnable commands."
)


class OpenAIProvider(HTTPProvider):
    """OpenAI-compatible API provider.

    Example::

        provider = OpenAIProvider(ProviderConfig(
            id="openai-gpt-4o-mini", kind=ProviderKind.OPENAI,
            model="gpt-4o-mini", api_key="sk-...",
            cost_per_1k_tokens=0.00015,
        ))
        await provider.initialize()
        response = await provider.generate_response(AIRequest("explain ls -la"))
    """

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        if not config.base_url:
            self.base_url = DEFAULT_BASE_URLS.get(
                config.kind, DEFAULT_BASE_URLS[ProviderKind.OPENAI]
            )

    def is_available(self) -> bool:
        return bool(self.config.api_key)

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def _generate(self, request: AIRequest) -> AIResponse:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": self._messages(
                build_enhanced_prompt(request),
                request.system_prompt or DEFAULT_SYSTEM_PROMPT,
            ),
            "max_tokens": request.max_tokens or self.config.max_tokens,
            "temperature": 0.7 if request.temperature is None else request.temperature,
            **self.config.extra_options,
        }

        data = await self._post_json(
            f"{self.base_url}/chat/completions", payload, request.timeout
        )
        choices = data.get("choices", [])
        content = choices[0].get("message", {}).get("content", "") if choices else ""
        usage = data.get("usage") or {}

        return AIResponse(
            text=(content or "").strip(),
            model=data.get("model", self.config.model),
            tokens=usage.get("total_tokens", 0),
        )

    async def _ping(self) -> bool:
        return await self._get_ok(f"{self.base_url}/models")
