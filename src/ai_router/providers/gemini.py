"""ai-router: Google Gemini ``generateContent`` provider."""

from __future__ import annotations

from typing import Any

from ai_router.models import AIRequest, AIResponse
from ai_router.prompt import build_enhanced_prompt
from ai_router.providers.base import HTTPProvider


class GeminiProvider(HTTPProvider):
    """Gemini models through ``POST models/{model}:generateContent``.

    The API key is passed as a query parameter. When the response omits
    ``usageMetadata``, tokens are estimated from text length.
    """

    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    def is_available(self) -> bool:
        return bool(self.config.api_key)

    def _url(self, suffix: str) -> str:
        return f"{self.base_url}/{suffix}?key={self.config.api_key}"

    async def _generate(self, request: AIRequest) -> AIResponse:
        prompt = build_enhanced_prompt(request)
        if request.system_prompt:
            prompt = f"{request.system_prompt}\n\n{prompt}"

        payload: dict[str, Any] = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.7 if request.temperature is None else request.temperature,
                "maxOutputTokens": request.max_tokens or self.config.max_tokens,
                **self.config.extra_options,
            },
        }

        data = await self._post_json(
            self._url(f"models/{self.config.model}:generateContent"),
            payload,
            request.timeout,
        )
        candidates = data.get("candidates", [])
        parts = candidates[0].get("content", {}).get("parts", []) if candidates else []
        text = "".join(part.get("text", "") for part in parts)

        usage = data.get("usageMetadata") or {}
        tokens = usage.get("totalTokenCount") or (len(prompt) + len(text)) // 4

        return AIResponse(text=text.strip(), model=self.config.model, tokens=tokens)

    async def _ping(self) -> bool:
        return await self._get_ok(self._url("models"))
