"""
ai-router: Configuration and the stock provider catalog.

Credentials and model locations come from an environment-style mapping
(``os.environ`` by default):

- ``OPENAI_API_KEY``, ``ANTHROPIC_API_KEY``, ``GOOGLE_API_KEY``,
  ``DEEPSEEK_API_KEY``, ``QWEN_API_KEY``
- ``AI_ROUTER_MODEL_DIR``: directory holding local model files
  (default ``./models``)
- ``OLLAMA_BASE_URL``: local inference server (default
  ``http://localhost:11434``)

A provider whose key or model file is missing is still registered; it
simply reports ``is_available() == False`` and is skipped at startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from ai_router.models import (
    Budget,
    Capabilities,
    ProviderConfig,
    ProviderKind,
    RateLimit,
    SelectionCriteria,
)

API_KEY_ENV = {
    ProviderKind.OPENAI: "OPENAI_API_KEY",
    ProviderKind.ANTHROPIC: "ANTHROPIC_API_KEY",
    ProviderKind.GOOGLE: "GOOGLE_API_KEY",
    ProviderKind.DEEPSEEK: "DEEPSEEK_API_KEY",
    ProviderKind.QWEN: "QWEN_API_KEY",
}

# tokens/sec and function-calling support per remote vendor
_VENDOR_PROFILE = {
    ProviderKind.OPENAI: (50, True),
    ProviderKind.ANTHROPIC: (45, True),
    ProviderKind.GOOGLE: (40, True),
    ProviderKind.QWEN: (55, True),
    ProviderKind.DEEPSEEK: (60, False),
}


@dataclass
class RouterOptions:
    """Router-wide options.

    Attributes:
        enabled_providers: Provider ids to initialize; ``None`` means all.
        default_criteria: Criteria every per-call override is merged over.
        budgets: Advisory per-provider budgets.
        usage_path: JSON file for usage persistence; ``None`` disables it.
    """

    enabled_providers: list[str] | None = None
    default_criteria: SelectionCriteria = field(default_factory=SelectionCriteria)
    budgets: dict[str, Budget] = field(default_factory=dict)
    usage_path: str | None = None


def _remote(
    id: str,
    kind: ProviderKind,
    model: str,
    display_name: str,
    priority: int,
    cost: float,
    rpm: int,
    tpm: int,
    context_length: int,
    env: Mapping[str, str],
    max_tokens: int = 1024,
) -> ProviderConfig:
    tps, function_calling = _VENDOR_PROFILE[kind]
    return ProviderConfig(
        id=id,
        kind=kind,
        model=model,
        display_name=display_name,
        capabilities=Capabilities(
            streaming=True,
            function_calling=function_calling,
            code_generation=True,
            context_length=context_length,
            tokens_per_second=tps,
            memory_mb=100,
        ),
        cost_per_1k_tokens=cost,
        rate_limit=RateLimit(requests_per_minute=rpm, tokens_per_minute=tpm),
        priority=priority,
        max_tokens=max_tokens,
        api_key=env.get(API_KEY_ENV[kind]) or None,
    )


def _local(
    id: str,
    model: str,
    display_name: str,
    priority: int,
    tokens_per_second: float,
    memory_mb: int,
    context_length: int,
    max_tokens: int,
    env: Mapping[str, str],
) -> ProviderConfig:
    model_dir = Path(env.get("AI_ROUTER_MODEL_DIR", "./models"))
    return ProviderConfig(
        id=id,
        kind=ProviderKind.LOCAL,
        model=model,
        display_name=display_name,
        capabilities=Capabilities(
            streaming=False,
            function_calling=False,
            code_generation=True,
            context_length=context_length,
            tokens_per_second=tokens_per_second,
            memory_mb=memory_mb,
        ),
        priority=priority,
        max_tokens=max_tokens,
        base_url=env.get("OLLAMA_BASE_URL") or None,
        model_path=str(model_dir / f"{id}.gguf"),
    )


def default_provider_configs(env: Mapping[str, str] | None = None) -> list[ProviderConfig]:
    """The stock catalog: two local models and eight remote ones."""
    env = os.environ if env is None else env
    return [
        _local("gpt-oss-20b", "gpt-oss:20b", "GPT-OSS-20B (Local)", 95, 10, 8000, 4096, 512, env),
        _local("gpt-oss-120b", "gpt-oss:120b", "GPT-OSS-120B (Local)", 90, 2, 32000, 8192, 1024, env),
        _remote("openai-gpt-4o", ProviderKind.OPENAI, "gpt-4o", "GPT-4o",
                85, 0.005, 500, 30000, 128000, env),
        _remote("openai-gpt-4o-mini", ProviderKind.OPENAI, "gpt-4o-mini", "GPT-4o Mini",
                70, 0.00015, 1000, 50000, 128000, env),
        _remote("claude-sonnet", ProviderKind.ANTHROPIC, "claude-3-5-sonnet-20241022",
                "Claude 3.5 Sonnet", 88, 0.003, 50, 10000, 200000, env),
        _remote("claude-haiku", ProviderKind.ANTHROPIC, "claude-3-haiku-20240307",
                "Claude 3 Haiku", 75, 0.00025, 100, 25000, 200000, env),
        _remote("gemini-pro", ProviderKind.GOOGLE, "gemini-1.5-pro", "Gemini 1.5 Pro",
                80, 0.00125, 60, 32000, 1000000, env),
        _remote("gemini-flash", ProviderKind.GOOGLE, "gemini-1.5-flash", "Gemini 1.5 Flash",
                72, 0.000075, 300, 100000, 1000000, env),
        _remote("deepseek-coder", ProviderKind.DEEPSEEK, "deepseek-coder", "DeepSeek Coder",
                82, 0.00014, 300, 50000, 16000, env),
        _remote("qwen-coder", ProviderKind.QWEN, "qwen2.5-coder-32b-instruct",
                "Qwen 2.5 Coder 32B", 78, 0.0002, 200, 60000, 32000, env),
    ]
