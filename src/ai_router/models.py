"""
ai-router: Data models for providers, requests, responses, selection and usage.

All public types used throughout the library are defined here.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum, IntEnum
from typing import Any


class ProviderKind(str, Enum):
    """Backend kind. One provider class exists per kind.

    ``LOCAL`` providers run on-device and have zero marginal cost; every
    other kind is a remote vendor API.
    """

    LOCAL = "local"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    DEEPSEEK = "deepseek"
    QWEN = "qwen"

    @property
    def is_local(self) -> bool:
        return self is ProviderKind.LOCAL


class ProviderState(str, Enum):
    """Provider lifecycle states.

    ``unloaded -> loading -> ready <-> busy``; ``loading|ready|busy -> error``
    on failure; ``ready -> unloaded`` on teardown.
    """

    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    BUSY = "busy"
    ERROR = "error"


class QualityTier(IntEnum):
    """Quality points awarded when a caller prioritizes quality.

    Assigned once per provider from its model family and size.
    """

    LARGE_LOCAL = 40
    FRONTIER = 35
    SMALL_LOCAL = 25
    STANDARD = 15


def infer_quality_tier(*names: str) -> QualityTier:
    """Infer a quality tier from provider id / model name.

    Example::

        >>> infer_quality_tier("claude-sonnet", "claude-3-5-sonnet-20241022")
        <QualityTier.FRONTIER: 35>
    """
    text = " ".join(names).lower()
    if "120b" in text:
        return QualityTier.LARGE_LOCAL
    if "claude" in text or "gpt-4" in text:
        return QualityTier.FRONTIER
    if "20b" in text:
        return QualityTier.SMALL_LOCAL
    return QualityTier.STANDARD


@dataclass(frozen=True)
class Capabilities:
    """Static capability set of a provider.

    Attributes:
        streaming: Supports token streaming.
        function_calling: Supports tool/function calling.
        code_generation: Suitable for code generation.
        context_length: Context window in tokens.
        tokens_per_second: Estimated generation throughput.
        memory_mb: Memory requirement in MB (local backends).
    """

    streaming: bool = False
    function_calling: bool = False
    code_generation: bool = False
    context_length: int = 4096
    tokens_per_second: float = 10.0
    memory_mb: int = 100


@dataclass(frozen=True)
class RateLimit:
    """Vendor rate limit. Only the request rate is enforced locally."""

    requests_per_minute: int
    tokens_per_minute: int | None = None

    @property
    def min_interval(self) -> float:
        """Minimum seconds between two requests."""
        if self.requests_per_minute <= 0:
            return 0.0
        return 60.0 / self.requests_per_minute


@dataclass(frozen=True)
class ProviderConfig:
    """Immutable description of one backend.

    Attributes:
        id: Unique provider identifier (e.g., "claude-sonnet").
        kind: Backend kind; selects the provider class.
        model: Vendor model name or local model identifier.
        display_name: Human-readable name for logs and status views.
        capabilities: Static capability set.
        cost_per_1k_tokens: USD per 1000 tokens. Always 0 for local backends.
        rate_limit: Vendor rate limit, ``None`` for local backends.
        priority: Relative priority, used to break score ties.
        max_tokens: Default max tokens when the request does not set one.
        api_key: Credential for remote vendors.
        base_url: Override for the vendor / local server endpoint.
        model_path: Local model file; its presence gates availability.
        quality_tier: Quality tier; inferred from id and model when omitted.
        enabled: Disabled providers are registered but never initialized.
        timeout: Default request timeout in seconds.
        extra_options: Backend-specific options passed through on every call.
    """

    id: str
    kind: ProviderKind
    model: str
    display_name: str = ""
    capabilities: Capabilities = field(default_factory=Capabilities)
    cost_per_1k_tokens: float = 0.0
    rate_limit: RateLimit | None = None
    priority: int = 50
    max_tokens: int = 1024
    api_key: str | None = field(default=None, repr=False)
    base_url: str | None = None
    model_path: str | None = None
    quality_tier: QualityTier | None = None
    enabled: bool = True
    timeout: float = 120.0
    extra_options: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if self.kind.is_local and self.cost_per_1k_tokens:
            object.__setattr__(self, "cost_per_1k_tokens", 0.0)
        if self.quality_tier is None:
            object.__setattr__(
                self, "quality_tier", infer_quality_tier(self.id, self.model)
            )
        if not self.display_name:
            object.__setattr__(self, "display_name", self.id)

    @property
    def is_local(self) -> bool:
        return self.kind.is_local


@dataclass
class ProviderStatus:
    """Mutable lifecycle status, owned by its provider.

    Callers only ever receive copies (see ``snapshot``).
    """

    id: str
    state: ProviderState = ProviderState.UNLOADED
    capabilities: Capabilities | None = None
    load_time_ms: float | None = None
    last_used: float | None = None
    error_message: str | None = None
    in_flight: int = 0

    @property
    def is_selectable(self) -> bool:
        """Ready, or busy serving other requests."""
        return self.state in (ProviderState.READY, ProviderState.BUSY)

    def snapshot(self) -> ProviderStatus:
        return replace(self)


# ──────────────────────────────────────────────────────────────────────
# Requests / responses
# ──────────────────────────────────────────────────────────────────────


@dataclass
class GitContext:
    """Git metadata supplied by the terminal layer."""

    branch: str | None = None
    has_changes: bool = False
    last_commit: str | None = None


@dataclass
class ProjectContext:
    """Project metadata supplied by the terminal layer."""

    type: str | None = None
    framework: str | None = None
    package_manager: str | None = None


@dataclass
class RequestContext:
    """Structured context accompanying a prompt.

    The router treats this as opaque data: it is folded into the prompt
    sent to providers and used for command statistics, never validated.

    Attributes:
        command: The current command line (first word is tracked in usage).
        working_directory: Current working directory.
        shell: Shell name (bash, zsh, ...).
        recent_commands: Most recent commands, newest last.
        last_output: Output of the last command, if any.
        git: Optional git metadata.
        project: Optional project metadata.
        external: Opaque external context (e.g., search results).
    """

    command: str = ""
    working_directory: str = ""
    shell: str = ""
    recent_commands: list[str] = field(default_factory=list)
    last_output: str | None = None
    git: GitContext | None = None
    project: ProjectContext | None = None
    external: dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (
            self.command
            or self.working_directory
            or self.shell
            or self.recent_commands
            or self.last_output
            or self.git
            or self.project
            or self.external
        )


@dataclass
class AIRequest:
    """A request to be routed to one provider.

    Attributes:
        prompt: The user prompt text.
        context: Structured terminal context.
        provider: Explicit provider id preference.
        max_tokens: Maximum tokens to generate (provider default when None).
        temperature: Sampling temperature (provider default when None).
        system_prompt: Optional system/instruction prompt.
        timeout: Per-request timeout in seconds.
    """

    prompt: str
    context: RequestContext = field(default_factory=RequestContext)
    provider: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    system_prompt: str | None = None
    timeout: float = 120.0

    @property
    def estimated_prompt_tokens(self) -> int:
        """Rough token estimate: four characters per token."""
        return math.ceil(len(self.prompt) / 4)


@dataclass
class AIResponse:
    """Response from a provider.

    Attributes:
        text: The generated text.
        model: Model that produced the text.
        provider_id: Provider that served the request (set by the router).
        tokens: Tokens consumed (prompt + completion) as reported or estimated.
        cost: USD cost of this call.
        response_time_ms: Measured end-to-end latency.
        cached: True if served from the response cache.
        context_used: True if request context was folded into the prompt.
        enhanced_prompt: The fully expanded prompt, kept for audit.
        fallback: True if served by the fallback alternative.
        suggestions: Follow-up suggestions found in the text.
        commands: Shell commands found in the text.
    """

    text: str
    model: str
    provider_id: str = ""
    tokens: int = 0
    cost: float = 0.0
    response_time_ms: float = 0.0
    cached: bool = False
    context_used: bool = False
    enhanced_prompt: str = ""
    fallback: bool = False
    suggestions: list[str] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)


# ──────────────────────────────────────────────────────────────────────
# Selection
# ──────────────────────────────────────────────────────────────────────


class SelectionReason(str, Enum):
    USER_SPECIFIED = "user-specified"
    SPEED = "speed"
    COST = "cost"
    QUALITY = "quality"
    LOCAL_REQUIRED = "local-required"
    AVAILABILITY = "availability"
    FALLBACK = "fallback"


@dataclass
class SelectionCriteria:
    """Caller-supplied weighting used to pick among ready providers.

    Attributes:
        prioritize_speed: Score by estimated response time.
        prioritize_cost: Score by estimated request cost.
        prioritize_quality: Score by quality tier.
        max_cost_per_request: Providers estimated above this are filtered out.
        max_response_time_ms: Advisory latency target (not a filter).
        require_local: Only local providers are candidates.
        allow_fallback: Restore the full set when filtering empties it, and
            permit a single fallback hop on failure.
    """

    prioritize_speed: bool = True
    prioritize_cost: bool = False
    prioritize_quality: bool = False
    max_cost_per_request: float = 1.0
    max_response_time_ms: float = 5000.0
    require_local: bool = False
    allow_fallback: bool = True

    def merged(
        self, overrides: SelectionCriteria | dict[str, Any] | None = None
    ) -> SelectionCriteria:
        """Return new criteria with ``overrides`` applied over these.

        A ``SelectionCriteria`` override contributes only the fields it sets
        away from their defaults; pass a dict to reset a field to its default.

        Raises:
            TypeError: If a dict override names an unknown criterion.
        """
        if overrides is None:
            return replace(self)
        if isinstance(overrides, SelectionCriteria):
            defaults = SelectionCriteria()
            overrides = {
                f.name: getattr(overrides, f.name)
                for f in fields(overrides)
                if getattr(overrides, f.name) != getattr(defaults, f.name)
            }
        return replace(self, **overrides)


@dataclass
class Alternative:
    """A ranked runner-up candidate."""

    provider_id: str
    reason: SelectionReason
    estimated_cost: float
    estimated_response_time_ms: int


@dataclass
class SelectionResult:
    """Outcome of provider selection.

    Attributes:
        provider_id: The chosen provider.
        reason: Why it was chosen.
        estimated_cost: Estimated USD cost of the request.
        estimated_response_time_ms: Estimated latency.
        score: Additive selection score (0 for user-specified picks).
        alternatives: Up to 3 ranked alternatives.
    """

    provider_id: str
    reason: SelectionReason
    estimated_cost: float
    estimated_response_time_ms: int
    score: float = 0.0
    alternatives: list[Alternative] = field(default_factory=list)


@dataclass
class Recommendation:
    """Heuristic provider recommendation for a prompt."""

    primary: str | None
    fallback: list[str] = field(default_factory=list)
    reasoning: str = ""


# ──────────────────────────────────────────────────────────────────────
# Usage & budgets
# ──────────────────────────────────────────────────────────────────────


@dataclass
class DailyUsage:
    """One calendar-day bucket. ``date`` is ISO ``YYYY-MM-DD``."""

    date: str
    requests: int = 0
    tokens: int = 0
    cost: float = 0.0


@dataclass
class UsageMetrics:
    """Per-provider cumulative totals and rolling statistics.

    Attributes:
        provider_id: Provider these metrics belong to.
        total_requests: All tracked attempts, successful or not.
        total_tokens: Tokens consumed.
        total_cost: USD spent.
        average_response_time_ms: Exponentially smoothed latency (alpha 0.1).
        error_rate: Exponentially smoothed failure rate (alpha 0.05).
        last_used: Epoch seconds of the last tracked attempt.
        daily_usage: Calendar-day buckets, oldest first, at most 90.
    """

    provider_id: str
    total_requests: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    average_response_time_ms: float = 0.0
    error_rate: float = 0.0
    last_used: float | None = None
    daily_usage: list[DailyUsage] = field(default_factory=list)


@dataclass
class Budget:
    """Advisory per-provider spend ceilings in USD. ``None`` means unset."""

    daily: float | None = None
    weekly: float | None = None
    monthly: float | None = None


class BudgetPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class BudgetAlert:
    """Advisory event payload emitted when spend crosses 80% of a limit."""

    type: BudgetPeriod
    threshold_limit: float
    current_usage: float
    percentage_used: float
    provider_id: str


@dataclass
class BudgetWindow:
    used: float
    limit: float
    percentage: float


@dataclass
class BudgetStatus:
    """Spend vs. limit for each configured window of one provider."""

    provider_id: str
    daily: BudgetWindow | None = None
    weekly: BudgetWindow | None = None
    monthly: BudgetWindow | None = None


@dataclass
class ProviderUsage:
    provider_id: str
    requests: int
    tokens: int
    cost: float
    percentage: float


@dataclass
class CommandUsage:
    command: str
    count: int
    avg_cost: float


@dataclass
class UsageReport:
    """Aggregated usage for one reporting window.

    ``total_cost`` always equals the sum of ``provider_breakdown`` costs.
    """

    period: str
    total_requests: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    average_response_time_ms: float = 0.0
    provider_breakdown: list[ProviderUsage] = field(default_factory=list)
    daily_trend: list[DailyUsage] = field(default_factory=list)
    top_commands: list[CommandUsage] = field(default_factory=list)


# ──────────────────────────────────────────────────────────────────────
# Performance tuning
# ──────────────────────────────────────────────────────────────────────


class CacheStrategy(str, Enum):
    NONE = "none"
    LRU = "lru"
    AGGRESSIVE = "aggressive"


@dataclass
class PerformanceProfile:
    """Runtime tuning parameters for one model on this machine.

    Attributes:
        model_id: Model or provider id the profile applies to.
        target_response_time_ms: Latency target; below 500 ms means speed tier.
        max_memory_mb: Memory ceiling.
        thread_count: Inference threads.
        batch_size: Inference batch size.
        cache_strategy: KV/response caching strategy hint.
    """

    model_id: str
    target_response_time_ms: int
    max_memory_mb: int
    thread_count: int
    batch_size: int = 1
    cache_strategy: CacheStrategy = CacheStrategy.LRU

    @property
    def is_speed_tier(self) -> bool:
        return self.target_response_time_ms < 500


# ──────────────────────────────────────────────────────────────────────
# Diagnostics
# ──────────────────────────────────────────────────────────────────────


class CheckOutcome(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    UNAVAILABLE = "unavailable"


@dataclass
class ProviderTestResult:
    provider_id: str
    outcome: CheckOutcome
    response_time_ms: float = 0.0
    error: str | None = None


@dataclass
class ProviderTestReport:
    """Smoke-test matrix across every registered provider."""

    results: list[ProviderTestResult] = field(default_factory=list)
    total: int = 0
    available: int = 0
    working: int = 0
    failed: int = 0


@dataclass
class ProviderBenchmark:
    """Benchmark figures for one provider.

    ``reliability`` is the fraction of benchmark prompts answered.
    """

    provider_id: str
    average_response_time_ms: float
    tokens_per_second: float
    cost_per_1k_tokens: float
    reliability: float


@dataclass
class BenchmarkReport:
    results: list[ProviderBenchmark] = field(default_factory=list)
    fastest: str | None = None
    cheapest: str | None = None
    most_reliable: str | None = None
