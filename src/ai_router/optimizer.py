"""
ai-router: Runtime tuning for local models.

Derives a ``PerformanceProfile`` per model from static machine capability
(CPU count, RAM, GPU presence), then nudges it with observed latency.
Profiles feed request optimization (token / temperature caps) and the
runtime options sent to the local inference server.
"""

from __future__ import annotations

import logging
import os
import platform
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

import psutil

from ai_router.models import AIRequest, CacheStrategy, PerformanceProfile

logger = logging.getLogger(__name__)

_GB = 1024**3

GPU_ENV_VARS = ("CUDA_VISIBLE_DEVICES", "ROCR_VISIBLE_DEVICES", "HIP_VISIBLE_DEVICES")

SPEED_TIER_MAX_TOKENS = 256
SPEED_TIER_MAX_TEMPERATURE = 0.3
QUALITY_TIER_DEFAULT_TOKENS = 512
QUALITY_TIER_MAX_TOKENS = 1024
QUALITY_TIER_DEFAULT_TEMPERATURE = 0.7


@dataclass(frozen=True)
class SystemInfo:
    """Static machine capability snapshot.

    Attributes:
        cpu_count: Logical CPU count.
        total_memory_gb: Total RAM in GB (rounded).
        free_memory_gb: Available RAM in GB (rounded).
        platform: ``sys.platform``-style OS name (linux, darwin, win32).
        arch: Machine architecture (x86_64, arm64).
        has_gpu: GPU acceleration detected.
    """

    cpu_count: int
    total_memory_gb: int
    free_memory_gb: int
    platform: str = "linux"
    arch: str = "x86_64"
    has_gpu: bool = False

    @classmethod
    def detect(cls, env: Mapping[str, str] | None = None) -> SystemInfo:
        """Inspect the current machine."""
        env = os.environ if env is None else env
        mem = psutil.virtual_memory()
        system = platform.system().lower()
        os_name = {"windows": "win32"}.get(system, system)
        has_gpu = os_name == "darwin" or any(var in env for var in GPU_ENV_VARS)
        return cls(
            cpu_count=os.cpu_count() or 1,
            total_memory_gb=round(mem.total / _GB),
            free_memory_gb=round(mem.available / _GB),
            platform=os_name,
            arch=platform.machine() or "unknown",
            has_gpu=has_gpu,
        )


@dataclass
class BenchmarkResult:
    recommended_settings: PerformanceProfile
    warnings: list[str] = field(default_factory=list)


@dataclass
class SystemCapabilities:
    can_run_20b: bool
    can_run_120b: bool
    estimated_speed_20b: int
    estimated_speed_120b: int
    recommendations: list[str] = field(default_factory=list)


class PerformanceOptimizer:
    """Per-model profile cache with latency feedback.

    Profiles are adjusted for the machine once, when first created, and
    afterwards only nudged by ``adjust_profile_based_on_performance``.

    Example::

        optimizer = PerformanceOptimizer()
        profile = optimizer.get_optimal_profile("gpt-oss-20b")
        request = optimizer.optimize_request(request, "gpt-oss-20b")
        optimizer.adjust_profile_based_on_performance("gpt-oss-20b", 900.0)
    """

    def __init__(self, system_info: SystemInfo | None = None) -> None:
        self.system_info = system_info or SystemInfo.detect()
        self._lock = threading.Lock()
        self._base_profiles: dict[str, PerformanceProfile] = {}
        self._profiles: dict[str, PerformanceProfile] = {}
        self._register_builtin_profiles()

    def _register_builtin_profiles(self) -> None:
        cpus = self.system_info.cpu_count
        self.register_profile(
            PerformanceProfile(
                model_id="gpt-oss-20b",
                target_response_time_ms=400,
                max_memory_mb=8000,
                thread_count=min(cpus, 8),
                batch_size=1,
                cache_strategy=CacheStrategy.AGGRESSIVE,
            )
        )
        self.register_profile(
            PerformanceProfile(
                model_id="gpt-oss-120b",
                target_response_time_ms=4000,
                max_memory_mb=32000,
                thread_count=min(cpus, 4),
                batch_size=1,
                cache_strategy=CacheStrategy.LRU,
            )
        )

    def register_profile(self, profile: PerformanceProfile) -> None:
        """Register (or replace) the static profile for a model."""
        with self._lock:
            self._base_profiles[profile.model_id] = profile
            self._profiles.pop(profile.model_id, None)

    def _default_profile(self, model_id: str) -> PerformanceProfile:
        return PerformanceProfile(
            model_id=model_id,
            target_response_time_ms=2000,
            max_memory_mb=4000,
            thread_count=min(self.system_info.cpu_count, 4),
            batch_size=1,
            cache_strategy=CacheStrategy.LRU,
        )

    def _adjust_for_system(self, profile: PerformanceProfile) -> PerformanceProfile:
        info = self.system_info
        adjusted = replace(profile)

        if info.total_memory_gb < 16:
            adjusted.max_memory_mb = min(adjusted.max_memory_mb, 4000)
            adjusted.thread_count = min(adjusted.thread_count, 2)

        if info.cpu_count > 8 and info.total_memory_gb > 32:
            adjusted.thread_count = min(info.cpu_count, 12)

        if info.has_gpu:
            adjusted.target_response_time_ms = round(
                adjusted.target_response_time_ms * 0.7
            )
        return adjusted

    def _profile(self, model_id: str) -> PerformanceProfile:
        profile = self._profiles.get(model_id)
        if profile is None:
            base = self._base_profiles.get(model_id) or self._default_profile(model_id)
            profile = self._adjust_for_system(base)
            self._profiles[model_id] = profile
        return profile

    def get_optimal_profile(self, model_id: str) -> PerformanceProfile:
        """Machine-adjusted profile for ``model_id`` (a copy)."""
        with self._lock:
            return replace(self._profile(model_id))

    def optimize_request(self, request: AIRequest, model_id: str) -> AIRequest:
        """Return a copy of ``request`` with token / temperature caps applied.

        Speed-tier profiles (target under 500 ms) cap output at 256 tokens
        and temperature at 0.3; otherwise up to 1024 tokens are allowed.
        """
        profile = self.get_optimal_profile(model_id)

        if profile.is_speed_tier:
            max_tokens = min(request.max_tokens or SPEED_TIER_MAX_TOKENS, SPEED_TIER_MAX_TOKENS)
            temperature = (
                SPEED_TIER_MAX_TEMPERATURE
                if request.temperature is None
                else min(request.temperature, SPEED_TIER_MAX_TEMPERATURE)
            )
        else:
            max_tokens = min(
                request.max_tokens or QUALITY_TIER_DEFAULT_TOKENS, QUALITY_TIER_MAX_TOKENS
            )
            temperature = (
                QUALITY_TIER_DEFAULT_TEMPERATURE
                if request.temperature is None
                else request.temperature
            )

        return replace(request, max_tokens=max_tokens, temperature=temperature)

    def adjust_profile_based_on_performance(
        self, model_id: str, observed_response_time_ms: float
    ) -> None:
        """Nudge thread count toward the observed latency.

        Over 1.5x target: one fewer thread (floor 1), batch size 1.
        Under 0.5x target: one more thread (up to the core count).
        """
        with self._lock:
            profile = self._profile(model_id)
            target = profile.target_response_time_ms

            if observed_response_time_ms > target * 1.5:
                profile.thread_count = max(1, profile.thread_count - 1)
                profile.batch_size = 1
                logger.debug(
                    f"Slow response for {model_id} ({observed_response_time_ms:.0f}ms "
                    f"vs {target}ms target): threads -> {profile.thread_count}"
                )
            elif observed_response_time_ms < target * 0.5:
                profile.thread_count = min(
                    self.system_info.cpu_count, profile.thread_count + 1
                )

    def runtime_options(self, model_id: str) -> dict[str, Any]:
        """Inference server options derived from the current profile."""
        profile = self.get_optimal_profile(model_id)
        return {"num_thread": profile.thread_count, "num_batch": profile.batch_size}

    def benchmark_model(self, model_id: str) -> BenchmarkResult:
        """Recommended profile plus warnings about this machine's fit."""
        profile = self.get_optimal_profile(model_id)
        info = self.system_info
        warnings: list[str] = []

        if profile.max_memory_mb > info.total_memory_gb * 1024 * 0.8:
            warnings.append(
                f"Model requires {round(profile.max_memory_mb / 1024)}GB RAM, "
                f"but only {info.total_memory_gb}GB available"
            )
        if not info.has_gpu and "120b" in model_id:
            warnings.append("120B model will be slow without GPU acceleration")
        if info.cpu_count < 4 and "20b" in model_id:
            warnings.append(
                "20B model performance may be limited with fewer than 4 CPU cores"
            )

        return BenchmarkResult(recommended_settings=profile, warnings=warnings)

    def get_system_capabilities(self) -> SystemCapabilities:
        info = self.system_info
        can_20b = info.total_memory_gb >= 8
        can_120b = info.total_memory_gb >= 32

        speed_20b = 5.0
        speed_120b = 1.0
        if info.has_gpu:
            speed_20b *= 3
            speed_120b *= 2
        if info.cpu_count > 8:
            speed_20b *= 1.5
            speed_120b *= 1.3

        recommendations: list[str] = []
        if can_20b and not can_120b:
            recommendations.append("Use gpt-oss-20b for best performance on this system")
        if not info.has_gpu:
            recommendations.append(
                "Consider GPU acceleration for significant performance gains"
            )
        if info.free_memory_gb < 4:
            recommendations.append("Close other applications to free memory for AI models")

        return SystemCapabilities(
            can_run_20b=can_20b,
            can_run_120b=can_120b,
            estimated_speed_20b=round(speed_20b),
            estimated_speed_120b=round(speed_120b),
            recommendations=recommendations,
        )
