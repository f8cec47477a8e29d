"""Integration tests for the main AIRouter class."""

import pytest

from conftest import FailNTimesProvider, MockProvider, make_request
from ai_router import AIRouter, RouterOptions, register_provider
from ai_router import router as router_module
from ai_router.events import INITIALIZED, PROVIDER_SWITCHED, RESPONSE_GENERATED
from ai_router.exceptions import GenerationError, NoProvidersAvailable
from ai_router.models import (
    CheckOutcome,
    ProviderConfig,
    ProviderKind,
    ProviderState,
    RateLimit,
    RequestContext,
    SelectionCriteria,
    SelectionReason,
)
from ai_router.optimizer import PerformanceOptimizer, SystemInfo
from ai_router.providers import OpenAIProvider

SYSTEM = SystemInfo(cpu_count=8, total_memory_gb=32, free_memory_gb=16)


async def make_router(*providers: MockProvider, **options) -> AIRouter:
    router = AIRouter(RouterOptions(**options), optimizer=PerformanceOptimizer(SYSTEM))
    for provider in providers:
        router.add_provider(provider)
    await router.initialize()
    return router


class TestRouterBasics:
    """Basic router setup and generation."""

    @pytest.mark.asyncio
    async def test_single_provider_generate(self) -> None:
        provider = MockProvider("only", response_text="Hello!")
        router = await make_router(provider)

        response = await router.generate_response(make_request("Hi"))

        assert response.text == "Hello!"
        assert response.provider_id == "only"
        assert response.response_time_ms > 0
        assert response.fallback is False
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_context_is_folded_into_prompt(self) -> None:
        router = await make_router(MockProvider())
        request = make_request(
            "Why did this fail?", context=RequestContext(command="npm test", shell="zsh")
        )

        response = await router.generate_response(request)

        assert response.context_used is True
        assert response.enhanced_prompt.startswith("Why did this fail?\n\nContext:")
        assert "Command: npm test" in response.enhanced_prompt

    @pytest.mark.asyncio
    async def test_no_context(self) -> None:
        router = await make_router(MockProvider())
        response = await router.generate_response(make_request("plain"))

        assert response.context_used is False
        assert response.enhanced_prompt == "plain"

    @pytest.mark.asyncio
    async def test_no_ready_providers_raises(self) -> None:
        router = AIRouter()
        router.add_provider(MockProvider())

        with pytest.raises(NoProvidersAvailable):
            await router.generate_response(make_request())

    @pytest.mark.asyncio
    async def test_add_remove_provider(self) -> None:
        router = AIRouter()
        router.add_provider(MockProvider("test"))
        assert "test" in router.get_status()

        removed = router.remove_provider("test")
        assert removed.id == "test"
        assert "test" not in router.get_status()

        with pytest.raises(KeyError):
            router.remove_provider("test")

    def test_duplicate_provider_raises(self) -> None:
        router = AIRouter()
        router.add_provider(MockProvider("test"))

        with pytest.raises(ValueError, match="already registered"):
            router.add_provider(MockProvider("test"))

    def test_method_chaining(self) -> None:
        router = AIRouter().add_provider(MockProvider("a")).add_provider(MockProvider("b"))
        assert [p.id for p in router.providers] == ["a", "b"]

    def test_register_provider_overrides_kind(self, monkeypatch) -> None:
        monkeypatch.setattr(
            router_module, "_PROVIDER_REGISTRY", dict(router_module._PROVIDER_REGISTRY)
        )

        class CustomProvider(OpenAIProvider):
            pass

        register_provider(ProviderKind.QWEN, CustomProvider)
        router = AIRouter().add_provider(
            ProviderConfig(id="custom", kind=ProviderKind.QWEN, model="qwen-plus")
        )

        assert isinstance(router.get_provider("custom"), CustomProvider)

    def test_from_environment_registers_catalog(self) -> None:
        router = AIRouter.from_environment(env={"OPENAI_API_KEY": "sk-test"})

        assert len(router.providers) == 10
        assert router.get_provider("openai-gpt-4o").is_available() is True
        assert router.get_provider("claude-sonnet").is_available() is False

    @pytest.mark.asyncio
    async def test_criteria_overrides_as_dict(self) -> None:
        router = await make_router(
            MockProvider("remote", priority=100), MockProvider("local", local=True)
        )
        selection = router.select_provider(make_request(), {"require_local": True})
        assert selection.provider_id == "local"
        assert selection.reason == SelectionReason.LOCAL_REQUIRED

    @pytest.mark.asyncio
    async def test_criteria_object_keeps_router_defaults(self) -> None:
        router = await make_router(
            MockProvider("remote", priority=100),
            MockProvider("local", local=True),
            default_criteria=SelectionCriteria(require_local=True),
        )

        selection = router.select_provider(
            make_request(), SelectionCriteria(prioritize_cost=True)
        )

        assert selection.provider_id == "local"
        assert selection.reason == SelectionReason.LOCAL_REQUIRED

    @pytest.mark.asyncio
    async def test_usage_tracked_on_success(self) -> None:
        router = await make_router(MockProvider("paid", cost_per_1k_tokens=0.01, tokens=100))
        await router.generate_response(make_request())

        metrics = router.usage.get_metrics()["paid"]
        assert metrics.total_requests == 1
        assert metrics.total_tokens == 100
        assert metrics.total_cost == pytest.approx(0.001)
        assert router.get_cost_summary().total == pytest.approx(0.001)


class TestLifecycle:
    """Initialization and shutdown."""

    @pytest.mark.asyncio
    async def test_skips_unavailable(self) -> None:
        offline = MockProvider("offline", available=False)
        online = MockProvider("online")
        router = await make_router(offline, online)

        assert router.get_status()["offline"].state == ProviderState.UNLOADED
        assert router.get_status()["online"].state == ProviderState.READY
        assert [s.id for s in router.get_provider_statuses()] == ["offline", "online"]

    @pytest.mark.asyncio
    async def test_no_provider_initializes(self) -> None:
        router = AIRouter()
        router.add_provider(MockProvider(available=False))

        with pytest.raises(NoProvidersAvailable):
            await router.initialize()

    @pytest.mark.asyncio
    async def test_enabled_providers(self) -> None:
        router = await make_router(
            MockProvider("a"), MockProvider("b"), enabled_providers=["b"]
        )
        assert router.get_status()["a"].state == ProviderState.UNLOADED
        assert router.get_status()["b"].state == ProviderState.READY

    @pytest.mark.asyncio
    async def test_initialized_event(self) -> None:
        router = AIRouter()
        router.add_provider(MockProvider("a"))
        router.add_provider(MockProvider("b", available=False))
        seen = []
        router.events.on(INITIALIZED, seen.append)

        await router.initialize()

        assert seen == [{"success_count": 1, "failure_count": 0, "skipped_count": 1}]

    @pytest.mark.asyncio
    async def test_context_manager(self) -> None:
        provider = MockProvider()
        router = AIRouter().add_provider(provider)
        async with router:
            response = await router.generate_response(make_request())
            assert response.text

        assert provider.destroyed is True
        assert provider.state == ProviderState.UNLOADED


class TestFallback:
    """Single-hop fallback on provider failure."""

    @pytest.mark.asyncio
    async def test_fallback_on_failure(self) -> None:
        primary = MockProvider("primary", should_fail=True, local=True)
        backup = MockProvider("backup", response_text="backup works")
        router = await make_router(primary, backup)

        response = await router.generate_response(make_request())

        assert response.text == "backup works"
        assert response.provider_id == "backup"
        assert response.fallback is True
        assert primary.call_count == 1
        assert backup.call_count == 1

    @pytest.mark.asyncio
    async def test_every_attempt_is_recorded(self) -> None:
        primary = MockProvider("primary", should_fail=True, local=True)
        backup = MockProvider("backup")
        router = await make_router(primary, backup)

        await router.generate_response(make_request())

        metrics = router.usage.get_metrics()
        assert metrics["primary"].total_requests == 1
        assert metrics["primary"].error_rate == pytest.approx(0.05)
        assert metrics["backup"].total_requests == 1
        assert metrics["backup"].error_rate == 0.0

    @pytest.mark.asyncio
    async def test_fallback_disabled(self) -> None:
        primary = MockProvider(
            "primary", should_fail=True, local=True, error_message="primary down"
        )
        backup = MockProvider("backup")
        router = await make_router(primary, backup)

        with pytest.raises(GenerationError) as exc_info:
            await router.generate_response(make_request(), {"allow_fallback": False})

        assert exc_info.value.provider_id == "primary"
        assert exc_info.value.message == "primary down"
        assert exc_info.value.__cause__ is None
        assert backup.call_count == 0

        metrics = router.usage.get_metrics()
        assert set(metrics) == {"primary"}
        assert metrics["primary"].total_requests == 1
        assert metrics["primary"].error_rate == pytest.approx(0.05)

    @pytest.mark.asyncio
    async def test_single_hop_only(self) -> None:
        primary = MockProvider("primary", should_fail=True, local=True, error_message="primary down")
        second = MockProvider("second", should_fail=True, priority=90)
        third = MockProvider("third", priority=10)
        router = await make_router(primary, second, third)

        with pytest.raises(GenerationError) as exc_info:
            await router.generate_response(make_request())

        assert exc_info.value.provider_id == "primary"
        assert "primary down" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, GenerationError)
        assert exc_info.value.__cause__.provider_id == "second"
        assert third.call_count == 0

    @pytest.mark.asyncio
    async def test_empty_response_is_failure(self) -> None:
        empty = MockProvider("empty", response_text="   ", local=True)
        backup = MockProvider("backup", response_text="real answer")
        router = await make_router(empty, backup)

        response = await router.generate_response(make_request())

        assert response.provider_id == "backup"
        assert router.usage.get_metrics()["empty"].error_rate > 0

    @pytest.mark.asyncio
    async def test_rate_limited_primary_falls_back(self) -> None:
        primary = MockProvider(
            "primary", local=True, rate_limit=RateLimit(requests_per_minute=1)
        )
        backup = MockProvider("backup")
        router = await make_router(primary, backup)

        first = await router.generate_response(make_request())
        second = await router.generate_response(make_request())

        assert first.provider_id == "primary"
        assert second.provider_id == "backup"
        assert primary.state == ProviderState.READY

    @pytest.mark.asyncio
    async def test_failed_provider_leaves_rotation(self) -> None:
        primary = MockProvider("primary", should_fail=True, local=True)
        backup = MockProvider("backup")
        router = await make_router(primary, backup)

        await router.generate_response(make_request())
        await router.generate_response(make_request())

        assert primary.call_count == 1
        assert backup.call_count == 2
        assert router.get_status()["primary"].state == ProviderState.ERROR


class TestCacheAndEvents:
    """Response cache integration and event emission."""

    @pytest.mark.asyncio
    async def test_low_temperature_requests_are_cached(self) -> None:
        provider = MockProvider(response_text="cached answer")
        router = await make_router(provider)
        router.enable_cache(semantic=False)

        first = await router.generate_response(make_request("ls?", temperature=0.1))
        second = await router.generate_response(make_request("ls?", temperature=0.1))

        assert first.cached is False
        assert second.cached is True
        assert second.text == "cached answer"
        assert second.cost == 0.0
        assert provider.call_count == 1
        assert router.usage.get_metrics()[provider.id].total_requests == 1
        assert router.get_system_status()["cache"]["hits"] == 1

    @pytest.mark.asyncio
    async def test_default_temperature_bypasses_cache(self) -> None:
        provider = MockProvider()
        router = await make_router(provider)
        router.enable_cache(semantic=False)

        await router.generate_response(make_request("ls?"))
        await router.generate_response(make_request("ls?"))

        assert provider.call_count == 2

    @pytest.mark.asyncio
    async def test_response_generated_event(self) -> None:
        router = await make_router(MockProvider("only"))
        seen = []
        router.events.on(RESPONSE_GENERATED, seen.append)

        response = await router.generate_response(make_request())

        assert seen[0]["response"] is response
        assert seen[0]["selection"].provider_id == "only"

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_break_routing(self) -> None:
        router = await make_router(MockProvider())

        def broken(_payload) -> None:
            raise RuntimeError("listener bug")

        router.events.on(RESPONSE_GENERATED, broken)
        response = await router.generate_response(make_request())
        assert response.text


class TestDiagnostics:
    """Status, switching, smoke tests and benchmarks."""

    @pytest.mark.asyncio
    async def test_system_status(self) -> None:
        router = await make_router(
            MockProvider("local", local=True),
            MockProvider("remote"),
            MockProvider("offline", available=False),
        )
        await router.generate_response(make_request())

        status = router.get_system_status()
        assert status["initialized"] is True
        assert status["total_providers"] == 3
        assert status["ready_providers"] == 2
        assert status["local_providers"] == 1
        assert status["external_providers"] == 1
        assert status["requests_today"] == 1
        assert "cache" not in status

    @pytest.mark.asyncio
    async def test_switch_provider(self) -> None:
        router = await make_router(MockProvider("a"))
        router.add_provider(MockProvider("b"))
        seen = []
        router.events.on(PROVIDER_SWITCHED, seen.append)

        await router.switch_provider("a", "b")

        assert router.get_status()["b"].state == ProviderState.READY
        assert seen == [{"from": "a", "to": "b"}]

    @pytest.mark.asyncio
    async def test_switch_to_unknown_provider(self) -> None:
        router = await make_router(MockProvider("a"))
        with pytest.raises(KeyError):
            await router.switch_provider("a", "nope")

    @pytest.mark.asyncio
    async def test_test_all_providers(self) -> None:
        router = await make_router(
            MockProvider("ok"),
            MockProvider("broken", should_fail=True),
            MockProvider("offline", available=False),
        )

        report = await router.test_all_providers()

        outcomes = {r.provider_id: r.outcome for r in report.results}
        assert outcomes == {
            "ok": CheckOutcome.PASS,
            "broken": CheckOutcome.FAIL,
            "offline": CheckOutcome.UNAVAILABLE,
        }
        assert (report.total, report.available, report.working, report.failed) == (3, 2, 1, 1)
        assert router.usage.get_metrics() == {}

    @pytest.mark.asyncio
    async def test_test_all_reinitializes_errored(self) -> None:
        flaky = FailNTimesProvider(fail_count=1, provider_id="flaky")
        router = await make_router(flaky)

        first = await router.test_all_providers()
        assert flaky.state == ProviderState.ERROR
        second = await router.test_all_providers()

        assert first.results[0].outcome == CheckOutcome.FAIL
        assert second.results[0].outcome == CheckOutcome.PASS
        assert flaky.state == ProviderState.READY

    @pytest.mark.asyncio
    async def test_test_all_uses_minimal_request(self) -> None:
        provider = MockProvider()
        router = await make_router(provider)

        await router.test_all_providers()

        assert provider.last_request.max_tokens == 10
        assert provider.last_request.temperature == 0.1

    @pytest.mark.asyncio
    async def test_benchmark_providers(self) -> None:
        router = await make_router(
            MockProvider("slow", delay_seconds=0.02, cost_per_1k_tokens=0.0001),
            MockProvider("fast", cost_per_1k_tokens=0.01),
            MockProvider("broken", should_fail=True),
        )

        report = await router.benchmark_providers()

        by_id = {r.provider_id: r for r in report.results}
        assert by_id["slow"].reliability == 1.0
        assert by_id["broken"].reliability == 0.0
        assert report.fastest == "fast"
        assert report.cheapest == "slow"
        assert report.most_reliable in {"slow", "fast"}
        assert router.usage.get_metrics() == {}

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        router = await make_router(MockProvider("up"), MockProvider("down", available=False))
        assert await router.health_check() == {"up": True, "down": False}

    @pytest.mark.asyncio
    async def test_budget_passthrough(self) -> None:
        router = await make_router(MockProvider("paid", cost_per_1k_tokens=1.0, tokens=1000))
        router.set_budget("paid", daily=1.0)

        await router.generate_response(make_request(), {"max_cost_per_request": 10.0})

        status = router.get_budget_status("paid")
        assert status.daily.percentage == pytest.approx(100.0)
        assert router.get_usage_report("today").total_requests == 1

    @pytest.mark.asyncio
    async def test_recommendation(self) -> None:
        router = await make_router(MockProvider("local", local=True), MockProvider("remote"))
        rec = router.get_provider_recommendation(make_request("pwd"))
        assert rec.primary == "local"
