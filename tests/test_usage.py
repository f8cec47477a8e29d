"""Tests for the usage tracker."""

import json
import logging
import threading
from datetime import date, datetime, timedelta

import pytest

from conftest import FakeClock, make_request
from ai_router.events import BUDGET_ALERT, USAGE_TRACKED, EventEmitter
from ai_router.models import AIResponse, Budget, BudgetPeriod, RequestContext
from ai_router.usage import MAX_DAILY_BUCKETS, UsageTracker, week_start


def make_response(cost: float = 0.0, tokens: int = 10, ms: float = 100.0) -> AIResponse:
    return AIResponse(text="ok", model="m", tokens=tokens, cost=cost, response_time_ms=ms)


class TestRecording:
    """Per-request accounting."""

    def test_success_updates_totals(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)
        tracker.track_request("p", make_request(), make_response(cost=0.01, tokens=50), True)
        tracker.track_request("p", make_request(), make_response(cost=0.02, tokens=30), True)

        metrics = tracker.get_metrics()["p"]
        assert metrics.total_requests == 2
        assert metrics.total_tokens == 80
        assert metrics.total_cost == pytest.approx(0.03)
        assert metrics.error_rate == 0.0
        assert metrics.last_used == clock.now.timestamp()

    def test_failure_counts_as_request(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)
        failed = AIResponse(text="", model="m", response_time_ms=40.0)
        tracker.track_request("p", make_request(), failed, False)

        metrics = tracker.get_metrics()["p"]
        assert metrics.total_requests == 1
        assert metrics.error_rate == pytest.approx(0.05)
        assert metrics.daily_usage[0].requests == 1

    def test_latency_is_smoothed(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)
        tracker.track_request("p", make_request(), make_response(ms=100.0), True)
        tracker.track_request("p", make_request(), make_response(ms=200.0), True)

        assert tracker.get_metrics()["p"].average_response_time_ms == pytest.approx(29.0)

    def test_latency_converges(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)
        for _ in range(60):
            tracker.track_request("p", make_request(), make_response(ms=500.0), True)

        average = tracker.get_metrics()["p"].average_response_time_ms
        assert average == pytest.approx(500.0, rel=0.01)
        assert 500.0 - average == pytest.approx(500.0 * 0.9**60)

    def test_error_rate_decays(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)
        tracker.track_request("p", make_request(), make_response(), False)
        tracker.track_request("p", make_request(), make_response(), True)

        assert tracker.get_metrics()["p"].error_rate == pytest.approx(0.05 * 0.95)

    def test_metrics_are_copies(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)
        tracker.track_request("p", make_request(), make_response(), True)

        tracker.get_metrics()["p"].total_requests = 999
        tracker.get_metrics()["p"].daily_usage.clear()

        metrics = tracker.get_metrics("p")["p"]
        assert metrics.total_requests == 1
        assert len(metrics.daily_usage) == 1

    def test_unknown_provider_metrics(self) -> None:
        assert UsageTracker().get_metrics("nobody") == {}

    def test_daily_buckets_are_capped(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)
        start = clock.now
        for day in range(MAX_DAILY_BUCKETS + 5):
            clock.now = start + timedelta(days=day)
            tracker.track_request("p", make_request(), make_response(), True)

        buckets = tracker.get_metrics()["p"].daily_usage
        assert len(buckets) == MAX_DAILY_BUCKETS
        assert buckets[0].date == (start + timedelta(days=5)).date().isoformat()
        assert buckets[-1].date == clock.now.date().isoformat()

    def test_same_day_shares_bucket(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)
        for _ in range(3):
            tracker.track_request("p", make_request(), make_response(tokens=5), True)

        buckets = tracker.get_metrics()["p"].daily_usage
        assert len(buckets) == 1
        assert buckets[0].requests == 3
        assert buckets[0].tokens == 15

    def test_command_usage_by_first_word(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)
        for command in ["git status", "git log --oneline", "ls -la", ""]:
            request = make_request(context=RequestContext(command=command))
            tracker.track_request("p", request, make_response(cost=0.01), True)

        commands = tracker.generate_report("all").top_commands
        assert [(c.command, c.count) for c in commands] == [("git", 2), ("ls", 1)]
        assert commands[0].avg_cost == pytest.approx(0.01)

    def test_usage_tracked_event(self, clock: FakeClock) -> None:
        events = EventEmitter()
        seen = []
        events.on(USAGE_TRACKED, seen.append)
        tracker = UsageTracker(events=events, clock=clock)

        tracker.track_request("p", make_request(), make_response(cost=0.5), True)

        assert seen[0]["provider_id"] == "p"
        assert seen[0]["cost"] == 0.5
        assert seen[0]["success"] is True

    def test_concurrent_tracking(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)

        def worker(provider_id: str) -> None:
            for _ in range(200):
                tracker.track_request(provider_id, make_request(), make_response(tokens=1), True)

        threads = [
            threading.Thread(target=worker, args=(f"p{i % 3}",)) for i in range(6)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        metrics = tracker.get_metrics()
        assert sum(m.total_requests for m in metrics.values()) == 1200
        assert all(m.total_tokens == 400 for m in metrics.values())


class TestBudgets:
    """Advisory budget alerts and status."""

    def test_week_starts_on_sunday(self) -> None:
        assert week_start(date(2024, 3, 13)) == date(2024, 3, 10)
        assert week_start(date(2024, 3, 10)) == date(2024, 3, 10)
        assert week_start(date(2024, 3, 16)) == date(2024, 3, 10)

    def test_alert_at_eighty_percent(self, clock: FakeClock) -> None:
        tracker = UsageTracker(budgets={"p": Budget(daily=1.0)}, clock=clock)

        assert tracker.track_request("p", make_request(), make_response(cost=0.79), True) == []
        alerts = tracker.track_request("p", make_request(), make_response(cost=0.02), True)

        assert len(alerts) == 1
        assert alerts[0].type == BudgetPeriod.DAILY
        assert alerts[0].provider_id == "p"
        assert alerts[0].threshold_limit == 1.0
        assert alerts[0].percentage_used == pytest.approx(81.0)

    def test_alert_after_four_of_five_dollars(self, clock: FakeClock) -> None:
        tracker = UsageTracker(budgets={"p": Budget(daily=5.0)}, clock=clock)
        tracker.track_request("p", make_request(), make_response(cost=2.0), True)
        tracker.track_request("p", make_request(), make_response(cost=2.0), True)

        alerts = tracker.track_request("p", make_request(), make_response(cost=0.0), True)

        assert [a.type for a in alerts] == [BudgetPeriod.DAILY]
        assert alerts[0].percentage_used >= 80

    def test_alerts_are_emitted_and_logged(
        self, clock: FakeClock, caplog: pytest.LogCaptureFixture
    ) -> None:
        events = EventEmitter()
        seen = []
        events.on(BUDGET_ALERT, seen.append)
        tracker = UsageTracker(
            budgets={"p": Budget(daily=1.0, monthly=100.0)}, events=events, clock=clock
        )

        with caplog.at_level(logging.WARNING, logger="ai_router.usage"):
            tracker.track_request("p", make_request(), make_response(cost=0.9), True)

        assert [a.type for a in seen] == [BudgetPeriod.DAILY]
        assert "Budget alert" in caplog.text

    def test_budgets_never_block(self, clock: FakeClock) -> None:
        tracker = UsageTracker(budgets={"p": Budget(daily=0.01)}, clock=clock)
        for _ in range(3):
            alerts = tracker.track_request("p", make_request(), make_response(cost=1.0), True)

        assert alerts[0].percentage_used == pytest.approx(30000.0)
        assert tracker.get_metrics()["p"].total_requests == 3

    def test_weekly_window(self, clock: FakeClock) -> None:
        tracker = UsageTracker(budgets={"p": Budget(weekly=1.0)}, clock=clock)

        clock.now = datetime(2024, 3, 9, 12)  # Saturday, previous week
        tracker.track_request("p", make_request(), make_response(cost=0.5), True)
        clock.now = datetime(2024, 3, 10, 12)  # Sunday
        tracker.track_request("p", make_request(), make_response(cost=0.3), True)
        clock.now = datetime(2024, 3, 13, 12)
        alerts = tracker.track_request("p", make_request(), make_response(cost=0.1), True)

        assert alerts == []
        status = tracker.get_budget_status("p")
        assert status.weekly.used == pytest.approx(0.4)

    def test_monthly_window(self, clock: FakeClock) -> None:
        tracker = UsageTracker(budgets={"p": Budget(monthly=10.0)}, clock=clock)

        clock.now = datetime(2024, 2, 29, 12)
        tracker.track_request("p", make_request(), make_response(cost=5.0), True)
        clock.now = datetime(2024, 3, 1, 12)
        tracker.track_request("p", make_request(), make_response(cost=2.0), True)

        status = tracker.get_budget_status("p")
        assert status.monthly.used == pytest.approx(2.0)
        assert status.monthly.percentage == pytest.approx(20.0)

    def test_status_only_for_configured_windows(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)
        tracker.set_budget("p", daily=2.0)
        tracker.track_request("p", make_request(), make_response(cost=0.5), True)

        status = tracker.get_budget_status("p")
        assert status.daily.used == pytest.approx(0.5)
        assert status.daily.percentage == pytest.approx(25.0)
        assert status.weekly is None
        assert status.monthly is None

    def test_status_requires_budget_and_usage(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)
        tracker.track_request("a", make_request(), make_response(), True)
        tracker.set_budget("b", daily=1.0)

        assert tracker.get_budget_status("a") is None
        assert tracker.get_budget_status("b") is None

    def test_set_budget_merges(self) -> None:
        tracker = UsageTracker()
        tracker.set_budget("p", daily=1.0)
        tracker.set_budget("p", monthly=20.0)

        assert tracker.get_budget("p") == Budget(daily=1.0, weekly=None, monthly=20.0)


class TestReports:
    """Windowed reports and summaries."""

    def _tracker_with_history(self, clock: FakeClock) -> UsageTracker:
        tracker = UsageTracker(clock=clock)
        today = clock.now
        for days_ago, provider_id, cost in [
            (0, "a", 0.10),
            (0, "b", 0.20),
            (3, "a", 0.30),
            (10, "a", 0.40),
            (40, "b", 0.50),
        ]:
            clock.now = today - timedelta(days=days_ago)
            tracker.track_request(provider_id, make_request(), make_response(cost=cost), True)
        clock.now = today
        return tracker

    def test_unknown_period(self) -> None:
        with pytest.raises(ValueError, match="Unknown report period"):
            UsageTracker().generate_report("fortnight")

    @pytest.mark.parametrize(
        ("period", "requests", "cost"),
        [
            ("today", 2, 0.30),
            ("week", 3, 0.60),
            ("month", 4, 1.00),
            ("all", 5, 1.50),
        ],
    )
    def test_windows(self, clock: FakeClock, period: str, requests: int, cost: float) -> None:
        report = self._tracker_with_history(clock).generate_report(period)

        assert report.period == period
        assert report.total_requests == requests
        assert report.total_cost == pytest.approx(cost)
        assert report.total_cost == pytest.approx(sum(p.cost for p in report.provider_breakdown))

    def test_breakdown_percentages(self, clock: FakeClock) -> None:
        report = self._tracker_with_history(clock).generate_report("all")

        by_id = {p.provider_id: p for p in report.provider_breakdown}
        assert by_id["a"].percentage == pytest.approx(60.0)
        assert by_id["b"].percentage == pytest.approx(40.0)
        assert report.provider_breakdown[0].provider_id == "a"

    def test_daily_trend_sorted(self, clock: FakeClock) -> None:
        report = self._tracker_with_history(clock).generate_report("all")
        dates = [d.date for d in report.daily_trend]
        assert dates == sorted(dates)
        assert len(dates) == 4

    def test_empty_report(self) -> None:
        report = UsageTracker().generate_report()
        assert report.total_requests == 0
        assert report.total_cost == 0.0
        assert report.average_response_time_ms == 0.0

    def test_cost_summary(self, clock: FakeClock) -> None:
        tracker = self._tracker_with_history(clock)
        tracker.track_request("local", make_request(), make_response(tokens=2000), True)

        summary = tracker.get_cost_summary()
        assert summary.today == pytest.approx(0.30)
        assert summary.total == pytest.approx(1.50)
        assert summary.top_provider == "a"
        assert summary.savings == pytest.approx(0.006)
        assert tracker.requests_today() == 3


class TestPersistence:
    """JSON persistence, export and import."""

    def test_survives_restart(self, tmp_path, clock: FakeClock) -> None:
        path = tmp_path / "usage.json"
        tracker = UsageTracker(
            budgets={"p": Budget(daily=5.0)}, persistence_path=path, clock=clock
        )
        request = make_request(context=RequestContext(command="npm install"))
        tracker.track_request("p", request, make_response(cost=0.25, tokens=40), True)

        restored = UsageTracker(persistence_path=path, clock=clock)
        metrics = restored.get_metrics()["p"]
        assert metrics.total_cost == pytest.approx(0.25)
        assert metrics.total_tokens == 40
        assert restored.get_budget("p") == Budget(daily=5.0)
        assert restored.generate_report("all").top_commands[0].command == "npm"

    def test_corrupt_file_starts_fresh(
        self, tmp_path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = tmp_path / "usage.json"
        path.write_text("{not json", encoding="utf-8")

        with caplog.at_level(logging.WARNING, logger="ai_router.usage"):
            tracker = UsageTracker(persistence_path=path)

        assert tracker.get_metrics() == {}
        assert "unreadable usage file" in caplog.text

    @pytest.mark.parametrize(
        "content",
        [
            {"metrics": ["garbage"]},
            {"metrics": {"provider_id": "a"}},
            {"command_usage": [42]},
            {"budgets": [{"provider_id": "a", "limits": [1]}]},
            {"metrics": [{"provider_id": "a", "daily_usage": "today"}]},
        ],
    )
    def test_wrong_shape_starts_fresh(self, tmp_path, content) -> None:
        path = tmp_path / "usage.json"
        path.write_text(json.dumps(content), encoding="utf-8")

        tracker = UsageTracker(persistence_path=path)

        assert tracker.get_metrics() == {}
        assert tracker.get_budget("a") is None

    def test_import_rejects_wrong_shape(self) -> None:
        tracker = UsageTracker()
        with pytest.raises(ValueError, match="list of objects"):
            tracker.import_data({"budgets": "none"})

    @pytest.mark.asyncio
    async def test_writes_in_loop_land_after_flush(
        self, tmp_path, clock: FakeClock
    ) -> None:
        path = tmp_path / "usage.json"
        tracker = UsageTracker(persistence_path=path, clock=clock)

        for _ in range(5):
            tracker.track_request("p", make_request(), make_response(cost=0.1), True)
        await tracker.flush()

        saved = json.loads(path.read_text(encoding="utf-8"))
        assert saved["metrics"][0]["total_requests"] == 5
        assert saved["metrics"][0]["total_cost"] == pytest.approx(0.5)

    def test_missing_file_starts_fresh(self, tmp_path) -> None:
        tracker = UsageTracker(persistence_path=tmp_path / "nested" / "usage.json")
        tracker.track_request("p", make_request(), make_response(), True)
        assert (tmp_path / "nested" / "usage.json").exists()

    def test_export_import(self, clock: FakeClock) -> None:
        source = UsageTracker(budgets={"p": Budget(monthly=3.0)}, clock=clock)
        source.track_request("p", make_request(), make_response(cost=0.1), True)

        data = json.loads(json.dumps(source.export_data()))
        assert set(data) == {"metrics", "command_usage", "budgets", "export_date"}

        target = UsageTracker(clock=clock)
        target.import_data(data)
        assert target.get_metrics()["p"].total_cost == pytest.approx(0.1)
        assert target.get_budget("p").monthly == 3.0

    def test_reset_metrics(self, clock: FakeClock) -> None:
        tracker = UsageTracker(clock=clock)
        tracker.track_request("a", make_request(), make_response(), True)
        tracker.track_request("b", make_request(), make_response(), True)

        tracker.reset_metrics("a")
        assert set(tracker.get_metrics()) == {"b"}

        tracker.reset_metrics()
        assert tracker.get_metrics() == {}
