"""
ai-router: Usage accounting, budgets and reports.

Thread-safe per-provider metrics: cumulative totals, exponentially smoothed
latency (alpha 0.1) and error rate (alpha 0.05), and calendar-day buckets
retained for the most recent 90 days. Budgets are advisory: crossing 80%
of a daily/weekly/monthly limit emits a ``budget_alert`` event on every
tracked request while above threshold, but never blocks routing.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, fields
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Mapping

from ai_router.events import BUDGET_ALERT, USAGE_TRACKED, EventEmitter
from ai_router.models import (
    AIRequest,
    AIResponse,
    Budget,
    BudgetAlert,
    BudgetPeriod,
    BudgetStatus,
    BudgetWindow,
    CommandUsage,
    DailyUsage,
    ProviderUsage,
    UsageMetrics,
    UsageReport,
)

logger = logging.getLogger(__name__)

LATENCY_ALPHA = 0.1
ERROR_ALPHA = 0.05
MAX_DAILY_BUCKETS = 90
BUDGET_ALERT_RATIO = 0.8
TOP_COMMANDS = 10
REPORT_PERIODS = ("today", "week", "month", "all")
SAVINGS_PER_1K_TOKENS = 0.003


@dataclass
class CostSummary:
    """Spend across standard windows.

    ``savings`` estimates what tokens served at zero cost (local models)
    would have cost at a typical remote rate.
    """

    today: float
    week: float
    month: float
    total: float
    top_provider: str | None
    savings: float


@dataclass
class _CommandStats:
    count: int = 0
    total_cost: float = 0.0


def week_start(day: date) -> date:
    """Sunday on or before ``day``."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


class UsageTracker:
    """Records every attempted request per provider.

    Each provider's metrics are guarded by their own lock, so concurrent
    ``track_request`` calls for different providers never contend; a short
    registry lock only guards entry creation.

    Example::

        tracker = UsageTracker(budgets={"claude-sonnet": Budget(daily=5.0)})
        tracker.events.on(BUDGET_ALERT, lambda a: print(a.percentage_used))
        tracker.track_request("claude-sonnet", request, response, success=True)
        report = tracker.generate_report("week")
    """

    def __init__(
        self,
        budgets: Mapping[str, Budget] | None = None,
        persistence_path: str | os.PathLike[str] | None = None,
        events: EventEmitter | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the tracker.

        Args:
            budgets: Per-provider advisory budgets.
            persistence_path: JSON file to load at construction and rewrite on
                every tracked request. Inside a running event loop the write
                happens on the default executor; see ``flush``. ``None``
                disables persistence.
            events: Emitter for ``budget_alert`` / ``usage_tracked`` events.
            clock: Returns the current local time; injectable for tests.
        """
        self.events = events or EventEmitter()
        self.persistence_path = Path(persistence_path) if persistence_path else None
        self._clock = clock

        self._registry_lock = threading.Lock()
        self._provider_locks: dict[str, threading.Lock] = {}
        self._metrics: dict[str, UsageMetrics] = {}
        self._command_lock = threading.Lock()
        self._command_usage: dict[str, _CommandStats] = {}
        self._budget_lock = threading.Lock()
        self._budgets: dict[str, Budget] = {}
        self._persist_lock = threading.Lock()
        self._snapshot_lock = threading.Lock()
        self._persist_seq = itertools.count(1)
        self._written_seq = 0
        self._pending_writes: set[asyncio.Future[None]] = set()

        if self.persistence_path is not None:
            self._load()
        for provider_id, budget in (budgets or {}).items():
            self._budgets[provider_id] = copy.copy(budget)

    def _today(self) -> date:
        return self._clock().date()

    def _entry(self, provider_id: str) -> tuple[threading.Lock, UsageMetrics]:
        with self._registry_lock:
            lock = self._provider_locks.get(provider_id)
            if lock is None:
                lock = self._provider_locks[provider_id] = threading.Lock()
                self._metrics.setdefault(provider_id, UsageMetrics(provider_id=provider_id))
            return lock, self._metrics[provider_id]

    # ──────────────────────────────────────────────────────────────────────
    # Recording
    # ──────────────────────────────────────────────────────────────────────

    def track_request(
        self,
        provider_id: str,
        request: AIRequest,
        response: AIResponse,
        success: bool,
    ) -> list[BudgetAlert]:
        """Record one attempt (successful or failed) for ``provider_id``.

        Returns:
            Budget alerts raised by this call (also emitted as events).
        """
        today = self._today()
        lock, metrics = self._entry(provider_id)
        with lock:
            metrics.total_requests += 1
            metrics.total_tokens += response.tokens
            metrics.total_cost += response.cost
            metrics.last_used = self._clock().timestamp()

            metrics.average_response_time_ms = (
                LATENCY_ALPHA * response.response_time_ms
                + (1 - LATENCY_ALPHA) * metrics.average_response_time_ms
            )
            metrics.error_rate = (
                ERROR_ALPHA * (0.0 if success else 1.0)
                + (1 - ERROR_ALPHA) * metrics.error_rate
            )

            bucket = self._bucket(metrics, today.isoformat())
            bucket.requests += 1
            bucket.tokens += response.tokens
            bucket.cost += response.cost

            alerts = self._check_budget(provider_id, metrics, today)

        self._track_command(request.context.command, response.cost)

        for alert in alerts:
            logger.warning(
                f"Budget alert: {provider_id} {alert.type.value} usage at "
                f"{alert.percentage_used:.1f}% of ${alert.threshold_limit:.2f}"
            )
            self.events.emit(BUDGET_ALERT, alert)

        self._persist()
        self.events.emit(
            USAGE_TRACKED,
            {
                "provider_id": provider_id,
                "tokens": response.tokens,
                "cost": response.cost,
                "response_time_ms": response.response_time_ms,
                "success": success,
            },
        )
        return alerts

    @staticmethod
    def _bucket(metrics: UsageMetrics, day: str) -> DailyUsage:
        for bucket in reversed(metrics.daily_usage):
            if bucket.date == day:
                return bucket
        bucket = DailyUsage(date=day)
        metrics.daily_usage.append(bucket)
        if len(metrics.daily_usage) > MAX_DAILY_BUCKETS:
            del metrics.daily_usage[: len(metrics.daily_usage) - MAX_DAILY_BUCKETS]
        return bucket

    def _track_command(self, command: str, cost: float) -> None:
        base = command.strip().split(" ", 1)[0] if command else ""
        if not base:
            return
        with self._command_lock:
            stats = self._command_usage.setdefault(base, _CommandStats())
            stats.count += 1
            stats.total_cost += cost

    # ──────────────────────────────────────────────────────────────────────
    # Budgets
    # ──────────────────────────────────────────────────────────────────────

    @staticmethod
    def _window_costs(metrics: UsageMetrics, today: date) -> dict[BudgetPeriod, float]:
        day = today.isoformat()
        week = week_start(today).isoformat()
        month = day[:7]
        costs = dict.fromkeys(BudgetPeriod, 0.0)
        for bucket in metrics.daily_usage:
            if bucket.date == day:
                costs[BudgetPeriod.DAILY] += bucket.cost
            if week <= bucket.date <= day:
                costs[BudgetPeriod.WEEKLY] += bucket.cost
            if bucket.date.startswith(month):
                costs[BudgetPeriod.MONTHLY] += bucket.cost
        return costs

    @staticmethod
    def _limits(budget: Budget) -> dict[BudgetPeriod, float | None]:
        return {
            BudgetPeriod.DAILY: budget.daily,
            BudgetPeriod.WEEKLY: budget.weekly,
            BudgetPeriod.MONTHLY: budget.monthly,
        }

    def _check_budget(
        self, provider_id: str, metrics: UsageMetrics, today: date
    ) -> list[BudgetAlert]:
        with self._budget_lock:
            budget = self._budgets.get(provider_id)
            budget = copy.copy(budget) if budget else None
        if budget is None:
            return []

        costs = self._window_costs(metrics, today)
        alerts = []
        for period, limit in self._limits(budget).items():
            used = costs[period]
            if limit and used >= limit * BUDGET_ALERT_RATIO:
                alerts.append(
                    BudgetAlert(
                        type=period,
                        threshold_limit=limit,
                        current_usage=used,
                        percentage_used=used / limit * 100,
                        provider_id=provider_id,
                    )
                )
        return alerts

    def set_budget(
        self,
        provider_id: str,
        daily: float | None = None,
        weekly: float | None = None,
        monthly: float | None = None,
    ) -> Budget:
        """Merge the given limits into the provider's budget."""
        with self._budget_lock:
            budget = self._budgets.setdefault(provider_id, Budget())
            if daily is not None:
                budget.daily = daily
            if weekly is not None:
                budget.weekly = weekly
            if monthly is not None:
                budget.monthly = monthly
            result = copy.copy(budget)
        logger.info(f"Budget updated for {provider_id}: {result}")
        return result

    def get_budget(self, provider_id: str) -> Budget | None:
        with self._budget_lock:
            budget = self._budgets.get(provider_id)
            return copy.copy(budget) if budget else None

    def get_budget_status(self, provider_id: str) -> BudgetStatus | None:
        """Spend vs. limit per configured window.

        Returns:
            None if the provider has no budget or no recorded usage.
        """
        budget = self.get_budget(provider_id)
        with self._registry_lock:
            lock = self._provider_locks.get(provider_id)
            metrics = self._metrics.get(provider_id)
        if budget is None or lock is None or metrics is None:
            return None

        with lock:
            costs = self._window_costs(metrics, self._today())

        status = BudgetStatus(provider_id=provider_id)
        for period, limit in self._limits(budget).items():
            if not limit:
                continue
            used = costs[period]
            setattr(
                status,
                period.value,
                BudgetWindow(used=used, limit=limit, percentage=used / limit * 100),
            )
        return status

    # ──────────────────────────────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────────────────────────────

    def _snapshot(self) -> list[UsageMetrics]:
        with self._registry_lock:
            entries = [
                (self._provider_locks[pid], m) for pid, m in self._metrics.items()
            ]
        result = []
        for lock, metrics in entries:
            with lock:
                result.append(copy.deepcopy(metrics))
        return result

    def get_metrics(self, provider_id: str | None = None) -> dict[str, UsageMetrics]:
        """Copies of the per-provider metrics, keyed by provider id."""
        snapshot = {m.provider_id: m for m in self._snapshot()}
        if provider_id is not None:
            return {provider_id: snapshot[provider_id]} if provider_id in snapshot else {}
        return snapshot

    def _start_date(self, period: str) -> str | None:
        today = self._today()
        if period == "today":
            return today.isoformat()
        if period == "week":
            return (today - timedelta(days=7)).isoformat()
        if period == "month":
            return (today - timedelta(days=30)).isoformat()
        return None

    def generate_report(self, period: str = "week") -> UsageReport:
        """Aggregate usage for ``today``, ``week`` (7 days), ``month`` (30 days) or ``all``.

        Raises:
            ValueError: For an unknown period.
        """
        if period not in REPORT_PERIODS:
            raise ValueError(f"Unknown report period '{period}'. Use one of {REPORT_PERIODS}")

        start = self._start_date(period)
        breakdown: list[ProviderUsage] = []
        trend: dict[str, DailyUsage] = {}
        weighted_latency = 0.0

        for metrics in self._snapshot():
            buckets = [
                b for b in metrics.daily_usage if start is None or b.date >= start
            ]
            requests = sum(b.requests for b in buckets)
            if requests == 0:
                continue
            breakdown.append(
                ProviderUsage(
                    provider_id=metrics.provider_id,
                    requests=requests,
                    tokens=sum(b.tokens for b in buckets),
                    cost=sum(b.cost for b in buckets),
                    percentage=0.0,
                )
            )
            weighted_latency += metrics.average_response_time_ms * requests
            for b in buckets:
                day = trend.setdefault(b.date, DailyUsage(date=b.date))
                day.requests += b.requests
                day.tokens += b.tokens
                day.cost += b.cost

        total_requests = sum(p.requests for p in breakdown)
        for p in breakdown:
            p.percentage = p.requests / total_requests * 100 if total_requests else 0.0
        breakdown.sort(key=lambda p: p.requests, reverse=True)

        with self._command_lock:
            commands = [
                CommandUsage(
                    command=cmd, count=s.count, avg_cost=s.total_cost / s.count
                )
                for cmd, s in self._command_usage.items()
                if s.count
            ]
        commands.sort(key=lambda c: c.count, reverse=True)

        return UsageReport(
            period=period,
            total_requests=total_requests,
            total_tokens=sum(p.tokens for p in breakdown),
            total_cost=sum(p.cost for p in breakdown),
            average_response_time_ms=(
                weighted_latency / total_requests if total_requests else 0.0
            ),
            provider_breakdown=breakdown,
            daily_trend=sorted(trend.values(), key=lambda d: d.date),
            top_commands=commands[:TOP_COMMANDS],
        )

    def get_cost_summary(self) -> CostSummary:
        everything = self.generate_report("all")
        free_tokens = sum(
            p.tokens for p in everything.provider_breakdown if p.cost == 0
        )
        return CostSummary(
            today=self.generate_report("today").total_cost,
            week=self.generate_report("week").total_cost,
            month=self.generate_report("month").total_cost,
            total=everything.total_cost,
            top_provider=(
                everything.provider_breakdown[0].provider_id
                if everything.provider_breakdown
                else None
            ),
            savings=free_tokens / 1000 * SAVINGS_PER_1K_TOKENS,
        )

    def requests_today(self) -> int:
        return self.generate_report("today").total_requests

    # ──────────────────────────────────────────────────────────────────────
    # Maintenance & persistence
    # ──────────────────────────────────────────────────────────────────────

    def reset_metrics(self, provider_id: str | None = None) -> None:
        """Drop metrics for one provider, or all metrics and command stats."""
        with self._registry_lock:
            if provider_id is not None:
                self._metrics.pop(provider_id, None)
                self._provider_locks.pop(provider_id, None)
            else:
                self._metrics.clear()
                self._provider_locks.clear()
        if provider_id is None:
            with self._command_lock:
                self._command_usage.clear()
        self._persist()

    def export_data(self) -> dict[str, Any]:
        """JSON-serializable dump of metrics, command stats and budgets."""
        with self._command_lock:
            commands = [
                {"command": cmd, "count": s.count, "total_cost": s.total_cost}
                for cmd, s in self._command_usage.items()
            ]
        with self._budget_lock:
            budgets = [
                {"provider_id": pid, "limits": asdict(b)}
                for pid, b in self._budgets.items()
            ]
        return {
            "metrics": [asdict(m) for m in self._snapshot()],
            "command_usage": commands,
            "budgets": budgets,
            "export_date": self._clock().isoformat(),
        }

    def import_data(self, data: Mapping[str, Any], persist: bool = True) -> None:
        """Merge a dump produced by ``export_data``.

        Raises:
            KeyError, TypeError, ValueError: If the dump is malformed. Sections
                of the wrong shape raise ValueError.
        """
        metrics = [_metrics_from_dict(m) for m in _records(data, "metrics")]
        commands = {
            c["command"]: _CommandStats(count=int(c["count"]), total_cost=float(c["total_cost"]))
            for c in _records(data, "command_usage")
        }
        budget_keys = {f.name for f in fields(Budget)}
        budgets = {
            b["provider_id"]: Budget(
                **{k: v for k, v in _mapping(b, "limits").items() if k in budget_keys}
            )
            for b in _records(data, "budgets")
        }

        with self._registry_lock:
            for m in metrics:
                self._metrics[m.provider_id] = m
                self._provider_locks.setdefault(m.provider_id, threading.Lock())
        with self._command_lock:
            self._command_usage.update(commands)
        with self._budget_lock:
            self._budgets.update(budgets)

        if persist:
            self._persist()

    def _load(self) -> None:
        path = self.persistence_path
        if path is None or not path.exists():
            logger.info("Starting with fresh usage data")
            return
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("usage file must contain a JSON object")
            self.import_data(data, persist=False)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable usage file {path}: {e}")
            self._metrics.clear()
            self._provider_locks.clear()
            self._command_usage.clear()
            self._budgets.clear()
            return
        logger.info(f"Loaded usage data for {len(self._metrics)} provider(s) from {path}")

    async def flush(self) -> None:
        """Wait for usage writes scheduled from the event loop."""
        if self._pending_writes:
            await asyncio.gather(*self._pending_writes)

    def _persist(self) -> None:
        path = self.persistence_path
        if path is None:
            return
        with self._snapshot_lock:
            data = self.export_data()
            seq = next(self._persist_seq)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(path, data, seq)
            return
        future = loop.run_in_executor(None, self._write, path, data, seq)
        self._pending_writes.add(future)
        future.add_done_callback(self._pending_writes.discard)

    def _write(self, path: Path, data: dict[str, Any], seq: int) -> None:
        with self._persist_lock:
            # A newer snapshot already landed
            if seq <= self._written_seq:
                return
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                tmp = path.with_suffix(path.suffix + ".tmp")
                tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
                tmp.replace(path)
            except OSError as e:
                logger.warning(f"Failed to persist usage data to {path}: {e}")
                return
            self._written_seq = seq


def _metrics_from_dict(data: Mapping[str, Any]) -> UsageMetrics:
    buckets = [
        DailyUsage(
            date=str(b["date"]),
            requests=int(b["requests"]),
            tokens=int(b["tokens"]),
            cost=float(b["cost"]),
        )
        for b in _records(data, "daily_usage")
    ]
    return UsageMetrics(
        provider_id=str(data["provider_id"]),
        total_requests=int(data.get("total_requests", 0)),
        total_tokens=int(data.get("total_tokens", 0)),
        total_cost=float(data.get("total_cost", 0.0)),
        average_response_time_ms=float(data.get("average_response_time_ms", 0.0)),
        error_rate=float(data.get("error_rate", 0.0)),
        last_used=data.get("last_used"),
        daily_usage=buckets[-MAX_DAILY_BUCKETS:],
    )


def _records(data: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    records = data.get(key, [])
    if not isinstance(records, list) or not all(isinstance(r, Mapping) for r in records):
        raise ValueError(f"'{key}' must be a list of objects")
    return records


def _mapping(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data[key]
    if not isinstance(value, Mapping):
        raise ValueError(f"'{key}' must be an object")
    return value
