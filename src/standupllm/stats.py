"""Deterministic weekly statistics over Jira issues.

Everything here is pure: no I/O, no clock reads. The weekly summary feeds the
resulting :class:`WeeklyStatsSnapshot` to the model as facts to narrate, and
falls back to it verbatim when generation fails.
"""

import math
from collections.abc import Iterable, Sequence
from datetime import datetime, time, timedelta
from typing import Literal

from pydantic import BaseModel, Field

from standupllm.config import BASELINE_WEEKS, OVERCOMMITMENT_MULTIPLIER
from standupllm.jira.models import DONE_CATEGORY, JiraIssue

VelocityTrend = Literal["up", "down", "stable", "unknown"]

STALE_AFTER = timedelta(days=2)

ANOMALY_COMPLETION_DROPPED = "Completion dropped vs last window"
ANOMALY_NO_COMPLETIONS = "No issues completed this window"
ANOMALY_LOW_COMPLETION_RATE = "Low completion rate this window"
ANOMALY_STALE_ISSUES = "Issues stale > 2 days without an update"
ANOMALY_HIGH_CARRYOVER = "High carryover from before this window"
ANOMALY_MAJORITY_CARRYOVER = "Majority carryover: at least half of in-scope issues predate this window"
ANOMALY_OVERCOMMITMENT = "Overcommitment vs baseline: planned exceeds recent average completed"


class WindowBounds(BaseModel):
    start: str
    end: str


class StatusNameCount(BaseModel):
    name: str
    status_category: str
    count: int


class StaleStatusCount(BaseModel):
    status_name: str
    count: int


class Velocity(BaseModel):
    completed_this_window: int
    completed_previous_window: int | None = None
    trend: VelocityTrend = "unknown"


class Overcommitment(BaseModel):
    detected: bool
    planned: int
    baseline_avg_completed: int | None = None
    threshold_multiplier: float = OVERCOMMITMENT_MULTIPLIER


class WeeklyStatsSnapshot(BaseModel):
    """Stats for one window. Recomputed on every request, never stored."""

    window: WindowBounds
    project_key: str | None = None
    total_issues: int = Field(..., ge=0)
    completion_rate: int = Field(..., ge=0, le=100, description="round(100 * done / total), 0 when empty")
    counts_by_status_category: dict[str, int] = Field(default_factory=dict)
    counts_by_status_name: list[StatusNameCount] = Field(default_factory=list)
    stale_issues_over_2_days: list[StaleStatusCount] = Field(default_factory=list)
    carryover_from_before_window: int = Field(..., ge=0)
    velocity: Velocity
    overcommitment: Overcommitment
    anomalies: list[str] = Field(default_factory=list)


def round_half_up(value: float) -> int:
    """Round like ``Math.round`` for the non-negative values used here (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def week_bounds(day: datetime) -> tuple[datetime, datetime]:
    """Monday 00:00 through Sunday 23:59:59.999999 of the week containing ``day``."""
    monday = day.date() - timedelta(days=day.weekday())
    start = datetime.combine(monday, time.min, tzinfo=day.tzinfo)
    end = datetime.combine(monday + timedelta(days=6), time.max, tzinfo=day.tzinfo)
    return start, end


def issue_in_window(issue: JiraIssue, start: datetime, end: datetime) -> bool:
    """An issue is in scope when it was created or updated inside [start, end]."""
    return any(ts is not None and start <= ts <= end for ts in (issue.created, issue.updated))


def issues_in_window(issues: Iterable[JiraIssue], start: datetime, end: datetime) -> list[JiraIssue]:
    return [issue for issue in issues if issue_in_window(issue, start, end)]


def completed_count(issues: Iterable[JiraIssue]) -> int:
    return sum(1 for issue in issues if issue.status_category == DONE_CATEGORY)


def baseline_average(issues: Sequence[JiraIssue], window_start: datetime, weeks: int = BASELINE_WEEKS) -> int | None:
    """Mean completed count over the preceding ``weeks`` windows that had any issue in scope.

    Empty windows are skipped rather than counted as zero. Returns None when
    every preceding window is empty.
    """
    counts = []
    for offset in range(1, weeks + 1):
        start, end = week_bounds(window_start - timedelta(weeks=offset))
        in_scope = issues_in_window(issues, start, end)
        if in_scope:
            counts.append(completed_count(in_scope))
    if not counts:
        return None
    return round_half_up(sum(counts) / len(counts))


def _velocity_trend(completed: int, previous: int | None) -> VelocityTrend:
    if previous is None:
        return "unknown"
    if completed > previous:
        return "up"
    if completed < previous:
        return "down"
    return "stable"


def compute_raw_stats(
    issues: Sequence[JiraIssue],
    window_start: datetime,
    window_end: datetime,
    now: datetime,
    previous_window_completed: int | None = None,
    baseline_avg_completed: int | None = None,
    threshold_multiplier: float = OVERCOMMITMENT_MULTIPLIER,
    project_key: str | None = None,
) -> WeeklyStatsSnapshot:
    """Compute the snapshot for issues already filtered to the window.

    Args:
        issues: In-scope issues (see :func:`issue_in_window`)
        window_start: Window start (aware datetime)
        window_end: Window end (aware datetime)
        now: Reference time for staleness
        previous_window_completed: Completed count of the previous window, if it had issues
        baseline_avg_completed: Rolling average completed count, if available
        threshold_multiplier: Overcommitment threshold over the baseline
        project_key: Project the window is scoped to, if any

    Returns:
        WeeklyStatsSnapshot
    """
    planned = len(issues)
    completed = completed_count(issues)

    by_category: dict[str, int] = {}
    # dicts keep insertion order, and sorted() is stable, so ties stay first-seen
    by_name: dict[str, StatusNameCount] = {}
    stale: dict[str, int] = {}
    carryover = 0

    for issue in issues:
        by_category[issue.status_category] = by_category.get(issue.status_category, 0) + 1

        previous = by_name.get(issue.status)
        by_name[issue.status] = StatusNameCount(
            name=issue.status,
            status_category=issue.status_category,
            count=(previous.count if previous else 0) + 1,
        )

        if issue.updated is not None and now - issue.updated >= STALE_AFTER:
            stale[issue.status] = stale.get(issue.status, 0) + 1

        if issue.created is not None and issue.created < window_start and issue.status_category != DONE_CATEGORY:
            carryover += 1

    completion_rate = round_half_up(100 * completed / planned) if planned else 0
    overcommitted = baseline_avg_completed is not None and planned > baseline_avg_completed * threshold_multiplier
    stale_groups = [
        StaleStatusCount(status_name=name, count=count) for name, count in sorted(stale.items(), key=lambda item: -item[1])
    ]

    anomalies = []
    if previous_window_completed is not None and previous_window_completed >= 3 and completed <= previous_window_completed - 2:
        anomalies.append(ANOMALY_COMPLETION_DROPPED)
    if planned >= 3 and completed == 0:
        anomalies.append(ANOMALY_NO_COMPLETIONS)
    if planned >= 5 and completion_rate <= 40:
        anomalies.append(ANOMALY_LOW_COMPLETION_RATE)
    if stale_groups:
        anomalies.append(ANOMALY_STALE_ISSUES)
    if carryover >= 3:
        anomalies.append(ANOMALY_HIGH_CARRYOVER)
    if planned > 0 and carryover / planned >= 0.5:
        anomalies.append(ANOMALY_MAJORITY_CARRYOVER)
    if overcommitted:
        anomalies.append(ANOMALY_OVERCOMMITMENT)

    return WeeklyStatsSnapshot(
        window=WindowBounds(start=window_start.isoformat(), end=window_end.isoformat()),
        project_key=project_key,
        total_issues=planned,
        completion_rate=completion_rate,
        counts_by_status_category=by_category,
        counts_by_status_name=sorted(by_name.values(), key=lambda entry: -entry.count),
        stale_issues_over_2_days=stale_groups,
        carryover_from_before_window=carryover,
        velocity=Velocity(
            completed_this_window=completed,
            completed_previous_window=previous_window_completed,
            trend=_velocity_trend(completed, previous_window_completed),
        ),
        overcommitment=Overcommitment(
            detected=overcommitted,
            planned=planned,
            baseline_avg_completed=baseline_avg_completed,
            threshold_multiplier=threshold_multiplier,
        ),
        anomalies=anomalies,
    )
