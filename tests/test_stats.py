"""Tests for the deterministic weekly statistics engine."""

from datetime import UTC, datetime, timedelta

import pytest
from conftest import make_issue

from standupllm.stats import (
    ANOMALY_COMPLETION_DROPPED,
    ANOMALY_HIGH_CARRYOVER,
    ANOMALY_LOW_COMPLETION_RATE,
    ANOMALY_MAJORITY_CARRYOVER,
    ANOMALY_NO_COMPLETIONS,
    ANOMALY_OVERCOMMITMENT,
    ANOMALY_STALE_ISSUES,
    baseline_average,
    compute_raw_stats,
    issue_in_window,
    round_half_up,
    week_bounds,
)


def dt(day: int, hour: int = 10, month: int = 1, year: int = 2024) -> datetime:
    return datetime(year, month, day, hour, tzinfo=UTC)


WINDOW_START, WINDOW_END = week_bounds(dt(17))


def fresh(key: str, status: str = "In Progress", category: str = "indeterminate", created: datetime | None = None):
    """An issue created this window and updated just now."""
    return make_issue(key, status=status, category=category, created=created or dt(16), updated=dt(17, 11))


def done(key: str, created: datetime | None = None):
    return fresh(key, status="Done", category="done", created=created)


def stats(issues, now, **kwargs):
    return compute_raw_stats(issues, WINDOW_START, WINDOW_END, now, **kwargs)


class TestWindow:
    """Tests for window bounds and scoping."""

    def test_week_bounds(self):
        """Test that a Wednesday maps to its Monday through Sunday window."""
        start, end = week_bounds(dt(17, 15))
        assert start == datetime(2024, 1, 15, tzinfo=UTC)
        assert end == datetime(2024, 1, 21, 23, 59, 59, 999999, tzinfo=UTC)

    def test_week_bounds_on_monday_and_sunday(self):
        """Test the window edges."""
        assert week_bounds(dt(15, 0))[0] == datetime(2024, 1, 15, tzinfo=UTC)
        assert week_bounds(dt(21, 23))[0] == datetime(2024, 1, 15, tzinfo=UTC)

    def test_issue_in_window_by_created_or_updated(self):
        """Test that either timestamp inside the window puts the issue in scope."""
        updated_only = make_issue("PROJ-1", created=dt(2), updated=dt(16))
        created_only = make_issue("PROJ-2", created=dt(16), updated=dt(16))
        outside = make_issue("PROJ-3", created=dt(2), updated=dt(9))

        assert issue_in_window(updated_only, WINDOW_START, WINDOW_END)
        assert issue_in_window(created_only, WINDOW_START, WINDOW_END)
        assert not issue_in_window(outside, WINDOW_START, WINDOW_END)


class TestComputeRawStats:
    """Tests for compute_raw_stats."""

    def test_empty_window(self, now):
        """Test that no issues produce zeros and no anomalies."""
        snapshot = stats([], now)

        assert snapshot.total_issues == 0
        assert snapshot.completion_rate == 0
        assert snapshot.carryover_from_before_window == 0
        assert snapshot.velocity.trend == "unknown"
        assert snapshot.overcommitment.detected is False
        assert snapshot.anomalies == []

    def test_basic_counts(self, now):
        """Test counts, completion rate, staleness and carryover on a small window."""
        issues = [
            make_issue("PROJ-1", status="Done", category="done", created=dt(15), updated=dt(16)),
            make_issue("PROJ-2", status="In Progress", created=dt(8), updated=dt(15)),
            make_issue("PROJ-3", status="To Do", category="new", created=dt(16), updated=dt(16)),
        ]

        snapshot = stats(issues, now, project_key="PROJ")

        assert snapshot.total_issues == 3
        assert snapshot.completion_rate == 33
        assert snapshot.counts_by_status_category == {"done": 1, "indeterminate": 1, "new": 1}
        assert [(s.status_name, s.count) for s in snapshot.stale_issues_over_2_days] == [("In Progress", 1)]
        assert snapshot.carryover_from_before_window == 1
        assert snapshot.anomalies == [ANOMALY_STALE_ISSUES]
        assert snapshot.project_key == "PROJ"
        assert snapshot.window.start == "2024-01-15T00:00:00+00:00"

    def test_staleness_boundary(self, now):
        """Test that exactly two days without an update is stale."""
        exactly = make_issue("PROJ-1", created=dt(16), updated=now - timedelta(days=2))
        almost = make_issue("PROJ-2", created=dt(16), updated=now - timedelta(days=2) + timedelta(seconds=1))

        snapshot = stats([exactly, almost], now)

        assert [(s.status_name, s.count) for s in snapshot.stale_issues_over_2_days] == [("In Progress", 1)]

    def test_status_names_sorted_with_stable_ties(self, now):
        """Test descending counts where ties keep first-seen order."""
        issues = [
            fresh("PROJ-1", status="Review"),
            fresh("PROJ-2", status="In Progress"),
            fresh("PROJ-3", status="To Do", category="new"),
            fresh("PROJ-4", status="In Progress"),
            fresh("PROJ-5", status="To Do", category="new"),
        ]

        snapshot = stats(issues, now)

        assert [(s.name, s.count) for s in snapshot.counts_by_status_name] == [("In Progress", 2), ("To Do", 2), ("Review", 1)]

    def test_completion_rate_rounds_half_up(self, now):
        """Test that 12.5% rounds to 13."""
        issues = [done("PROJ-1")] + [fresh(f"PROJ-{i}") for i in range(2, 9)]
        assert stats(issues, now).completion_rate == 13

    def test_done_issue_is_not_carryover(self, now):
        """Test that done issues created before the window don't count as carryover."""
        snapshot = stats([done("PROJ-1", created=dt(2))], now)
        assert snapshot.carryover_from_before_window == 0

    @pytest.mark.parametrize(
        ("previous", "expected"),
        [(None, "unknown"), (0, "up"), (1, "stable"), (4, "down")],
    )
    def test_velocity_trend(self, now, previous, expected):
        """Test trend against the previous window's completed count."""
        snapshot = stats([done("PROJ-1"), fresh("PROJ-2")], now, previous_window_completed=previous)
        assert snapshot.velocity.trend == expected
        assert snapshot.velocity.completed_this_window == 1

    @pytest.mark.parametrize(("planned", "expected"), [(2, False), (3, True)])
    def test_overcommitment_boundary(self, now, planned, expected):
        """Test overcommitment against a baseline of 2 at the default 1.2 multiplier."""
        issues = [done(f"PROJ-{i}") for i in range(1, planned + 1)]

        snapshot = stats(issues, now, baseline_avg_completed=2)

        assert snapshot.overcommitment.detected is expected
        assert snapshot.overcommitment.planned == planned
        assert snapshot.overcommitment.threshold_multiplier == 1.2
        assert (ANOMALY_OVERCOMMITMENT in snapshot.anomalies) is expected

    def test_no_baseline_means_no_overcommitment(self, now):
        """Test that overcommitment needs a baseline."""
        issues = [fresh(f"PROJ-{i}") for i in range(1, 20)]
        assert stats(issues, now).overcommitment.detected is False

    def test_idempotent(self, now):
        """Test that identical inputs produce identical snapshots."""
        issues = [done("PROJ-1"), fresh("PROJ-2", created=dt(2)), make_issue("PROJ-3", created=dt(8), updated=dt(9))]
        first = stats(issues, now, previous_window_completed=3, baseline_avg_completed=1)
        second = stats(issues, now, previous_window_completed=3, baseline_avg_completed=1)
        assert first == second
        assert 0 <= first.completion_rate <= 100
        assert first.carryover_from_before_window <= first.total_issues


class TestAnomalies:
    """Tests for each anomaly rule."""

    def test_completion_dropped(self, now):
        """Test the drop rule needs previous >= 3 and a drop of at least 2."""
        issues = [done("PROJ-1")]
        assert ANOMALY_COMPLETION_DROPPED in stats(issues, now, previous_window_completed=3).anomalies
        assert ANOMALY_COMPLETION_DROPPED not in stats(issues, now, previous_window_completed=2).anomalies
        assert ANOMALY_COMPLETION_DROPPED not in stats([done("PROJ-1"), done("PROJ-2")], now, previous_window_completed=3).anomalies

    def test_no_completions(self, now):
        """Test that three planned and none done is flagged."""
        assert ANOMALY_NO_COMPLETIONS in stats([fresh(f"PROJ-{i}") for i in range(1, 4)], now).anomalies
        assert ANOMALY_NO_COMPLETIONS not in stats([fresh("PROJ-1"), fresh("PROJ-2")], now).anomalies

    def test_low_completion_rate(self, now):
        """Test that five planned at 40% or less is flagged."""
        at_forty = [done("PROJ-1"), done("PROJ-2")] + [fresh(f"PROJ-{i}") for i in range(3, 6)]
        at_sixty = [done("PROJ-1"), done("PROJ-2"), done("PROJ-3"), fresh("PROJ-4"), fresh("PROJ-5")]

        assert ANOMALY_LOW_COMPLETION_RATE in stats(at_forty, now).anomalies
        assert ANOMALY_LOW_COMPLETION_RATE not in stats(at_sixty, now).anomalies

    def test_majority_carryover_without_high_carryover(self, now):
        """Test that one of two issues carried over is a majority but not high."""
        snapshot = stats([fresh("PROJ-1", created=dt(2)), done("PROJ-2")], now)
        assert ANOMALY_MAJORITY_CARRYOVER in snapshot.anomalies
        assert ANOMALY_HIGH_CARRYOVER not in snapshot.anomalies

    def test_high_carryover(self, now):
        """Test that three carried-over issues are flagged."""
        issues = [fresh(f"PROJ-{i}", created=dt(2)) for i in range(1, 4)] + [done(f"PROJ-{i}") for i in range(4, 11)]
        snapshot = stats(issues, now)
        assert ANOMALY_HIGH_CARRYOVER in snapshot.anomalies
        assert ANOMALY_MAJORITY_CARRYOVER not in snapshot.anomalies

    def test_all_rules_in_fixed_order(self, now):
        """Test that every matching rule is reported in declaration order."""
        issues = [
            make_issue(f"PROJ-{i}", created=dt(2), updated=datetime(2024, 1, 15, tzinfo=UTC)) for i in range(1, 7)
        ]

        snapshot = stats(issues, now, previous_window_completed=5, baseline_avg_completed=2)

        assert snapshot.anomalies == [
            ANOMALY_COMPLETION_DROPPED,
            ANOMALY_NO_COMPLETIONS,
            ANOMALY_LOW_COMPLETION_RATE,
            ANOMALY_STALE_ISSUES,
            ANOMALY_HIGH_CARRYOVER,
            ANOMALY_MAJORITY_CARRYOVER,
            ANOMALY_OVERCOMMITMENT,
        ]


class TestBaseline:
    """Tests for the rolling baseline."""

    def test_round_half_up(self):
        """Test half-up rounding."""
        assert round_half_up(1.5) == 2
        assert round_half_up(2.5) == 3
        assert round_half_up(2.49) == 2

    def test_skips_empty_windows(self):
        """Test that windows without issues are excluded, not averaged as zero."""
        issues = [
            make_issue("PROJ-1", status="Done", category="done", created=dt(9), updated=dt(9)),
            make_issue("PROJ-2", status="Done", category="done", created=dt(10), updated=dt(10)),
            make_issue("PROJ-3", status="Done", category="done", created=dt(2), updated=dt(2)),
        ]

        # weeks of Jan 8 (2 done) and Jan 1 (1 done); Dec 25 and Dec 18 are empty
        assert baseline_average(issues, WINDOW_START) == 2

    def test_no_history(self):
        """Test that an empty history has no baseline."""
        assert baseline_average([fresh("PROJ-1")], WINDOW_START) is None
