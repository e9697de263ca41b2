"""Weekly Jira summary: deterministic stats first, model narrative second.

The model only ever sees the computed snapshot and a few aggregated lists,
never raw issue JSON. If generation fails, or its output is missing required
parts, the summary is rebuilt from the snapshot alone.
"""

from datetime import UTC, datetime, timedelta
from typing import Annotated, Literal

from loguru import logger
from pydantic import BaseModel, Field

from standupllm.config import BASELINE_WEEKS, OVERCOMMITMENT_MULTIPLIER, SUMMARY_MAX_ISSUES
from standupllm.jira.gateway import GatewayError, JiraGateway, assigned_to_me_jql, project_jql
from standupllm.jira.models import JiraIssue
from standupllm.llm import GenerationFailure, StructuredGenerator
from standupllm.stats import (
    WeeklyStatsSnapshot,
    baseline_average,
    completed_count,
    compute_raw_stats,
    issues_in_window,
    week_bounds,
)

Tone = Literal["neutral", "success", "warning", "danger"]
SegmentColor = Literal["gray", "blue", "green", "red", "orange", "purple"]
SummaryScope = Literal["assigned", "all"]

DEFAULT_FOLLOW_UP_QUESTION = "Do you want me to focus this report on a specific Jira project?"
REQUIRED_SECTIONS = ("Summary", "Insights", "Next Week Focus")
ANOMALIES_SECTION = "Anomalies"

CATEGORY_COLORS: dict[str, SegmentColor] = {"new": "gray", "indeterminate": "blue", "done": "green"}
CATEGORY_LABELS = {"new": "To Do", "indeterminate": "In Progress", "done": "Done"}

PROMPT_TOP_STATUSES = 8
PROMPT_TOP_STALE = 6
PROMPT_MAX_WORKFLOW_STATUSES = 40


class SummaryCard(BaseModel):
    title: str
    value: str
    subtitle: str | None = None
    tone: Tone | None = None


class ProgressBar(BaseModel):
    type: Literal["progress"] = "progress"
    label: str
    value: float = Field(..., ge=0, le=100)
    value_label: str | None = Field(None, description='Display label, e.g. "67%"')


class BarSegment(BaseModel):
    label: str
    value: float = Field(..., ge=0)
    color: SegmentColor | None = None


class StackedBar(BaseModel):
    type: Literal["stacked"] = "stacked"
    label: str
    segments: list[BarSegment]


SummaryBar = Annotated[ProgressBar | StackedBar, Field(discriminator="type")]


class SummarySection(BaseModel):
    title: str
    kind: Literal["text", "bullets"] | None = None
    text: str | None = Field(None, description="Markdown text for text sections")
    bullets: list[str] | None = None
    tone: Tone | None = None


class SummaryUI(BaseModel):
    cards: list[SummaryCard] = Field(..., min_length=3, max_length=6)
    bars: list[SummaryBar] = Field(default_factory=list)
    sections: list[SummarySection] = Field(default_factory=list)


class WeeklySummaryNarrative(BaseModel):
    """What the model is asked to produce."""

    ui: SummaryUI
    follow_up_question: str = Field(
        ..., description="Exactly one smart follow-up question (one sentence) that ends with a question mark"
    )


class WorkflowStatus(BaseModel):
    issue_type: str
    name: str
    status_category: str | None = None


class WeeklySummary(BaseModel):
    raw: WeeklyStatsSnapshot
    ui: SummaryUI
    follow_up_question: str
    narrative_available: bool = True


def completion_bar(raw: WeeklyStatsSnapshot) -> ProgressBar:
    return ProgressBar(label="Completion", value=raw.completion_rate, value_label=f"{raw.completion_rate}%")


def status_category_bar(raw: WeeklyStatsSnapshot) -> StackedBar:
    return StackedBar(
        label="Status categories",
        segments=[
            BarSegment(label=CATEGORY_LABELS.get(category, category), value=count, color=CATEGORY_COLORS.get(category, "purple"))
            for category, count in raw.counts_by_status_category.items()
        ],
    )


def anomalies_section(raw: WeeklyStatsSnapshot) -> SummarySection:
    return SummarySection(title=ANOMALIES_SECTION, kind="bullets", bullets=list(raw.anomalies), tone="warning")


def fallback_summary(raw: WeeklyStatsSnapshot) -> WeeklySummary:
    """Stats-only summary used when the narrative is unavailable."""
    sections = [
        SummarySection(
            title="Summary",
            kind="text",
            text=(
                f"AI narrative is unavailable right now. {raw.total_issues} issue(s) were in scope, "
                f"{raw.velocity.completed_this_window} completed ({raw.completion_rate}%)."
            ),
            tone="warning",
        )
    ]
    if raw.anomalies:
        sections.append(anomalies_section(raw))

    ui = SummaryUI(
        cards=[
            SummaryCard(title="Completion", value=f"{raw.completion_rate}%", subtitle="Done / total", tone="neutral"),
            SummaryCard(title="Total", value=str(raw.total_issues), tone="neutral"),
            SummaryCard(
                title="Carryover",
                value=str(raw.carryover_from_before_window),
                tone="warning" if raw.carryover_from_before_window > 0 else "success",
            ),
        ],
        bars=[completion_bar(raw), status_category_bar(raw)],
        sections=sections,
    )
    return WeeklySummary(raw=raw, ui=ui, follow_up_question=DEFAULT_FOLLOW_UP_QUESTION, narrative_available=False)


def finalize_narrative(raw: WeeklyStatsSnapshot, narrative: WeeklySummaryNarrative) -> WeeklySummary | None:
    """Enforce the presentation rules on model output.

    Returns None when the narrative lacks a required section, in which case
    the caller falls back to :func:`fallback_summary`.
    """
    titles = {section.title.strip().lower() for section in narrative.ui.sections}
    missing = [title for title in REQUIRED_SECTIONS if title.lower() not in titles]
    if missing:
        logger.warning(f"Weekly summary narrative is missing sections: {', '.join(missing)}")
        return None

    bars = list(narrative.ui.bars)
    if not any(isinstance(bar, ProgressBar) for bar in bars):
        bars.insert(0, completion_bar(raw))
    if not any(isinstance(bar, StackedBar) for bar in bars):
        bars.append(status_category_bar(raw))

    sections = list(narrative.ui.sections)
    has_anomalies_section = ANOMALIES_SECTION.lower() in titles
    if not raw.anomalies and has_anomalies_section:
        sections = [section for section in sections if section.title.strip().lower() != ANOMALIES_SECTION.lower()]
    elif raw.anomalies and not has_anomalies_section:
        sections.append(anomalies_section(raw))

    question = narrative.follow_up_question.strip()
    if not question.endswith("?"):
        question = DEFAULT_FOLLOW_UP_QUESTION

    ui = SummaryUI(cards=narrative.ui.cards, bars=bars, sections=sections)
    return WeeklySummary(raw=raw, ui=ui, follow_up_question=question)


def _format_day(value: datetime, with_year: bool = False) -> str:
    text = f"{value:%b} {value.day}"
    return f"{text}, {value.year}" if with_year else text


def build_summary_prompt(
    raw: WeeklyStatsSnapshot,
    window_start: datetime,
    window_end: datetime,
    scope: SummaryScope,
    completed_issues: list[JiraIssue],
    workflow_statuses: list[WorkflowStatus] | None,
) -> str:
    velocity = raw.velocity
    previous = (
        f" (prev completed: {velocity.completed_previous_window})" if velocity.completed_previous_window is not None else ""
    )
    overcommitment = raw.overcommitment
    category_lines = "\n".join(f"- {name}: {count}" for name, count in raw.counts_by_status_category.items()) or "None"
    status_lines = (
        "\n".join(f"- {s.name}: {s.count} ({s.status_category})" for s in raw.counts_by_status_name[:PROMPT_TOP_STATUSES])
        or "None"
    )
    stale_lines = (
        "\n".join(f"- {s.status_name}: {s.count}" for s in raw.stale_issues_over_2_days[:PROMPT_TOP_STALE]) or "None"
    )
    completed_lines = "\n".join(f"- {issue.key}: {issue.title}" for issue in completed_issues) or "None"
    workflow_lines = (
        "\n".join(
            f"- {s.issue_type}: {s.name} ({s.status_category or 'unknown'})"
            for s in workflow_statuses[:PROMPT_MAX_WORKFLOW_STATUSES]
        )
        if workflow_statuses
        else "Not available"
    )

    return f"""You are generating a UI-driven weekly report for a Jira project manager agent.
Your output will be rendered directly as UI. DO NOT invent numbers; use only the provided computed stats.

Week: {_format_day(window_start)} - {_format_day(window_end, with_year=True)}
Project: {raw.project_key or "All projects"} (scope: {scope})

Computed stats (deterministic):
- Total issues in scope: {raw.total_issues}
- Completion rate (done/total): {raw.completion_rate}%
- Carryover from before this week (created before week start and not done): {raw.carryover_from_before_window}
- Velocity trend: {velocity.trend}{previous} (this week completed: {velocity.completed_this_window})
- Overcommitment detected: {str(overcommitment.detected).lower()} (planned={overcommitment.planned}, baselineAvgCompleted={overcommitment.baseline_avg_completed}, threshold={overcommitment.threshold_multiplier}x)
- Deterministic anomaly flags: {", ".join(raw.anomalies) if raw.anomalies else "None"}

Counts by Jira statusCategory:
{category_lines}

Top statuses by name (status -> count, category):
{status_lines}

Stale issues (> 2 days since updated), by status:
{stale_lines}

Completed issues (titles only):
{completed_lines}

Project workflow statuses (if available; grouped by issue type):
{workflow_lines}

TASK:
1) Create a UI schema:
   - cards: 3-6 cards with title/value/subtitle/tone (tone is optional).
   - bars:
     - include a progress bar for completion rate.
     - include a stacked bar for statusCategory distribution using Jira's categories (do not invent categories).
   - sections:
     - include a "Summary" section (markdown, 2-4 sentences).
     - include an "Insights" bullets section (risks/patterns, 2-6 items).
     - include a "Next Week Focus" bullets section (2-6 items).
     - include an "Anomalies" bullets section only if anomaly flags exist.
2) Provide EXACTLY ONE follow_up_question (one sentence ending with '?'). It should be smart and actionable.
"""


def fetch_workflow_statuses(gateway: JiraGateway, project_key: str | None) -> list[WorkflowStatus] | None:
    """Project workflow statuses as prompt context. Best effort."""
    if not project_key:
        return None
    try:
        grouped = gateway.get_project_statuses(project_key)
    except (GatewayError, OSError) as e:
        logger.warning(f"Project statuses for {project_key} unavailable: {e}")
        return None
    return [
        WorkflowStatus(issue_type=issue_type, name=status.name, status_category=status.status_category)
        for issue_type, statuses in grouped.items()
        for status in statuses
    ]


def generate_weekly_summary(
    gateway: JiraGateway,
    generator: StructuredGenerator,
    window_start: datetime | None = None,
    project_key: str | None = None,
    scope: SummaryScope = "assigned",
    now: datetime | None = None,
) -> WeeklySummary:
    """Build the weekly summary for one window.

    Args:
        gateway: Jira gateway for the caller's credential
        generator: Structured-generation capability
        window_start: Any moment inside the target week (defaults to now)
        project_key: Optional project boundary (required upstream for scope="all")
        scope: "assigned" for the caller's issues, "all" for the whole project
        now: Reference time for staleness

    Returns:
        WeeklySummary; narrative_available is False when the fallback was used

    Raises:
        GatewayError: If the issue search fails
    """
    now = now or datetime.now(UTC)
    start, end = week_bounds(window_start or now)

    jql = project_jql(project_key) if scope == "all" and project_key else assigned_to_me_jql(project_key)
    workflow_statuses = fetch_workflow_statuses(gateway, project_key)
    search = gateway.search_issues(
        jql,
        fields=["summary", "status", "assignee", "created", "updated", "priority", "labels"],
        max_results=SUMMARY_MAX_ISSUES,
    )
    all_issues = search.issues

    window_issues = issues_in_window(all_issues, start, end)
    previous_start, previous_end = week_bounds(start - timedelta(weeks=1))
    previous_issues = issues_in_window(all_issues, previous_start, previous_end)

    raw = compute_raw_stats(
        window_issues,
        start,
        end,
        now,
        previous_window_completed=completed_count(previous_issues) if previous_issues else None,
        baseline_avg_completed=baseline_average(all_issues, start, weeks=BASELINE_WEEKS),
        threshold_multiplier=OVERCOMMITMENT_MULTIPLIER,
        project_key=project_key,
    )
    logger.debug(
        f"Weekly stats {start.date()}..{end.date()}: {raw.total_issues} issue(s), "
        f"{raw.completion_rate}% done, {len(raw.anomalies)} anomalies"
    )

    completed_issues = [issue for issue in window_issues if issue.is_done]
    prompt = build_summary_prompt(raw, start, end, scope, completed_issues, workflow_statuses)
    try:
        narrative = generator.generate(prompt, WeeklySummaryNarrative)
    except GenerationFailure as e:
        logger.warning(f"Weekly summary narrative failed, using fallback: {e}")
        return fallback_summary(raw)

    return finalize_narrative(raw, narrative) or fallback_summary(raw)
