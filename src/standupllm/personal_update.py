"""Private, supportive weekly updates for a developer, and applying them to Jira.

The update is generated from the caller's assigned issues split into done,
not done and stale. Applying it maps the (possibly edited) draft onto
per-issue comments, restricted to the issues captured with the draft.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, field_validator

from standupllm.config import MAX_APPLIED_COMMENTS
from standupllm.jira.issue_keys import sanitize_issue_key
from standupllm.jira.models import JiraIssue
from standupllm.llm import GenerationFailure, StructuredGenerator

MAX_DONE = 10
MAX_NOT_DONE = 10
MAX_STALE = 5
MAX_NUDGES = 3
MAX_PROMPT_TASKS = 25
STALE_UPDATE_AFTER = timedelta(days=3)

_KEY_IN_TEXT = re.compile(r"\b[A-Z][A-Z0-9]+-\d+\b")


class PersonalUpdateAnswers(BaseModel):
    completed: str = Field(..., description="What did I complete?")
    not_completed: str = Field(..., description="What did I not complete, and why?")
    blocked: str = Field(..., description="What is blocked or unclear?")


class PersonalUpdate(BaseModel):
    answers: PersonalUpdateAnswers
    draft: str = Field(..., description="A single combined update message the developer can send")
    nudges: list[str] = Field(default_factory=list, description="0-3 private nudges, phrased gently")

    @field_validator("nudges")
    @classmethod
    def _cap_nudges(cls, value: list[str]) -> list[str]:
        return [nudge for nudge in value if nudge.strip()][:MAX_NUDGES]


class IssueComment(BaseModel):
    issue_key: str
    comment: str


class IssueCommentPlan(BaseModel):
    comments: list[IssueComment] = Field(default_factory=list)


@dataclass
class IssuePartition:
    done: list[JiraIssue]
    not_done: list[JiraIssue]
    stale: list[JiraIssue]


def snapshot_issue(issue: JiraIssue) -> dict[str, Any]:
    """Issue fields stored with a draft (JSON-safe)."""
    return {
        "key": issue.key,
        "title": issue.title,
        "status": issue.status,
        "status_category": issue.status_category,
        "updated": issue.updated.isoformat() if issue.updated else None,
        "created": issue.created.isoformat() if issue.created else None,
        "assignee": issue.assignee.model_dump() if issue.assignee else None,
        "priority": issue.priority,
        "description": issue.description,
    }


def partition_issues(issues: Sequence[JiraIssue], now: datetime) -> IssuePartition:
    return IssuePartition(
        done=[issue for issue in issues if issue.is_done][:MAX_DONE],
        not_done=[issue for issue in issues if not issue.is_done][:MAX_NOT_DONE],
        stale=[issue for issue in issues if issue.updated is not None and now - issue.updated >= STALE_UPDATE_AFTER][:MAX_STALE],
    )


def build_update_prompt(partition: IssuePartition) -> str:
    done = "\n".join(f"- {i.key}: {i.title}" for i in partition.done) or "None"
    not_done = "\n".join(f"- {i.key}: {i.title} ({i.status})" for i in partition.not_done) or "None"
    stale = "\n".join(f"- {i.key}: {i.title} ({i.status})" for i in partition.stale) or "None"

    return f"""You are writing a private, supportive weekly update draft for a software developer.
Rules:
- No ranking, no scoring, no judgement.
- Keep it concise.
- If blockers are unknown, say what needs clarification (don't invent causes).
- Use the 3 questions exactly.

Data (Jira):
Completed (done category):
{done}

Not completed (not done categories):
{not_done}

Stale (not updated for ~3+ days):
{stale}

Return:
- answers.completed / answers.not_completed / answers.blocked (plain text)
- draft: a single combined update message the dev can send
- nudges: 0-3 private nudges (e.g., stale, carryover), phrased gently"""


def _titles(issues: Sequence[JiraIssue]) -> str:
    return "; ".join(f"{issue.key}: {issue.title}" for issue in issues)


def fallback_update(partition: IssuePartition) -> PersonalUpdate:
    """Deterministic update built from the partition alone."""
    completed = f"Completed: {_titles(partition.done)}." if partition.done else "Nothing moved to done yet."
    not_completed = (
        f"Still in progress: {_titles(partition.not_done)}." if partition.not_done else "No open issues assigned."
    )
    blocked = (
        f"Needs clarification (no recent updates): {_titles(partition.stale)}."
        if partition.stale
        else "No blockers known."
    )
    draft = "\n".join(
        [
            f"1. What did I complete? {completed}",
            f"2. What did I not complete? {not_completed}",
            f"3. What is blocked or unclear? {blocked}",
        ]
    )
    nudges = [
        f"{issue.key} ({issue.title}) hasn't been updated in a few days, maybe a quick status note would help."
        for issue in partition.stale[:MAX_NUDGES]
    ]
    return PersonalUpdate(
        answers=PersonalUpdateAnswers(completed=completed, not_completed=not_completed, blocked=blocked),
        draft=draft,
        nudges=nudges,
    )


def generate_personal_update(
    issues: Sequence[JiraIssue],
    generator: StructuredGenerator,
    now: datetime,
) -> tuple[PersonalUpdate, bool]:
    """Generate the update; returns ``(update, narrative_available)``."""
    partition = partition_issues(issues, now)
    logger.debug(
        f"Personal update partition: {len(partition.done)} done, "
        f"{len(partition.not_done)} not done, {len(partition.stale)} stale"
    )
    try:
        return generator.generate(build_update_prompt(partition), PersonalUpdate), True
    except GenerationFailure as e:
        logger.warning(f"Personal update generation failed, using fallback: {e}")
        return fallback_update(partition), False


def build_comment_prompt(snapshot: Sequence[dict[str, Any]], draft_text: str) -> str:
    tasks = "\n".join(
        f"- {t.get('key')}: {t.get('title')} ({t.get('status')}) [{t.get('status_category')}]"
        for t in snapshot[:MAX_PROMPT_TASKS]
    )
    return f"""You are applying a developer's private weekly update to Jira issues as comments.
Rules:
- Only use issue keys from the provided task list.
- Do NOT invent work that isn't in the draft.
- Comments should be short (1-5 lines) and helpful (status + reason/next step).
- No judgement, no scoring.

Task list (issueKey, title, status, statusCategory):
{tasks}

Weekly update draft:
{draft_text}

Create comments for the most relevant issues (max {MAX_APPLIED_COMMENTS}). If uncertain, skip the issue rather than guessing.
Return JSON with: comments: [{{ issue_key, comment }}]"""


def fallback_comment_plan(snapshot: Sequence[dict[str, Any]], draft_text: str) -> IssueCommentPlan:
    """Each draft line mentioning a snapshot key becomes part of that issue's comment."""
    known = {t.get("key") for t in snapshot}
    lines_by_key: dict[str, list[str]] = {}
    for line in draft_text.splitlines():
        text = line.strip()
        if not text:
            continue
        for key in dict.fromkeys(_KEY_IN_TEXT.findall(text.upper())):
            if key in known:
                lines_by_key.setdefault(key, []).append(text)
    return IssueCommentPlan(comments=[IssueComment(issue_key=key, comment="\n".join(lines)) for key, lines in lines_by_key.items()])


def restrict_comments(plan: IssueCommentPlan, snapshot: Sequence[dict[str, Any]]) -> list[IssueComment]:
    """Sanitise keys, drop keys outside the snapshot and duplicates, cap the batch."""
    known = {t.get("key") for t in snapshot}
    seen: set[str] = set()
    comments = []
    for item in plan.comments:
        key = sanitize_issue_key(item.issue_key)
        if not key or key not in known or key in seen or not item.comment.strip():
            if key and key not in known:
                logger.debug(f"Skipping comment for {key}: not in the draft snapshot")
            continue
        seen.add(key)
        comments.append(IssueComment(issue_key=key, comment=item.comment.strip()))
        if len(comments) >= MAX_APPLIED_COMMENTS:
            break
    return comments


def plan_comments(
    snapshot: Sequence[dict[str, Any]],
    draft_text: str,
    generator: StructuredGenerator,
) -> list[IssueComment]:
    try:
        plan = generator.generate(build_comment_prompt(snapshot, draft_text), IssueCommentPlan)
    except GenerationFailure as e:
        logger.warning(f"Comment mapping failed, using line mentions instead: {e}")
        plan = fallback_comment_plan(snapshot, draft_text)
    return restrict_comments(plan, snapshot)
