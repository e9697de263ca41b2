"""Tagged results returned by the standup tools.

Every tool returns exactly one variant, discriminated by ``tool``. Failures
use the same variant with ``success=False``, a human-readable ``message`` and
an ``error_kind``; a transition that cannot be matched is not a failure kind,
it carries ``available_transitions`` instead.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

from standupllm.jira.models import JiraIssue, JiraStatus, JiraTransition
from standupllm.personal_update import PersonalUpdate
from standupllm.stats import WeeklyStatsSnapshot
from standupllm.summary import SummaryUI

ErrorKind = Literal["not_connected", "invalid_input", "gateway", "reconnect_required", "generation", "unexpected"]
Role = Literal["admin", "developer"]


class ToolResultBase(BaseModel):
    success: bool
    message: str | None = None
    error_kind: ErrorKind | None = None


class IssueStatusView(BaseModel):
    key: str
    id: str
    title: str
    status: str
    status_category: str


class ListIssuesResult(ToolResultBase):
    tool: Literal["list_issues"] = "list_issues"
    issues: list[JiraIssue] = Field(default_factory=list)
    total: int = 0
    site_url: str | None = None


class GetIssueResult(ToolResultBase):
    tool: Literal["get_issue"] = "get_issue"
    issue: JiraIssue | None = None


class UpdateIssueStatusResult(ToolResultBase):
    tool: Literal["update_issue_status"] = "update_issue_status"
    issue: IssueStatusView | None = None
    requested_status: str | None = None
    available_transitions: list[JiraTransition] | None = None


class ListStatusesResult(ToolResultBase):
    tool: Literal["list_statuses"] = "list_statuses"
    scope: Literal["project", "instance"] | None = None
    project_key: str | None = None
    statuses: list[JiraStatus] = Field(default_factory=list)


class ListTransitionsResult(ToolResultBase):
    tool: Literal["list_transitions"] = "list_transitions"
    issue_key: str | None = None
    transitions: list[JiraTransition] = Field(default_factory=list)


class UserIdentity(BaseModel):
    account_id: str
    display_name: str
    email_address: str | None = None


class AdminPermissions(BaseModel):
    can_administer_jira: bool = False
    can_administer_projects: bool = False


class UserContextResult(ToolResultBase):
    tool: Literal["get_user_context"] = "get_user_context"
    role: Role | None = None
    user: UserIdentity | None = None
    groups: list[str] = Field(default_factory=list)
    application_roles: list[str] = Field(default_factory=list)
    permissions: AdminPermissions | None = None
    needs_reconnect: bool = False


class PersonalUpdateResult(ToolResultBase):
    tool: Literal["generate_personal_update"] = "generate_personal_update"
    update: PersonalUpdate | None = None
    tasks: list[dict[str, Any]] = Field(default_factory=list)
    site_url: str | None = None
    narrative_available: bool = True


class AppliedComment(BaseModel):
    issue_key: str
    ok: bool
    error: str | None = None


class ApplyPersonalUpdateResult(ToolResultBase):
    tool: Literal["apply_personal_update"] = "apply_personal_update"
    applied: list[AppliedComment] = Field(default_factory=list)


class WeeklySummaryResult(ToolResultBase):
    tool: Literal["generate_weekly_summary"] = "generate_weekly_summary"
    raw: WeeklyStatsSnapshot | None = None
    ui: SummaryUI | None = None
    follow_up_question: str | None = None
    site_url: str | None = None
    scope: Literal["assigned", "all"] | None = None
    narrative_available: bool = True


ToolResult = Annotated[
    ListIssuesResult
    | GetIssueResult
    | UpdateIssueStatusResult
    | ListStatusesResult
    | ListTransitionsResult
    | UserContextResult
    | PersonalUpdateResult
    | ApplyPersonalUpdateResult
    | WeeklySummaryResult,
    Field(discriminator="tool"),
]

tool_result_adapter: TypeAdapter[ToolResult] = TypeAdapter(ToolResult)


def parse_tool_result(payload: str | dict[str, Any]) -> ToolResult:
    """Rebuild a tagged result from its JSON form (as the UI layer receives it)."""
    if isinstance(payload, str):
        return tool_result_adapter.validate_json(payload)
    return tool_result_adapter.validate_python(payload)
