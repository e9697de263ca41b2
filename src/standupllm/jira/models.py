"""Pydantic models for the Jira Cloud REST payloads used by StandupLLM."""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

StatusCategoryKey = Literal["new", "indeterminate", "done"]

DONE_CATEGORY = "done"

_JIRA_DATETIME_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
)


def parse_jira_datetime(value: str | datetime | None) -> datetime | None:
    """Parse a Jira timestamp (``2024-01-15T10:30:00.000+0000``) into an aware datetime.

    Naive values are interpreted as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip().replace("Z", "+00:00")
        parsed = None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            for fmt in _JIRA_DATETIME_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            raise ValueError(f"Unrecognised Jira timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def adf_to_text(node: Any) -> str | None:
    """Flatten an Atlassian Document Format node into plain text.

    Jira v3 returns rich-text fields (e.g. description) as ADF documents.
    Plain strings are returned unchanged.
    """
    if node is None:
        return None
    if isinstance(node, str):
        return node
    if not isinstance(node, dict):
        return str(node)

    if node.get("type") == "text":
        return node.get("text", "")
    if node.get("type") == "hardBreak":
        return "\n"

    parts = [adf_to_text(child) or "" for child in node.get("content", [])]
    if node.get("type") in ("doc", "bulletList", "orderedList"):
        return "\n".join(part for part in parts if part)
    return "".join(parts)


class IssueAssignee(BaseModel):
    """Assignee as exposed to the model and the UI."""

    name: str | None = Field(None, description="Assignee display name")
    email: str | None = Field(None, description="Assignee email address (if visible)")


class JiraIssue(BaseModel):
    """Normalised Jira issue."""

    key: str = Field(..., description="Jira issue key (e.g., PROJ-123)")
    id: str = Field(..., description="Jira internal issue id")
    title: str = Field(..., description="Issue summary")
    description: str | None = Field(None, description="Issue description as plain text")
    status: str = Field(..., description="Current status name")
    status_category: str = Field(..., description="Status category key: new, indeterminate or done")
    assignee: IssueAssignee | None = Field(None, description="Assigned user")
    priority: str | None = Field(None, description="Priority name")
    labels: list[str] = Field(default_factory=list, description="Issue labels")
    created: datetime | None = Field(None, description="Creation timestamp")
    updated: datetime | None = Field(None, description="Last update timestamp")

    @property
    def is_done(self) -> bool:
        return self.status_category == DONE_CATEGORY

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "JiraIssue":
        fields = payload.get("fields") or {}
        status = fields.get("status") or {}
        assignee = fields.get("assignee")
        priority = fields.get("priority")
        labels = fields.get("labels")

        return cls(
            key=payload["key"],
            id=str(payload.get("id", "")),
            title=fields.get("summary") or "",
            description=adf_to_text(fields.get("description")),
            status=status.get("name", "Unknown"),
            status_category=(status.get("statusCategory") or {}).get("key", "new"),
            assignee=(
                IssueAssignee(name=assignee.get("displayName"), email=assignee.get("emailAddress"))
                if assignee
                else None
            ),
            priority=priority.get("name") if priority else None,
            labels=list(labels) if isinstance(labels, list) else [],
            created=parse_jira_datetime(fields.get("created")),
            updated=parse_jira_datetime(fields.get("updated")),
        )


class JiraSearchResult(BaseModel):
    issues: list[JiraIssue] = Field(default_factory=list)
    total: int = Field(0, description="Total matches (may exceed len(issues) when capped)")


class JiraTransition(BaseModel):
    """A workflow edge available for one issue right now."""

    id: str = Field(..., description="Transition id used when posting the transition")
    name: str = Field("", description="Transition name (e.g., 'Close')")
    to_status: str | None = Field(None, description="Target status name")
    to_status_category: str | None = Field(None, description="Target status category key")

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "JiraTransition":
        target = payload.get("to") or {}
        return cls(
            id=str(payload.get("id", "")),
            name=payload.get("name") or "",
            to_status=target.get("name"),
            to_status_category=(target.get("statusCategory") or {}).get("key"),
        )


class JiraStatus(BaseModel):
    id: str = Field(..., description="Status id")
    name: str = Field(..., description="Status name")
    status_category: str | None = Field(None, description="Status category key")
    issue_type: str | None = Field(None, description="Issue type (project-scoped listings only)")

    @classmethod
    def from_api(cls, payload: dict[str, Any], issue_type: str | None = None) -> "JiraStatus":
        return cls(
            id=str(payload.get("id", "")),
            name=payload.get("name", ""),
            status_category=(payload.get("statusCategory") or {}).get("key"),
            issue_type=issue_type,
        )


class JiraMyself(BaseModel):
    account_id: str
    display_name: str
    email_address: str | None = None
    groups: list[str] = Field(default_factory=list)
    application_roles: list[str] = Field(default_factory=list)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "JiraMyself":
        groups = (payload.get("groups") or {}).get("items") or []
        roles = (payload.get("applicationRoles") or {}).get("items") or []
        return cls(
            account_id=payload.get("accountId", ""),
            display_name=payload.get("displayName", ""),
            email_address=payload.get("emailAddress"),
            groups=[g["name"] for g in groups if "name" in g],
            application_roles=[r["key"] for r in roles if "key" in r],
        )


class JiraPermissions(BaseModel):
    """Subset of ``/mypermissions``: permission key -> granted."""

    granted: dict[str, bool] = Field(default_factory=dict)

    def has(self, permission: str) -> bool:
        return self.granted.get(permission, False)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "JiraPermissions":
        permissions = payload.get("permissions") or {}
        return cls(granted={key: bool(value.get("havePermission")) for key, value in permissions.items()})
