"""
Standup toolkit: the Jira operations the standup agent can call.

Each tool resolves the caller's credential first, validates its input, talks to
Jira through :class:`JiraGateway` and returns the JSON form of one tagged
result from :mod:`standupllm.tools.results`. Tools never raise; failures come
back as ``success: false`` with an ``error_kind``.
"""

import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from agno.tools import Toolkit
from loguru import logger

from standupllm.config import PERSONAL_UPDATE_MAX_ISSUES
from standupllm.credentials import CredentialGuard
from standupllm.db.token_storage import Credential
from standupllm.jira.gateway import GatewayError, JiraGateway
from standupllm.jira.issue_keys import sanitize_issue_key
from standupllm.jira.models import JiraIssue, parse_jira_datetime
from standupllm.jira.transitions import pick_best_transition
from standupllm.llm import GenerationFailure, StructuredGenerator
from standupllm.personal_update import generate_personal_update, plan_comments, snapshot_issue
from standupllm.summary import generate_weekly_summary
from standupllm.tools.results import (
    AdminPermissions,
    AppliedComment,
    ApplyPersonalUpdateResult,
    ErrorKind,
    GetIssueResult,
    IssueStatusView,
    ListIssuesResult,
    ListStatusesResult,
    ListTransitionsResult,
    PersonalUpdateResult,
    ToolResultBase,
    UpdateIssueStatusResult,
    UserContextResult,
    UserIdentity,
    WeeklySummaryResult,
)

NOT_CONNECTED_MESSAGE = "Jira account not connected. Please connect your Jira account first."
INVALID_ISSUE_KEY_MESSAGE = "Invalid issue key. Please mention a Jira issue like PROJ-123 (you can type @ to pick one)."
ADMIN_NEEDS_PROJECT_MESSAGE = (
    "To generate an administrator (team) weekly summary, please specify a Jira project key (e.g., PROJ)."
)
NO_DRAFT_MESSAGE = "No weekly update draft found. Generate your weekly update first."
NO_DRAFT_TASKS_MESSAGE = "No tasks found in the latest draft context. Generate your weekly update again."
NO_DRAFT_TEXT_MESSAGE = "No draft text available to apply. Generate your weekly update again."
RECONNECT_MESSAGE = (
    "Your Jira connection is missing required scopes (read:jira-user). Please reconnect Jira from /jira/connect."
)

PERSONAL_UPDATE_FIELDS = ["summary", "status", "assignee", "created", "updated", "priority", "labels", "description"]


def classify_error(error: Exception) -> ErrorKind:
    """Map an exception raised inside a tool to its error kind."""
    if isinstance(error, GatewayError):
        return "reconnect_required" if error.is_scope_error else "gateway"
    if isinstance(error, GenerationFailure):
        return "generation"
    if isinstance(error, OSError):
        # requests' exceptions derive from OSError
        return "gateway"
    return "unexpected"


def _clean_project_key(project_key: str | None) -> str | None:
    return project_key.strip() if project_key and project_key.strip() else None


class StandupJiraTools(Toolkit):
    """Toolkit for standup work against a user's Jira Cloud site."""

    def __init__(
        self,
        user_id: str,
        credential_guard: CredentialGuard,
        storage,
        generator: StructuredGenerator,
        gateway_factory: Callable[[Credential], JiraGateway] = JiraGateway.from_credential,
        clock: Callable[[], datetime] | None = None,
        **kwargs,
    ):
        """Initialize the toolkit for one user.

        Args:
            user_id: Caller's user id (credential and draft owner)
            credential_guard: Resolves a fresh Jira credential
            storage: StandupStorage for shadow references and drafts
            generator: Structured-generation capability
            gateway_factory: Builds a JiraGateway from a credential
            clock: Returns the current aware datetime
            **kwargs: Additional arguments passed to parent Toolkit
        """
        self.user_id = user_id
        self.credential_guard = credential_guard
        self.storage = storage
        self.generator = generator
        self.gateway_factory = gateway_factory
        self._clock = clock or (lambda: datetime.now(UTC))
        self._results: list[ToolResultBase] = []

        tools: list[Any] = [
            self.list_issues,
            self.get_issue,
            self.update_issue_status,
            self.list_statuses,
            self.list_transitions,
            self.get_user_context,
            self.generate_personal_update,
            self.apply_personal_update,
            self.generate_weekly_summary,
        ]

        super().__init__(name="standup_jira_tools", tools=tools, **kwargs)

    def drain_results(self) -> list[ToolResultBase]:
        """Return and clear the results produced since the last drain."""
        results, self._results = self._results, []
        return results

    def _emit(self, result: ToolResultBase) -> str:
        self._results.append(result)
        return json.dumps(result.model_dump(mode="json"), indent=2)

    def _fail(self, result_cls: type[ToolResultBase], error: Exception, action: str, **fields) -> str:
        kind = classify_error(error)
        if kind == "reconnect_required":
            logger.warning(f"{action} for user {self.user_id} needs a Jira reconnect: {error}")
            message = RECONNECT_MESSAGE
        else:
            logger.error(f"Failed to {action} for user {self.user_id}: {error}")
            message = str(error) or f"Failed to {action}"
        return self._emit(result_cls(success=False, message=message, error_kind=kind, **fields))

    def _connect(self) -> tuple[Credential, JiraGateway] | None:
        resolved = self.credential_guard.get_valid_credential(self.user_id)
        if resolved is None:
            logger.debug(f"User {self.user_id} has no Jira credential")
            return None
        logger.debug(f"Jira credential for user {self.user_id}: {resolved.outcome.value}")
        return resolved.credential, self.gateway_factory(resolved.credential)

    def _not_connected(self, result_cls: type[ToolResultBase]) -> str:
        return self._emit(result_cls(success=False, message=NOT_CONNECTED_MESSAGE, error_kind="not_connected"))

    def _invalid_key(self, result_cls: type[ToolResultBase]) -> str:
        return self._emit(result_cls(success=False, message=INVALID_ISSUE_KEY_MESSAGE, error_kind="invalid_input"))

    def _remember(self, issue: JiraIssue) -> None:
        self.storage.upsert_issue_reference(self.user_id, issue.key, issue.id, issue.title, issue.status)

    def list_issues(self, query: str | None = None, max_results: int = 20) -> str:
        """List Jira issues assigned to the user, or search issues by text.

        Use this to see what tasks the user is working on.

        Args:
            query: Optional search text matched against key, summary and description
            max_results: Maximum number of issues to return (default: 20)

        Returns:
            JSON string with issues, total and the Jira site URL
        """
        try:
            connection = self._connect()
            if connection is None:
                return self._not_connected(ListIssuesResult)
            credential, gateway = connection

            if query and query.strip():
                search = gateway.search_issues_by_text(query, max_results=max_results)
            else:
                search = gateway.get_my_issues(max_results=max_results)

            for issue in search.issues:
                self._remember(issue)

            logger.info(f"Listed {len(search.issues)} of {search.total} Jira issue(s) for user {self.user_id}")
            return self._emit(
                ListIssuesResult(
                    success=True,
                    issues=search.issues,
                    total=search.total,
                    site_url=credential.site_url,
                    message=f"Found {search.total} issue(s)",
                )
            )
        except Exception as e:
            return self._fail(ListIssuesResult, e, "fetch Jira issues")

    def get_issue(self, issue_key: str) -> str:
        """Get detailed information about one Jira issue.

        Use this when the user asks about a specific task or mentions an issue key.

        Args:
            issue_key: Jira issue key (e.g., PROJ-123)

        Returns:
            JSON string with the issue details
        """
        key = sanitize_issue_key(issue_key)
        if not key:
            return self._invalid_key(GetIssueResult)
        try:
            connection = self._connect()
            if connection is None:
                return self._not_connected(GetIssueResult)
            _, gateway = connection

            issue = gateway.get_issue(key)
            self._remember(issue)
            return self._emit(GetIssueResult(success=True, issue=issue))
        except Exception as e:
            return self._fail(GetIssueResult, e, "get Jira issue")

    def update_issue_status(self, issue_key: str, status: str) -> str:
        """Move a Jira issue to a status by name, using the issue's available transitions.

        Do NOT assume statuses like 'Blocked' exist. If the desired status isn't
        available, the result lists the available transitions so the user can pick.

        Args:
            issue_key: Jira issue key (e.g., PROJ-123)
            status: Desired status name (e.g., 'Done', 'In Progress')

        Returns:
            JSON string with the updated issue, or the available transitions
        """
        key = sanitize_issue_key(issue_key)
        if not key:
            return self._invalid_key(UpdateIssueStatusResult)
        try:
            connection = self._connect()
            if connection is None:
                return self._not_connected(UpdateIssueStatusResult)
            _, gateway = connection

            transitions = gateway.get_transitions(key)
            best = pick_best_transition(transitions, status)
            if best is None or not best.id:
                logger.info(f"No transition of {key} matches '{status}' ({len(transitions)} available)")
                return self._emit(
                    UpdateIssueStatusResult(
                        success=False,
                        message=f'Status "{status}" is not available for {key} in its current workflow.',
                        requested_status=status,
                        available_transitions=transitions,
                    )
                )

            gateway.update_issue_status(key, best.id)
            issue = gateway.get_issue(key)
            self._remember(issue)

            logger.info(f"Transitioned {key} via '{best.name}' to {issue.status}")
            return self._emit(
                UpdateIssueStatusResult(
                    success=True,
                    issue=IssueStatusView(
                        key=issue.key,
                        id=issue.id,
                        title=issue.title,
                        status=issue.status,
                        status_category=issue.status_category,
                    ),
                    requested_status=status,
                    message=f"Updated {key} to {issue.status}",
                )
            )
        except Exception as e:
            return self._fail(UpdateIssueStatusResult, e, "update Jira issue", requested_status=status)

    def list_statuses(self, project_key: str | None = None) -> str:
        """List Jira statuses for the instance, or the statuses used by a project.

        Use this to adapt to different workflows (e.g., if 'Blocked' doesn't exist).

        Args:
            project_key: Optional Jira project key (e.g., PROJ)

        Returns:
            JSON string with the statuses
        """
        project_key = _clean_project_key(project_key)

        try:
            connection = self._connect()
            if connection is None:
                return self._not_connected(ListStatusesResult)
            _, gateway = connection

            if project_key:
                grouped = gateway.get_project_statuses(project_key)
                statuses = [status for group in grouped.values() for status in group]
                return self._emit(
                    ListStatusesResult(
                        success=True,
                        scope="project",
                        project_key=project_key,
                        statuses=statuses,
                        message=f"Loaded statuses for project {project_key}",
                    )
                )

            statuses = gateway.get_all_statuses()
            return self._emit(
                ListStatusesResult(
                    success=True,
                    scope="instance",
                    statuses=statuses,
                    message=f"Loaded {len(statuses)} status(es)",
                )
            )
        except Exception as e:
            return self._fail(ListStatusesResult, e, "list Jira statuses", project_key=project_key)

    def list_transitions(self, issue_key: str) -> str:
        """List the transitions available for a Jira issue right now.

        Use this before updating status if the workflow is unknown.

        Args:
            issue_key: Jira issue key (e.g., PROJ-123)

        Returns:
            JSON string with transition ids, names and target statuses
        """
        key = sanitize_issue_key(issue_key)
        if not key:
            return self._invalid_key(ListTransitionsResult)
        try:
            connection = self._connect()
            if connection is None:
                return self._not_connected(ListTransitionsResult)
            _, gateway = connection

            transitions = gateway.get_transitions(key)
            return self._emit(
                ListTransitionsResult(
                    success=True,
                    issue_key=key,
                    transitions=transitions,
                    message=f"Loaded {len(transitions)} transition(s) for {key}",
                )
            )
        except GatewayError as e:
            if e.status_code == 404:
                # Wrong key or no permission on the issue
                logger.warning(f"Transitions for {key} not found: {e}")
                return self._emit(ListTransitionsResult(success=False, issue_key=key, message=str(e), error_kind="gateway"))
            return self._fail(ListTransitionsResult, e, "list Jira transitions", issue_key=key)
        except Exception as e:
            return self._fail(ListTransitionsResult, e, "list Jira transitions", issue_key=key)

    def _admin_permissions(self, gateway: JiraGateway, project_key: str | None) -> AdminPermissions:
        permissions = gateway.get_my_permissions(project_key)
        return AdminPermissions(
            can_administer_jira=permissions.has("ADMINISTER"),
            can_administer_projects=permissions.has("ADMINISTER_PROJECTS"),
        )

    def get_user_context(self, project_key: str | None = None) -> str:
        """Get the current Jira user's identity, role and administration permissions.

        Use this to tailor behaviour for developers vs admins (without any ranking/scoring).

        Args:
            project_key: Optional project key to scope the permission check

        Returns:
            JSON string with role ("admin" or "developer"), user, groups and permissions
        """
        project_key = _clean_project_key(project_key)

        try:
            connection = self._connect()
            if connection is None:
                return self._not_connected(UserContextResult)
            _, gateway = connection

            me = gateway.get_myself()
            permissions = self._admin_permissions(gateway, project_key)
        except GatewayError as e:
            if e.is_scope_error:
                logger.warning(f"Jira token of user {self.user_id} lacks read:jira-user")
                return self._emit(
                    UserContextResult(
                        success=False,
                        needs_reconnect=True,
                        message=RECONNECT_MESSAGE,
                        error_kind="reconnect_required",
                    )
                )
            return self._fail(UserContextResult, e, "fetch Jira user context")
        except Exception as e:
            return self._fail(UserContextResult, e, "fetch Jira user context")

        role = "admin" if permissions.can_administer_jira or permissions.can_administer_projects else "developer"
        logger.debug(f"User {self.user_id} classified as {role}")
        return self._emit(
            UserContextResult(
                success=True,
                role=role,
                user=UserIdentity(account_id=me.account_id, display_name=me.display_name, email_address=me.email_address),
                groups=me.groups,
                application_roles=me.application_roles,
                permissions=permissions,
            )
        )

    def generate_personal_update(self, project_key: str | None = None) -> str:
        """Generate the developer's private weekly update draft from Jira.

        Covers completed work, unfinished work, blockers and private nudges.
        Supportive and private: no ranking or scoring.

        Args:
            project_key: Optional Jira project key to scope the update (e.g., PROJ)

        Returns:
            JSON string with the three answers, the draft, nudges and the issues used
        """
        project_key = _clean_project_key(project_key)

        try:
            connection = self._connect()
            if connection is None:
                return self._not_connected(PersonalUpdateResult)
            credential, gateway = connection

            search = gateway.get_my_issues(
                max_results=PERSONAL_UPDATE_MAX_ISSUES, project_key=project_key, fields=PERSONAL_UPDATE_FIELDS
            )
            update, narrative_available = generate_personal_update(search.issues, self.generator, self._clock())
            tasks = [snapshot_issue(issue) for issue in search.issues]
        except Exception as e:
            return self._fail(PersonalUpdateResult, e, "generate personal update")

        try:
            self.storage.create_personal_update_draft(self.user_id, project_key, tasks, update.model_dump(mode="json"))
        except Exception as e:
            logger.warning(f"Failed to store personal update draft for user {self.user_id}: {e}")

        return self._emit(
            PersonalUpdateResult(
                success=True,
                update=update,
                tasks=tasks,
                site_url=credential.site_url,
                narrative_available=narrative_available,
            )
        )

    def apply_personal_update(self, draft_text: str | None = None) -> str:
        """Apply the latest personal weekly update to Jira as per-issue comments.

        Maps completion, blockers and notes to each issue of the latest draft and
        posts comments (no overwriting, no scoring).

        Args:
            draft_text: Optional edited draft text. If omitted, the stored draft is used.

        Returns:
            JSON string with per-issue outcomes
        """
        try:
            connection = self._connect()
            if connection is None:
                return self._not_connected(ApplyPersonalUpdateResult)
            _, gateway = connection

            latest = self.storage.get_latest_personal_update_draft(self.user_id)
        except Exception as e:
            return self._fail(ApplyPersonalUpdateResult, e, "load personal update draft")

        if latest is None:
            return self._emit(ApplyPersonalUpdateResult(success=False, message=NO_DRAFT_MESSAGE, error_kind="invalid_input"))
        if not latest.issues:
            return self._emit(
                ApplyPersonalUpdateResult(success=False, message=NO_DRAFT_TASKS_MESSAGE, error_kind="invalid_input")
            )

        stored_draft = latest.update.get("draft")
        effective_draft = draft_text if draft_text and draft_text.strip() else stored_draft
        if not isinstance(effective_draft, str) or not effective_draft.strip():
            return self._emit(
                ApplyPersonalUpdateResult(success=False, message=NO_DRAFT_TEXT_MESSAGE, error_kind="invalid_input")
            )

        try:
            comments = plan_comments(latest.issues, effective_draft, self.generator)
        except Exception as e:
            return self._fail(ApplyPersonalUpdateResult, e, "apply update to Jira")

        applied = []
        for item in comments:
            try:
                gateway.add_comment(item.issue_key, item.comment)
                applied.append(AppliedComment(issue_key=item.issue_key, ok=True))
            except Exception as e:
                logger.warning(f"Failed to comment on {item.issue_key}: {e}")
                applied.append(AppliedComment(issue_key=item.issue_key, ok=False, error=str(e) or "Failed to add comment"))

        ok_count = sum(1 for item in applied if item.ok)
        logger.info(f"Applied personal update for user {self.user_id}: {ok_count}/{len(applied)} comment(s) posted")
        return self._emit(
            ApplyPersonalUpdateResult(success=True, applied=applied, message=f"Applied comments to {ok_count} issue(s).")
        )

    def generate_weekly_summary(self, week_start: str | None = None, project_key: str | None = None) -> str:
        """Generate a weekly summary from Jira issues.

        Computes deterministic stats and returns a UI schema (cards, bars,
        sections) plus one follow-up question. The UI renders the schema, so do
        NOT repeat its contents in text: give a short intro and ask the single
        follow_up_question.

        Args:
            week_start: Optional date inside the target week (ISO string). Defaults to the current week.
            project_key: Optional Jira project key to scope the report (e.g., PROJ). Required for admins.

        Returns:
            JSON string with raw stats, the UI schema and the follow-up question
        """
        project_key = _clean_project_key(project_key)

        window_start = None
        if week_start and week_start.strip():
            try:
                window_start = parse_jira_datetime(week_start)
            except ValueError:
                return self._emit(
                    WeeklySummaryResult(
                        success=False,
                        message=f"Invalid week start '{week_start}'. Use an ISO date such as 2024-01-15.",
                        error_kind="invalid_input",
                    )
                )

        try:
            connection = self._connect()
            if connection is None:
                return self._not_connected(WeeklySummaryResult)
            credential, gateway = connection

            permissions = self._admin_permissions(gateway, project_key)
            is_admin = permissions.can_administer_jira or permissions.can_administer_projects
            if is_admin and not project_key:
                return self._emit(
                    WeeklySummaryResult(success=False, message=ADMIN_NEEDS_PROJECT_MESSAGE, error_kind="invalid_input")
                )

            scope = "all" if is_admin else "assigned"
            summary = generate_weekly_summary(
                gateway,
                self.generator,
                window_start=window_start,
                project_key=project_key,
                scope=scope,
                now=self._clock(),
            )
        except Exception as e:
            return self._fail(WeeklySummaryResult, e, "generate weekly summary")

        return self._emit(
            WeeklySummaryResult(
                success=True,
                raw=summary.raw,
                ui=summary.ui,
                follow_up_question=summary.follow_up_question,
                site_url=credential.site_url,
                scope=scope,
                narrative_available=summary.narrative_available,
            )
        )
