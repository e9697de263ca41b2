"""
Typed gateway over the Jira Cloud REST API (v3) for OAuth 2.0 (3LO) apps.

Every call goes to ``https://api.atlassian.com/ex/jira/<cloudId>/rest/api/3``
with the user's bearer token. Non-2xx responses raise :class:`GatewayError`.
"""

from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import requests
from loguru import logger

from standupllm.config import ATLASSIAN_API_BASE, HTTP_TIMEOUT_SECONDS
from standupllm.jira.models import (
    JiraIssue,
    JiraMyself,
    JiraPermissions,
    JiraSearchResult,
    JiraStatus,
    JiraTransition,
)

DEFAULT_SEARCH_FIELDS = ["summary", "status", "assignee", "created", "updated", "priority"]
ADMIN_PERMISSIONS = ["ADMINISTER", "ADMINISTER_PROJECTS"]

SCOPE_MISMATCH_MARKER = "scope does not match"


class GatewayError(Exception):
    """Non-2xx response from the Jira REST API."""

    def __init__(self, status_code: int, body: str, endpoint: str = ""):
        self.status_code = status_code
        self.body = body
        self.endpoint = endpoint
        super().__init__(f"Jira API error: {status_code} - {body}")

    @property
    def is_scope_error(self) -> bool:
        """True when the token lacks an OAuth scope the endpoint needs."""
        return SCOPE_MISMATCH_MARKER in str(self).lower()


def text_to_adf(text: str | None) -> dict[str, Any]:
    """Convert plain text to a minimal Atlassian Document Format document.

    Each line becomes one paragraph. ADF rejects empty text nodes, so blank
    lines carry a single space.
    """
    lines = str(text or "").replace("\r\n", "\n").split("\n")
    return {
        "type": "doc",
        "version": 1,
        "content": [{"type": "paragraph", "content": [{"type": "text", "text": line or " "}]} for line in lines],
    }


class JiraGateway:
    """Thin client for the Jira endpoints the standup tools need."""

    def __init__(
        self,
        access_token: str,
        cloud_id: str,
        session: requests.Session | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        """Initialize the gateway for one user's credential.

        Args:
            access_token: OAuth bearer token
            cloud_id: Jira Cloud instance id (from accessible-resources)
            session: Optional requests session (tests inject a mock)
            timeout: Per-request timeout in seconds
        """
        if not access_token:
            raise ValueError("access_token is required")
        if not cloud_id:
            raise ValueError("cloud_id is required")

        self._access_token = access_token
        self._cloud_id = cloud_id
        self._session = session or requests.Session()
        self._timeout = timeout
        self.base_url = f"{ATLASSIAN_API_BASE}/{cloud_id}/rest/api/3"

    @classmethod
    def from_credential(cls, credential) -> "JiraGateway":
        return cls(access_token=credential.access_token, cloud_id=credential.cloud_id)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"Jira {method} {endpoint} params={params}")

        response = self._session.request(
            method,
            url,
            params=params,
            json=json_body,
            headers={
                "Authorization": f"Bearer {self._access_token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
        )

        if not response.ok:
            logger.debug(f"Jira {method} {endpoint} failed with {response.status_code}")
            raise GatewayError(response.status_code, response.text, endpoint=endpoint)

        # POST transitions and comments may answer 204 No Content
        if response.status_code == 204:
            return None

        text = response.text
        if not text:
            return None

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            return response.json()
        return text

    def search_issues(
        self,
        jql: str,
        fields: Sequence[str] | None = None,
        max_results: int = 50,
    ) -> JiraSearchResult:
        """Run a JQL search. The query grammar is the caller's responsibility.

        Uses ``/search/jql``; the legacy ``/search`` endpoint was removed from Jira Cloud.
        """
        params = {
            "jql": jql,
            "fields": ",".join(fields or DEFAULT_SEARCH_FIELDS),
            "maxResults": str(max_results),
        }
        payload = self._request("GET", "/search/jql", params=params) or {}
        issues = [JiraIssue.from_api(item) for item in payload.get("issues", [])]
        total = payload.get("total")
        return JiraSearchResult(issues=issues, total=total if isinstance(total, int) else len(issues))

    def get_issue(self, issue_key: str) -> JiraIssue:
        payload = self._request("GET", f"/issue/{quote(issue_key, safe='')}")
        return JiraIssue.from_api(payload)

    def update_issue_status(self, issue_key: str, transition_id: str) -> None:
        """Apply a transition. Re-fetch the issue to observe the new status."""
        self._request(
            "POST",
            f"/issue/{quote(issue_key, safe='')}/transitions",
            json_body={"transition": {"id": transition_id}},
        )

    def add_comment(self, issue_key: str, text: str) -> None:
        self._request(
            "POST",
            f"/issue/{quote(issue_key, safe='')}/comment",
            json_body={"body": text_to_adf(text)},
        )

    def get_transitions(self, issue_key: str) -> list[JiraTransition]:
        payload = self._request("GET", f"/issue/{quote(issue_key, safe='')}/transitions") or {}
        return [JiraTransition.from_api(item) for item in payload.get("transitions", [])]

    def get_all_statuses(self) -> list[JiraStatus]:
        payload = self._request("GET", "/status") or []
        return [JiraStatus.from_api(item) for item in payload]

    def get_project_statuses(self, project_key: str) -> dict[str, list[JiraStatus]]:
        """Statuses used by a project, grouped by issue type name."""
        payload = self._request("GET", f"/project/{quote(project_key, safe='')}/statuses") or []
        grouped: dict[str, list[JiraStatus]] = {}
        if isinstance(payload, dict):
            for type_name, statuses in payload.items():
                grouped[type_name] = [JiraStatus.from_api(status, issue_type=type_name) for status in statuses]
            return grouped

        for issue_type in payload:
            type_name = issue_type.get("name", "Unknown")
            grouped[type_name] = [JiraStatus.from_api(status, issue_type=type_name) for status in issue_type.get("statuses", [])]
        return grouped

    def get_myself(self) -> JiraMyself:
        payload = self._request("GET", "/myself", params={"expand": "groups,applicationRoles"})
        return JiraMyself.from_api(payload or {})

    def get_my_permissions(
        self,
        project_key: str | None = None,
        permissions: Sequence[str] = ADMIN_PERMISSIONS,
    ) -> JiraPermissions:
        """Check the caller's permissions, optionally scoped to a project.

        Jira Cloud requires the permission keys to be listed explicitly.
        """
        params = {"permissions": ",".join(permissions)}
        if project_key:
            params["projectKey"] = project_key
        payload = self._request("GET", "/mypermissions", params=params)
        return JiraPermissions.from_api(payload or {})

    def get_my_issues(self, max_results: int = 50, project_key: str | None = None, fields: Sequence[str] | None = None) -> JiraSearchResult:
        return self.search_issues(assigned_to_me_jql(project_key), fields=fields, max_results=max_results)

    def search_issues_by_text(self, query: str, max_results: int = 20) -> JiraSearchResult:
        return self.search_issues(text_search_jql(query), max_results=max_results)


def _quote_jql(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def assigned_to_me_jql(project_key: str | None = None) -> str:
    if project_key:
        return f'assignee = currentUser() AND project = "{_quote_jql(project_key)}" ORDER BY updated DESC'
    return "assignee = currentUser() ORDER BY updated DESC"


def project_jql(project_key: str) -> str:
    return f'project = "{_quote_jql(project_key)}" ORDER BY updated DESC'


def text_search_jql(query: str) -> str:
    term = _quote_jql(query.strip())
    return f'key ~ "{term}" OR text ~ "{term}" OR summary ~ "{term}" ORDER BY updated DESC'
