"""Root conftest.py for StandupLLM tests.

This module provides pytest configuration and fixtures that are available
to all test modules.
"""

import os
from datetime import UTC, datetime

import pytest

from standupllm.jira.models import JiraIssue
from standupllm.llm import GenerationFailure


def pytest_configure(config):
    """Pytest configuration hook called before test collection.

    Sets up the encryption key and OAuth state secret for storage and
    callback tests, and AGNO_DEBUG when running verbose.

    Args:
        config: pytest Config object
    """
    # Set up encryption key for tests if not already set
    if "STANDUPLLM_TOKEN_ENCRYPTION_KEY" not in os.environ:
        from cryptography.fernet import Fernet

        os.environ["STANDUPLLM_TOKEN_ENCRYPTION_KEY"] = Fernet.generate_key().decode()

    # Use a consistent test secret (not random) for predictable test behavior
    if "STANDUPLLM_OAUTH_STATE_SECRET" not in os.environ:
        os.environ["STANDUPLLM_OAUTH_STATE_SECRET"] = "test_oauth_state_secret_12345678901234567890123456789012"

    if config.getoption("verbose", 0) > 0:
        os.environ["AGNO_DEBUG"] = "true"


def make_issue_payload(
    key: str = "PROJ-1",
    summary: str = "Do the thing",
    status: str = "In Progress",
    category: str = "indeterminate",
    created: str = "2024-01-10T09:00:00.000+0000",
    updated: str = "2024-01-15T10:30:00.000+0000",
    issue_id: str | None = None,
) -> dict:
    """Jira REST v3 issue payload as returned by search and get-issue."""
    return {
        "id": issue_id or str(10000 + int(key.rsplit("-", 1)[1])),
        "key": key,
        "fields": {
            "summary": summary,
            "status": {"name": status, "statusCategory": {"key": category}},
            "assignee": {"displayName": "Dana Dev", "emailAddress": "dana@example.com"},
            "priority": {"name": "Medium"},
            "labels": ["backend"],
            "created": created,
            "updated": updated,
        },
    }


def make_issue(
    key: str = "PROJ-1",
    status: str = "In Progress",
    category: str = "indeterminate",
    created: datetime | None = None,
    updated: datetime | None = None,
    title: str | None = None,
) -> JiraIssue:
    return JiraIssue(
        key=key,
        id=key.rsplit("-", 1)[1],
        title=title or f"Task {key}",
        status=status,
        status_category=category,
        created=created or datetime(2024, 1, 10, 9, tzinfo=UTC),
        updated=updated or datetime(2024, 1, 15, 10, tzinfo=UTC),
    )


class FakeGenerator:
    """StructuredGenerator double: returns queued objects or raises GenerationFailure."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: list[str] = []
        self.schemas: list[type] = []

    def generate(self, prompt, output_schema):
        self.prompts.append(prompt)
        self.schemas.append(output_schema)
        if not self.responses:
            raise GenerationFailure("no response queued")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def generate_text(self, prompt):
        self.prompts.append(prompt)
        return "ok"


@pytest.fixture
def issue_payload():
    """Factory for Jira issue payloads."""
    return make_issue_payload


@pytest.fixture
def now() -> datetime:
    """Wednesday, Jan 17 2024 12:00 UTC."""
    return datetime(2024, 1, 17, 12, tzinfo=UTC)
