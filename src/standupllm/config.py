"""Environment-driven settings for StandupLLM.

Values are read lazily from the process environment so tests and the
callback server can override them with ``monkeypatch``/``.env`` files.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

ATLASSIAN_AUTH_URL = "https://auth.atlassian.com/authorize"
ATLASSIAN_TOKEN_URL = "https://auth.atlassian.com/oauth/token"
ATLASSIAN_RESOURCES_URL = "https://api.atlassian.com/oauth/token/accessible-resources"
ATLASSIAN_API_BASE = "https://api.atlassian.com/ex/jira"

JIRA_OAUTH_SCOPES = [
    "read:jira-user",
    "read:jira-work",
    "write:jira-work",
    "offline_access",
]

DEFAULT_MODEL = "openai/gpt-4o-mini"

# Refresh tokens that expire within this window
TOKEN_REFRESH_BUFFER_SECONDS = 5 * 60

# Weekly statistics
OVERCOMMITMENT_MULTIPLIER = 1.2
BASELINE_WEEKS = 4
SUMMARY_MAX_ISSUES = 200

# Personal update
PERSONAL_UPDATE_MAX_ISSUES = 100
MAX_APPLIED_COMMENTS = 10

# Agent loop
AGENT_MAX_STEPS = 5

HTTP_TIMEOUT_SECONDS = 30


def get_jira_client_id() -> str | None:
    return os.getenv("JIRA_CLIENT_ID") or None


def get_jira_client_secret() -> str | None:
    return os.getenv("JIRA_CLIENT_SECRET") or None


def get_chat_model_id() -> str:
    """Model id used for both the chat agent and structured generation."""
    return os.getenv("OPENROUTER_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL


def get_data_dir() -> Path:
    data_dir = Path(os.getenv("STANDUPLLM_DATA_DIR", "tmp"))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_db_path() -> Path:
    return get_data_dir() / "standupllm.db"


def get_oauth_state_secret() -> str | None:
    return os.getenv("STANDUPLLM_OAUTH_STATE_SECRET") or None


def get_callback_base_url(default: str) -> str:
    return os.getenv("STANDUPLLM_OAUTH_CALLBACK_BASE_URL", default).rstrip("/")
