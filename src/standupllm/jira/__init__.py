"""Jira Cloud integration: key sanitising, transition matching, REST gateway and OAuth."""

from standupllm.jira.gateway import GatewayError, JiraGateway
from standupllm.jira.issue_keys import sanitize_issue_key
from standupllm.jira.transitions import pick_best_transition

__all__ = [
    "GatewayError",
    "JiraGateway",
    "pick_best_transition",
    "sanitize_issue_key",
]
