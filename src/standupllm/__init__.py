"""StandupLLM - a chat assistant for async standups backed by Jira."""

__version__ = "0.1.0"
