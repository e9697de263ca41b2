"""Agno toolkits exposed to the standup agent."""

from standupllm.tools.standup_toolkit import StandupJiraTools

__all__ = ["StandupJiraTools"]
