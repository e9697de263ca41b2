"""Chat agents for StandupLLM."""

from standupllm.agents.standup_agent import StandupAgent, StandupFlow, StandupReply, detect_standup_flow, standup_system_prompt

__all__ = [
    "StandupAgent",
    "StandupFlow",
    "StandupReply",
    "detect_standup_flow",
    "standup_system_prompt",
]
