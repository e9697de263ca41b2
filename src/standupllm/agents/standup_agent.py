"""Standup agent: async standups and Jira task management over chat.

The system prompt depends on the weekday (Monday planning, Friday review,
general otherwise). One chat turn runs the agno Agent with the standup toolkit
for at most ``AGENT_MAX_STEPS`` tool calls (agno caps tool calls, not model
steps) and returns the final text plus the
tagged tool results produced during the turn.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from agno.agent import Agent
from agno.models.openrouter import OpenRouter
from loguru import logger

from standupllm.config import AGENT_MAX_STEPS, get_chat_model_id
from standupllm.tools.results import ToolResultBase
from standupllm.tools.standup_toolkit import StandupJiraTools


class StandupFlow(str, Enum):
    MONDAY_PLANNING = "monday_planning"
    FRIDAY_REVIEW = "friday_review"
    GENERAL = "general"


def detect_standup_flow(day: datetime | None = None) -> StandupFlow:
    iso_day = (day or datetime.now(UTC)).isoweekday()
    if iso_day == 1:
        return StandupFlow.MONDAY_PLANNING
    if iso_day == 5:
        return StandupFlow.FRIDAY_REVIEW
    return StandupFlow.GENERAL


BASE_INSTRUCTIONS = """You are an AI project manager assistant helping with async standups and Jira task management.

CRITICAL RULES:
1. All tasks are managed in Jira - use Jira tools to interact with tasks
2. When users mention tasks with "@PROJ-123" format, use get_issue to get details
3. If user mentions completing or updating work, use update_issue_status. Do NOT assume any specific status names exist.
4. Use list_issues to see what tasks the user is working on - the UI renders them as a list in the chat
5. ALWAYS generate a text response after calling tools - explain what you did and provide helpful context
6. When users mention tasks by name or description, search using list_issues with a query parameter
7. NEVER include task details, task lists, or task information in your text messages. Tasks are rendered by the UI. Your text should only give brief context like "Here are your tasks:" or "Found X issues".
8. When you call generate_weekly_summary, DO NOT repeat any UI content in your text (cards/bars/sections). Your text MUST be a short intro (max 1 sentence) and EXACTLY ONE follow-up question.
9. Workflows vary by team. If a user asks for a status that might not exist (e.g., "Blocked"), first use list_transitions for the issue (or list_statuses if needed) and then pick the closest valid status/transition.
10. Never hardcode status names for reporting. Reason with Jira statusCategory ("new", "indeterminate", "done") and the project's actual status names.
11. Developer trust rules: never do public ranking/scoring. Keep developer updates private and supportive.
12. Developer features:
   - If the user asks for a weekly update/standup update, call generate_personal_update. The UI renders the tasks and the 3-question draft. Return only a short intro in text.
   - If the user asks "what should I focus on?", use generate_weekly_summary; do not nag.
13. Weekly summary scope:
   - For developers: PERSONAL (assigned issues only).
   - For admins: TEAM-level (all issues in the specified project). If the project key is missing, ask for it.
14. Applying updates to Jira:
   - If the user says "apply my weekly update to Jira" / "approve and apply", call apply_personal_update.
   - Do not paste per-issue comments in text; just confirm success/failure counts.

Your role:
- Help users manage their Jira tasks
- Update Jira issue statuses based on user updates
- Search and retrieve Jira issues
- Generate weekly summaries with generate_weekly_summary (deterministic stats plus AI insights)
- Be conversational and supportive
- After executing tools, ALWAYS provide a natural language response explaining what happened"""

FLOW_INSTRUCTIONS = {
    StandupFlow.MONDAY_PLANNING: """Today is Monday - focus on planning:
- Help users identify what Jira issues they'll work on this week
- Use list_issues to see their assigned tasks
- Ask about potential blockers proactively
- Help them plan their week using existing Jira issues""",
    StandupFlow.FRIDAY_REVIEW: """Today is Friday - focus on review:
- Help users reflect on what they completed this week
- Use list_issues to see their tasks, then update statuses using update_issue_status
- Update issue statuses based on what they accomplished
- Identify what wasn't completed and why
- Use generate_weekly_summary for weekly summaries with stats, insights, and suggestions""",
    StandupFlow.GENERAL: """General mode:
- Help users manage their Jira issues
- Update issue statuses when mentioned
- Search for issues when users ask about specific tasks
- Provide helpful responses about their work""",
}


def standup_system_prompt(flow: StandupFlow) -> str:
    return f"{BASE_INSTRUCTIONS}\n\n{FLOW_INSTRUCTIONS[flow]}"


@dataclass
class StandupReply:
    text: str
    tool_results: list[ToolResultBase] = field(default_factory=list)


class StandupAgent:
    """Per-user chat wrapper around an agno Agent and the standup toolkit."""

    def __init__(
        self,
        toolkit: StandupJiraTools,
        shared_db=None,
        session_id: str | None = None,
        model_id: str | None = None,
        max_steps: int = AGENT_MAX_STEPS,
    ):
        """Initialize the agent.

        Args:
            toolkit: Standup toolkit bound to the caller
            shared_db: agno database for chat history (optional)
            session_id: Chat session identifier
            model_id: OpenRouter model id (defaults to OPENROUTER_MODEL)
            max_steps: Maximum tool calls per turn
        """
        self.toolkit = toolkit
        self.user_id = toolkit.user_id
        self.session_id = session_id
        self._shared_db = shared_db
        self._model_id = model_id or get_chat_model_id()
        self._max_steps = max_steps

    def _build_agent(self, flow: StandupFlow) -> Agent:
        logger.debug(f"Creating standup agent for user {self.user_id} (flow={flow.value}, model={self._model_id})")
        return Agent(
            name="standup-agent",
            model=OpenRouter(id=self._model_id),
            description="AI project manager for async standups on Jira",
            instructions=standup_system_prompt(flow),
            tools=[self.toolkit],
            tool_call_limit=self._max_steps,
            markdown=True,
            # Session management
            db=self._shared_db,
            add_history_to_context=self._shared_db is not None,
            num_history_runs=10,
        )

    def run(self, message: str, now: datetime | None = None) -> StandupReply:
        """Run one chat turn.

        Args:
            message: The user's message
            now: Reference time for the weekday flow

        Returns:
            StandupReply with the final text and the tool results of this turn
        """
        if not message or not message.strip():
            raise ValueError("Message content is required")

        flow = detect_standup_flow(now)
        agent = self._build_agent(flow)
        self.toolkit.drain_results()

        response = agent.run(message, user_id=self.user_id, session_id=self.session_id)
        tool_results = self.toolkit.drain_results()
        text = str(getattr(response, "content", "") or "")

        logger.info(f"Standup turn for user {self.user_id} finished with {len(tool_results)} tool result(s)")
        return StandupReply(text=text, tool_results=tool_results)
