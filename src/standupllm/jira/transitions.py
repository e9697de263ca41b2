"""Fuzzy matching of a requested status name against an issue's live transitions.

Workflows differ per project and issue type, so status names are never
hardcoded. Scoring table, per transition:

    3  normalised target status or transition name equals the request
    2  one contains the other
    0  otherwise

The highest score wins, ties go to the first transition in input order, and
a best score of 0 yields ``None`` so the caller can show the alternatives.
"""

import re
from collections.abc import Sequence

from standupllm.jira.models import JiraTransition

EXACT_MATCH_SCORE = 3
PARTIAL_MATCH_SCORE = 2
NO_MATCH_SCORE = 0

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_status_name(value: str | None) -> str:
    return _NON_ALNUM.sub("", (value or "").lower())


def score_transition(transition: JiraTransition, desired_status: str) -> int:
    desired = normalize_status_name(desired_status)
    candidates = [
        candidate
        for candidate in (normalize_status_name(transition.to_status), normalize_status_name(transition.name))
        if candidate
    ]
    if not desired or not candidates:
        return NO_MATCH_SCORE

    if any(candidate == desired for candidate in candidates):
        return EXACT_MATCH_SCORE
    if any(desired in candidate or candidate in desired for candidate in candidates):
        return PARTIAL_MATCH_SCORE
    return NO_MATCH_SCORE


def pick_best_transition(transitions: Sequence[JiraTransition], desired_status: str) -> JiraTransition | None:
    """Pick the transition that best matches ``desired_status``.

    Args:
        transitions: Transitions currently available for the issue
        desired_status: Status name requested by the user (e.g., "Done")

    Returns:
        The best matching transition, or None if nothing scores above zero
    """
    best: JiraTransition | None = None
    best_score = NO_MATCH_SCORE
    for transition in transitions:
        score = score_transition(transition, desired_status)
        if score > best_score:
            best, best_score = transition, score
    return best
