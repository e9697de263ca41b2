"""Tests for transition matching."""

from standupllm.jira.models import JiraTransition
from standupllm.jira.transitions import normalize_status_name, pick_best_transition, score_transition


def transition(tid: str, name: str, to_status: str | None, category: str | None = None) -> JiraTransition:
    return JiraTransition(id=tid, name=name, to_status=to_status, to_status_category=category)


class TestScoring:
    """Tests for the scoring table."""

    def test_normalize_strips_case_and_punctuation(self):
        """Test that normalisation lower-cases and drops non-alphanumerics."""
        assert normalize_status_name("In Progress!") == "inprogress"
        assert normalize_status_name(None) == ""

    def test_exact_match_on_target_status(self):
        """Test that an exact target-status match scores 3."""
        assert score_transition(transition("31", "Close", "Done"), "done") == 3

    def test_exact_match_on_transition_name(self):
        """Test that the transition name is a candidate too."""
        assert score_transition(transition("21", "Start Progress", "In Progress"), "start progress") == 3

    def test_substring_match(self):
        """Test that containment in either direction scores 2."""
        assert score_transition(transition("41", "Review", "In Review"), "review") == 3
        assert score_transition(transition("41", "Send", "In Review"), "review") == 2
        assert score_transition(transition("11", "Go", "QA"), "qa testing") == 2

    def test_no_match(self):
        """Test that unrelated names score 0."""
        assert score_transition(transition("51", "Close", "Closed"), "Done") == 0

    def test_empty_desired_status_scores_zero(self):
        """Test that an empty request never matches."""
        assert score_transition(transition("31", "Close", "Done"), "  ") == 0


class TestPickBestTransition:
    """Tests for picking the best transition."""

    def test_prefers_exact_over_partial(self):
        """Test that the highest score wins regardless of order."""
        transitions = [transition("1", "Mark done-ish", "Done Pending"), transition("2", "Close", "Done")]
        assert pick_best_transition(transitions, "Done").id == "2"

    def test_tie_keeps_first(self):
        """Test that ties go to the first transition in input order."""
        transitions = [transition("1", "Finish", "Done"), transition("2", "Close", "Done")]
        assert pick_best_transition(transitions, "Done").id == "1"

    def test_returns_none_when_nothing_matches(self):
        """Test that a best score of 0 yields None."""
        transitions = [transition("1", "Review", "In Review"), transition("2", "Close", "Closed")]
        assert pick_best_transition(transitions, "Done") is None

    def test_never_returns_zero_scoring_transition(self):
        """Test that any returned transition has a positive score."""
        transitions = [transition("1", "Start", "In Progress"), transition("2", "Stop", "Backlog")]
        for desired in ["progress", "backlog", "blocked", "x"]:
            best = pick_best_transition(transitions, desired)
            assert best is None or score_transition(best, desired) > 0

    def test_empty_transitions(self):
        """Test that an empty transition list yields None."""
        assert pick_best_transition([], "Done") is None
