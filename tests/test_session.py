"""Tests for leads_ranker.session -- per-session overrides."""
from leads_ranker.models import RankingChange
from leads_ranker.session import SessionStore


def _change(lead_id="l1"):
    return RankingChange(lead_id=lead_id, full_name="Ava Stone", company="Acme", old_rank=1, new_rank=2)


class TestSessionStore:
    def test_unknown_session_defaults(self):
        sessions = SessionStore()
        assert sessions.get_batch_ids("nope") == []
        assert sessions.get_ranking_changes("nope") == []
        assert sessions.get_optimized_prompt("nope") is None
        assert sessions.has_pending_optimization("nope") is False

    def test_none_session_is_ignored(self):
        sessions = SessionStore()
        sessions.register_batch_id(None, "batch_1")
        sessions.set_optimized_prompt(None, "prompt")
        assert sessions.get_batch_ids(None) == []
        assert sessions.get_optimized_prompt(None) is None

    def test_register_batch_id_is_idempotent(self):
        sessions = SessionStore()
        sessions.register_batch_id("s1", "batch_1")
        sessions.register_batch_id("s1", "batch_1")
        sessions.register_batch_id("s1", "opt_2")
        assert sessions.get_batch_ids("s1") == ["batch_1", "opt_2"]

    def test_setting_prompt_raises_pending_and_clears_changes(self):
        sessions = SessionStore()
        sessions.set_ranking_changes("s1", [_change()])
        sessions.set_optimized_prompt("s1", "better prompt")
        assert sessions.get_optimized_prompt("s1") == "better prompt"
        assert sessions.has_pending_optimization("s1") is True
        assert sessions.get_ranking_changes("s1") == []

    def test_setting_changes_lowers_pending(self):
        sessions = SessionStore()
        sessions.set_optimized_prompt("s1", "better prompt")
        sessions.set_ranking_changes("s1", [_change("l1"), _change("l2")])
        assert sessions.has_pending_optimization("s1") is False
        assert [c.lead_id for c in sessions.get_ranking_changes("s1")] == ["l1", "l2"]
        # the override stays in place for later runs
        assert sessions.get_optimized_prompt("s1") == "better prompt"

    def test_clear_pending(self):
        sessions = SessionStore()
        sessions.set_optimized_prompt("s1", "p")
        sessions.clear_pending_optimization("s1")
        assert sessions.has_pending_optimization("s1") is False

    def test_sessions_are_isolated(self):
        sessions = SessionStore()
        sessions.set_optimized_prompt("s1", "p")
        assert sessions.get_optimized_prompt("s2") is None
