"""Tests for leads_ranker.progress -- in-process run progress."""
from leads_ranker.progress import optimization_progress_store, ranking_progress_store


class TestProgressStore:
    def test_unknown_id_reads_as_idle_default(self):
        progress = ranking_progress_store().get("missing")
        assert (progress.total, progress.completed, progress.current_company, progress.status) == (0, 0, None, "idle")

    def test_update_merges_fields(self):
        store = ranking_progress_store()
        store.update("b1", status="running", total=10)
        store.update("b1", completed=4, current_company="Acme")
        progress = store.get("b1")
        assert progress.status == "running"
        assert progress.total == 10
        assert progress.completed == 4
        assert progress.current_company == "Acme"
        assert "b1" in store

    def test_runs_are_independent(self):
        store = optimization_progress_store()
        store.update("r1", status="running", best_fitness=0.5)
        assert store.get("r2").best_fitness == 0.0

    def test_is_running(self):
        store = ranking_progress_store()
        assert store.is_running() is False
        store.update("b1", status="running")
        assert store.is_running() is True
        store.update("b1", status="completed")
        assert store.is_running() is False
