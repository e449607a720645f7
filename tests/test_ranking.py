"""Tests for leads_ranker.core.ranking -- the batch ranking orchestrator."""
import asyncio
import json

import pytest

from leads_ranker.core.ranking import (
    RankingOrchestrator,
    build_ranking_changes,
    group_by_company,
    ranking_max_tokens,
    select_prompt_for_ranking,
)
from leads_ranker.models import ActivePrompt, AIProvider, LeadForRanking, RankingResult
from tests.conftest import FakeLLM, leads_in_prompt, rankings_json


def _lead(lead_id, company="Acme", first="Ava", last="Stone", title="VP Sales"):
    return LeadForRanking(id=lead_id, first_name=first, last_name=last, job_title=title, company_name=company)


# Ranks by first name; anyone not listed is irrelevant
RANKS = {"Ava": 2, "Cara": 1, "Dan": 1}


def title_ranker(prompt, options):
    return rankings_json({lead_id: RANKS.get(name.split()[0]) for lead_id, name, _ in leads_in_prompt(prompt)})


@pytest.fixture
def make_orchestrator(store, ranking_progress, sessions):
    def _make(responder=title_ranker):
        llm = FakeLLM(responder)
        return RankingOrchestrator(store, llm, ranking_progress, sessions), llm

    return _make


class TestHelpers:
    def test_group_by_company_keeps_first_seen_order(self):
        leads = [_lead("1", "Zeta"), _lead("2", "Acme"), _lead("3", "Zeta"), _lead("4", "Beta")]
        groups = group_by_company(leads)
        assert list(groups) == ["Zeta", "Acme", "Beta"]
        assert [lead.id for lead in groups["Zeta"]] == ["1", "3"]

    def test_select_prompt_with_override_keeps_version(self):
        base = ActivePrompt(content="base", version=2)
        assert select_prompt_for_ranking(base, "alt") == ActivePrompt(content="alt", version=2)

    def test_select_prompt_without_override(self):
        base = ActivePrompt(content="base", version=2)
        assert select_prompt_for_ranking(base, None) == base

    def test_max_tokens_scale_with_group_size(self):
        assert ranking_max_tokens(1) == 4096
        assert ranking_max_tokens(50) == 400 + 220 * 50

    def test_build_ranking_changes_keeps_only_changed(self):
        leads = [
            _lead("lead-1", first="Ava", last="Stone"),
            _lead("lead-2", first="Ben", last="King", title="HR Manager"),
            _lead("lead-3", first="Cara", last="Lopez", title="Sales Director"),
        ]
        old = {"lead-1": 1, "lead-2": None}
        new = [
            RankingResult(lead_id="lead-1", rank=2),
            RankingResult(lead_id="lead-2", rank=None),
            RankingResult(lead_id="lead-3", rank=1),
        ]
        changes = build_ranking_changes(old, leads, new)
        assert [(c.lead_id, c.old_rank, c.new_rank) for c in changes] == [("lead-1", 1, 2), ("lead-3", None, 1)]
        assert changes[0].full_name == "Ava Stone"
        assert changes[0].company == "Acme"


class TestRankingRun:
    def test_single_company_end_to_end(self, store, make_lead, make_orchestrator):
        store.replace_leads(
            [
                make_lead(first="Ava", last="Stone"),
                make_lead(first="Cara", last="Lopez"),
                make_lead(first="Ben", last="King", title="HR Manager"),
            ]
        )
        orchestrator, llm = make_orchestrator()

        asyncio.run(orchestrator.run(AIProvider.openai, "batch_1"))

        progress = orchestrator.get_progress("batch_1")
        assert progress.status == "completed"
        assert progress.completed == progress.total == 3
        assert progress.current_company is None
        ranks = sorted(store.get_rank_map().values(), key=lambda r: (r is None, r))
        assert ranks == [1, 2, None]
        assert len(llm.calls) == 1

    def test_one_call_per_company_with_costs_logged(self, store, seeded_leads, make_orchestrator):
        orchestrator, llm = make_orchestrator()
        asyncio.run(orchestrator.run(AIProvider.openai, "batch_1"))

        assert len(llm.calls) == 2
        for _, _, options in llm.calls:
            assert options.json_mode is True
            assert options.temperature == 0.2
            assert options.max_tokens == 4096
        stats = store.ai_call_stats(["batch_1"])
        assert stats.total_calls == 2
        assert stats.total_cost == pytest.approx(0.002)

    def test_rankings_are_fully_replaced(self, store, seeded_leads, make_orchestrator):
        store.insert_rankings([RankingResult(lead_id=seeded_leads[0].id, rank=9)], 1)
        orchestrator, _ = make_orchestrator()
        asyncio.run(orchestrator.run(AIProvider.openai, "batch_1"))
        rank_map = store.get_rank_map()
        assert len(rank_map) == 5
        assert rank_map[seeded_leads[0].id] == 2

    def test_uses_active_prompt_version(self, store, seeded_leads, make_orchestrator):
        store.insert_prompt(version=3, content="CUSTOM PROMPT", is_active=True)
        orchestrator, llm = make_orchestrator()
        asyncio.run(orchestrator.run(AIProvider.openai, "batch_1"))
        assert all(prompt.startswith("CUSTOM PROMPT") for _, prompt, _ in llm.calls)
        page = store.leads_with_rankings()
        assert page.pagination.total_count == 5

    def test_company_failure_is_skipped(self, store, seeded_leads, make_orchestrator):
        def flaky(prompt, options):
            if "Globex" in prompt:
                return RuntimeError("quota exceeded")
            return title_ranker(prompt, options)

        orchestrator, _ = make_orchestrator(flaky)
        asyncio.run(orchestrator.run(AIProvider.openai, "batch_1"))

        progress = orchestrator.get_progress("batch_1")
        assert progress.status == "completed"
        assert progress.completed == 5
        ranked_ids = set(store.get_rank_map())
        assert ranked_ids == {lead.id for lead in seeded_leads if lead.company_name == "Acme"}

    def test_unparseable_response_stores_placeholders(self, store, seeded_leads, make_orchestrator):
        orchestrator, _ = make_orchestrator(lambda prompt, options: "sorry, no idea")
        asyncio.run(orchestrator.run(AIProvider.openai, "batch_1"))
        rank_map = store.get_rank_map()
        assert len(rank_map) == 5
        assert set(rank_map.values()) == {None}

    def test_object_lead_ids_still_store_every_lead(self, store, seeded_leads, make_orchestrator):
        def garbled(prompt, options):
            entries = [{"leadId": {"x": 1}, "rank": 1}] + [
                {"leadId": lead_id, "rank": 4} for lead_id, _, _ in leads_in_prompt(prompt)
            ]
            return json.dumps({"rankings": entries})

        orchestrator, _ = make_orchestrator(garbled)
        asyncio.run(orchestrator.run(AIProvider.openai, "batch_1"))

        assert store.ranking_stats().ranked_leads == 5
        assert set(store.get_rank_map().values()) == {4}

    def test_no_leads_is_run_fatal(self, make_orchestrator):
        orchestrator, llm = make_orchestrator()
        with pytest.raises(ValueError):
            asyncio.run(orchestrator.run(AIProvider.openai, "batch_1"))
        progress = orchestrator.get_progress("batch_1")
        assert progress.status == "error"
        assert "No leads" in progress.error
        assert llm.calls == []


class TestSessionOverride:
    def test_override_is_used_and_changes_recorded(self, store, seeded_leads, sessions, make_orchestrator):
        store.insert_prompt(version=4, content="CANONICAL", is_active=True)
        orchestrator, _ = make_orchestrator()
        asyncio.run(orchestrator.run(AIProvider.openai, "batch_1"))
        before = store.get_rank_map()

        # the optimized prompt makes everyone rank 5
        def optimized(prompt, options):
            if prompt.startswith("OPTIMIZED"):
                return rankings_json({lead_id: 5 for lead_id, _, _ in leads_in_prompt(prompt)})
            return title_ranker(prompt, options)

        orchestrator.llm.responder = optimized
        sessions.set_optimized_prompt("s1", "OPTIMIZED")
        asyncio.run(orchestrator.run(AIProvider.openai, "batch_2", session_id="s1"))

        after = store.get_rank_map()
        assert set(after.values()) == {5}
        changes = sessions.get_ranking_changes("s1")
        assert {c.lead_id for c in changes} == {lead_id for lead_id, rank in before.items() if rank != 5}
        assert all(c.new_rank == 5 for c in changes)
        assert sessions.has_pending_optimization("s1") is False

    def test_override_keeps_canonical_version_on_rows(self, store, seeded_leads, sessions, make_orchestrator):
        store.insert_prompt(version=4, content="CANONICAL", is_active=True)
        sessions.set_optimized_prompt("s1", "OPTIMIZED")
        orchestrator, llm = make_orchestrator()
        asyncio.run(orchestrator.run(AIProvider.openai, "batch_1", session_id="s1"))
        assert all(prompt.startswith("OPTIMIZED") for _, prompt, _ in llm.calls)
        assert store.get_active_prompt_with_version().version == 4

    def test_no_changes_without_pending_flag(self, store, seeded_leads, sessions, make_orchestrator):
        orchestrator, _ = make_orchestrator()
        asyncio.run(orchestrator.run(AIProvider.openai, "batch_1", session_id="s1"))
        assert sessions.get_ranking_changes("s1") == []
