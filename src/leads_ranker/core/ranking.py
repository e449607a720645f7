"""
Batch ranking: rank every lead, one LLM call per company, with live progress.

A run is identified by its batch id. Progress lives in a ProgressStore so request
handlers can poll it while the run task is still going.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence

from leads_ranker.db.store import LeadStore
from leads_ranker.llm import ChatMessage, ChatOptions, LLMClient
from leads_ranker.models import ActivePrompt, AIProvider, LeadForRanking, RankingChange, RankingProgress, RankingResult
from leads_ranker.parsing import parse_ranking_response
from leads_ranker.progress import ProgressStore
from leads_ranker.prompts import build_ranking_prompt
from leads_ranker.session import SessionStore
from leads_ranker.telemetry import logfire_span

logger = logging.getLogger(__name__)

RANKING_TEMPERATURE = 0.2
MIN_RANKING_TOKENS = 4096


def ranking_max_tokens(lead_count: int) -> int:
    """Output budget large enough that big companies do not get truncated JSON."""
    return max(MIN_RANKING_TOKENS, 400 + 220 * lead_count)


def group_by_company(leads: Sequence[LeadForRanking]) -> dict[str, list[LeadForRanking]]:
    """Group leads by company name, keeping first-seen order."""
    groups: dict[str, list[LeadForRanking]] = {}
    for lead in leads:
        groups.setdefault(lead.company_name, []).append(lead)
    return groups


def select_prompt_for_ranking(active: ActivePrompt, override: str | None = None) -> ActivePrompt:
    """Swap in a session override while keeping the canonical version number."""
    if override is None:
        return active
    return ActivePrompt(content=override, version=active.version)


def build_ranking_changes(
    old_ranks: Mapping[str, int | None],
    leads: Sequence[LeadForRanking],
    results: Sequence[RankingResult],
) -> list[RankingChange]:
    """Per-lead rank deltas between two runs; unchanged leads are left out."""
    by_id = {lead.id: lead for lead in leads}
    changes: list[RankingChange] = []
    for result in results:
        old_rank = old_ranks.get(result.lead_id)
        if old_rank == result.rank:
            continue
        lead = by_id.get(result.lead_id)
        changes.append(
            RankingChange(
                lead_id=result.lead_id,
                full_name=lead.full_name if lead else "",
                company=lead.company_name if lead else "",
                old_rank=old_rank,
                new_rank=result.rank,
            )
        )
    return changes


class RankingOrchestrator:
    def __init__(
        self,
        store: LeadStore,
        llm: LLMClient,
        progress: ProgressStore[RankingProgress],
        sessions: SessionStore,
    ):
        self.store = store
        self.llm = llm
        self.progress = progress
        self.sessions = sessions

    def get_progress(self, batch_id: str) -> RankingProgress:
        return self.progress.get(batch_id)

    async def rank_company(
        self,
        provider: AIProvider,
        prompt: ActivePrompt,
        company_leads: Sequence[LeadForRanking],
        batch_id: str,
    ) -> list[RankingResult]:
        """Rank one company's leads with a single LLM call and log its cost."""
        request = build_ranking_prompt(prompt.content, company_leads)
        response = await self.llm.chat(
            provider,
            [ChatMessage(role="user", content=request)],
            ChatOptions(
                temperature=RANKING_TEMPERATURE,
                max_tokens=ranking_max_tokens(len(company_leads)),
                json_mode=True,
            ),
        )
        await asyncio.to_thread(
            self.store.log_ai_call,
            provider=response.provider.value,
            model=response.model,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            cost=response.cost,
            duration_ms=response.duration_ms,
            batch_id=batch_id,
            prompt_version=prompt.version,
        )
        return parse_ranking_response(response.content, [lead.id for lead in company_leads])

    async def run(self, provider: AIProvider, batch_id: str, session_id: str | None = None) -> list[RankingResult]:
        """
        Re-rank every lead, replacing all existing rankings.

        A failing company is logged and skipped; anything else marks the run as
        errored and is re-raised.
        """
        with logfire_span("rank_all_leads", batch_id=batch_id, provider=provider.value, session_id=session_id):
            try:
                leads = await asyncio.to_thread(self.store.list_leads_for_ranking)
                if not leads:
                    raise ValueError("No leads to rank. Import leads first.")
                self.progress.update(batch_id, total=len(leads), completed=0, status="running", error=None)

                active = await asyncio.to_thread(self.store.get_active_prompt_with_version)
                prompt = select_prompt_for_ranking(active, self.sessions.get_optimized_prompt(session_id))
                old_ranks = None
                if self.sessions.has_pending_optimization(session_id):
                    old_ranks = await asyncio.to_thread(self.store.get_rank_map)

                await asyncio.to_thread(self.store.clear_rankings)

                groups = group_by_company(leads)
                logger.info(
                    "Ranking %d leads across %d companies with %s (prompt v%d)",
                    len(leads),
                    len(groups),
                    provider.value,
                    prompt.version,
                )

                all_results: list[RankingResult] = []
                completed = 0
                for company, company_leads in groups.items():
                    self.progress.update(batch_id, current_company=company)
                    try:
                        with logfire_span("rank_company", company=company, leads=len(company_leads)):
                            results = await self.rank_company(provider, prompt, company_leads, batch_id)
                        await asyncio.to_thread(self.store.insert_rankings, results, prompt.version)
                        all_results.extend(results)
                    except Exception:
                        logger.exception("Ranking failed for company %s", company)
                    completed += len(company_leads)
                    self.progress.update(batch_id, completed=completed)

                self.progress.update(batch_id, status="completed", current_company=None)

                if old_ranks is not None:
                    changes = build_ranking_changes(old_ranks, leads, all_results)
                    self.sessions.set_ranking_changes(session_id, changes)
                    logger.info("Session %s: %d ranking changes", session_id, len(changes))

                return all_results
            except Exception as e:
                self.progress.update(batch_id, status="error", error=str(e))
                raise
