"""
SQLAlchemy-backed persistence for leads, rankings, prompt versions and AI call costs.

Every public method opens its own session and commits before returning; errors
roll back and propagate to the caller.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from contextlib import contextmanager

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from leads_ranker.db.database import Base, make_engine, make_session_factory
from leads_ranker.db.tables import AiCallLog, LeadRow, PromptRow, RankingRow
from leads_ranker.models import (
    ActivePrompt,
    AiCallStats,
    LeadForRanking,
    LeadImportRow,
    LeadPage,
    Pagination,
    PromptSummary,
    RankedLeadView,
    RankingResult,
    RankingStats,
)
from leads_ranker.prompts import DEFAULT_PROMPT

logger = logging.getLogger(__name__)

IMPORT_BATCH_SIZE = 50
SORT_FIELDS = ("rank", "name", "company")


def relevance_score(rank: int | None) -> float:
    """Map rank 1-10 onto 1.0-0.1; unranked leads score 0."""
    return (11 - rank) / 10 if rank is not None else 0.0


def _lead_from_row(row: LeadRow) -> LeadForRanking:
    return LeadForRanking(
        id=row.id,
        first_name=row.first_name,
        last_name=row.last_name,
        job_title=row.job_title,
        company_name=row.account_name,
        employee_range=row.employee_range,
        industry=row.industry,
    )


def _view_from_row(lead: LeadRow, ranking: RankingRow | None) -> RankedLeadView:
    return RankedLeadView(
        id=lead.id,
        first_name=lead.first_name,
        last_name=lead.last_name,
        job_title=lead.job_title,
        company_name=lead.account_name,
        account_domain=lead.account_domain,
        employee_range=lead.employee_range,
        industry=lead.industry,
        rank=ranking.rank if ranking else None,
        reasoning=ranking.reasoning if ranking else None,
        relevance_score=ranking.relevance_score if ranking else None,
    )


class LeadStore:
    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = make_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: str) -> LeadStore:
        return cls(make_engine(database_url))

    @contextmanager
    def session(self):
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    def list_leads_for_ranking(self) -> list[LeadForRanking]:
        with self.session() as s:
            rows = s.scalars(select(LeadRow)).all()
            return [_lead_from_row(row) for row in rows]

    def replace_leads(self, rows: Sequence[LeadImportRow]) -> int:
        """Delete all rankings and leads, then insert `rows` in batches."""
        with self.session() as s:
            s.query(RankingRow).delete()
            s.query(LeadRow).delete()
            for start in range(0, len(rows), IMPORT_BATCH_SIZE):
                s.add_all(
                    LeadRow(
                        account_name=row.account_name,
                        first_name=row.first_name,
                        last_name=row.last_name,
                        job_title=row.job_title,
                        account_domain=row.account_domain,
                        employee_range=row.employee_range,
                        industry=row.industry,
                    )
                    for row in rows[start : start + IMPORT_BATCH_SIZE]
                )
                s.flush()
        logger.info("Imported %d leads", len(rows))
        return len(rows)

    # ------------------------------------------------------------------
    # Rankings
    # ------------------------------------------------------------------

    def clear_rankings(self) -> None:
        with self.session() as s:
            s.query(RankingRow).delete()

    def insert_rankings(self, results: Iterable[RankingResult], prompt_version: int) -> int:
        rows = [
            RankingRow(
                lead_id=r.lead_id,
                rank=r.rank,
                relevance_score=relevance_score(r.rank),
                reasoning=r.reasoning,
                prompt_version=prompt_version,
            )
            for r in results
        ]
        if not rows:
            return 0
        with self.session() as s:
            s.add_all(rows)
        return len(rows)

    def get_rank_map(self) -> dict[str, int | None]:
        with self.session() as s:
            return {lead_id: rank for lead_id, rank in s.execute(select(RankingRow.lead_id, RankingRow.rank))}

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def max_prompt_version(self) -> int:
        with self.session() as s:
            return s.scalar(select(func.max(PromptRow.version))) or 0

    def get_active_prompt_with_version(self) -> ActivePrompt:
        """
        Return the active prompt, creating the default one if none is active.

        The created row takes the next unused version so versions are never reused.
        """
        with self.session() as s:
            row = s.scalars(
                select(PromptRow).where(PromptRow.is_active.is_(True)).order_by(PromptRow.version.desc()).limit(1)
            ).first()
            if row is not None:
                return ActivePrompt(content=row.content, version=row.version)

            version = (s.scalar(select(func.max(PromptRow.version))) or 0) + 1
            s.add(PromptRow(version=version, content=DEFAULT_PROMPT, is_active=True, generation=0))
            logger.info("No active prompt found, created default prompt v%d", version)
            return ActivePrompt(content=DEFAULT_PROMPT, version=version)

    def get_active_prompt(self) -> str:
        return self.get_active_prompt_with_version().content

    def insert_prompt(
        self,
        *,
        version: int,
        content: str,
        eval_score: float | None = None,
        is_active: bool = False,
        generation: int | None = None,
        parent_version: int | None = None,
    ) -> None:
        with self.session() as s:
            s.add(
                PromptRow(
                    version=version,
                    content=content,
                    eval_score=eval_score,
                    is_active=is_active,
                    generation=generation,
                    parent_version=parent_version,
                )
            )

    def prompt_exists(self, version: int) -> bool:
        with self.session() as s:
            return s.scalar(select(PromptRow.id).where(PromptRow.version == version)) is not None

    def activate_prompt(self, version: int) -> None:
        """Make `version` the only active prompt. Raises ValueError if it does not exist."""
        with self.session() as s:
            target = s.scalars(select(PromptRow).where(PromptRow.version == version)).first()
            if target is None:
                raise ValueError(f"Prompt version {version} not found")
            s.query(PromptRow).update({PromptRow.is_active: False})
            target.is_active = True
        logger.info("Activated prompt v%d", version)

    def list_prompt_history(self) -> list[PromptSummary]:
        with self.session() as s:
            rows = s.scalars(select(PromptRow).order_by(PromptRow.version.desc())).all()
            return [
                PromptSummary(
                    version=row.version,
                    eval_score=row.eval_score,
                    is_active=bool(row.is_active),
                    generation=row.generation,
                    parent_version=row.parent_version,
                    created_at=row.created_at.isoformat() if row.created_at else None,
                )
                for row in rows
            ]

    # ------------------------------------------------------------------
    # AI call costs
    # ------------------------------------------------------------------

    def log_ai_call(
        self,
        *,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cost: float,
        duration_ms: int,
        batch_id: str | None,
        prompt_version: int | None = None,
    ) -> None:
        with self.session() as s:
            s.add(
                AiCallLog(
                    provider=provider,
                    model=model,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    cost=cost,
                    duration_ms=duration_ms,
                    batch_id=batch_id,
                    prompt_version=prompt_version,
                )
            )

    def ai_call_stats(self, batch_ids: Sequence[str] | None = None) -> AiCallStats:
        """Aggregate call costs, restricted to `batch_ids` when given (an empty list matches nothing)."""
        stmt = select(
            func.count(AiCallLog.id),
            func.coalesce(func.sum(AiCallLog.cost), 0.0),
            func.coalesce(func.sum(AiCallLog.input_tokens), 0),
            func.coalesce(func.sum(AiCallLog.output_tokens), 0),
            func.coalesce(func.avg(AiCallLog.duration_ms), 0.0),
        )
        if batch_ids is not None:
            if not batch_ids:
                return AiCallStats()
            stmt = stmt.where(AiCallLog.batch_id.in_(list(batch_ids)))
        with self.session() as s:
            calls, cost, input_tokens, output_tokens, avg_duration = s.execute(stmt).one()
        return AiCallStats(
            total_calls=int(calls or 0),
            total_cost=float(cost or 0),
            total_input_tokens=int(input_tokens or 0),
            total_output_tokens=int(output_tokens or 0),
            avg_duration_ms=float(avg_duration or 0),
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def ranking_stats(self, batch_ids: Sequence[str] | None = None) -> RankingStats:
        with self.session() as s:
            total_leads = s.scalar(select(func.count(LeadRow.id))) or 0
            ranked = s.scalar(select(func.count(RankingRow.id))) or 0
            relevant = s.scalar(select(func.count(RankingRow.id)).where(RankingRow.rank.is_not(None))) or 0
        return RankingStats(
            total_leads=total_leads,
            ranked_leads=ranked,
            relevant_leads=relevant,
            irrelevant_leads=ranked - relevant,
            ai_calls=self.ai_call_stats(batch_ids),
        )

    def leads_with_rankings(
        self,
        *,
        page: int = 1,
        page_size: int = 50,
        sort_by: str = "rank",
        sort_order: str = "asc",
        show_irrelevant: bool = True,
    ) -> LeadPage:
        if sort_by not in SORT_FIELDS:
            raise ValueError(f"sort_by must be one of {', '.join(SORT_FIELDS)}")
        if sort_order not in ("asc", "desc"):
            raise ValueError("sort_order must be 'asc' or 'desc'")
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")

        descending = sort_order == "desc"
        if sort_by == "rank":
            # Unranked leads sort last in either direction
            key = func.coalesce(RankingRow.rank, -1 if descending else 999)
        elif sort_by == "company":
            key = LeadRow.account_name
        else:
            key = LeadRow.last_name
        order = key.desc() if descending else key.asc()

        stmt = select(LeadRow, RankingRow).outerjoin(RankingRow, RankingRow.lead_id == LeadRow.id)
        count_stmt = select(func.count()).select_from(LeadRow).outerjoin(RankingRow, RankingRow.lead_id == LeadRow.id)
        if not show_irrelevant:
            stmt = stmt.where(RankingRow.rank.is_not(None))
            count_stmt = count_stmt.where(RankingRow.rank.is_not(None))

        with self.session() as s:
            total_count = s.scalar(count_stmt) or 0
            rows = s.execute(stmt.order_by(order, LeadRow.id).limit(page_size).offset((page - 1) * page_size)).all()
            leads = [_view_from_row(lead, ranking) for lead, ranking in rows]

        return LeadPage(
            leads=leads,
            pagination=Pagination(
                page=page,
                page_size=page_size,
                total_count=total_count,
                total_pages=math.ceil(total_count / page_size),
            ),
        )

    def top_leads_per_company(self, top_n: int = 5) -> list[RankedLeadView]:
        """Best `top_n` ranked leads of every company, sorted by company then rank."""
        if top_n < 1:
            raise ValueError("top_n must be at least 1")
        stmt = (
            select(LeadRow, RankingRow)
            .join(RankingRow, RankingRow.lead_id == LeadRow.id)
            .where(RankingRow.rank.is_not(None))
            .order_by(RankingRow.rank.asc())
        )
        per_company: dict[str, list[RankedLeadView]] = {}
        with self.session() as s:
            for lead, ranking in s.execute(stmt):
                kept = per_company.setdefault(lead.account_name, [])
                if len(kept) < top_n:
                    kept.append(_view_from_row(lead, ranking))
        flat = [view for views in per_company.values() for view in views]
        return sorted(flat, key=lambda v: (v.company_name, v.rank))

    # ------------------------------------------------------------------
    # Bulk resets
    # ------------------------------------------------------------------

    def load_test_data(self, rows: Sequence[LeadImportRow]) -> int:
        """Replace leads with `rows` and reset prompts to the default as active v1."""
        count = self.replace_leads(rows)
        with self.session() as s:
            s.query(PromptRow).delete()
            s.add(PromptRow(version=1, content=DEFAULT_PROMPT, is_active=True, generation=0))
        return count

    def clear_all(self) -> None:
        with self.session() as s:
            s.query(AiCallLog).delete()
            s.query(RankingRow).delete()
            s.query(LeadRow).delete()
            s.query(PromptRow).delete()
        logger.info("Cleared all leads, rankings, prompts and AI call logs")
