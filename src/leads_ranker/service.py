"""
Caller-facing operations shared by the HTTP API and the CLI.

Ranking and optimization runs are started as background asyncio tasks; the
start_* methods validate synchronously and return the run id straight away.
Callers follow a run by polling its progress.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Sequence
from pathlib import Path

from leads_ranker.config import Settings, get_settings
from leads_ranker.core.optimizer import PromptOptimizer
from leads_ranker.core.ranking import RankingOrchestrator
from leads_ranker.csv_io import export_top_leads_csv, parse_eval_set, parse_leads_csv
from leads_ranker.db.store import LeadStore
from leads_ranker.llm import LLMClient
from leads_ranker.models import (
    AIProvider,
    EvalLead,
    EvalSetStats,
    LeadPage,
    OptimizationConfig,
    OptimizationProgress,
    PromptSummary,
    RankingChange,
    RankingProgress,
    RankingStats,
)
from leads_ranker.progress import ProgressStore, optimization_progress_store, ranking_progress_store
from leads_ranker.session import SessionStore

logger = logging.getLogger(__name__)


class RankingInProgressError(RuntimeError):
    """Raised when a ranking run is requested while another one is still running."""


class RankerService:
    def __init__(
        self,
        settings: Settings,
        store: LeadStore,
        llm: LLMClient,
        ranking_progress: ProgressStore[RankingProgress] | None = None,
        optimization_progress: ProgressStore[OptimizationProgress] | None = None,
        sessions: SessionStore | None = None,
    ):
        self.settings = settings
        self.store = store
        self.llm = llm
        self.ranking_progress = ranking_progress or ranking_progress_store()
        self.optimization_progress = optimization_progress or optimization_progress_store()
        self.sessions = sessions or SessionStore()
        self.ranking = RankingOrchestrator(store, llm, self.ranking_progress, self.sessions)
        self.optimizer = PromptOptimizer(store, llm, self.optimization_progress, self.sessions)
        self._tasks: dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RankerService:
        settings = settings or get_settings()
        store = LeadStore.from_url(settings.database_url)
        store.create_schema()
        return cls(settings, store, LLMClient(settings))

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _spawn(self, run_id: str, coro) -> None:
        task = asyncio.create_task(coro, name=run_id)
        self._tasks[run_id] = task
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.pop(task.get_name(), None)
        if task.cancelled():
            logger.warning("Run %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Run %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def wait_for(self, run_id: str) -> None:
        """Wait for a background run to finish; its outcome is read from progress."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait([task])

    def _resolve_provider(self, provider: AIProvider | None) -> AIProvider:
        provider = provider or self.settings.ai_provider
        self.llm.require(provider)
        return provider

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def start_ranking(self, provider: AIProvider | None = None, session_id: str | None = None) -> str:
        provider = self._resolve_provider(provider)
        if self.ranking_progress.is_running():
            raise RankingInProgressError("A ranking run is already in progress")

        batch_id = f"batch_{uuid.uuid4()}"
        self.sessions.register_batch_id(session_id, batch_id)
        self.ranking_progress.update(batch_id, status="running")
        self._spawn(batch_id, self.ranking.run(provider, batch_id, session_id))
        logger.info("Started ranking run %s with %s", batch_id, provider.value)
        return batch_id

    def get_ranking_progress(self, batch_id: str) -> RankingProgress:
        return self.ranking.get_progress(batch_id)

    def available_providers(self) -> list[AIProvider]:
        return self.llm.available_providers()

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    def load_eval_set(self, path: Path | None = None) -> list[EvalLead]:
        path = Path(path or self.settings.eval_set_path)
        if not path.is_file():
            raise FileNotFoundError(f"Eval set not found: {path}")
        return parse_eval_set(path.read_text(encoding="utf-8"))

    def eval_set_info(self, path: Path | None = None) -> EvalSetStats:
        return EvalSetStats.from_leads(self.load_eval_set(path))

    def start_optimization(
        self,
        eval_leads: Sequence[EvalLead],
        provider: AIProvider | None = None,
        config: OptimizationConfig | None = None,
    ) -> str:
        provider = self._resolve_provider(provider)
        if not eval_leads:
            raise ValueError("Eval set has no usable rows")

        run_id = f"opt_{uuid.uuid4()}"
        config = config or OptimizationConfig()
        self.optimization_progress.update(
            run_id,
            status="running",
            total_generations=config.generations,
            population_size=config.population_size,
        )
        self._spawn(run_id, self.optimizer.run(list(eval_leads), provider, run_id, config))
        logger.info("Started optimization run %s with %s", run_id, provider.value)
        return run_id

    def start_session_optimization(
        self,
        eval_leads: Sequence[EvalLead],
        session_id: str,
        provider: AIProvider | None = None,
        config: OptimizationConfig | None = None,
    ) -> str:
        provider = self._resolve_provider(provider)
        if not session_id:
            raise ValueError("session_id is required")
        if not eval_leads:
            raise ValueError("Eval set has no usable rows")

        run_id = f"opt_{uuid.uuid4()}"
        config = config or OptimizationConfig()
        self.sessions.register_batch_id(session_id, run_id)
        self.optimization_progress.update(
            run_id,
            status="running",
            total_generations=config.generations,
            population_size=config.population_size,
        )
        self._spawn(run_id, self.optimizer.run_session(list(eval_leads), provider, run_id, session_id, config))
        logger.info("Started session optimization %s for session %s", run_id, session_id)
        return run_id

    def get_optimization_progress(self, run_id: str) -> OptimizationProgress:
        return self.optimizer.get_progress(run_id)

    def get_optimization_history(self) -> list[PromptSummary]:
        return self.store.list_prompt_history()

    def activate_prompt(self, version: int) -> None:
        self.store.activate_prompt(version)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session_ranking_changes(self, session_id: str) -> list[RankingChange]:
        return self.sessions.get_ranking_changes(session_id)

    def has_pending_optimization(self, session_id: str) -> bool:
        return self.sessions.has_pending_optimization(session_id)

    # ------------------------------------------------------------------
    # Leads, stats and export
    # ------------------------------------------------------------------

    def import_leads(self, csv_content: str) -> int:
        rows = parse_leads_csv(csv_content)
        if not rows:
            raise ValueError(
                "CSV has no data rows. Expected header: account_name, lead_first_name, lead_last_name, "
                "lead_job_title, account_domain, account_employee_range, account_industry"
            )
        return self.store.replace_leads(rows)

    def load_test_data(self, path: Path | None = None) -> int:
        path = Path(path or self.settings.leads_csv_path)
        if not path.is_file():
            raise FileNotFoundError(f"Leads CSV not found: {path}")
        rows = parse_leads_csv(path.read_text(encoding="utf-8"))
        return self.store.load_test_data(rows)

    def clear_all(self) -> None:
        self.store.clear_all()

    def list_leads(
        self,
        *,
        page: int = 1,
        page_size: int = 50,
        sort_by: str = "rank",
        sort_order: str = "asc",
        show_irrelevant: bool = True,
    ) -> LeadPage:
        return self.store.leads_with_rankings(
            page=page,
            page_size=page_size,
            sort_by=sort_by,
            sort_order=sort_order,
            show_irrelevant=show_irrelevant,
        )

    def stats(self, session_id: str | None = None) -> RankingStats:
        """Ranking counts; AI costs are limited to the session's runs when a session is given."""
        batch_ids = self.sessions.get_batch_ids(session_id) if session_id else None
        return self.store.ranking_stats(batch_ids)

    def export_top_leads(self, top_n: int = 5) -> str:
        return export_top_leads_csv(self.store.top_leads_per_company(top_n))
