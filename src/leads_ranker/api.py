from typing import Literal

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from leads_ranker.config import ProviderNotConfiguredError
from leads_ranker.csv_io import parse_eval_set
from leads_ranker.models import (
    AIProvider,
    EvalSetStats,
    LeadPage,
    OptimizationConfig,
    OptimizationProgress,
    PromptSummary,
    RankingChange,
    RankingProgress,
    RankingStats,
)
from leads_ranker.service import RankerService, RankingInProgressError


class StartRankingRequest(BaseModel):
    provider: AIProvider | None = None
    session_id: str | None = None


class StartRankingResponse(BaseModel):
    batch_id: str


class StartOptimizationRequest(BaseModel):
    provider: AIProvider | None = None
    population_size: int = Field(default=6, ge=3, le=20)
    generations: int = Field(default=5, ge=1, le=20)
    sample_size: int = Field(default=30, ge=10, le=100)

    def to_config(self) -> OptimizationConfig:
        return OptimizationConfig(
            population_size=self.population_size,
            generations=self.generations,
            sample_size=self.sample_size,
        )


class StartSessionOptimizationRequest(StartOptimizationRequest):
    session_id: str = Field(min_length=1)
    csv: str = Field(min_length=1, description="Eval set CSV (Full Name, Title, Company, LI, Employee Range, Rank)")


class StartOptimizationResponse(BaseModel):
    run_id: str


class ActivateRequest(BaseModel):
    version: int


class ImportLeadsRequest(BaseModel):
    csv: str = Field(min_length=1)


class ProvidersResponse(BaseModel):
    available: list[AIProvider]
    default: AIProvider


def _raise_http(exc: Exception):
    if isinstance(exc, RankingInProgressError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, (LookupError, FileNotFoundError)):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise exc


def create_app(service: RankerService | None = None) -> FastAPI:
    service = service or RankerService.from_settings()
    app = FastAPI(title="Leads Ranker", description="LLM lead ranking with genetic prompt optimization")

    # Routes that hit the database are plain `def` so they run in the threadpool,
    # off the loop that drives ranking and optimization runs.

    @app.on_event("startup")
    async def startup():
        service.store.create_schema()

    @app.get("/")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "leads-ranker"}

    # ─────────────────────────────────────────────────────────────────────────────
    # Ranking
    # ─────────────────────────────────────────────────────────────────────────────

    @app.post("/ranking/start", response_model=StartRankingResponse)
    async def start_ranking(body: StartRankingRequest):
        """Start ranking all leads in the background and return the batch id to poll."""
        try:
            batch_id = service.start_ranking(body.provider, body.session_id)
        except (ProviderNotConfiguredError, RankingInProgressError) as e:
            _raise_http(e)
        return StartRankingResponse(batch_id=batch_id)

    @app.get("/ranking/progress/{batch_id}", response_model=RankingProgress)
    async def ranking_progress(batch_id: str):
        return service.get_ranking_progress(batch_id)

    @app.get("/ranking/providers", response_model=ProvidersResponse)
    async def providers():
        return ProvidersResponse(available=service.available_providers(), default=service.settings.ai_provider)

    # ─────────────────────────────────────────────────────────────────────────────
    # Prompt optimizer
    # ─────────────────────────────────────────────────────────────────────────────

    @app.post("/optimizer/start", response_model=StartOptimizationResponse)
    async def start_optimization(body: StartOptimizationRequest):
        """Optimize the active prompt against the configured eval set file."""
        try:
            eval_leads = service.load_eval_set()
            run_id = service.start_optimization(eval_leads, body.provider, body.to_config())
        except (ValueError, FileNotFoundError) as e:
            _raise_http(e)
        return StartOptimizationResponse(run_id=run_id)

    @app.post("/optimizer/start-session", response_model=StartOptimizationResponse)
    async def start_session_optimization(body: StartSessionOptimizationRequest):
        """Optimize against an uploaded eval set; the result only applies to this session."""
        try:
            eval_leads = parse_eval_set(body.csv)
            run_id = service.start_session_optimization(eval_leads, body.session_id, body.provider, body.to_config())
        except ValueError as e:
            _raise_http(e)
        return StartOptimizationResponse(run_id=run_id)

    @app.get("/optimizer/progress/{run_id}", response_model=OptimizationProgress)
    async def optimization_progress(run_id: str):
        return service.get_optimization_progress(run_id)

    @app.get("/optimizer/history", response_model=list[PromptSummary])
    def optimization_history():
        return service.get_optimization_history()

    @app.post("/optimizer/activate")
    def activate(body: ActivateRequest):
        try:
            service.activate_prompt(body.version)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        return {"success": True}

    @app.get("/optimizer/eval-set", response_model=EvalSetStats)
    def eval_set_info():
        try:
            return service.eval_set_info()
        except FileNotFoundError as e:
            _raise_http(e)

    # ─────────────────────────────────────────────────────────────────────────────
    # Leads
    # ─────────────────────────────────────────────────────────────────────────────

    @app.get("/leads", response_model=LeadPage)
    def list_leads(
        page: int = Query(1, ge=1),
        page_size: int = Query(50, ge=1, le=100),
        sort_by: Literal["rank", "name", "company"] = "rank",
        sort_order: Literal["asc", "desc"] = "asc",
        show_irrelevant: bool = True,
    ):
        return service.list_leads(
            page=page,
            page_size=page_size,
            sort_by=sort_by,
            sort_order=sort_order,
            show_irrelevant=show_irrelevant,
        )

    @app.get("/leads/stats", response_model=RankingStats)
    def lead_stats(session_id: str | None = None):
        return service.stats(session_id)

    @app.post("/leads/import")
    def import_leads(body: ImportLeadsRequest):
        """Replace all leads (and their rankings) with the uploaded CSV."""
        try:
            imported = service.import_leads(body.csv)
        except ValueError as e:
            _raise_http(e)
        return {"imported": imported}

    @app.post("/leads/test-data")
    def load_test_data():
        try:
            loaded = service.load_test_data()
        except FileNotFoundError as e:
            _raise_http(e)
        return {"leads_loaded": loaded}

    @app.delete("/leads")
    def clear_all():
        service.clear_all()
        return {"success": True}

    # ─────────────────────────────────────────────────────────────────────────────
    # Export and sessions
    # ─────────────────────────────────────────────────────────────────────────────

    @app.get("/export/top", response_class=PlainTextResponse)
    def export_top(top_n: int = Query(5, ge=1, le=50)):
        return PlainTextResponse(
            service.export_top_leads(top_n),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="top_leads.csv"'},
        )

    @app.get("/sessions/{session_id}/ranking-changes", response_model=list[RankingChange])
    async def session_ranking_changes(session_id: str):
        return service.get_session_ranking_changes(session_id)

    return app
