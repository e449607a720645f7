from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

RunStatus = Literal["idle", "running", "completed", "error"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "error"})


class AIProvider(str, Enum):
    openai = "openai"
    anthropic = "anthropic"
    gemini = "gemini"


class LeadForRanking(BaseModel):
    """Snapshot of a lead row as read at the start of a ranking run."""

    model_config = ConfigDict(frozen=True)

    id: str
    first_name: str
    last_name: str
    job_title: str
    company_name: str
    employee_range: str | None = None
    industry: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class LeadImportRow(BaseModel):
    """A lead parsed from an import CSV, before it has an id."""

    account_name: str
    first_name: str
    last_name: str
    job_title: str
    account_domain: str | None = None
    employee_range: str | None = None
    industry: str | None = None


class RankingResult(BaseModel):
    lead_id: str
    rank: int | None = Field(description="1-10, lower is better; None when irrelevant or unparseable")
    reasoning: str = ""


class RankingProgress(BaseModel):
    total: int = 0
    completed: int = 0
    current_company: str | None = None
    status: RunStatus = "idle"
    error: str | None = None


class RankingChange(BaseModel):
    lead_id: str
    full_name: str
    company: str
    old_rank: int | None
    new_rank: int | None


class EvalLead(BaseModel):
    """One human-labelled row of the evaluation set."""

    model_config = ConfigDict(frozen=True)

    full_name: str
    title: str
    company: str
    linkedin_url: str = ""
    employee_range: str = ""
    expected_rank: int | None = Field(default=None, description="None means the lead is irrelevant")


class EvalSetStats(BaseModel):
    total_leads: int
    relevant_leads: int
    irrelevant_leads: int
    unique_companies: int

    @classmethod
    def from_leads(cls, eval_leads: list[EvalLead]) -> EvalSetStats:
        relevant = sum(1 for lead in eval_leads if lead.expected_rank is not None)
        return cls(
            total_leads=len(eval_leads),
            relevant_leads=relevant,
            irrelevant_leads=len(eval_leads) - relevant,
            unique_companies=len({lead.company for lead in eval_leads}),
        )


class ActivePrompt(BaseModel):
    content: str
    version: int


class PromptCandidate(BaseModel):
    content: str
    version: int
    fitness: float = 0.0
    generation: int = 0
    parent_version: int | None = None


class PromptSummary(BaseModel):
    version: int
    eval_score: float | None = None
    is_active: bool = False
    generation: int | None = None
    parent_version: int | None = None
    created_at: str | None = None


class OptimizationConfig(BaseModel):
    """Genetic-algorithm knobs for a prompt optimization run."""

    population_size: int = Field(default=6, ge=3, le=20)
    generations: int = Field(default=5, ge=1, le=20)
    sample_size: int = Field(default=30, ge=10, le=100)
    mutation_rate: float = Field(default=0.7, ge=0.0, le=1.0)
    elite_count: int = Field(default=2, ge=0)
    tournament_size: Literal[3] = 3


class OptimizationProgress(BaseModel):
    status: RunStatus = "idle"
    current_generation: int = 0
    total_generations: int = 0
    population_size: int = 0
    best_fitness: float = 0.0
    current_best_prompt_preview: str | None = None
    evaluations_run: int = 0
    error: str | None = None


class AiCallStats(BaseModel):
    total_calls: int = 0
    total_cost: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    avg_duration_ms: float = 0.0


class RankingStats(BaseModel):
    total_leads: int
    ranked_leads: int
    relevant_leads: int
    irrelevant_leads: int
    ai_calls: AiCallStats


class RankedLeadView(BaseModel):
    """A lead joined with its current ranking (if any), as shown in lists and exports."""

    id: str
    first_name: str
    last_name: str
    job_title: str
    company_name: str
    account_domain: str | None = None
    employee_range: str | None = None
    industry: str | None = None
    rank: int | None = None
    reasoning: str | None = None
    relevance_score: float | None = None


class Pagination(BaseModel):
    page: int
    page_size: int
    total_count: int
    total_pages: int


class LeadPage(BaseModel):
    leads: list[RankedLeadView]
    pagination: Pagination
