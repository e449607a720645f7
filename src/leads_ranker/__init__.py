"""leads-ranker: LLM lead ranking with genetic prompt optimization."""

__version__ = "0.1.0"

from leads_ranker.models import (
    AIProvider,
    EvalLead,
    LeadForRanking,
    OptimizationConfig,
    PromptCandidate,
    RankingResult,
)

__all__ = [
    "AIProvider",
    "EvalLead",
    "LeadForRanking",
    "OptimizationConfig",
    "PromptCandidate",
    "RankingResult",
    "__version__",
]
