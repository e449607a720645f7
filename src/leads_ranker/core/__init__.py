from leads_ranker.core.optimizer import PromptOptimizer
from leads_ranker.core.ranking import RankingOrchestrator

__all__ = ["PromptOptimizer", "RankingOrchestrator"]
