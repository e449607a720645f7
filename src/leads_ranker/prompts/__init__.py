from leads_ranker.prompts.builder import build_crossover_prompt, build_mutation_prompt, build_ranking_prompt
from leads_ranker.prompts.prompts import DEFAULT_PROMPT, EXPLORATION_HINT

__all__ = [
    "DEFAULT_PROMPT",
    "EXPLORATION_HINT",
    "build_crossover_prompt",
    "build_mutation_prompt",
    "build_ranking_prompt",
]
