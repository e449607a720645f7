"""
Genetic prompt optimizer.

Evolves variants of the active ranking prompt and scores each one by ranking a
sample of the labelled eval set. Mutation and crossover are themselves LLM calls.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass

from leads_ranker.core.ranking import group_by_company
from leads_ranker.db.store import LeadStore
from leads_ranker.fitness import Prediction, analyze_errors, calculate_fitness
from leads_ranker.llm import ChatMessage, ChatOptions, ChatResponse, LLMClient
from leads_ranker.models import (
    AIProvider,
    EvalLead,
    LeadForRanking,
    OptimizationConfig,
    OptimizationProgress,
    PromptCandidate,
)
from leads_ranker.parsing import parse_ranking_response
from leads_ranker.progress import ProgressStore
from leads_ranker.prompts import EXPLORATION_HINT, build_crossover_prompt, build_mutation_prompt, build_ranking_prompt
from leads_ranker.session import SessionStore
from leads_ranker.telemetry import logfire_span

logger = logging.getLogger(__name__)

EVAL_TEMPERATURE = 0.1
MUTATION_TEMPERATURE = 0.7
CROSSOVER_TEMPERATURE = 0.5
OPERATOR_MAX_TOKENS = 4000
QUICK_EVAL_SIZE = 10
PREVIEW_LENGTH = 200


@dataclass(frozen=True)
class EvalSample:
    """An eval lead paired with the ranking-shaped lead sent to the model."""

    lead: LeadForRanking
    expected_rank: int | None


@dataclass
class Evaluation:
    fitness: float
    predictions: list[Prediction]


def preview(content: str) -> str:
    if len(content) <= PREVIEW_LENGTH:
        return content
    return content[:PREVIEW_LENGTH] + "..."


def to_eval_samples(eval_leads: Sequence[EvalLead]) -> list[EvalSample]:
    """Give eval leads synthetic ids so they can go through the normal ranking prompt and parser."""
    samples = []
    for idx, lead in enumerate(eval_leads):
        first, _, last = lead.full_name.strip().partition(" ")
        samples.append(
            EvalSample(
                lead=LeadForRanking(
                    id=f"eval-{idx}",
                    first_name=first,
                    last_name=last.strip(),
                    job_title=lead.title,
                    company_name=lead.company,
                    employee_range=lead.employee_range or None,
                ),
                expected_rank=lead.expected_rank,
            )
        )
    return samples


def draw_sample(eval_leads: Sequence[EvalLead], size: int, rng: random.Random) -> list[EvalLead]:
    if len(eval_leads) > size:
        return rng.sample(list(eval_leads), size)
    return list(eval_leads)


def tournament_select(population: Sequence[PromptCandidate], size: int, rng: random.Random) -> PromptCandidate:
    """Draw `size` candidates with replacement and keep the fittest (first one wins ties)."""
    best = None
    for _ in range(size):
        contender = population[rng.randrange(len(population))]
        if best is None or contender.fitness > best.fitness:
            best = contender
    return best


def _by_fitness(population: list[PromptCandidate]) -> list[PromptCandidate]:
    return sorted(population, key=lambda c: c.fitness, reverse=True)


class PromptOptimizer:
    def __init__(
        self,
        store: LeadStore,
        llm: LLMClient,
        progress: ProgressStore[OptimizationProgress],
        sessions: SessionStore,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.llm = llm
        self.progress = progress
        self.sessions = sessions
        self.rng = rng or random.Random()

    def get_progress(self, run_id: str) -> OptimizationProgress:
        return self.progress.get(run_id)

    async def _log_call(self, response: ChatResponse, run_id: str) -> None:
        await asyncio.to_thread(
            self.store.log_ai_call,
            provider=response.provider.value,
            model=response.model,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            cost=response.cost,
            duration_ms=response.duration_ms,
            batch_id=run_id,
        )

    # ------------------------------------------------------------------
    # Fitness evaluation
    # ------------------------------------------------------------------

    async def evaluate_prompt(
        self,
        content: str,
        samples: Sequence[EvalSample],
        provider: AIProvider,
        run_id: str,
    ) -> Evaluation:
        """
        Rank `samples` with `content` as the base prompt and score against the labels.

        A failed call counts every lead of that company as predicted-irrelevant.
        """
        expected = {s.lead.id: s.expected_rank for s in samples}
        predictions: list[Prediction] = []

        for company, company_leads in group_by_company([s.lead for s in samples]).items():
            lead_ids = [lead.id for lead in company_leads]
            try:
                response = await self.llm.chat(
                    provider,
                    [ChatMessage(role="user", content=build_ranking_prompt(content, company_leads))],
                    ChatOptions(temperature=EVAL_TEMPERATURE, json_mode=True),
                )
                await self._log_call(response, run_id)
                results = parse_ranking_response(response.content, lead_ids)
                predictions.extend(Prediction(r.lead_id, r.rank, expected[r.lead_id]) for r in results)
            except Exception:
                logger.warning("Eval call failed for %s, scoring as irrelevant", company, exc_info=True)
                predictions.extend(Prediction(lead_id, None, expected[lead_id]) for lead_id in lead_ids)

        return Evaluation(fitness=calculate_fitness(predictions), predictions=predictions)

    # ------------------------------------------------------------------
    # Genetic operators
    # ------------------------------------------------------------------

    async def mutate(self, parent: str, issues: Sequence[str], provider: AIProvider, run_id: str) -> str:
        response = await self.llm.chat(
            provider,
            [ChatMessage(role="user", content=build_mutation_prompt(parent, issues))],
            ChatOptions(temperature=MUTATION_TEMPERATURE, max_tokens=OPERATOR_MAX_TOKENS),
        )
        await self._log_call(response, run_id)
        return response.content.strip()

    async def crossover(self, parent_a: str, parent_b: str, provider: AIProvider, run_id: str) -> str:
        response = await self.llm.chat(
            provider,
            [ChatMessage(role="user", content=build_crossover_prompt(parent_a, parent_b))],
            ChatOptions(temperature=CROSSOVER_TEMPERATURE, max_tokens=OPERATOR_MAX_TOKENS),
        )
        await self._log_call(response, run_id)
        return response.content.strip()

    # ------------------------------------------------------------------
    # Evolution
    # ------------------------------------------------------------------

    async def _evolve(
        self,
        eval_leads: Sequence[EvalLead],
        provider: AIProvider,
        run_id: str,
        config: OptimizationConfig,
    ) -> PromptCandidate:
        """Run the full GA and return the best candidate ever seen."""
        if not eval_leads:
            raise ValueError("Eval set has no usable rows")

        self.progress.update(
            run_id,
            status="running",
            current_generation=0,
            total_generations=config.generations,
            population_size=config.population_size,
            best_fitness=0.0,
            evaluations_run=0,
            error=None,
        )

        seed = await asyncio.to_thread(self.store.get_active_prompt_with_version)
        max_version = await asyncio.to_thread(self.store.max_prompt_version)
        next_version = max(max_version, seed.version) + 1

        samples = to_eval_samples(draw_sample(eval_leads, config.sample_size, self.rng))
        quick_samples = samples[:QUICK_EVAL_SIZE]

        population = [PromptCandidate(content=seed.content, version=seed.version, generation=0)]
        for _ in range(config.population_size - 1):
            content = await self.mutate(seed.content, [EXPLORATION_HINT], provider, run_id)
            population.append(PromptCandidate(content=content, version=next_version, generation=0))
            next_version += 1

        evaluations = 0
        scored = []
        for candidate in population:
            with logfire_span("evaluate_candidate", version=candidate.version, generation=0):
                evaluation = await self.evaluate_prompt(candidate.content, samples, provider, run_id)
            scored.append(candidate.model_copy(update={"fitness": evaluation.fitness}))
            evaluations += 1
            self.progress.update(run_id, evaluations_run=evaluations)

        population = _by_fitness(scored)
        best = population[0]
        self.progress.update(run_id, best_fitness=best.fitness, current_best_prompt_preview=preview(best.content))
        logger.info("Initial population: best v%d fitness %.3f", best.version, best.fitness)

        elite_count = min(config.elite_count, len(population))
        for gen in range(1, config.generations + 1):
            self.progress.update(run_id, current_generation=gen)

            elites = [c.model_copy(update={"generation": gen}) for c in population[:elite_count]]
            offspring: list[PromptCandidate] = []

            while len(elites) + len(offspring) < config.population_size:
                parent1 = tournament_select(population, config.tournament_size, self.rng)
                parent2 = tournament_select(population, config.tournament_size, self.rng)

                if self.rng.random() < config.mutation_rate:
                    parent = parent1 if self.rng.random() < 0.5 else parent2
                    quick = await self.evaluate_prompt(parent.content, quick_samples, provider, run_id)
                    evaluations += 1
                    hints = analyze_errors(quick.predictions).hints() or [EXPLORATION_HINT]
                    content = await self.mutate(parent.content, hints, provider, run_id)
                else:
                    content = await self.crossover(parent1.content, parent2.content, provider, run_id)

                offspring.append(
                    PromptCandidate(
                        content=content,
                        version=next_version,
                        generation=gen,
                        parent_version=parent1.version,
                    )
                )
                next_version += 1

            scored = []
            for candidate in offspring:
                with logfire_span("evaluate_candidate", version=candidate.version, generation=gen):
                    evaluation = await self.evaluate_prompt(candidate.content, samples, provider, run_id)
                scored.append(candidate.model_copy(update={"fitness": evaluation.fitness}))
                evaluations += 1
                self.progress.update(run_id, evaluations_run=evaluations)

            population = _by_fitness(elites + scored)
            if population[0].fitness > best.fitness:
                best = population[0]
                self.progress.update(
                    run_id, best_fitness=best.fitness, current_best_prompt_preview=preview(best.content)
                )
            logger.info("Generation %d: best fitness %.3f", gen, best.fitness)

        return best

    async def run(
        self,
        eval_leads: Sequence[EvalLead],
        provider: AIProvider,
        run_id: str,
        config: OptimizationConfig | None = None,
    ) -> PromptCandidate:
        """Optimize the active prompt and store the winner as a new, inactive version."""
        config = config or OptimizationConfig()
        with logfire_span("optimize_prompt", run_id=run_id, provider=provider.value):
            try:
                best = await self._evolve(eval_leads, provider, run_id, config)
                if await asyncio.to_thread(self.store.prompt_exists, best.version):
                    logger.info("Seed prompt v%d was never beaten; nothing new to save", best.version)
                else:
                    await asyncio.to_thread(
                        self.store.insert_prompt,
                        version=best.version,
                        content=best.content,
                        eval_score=best.fitness,
                        is_active=False,
                        generation=best.generation,
                        parent_version=best.parent_version,
                    )
                    logger.info("Saved optimized prompt v%d (fitness %.3f)", best.version, best.fitness)
                self.progress.update(run_id, status="completed", best_fitness=best.fitness)
                return best
            except Exception as e:
                self.progress.update(run_id, status="error", error=str(e))
                raise

    async def run_session(
        self,
        eval_leads: Sequence[EvalLead],
        provider: AIProvider,
        run_id: str,
        session_id: str,
        config: OptimizationConfig | None = None,
    ) -> PromptCandidate:
        """Optimize against a caller-supplied eval set and stash the winner on the session only."""
        config = config or OptimizationConfig()
        with logfire_span("optimize_prompt_session", run_id=run_id, session_id=session_id, provider=provider.value):
            try:
                best = await self._evolve(eval_leads, provider, run_id, config)
                self.sessions.set_optimized_prompt(session_id, best.content)
                self.progress.update(run_id, status="completed", best_fitness=best.fitness)
                logger.info("Session %s: stored optimized prompt (fitness %.3f)", session_id, best.fitness)
                return best
            except Exception as e:
                self.progress.update(run_id, status="error", error=str(e))
                raise
