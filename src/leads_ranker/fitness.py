"""Score predicted ranks against the labelled evaluation set."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

# Largest possible distance between two ranks on the 1-10 scale
MAX_RANK_DISTANCE = 9


@dataclass(frozen=True)
class Prediction:
    lead_id: str
    predicted: int | None
    expected: int | None


@dataclass(frozen=True)
class ErrorPatterns:
    false_positives: int = 0
    false_negatives: int = 0
    rank_too_high: int = 0
    rank_too_low: int = 0

    def hints(self) -> list[str]:
        """One improvement hint per non-zero error count, fed to the mutation operator."""
        hints: list[str] = []
        if self.false_positives:
            hints.append(
                f"- Marking {self.false_positives} irrelevant leads as relevant. "
                "Be stricter about applying the hard exclusion categories."
            )
        if self.false_negatives:
            hints.append(
                f"- Missing {self.false_negatives} relevant leads (marking them as irrelevant). "
                "Be more inclusive of roles adjacent to the target persona."
            )
        if self.rank_too_high:
            hints.append(
                f"- Ranking {self.rank_too_high} leads too highly (predicted rank lower than actual). "
                "Be more conservative with top rankings."
            )
        if self.rank_too_low:
            hints.append(
                f"- Ranking {self.rank_too_low} leads too low (predicted rank higher than actual). "
                "Better recognize high-value titles."
            )
        return hints


def score_prediction(predicted: int | None, expected: int | None) -> float:
    """
    Score a single prediction.

    Relevance mismatch scores 0, two nulls score 1, otherwise the score falls off
    linearly with rank distance. Ranks are not clamped, so out-of-range model
    output can push the score below zero.
    """
    if (predicted is None) != (expected is None):
        return 0.0
    if predicted is None:
        return 1.0
    return 1 - abs(predicted - expected) / MAX_RANK_DISTANCE


def calculate_fitness(predictions: Sequence[Prediction]) -> float:
    if not predictions:
        return 0.0
    return sum(score_prediction(p.predicted, p.expected) for p in predictions) / len(predictions)


def analyze_errors(predictions: Iterable[Prediction]) -> ErrorPatterns:
    false_positives = false_negatives = rank_too_high = rank_too_low = 0
    for p in predictions:
        if p.predicted is not None and p.expected is None:
            false_positives += 1
        elif p.predicted is None and p.expected is not None:
            false_negatives += 1
        elif p.predicted is not None and p.expected is not None:
            if p.predicted < p.expected:
                rank_too_high += 1
            elif p.predicted > p.expected:
                rank_too_low += 1
    return ErrorPatterns(
        false_positives=false_positives,
        false_negatives=false_negatives,
        rank_too_high=rank_too_high,
        rank_too_low=rank_too_low,
    )
