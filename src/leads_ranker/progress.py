from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from leads_ranker.models import OptimizationProgress, RankingProgress

TProgress = TypeVar("TProgress", bound=BaseModel)


class ProgressStore(Generic[TProgress]):
    """
    In-process progress records keyed by run id.

    Lives for the life of the process and is shared between the run task that
    writes it and the request handlers that poll it. Unknown ids read as a fresh
    default record.
    """

    def __init__(self, factory: type[TProgress]):
        self._factory = factory
        self._runs: dict[str, TProgress] = {}

    def get(self, run_id: str) -> TProgress:
        return self._runs.get(run_id) or self._factory()

    def update(self, run_id: str, **changes: Any) -> TProgress:
        updated = self.get(run_id).model_copy(update=changes)
        self._runs[run_id] = updated
        return updated

    def is_running(self) -> bool:
        return any(getattr(p, "status", None) == "running" for p in self._runs.values())


def ranking_progress_store() -> ProgressStore[RankingProgress]:
    return ProgressStore(RankingProgress)


def optimization_progress_store() -> ProgressStore[OptimizationProgress]:
    return ProgressStore(OptimizationProgress)
