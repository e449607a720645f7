from __future__ import annotations

from dataclasses import dataclass, field

from leads_ranker.models import RankingChange


@dataclass
class SessionState:
    batch_ids: set[str] = field(default_factory=set)
    optimized_prompt_override: str | None = None
    pending_optimization: bool = False
    ranking_changes: list[RankingChange] | None = None


class SessionStore:
    """
    Per-session overrides for experimentation (browser tab, CLI invocation, ...).

    A session can hold an optimized prompt that replaces the active prompt for its
    own ranking runs, the batch/run ids whose AI costs belong to it, and the
    ranking deltas produced by its last optimized run. Nothing here touches the
    database. Entries are never evicted.

    All methods accept a `None` session id and treat it as "no session".
    """

    def __init__(self):
        self._sessions: dict[str, SessionState] = {}

    def _get_or_create(self, session_id: str) -> SessionState:
        if session_id not in self._sessions:
            self._sessions[session_id] = SessionState()
        return self._sessions[session_id]

    def get(self, session_id: str | None) -> SessionState | None:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def register_batch_id(self, session_id: str | None, batch_id: str) -> None:
        if not session_id:
            return
        self._get_or_create(session_id).batch_ids.add(batch_id)

    def get_batch_ids(self, session_id: str | None) -> list[str]:
        state = self.get(session_id)
        return sorted(state.batch_ids) if state else []

    def set_optimized_prompt(self, session_id: str | None, prompt: str) -> None:
        if not session_id:
            return
        state = self._get_or_create(session_id)
        state.optimized_prompt_override = prompt
        state.pending_optimization = True
        state.ranking_changes = None

    def get_optimized_prompt(self, session_id: str | None) -> str | None:
        state = self.get(session_id)
        return state.optimized_prompt_override if state else None

    def has_pending_optimization(self, session_id: str | None) -> bool:
        state = self.get(session_id)
        return state.pending_optimization if state else False

    def clear_pending_optimization(self, session_id: str | None) -> None:
        state = self.get(session_id)
        if state:
            state.pending_optimization = False

    def set_ranking_changes(self, session_id: str | None, changes: list[RankingChange]) -> None:
        if not session_id:
            return
        state = self._get_or_create(session_id)
        state.ranking_changes = list(changes)
        state.pending_optimization = False

    def get_ranking_changes(self, session_id: str | None) -> list[RankingChange]:
        state = self.get(session_id)
        if not state or state.ranking_changes is None:
            return []
        return list(state.ranking_changes)
