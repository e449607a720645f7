"""Shared test fixtures."""

import json
import re

import pytest

from leads_ranker.config import ProviderNotConfiguredError, Settings
from leads_ranker.db.store import LeadStore
from leads_ranker.llm import ChatOptions, ChatResponse
from leads_ranker.models import AIProvider, LeadImportRow
from leads_ranker.progress import optimization_progress_store, ranking_progress_store
from leads_ranker.session import SessionStore

LEAD_BLOCK = re.compile(r"ID: (\S+)\n\s*Name: (.*)\n\s*Title: (.*)")


def leads_in_prompt(prompt: str) -> list[tuple[str, str, str]]:
    """(id, name, title) for every lead listed in a ranking request."""
    return [(m.group(1), m.group(2).strip(), m.group(3).strip()) for m in LEAD_BLOCK.finditer(prompt)]


def rankings_json(ranks: dict) -> str:
    return json.dumps(
        {"rankings": [{"leadId": lead_id, "rank": rank, "reasoning": "test"} for lead_id, rank in ranks.items()]}
    )


class FakeLLM:
    """
    Scripted stand-in for LLMClient.

    `responder(prompt, options)` returns the reply text, or an exception to raise.
    """

    def __init__(self, responder, available=(AIProvider.openai,)):
        self.responder = responder
        self._available = list(available)
        self.calls = []

    def available_providers(self):
        return list(self._available)

    def require(self, provider):
        if provider not in self._available:
            raise ProviderNotConfiguredError(provider)

    async def chat(self, provider, messages, options=None):
        options = options or ChatOptions()
        self.require(provider)
        prompt = messages[-1].content
        self.calls.append((provider, prompt, options))
        reply = self.responder(prompt, options)
        if isinstance(reply, Exception):
            raise reply
        return ChatResponse(
            content=reply,
            input_tokens=100,
            output_tokens=20,
            model="gpt-4o-mini",
            provider=provider,
            cost=0.001,
            duration_ms=15,
        )

    def ranking_calls(self):
        return [c for c in self.calls if c[2].json_mode]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite:///:memory:",
        OPENAI_API_KEY="sk-test",
        ANTHROPIC_API_KEY=None,
        GEMINI_API_KEY=None,
        AI_PROVIDER="openai",
        EVAL_SET_PATH=tmp_path / "eval_set.csv",
        LEADS_CSV_PATH=tmp_path / "leads.csv",
    )


@pytest.fixture
def store():
    """LeadStore on an in-memory SQLite database with the schema created."""
    s = LeadStore.from_url("sqlite:///:memory:")
    s.create_schema()
    yield s
    s.engine.dispose()


@pytest.fixture
def sessions():
    return SessionStore()


@pytest.fixture
def ranking_progress():
    return ranking_progress_store()


@pytest.fixture
def optimization_progress():
    return optimization_progress_store()


@pytest.fixture
def make_lead():
    def _make(company="Acme", first="Ava", last="Stone", title="VP Sales", **kwargs):
        return LeadImportRow(
            account_name=company,
            first_name=first,
            last_name=last,
            job_title=title,
            account_domain=kwargs.get("domain", "acme.com"),
            employee_range=kwargs.get("employee_range", "51-200"),
            industry=kwargs.get("industry", "Manufacturing"),
        )

    return _make


@pytest.fixture
def seeded_leads(store, make_lead):
    """Three leads at Acme and two at Globex."""
    store.replace_leads(
        [
            make_lead(first="Ava", last="Stone", title="VP Sales"),
            make_lead(first="Ben", last="King", title="HR Manager"),
            make_lead(first="Cara", last="Lopez", title="Sales Director"),
            make_lead(company="Globex", first="Dan", last="Park", title="CEO", employee_range="2-10"),
            make_lead(company="Globex", first="Eve", last="Ross", title="CFO", employee_range="2-10"),
        ]
    )
    return store.list_leads_for_ranking()
