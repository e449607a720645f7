"""Tests for leads_ranker.api -- the FastAPI routes over RankerService."""
import time

import pytest
from fastapi.testclient import TestClient

from leads_ranker.api import create_app
from leads_ranker.service import RankerService
from tests.conftest import FakeLLM, leads_in_prompt, rankings_json
from tests.test_service import LEADS_CSV


def title_ranker(prompt, options):
    return rankings_json({lead_id: None if "HR" in title else 1 for lead_id, _, title in leads_in_prompt(prompt)})


@pytest.fixture
def service(settings, store):
    return RankerService(settings, store, FakeLLM(title_ranker))


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as c:
        yield c


def wait_until_done(client, url, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(url).json()
        if body["status"] in ("completed", "error"):
            return body
        time.sleep(0.02)
    raise AssertionError(f"{url} did not finish")


def test_health(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "leads-ranker"}


def test_providers(client):
    assert client.get("/ranking/providers").json() == {"available": ["openai"], "default": "openai"}


def test_unknown_run_ids_report_idle(client):
    assert client.get("/ranking/progress/batch_missing").json()["status"] == "idle"
    assert client.get("/optimizer/progress/opt_missing").json()["status"] == "idle"


class TestRanking:
    def test_rank_and_poll(self, client):
        assert client.post("/leads/import", json={"csv": LEADS_CSV}).json() == {"imported": 3}

        response = client.post("/ranking/start", json={"session_id": "s1"})
        assert response.status_code == 200
        batch_id = response.json()["batch_id"]

        progress = wait_until_done(client, f"/ranking/progress/{batch_id}")
        assert progress["status"] == "completed"
        assert progress["total"] == 3

        stats = client.get("/leads/stats", params={"session_id": "s1"}).json()
        assert stats["ranked_leads"] == 3
        assert stats["relevant_leads"] == 2
        assert stats["ai_calls"]["total_calls"] == 2

        page = client.get("/leads", params={"show_irrelevant": False}).json()
        assert page["pagination"]["total_count"] == 2

    def test_unconfigured_provider_is_bad_request(self, client):
        response = client.post("/ranking/start", json={"provider": "anthropic"})
        assert response.status_code == 400
        assert "not configured" in response.json()["detail"]

    def test_unknown_provider_is_rejected(self, client):
        assert client.post("/ranking/start", json={"provider": "mistral"}).status_code == 422

    def test_second_run_conflicts(self, client, service):
        service.ranking_progress.update("batch_x", status="running")
        assert client.post("/ranking/start", json={}).status_code == 409


class TestOptimizer:
    def test_activate_unknown_version(self, client):
        client.get("/optimizer/history")
        response = client.post("/optimizer/activate", json={"version": 42})
        assert response.status_code == 404

    def test_activate(self, client, store):
        store.insert_prompt(version=1, content="one", is_active=True)
        store.insert_prompt(version=2, content="two")
        assert client.post("/optimizer/activate", json={"version": 2}).json() == {"success": True}
        history = client.get("/optimizer/history").json()
        assert [(p["version"], p["is_active"]) for p in history] == [(2, True), (1, False)]

    def test_start_without_eval_file(self, client):
        assert client.post("/optimizer/start", json={}).status_code == 404
        assert client.get("/optimizer/eval-set").status_code == 404

    def test_config_bounds_are_validated(self, client):
        assert client.post("/optimizer/start", json={"population_size": 2}).status_code == 422

    def test_session_optimization_needs_rows(self, client):
        body = {"session_id": "s1", "csv": "Full Name,Title,Company,LI,Employee Range,Rank\n"}
        response = client.post("/optimizer/start-session", json=body)
        assert response.status_code == 400

    def test_session_optimization_runs(self, client):
        csv = (
            "Full Name,Title,Company,LI,Employee Range,Rank\n"
            "Ava Stone,VP Sales,Acme,,51-200,1\n"
            "Ben King,HR Manager,Acme,,51-200,-\n"
        )
        body = {"session_id": "s1", "csv": csv, "population_size": 3, "generations": 1, "sample_size": 10}
        run_id = client.post("/optimizer/start-session", json=body).json()["run_id"]
        progress = wait_until_done(client, f"/optimizer/progress/{run_id}")
        assert progress["status"] == "completed"
        assert progress["best_fitness"] == 1.0


class TestLeads:
    def test_import_requires_rows(self, client):
        response = client.post("/leads/import", json={"csv": "account_name\n"})
        assert response.status_code == 400

    def test_test_data_missing_file(self, client):
        assert client.post("/leads/test-data").status_code == 404

    def test_test_data(self, client, settings):
        settings.leads_csv_path.write_text(LEADS_CSV, encoding="utf-8")
        assert client.post("/leads/test-data").json() == {"leads_loaded": 3}

    def test_invalid_sort_is_rejected(self, client):
        assert client.get("/leads", params={"sort_by": "salary"}).status_code == 422

    def test_clear(self, client):
        client.post("/leads/import", json={"csv": LEADS_CSV})
        assert client.delete("/leads").json() == {"success": True}
        assert client.get("/leads/stats").json()["total_leads"] == 0


def test_export_and_session_changes(client):
    client.post("/leads/import", json={"csv": LEADS_CSV})
    batch_id = client.post("/ranking/start", json={}).json()["batch_id"]
    wait_until_done(client, f"/ranking/progress/{batch_id}")

    response = client.get("/export/top", params={"top_n": 1})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.splitlines()
    assert lines[0].startswith("company,first_name,last_name")
    assert len(lines) == 3

    assert client.get("/sessions/nobody/ranking-changes").json() == []
