"""
Integration Tests - Flask API
═════════════════════════════
Trigger, status and search endpoints through the Flask test client. The
background supervisor is replaced so no job actually runs.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from utils.db.clippings import insert_clipping
from utils.db.job_queue import JobStatus, claim_job, complete_job, create_job, get_job
from tests.conftest import fake_embed


@pytest.fixture
def api_module(monkeypatch):
    import api

    supervisor = MagicMock()
    monkeypatch.setattr(api, "get_supervisor", lambda: supervisor)
    api.app.config["TESTING"] = True
    api._test_supervisor = supervisor
    return api


@pytest.fixture
def client(api_module):
    return api_module.app.test_client()


@pytest.mark.integration
class TestTrigger:

    def test_missing_job_id(self, client):
        resp = client.post("/press-clipping", json={})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "jobId is required"

    def test_unknown_job(self, client):
        resp = client.post("/press-clipping", json={"jobId": "does-not-exist"})
        assert resp.status_code == 404
        assert resp.get_json()["success"] is False

    def test_pending_job_is_claimed_and_scheduled(self, client, api_module):
        job_id = create_job("press/el-diario.pdf", "El Diario")

        resp = client.post("/press-clipping", json={"jobId": job_id})

        assert resp.status_code == 202
        body = resp.get_json()
        assert body["success"] is True
        assert body["jobId"] == job_id
        assert body["status"] == "processing"
        assert body["error"] == ""
        api_module._test_supervisor.submit.assert_called_once_with(job_id)
        job = get_job(job_id)
        assert job["status"] == JobStatus.PROCESSING.value
        assert job["progress"] == 5

    def test_second_trigger_conflicts(self, client):
        job_id = create_job("press/el-diario.pdf")
        assert client.post("/press-clipping", json={"jobId": job_id}).status_code == 202
        resp = client.post("/press-clipping", json={"jobId": job_id})
        assert resp.status_code == 409
        assert "processing" in resp.get_json()["error"]


@pytest.mark.integration
class TestStatus:

    def test_processing_status(self, client):
        job_id = create_job("press/el-diario.pdf", "El Diario")
        claim_job(job_id)

        resp = client.get(f"/press-clipping?jobId={job_id}")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "processing"
        assert body["toolData"]["progress"] == 5
        assert "clippings" not in body["toolData"]

    def test_completed_status_lists_clippings(self, client):
        job_id = create_job("press/el-diario.pdf", "El Diario")
        claim_job(job_id)
        for page in (3, 1):
            insert_clipping(
                {"title": f"Acme p{page}", "content": "c", "page_number": page, "client_relevance": ["Acme"]},
                embedding=[0.1] * 768, job_id=job_id, owner=None,
            )
        complete_job(job_id, document_summary="Resumen.", note="5 of 12 pages processed before deadline")

        body = client.get(f"/press-clipping?jobId={job_id}").get_json()

        assert body["status"] == "completed"
        assert body["error"] == "5 of 12 pages processed before deadline"
        assert body["toolData"]["documentSummary"] == "Resumen."
        assert [c["page_number"] for c in body["toolData"]["clippings"]] == [1, 3]

    def test_unknown_job_status(self, client):
        assert client.get("/press-clipping?jobId=nope").status_code == 404


@pytest.mark.integration
class TestSearch:

    def test_search_returns_similar_clippings(self, client, monkeypatch):
        import asyncio
        from tools.press import press_clipping

        vector = asyncio.run(fake_embed("acme planta"))
        insert_clipping({"title": "Acme planta", "content": "c"}, embedding=vector, job_id="j", owner=None)
        insert_clipping(
            {"title": "Otra", "content": "c"}, embedding=[(-1) ** i for i in range(768)], job_id="j", owner=None
        )
        monkeypatch.setattr(press_clipping, "embed_text", fake_embed)

        resp = client.post("/press-clipping/search", json={"query": "acme planta", "matchThreshold": 0.9})

        assert resp.status_code == 200
        data = resp.get_json()["toolData"]
        assert data["count"] == 1
        assert data["clippings"][0]["title"] == "Acme planta"
        assert data["clippings"][0]["similarity"] == pytest.approx(1.0)

    def test_search_requires_query(self, client):
        assert client.post("/press-clipping/search", json={}).status_code == 400


@pytest.mark.integration
def test_ping(client):
    resp = client.get("/ping")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "pong"
