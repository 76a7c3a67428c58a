"""Tests for the workflow dashboard endpoints under /api/v1/workflows."""

import threading

import pytest
from fastapi.testclient import TestClient

from conductor.api.app import create_app
from conductor.orchestration.models import Task, WorkflowDefinition
from conductor.service import ConductorService

API = "/api/v1/workflows"

WELCOME = {
    "name": "welcome",
    "tasks": [
        {"id": "send-email", "action": "record", "payload": {"task": "send-email"}},
        {"id": "log-crm", "action": "record", "depends_on": ["send-email"]},
    ],
}


class TestOverview:
    def test_empty(self, client):
        r = client.get(API)

        assert r.status_code == 200
        data = r.json()["data"]
        assert data["metrics"]["total_executions"] == 0
        assert data["recent_executions"] == []
        assert data["health"]["status"] == "healthy"

    def test_limit_validated(self, client):
        assert client.get(API, params={"limit": 0}).status_code == 422


class TestExecute:
    def test_executes_and_records(self, client, calls):
        r = client.post(API, json={"workflow": WELCOME})

        assert r.status_code == 200
        execution = r.json()["data"]
        assert execution["status"] == "succeeded"
        assert execution["workflow_name"] == "welcome"
        assert execution["triggered_by"] == "api"
        assert [t["task_id"] for t in execution["task_results"]] == ["send-email", "log-crm"]
        assert [c.get("task") for c in calls] == ["send-email", None]

        overview = client.get(API).json()["data"]
        assert overview["metrics"]["total_executions"] == 1
        assert overview["recent_executions"][0]["id"] == execution["id"]
        assert overview["workflows"][0]["workflow_name"] == "welcome"

    def test_cyclic_workflow_records_failure(self, client):
        workflow = {
            "name": "loop",
            "tasks": [
                {"id": "a", "action": "ok", "depends_on": ["b"]},
                {"id": "b", "action": "ok", "depends_on": ["a"]},
            ],
        }

        r = client.post(API, json={"workflow": workflow})

        assert r.status_code == 200
        execution = r.json()["data"]
        assert execution["status"] == "failed"
        assert "cycle" in execution["error"]
        assert client.get(API).json()["data"]["metrics"]["failed"] == 1

    def test_deferred_not_implemented(self, client):
        r = client.post(API, json={"workflow": WELCOME, "immediate": False})

        assert r.status_code == 501
        assert r.headers["content-type"].startswith("application/problem+json")

    def test_malformed_body(self, client):
        assert client.post(API, json={"workflow": {"name": "x"}}).status_code == 422
        assert client.post(API, json={"workflow": {**WELCOME, "colour": "red"}}).status_code == 422


class TestHealthListing:
    def test_health_and_jobs(self, client, service):
        service.scheduler.register_cron("cleanup", "0 2 * * *", "ok")

        r = client.get(f"{API}/health")

        assert r.status_code == 200
        data = r.json()["data"]
        assert data["health"]["status"] == "healthy"
        assert [j["id"] for j in data["jobs"]["cron"]] == ["cleanup"]
        assert data["jobs"]["workflows"] == []
        assert data["ticker"]["healthy"] is False


class TestGetWorkflow:
    def test_job(self, client, service):
        service.scheduler.register_workflow(
            WorkflowDefinition(
                name="welcome",
                tasks=(Task(id="send-email", action="ok"),),
            ),
            "0 9 * * *",
            job_id="welcome-daily",
        )
        service.scheduler.run_job("welcome-daily")

        r = client.get(f"{API}/welcome-daily")

        assert r.status_code == 200
        data = r.json()["data"]
        assert data["job"]["id"] == "welcome-daily"
        assert data["job"]["run_count"] == 1
        assert len(data["recent_executions"]) == 1
        assert data["metrics"][0]["workflow_name"] == "welcome"
        assert [t["task_id"] for t in data["task_metrics"]] == ["send-email"]

    def test_ad_hoc_workflow_name(self, client):
        client.post(API, json={"workflow": WELCOME})

        r = client.get(f"{API}/welcome")

        assert r.status_code == 200
        data = r.json()["data"]
        assert data["job"] is None
        assert len(data["recent_executions"]) == 1
        assert [t["task_id"] for t in data["task_metrics"]] == ["log-crm", "send-email"]

    def test_unknown(self, client):
        r = client.get(f"{API}/ghost")

        assert r.status_code == 404
        assert r.json()["code"] == "NOT_FOUND"


class TestTrigger:
    def test_runs_job(self, client, service):
        service.scheduler.register_cron("cleanup", "0 2 * * *", "ok")

        r = client.post(f"{API}/cleanup")

        assert r.status_code == 200
        body = r.json()
        assert body["data"]["status"] == "succeeded"
        assert body["data"]["triggered_by"] == "api"
        assert body["warnings"] == []

    def test_failed_run_warns(self, client, service):
        service.scheduler.register_cron("fragile", "0 2 * * *", "boom")

        r = client.post(f"{API}/fragile")

        assert r.status_code == 200
        assert r.json()["warnings"] == ["execution failed"]

    def test_unknown(self, client):
        assert client.post(f"{API}/ghost").status_code == 404

    def test_already_running(self, client, service, blocking):
        started, release = blocking
        service.scheduler.register_cron("sync", "0 2 * * *", "block")
        worker = threading.Thread(target=service.scheduler.run_job, args=("sync",))
        worker.start()
        try:
            assert started.wait(2)

            r = client.post(f"{API}/sync")

            assert r.status_code == 409
            assert r.json()["code"] == "DUPLICATE"
        finally:
            release.set()
            worker.join(5)


class TestDisable:
    def test_disables(self, client, service):
        service.scheduler.register_cron("cleanup", "0 2 * * *", "ok")

        r = client.delete(f"{API}/cleanup")

        assert r.status_code == 200
        assert r.json()["data"]["enabled"] is False
        assert service.scheduler.get_job("cleanup").enabled is False

    def test_unknown(self, client):
        assert client.delete(f"{API}/ghost").status_code == 404


class TestApiKey:
    @pytest.fixture
    def secured(self, settings, actions, clock):
        service = ConductorService(
            settings.model_copy(update={"api_key": "s3cret"}), actions=actions, clock=clock
        )
        with TestClient(create_app(service=service)) as test_client:
            yield test_client

    def test_rejects_missing_key(self, secured):
        r = secured.get(API)

        assert r.status_code == 401
        assert r.json()["code"] == "AUTH"

    def test_rejects_wrong_key(self, secured):
        assert secured.get(API, headers={"X-API-Key": "nope"}).status_code == 401

    def test_accepts_key(self, secured):
        assert secured.get(API, headers={"X-API-Key": "s3cret"}).status_code == 200

    def test_probes_bypass(self, secured):
        assert secured.get("/health/live").status_code == 200
        assert secured.get("/metrics").status_code == 200
