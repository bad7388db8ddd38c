"""Ops HTTP surface: health, lock status and manual cycle trigger."""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from config.settings import OpsSettings
from pickstats.models.base import utcnow
from pickstats.services.core.lock_manager import LockStatus
from pickstats.services.pipeline.cycle import CycleOutcome, CycleReport
from pickstats.services.pipeline.scheduler import Scheduler
from pickstats.utils.security import issue_ops_token
from pickstats.web.app import create_app


class InstantRunner:
    def __init__(self):
        self.runs = 0

    async def run(self, stop_event):
        self.runs += 1
        return CycleReport(run_id="manual", started_at=utcnow(), outcome=CycleOutcome.COMPLETED)


@pytest.fixture
def ops_context(settings):
    settings = settings.model_copy(update={"ops": OpsSettings(jwt_secret="s3cret")})
    runner = InstantRunner()
    lock_manager = SimpleNamespace(lock_status=AsyncMock(return_value=None))
    return SimpleNamespace(
        settings=settings,
        scheduler=Scheduler(runner, interval=60, grace=1),
        lock_manager=lock_manager,
        runner=runner,
    )


@pytest.fixture
def client(ops_context):
    with TestClient(create_app(ops_context)) as test_client:
        yield test_client


def test_health_reports_instance(client, ops_context):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["instance"] == "test-instance"
    assert body["scheduler_running"] is False
    assert body["last_cycle"] is None


def test_lock_status_free_and_held(client, ops_context):
    response = client.get("/api/lock")
    assert response.json() == {
        "locked": False,
        "key": "dev-processing-lock",
        "owner": None,
        "acquired_at": None,
        "ttl": None,
        "ttl_remaining": None,
    }
    ops_context.lock_manager.lock_status.assert_awaited_with("dev-processing-lock")

    acquired = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    ops_context.lock_manager.lock_status.return_value = LockStatus(
        key="dev-processing-lock", owner="node-a:abc", acquired_at=acquired, ttl=180, ttl_remaining=120.5
    )
    body = client.get("/api/lock").json()
    assert body["locked"] is True
    assert body["owner"] == "node-a:abc"
    assert body["ttl_remaining"] == 120.5


def test_manual_cycle_requires_token(client, ops_context):
    assert client.post("/api/cycle").status_code in (401, 403)
    bad = client.post("/api/cycle", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401
    assert ops_context.runner.runs == 0


def test_manual_cycle_runs_once(client, ops_context):
    token = issue_ops_token(ops_context.settings.ops, "oncall")
    response = client.post("/api/cycle", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["outcome"] == "completed"
    assert ops_context.runner.runs == 1
    assert client.get("/health").json()["last_cycle"]["run_id"] == "manual"
