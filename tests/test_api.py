"""
Debug Loop API Tests
====================
Drives the FastAPI routes with TestClient. Orchestrators are built with
mocked deployer / monitor so no git or network calls happen.
"""
import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from debugloop.agents.deployer import AutoDeployer, DeploymentResult
from debugloop.agents.fix_applicator import HttpFixApplicator
from debugloop.agents.orchestrator import Orchestrator
from debugloop.agents.remote_monitor import RemoteMonitor
from debugloop.api.debug_loop import LoopRegistry, get_registry

URL = "https://shop.example.com"


def _mock_orchestrator(config):
    deployer = MagicMock(spec=AutoDeployer)
    deployer.deploy = AsyncMock(return_value=DeploymentResult(success=True, deployment_url=URL, commit_hash="c0ffee"))
    monitor = MagicMock(spec=RemoteMonitor)
    monitor.start_monitoring = AsyncMock()
    monitor.get_current_errors.return_value = []
    monitor.degraded_sources = []
    return Orchestrator(config, deployer=deployer, monitor=monitor, applicator=MagicMock(spec=HttpFixApplicator))


def _loop_body(loop_id, observation_window=0):
    return {
        "id": loop_id,
        "name": "api-test",
        "deployment": {"target": "custom", "custom_url": URL},
        "monitoring": {"sources": ["poll"], "propagation_delay": 0, "observation_window": observation_window},
    }


def _wait_for_result(client, loop_id, attempts=200):
    for _ in range(attempts):
        body = client.get(f"/debug-loop/{loop_id}/result").json()
        if body["finished"]:
            return body["result"]
        time.sleep(0.01)
    raise AssertionError(f"loop {loop_id} did not finish")


@pytest.fixture
def client():
    from main import app

    registry = LoopRegistry(orchestrator_factory=_mock_orchestrator)
    app.dependency_overrides[get_registry] = lambda: registry
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_start_runs_loop_to_completion(client):
    resp = client.post("/debug-loop/start", json=_loop_body("loop-ok"))
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "loop_id": "loop-ok"}

    result = _wait_for_result(client, "loop-ok")
    assert result["success"] is True
    assert result["final_url"] == URL

    status = client.get("/debug-loop/loop-ok/status").json()
    assert status["state"] == "completed"
    assert status["is_running"] is False
    assert status["stats"]["total_iterations"] == 1

    listing = client.get("/debug-loop").json()
    assert listing["loops"] == {"loop-ok": "completed"}


def test_stop_running_loop(client):
    client.post("/debug-loop/start", json=_loop_body("loop-long", observation_window=30))

    for _ in range(100):
        if client.get("/debug-loop/loop-long/status").json()["state"] == "monitoring":
            break
        time.sleep(0.01)

    assert client.post("/debug-loop/loop-long/stop").json() == {"success": True}
    result = _wait_for_result(client, "loop-long")
    assert result["reason"] == "Debug loop stopped"


def test_duplicate_start_conflicts(client):
    client.post("/debug-loop/start", json=_loop_body("loop-dup", observation_window=30))
    resp = client.post("/debug-loop/start", json=_loop_body("loop-dup"))
    assert resp.status_code == 409
    client.post("/debug-loop/loop-dup/stop")
    _wait_for_result(client, "loop-dup")


def test_pause_finished_loop_conflicts(client):
    client.post("/debug-loop/start", json=_loop_body("loop-done"))
    _wait_for_result(client, "loop-done")
    assert client.post("/debug-loop/loop-done/pause").status_code == 409


def test_unknown_loop_is_404(client):
    assert client.get("/debug-loop/missing/status").status_code == 404
    assert client.get("/debug-loop/missing/result").status_code == 404
    assert client.post("/debug-loop/missing/stop").status_code == 404


def test_invalid_config_is_422(client):
    body = _loop_body("loop-bad")
    body["safety"] = {"max_iterations": 0}
    assert client.post("/debug-loop/start", json=body).status_code == 422


def test_oldest_finished_loops_are_evicted():
    from main import app

    registry = LoopRegistry(orchestrator_factory=_mock_orchestrator, max_finished=1)
    app.dependency_overrides[get_registry] = lambda: registry
    try:
        with TestClient(app) as client:
            client.post("/debug-loop/start", json=_loop_body("loop-a"))
            _wait_for_result(client, "loop-a")
            client.post("/debug-loop/start", json=_loop_body("loop-b"))
            _wait_for_result(client, "loop-b")

            assert client.get("/debug-loop/loop-a/status").status_code == 404
            assert client.get("/debug-loop").json()["loops"] == {"loop-b": "completed"}
    finally:
        app.dependency_overrides.clear()
