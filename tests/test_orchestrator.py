"""
Orchestrator Tests
==================
Runs the full debug loop with the deployer, monitor and applicator mocked.
Timing knobs are zeroed so every test completes in milliseconds.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from debugloop.agents.deployer import AutoDeployer, DeploymentResult, RollbackResult
from debugloop.agents.fix_applicator import HttpFixApplicator
from debugloop.agents.orchestrator import Orchestrator
from debugloop.agents.remote_monitor import RemoteMonitor
from debugloop.models.loop_config import (
    DeploymentConfig,
    FixConfig,
    LoopConfig,
    LoopState,
    MonitoringConfig,
    NotificationConfig,
    SafetyConfig,
    SourceKind,
)
from debugloop.models.remote_error import NormalizedError, SourceLocation

URL = "https://shop.example.com"


# ---------------------------------------------------------------------------
# Fixtures / helpers
# ---------------------------------------------------------------------------
def _config(auto_apply=False, observation_window=0, notifications=None, fix_enabled=True, **safety):
    return LoopConfig(
        name="test-loop",
        deployment=DeploymentConfig(target="custom", custom_url=URL),
        monitoring=MonitoringConfig(
            sources=[SourceKind.POLL],
            severity_threshold="low",
            propagation_delay=0,
            observation_window=observation_window,
        ),
        fix=FixConfig(auto_apply=auto_apply, enabled=fix_enabled),
        safety=SafetyConfig(**safety),
        notifications=notifications or NotificationConfig(),
    )


def _deployed(commit="abc123"):
    return DeploymentResult(success=True, deployment_url=URL, commit_hash=commit, branch="main")


def _error(message="'total' is not defined", file="src/cart.js", severity="critical"):
    return NormalizedError(message=message, severity=severity, source=SourceLocation(file=file, line=3))


@pytest.fixture
def deployer():
    mock = MagicMock(spec=AutoDeployer)
    mock.deploy = AsyncMock(return_value=_deployed())
    mock.rollback = AsyncMock(return_value=RollbackResult(success=True))
    return mock


@pytest.fixture
def monitor():
    mock = MagicMock(spec=RemoteMonitor)
    mock.start_monitoring = AsyncMock()
    mock.get_current_errors.return_value = []
    mock.degraded_sources = []
    return mock


@pytest.fixture
def applicator():
    mock = MagicMock(spec=HttpFixApplicator)
    mock.apply = AsyncMock(return_value=True)
    return mock


def _orchestrator(config, deployer, monitor, applicator, **callbacks):
    return Orchestrator(config, deployer=deployer, monitor=monitor, applicator=applicator, **callbacks)


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------
def test_zero_errors_succeeds_first_iteration(deployer, monitor, applicator):
    async def run_test():
        orch = _orchestrator(_config(), deployer, monitor, applicator)
        result = await orch.start()

        assert result.success is True
        assert result.iterations == 1
        assert result.final_url == URL
        assert result.errors_remaining == 0
        assert orch.config.state == LoopState.COMPLETED
        assert orch.history[0].outcome == "completed"
        assert orch.history[0].deployment_commit == "abc123"
        deployer.deploy.assert_awaited_once()
        monitor.start_monitoring.assert_awaited_once_with(URL)

    asyncio.run(run_test())


def test_max_iterations_exhausted(deployer, monitor, applicator):
    async def run_test():
        monitor.get_current_errors.return_value = [_error()]
        orch = _orchestrator(_config(max_iterations=3), deployer, monitor, applicator)
        result = await orch.start()

        assert result.success is False
        assert result.iterations == 3
        assert "Maximum iterations" in result.reason
        assert deployer.deploy.await_count == 3
        assert [it.number for it in orch.history] == [1, 2, 3]
        assert orch.config.state == LoopState.FAILED

    asyncio.run(run_test())


def test_single_critical_error_scenario(deployer, monitor, applicator):
    async def run_test():
        monitor.get_current_errors.return_value = [_error()]
        orch = _orchestrator(_config(max_iterations=1), deployer, monitor, applicator)
        result = await orch.start()

        assert len(orch.history) == 1
        iteration = orch.history[0]
        assert iteration.outcome == "running"
        assert len(iteration.fixes_generated) == 1
        assert iteration.fixes_generated[0].status == "pending"
        assert result.success is False
        assert result.errors_remaining == 1
        applicator.apply.assert_not_awaited()

    asyncio.run(run_test())


def test_max_duration_exhausted(deployer, monitor, applicator):
    async def run_test():
        monitor.get_current_errors.return_value = [_error()]
        # 0.0005 minutes = 30 ms, shorter than one 50 ms observation window
        config = _config(observation_window=0.05, max_iterations=5, max_duration=0.0005)
        orch = _orchestrator(config, deployer, monitor, applicator)
        result = await orch.start()

        assert result.success is False
        assert result.iterations == 1
        assert "Maximum duration" in result.reason

    asyncio.run(run_test())


def test_second_start_is_rejected_while_running(deployer, monitor, applicator):
    async def run_test():
        gate = asyncio.Event()

        async def slow_deploy(**kwargs):
            await gate.wait()
            return _deployed()

        deployer.deploy = AsyncMock(side_effect=slow_deploy)
        orch = _orchestrator(_config(), deployer, monitor, applicator)

        first = asyncio.create_task(orch.start())
        await asyncio.sleep(0)
        second = await orch.start()

        assert second.success is False
        assert second.reason == "Debug loop already running"
        assert orch.is_running

        gate.set()
        result = await first
        assert result.success is True
        assert deployer.deploy.await_count == 1

    asyncio.run(run_test())


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------
def test_deploy_failure_is_fatal(deployer, monitor, applicator):
    async def run_test():
        deployer.deploy = AsyncMock(return_value=DeploymentResult(success=False, error="push rejected"))
        orch = _orchestrator(_config(max_iterations=5), deployer, monitor, applicator)
        result = await orch.start()

        assert result.success is False
        assert result.reason == "Deployment failed: push rejected"
        assert result.iterations == 1
        assert orch.config.state == LoopState.FAILED
        assert orch.history[0].outcome == "failed"
        assert orch.history[0].deployment_status == "failed"
        monitor.start_monitoring.assert_not_awaited()

    asyncio.run(run_test())


def test_monitor_crash_is_fatal(deployer, monitor, applicator):
    async def run_test():
        monitor.start_monitoring = AsyncMock(side_effect=RuntimeError("monitor exploded"))
        orch = _orchestrator(_config(), deployer, monitor, applicator)
        result = await orch.start()

        assert result.success is False
        assert result.reason == "monitor exploded"
        monitor.stop_monitoring.assert_called()

    asyncio.run(run_test())


def test_per_fix_failures_are_isolated(deployer, monitor, applicator):
    async def run_test():
        monitor.get_current_errors.return_value = [
            _error("'a' is not defined", file="a.js"),
            _error("Network request failed", file="b.js"),
            _error("Unhandled promise rejection", file="c.js"),
        ]
        applicator.apply = AsyncMock(side_effect=[True, False, RuntimeError("endpoint down")])
        orch = _orchestrator(_config(auto_apply=True, max_iterations=1), deployer, monitor, applicator)
        result = await orch.start()

        iteration = orch.history[0]
        assert applicator.apply.await_count == 3
        assert len(iteration.fixes_applied) == 1
        assert len(iteration.fixes_rejected) == 2
        assert sorted(f.status for f in iteration.fixes_generated) == ["applied", "failed", "rejected"]
        assert iteration.fixes_applied[0].applied_at is not None
        assert result.errors_fixed == 1

    asyncio.run(run_test())


def test_rollback_only_when_configured(deployer, monitor, applicator):
    async def run_test(rollback_on_failure):
        monitor.get_current_errors.return_value = [_error()]
        deployer.deploy = AsyncMock(side_effect=[
            _deployed(),
            DeploymentResult(success=False, error="build broke"),
        ])
        deployer.rollback.reset_mock()
        config = _config(auto_apply=True, max_iterations=3, rollback_on_failure=rollback_on_failure)
        orch = _orchestrator(config, deployer, monitor, applicator)
        result = await orch.start()

        assert result.success is False
        assert result.iterations == 2
        return deployer.rollback.await_count

    assert asyncio.run(run_test(True)) == 1
    assert asyncio.run(run_test(False)) == 0


def test_fix_generation_disabled(deployer, monitor, applicator):
    async def run_test():
        monitor.get_current_errors.return_value = [_error()]
        orch = _orchestrator(_config(fix_enabled=False, max_iterations=1), deployer, monitor, applicator)
        await orch.start()
        assert orch.history[0].fixes_generated == []

    asyncio.run(run_test())


# ---------------------------------------------------------------------------
# Operator control
# ---------------------------------------------------------------------------
def test_stop_abandons_in_flight_iteration(deployer, monitor, applicator):
    async def run_test():
        orch = _orchestrator(_config(observation_window=30), deployer, monitor, applicator)
        task = asyncio.create_task(orch.start())

        for _ in range(100):
            if orch.config.state == LoopState.MONITORING:
                break
            await asyncio.sleep(0.01)
        orch.stop()

        result = await asyncio.wait_for(task, timeout=2)
        assert result.success is False
        assert result.reason == "Debug loop stopped"
        assert orch.history[0].outcome == "failed"
        assert orch.history[0].error == "Stopped by operator"
        monitor.stop_monitoring.assert_called()
        assert not orch.is_running

    asyncio.run(run_test())


def test_pause_blocks_until_resume(deployer, monitor, applicator):
    async def run_test():
        orch = _orchestrator(_config(), deployer, monitor, applicator)
        orch.pause()
        task = asyncio.create_task(orch.start())

        await asyncio.sleep(0.05)
        assert orch.config.state == LoopState.PAUSED
        deployer.deploy.assert_not_awaited()

        orch.resume()
        result = await asyncio.wait_for(task, timeout=2)
        assert result.success is True

    asyncio.run(run_test())


def test_stop_while_paused(deployer, monitor, applicator):
    async def run_test():
        orch = _orchestrator(_config(), deployer, monitor, applicator)
        orch.pause()
        task = asyncio.create_task(orch.start())
        await asyncio.sleep(0.01)

        orch.stop()
        result = await asyncio.wait_for(task, timeout=2)
        assert result.reason == "Debug loop stopped"
        assert result.iterations == 0

    asyncio.run(run_test())


def test_pause_does_not_outlive_its_run(deployer, monitor, applicator):
    async def run_test():
        orch = _orchestrator(_config(), deployer, monitor, applicator)

        async def deploy_then_pause(**kwargs):
            orch.pause()
            return _deployed()

        deployer.deploy.side_effect = deploy_then_pause
        first = await orch.start()
        assert first.success is True
        assert orch.control.paused is False

        deployer.deploy.side_effect = None
        second = await asyncio.wait_for(orch.start(), timeout=2)
        assert second.success is True
        assert deployer.deploy.await_count == 2

    asyncio.run(run_test())


# ---------------------------------------------------------------------------
# Observers, stats, notifications
# ---------------------------------------------------------------------------
def test_callbacks_receive_lifecycle(deployer, monitor, applicator):
    async def run_test():
        states, logs, updates, completed = [], [], [], []

        def record_then_fail(iteration):
            updates.append(iteration)
            raise RuntimeError("observer bug")

        orch = _orchestrator(
            _config(), deployer, monitor, applicator,
            on_state_change=states.append,
            on_log=logs.append,
            on_iteration_update=record_then_fail,
            on_complete=completed.append,
        )
        result = await orch.start()

        assert states == [LoopState.DEPLOYING, LoopState.MONITORING, LoopState.COMPLETED]
        assert any(entry.message == "Deployment successful" for entry in logs)
        assert len(updates) == 1
        assert completed == [result]
        assert result.success

    asyncio.run(run_test())


def test_get_state_recomputes_stats(deployer, monitor, applicator):
    async def run_test():
        monitor.get_current_errors.return_value = [_error()]
        monitor.degraded_sources = ["sentry"]
        orch = _orchestrator(_config(max_iterations=2), deployer, monitor, applicator)
        await orch.start()

        snapshot = orch.get_state()
        assert snapshot.iteration == 2
        assert snapshot.state == LoopState.FAILED
        assert snapshot.stats.total_iterations == 2
        assert snapshot.stats.total_errors_remaining == 1
        assert snapshot.stats.by_severity == {"critical": 2}
        assert snapshot.stats.sources_degraded is True

    asyncio.run(run_test())


def test_webhook_notifications(deployer, monitor, applicator):
    events = []

    def handler(request):
        events.append(json.loads(request.content)["event"])
        return httpx.Response(204)

    async def run_test():
        notifications = NotificationConfig(enabled=True, webhook_url="https://hooks.example.com/loop")
        orch = Orchestrator(
            _config(notifications=notifications),
            deployer=deployer, monitor=monitor, applicator=applicator,
            notification_transport=httpx.MockTransport(handler),
        )
        result = await orch.start()
        assert result.success

    asyncio.run(run_test())
    assert events == ["iteration", "complete"]


def test_failing_webhook_does_not_break_loop(deployer, monitor, applicator):
    def handler(request):
        return httpx.Response(500)

    async def run_test():
        notifications = NotificationConfig(enabled=True, webhook_url="https://hooks.example.com/loop")
        orch = Orchestrator(
            _config(notifications=notifications),
            deployer=deployer, monitor=monitor, applicator=applicator,
            notification_transport=httpx.MockTransport(handler),
        )
        result = await orch.start()
        assert result.success

    asyncio.run(run_test())
