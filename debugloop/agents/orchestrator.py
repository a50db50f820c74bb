"""
Orchestrator Agent
==================
Runs the Deploy → Propagate → Monitor → Analyze → Fix loop until the target
is error-free, a safety budget runs out, or the operator stops it.

Core Features:
    - Strictly sequential, monotonically numbered iterations
    - Safety budgets checked before every iteration (max iterations, max duration)
    - Cooperative pause observed only at the iteration boundary
    - stop() abandons the in-flight iteration at its next suspension point
    - Fatal errors (deploy failure, monitor crash) end the run with a failed LoopResult
    - Per-fix failures isolated to the rejected bucket
    - Stats recomputed from history on demand, never stored
    - Observer callbacks for state changes, log lines, iteration updates, completion
    - Optional webhook notifications and rollback-on-failure

State Machine:
    idle → deploying → monitoring → analyzing → fixing → deploying ...
                                  ↘ completed (zero errors)
    any → failed (fatal error or exhausted budget) | paused (between iterations)
"""
import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

import httpx

from debugloop.agents.deployer import AutoDeployer
from debugloop.agents.fix_applicator import HttpFixApplicator
from debugloop.agents.fix_generator import FixGenerator
from debugloop.agents.remote_monitor import RemoteMonitor, compute_window_stats
from debugloop.core.config import HTTP_TIMEOUT_SECONDS
from debugloop.core.constants import BACKUP_BRANCH_PREFIX, COMMIT_MESSAGE_TEMPLATE
from debugloop.core.errors import DeploymentError, LoopStopped
from debugloop.models.iteration import Iteration, IterationLog, LogLevel
from debugloop.models.loop_config import LoopConfig, LoopState
from debugloop.models.loop_result import LoopResult, LoopSnapshot
from debugloop.services.stats import compute_stats
from debugloop.state.loop_control import LoopControl

logger = logging.getLogger(__name__)

ALREADY_RUNNING = "Debug loop already running"
MAX_ITERATIONS_REACHED = "Maximum iterations reached without resolving all errors"
STOPPED = "Debug loop stopped"

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class Orchestrator:
    """
    Main debug-loop controller.

    Parameters
    ----------
    config : LoopConfig
        Run configuration. Only its `state` field is written by the loop.
    deployer, monitor, fix_generator, applicator
        Collaborators; built from `config` when omitted.
    on_state_change, on_log, on_iteration_update, on_complete
        Optional observer callbacks. A failing callback is logged, never
        propagated into the loop.
    notification_transport : httpx.AsyncBaseTransport or None
        Injected transport for webhook notifications.
    """

    def __init__(
        self,
        config: LoopConfig,
        deployer=None,
        monitor=None,
        fix_generator=None,
        applicator=None,
        on_state_change: Optional[Callable[[LoopState], None]] = None,
        on_log: Optional[Callable[[IterationLog], None]] = None,
        on_iteration_update: Optional[Callable[[Iteration], None]] = None,
        on_complete: Optional[Callable[[LoopResult], None]] = None,
        notification_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.deployer = deployer or AutoDeployer(config.deployment)
        self.monitor = monitor or RemoteMonitor(config.monitoring)
        self.fix_generator = fix_generator or FixGenerator(config.fix.provider, config.fix.model)
        self.applicator = applicator or HttpFixApplicator(config.fix.apply_endpoint)

        self.on_state_change = on_state_change
        self.on_log = on_log
        self.on_iteration_update = on_iteration_update
        self.on_complete = on_complete
        self._notification_transport = notification_transport

        self.control = LoopControl()
        self.is_running = False
        self.current_iteration = 0
        self.history: List[Iteration] = []
        self.start_time: Optional[float] = None
        self._current: Optional[Iteration] = None
        self._state_before_pause = LoopState.IDLE

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    async def start(self) -> LoopResult:
        """
        Run the loop to a terminal state.

        Returns
        -------
        LoopResult
            Never raises. A second call while running returns
            success=False with reason "Debug loop already running".
        """
        if self.is_running:
            logger.warning("start() called while loop %s is running", self.config.id)
            return LoopResult(success=False, reason=ALREADY_RUNNING)

        self.is_running = True
        self.start_time = time.time()
        self.current_iteration = 0
        self.history = []

        self._log("info", "Debug loop started", {
            "config": self.config.name,
            "max_iterations": self.config.safety.max_iterations,
        })

        try:
            while True:
                reason = await self._check_continue()
                if reason:
                    result = self._finish_exhausted(reason)
                    break
                result = await self._run_iteration()
                if result is not None:
                    break
        except LoopStopped:
            self._set_state(LoopState.IDLE)
            self._log("info", STOPPED)
            result = self._result(success=False, reason=STOPPED)
        except Exception as e:
            logger.error("Debug loop %s encountered a fatal error: %s", self.config.id, e, exc_info=True)
            self._set_state(LoopState.FAILED)
            self._log("error", "Debug loop failed with exception", {"error": str(e)})
            await self._notify("error", {"error": str(e), "iteration": self.current_iteration})
            await self._rollback_if_configured()
            result = self._result(success=False, reason=str(e))
        finally:
            self.is_running = False
            self._current = None
            self.monitor.stop_monitoring()
            # Pause and stop requests belong to this run only. A stop issued
            # before start() still lands on the token start() checks first.
            self.control = LoopControl()
            self._state_before_pause = LoopState.IDLE

        self._emit(self.on_complete, result)
        await self._notify("complete", result.model_dump(mode="json"))
        logger.info(
            "Debug loop %s finished after %d iteration(s): success=%s reason=%s",
            self.config.id, result.iterations, result.success, result.reason,
        )
        return result

    def pause(self) -> None:
        if self.config.state != LoopState.PAUSED:
            self._state_before_pause = self.config.state
        self.control.pause()
        self._set_state(LoopState.PAUSED)
        self._log("info", "Debug loop paused")

    def resume(self) -> None:
        self.control.resume()
        if self.config.state == LoopState.PAUSED:
            self._set_state(self._state_before_pause)
        self._log("info", "Debug loop resumed")

    def stop(self) -> None:
        """Stop the loop and close the active monitoring session now."""
        self.control.stop()
        self.monitor.stop_monitoring()
        self._log("info", "Debug loop stop requested")

    def get_state(self) -> LoopSnapshot:
        return LoopSnapshot(
            state=self.config.state,
            iteration=self.current_iteration,
            stats=compute_stats(self.history, self.start_time),
        )

    # -------------------------------------------------------------------
    # Loop policy
    # -------------------------------------------------------------------
    async def _check_continue(self) -> Optional[str]:
        """Return a termination reason, or None if the next iteration may run."""
        if self.control.stopped:
            raise LoopStopped(STOPPED)

        if self.control.paused:
            self._set_state(LoopState.PAUSED)
            await self.control.wait_if_paused()
            self.control.raise_if_stopped()

        safety = self.config.safety
        if self.current_iteration >= safety.max_iterations:
            return MAX_ITERATIONS_REACHED

        elapsed_minutes = (time.time() - self.start_time) / 60
        if elapsed_minutes > safety.max_duration:
            return f"Maximum duration of {safety.max_duration:g} minutes reached"
        return None

    def _finish_exhausted(self, reason: str) -> LoopResult:
        self._set_state(LoopState.FAILED)
        result = self._result(success=False, reason=reason)
        self._log("error", f"Debug loop failed - {reason}", {
            "iterations": self.current_iteration,
            "errors_remaining": result.errors_remaining,
        })
        return result

    # -------------------------------------------------------------------
    # One iteration
    # -------------------------------------------------------------------
    async def _run_iteration(self) -> Optional[LoopResult]:
        """Run one pass. Returns a LoopResult on success, None to continue."""
        self.current_iteration += 1
        number = self.current_iteration
        iteration = Iteration(number=number, loop_id=self.config.id)
        self.history.append(iteration)
        self._current = iteration
        iter_start = time.time()
        self._log("info", f"--- Starting iteration {number} ---")

        try:
            # ===========================================================
            # 1. Deploy
            # ===========================================================
            self._set_state(LoopState.DEPLOYING)
            backup = self.config.safety.create_backup_branch
            deploy_result = await self.deployer.deploy(
                commit_message=COMMIT_MESSAGE_TEMPLATE.format(iteration=number),
                create_branch=backup,
                branch_name=f"{BACKUP_BRANCH_PREFIX}{number}" if backup else None,
            )
            if not deploy_result.success:
                iteration.deployment_status = "failed"
                raise DeploymentError(f"Deployment failed: {deploy_result.error}")

            iteration.deployment_status = "success"
            iteration.deployment_commit = deploy_result.commit_hash
            iteration.deployment_url = deploy_result.deployment_url
            self._log("info", "Deployment successful", {
                "url": deploy_result.deployment_url,
                "commit": deploy_result.commit_hash,
            })
            await self.control.sleep(self.config.monitoring.propagation_delay)

            # ===========================================================
            # 2. Monitor
            # ===========================================================
            self._set_state(LoopState.MONITORING)
            await self.monitor.start_monitoring(deploy_result.deployment_url)
            try:
                await self.control.sleep(self.config.monitoring.observation_window)
                errors = self.monitor.get_current_errors()
                iteration.degraded_sources = list(self.monitor.degraded_sources)
            finally:
                self.monitor.stop_monitoring()

            iteration.errors = errors
            window = compute_window_stats(errors)
            self._log("info", f"Monitoring window closed: {len(errors)} error(s)", window)
            if iteration.degraded_sources:
                self._log("warn", "Monitoring coverage degraded", {"sources": iteration.degraded_sources})

            if not errors:
                iteration.outcome = "completed"
                await self._finalize(iteration, iter_start)
                self._set_state(LoopState.COMPLETED)
                self._log("info", "Debug loop completed successfully - no errors found", {
                    "iterations": number,
                })
                return self._result(success=True, final_url=deploy_result.deployment_url)

            # ===========================================================
            # 3. Analyze
            # ===========================================================
            self.control.raise_if_stopped()
            self._set_state(LoopState.ANALYZING)
            await self._generate_fixes(iteration)

            # ===========================================================
            # 4. Fix
            # ===========================================================
            self.control.raise_if_stopped()
            self._set_state(LoopState.FIXING)
            await self._apply_fixes(iteration)

            iteration.outcome = "running"
            await self._finalize(iteration, iter_start)
            return None

        except LoopStopped:
            iteration.outcome = "failed"
            iteration.error = "Stopped by operator"
            await self._finalize(iteration, iter_start)
            raise
        except Exception as e:
            iteration.outcome = "failed"
            iteration.error = str(e)
            await self._finalize(iteration, iter_start)
            raise

    async def _generate_fixes(self, iteration: Iteration) -> None:
        fix_config = self.config.fix
        if not fix_config.enabled:
            self._log("info", "Fix generation disabled; leaving errors for manual review")
            return

        result = await self.fix_generator.generate_fixes(
            iteration.errors,
            max_fixes=fix_config.max_fixes_per_iteration,
            require_approval=not fix_config.auto_apply,
        )
        if not result.success:
            self._log("error", "Fix generation failed", {"error": result.error})
            return

        iteration.fixes_generated = result.fixes
        self._log("info", f"Generated {len(result.fixes)} fix suggestion(s)", {
            "reasoning": result.reasoning,
        })

    async def _apply_fixes(self, iteration: Iteration) -> None:
        if not iteration.fixes_generated:
            return
        if not self.config.fix.auto_apply:
            self._log("info", f"{len(iteration.fixes_generated)} fix(es) awaiting approval")
            return

        for fix in iteration.fixes_generated:
            try:
                applied = await self.applicator.apply(fix)
            except Exception as exc:
                logger.error("Applying fix %s failed: %s", fix.id, exc)
                fix.status = "failed"
                iteration.fixes_rejected.append(fix)
                continue

            if applied:
                fix.status = "applied"
                fix.applied_at = datetime.now(timezone.utc)
                iteration.fixes_applied.append(fix)
            else:
                fix.status = "rejected"
                iteration.fixes_rejected.append(fix)

        self._log("info", "Fixes processed", {
            "applied": len(iteration.fixes_applied),
            "rejected": len(iteration.fixes_rejected),
        })

    async def _finalize(self, iteration: Iteration, iter_start: float) -> None:
        iteration.duration = time.time() - iter_start
        iteration.completed_at = datetime.now(timezone.utc)
        self._current = None
        self._emit(self.on_iteration_update, iteration)
        await self._notify("iteration", {
            "iteration": iteration.number,
            "outcome": iteration.outcome,
            "errors": iteration.error_count,
            "fixes_applied": len(iteration.fixes_applied),
        })

    # -------------------------------------------------------------------
    # Results, rollback, notifications, observers
    # -------------------------------------------------------------------
    def _result(self, success: bool, reason: Optional[str] = None, final_url: Optional[str] = None) -> LoopResult:
        return LoopResult(
            success=success,
            iterations=self.current_iteration,
            errors_fixed=sum(len(it.fixes_applied) for it in self.history),
            errors_remaining=self.history[-1].error_count if self.history else 0,
            total_duration=time.time() - self.start_time,
            final_url=final_url,
            reason=reason,
        )

    async def _rollback_if_configured(self) -> None:
        if not self.config.safety.rollback_on_failure:
            return
        if not any(it.fixes_applied for it in self.history):
            return
        try:
            rollback = await self.deployer.rollback()
        except Exception as exc:
            logger.error("Rollback raised: %s", exc)
            return
        if rollback.success:
            self._log("warn", "Rolled back last deployment after failure")
        else:
            self._log("error", "Rollback failed", {"error": rollback.error})

    async def _notify(self, event: str, payload: dict) -> None:
        notifications = self.config.notifications
        if not notifications.enabled or not notifications.webhook_url:
            return
        wanted = {
            "iteration": notifications.on_iteration,
            "error": notifications.on_error,
            "complete": notifications.on_complete,
        }
        if not wanted.get(event, False):
            return

        body = {"event": event, "loop_id": self.config.id, "name": self.config.name, **payload}
        try:
            async with httpx.AsyncClient(
                timeout=HTTP_TIMEOUT_SECONDS, transport=self._notification_transport,
            ) as client:
                response = await client.post(notifications.webhook_url, json=body)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Notification '%s' failed: %s", event, exc)

    def _set_state(self, state: LoopState) -> None:
        if self.config.state == state:
            return
        self.config.state = state
        logger.debug("Loop %s state -> %s", self.config.id, state.value)
        self._emit(self.on_state_change, state)

    def _log(self, level: LogLevel, message: str, details: Optional[dict] = None) -> None:
        entry = IterationLog(level=level, message=message, details=details)
        if self._current is not None:
            self._current.logs.append(entry)
        if details:
            logger.log(_LOG_LEVELS[level], "%s %s", message, details)
        else:
            logger.log(_LOG_LEVELS[level], "%s", message)
        self._emit(self.on_log, entry)

    def _emit(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as exc:
            logger.error("Observer callback %s failed: %s", getattr(callback, "__name__", callback), exc)
