"""
Debug Loop API
==============
HTTP control surface for running debug loops.

Routes:
    POST /debug-loop/start            — body: LoopConfig → {success, loop_id}
    GET  /debug-loop                  — ids and states of every known loop
    POST /debug-loop/{loop_id}/stop
    POST /debug-loop/{loop_id}/pause
    POST /debug-loop/{loop_id}/resume
    GET  /debug-loop/{loop_id}/status — {state, iteration, stats, is_running}
    GET  /debug-loop/{loop_id}/result — LoopResult once finished

Each started loop runs as a background asyncio task owned by the
LoopRegistry; the request returns as soon as the task is scheduled.
"""
import asyncio
import logging
from collections import deque
from typing import Callable, Deque, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from debugloop.agents.orchestrator import Orchestrator
from debugloop.models.loop_config import LoopConfig, LoopState
from debugloop.models.loop_result import LoopResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/debug-loop", tags=["Debug Loop"])

# Finished loops kept for status/result lookups; oldest are evicted first
MAX_FINISHED_LOOPS = 100


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class LoopRegistry:
    """Owns every orchestrator started through the API, keyed by loop id."""

    def __init__(
        self,
        orchestrator_factory: Callable[[LoopConfig], Orchestrator] = Orchestrator,
        max_finished: int = MAX_FINISHED_LOOPS,
    ) -> None:
        self._factory = orchestrator_factory
        self._max_finished = max_finished
        self._loops: Dict[str, Orchestrator] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._results: Dict[str, LoopResult] = {}
        self._finished: Deque[str] = deque()

    def start(self, config: LoopConfig) -> str:
        if config.id in self._tasks:
            raise ValueError(f"Debug loop {config.id} is already running")

        orchestrator = self._factory(config)
        self._loops[config.id] = orchestrator
        self._results.pop(config.id, None)
        if config.id in self._finished:
            self._finished.remove(config.id)

        task = asyncio.create_task(orchestrator.start())
        task.add_done_callback(lambda t, loop_id=config.id: self._on_done(loop_id, t))
        self._tasks[config.id] = task
        logger.info("Started debug loop %s (%s)", config.id, config.name)
        return config.id

    def _on_done(self, loop_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(loop_id, None)
        if task.cancelled():
            logger.warning("Debug loop %s task was cancelled", loop_id)
        elif task.exception() is not None:
            logger.error("Debug loop %s task crashed: %s", loop_id, task.exception())
        else:
            self._results[loop_id] = task.result()
        self._finished.append(loop_id)
        self._evict()

    def _evict(self) -> None:
        while len(self._finished) > self._max_finished:
            loop_id = self._finished.popleft()
            self._loops.pop(loop_id, None)
            self._results.pop(loop_id, None)
            logger.debug("Evicted finished debug loop %s", loop_id)

    def get(self, loop_id: str) -> Orchestrator:
        if loop_id not in self._loops:
            raise KeyError(loop_id)
        return self._loops[loop_id]

    def result(self, loop_id: str) -> Optional[LoopResult]:
        self.get(loop_id)
        return self._results.get(loop_id)

    def states(self) -> Dict[str, LoopState]:
        return {loop_id: orch.config.state for loop_id, orch in self._loops.items()}

    async def shutdown(self) -> None:
        """Stop every running loop and wait for its task to finish."""
        for orchestrator in self._loops.values():
            if orchestrator.is_running:
                orchestrator.stop()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)


_registry = LoopRegistry()


def get_registry() -> LoopRegistry:
    return _registry


def _lookup(registry: LoopRegistry, loop_id: str) -> Orchestrator:
    try:
        return registry.get(loop_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Debug loop not found: {loop_id}")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/start")
async def start_debug_loop(config: LoopConfig, registry: LoopRegistry = Depends(get_registry)):
    try:
        loop_id = registry.start(config)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"success": True, "loop_id": loop_id}


@router.get("")
async def list_debug_loops(registry: LoopRegistry = Depends(get_registry)):
    return {"loops": {loop_id: state.value for loop_id, state in registry.states().items()}}


@router.post("/{loop_id}/stop")
async def stop_debug_loop(loop_id: str, registry: LoopRegistry = Depends(get_registry)):
    _lookup(registry, loop_id).stop()
    return {"success": True}


@router.post("/{loop_id}/pause")
async def pause_debug_loop(loop_id: str, registry: LoopRegistry = Depends(get_registry)):
    orchestrator = _lookup(registry, loop_id)
    if not orchestrator.is_running:
        raise HTTPException(status_code=409, detail="Debug loop is not running")
    orchestrator.pause()
    return {"success": True}


@router.post("/{loop_id}/resume")
async def resume_debug_loop(loop_id: str, registry: LoopRegistry = Depends(get_registry)):
    _lookup(registry, loop_id).resume()
    return {"success": True}


@router.get("/{loop_id}/status")
async def debug_loop_status(loop_id: str, registry: LoopRegistry = Depends(get_registry)):
    orchestrator = _lookup(registry, loop_id)
    snapshot = orchestrator.get_state().model_dump(mode="json")
    snapshot["is_running"] = orchestrator.is_running
    return snapshot


@router.get("/{loop_id}/result")
async def debug_loop_result(loop_id: str, registry: LoopRegistry = Depends(get_registry)):
    try:
        result = registry.result(loop_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Debug loop not found: {loop_id}")
    if result is None:
        return {"finished": False}
    return {"finished": True, "result": result.model_dump(mode="json")}
