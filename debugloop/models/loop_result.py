"""
Loop Result Models
Pydantic models for what the orchestrator reports: the terminal LoopResult,
the derived DebugLoopStats, and the get_state() snapshot.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, computed_field

from .loop_config import LoopState


class LoopResult(BaseModel):
    success: bool
    iterations: int = 0
    errors_fixed: int = 0
    errors_remaining: int = 0
    total_duration: float = 0.0      # seconds
    final_url: Optional[str] = None
    reason: Optional[str] = None


class CommonError(BaseModel):
    message: str
    file: str
    count: int


class DebugLoopStats(BaseModel):
    total_iterations: int = 0
    total_errors_fixed: int = 0
    total_errors_remaining: int = 0
    average_iteration_duration: float = 0.0
    total_duration: float = 0.0
    success_rate: float = 0.0
    by_category: Dict[str, int] = {}
    by_severity: Dict[str, int] = {}
    most_common_errors: List[CommonError] = []
    degraded_sources: List[str] = []

    @computed_field
    @property
    def sources_degraded(self) -> bool:
        return bool(self.degraded_sources)


class LoopSnapshot(BaseModel):
    state: LoopState
    iteration: int
    stats: DebugLoopStats
