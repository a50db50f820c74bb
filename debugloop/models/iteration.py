"""
Iteration Model
===============
Pydantic model representing one deploy → monitor → fix pass of the loop.

Fields:
    number              — loop counter (1-based, strictly increasing)
    started_at / completed_at / duration (seconds)
    deployment_commit   — commit hash returned by the Deployer
    deployment_url      — URL the monitor observed
    deployment_status   — pending / success / failed
    errors              — NormalizedErrors observed in the monitoring window
    fixes_generated     — every FixSuggestion produced this pass
    fixes_applied       — suggestions the applicator accepted
    fixes_rejected      — suggestions the applicator refused or failed on
    outcome             — running (fixes attempted, loop continues) /
                          completed (zero errors) / failed (fatal error or stop)
    logs                — IterationLog entries emitted while this pass ran
    degraded_sources    — monitor sources that failed during the window
    error               — cause, when outcome is failed

Used by:
    - Orchestrator history (append-only, in order)
    - compute_stats() to derive DebugLoopStats
    - Observer callbacks (on_iteration_update)
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .fix_suggestion import FixSuggestion
from .remote_error import NormalizedError

LogLevel = Literal["info", "warn", "error", "debug"]


class IterationLog(BaseModel):
    id: str = Field(default_factory=lambda: f"log-{uuid.uuid4().hex[:12]}")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    level: LogLevel = "info"
    message: str
    details: Optional[Dict[str, Any]] = None


class Iteration(BaseModel):
    number: int
    loop_id: str = ""
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration: float = 0.0

    deployment_commit: Optional[str] = None
    deployment_url: Optional[str] = None
    deployment_status: Literal["pending", "success", "failed"] = "pending"

    errors: List[NormalizedError] = []
    fixes_generated: List[FixSuggestion] = []
    fixes_applied: List[FixSuggestion] = []
    fixes_rejected: List[FixSuggestion] = []

    outcome: Literal["running", "completed", "failed"] = "running"
    logs: List[IterationLog] = []
    degraded_sources: List[str] = []
    error: str = ""

    @property
    def error_count(self) -> int:
        return len(self.errors)
