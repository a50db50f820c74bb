"""
Loop Configuration Model
========================
Immutable per-run configuration for the debug loop.

Sections:
    deployment     — where and how the Deployer publishes builds
    monitoring     — which sources to open, poll interval, filtering, timing
    fix            — fix-generation provider and application policy
    safety         — iteration / duration budgets, backup branches, rollback
    notifications  — optional webhook for lifecycle events

Only `state` may change after construction; every other top-level field is
frozen and every section model is frozen.
"""
import re
import uuid
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from debugloop.core.config import (
    APPLY_FIX_ENDPOINT,
    DEBUG_LOOP_MAX_DURATION,
    DEBUG_LOOP_MAX_ITERATIONS,
    MAX_FIXES_PER_ITERATION,
    OBSERVATION_WINDOW_SECONDS,
    PROPAGATION_DELAY_SECONDS,
)


class LoopState(str, Enum):
    IDLE = "idle"
    DEPLOYING = "deploying"
    MONITORING = "monitoring"
    ANALYZING = "analyzing"
    FIXING = "fixing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class SourceKind(str, Enum):
    BROWSER_CONSOLE = "browser-console"
    SENTRY = "sentry"
    LOGROCKET = "logrocket"
    API_ENDPOINT = "api-endpoint"
    GITHUB_ACTIONS = "github-actions"
    SERVER_LOGS = "server-logs"
    POLL = "poll"


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True)


class DeploymentConfig(_Section):
    target: Literal["github-pages", "vercel", "netlify", "custom"] = "custom"
    git_remote: Optional[str] = None
    git_branch: str = "main"
    custom_url: Optional[str] = None
    workspace_path: str = "."
    environment: Literal["production", "staging", "development"] = "production"
    auth_token: Optional[str] = None


class MonitoringConfig(_Section):
    sources: List[SourceKind] = [SourceKind.POLL]
    poll_interval: Optional[float] = None        # seconds
    severity_threshold: Optional[Literal["low", "medium", "high", "critical"]] = None
    ignore_patterns: List[str] = []
    api_base_url: Optional[str] = None            # defaults to the deployment URL
    ci_repo_url: Optional[str] = None             # defaults to deployment.git_remote
    auth_token: Optional[str] = None
    propagation_delay: float = Field(default=PROPAGATION_DELAY_SECONDS, ge=0)
    observation_window: float = Field(default=OBSERVATION_WINDOW_SECONDS, ge=0)

    @field_validator("ignore_patterns")
    @classmethod
    def validate_patterns(cls, v: List[str]) -> List[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid ignore pattern {pattern!r}: {exc}")
        return v


class FixConfig(_Section):
    enabled: bool = True
    provider: Literal["openai", "anthropic", "local"] = "local"
    model: Optional[str] = None
    auto_apply: bool = False
    max_fixes_per_iteration: int = Field(default=MAX_FIXES_PER_ITERATION, ge=1)
    apply_endpoint: str = APPLY_FIX_ENDPOINT


class SafetyConfig(_Section):
    max_iterations: int = Field(default=DEBUG_LOOP_MAX_ITERATIONS, ge=1)
    max_duration: float = Field(default=DEBUG_LOOP_MAX_DURATION, gt=0)  # minutes
    create_backup_branch: bool = False
    rollback_on_failure: bool = False


class NotificationConfig(_Section):
    enabled: bool = False
    on_iteration: bool = True
    on_error: bool = True
    on_complete: bool = True
    webhook_url: Optional[str] = None


class LoopConfig(BaseModel):
    id: str = Field(default_factory=lambda: f"loop-{uuid.uuid4().hex[:12]}", frozen=True)
    name: str = Field(default="debug-loop", frozen=True)
    description: Optional[str] = Field(default=None, frozen=True)
    deployment: DeploymentConfig = Field(default_factory=DeploymentConfig, frozen=True)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig, frozen=True)
    fix: FixConfig = Field(default_factory=FixConfig, frozen=True)
    safety: SafetyConfig = Field(default_factory=SafetyConfig, frozen=True)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig, frozen=True)

    state: LoopState = LoopState.IDLE

    @model_validator(mode="before")
    @classmethod
    def _default_ci_repo(cls, data):
        """Let the CI-status source fall back to the deployment's git remote."""
        if not isinstance(data, dict):
            return data
        deployment = data.get("deployment") or {}
        monitoring = data.get("monitoring") or {}
        if isinstance(deployment, BaseModel):
            deployment = deployment.model_dump()
        if isinstance(monitoring, BaseModel):
            monitoring = monitoring.model_dump()
        if deployment.get("git_remote") and not monitoring.get("ci_repo_url"):
            data = {**data, "monitoring": {**monitoring, "ci_repo_url": deployment["git_remote"]}}
        return data
