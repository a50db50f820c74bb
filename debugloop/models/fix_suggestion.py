"""
Fix Suggestion Model
====================
Pydantic model for one proposed remediation of one error group.

Fields:
    error_id          — id of the representative NormalizedError
    kind              — code-change / dependency-update
    category          — classifier category that selected the template
    priority          — low / medium / high / critical
    confidence        — template confidence score (0.0–1.0)
    estimated_impact  — low / medium / high
    explanation       — one-line, human-readable summary
    reasoning         — why the template applies
    file ... line_end — before/after code sketch (code-change only)
    dependency_name … — dependency fields (dependency-update only)
    status            — pending until an apply attempt, then applied / rejected / failed
"""
import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

Priority = Literal["low", "medium", "high", "critical"]
Impact = Literal["low", "medium", "high"]
FixStatus = Literal["pending", "applied", "rejected", "failed"]


class FixSuggestion(BaseModel):
    id: str = Field(default_factory=lambda: f"fix-{uuid.uuid4().hex[:12]}")
    error_id: str
    kind: Literal["code-change", "dependency-update"] = "code-change"
    category: str = "unknown"
    priority: Priority = "medium"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    estimated_impact: Impact = "low"
    explanation: str = ""
    reasoning: str = ""

    # --- Code sketch ---
    file: Optional[str] = None
    original_code: Optional[str] = None
    fixed_code: Optional[str] = None
    line_start: Optional[int] = None
    line_end: Optional[int] = None

    # --- Dependency update ---
    dependency_name: Optional[str] = None
    current_version: Optional[str] = None
    suggested_version: Optional[str] = None

    # --- Application status ---
    status: FixStatus = "pending"
    applied_at: Optional[datetime] = None
