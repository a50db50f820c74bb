"""
Remote Error Model
==================
Pydantic model for the canonical, deduplicated error record every monitor
source is converted into.

Fields:
    id                — generated per record, NOT used for deduplication
    severity          — low / medium / high / critical
    category          — freeform (runtime, build, test, deployment, network, unknown)
    message           — error text as reported by the source
    stack             — optional stack trace text
    source            — {file, line, column?} location in the target codebase
    context           — optional user / session / route data from the source
    occurrence_count  — incremented on every repeat within one session
    first_seen_at     — first time the record was seen
    last_seen_at      — refreshed on every repeat

Identity:
    (message, source.file, source.line), see utils/error_signature.error_identity().

Wire format:
    The deployed application reports camelCase keys (occurrenceCount,
    firstSeenAt, ...). Both spellings are accepted on input.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Severity = Literal["low", "medium", "high", "critical"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SourceLocation(_CamelModel):
    file: str = "unknown"
    line: int = 0
    column: Optional[int] = None


class ErrorContext(_CamelModel):
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    route: Optional[str] = None
    user_agent: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None


class NormalizedError(_CamelModel):
    id: str = Field(default_factory=lambda: f"err-{uuid.uuid4().hex[:12]}")
    timestamp: datetime = Field(default_factory=_now)
    severity: Severity = "medium"
    category: str = "unknown"
    message: str = "Unknown error"
    stack: Optional[str] = None
    source: SourceLocation = Field(default_factory=SourceLocation)
    context: Optional[ErrorContext] = None
    occurrence_count: int = 1
    first_seen_at: datetime = Field(default_factory=_now)
    last_seen_at: datetime = Field(default_factory=_now)
    resolved: bool = False
