"""
Event Normalizer
================
Converts each raw source event variant into a NormalizedError.

One conversion function per variant of RawSourceEvent; normalize_event()
dispatches on the `kind` tag. A converter returns None when the event does
not describe an error (e.g. an info-level server log line or a passing CI run).

Severity Mapping:
    Each source has its own fixed lookup table onto low / medium / high /
    critical. A value missing from the table maps to "medium".
"""
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from pydantic import TypeAdapter

from debugloop.models.remote_error import ErrorContext, NormalizedError, SourceLocation
from debugloop.models.source_events import (
    CIStatusEvent,
    LogRocketEvent,
    RawSourceEvent,
    SentryEvent,
    ServerLogEvent,
    StreamEvent,
)

_DEFAULT_SEVERITY = "medium"

# ---------------------------------------------------------------------------
# Per-source severity tables
# ---------------------------------------------------------------------------
SENTRY_LEVELS: Dict[str, str] = {
    "fatal":   "critical",
    "error":   "high",
    "warning": "medium",
    "info":    "low",
    "debug":   "low",
}

SERVER_LOG_LEVELS: Dict[str, str] = {
    "fatal": "critical",
    "error": "high",
}

STREAM_SEVERITIES: Dict[str, str] = {
    "low":      "low",
    "medium":   "medium",
    "high":     "high",
    "critical": "critical",
}

_RAW_EVENT = TypeAdapter(RawSourceEvent)


def map_severity(table: Dict[str, str], value: Optional[str]) -> str:
    """Look a source-native severity up in `table`, defaulting to medium."""
    if not value:
        return _DEFAULT_SEVERITY
    return table.get(value.lower(), _DEFAULT_SEVERITY)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _short_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Converters (one per variant)
# ---------------------------------------------------------------------------
def _from_sentry(event: SentryEvent) -> NormalizedError:
    culprit = event.culprit
    context = None
    if event.user or event.session_id or event.extra:
        context = ErrorContext(
            user_id=event.user.id if event.user else None,
            session_id=event.session_id,
            additional_data=event.extra,
        )
    return NormalizedError(
        id=event.event_id or _short_id("sentry"),
        timestamp=event.timestamp or _now(),
        severity=map_severity(SENTRY_LEVELS, event.level),
        category="runtime",
        message=event.message or "Unknown error",
        stack="\n".join(event.stacktrace) if event.stacktrace else None,
        source=SourceLocation(
            file=(culprit.filename if culprit and culprit.filename else "unknown"),
            line=(culprit.line if culprit and culprit.line else 0),
            column=culprit.col if culprit else None,
        ),
        context=context,
        first_seen_at=event.first_seen or _now(),
        last_seen_at=event.last_seen or _now(),
    )


def _from_logrocket(event: LogRocketEvent) -> NormalizedError:
    return NormalizedError(
        id=event.id or _short_id("lr"),
        timestamp=event.timestamp or _now(),
        severity="medium",
        category="runtime",
        message=event.message or "Unknown error",
        stack=event.stack,
        source=SourceLocation(file=event.file or "unknown", line=event.line or 0),
        occurrence_count=event.count or 1,
        first_seen_at=event.first_seen or _now(),
        last_seen_at=event.last_seen or _now(),
    )


def _from_server_log(event: ServerLogEvent) -> Optional[NormalizedError]:
    if event.level.lower() not in SERVER_LOG_LEVELS:
        return None
    return NormalizedError(
        id=_short_id("log"),
        timestamp=event.timestamp or _now(),
        severity=map_severity(SERVER_LOG_LEVELS, event.level),
        category="runtime",
        message=event.message or "Server error",
        stack=event.stack,
        source=SourceLocation(file=event.file or "unknown", line=event.line or 0),
    )


def _from_ci_status(event: CIStatusEvent) -> Optional[NormalizedError]:
    # Partial failures are not decomposed: one failed run, one error.
    if event.status != "failed":
        return None
    return NormalizedError(
        id=_short_id("gh-action"),
        severity="high",
        category="deployment",
        message="GitHub Actions workflow failed",
        source=SourceLocation(file=".github/workflows", line=0),
        context=ErrorContext(additional_data={
            "workflowName": event.workflow,
            "runId": event.run_id,
            "logUrl": event.log_url,
        }),
    )


def _from_stream(event: StreamEvent) -> NormalizedError:
    payload = dict(event.payload)
    severity = payload.get("severity")
    payload["severity"] = map_severity(STREAM_SEVERITIES, severity if isinstance(severity, str) else None)
    return NormalizedError.model_validate(payload)


_CONVERTERS: Dict[str, Callable] = {
    "sentry": _from_sentry,
    "logrocket": _from_logrocket,
    "server-log": _from_server_log,
    "ci-status": _from_ci_status,
    "stream": _from_stream,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def parse_raw_event(data: dict):
    """Validate a tagged dict (with a `kind` key) into its RawSourceEvent variant."""
    return _RAW_EVENT.validate_python(data)


def normalize_event(event) -> Optional[NormalizedError]:
    """
    Convert one raw source event into a NormalizedError.

    Parameters
    ----------
    event : RawSourceEvent
        Any variant of the source-event union.

    Returns
    -------
    NormalizedError or None
        None when the event carries no error.
    """
    converter = _CONVERTERS[event.kind]
    return converter(event)
