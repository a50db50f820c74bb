"""
Source Event Models
===================
Raw events as each monitor source delivers them, as a closed tagged union.

Every variant carries a literal `kind` discriminator, so a payload is parsed
into exactly one variant and converted by exactly one function in
debugloop.parser.event_normalizer.

Variants:
    SentryEvent     — error-tracking API issue (four-level `level` vocabulary)
    LogRocketEvent  — session-replay API error
    ServerLogEvent  — one server log line (only level == "error" is kept)
    CIStatusEvent   — latest CI workflow run for the deployed branch
    StreamEvent     — already-normalised payload pushed by the deployed app
                      (browser-console stream, api-endpoint stream, poll endpoint)
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _RawEvent(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SentryCulprit(_RawEvent):
    filename: Optional[str] = None
    line: Optional[int] = None
    col: Optional[int] = None


class SentryUser(_RawEvent):
    id: Optional[str] = None


class SentryEvent(_RawEvent):
    kind: Literal["sentry"] = "sentry"
    event_id: Optional[str] = Field(default=None, alias="eventId")
    timestamp: Optional[datetime] = None
    level: Optional[str] = None
    message: Optional[str] = None
    stacktrace: Optional[List[str]] = None
    culprit: Optional[SentryCulprit] = None
    user: Optional[SentryUser] = None
    session_id: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None
    first_seen: Optional[datetime] = Field(default=None, alias="firstSeen")
    last_seen: Optional[datetime] = Field(default=None, alias="lastSeen")


class LogRocketEvent(_RawEvent):
    kind: Literal["logrocket"] = "logrocket"
    id: Optional[str] = None
    timestamp: Optional[datetime] = None
    message: Optional[str] = None
    stack: Optional[str] = None
    file: Optional[str] = None
    line: Optional[int] = None
    count: Optional[int] = None
    first_seen: Optional[datetime] = Field(default=None, alias="firstSeen")
    last_seen: Optional[datetime] = Field(default=None, alias="lastSeen")


class ServerLogEvent(_RawEvent):
    kind: Literal["server-log"] = "server-log"
    level: str = "info"
    timestamp: Optional[datetime] = None
    message: Optional[str] = None
    stack: Optional[str] = None
    file: Optional[str] = None
    line: Optional[int] = None


class CIStatusEvent(_RawEvent):
    kind: Literal["ci-status"] = "ci-status"
    status: Literal["pending", "success", "failed"] = "pending"
    workflow: Optional[str] = None
    run_id: Optional[str] = None
    log_url: Optional[str] = None


class StreamEvent(_RawEvent):
    kind: Literal["stream"] = "stream"
    channel: str = "stream"
    payload: Dict[str, Any] = {}


RawSourceEvent = Annotated[
    Union[SentryEvent, LogRocketEvent, ServerLogEvent, CIStatusEvent, StreamEvent],
    Field(discriminator="kind"),
]
