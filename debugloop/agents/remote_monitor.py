"""
Remote Monitor Agent
====================
Observes a live deployment for runtime errors across several sources and
keeps a deduplicated, filtered snapshot of what it has seen.

Sources (SourceKind):
    browser-console  — SSE stream from the deployed app (`error`, `console-error` events)
    api-endpoint     — generic SSE push endpoint on the deployed app (`error` events)
    sentry           — error-tracking API, fetched when the session opens
    logrocket        — session-replay API, fetched when the session opens
    server-logs      — server log poller, fetched when the session opens
    github-actions   — latest workflow run of the deployed repository
    poll             — deployment poll endpoint, pulled every poll_interval

Session Model:
    - One MonitoringSession per start_monitoring() call
    - Open channels (stream tasks, poll task) are owned by this instance and
      torn down by stop_monitoring()
    - Only add_error() mutates the session's error list

Failure Policy:
    A source that fails is logged and recorded in session.degraded_sources;
    it never raises out of the monitor.
    A single malformed event is logged and skipped; it does not degrade its source.
"""
import asyncio
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from debugloop.core.config import DEFAULT_POLL_INTERVAL, GITHUB_TOKEN, HTTP_TIMEOUT_SECONDS, MONITOR_API_TOKEN
from debugloop.core.constants import severity_rank
from debugloop.models.loop_config import MonitoringConfig, SourceKind
from debugloop.models.remote_error import NormalizedError
from debugloop.models.source_events import (
    CIStatusEvent,
    LogRocketEvent,
    SentryEvent,
    ServerLogEvent,
    StreamEvent,
)
from debugloop.parser.event_normalizer import normalize_event
from debugloop.utils.error_signature import error_identity, error_signature

logger = logging.getLogger(__name__)

# SSE event names each stream source listens to
_STREAM_EVENTS: Dict[SourceKind, Tuple[str, ...]] = {
    SourceKind.BROWSER_CONSOLE: ("error", "console-error"),
    SourceKind.API_ENDPOINT: ("error",),
}

_STREAM_PATHS: Dict[SourceKind, str] = {
    SourceKind.BROWSER_CONSOLE: "/api/monitor/errors",
    SourceKind.API_ENDPOINT: "/api/errors/stream",
}

_FAILED_CONCLUSIONS = ("failure", "timed_out", "action_required", "cancelled")


@dataclass
class MonitoringSession:
    id: str
    started_at: datetime
    config: MonitoringConfig
    deployment_url: str
    is_active: bool = True
    errors_found: List[NormalizedError] = field(default_factory=list)
    degraded_sources: List[str] = field(default_factory=list)


@dataclass
class MonitoringResult:
    success: bool
    errors: List[NormalizedError]
    stats: Dict[str, object]
    degraded_sources: List[str] = field(default_factory=list)
    error: str = ""


def compute_window_stats(errors: List[NormalizedError]) -> Dict[str, object]:
    """Count errors by severity and category."""
    by_severity: Dict[str, int] = {}
    by_category: Dict[str, int] = {}
    for err in errors:
        by_severity[err.severity] = by_severity.get(err.severity, 0) + 1
        by_category[err.category] = by_category.get(err.category, 0) + 1
    return {"total": len(errors), "by_severity": by_severity, "by_category": by_category}


def passes_filters(error: NormalizedError, config: MonitoringConfig) -> bool:
    """Apply the severity threshold and ignore patterns to one error."""
    if config.severity_threshold:
        if severity_rank(error.severity) < severity_rank(config.severity_threshold):
            return False
    for pattern in config.ignore_patterns:
        if re.search(pattern, error.message) or re.search(pattern, error.stack or ""):
            return False
    return True


def _extract_repo_path(repo_url: str) -> str:
    """Extract 'owner/repo' from GitHub URL."""
    match = re.search(r"github\.com[:/](.+?)(?:\.git)?$", repo_url or "")
    if match:
        return match.group(1).rstrip("/")
    return ""


async def _iter_sse(response: httpx.Response) -> AsyncIterator[Tuple[str, str]]:
    """Yield (event, data) pairs from a text/event-stream response."""
    event, data_lines = "message", []
    async for line in response.aiter_lines():
        if not line:
            if data_lines:
                yield event, "\n".join(data_lines)
            event, data_lines = "message", []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "event":
            event = value
        elif name == "data":
            data_lines.append(value)
    if data_lines:
        yield event, "\n".join(data_lines)


class RemoteMonitor:
    """
    Agent that watches a deployed application for runtime errors.

    Parameters
    ----------
    config : MonitoringConfig
        Sources, filtering and poll interval.
    github_token : str
        Token for the GitHub Actions API (github-actions source).
    transport : httpx.AsyncBaseTransport or None
        Injected HTTP transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        config: MonitoringConfig,
        github_token: str = GITHUB_TOKEN,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.session: Optional[MonitoringSession] = None
        self._transport = transport
        self._tasks: List[asyncio.Task] = []

        self.headers = {"Accept": "application/json", "User-Agent": "Debug-Loop-Monitor"}
        token = config.auth_token or MONITOR_API_TOKEN
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

        self.github_headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "Debug-Loop-Monitor",
        }
        if github_token:
            self.github_headers["Authorization"] = f"token {github_token}"

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    async def start_monitoring(self, deployment_url: str) -> MonitoringSession:
        """
        Open every configured source against a deployment.

        Pull sources are fetched once before this returns; stream channels
        and the poll loop keep feeding the session until stop_monitoring().
        """
        if self.session and self.session.is_active:
            logger.warning("start_monitoring called with an active session; closing it first")
            self.stop_monitoring()

        deployment_url = deployment_url.rstrip("/")
        self.session = MonitoringSession(
            id=f"monitor-{uuid.uuid4().hex[:12]}",
            started_at=datetime.now(timezone.utc),
            config=self.config,
            deployment_url=deployment_url,
        )
        logger.info(
            "Monitoring %s with sources: %s",
            deployment_url, ", ".join(s.value for s in self.config.sources),
        )

        for source in self.config.sources:
            await self._enable_source(source, deployment_url)

        # An explicit poll_interval turns on polling even without the poll source
        if SourceKind.POLL not in self.config.sources and self.config.poll_interval:
            await self._enable_source(SourceKind.POLL, deployment_url)

        return self.session

    def stop_monitoring(self) -> None:
        """Deactivate the session and close every open channel. Idempotent."""
        if self.session:
            self.session.is_active = False
        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            logger.debug("Closed %d monitoring channel(s)", len(self._tasks))
        self._tasks = []

    def get_current_errors(self) -> List[NormalizedError]:
        """Return a copy of the session's deduplicated, filtered errors."""
        if not self.session:
            return []
        return [e.model_copy(deep=True) for e in self.session.errors_found]

    def clear_errors(self) -> None:
        """Empty the snapshot without closing channels."""
        if self.session:
            self.session.errors_found = []

    @property
    def degraded_sources(self) -> List[str]:
        return list(self.session.degraded_sources) if self.session else []

    def add_error(self, error: NormalizedError) -> None:
        """
        Merge one error into the session.

        A repeat of an existing (message, file, line) bumps occurrence_count
        and last_seen_at; anything else is appended. The stored record is then
        dropped if it falls below the severity threshold or matches an ignore
        pattern.
        """
        if not self.session:
            return

        key = error_identity(error)
        record = next(
            (e for e in self.session.errors_found if error_identity(e) == key), None
        )
        if record is not None:
            record.occurrence_count += 1
            record.last_seen_at = datetime.now(timezone.utc)
        else:
            record = error
            self.session.errors_found.append(record)
            logger.debug("New error %s (%s): %s", error_signature(record), record.severity, record.message[:80])

        if not passes_filters(record, self.config):
            self.session.errors_found.remove(record)
            logger.debug("Filtered error (%s): %s", record.severity, record.message[:80])

    # -------------------------------------------------------------------
    # Source wiring
    # -------------------------------------------------------------------
    def _client(self, headers: Optional[Dict[str, str]] = None, timeout=HTTP_TIMEOUT_SECONDS) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=headers or self.headers, timeout=timeout, transport=self._transport,
        )

    def _base_url(self, deployment_url: str) -> str:
        return (self.config.api_base_url or deployment_url).rstrip("/")

    def _mark_degraded(self, source: str, exc: Exception) -> None:
        logger.error("%s monitoring failed: %s", source, exc)
        if self.session and source not in self.session.degraded_sources:
            self.session.degraded_sources.append(source)

    async def _enable_source(self, source: SourceKind, deployment_url: str) -> None:
        try:
            if source in _STREAM_EVENTS:
                self._tasks.append(asyncio.create_task(
                    self._stream_channel(source, deployment_url)
                ))
            elif source == SourceKind.SENTRY:
                await self._fetch_sentry(deployment_url)
            elif source == SourceKind.LOGROCKET:
                await self._fetch_logrocket(deployment_url)
            elif source == SourceKind.SERVER_LOGS:
                await self._fetch_server_logs(deployment_url)
            elif source == SourceKind.GITHUB_ACTIONS:
                await self._fetch_ci_status(deployment_url)
            elif source == SourceKind.POLL:
                await self._fetch_poll(deployment_url)
                self._tasks.append(asyncio.create_task(self._poll_loop(deployment_url)))
        except Exception as exc:
            self._mark_degraded(source.value, exc)

    def _ingest(self, event) -> None:
        error = normalize_event(event)
        if error is not None:
            self.add_error(error)

    def _ingest_batch(self, source: SourceKind, items: List[Any], build: Callable[[Any], Any]) -> None:
        # A malformed entry is skipped; the rest of the batch still counts
        for raw in items:
            try:
                self._ingest(build(raw))
            except ValidationError as exc:
                logger.warning("Skipping malformed %s event (%d validation errors)", source.value, exc.error_count())

    async def _get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> dict:
        async with self._client(headers) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.json()

    # --- Pull sources ---
    async def _fetch_sentry(self, deployment_url: str) -> None:
        data = await self._get_json(f"{self._base_url(deployment_url)}/api/monitor/sentry/errors")
        self._ingest_batch(SourceKind.SENTRY, data.get("errors") or [], SentryEvent.model_validate)

    async def _fetch_logrocket(self, deployment_url: str) -> None:
        data = await self._get_json(f"{self._base_url(deployment_url)}/api/monitor/logrocket/errors")
        self._ingest_batch(SourceKind.LOGROCKET, data.get("errors") or [], LogRocketEvent.model_validate)

    async def _fetch_server_logs(self, deployment_url: str) -> None:
        data = await self._get_json(f"{self._base_url(deployment_url)}/api/monitor/server-logs/errors")
        self._ingest_batch(SourceKind.SERVER_LOGS, data.get("logs") or [], ServerLogEvent.model_validate)

    async def _fetch_ci_status(self, deployment_url: str) -> None:
        repo_path = _extract_repo_path(self.config.ci_repo_url or "")
        if not repo_path:
            # No GitHub repository configured: ask the monitoring backend instead
            data = await self._get_json(f"{self._base_url(deployment_url)}/api/monitor/github-actions/status")
            self._ingest(CIStatusEvent(
                status=data.get("status") if data.get("status") in ("pending", "success", "failed") else "pending",
                workflow=data.get("workflow"),
                run_id=str(data["runId"]) if data.get("runId") is not None else None,
                log_url=data.get("logUrl"),
            ))
            return

        url = f"https://api.github.com/repos/{repo_path}/actions/runs?per_page=1"
        data = await self._get_json(url, headers=self.github_headers)
        runs = data.get("workflow_runs") or []
        if not runs:
            logger.info("No workflow runs found for %s", repo_path)
            return

        run = runs[0]
        if run.get("status") != "completed":
            status = "pending"
        elif run.get("conclusion") in _FAILED_CONCLUSIONS:
            status = "failed"
        else:
            status = "success"
        logger.info("CI status for %s: %s", repo_path, status)
        self._ingest(CIStatusEvent(
            status=status,
            workflow=run.get("name"),
            run_id=str(run.get("id", "")),
            log_url=run.get("html_url"),
        ))

    async def _fetch_poll(self, deployment_url: str) -> None:
        data = await self._get_json(f"{deployment_url}/api/monitor/poll")
        self._ingest_batch(
            SourceKind.POLL,
            data.get("errors") or [],
            lambda raw: StreamEvent(channel=SourceKind.POLL.value, payload=raw),
        )

    async def _poll_loop(self, deployment_url: str) -> None:
        interval = self.config.poll_interval or DEFAULT_POLL_INTERVAL
        while True:
            await asyncio.sleep(interval)
            if not self.session or not self.session.is_active:
                return
            try:
                await self._fetch_poll(deployment_url)
            except Exception as exc:
                self._mark_degraded(SourceKind.POLL.value, exc)

    # --- Push sources ---
    async def _stream_channel(self, source: SourceKind, deployment_url: str) -> None:
        url = f"{deployment_url}{_STREAM_PATHS[source]}"
        wanted = _STREAM_EVENTS[source]
        headers = {**self.headers, "Accept": "text/event-stream"}
        try:
            async with self._client(headers, timeout=httpx.Timeout(HTTP_TIMEOUT_SECONDS, read=None)) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    async for event, data in _iter_sse(response):
                        if event not in wanted:
                            continue
                        try:
                            payload = json.loads(data)
                        except json.JSONDecodeError:
                            logger.warning("Dropping malformed %s event: %s", source.value, data[:80])
                            continue
                        self._ingest_batch(
                            source, [payload], lambda raw: StreamEvent(channel=source.value, payload=raw),
                        )
        except Exception as exc:
            self._mark_degraded(source.value, exc)


async def fetch_monitoring_errors(
    deployment_url: str,
    config: MonitoringConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> MonitoringResult:
    """
    One-shot fetch: POST the monitoring config to the deployment's error
    endpoint and return the filtered errors with window stats.
    """
    url = f"{deployment_url.rstrip('/')}/api/monitor/errors"
    try:
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS, transport=transport) as client:
            response = await client.post(url, json=config.model_dump(mode="json"))
            response.raise_for_status()
            data = response.json()

        errors = []
        for raw in data.get("errors") or []:
            try:
                errors.append(normalize_event(StreamEvent(channel="fetch", payload=raw)))
            except ValidationError as exc:
                logger.warning("Skipping malformed monitoring event (%d validation errors)", exc.error_count())
        filtered = [e for e in errors if e is not None and passes_filters(e, config)]
        return MonitoringResult(success=True, errors=filtered, stats=compute_window_stats(filtered))
    except Exception as exc:
        logger.error("Monitoring fetch failed: %s", exc)
        return MonitoringResult(success=False, errors=[], stats=compute_window_stats([]), error=str(exc))
