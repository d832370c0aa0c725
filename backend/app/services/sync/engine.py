from __future__ import annotations

import asyncio
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import httpx
from sqlalchemy.orm import Session, sessionmaker

from app.config import settings
from app.models.connector import API_KEY_PLACEHOLDER, DEFAULT_API_KEY_HEADER, AuthType, RateLimitConfig
from app.models.sync_job import SyncJobSummary
from app.models_sqlalchemy import SessionLocal
from app.models_sqlalchemy.models import Connector, NormalizedData, RawApiData, SyncJobStatus
from app.utils.logger import get_logger

from .errors import (
    ConnectorNotFound,
    JobNotRetryable,
    NoEndpointsConfigured,
    RateLimitedRetryable,
    UpstreamHttpError,
)
from .field_mapper import NormalizedItem, normalize
from .job_state import (
    LOG_ERROR,
    LOG_INFO,
    add_log,
    create_job,
    get_job,
    mark_failed,
    mark_running,
    mark_success,
)
from .rate_limiter import RateLimiter

logger = get_logger("engine")


def build_auth_headers(auth_type: Optional[str], auth_config: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Request headers for a connector's static credentials.

    ``authConfig.headers`` is merged last and may override the auth header.
    """
    headers: Dict[str, str] = {}
    auth_config = auth_config if isinstance(auth_config, dict) else {}

    if auth_type == AuthType.API_KEY.value:
        api_key = auth_config.get("apiKey")
        if api_key:
            headers[auth_config.get("headerName") or DEFAULT_API_KEY_HEADER] = str(api_key)
    elif auth_type == AuthType.BEARER.value:
        token = auth_config.get("bearerToken")
        if token:
            headers["Authorization"] = f"Bearer {token}"

    extra = auth_config.get("headers")
    if isinstance(extra, dict):
        headers.update({str(k): str(v) for k, v in extra.items()})

    return headers


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, UpstreamHttpError):
        return exc.message
    return str(exc) or type(exc).__name__


def _json_safe(value: Any) -> Any:
    """Replace NaN/Infinity (not representable in JSON) with None."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_json_safe(v) for v in value]
    return value


def _endpoint_parts(endpoint: Any) -> Tuple[str, str]:
    if not isinstance(endpoint, dict):
        return "", "GET"
    path = endpoint.get("path") or ""
    method = (endpoint.get("method") or "GET").upper()
    return str(path), method


def _request_url(url: str, auth_config: Any) -> str:
    """URL actually sent: ``{{apiKey}}`` replaced with the connector's key."""
    if API_KEY_PLACEHOLDER not in url or not isinstance(auth_config, dict):
        return url
    api_key = auth_config.get("apiKey")
    return url.replace(API_KEY_PLACEHOLDER, str(api_key)) if api_key else url


def _has_mappings(field_mapping_config: Any) -> bool:
    return isinstance(field_mapping_config, dict) and bool(field_mapping_config.get("mappings"))


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SyncEngine:
    """Runs connector syncs as background asyncio tasks.

    ``trigger_sync`` persists a PENDING job and returns at once; the job
    row is the only way to observe progress. Every error raised while a job
    runs is converted into a FAILED job and never escapes the task.

    The engine owns its RateLimiter so separate engines (tests, multiple
    apps in one process) do not share pacing state.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_seconds: Optional[float] = None,
        default_max_retries: Optional[int] = None,
        initial_backoff_seconds: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self.rate_limiter = rate_limiter or RateLimiter()
        self._transport = transport
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.SYNC_HTTP_TIMEOUT_SECONDS
        self._default_max_retries = (
            default_max_retries if default_max_retries is not None else settings.SYNC_DEFAULT_MAX_RETRIES
        )
        self._initial_backoff = (
            initial_backoff_seconds if initial_backoff_seconds is not None else settings.SYNC_INITIAL_BACKOFF_SECONDS
        )
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_job_count(self) -> int:
        return len(self._tasks)

    def _db(self) -> Session:
        return self._session_factory()

    async def trigger_sync(self, connector_id: str, user_id: str) -> SyncJobSummary:
        """Create a PENDING job and start it in the background.

        Only job creation can fail here (blank ids, database unavailable);
        everything after that is reported through the job record.
        """
        if not connector_id or not str(connector_id).strip():
            raise ValueError("connector_id is required")
        if not user_id or not str(user_id).strip():
            raise ValueError("user_id is required")

        db = self._db()
        try:
            job = create_job(db, connector_id=connector_id, user_id=user_id)
            summary = SyncJobSummary.from_job(job)
        finally:
            db.close()

        task = asyncio.create_task(
            self._run_job_safely(summary.id, connector_id),
            name=f"sync-job-{summary.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return summary

    async def retry_job(self, job_id: str, user_id: str) -> SyncJobSummary:
        """Start a fresh job for the connector of a FAILED job."""
        db = self._db()
        try:
            job = get_job(db, job_id)
            if job.status != SyncJobStatus.FAILED.value:
                raise JobNotRetryable(job_id, job.status)
            connector_id = job.connector_id
        finally:
            db.close()

        new_job = await self.trigger_sync(connector_id, user_id)
        logger.info("Retry of job id=%s started as job id=%s", job_id, new_job.id)
        return new_job

    async def drain(self) -> None:
        """Wait for every job started by this engine to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run_job_safely(self, job_id: str, connector_id: str) -> None:
        try:
            await self.run_job(job_id, connector_id)
        except Exception as exc:
            logger.error("Sync job id=%s crashed outside the job lifecycle: %s", job_id, exc, exc_info=True)

    async def run_job(self, job_id: str, connector_id: str) -> None:
        """Drive one job from PENDING to SUCCESS or FAILED."""
        db = self._db()
        try:
            job = get_job(db, job_id)
            mark_running(db, job)
            add_log(db, job_id, LOG_INFO, "Sync job started")

            try:
                await self._sync_connector(db, job_id, connector_id)
            except Exception as exc:
                message = describe_error(exc)
                db.rollback()
                job = get_job(db, job_id)
                mark_failed(db, job, error_message=message)
                add_log(db, job_id, LOG_ERROR, f"Sync job failed: {message}")
                return

            job = get_job(db, job_id)
            mark_success(db, job)
            add_log(db, job_id, LOG_INFO, "Sync job completed successfully")
        finally:
            db.close()

    async def _sync_connector(self, db: Session, job_id: str, connector_id: str) -> None:
        connector: Optional[Connector] = db.get(Connector, connector_id)
        if connector is None:
            raise ConnectorNotFound(connector_id)

        add_log(db, job_id, LOG_INFO, f"Fetching data from {connector.base_url}")

        endpoints = connector.endpoint_config
        if not isinstance(endpoints, list) or not endpoints:
            raise NoEndpointsConfigured(connector_id)

        base_url = connector.base_url
        rate_config = RateLimitConfig.from_stored(connector.rate_limit_config)
        field_mapping_config = connector.field_mapping_config
        max_retries = (
            rate_config.retry_attempts if rate_config.retry_attempts is not None else self._default_max_retries
        )
        headers = {
            "Content-Type": "application/json",
            **build_auth_headers(connector.auth_type, connector.auth_config),
        }

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            for endpoint in endpoints:
                path, method = _endpoint_parts(endpoint)
                url = f"{base_url}{path}"
                add_log(db, job_id, LOG_INFO, f"Fetching {method} {url}")

                try:
                    await self.rate_limiter.delay_request(connector_id, rate_config)

                    request_url = _request_url(url, connector.auth_config)

                    async def _call() -> Any:
                        return await self._fetch(client, method, request_url, headers, display_url=url)

                    body = await self.rate_limiter.retry_with_backoff(
                        _call,
                        max_retries=max_retries,
                        initial_delay=self._initial_backoff,
                    )

                    self._store_raw(db, job_id, url, body)
                    add_log(db, job_id, LOG_INFO, f"Successfully fetched data from {url}")

                    if _has_mappings(field_mapping_config):
                        items = normalize(body, field_mapping_config)
                        if items:
                            self._store_normalized(db, job_id, connector_id, url, items)
                            add_log(db, job_id, LOG_INFO, f"Normalized and stored {len(items)} records")
                except Exception as exc:
                    db.rollback()
                    add_log(db, job_id, LOG_ERROR, f"Failed to fetch {url}: {describe_error(exc)}")
                    raise

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        method: str,
        request_url: str,
        headers: Dict[str, str],
        *,
        display_url: Optional[str] = None,
    ) -> Any:
        """One HTTP attempt. Errors only ever mention ``display_url``."""
        url = display_url or request_url
        try:
            response = await client.request(method, request_url, headers=headers)
        except httpx.TimeoutException as exc:
            raise UpstreamHttpError(f"timeout of {self._timeout:g}s exceeded", url=url) from exc
        except httpx.HTTPError as exc:
            message = (str(exc) or type(exc).__name__).replace(request_url, url)
            raise UpstreamHttpError(message, url=url) from exc

        if response.status_code == 429:
            raise RateLimitedRetryable(
                f"HTTP 429: {response.reason_phrase}", status_code=429, url=url
            )
        if not response.is_success:
            raise UpstreamHttpError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
                url=url,
            )

        try:
            return response.json()
        except ValueError:
            return response.text

    def _store_raw(self, db: Session, job_id: str, url: str, body: Any) -> None:
        db.add(RawApiData(sync_job_id=job_id, endpoint=url, response=_json_safe(body)))
        db.commit()

    def _store_normalized(
        self,
        db: Session,
        job_id: str,
        connector_id: str,
        url: str,
        items: List[NormalizedItem],
    ) -> None:
        normalized_at = _iso_now()
        db.add_all(
            [
                NormalizedData(
                    sync_job_id=job_id,
                    connector_id=connector_id,
                    entity_key=item.entity_key,
                    data=_json_safe(item.data),
                    record_metadata={"endpoint": url, "normalizedAt": normalized_at},
                )
                for item in items
            ]
        )
        db.commit()
