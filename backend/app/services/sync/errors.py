from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for errors raised by the sync engine."""


class ConnectorNotFound(SyncError):
    def __init__(self, connector_id: Optional[str] = None):
        super().__init__("Connector not found")
        self.connector_id = connector_id


class NoEndpointsConfigured(SyncError):
    def __init__(self, connector_id: Optional[str] = None):
        super().__init__("No endpoints configured")
        self.connector_id = connector_id


class UpstreamHttpError(SyncError):
    """Non-2xx response or transport failure from a source API.

    ``status_code`` is None for transport errors (DNS, refused connection,
    timeout) where no response was received.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.url = url


class RateLimitedRetryable(UpstreamHttpError):
    """HTTP 429 from a source API; retried with backoff while attempts remain."""


class JobNotFound(SyncError):
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class JobNotRetryable(SyncError):
    def __init__(self, job_id: str, status: str):
        super().__init__("Only failed jobs can be retried")
        self.job_id = job_id
        self.status = status


class InvalidJobTransition(SyncError):
    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(f"Job {job_id} cannot move from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class ConnectorConfigError(SyncError):
    """Connector configuration rejected at save time."""


class AccessDenied(SyncError):
    """Caller may not see or act on the requested connector or job."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class TemplateNotFound(SyncError):
    def __init__(self, template_id: str):
        super().__init__("Template not found")
        self.template_id = template_id
