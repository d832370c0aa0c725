"""Typed connector configuration.

Connectors are stored as four JSON documents (auth, rate limit, endpoints,
field mappings). These models validate them when a connector is saved so
that malformed configuration is rejected up front instead of surfacing as a
failed sync job later. Wire and storage keys are camelCase; Python
attributes are snake_case.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.utils.schedule import parse_schedule_to_interval


class AuthType(str, Enum):
    NONE = "NONE"
    API_KEY = "API_KEY"
    BEARER = "BEARER"


class MappingType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


DEFAULT_API_KEY_HEADER = "X-API-Key"

# Replaced with authConfig.apiKey when the request is sent; stored paths,
# job logs and raw records keep the placeholder.
API_KEY_PLACEHOLDER = "{{apiKey}}"

_SECRET_KEYS = ("apiKey", "bearerToken")


class AuthConfig(BaseModel):
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    header_name: Optional[str] = Field(default=None, alias="headerName")
    bearer_token: Optional[str] = Field(default=None, alias="bearerToken")
    # Merged verbatim into every request, after the auth header.
    headers: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class RateLimitConfig(BaseModel):
    requests_per_second: Optional[float] = Field(default=None, alias="requestsPerSecond", gt=0)
    requests_per_minute: Optional[float] = Field(default=None, alias="requestsPerMinute", gt=0)
    retry_attempts: Optional[int] = Field(default=None, alias="retryAttempts", ge=0, le=10)
    sync_schedule: Optional[str] = Field(default=None, alias="syncSchedule")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("sync_schedule")
    @classmethod
    def _schedule_must_parse(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        if parse_schedule_to_interval(value) is None:
            raise ValueError(
                "syncSchedule must be '<N>s|m|h|d' or a 5-field cron expression"
            )
        return value.strip()

    @classmethod
    def from_stored(cls, raw: Any) -> "RateLimitConfig":
        """Lenient read of a stored JSON document.

        Rows saved before validation existed may hold strings or junk; any
        value that cannot be used is treated as absent rather than failing
        the sync.
        """
        raw = raw if isinstance(raw, dict) else {}

        def _positive(value: Any) -> Optional[float]:
            try:
                number = float(value)
            except (TypeError, ValueError):
                return None
            return number if number > 0 else None

        retry = raw.get("retryAttempts")
        try:
            retry_attempts = int(retry) if retry is not None else None
        except (TypeError, ValueError):
            retry_attempts = None
        if retry_attempts is not None and retry_attempts < 0:
            retry_attempts = None

        schedule = raw.get("syncSchedule")
        return cls.model_construct(
            requests_per_second=_positive(raw.get("requestsPerSecond")),
            requests_per_minute=_positive(raw.get("requestsPerMinute")),
            retry_attempts=retry_attempts,
            sync_schedule=schedule if isinstance(schedule, str) and schedule.strip() else None,
        )

    @property
    def min_interval_seconds(self) -> Optional[float]:
        if self.requests_per_second:
            return 1.0 / self.requests_per_second
        if self.requests_per_minute:
            return 60.0 / self.requests_per_minute
        return None


class EndpointConfig(BaseModel):
    path: str = ""
    method: HttpMethod = HttpMethod.GET
    description: Optional[str] = None

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class FieldMapping(BaseModel):
    source: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)
    type: MappingType = MappingType.STRING
    is_entity_key: bool = Field(default=False, alias="isEntityKey")

    model_config = ConfigDict(populate_by_name=True)


class FieldMappingConfig(BaseModel):
    mappings: List[FieldMapping] = Field(default_factory=list)


class ConnectorBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    base_url: str = Field(..., alias="baseUrl")
    auth_type: AuthType = Field(default=AuthType.NONE, alias="authType")
    auth_config: AuthConfig = Field(default_factory=AuthConfig, alias="authConfig")
    rate_limit_config: RateLimitConfig = Field(default_factory=RateLimitConfig, alias="rateLimitConfig")
    endpoint_config: List[EndpointConfig] = Field(default_factory=list, alias="endpointConfig")
    field_mapping_config: FieldMappingConfig = Field(default_factory=FieldMappingConfig, alias="fieldMappingConfig")
    is_shared: bool = Field(default=False, alias="isShared")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("base_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("baseUrl must start with http:// or https://")
        return value

    @model_validator(mode="after")
    def _auth_matches_type(self) -> "ConnectorBase":
        if self.auth_type == AuthType.API_KEY and not self.auth_config.api_key:
            raise ValueError("authConfig.apiKey is required for API_KEY connectors")
        if self.auth_type == AuthType.BEARER and not self.auth_config.bearer_token:
            raise ValueError("authConfig.bearerToken is required for BEARER connectors")
        return self

    def to_columns(self) -> Dict[str, Any]:
        """Column values for ``app.models_sqlalchemy.models.Connector``."""
        return {
            "name": self.name,
            "base_url": self.base_url,
            "auth_type": self.auth_type.value,
            "auth_config": self.auth_config.model_dump(by_alias=True, exclude_none=True),
            "rate_limit_config": self.rate_limit_config.model_dump(by_alias=True, exclude_none=True),
            "endpoint_config": [
                e.model_dump(mode="json", exclude_none=True) for e in self.endpoint_config
            ],
            "field_mapping_config": self.field_mapping_config.model_dump(mode="json", by_alias=True),
            "is_shared": self.is_shared,
        }


class ConnectorCreate(ConnectorBase):
    pass


class ConnectorUpdate(BaseModel):
    """Partial update; the merged result is re-validated as a ConnectorCreate."""

    name: Optional[str] = None
    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    auth_type: Optional[AuthType] = Field(default=None, alias="authType")
    auth_config: Optional[Dict[str, Any]] = Field(default=None, alias="authConfig")
    rate_limit_config: Optional[Dict[str, Any]] = Field(default=None, alias="rateLimitConfig")
    endpoint_config: Optional[List[Dict[str, Any]]] = Field(default=None, alias="endpointConfig")
    field_mapping_config: Optional[Dict[str, Any]] = Field(default=None, alias="fieldMappingConfig")
    is_shared: Optional[bool] = Field(default=None, alias="isShared")

    model_config = ConfigDict(populate_by_name=True)


class FromTemplateRequest(BaseModel):
    template_id: str = Field(..., alias="templateId")
    name: Optional[str] = None
    auth_config: Dict[str, Any] = Field(default_factory=dict, alias="authConfig")
    is_shared: bool = Field(default=False, alias="isShared")

    model_config = ConfigDict(populate_by_name=True)


def mask_value(value: Any) -> str:
    value = str(value)
    return f"{value[:4]}...{value[-4:]}" if len(value) > 8 else "***"


def mask_secrets(auth_config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Copy of an authConfig with key material shortened for display.

    Custom ``headers`` values are treated as secrets too; header names are
    kept.
    """
    if not auth_config:
        return {}
    masked = dict(auth_config)
    for key in _SECRET_KEYS:
        if key in masked and masked[key]:
            masked[key] = mask_value(masked[key])
    headers = masked.get("headers")
    if isinstance(headers, dict):
        masked["headers"] = {name: mask_value(v) if v else v for name, v in headers.items()}
    return masked


class ConnectorResponse(BaseModel):
    id: str
    name: str
    base_url: str = Field(..., alias="baseUrl")
    auth_type: str = Field(..., alias="authType")
    auth_config: Dict[str, Any] = Field(default_factory=dict, alias="authConfig")
    rate_limit_config: Dict[str, Any] = Field(default_factory=dict, alias="rateLimitConfig")
    endpoint_config: List[Dict[str, Any]] = Field(default_factory=list, alias="endpointConfig")
    field_mapping_config: Dict[str, Any] = Field(default_factory=dict, alias="fieldMappingConfig")
    is_shared: bool = Field(..., alias="isShared")
    owner_id: str = Field(..., alias="ownerId")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_orm_connector(cls, connector: Any) -> "ConnectorResponse":
        return cls(
            id=connector.id,
            name=connector.name,
            base_url=connector.base_url,
            auth_type=connector.auth_type,
            auth_config=mask_secrets(connector.auth_config),
            rate_limit_config=connector.rate_limit_config or {},
            endpoint_config=connector.endpoint_config or [],
            field_mapping_config=connector.field_mapping_config or {},
            is_shared=bool(connector.is_shared),
            owner_id=connector.owner_id,
            created_at=connector.created_at,
            updated_at=connector.updated_at,
        )
