"""
Pydantic schemas for the provider management and call API.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from callcenter.telephony.circuit_breaker import CircuitState
from callcenter.telephony.interface import CallDirection, CallStatus, ProviderName
from callcenter.telephony.records import AttemptOutcome, AuditAction


class CredentialFieldResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    label: str
    type: str
    required: bool
    placeholder: str = ""
    help: str = ""


class ProviderInfoResponse(BaseModel):
    """Catalogue entry for a supported vendor."""

    model_config = ConfigDict(from_attributes=True)

    name: ProviderName
    label: str
    description: str
    features: list[str]
    languages: list[str]
    pricing: str
    credential_fields: list[CredentialFieldResponse]


class ConnectionTestRequest(BaseModel):
    provider: str = Field(..., min_length=1, description="Provider identifier, e.g. twilio")
    credentials: dict[str, Any] = Field(default_factory=dict)


class ConnectionTestResponse(BaseModel):
    success: bool
    provider: str
    account_metadata: dict[str, Any] = Field(default_factory=dict)


class ProviderSelectRequest(BaseModel):
    """Credentials for the new active provider and an optional backup."""

    credentials: dict[str, Any] = Field(default_factory=dict)
    backup_provider: str | None = Field(
        default=None,
        description="Provider promoted on failover (one-shot)",
    )
    backup_credentials: dict[str, Any] | None = Field(default=None)
    failover_threshold: int | None = Field(
        default=None,
        ge=1,
        le=100,
        description="Consecutive unhealthy checks before proactive failover",
    )


class ConfigSummaryResponse(BaseModel):
    """Non-secret view of a tenant's provider configuration."""

    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    provider_name: str
    is_active: bool
    backup_provider_name: str | None
    failover_threshold: int
    error_count: int
    tested_at: datetime | None
    last_error: str | None
    updated_at: datetime | None


class ProviderStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    provider: str
    is_healthy: bool
    breaker_state: CircuitState
    consecutive_failures: int
    error_count: int
    backup_provider: str | None
    failover_threshold: int
    last_error: str | None = None
    tested_at: datetime | None = None
    last_health_check_ok: bool | None = None


class FailoverRequest(BaseModel):
    reason: str = Field(default="Manual failover", min_length=1, max_length=500)


class CallAttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    provider: str
    direction: CallDirection
    outcome: AttemptOutcome
    external_call_id: str | None
    failure_reason: str | None
    timestamp: datetime


class CallHistoryResponse(BaseModel):
    items: list[CallAttemptResponse]
    total: int


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    action: AuditAction
    provider: str
    details: dict[str, Any]
    timestamp: datetime


class AuditLogResponse(BaseModel):
    items: list[AuditEntryResponse]
    total: int


class OutboundCallCreate(BaseModel):
    to_number: str = Field(..., min_length=3, max_length=50, description="E.164 destination")
    from_number: str = Field(..., min_length=3, max_length=50, description="E.164 caller id")
    callback_url: str | None = Field(
        default=None,
        description="Status callback URL; defaults to the tenant webhook URL",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class OutboundCallResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_call_id: str
    status: CallStatus
    provider_name: ProviderName
    created_at: datetime


class CallDetailResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_call_id: str
    status: CallStatus
    duration_seconds: int | None = None
    from_number: str | None = None
    to_number: str | None = None
    recording_url: str | None = None


class InboundCallResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_call_id: str
    from_number: str | None
    to_number: str | None
    direction: CallDirection
    provider_name: ProviderName
    received_at: datetime
